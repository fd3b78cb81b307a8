"""Prompt sizing helpers (token estimation)."""
