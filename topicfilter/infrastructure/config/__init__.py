"""Configuration loading (YAML, .env, environment) and validated settings."""
