"""Completion provider adapters (Azure OpenAI, Volcengine Ark) and their factory."""
