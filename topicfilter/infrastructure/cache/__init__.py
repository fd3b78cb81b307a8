"""Caching Service Implementation.

Provides the in-memory TTL cache for classification decisions and the
stores that persist its snapshot between runs.
Bounded Context: Cache Management
"""
