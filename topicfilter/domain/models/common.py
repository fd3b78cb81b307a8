"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like item texts, topic labels and
cache keys, ensuring consistency and type safety.
"""

from typing import NewType, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
TopicLabel = NewType("TopicLabel", str)    # One subject the items are checked against
CacheKey = NewType("CacheKey", str)        # Normalized item text used as cache key
MessageRole = NewType("MessageRole", str)  # 'system', 'user', 'assistant'
TokenCount = NewType("TokenCount", int)    # Number of tokens


# --- Structured Data ---

class TokenUsage(TypedDict):
    """Represents token usage information from an AI call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class CacheRecord(TypedDict):
    """Serialized cache entry exchanged with a persistent store."""
    key: str
    decision: bool
    timestamp: float
