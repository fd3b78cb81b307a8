"""topicfilter: rate-limited LLM topic classification for short texts."""

__version__ = "0.1.0"
