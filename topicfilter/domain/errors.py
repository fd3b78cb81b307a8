"""Domain error taxonomy.

Every failure the classification client can produce derives from
TopicFilterError. Provider adapters raise ProviderError subclasses, the
batch protocol raises ProtocolError subclasses, and the resilience layer
decides which of them are worth another attempt.
"""

from typing import List, Optional


class TopicFilterError(Exception):
    """Base class for all topicfilter errors."""


class ConfigError(TopicFilterError):
    """Raised when a required configuration value is missing or invalid."""


class CacheStoreError(TopicFilterError):
    """The persisted cache snapshot could not be written."""


# --- Provider Errors ---

class ProviderError(TopicFilterError):
    """A classified failure reported by a completion provider."""

    kind: str = "provider"

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after  # Seconds, when the provider named a wait


class RateLimitedError(ProviderError):
    """The provider rejected the call because of its call cadence limit."""

    kind = "rate_limited"


class AuthError(ProviderError):
    """Credentials were rejected. Never retried."""

    kind = "auth"


class NetworkError(ProviderError):
    """Transport failure, SDK timeout or server-side (5xx) error."""

    kind = "network"


class MalformedResponseError(ProviderError):
    """The request was refused as invalid or the response envelope is unusable."""

    kind = "malformed"


# --- Batch Protocol Errors ---

class ProtocolError(TopicFilterError):
    """The model's answer violates the batch output contract."""


class EmptyResponseError(ProtocolError):
    def __init__(self) -> None:
        super().__init__("Model returned an empty answer.")


class CountMismatchError(ProtocolError):
    def __init__(self, expected: int, got: int):
        self.expected = expected
        self.got = got
        super().__init__(f"Expected {expected} answers, got {got}.")


class InvalidTokenError(ProtocolError):
    def __init__(self, tokens: List[str]):
        self.tokens = list(tokens)
        super().__init__(f"Answer contains tokens outside the vocabulary: {self.tokens!r}")


# --- Resilience Errors ---

class AttemptTimeoutError(TopicFilterError, TimeoutError):
    """A single attempt did not settle within the per-attempt timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Attempt timed out after {timeout:.2f}s")


class DeadlineExceededError(TopicFilterError):
    """The caller's overall deadline elapsed before the work could finish."""


class RetriesExhaustedError(TopicFilterError):
    """Raised when every permitted attempt has failed."""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Max attempts ({attempts}) exceeded. Last error: {last_error}")
