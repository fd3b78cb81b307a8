"""Interface for chat completion providers.

Defines the contract for sending one canonical completion request to a
remote LLM backend (e.g., Azure OpenAI, Volcengine Ark).
"""

import abc

from ..models.completion import CompletionRequest, CompletionResponse


class CompletionProvider(abc.ABC):
    """Abstract Base Class for completion backends."""

    #: Minimum seconds between two calls this backend tolerates by default.
    default_min_interval: float = 1.0

    @property
    @abc.abstractmethod
    def provider_name(self) -> str:
        """Short identifier used in logs and events."""

    @abc.abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Sends one completion request asynchronously.

        Implementations never retry; they translate failures into the
        ProviderError hierarchy and let the resilience layer decide.

        Args:
            request: The canonical completion request.

        Returns:
            The parsed CompletionResponse.

        Raises:
            RateLimitedError: The provider asked the caller to slow down.
            AuthError: Credentials were rejected.
            NetworkError: Transport or server failure.
            MalformedResponseError: Unusable request or response envelope.
        """

    async def aclose(self) -> None:
        """Releases any underlying HTTP resources."""
        return None
