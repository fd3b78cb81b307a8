"""Concrete implementation of the CompletionProvider interface for Volcengine Ark.

Ark serves Doubao models behind an OpenAI-compatible endpoint with bearer
authentication and the model (endpoint id) carried in the request body:

    POST {endpoint}/api/v3/chat/completions
    Authorization: Bearer {key}
"""

import logging
import time
from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI

from topicfilter.domain.errors import ConfigError
from topicfilter.domain.interfaces.completion_provider import CompletionProvider
from topicfilter.domain.models.completion import CompletionRequest, CompletionResponse
from topicfilter.infrastructure.ai.openai_compat import (
    build_completion_kwargs,
    parse_completion,
    translate_openai_error,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://ark.cn-beijing.volces.com"
DEFAULT_API_VERSION = "v3"
SUPPORTED_API_VERSIONS = ("v1", "v3")
DEFAULT_MIN_INTERVAL_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0


def is_rate_limit_message(message: str) -> bool:
    return "rate limit" in message.lower()


def extract_retry_after(message: str) -> Optional[float]:
    # Ark does not name a wait; the queue falls back to its current interval
    return None


class ArkClient(CompletionProvider):
    """Volcengine Ark (Doubao) implementation of the CompletionProvider interface (Variant B)."""

    default_min_interval = DEFAULT_MIN_INTERVAL_SECONDS

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str],
        endpoint: Optional[str] = None,
        api_version: str = DEFAULT_API_VERSION,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initializes the Ark client.

        Args:
            api_key: Bearer token.
            model: Model or inference endpoint id sent in the request body.
            endpoint: Base URL; defaults to the cn-beijing region.
            api_version: Path version segment, 'v1' or 'v3'.
            request_timeout: Transport timeout for one HTTP call, in seconds.
            http_client: Optional preconfigured httpx client (proxies, tests).

        Raises:
            ConfigError: If the key or model is missing, or the version is unknown.
        """
        if not api_key:
            raise ConfigError("Ark API key is required.")
        if not model:
            raise ConfigError("Ark model ID is required.")
        if api_version not in SUPPORTED_API_VERSIONS:
            raise ConfigError(f"Ark api_version must be one of {SUPPORTED_API_VERSIONS}, got {api_version!r}.")

        self.endpoint = (endpoint or DEFAULT_ENDPOINT).rstrip("/")
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=f"{self.endpoint}/api/{api_version}",
            timeout=request_timeout,
            max_retries=0,
            http_client=http_client,
        )
        logger.info(f"ArkClient initialized for model: {model} ({self.endpoint}/api/{api_version})")

    @property
    def provider_name(self) -> str:
        return "ark"

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Sends one chat completion request to Ark."""
        logger.debug(f"Sending {len(request.messages)} messages to Ark model: {self.model}")
        start_time = time.perf_counter()
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                **build_completion_kwargs(request),
            )
        except openai.APIError as e:
            error = translate_openai_error(e, self.provider_name, is_rate_limit_message, extract_retry_after)
            logger.warning(f"Ark request failed ({error.kind}): {error}")
            raise error from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        response = parse_completion(completion, self.provider_name)
        logger.debug(f"Received response from Ark in {latency_ms:.2f}ms. Usage: {response.token_usage}")
        return CompletionResponse(
            content=response.content,
            finish_reason=response.finish_reason,
            model_name=response.model_name,
            token_usage=response.token_usage,
            latency_ms=latency_ms,
        )

    async def aclose(self) -> None:
        await self.client.close()
