"""Concrete implementation of the CompletionProvider interface for Azure OpenAI.

Hides the specifics of the openai SDK's Azure client and translates
requests/responses between the domain model and the deployment-scoped
Azure chat completion endpoint:

    POST {endpoint}/openai/deployments/{deployment}/chat/completions?api-version={version}
    api-key: {key}
"""

import logging
import re
import time
from typing import Optional

import httpx
import openai
from openai import AsyncAzureOpenAI

from topicfilter.domain.errors import ConfigError
from topicfilter.domain.interfaces.completion_provider import CompletionProvider
from topicfilter.domain.models.completion import CompletionRequest, CompletionResponse
from topicfilter.infrastructure.ai.openai_compat import (
    build_completion_kwargs,
    parse_completion,
    translate_openai_error,
)

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-02-15-preview"
DEFAULT_MIN_INTERVAL_SECONDS = 8.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0

RATE_LIMIT_MARKER = "call rate limit"
RETRY_AFTER_PATTERN = re.compile(r"Please retry after (\d+) seconds?", re.IGNORECASE)


def is_rate_limit_message(message: str) -> bool:
    """Azure reports cadence violations with a 'call rate limit' message."""
    return RATE_LIMIT_MARKER in message.lower()


def extract_retry_after(message: str) -> Optional[float]:
    """Parses 'Please retry after N seconds' into N seconds, if present."""
    match = RETRY_AFTER_PATTERN.search(message)
    if match:
        return float(match.group(1))
    return None


class AzureOpenAIClient(CompletionProvider):
    """Azure OpenAI implementation of the CompletionProvider interface (Variant A)."""

    default_min_interval = DEFAULT_MIN_INTERVAL_SECONDS

    def __init__(
        self,
        endpoint: Optional[str],
        api_key: Optional[str],
        deployment_id: Optional[str],
        api_version: str = DEFAULT_API_VERSION,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initializes the Azure OpenAI client.

        Args:
            endpoint: Resource endpoint, e.g. https://my-resource.openai.azure.com
            api_key: Static key sent in the `api-key` header.
            deployment_id: Name of the model deployment.
            api_version: Value of the `api-version` query parameter.
            request_timeout: Transport timeout for one HTTP call, in seconds.
            http_client: Optional preconfigured httpx client (proxies, tests).

        Raises:
            ConfigError: If endpoint, key or deployment is missing.
        """
        if not endpoint:
            raise ConfigError("Azure OpenAI endpoint is required.")
        if not api_key:
            raise ConfigError("Azure OpenAI API key is required.")
        if not deployment_id:
            raise ConfigError("Azure OpenAI deployment ID is required.")

        self.endpoint = endpoint.rstrip("/")
        self.deployment_id = deployment_id
        self.api_version = api_version
        # max_retries=0: retries belong to the resilience layer, never the adapter
        self.client = AsyncAzureOpenAI(
            azure_endpoint=self.endpoint,
            azure_deployment=deployment_id,
            api_key=api_key,
            api_version=api_version,
            timeout=request_timeout,
            max_retries=0,
            http_client=http_client,
        )
        logger.info(f"AzureOpenAIClient initialized for deployment: {deployment_id} (api-version {api_version})")

    @property
    def provider_name(self) -> str:
        return "azure"

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Sends one chat completion request to the configured deployment."""
        logger.debug(f"Sending {len(request.messages)} messages to Azure deployment: {self.deployment_id}")
        start_time = time.perf_counter()
        try:
            completion = await self.client.chat.completions.create(
                model=self.deployment_id,
                **build_completion_kwargs(request),
            )
        except openai.APIError as e:
            error = translate_openai_error(e, self.provider_name, is_rate_limit_message, extract_retry_after)
            logger.warning(f"Azure OpenAI request failed ({error.kind}): {error}")
            raise error from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        response = parse_completion(completion, self.provider_name)
        logger.debug(f"Received response from Azure in {latency_ms:.2f}ms. Usage: {response.token_usage}")
        return CompletionResponse(
            content=response.content,
            finish_reason=response.finish_reason,
            model_name=response.model_name,
            token_usage=response.token_usage,
            latency_ms=latency_ms,
        )

    async def aclose(self) -> None:
        await self.client.close()
