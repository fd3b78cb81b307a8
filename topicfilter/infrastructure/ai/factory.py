"""Selects and builds the completion provider named by configuration."""

import logging
from typing import Callable, Dict, Optional

import httpx

from topicfilter.domain.errors import ConfigError
from topicfilter.domain.interfaces.completion_provider import CompletionProvider
from topicfilter.infrastructure.ai.ark.ark_client import ArkClient
from topicfilter.infrastructure.ai.azure.azure_client import AzureOpenAIClient
from topicfilter.infrastructure.config.settings import ClassifierSettings, normalize_provider_name

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[[ClassifierSettings, Optional[httpx.AsyncClient]], CompletionProvider]


def _build_azure(settings: ClassifierSettings, http_client: Optional[httpx.AsyncClient]) -> CompletionProvider:
    return AzureOpenAIClient(
        endpoint=settings.azure_endpoint,
        api_key=settings.azure_api_key,
        deployment_id=settings.azure_deployment_id,
        api_version=settings.azure_api_version,
        request_timeout=settings.request_timeout_seconds,
        http_client=http_client,
    )


def _build_ark(settings: ClassifierSettings, http_client: Optional[httpx.AsyncClient]) -> CompletionProvider:
    return ArkClient(
        api_key=settings.ark_api_key,
        model=settings.ark_model,
        endpoint=settings.ark_endpoint,
        api_version=settings.ark_api_version,
        request_timeout=settings.request_timeout_seconds,
        http_client=http_client,
    )


PROVIDER_BUILDERS: Dict[str, ProviderBuilder] = {
    "azure": _build_azure,
    "ark": _build_ark,
}


def create_provider(
    settings: ClassifierSettings,
    http_client: Optional[httpx.AsyncClient] = None,
) -> CompletionProvider:
    """Builds the provider adapter selected by `settings.provider`.

    Raises:
        ConfigError: Unknown provider or missing provider credentials.
    """
    name = normalize_provider_name(settings.provider)
    builder = PROVIDER_BUILDERS.get(name)
    if builder is None:
        raise ConfigError(f"Unsupported AI client type: {settings.provider}")
    provider = builder(settings, http_client)
    logger.info(f"Completion provider selected: {provider.__class__.__name__}")
    return provider
