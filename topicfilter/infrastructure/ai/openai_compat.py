"""Helpers shared by providers that speak the OpenAI chat completion contract.

Translates the canonical CompletionRequest into SDK keyword arguments, parses
SDK response objects into CompletionResponse, and maps `openai` exceptions
onto the domain ProviderError hierarchy.
"""

import logging
from typing import Any, Callable, Dict, Optional

import openai

from topicfilter.domain.errors import (
    AuthError,
    MalformedResponseError,
    NetworkError,
    ProviderError,
    RateLimitedError,
)
from topicfilter.domain.models.common import TokenUsage
from topicfilter.domain.models.completion import CompletionRequest, CompletionResponse

logger = logging.getLogger(__name__)

RateLimitMatcher = Callable[[str], bool]
RetryAfterExtractor = Callable[[str], Optional[float]]


def build_completion_kwargs(request: CompletionRequest) -> Dict[str, Any]:
    """Builds the JSON body fields shared by every OpenAI-style backend."""
    return {
        "messages": request.message_list(),
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
        "top_p": request.top_p,
        "frequency_penalty": request.frequency_penalty,
        "presence_penalty": request.presence_penalty,
        "stop": list(request.stop) if request.stop else None,
    }


def parse_completion(response: Any, provider: str) -> CompletionResponse:
    """Parses an SDK ChatCompletion object, rejecting unusable envelopes."""
    try:
        choice = response.choices[0]
        content = choice.message.content
        finish_reason = choice.finish_reason
    except (AttributeError, IndexError, KeyError, TypeError) as e:
        logger.error(f"Failed to parse {provider} response structure: {e}")
        logger.debug(f"Raw {provider} response object: {response}")
        raise MalformedResponseError(
            f"Invalid response structure from {provider}: {e}", provider=provider
        ) from e

    if content is None:
        raise MalformedResponseError(
            f"{provider} response has no message content (finish_reason={finish_reason})",
            provider=provider,
        )

    token_usage = None
    usage = getattr(response, "usage", None)
    if usage is not None:
        token_usage = TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )

    return CompletionResponse(
        content=content,
        finish_reason=finish_reason,
        model_name=getattr(response, "model", None),
        token_usage=token_usage,
    )


def error_message(error: openai.APIError) -> str:
    """Returns the provider's own error text, falling back to the SDK message."""
    body = error.body
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return str(error.message)


def translate_openai_error(
    error: openai.APIError,
    provider: str,
    is_rate_limited: RateLimitMatcher,
    extract_retry_after: RetryAfterExtractor,
) -> ProviderError:
    """Maps an `openai` SDK exception onto the domain error hierarchy.

    Args:
        error: The exception raised by the SDK.
        provider: Provider name for messages.
        is_rate_limited: Provider-specific rate-limit message matcher.
        extract_retry_after: Provider-specific parser for a suggested wait.
    """
    message = error_message(error)
    status_code = getattr(error, "status_code", None)

    if isinstance(error, openai.RateLimitError) or is_rate_limited(message):
        return RateLimitedError(
            f"{provider} rate limit: {message}",
            provider=provider,
            status_code=status_code,
            retry_after=extract_retry_after(message),
        )
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthError(f"{provider} rejected credentials: {message}", provider=provider, status_code=status_code)
    if isinstance(error, (openai.APIConnectionError, openai.InternalServerError)):
        # APITimeoutError is a subclass of APIConnectionError
        return NetworkError(f"{provider} transport failure: {message}", provider=provider, status_code=status_code)
    if isinstance(error, openai.APIStatusError) and error.status_code >= 500:
        return NetworkError(f"{provider} server error: {message}", provider=provider, status_code=status_code)
    return MalformedResponseError(f"{provider} API error: {message}", provider=provider, status_code=status_code)
