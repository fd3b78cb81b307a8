import json
from typing import Any, Dict, List

import httpx
import pytest

from topicfilter.domain.errors import (
    AuthError,
    ConfigError,
    MalformedResponseError,
    NetworkError,
    RateLimitedError,
)
from topicfilter.domain.models.common import MessageRole
from topicfilter.domain.models.completion import ChatMessage, CompletionRequest
from topicfilter.infrastructure.ai.azure.azure_client import (
    AzureOpenAIClient,
    extract_retry_after,
    is_rate_limit_message,
)

ENDPOINT = "https://my-resource.openai.azure.com"


def completion_body(content: Any = "yes, no") -> Dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
        "usage": {"prompt_tokens": 42, "completion_tokens": 3, "total_tokens": 45},
    }


def make_request() -> CompletionRequest:
    return CompletionRequest(
        messages=(
            ChatMessage(role=MessageRole("system"), content="Answer with yes or no."),
            ChatMessage(role=MessageRole("user"), content="1. Python tutorial\n2. Cooking pasta"),
        ),
    )


def make_client(handler, captured: List[httpx.Request] = None) -> AzureOpenAIClient:
    def recording_handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        return handler(request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
    return AzureOpenAIClient(
        endpoint=ENDPOINT,
        api_key="azure-test-key",
        deployment_id="gpt4o-deploy",
        http_client=http_client,
    )


@pytest.mark.asyncio
async def test_complete_sends_azure_contract():
    """URL, api-version, api-key header and body fields follow the Azure contract."""
    captured: List[httpx.Request] = []
    client = make_client(lambda request: httpx.Response(200, json=completion_body()), captured)

    response = await client.complete(make_request())
    await client.aclose()

    assert response.content == "yes, no"
    assert response.finish_reason == "stop"
    assert response.token_usage["total_tokens"] == 45
    assert response.latency_ms is not None

    assert len(captured) == 1
    sent = captured[0]
    assert sent.method == "POST"
    assert sent.url.host == "my-resource.openai.azure.com"
    assert sent.url.path == "/openai/deployments/gpt4o-deploy/chat/completions"
    assert sent.url.params["api-version"] == "2024-02-15-preview"
    assert sent.headers["api-key"] == "azure-test-key"

    body = json.loads(sent.content)
    assert body["messages"][0] == {"role": "system", "content": "Answer with yes or no."}
    assert body["max_tokens"] == 100
    assert body["temperature"] == 0.0
    assert body["top_p"] == 1.0
    assert body["frequency_penalty"] == 0.0
    assert body["presence_penalty"] == 0.0
    assert body["stop"] is None


@pytest.mark.asyncio
async def test_rate_limit_with_retry_after():
    message = (
        "Requests to the ChatCompletions_Create Operation under Azure OpenAI API version 2024-02-15-preview "
        "have exceeded call rate limit of your current OpenAI S0 pricing tier. Please retry after 5 seconds."
    )
    client = make_client(lambda request: httpx.Response(429, json={"error": {"code": "429", "message": message}}))

    with pytest.raises(RateLimitedError) as excinfo:
        await client.complete(make_request())
    await client.aclose()

    assert excinfo.value.retry_after == 5.0
    assert excinfo.value.status_code == 429
    assert excinfo.value.provider == "azure"


@pytest.mark.asyncio
async def test_call_rate_limit_message_without_429_is_rate_limited():
    body = {"error": {"code": "400", "message": "Exceeded call rate limit for this deployment."}}
    client = make_client(lambda request: httpx.Response(400, json=body))

    with pytest.raises(RateLimitedError) as excinfo:
        await client.complete(make_request())
    await client.aclose()

    assert excinfo.value.retry_after is None


@pytest.mark.parametrize(
    "status, expected_error",
    [
        (401, AuthError),
        (403, AuthError),
        (500, NetworkError),
        (503, NetworkError),
        (400, MalformedResponseError),
        (404, MalformedResponseError),
    ],
)
@pytest.mark.asyncio
async def test_http_status_mapping(status, expected_error):
    body = {"error": {"code": str(status), "message": "something went wrong"}}
    client = make_client(lambda request: httpx.Response(status, json=body))

    with pytest.raises(expected_error):
        await client.complete(make_request())
    await client.aclose()


@pytest.mark.asyncio
async def test_connection_failure_is_network_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(refuse)
    with pytest.raises(NetworkError):
        await client.complete(make_request())
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_content_is_malformed():
    client = make_client(lambda request: httpx.Response(200, json=completion_body(content=None)))
    with pytest.raises(MalformedResponseError):
        await client.complete(make_request())
    await client.aclose()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"endpoint": None, "api_key": "k", "deployment_id": "d"},
        {"endpoint": ENDPOINT, "api_key": "", "deployment_id": "d"},
        {"endpoint": ENDPOINT, "api_key": "k", "deployment_id": None},
    ],
)
def test_missing_configuration_fails_fast(kwargs):
    with pytest.raises(ConfigError):
        AzureOpenAIClient(**kwargs)


def test_default_min_interval_is_eight_seconds():
    assert AzureOpenAIClient.default_min_interval == 8.0


def test_rate_limit_helpers():
    assert is_rate_limit_message("You have exceeded Call Rate Limit")
    assert not is_rate_limit_message("Invalid request")
    assert extract_retry_after("Please retry after 12 seconds.") == 12.0
    assert extract_retry_after("Please retry after 1 second") == 1.0
    assert extract_retry_after("Slow down") is None
