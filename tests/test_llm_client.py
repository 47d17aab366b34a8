"""
Tests for the completion provider client.
"""

import json

import httpx
import pytest

from promptchain.tools.llm_client import (
    LLMClient,
    LLMClientError,
    build_prompt,
    calculate_cost,
)
from promptchain.models.workflow import DEFAULT_MODEL


def completion_body(content="Hello!", prompt_tokens=100, completion_tokens=50):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def make_client(handler, max_retries=3):
    return LLMClient(
        base_url="https://llm.test",
        api_key="test-key",
        max_retries=max_retries,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


class TestHelpers:

    def test_cost_for_known_model(self):
        assert calculate_cost("kimi-k2p5", 1000, 1000) == pytest.approx(0.008)

    def test_unknown_model_priced_as_default(self):
        assert calculate_cost("mystery", 1000, 1000) == calculate_cost(DEFAULT_MODEL, 1000, 1000)

    def test_build_prompt(self):
        assert build_prompt("Do it", "") == "Do it"
        assert build_prompt("Do it", "prior") == "Context from previous step:\nprior\n\n---\n\nDo it"

    def test_get_models(self):
        models = LLMClient().get_models()
        assert [m["id"] for m in models] == ["kimi-k2p5", DEFAULT_MODEL]
        assert {m["tier"] for m in models} == {"premium", "standard"}


class TestCall:

    @pytest.mark.asyncio
    async def test_success(self):
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            return httpx.Response(200, json=completion_body())

        client = make_client(handler)
        result = await client.call("Write a poem", "kimi-k2-instruct-0905", context="Earlier text")
        await client.close()

        assert result.content == "Hello!"
        assert result.tokens.input == 100
        assert result.tokens.output == 50
        assert result.tokens.total == 150
        assert result.cost == pytest.approx(0.1 * 0.001 + 0.05 * 0.003)

        assert requests[0].url.path == "/v1/chat/completions"
        assert requests[0].headers["authorization"] == "Bearer test-key"
        payload = json.loads(requests[0].content)
        assert payload["model"] == "kimi-k2-instruct-0905"
        assert payload["max_tokens"] == 4096
        assert payload["temperature"] == 0.7
        assert payload["messages"] == [{
            "role": "user",
            "content": "Context from previous step:\nEarlier text\n\n---\n\nWrite a poem",
        }]

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        statuses = [503, 200]

        def handler(request):
            status = statuses.pop(0)
            if status == 200:
                return httpx.Response(200, json=completion_body("recovered"))
            return httpx.Response(status, json={"error": {"message": "overloaded"}})

        client = make_client(handler)
        result = await client.call("prompt")
        assert result.content == "recovered"
        assert statuses == []

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

        client = make_client(handler)
        with pytest.raises(LLMClientError) as exc_info:
            await client.call("prompt")

        assert len(calls) == 1
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid API key"

    @pytest.mark.asyncio
    async def test_error_without_provider_message(self):
        def handler(request):
            return httpx.Response(404, text="nope")

        client = make_client(handler)
        with pytest.raises(LLMClientError, match="LLM call failed: 404 - nope"):
            await client.call("prompt")

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_retries=2)
        with pytest.raises(LLMClientError, match="connection refused"):
            await client.call("prompt")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_missing_usage_counts_zero(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})

        client = make_client(handler)
        result = await client.call("prompt")
        assert result.tokens.total == 0
        assert result.cost == 0
