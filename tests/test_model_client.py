"""Tests for OpenAICompatModelClient: choices guard, JSON mode, retry wrapping."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, InternalServerError

from lycaon.infra.errors import LLMError
from lycaon.llm.model_client import OpenAICompatModelClient

_REQUEST = httpx.Request("POST", "https://api.example/v1/chat/completions")


@pytest.fixture()
def client():
    return OpenAICompatModelClient(api_key="test-key", max_retries=0)


def _make_response(*, choices=None):
    resp = MagicMock()
    resp.choices = choices if choices is not None else []
    return resp


def _make_choice(content="hello"):
    choice = MagicMock()
    choice.message.content = content
    return choice


class TestChat:
    @pytest.mark.asyncio()
    async def test_empty_choices_raises_llm_error(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=_make_response(choices=[])
        )
        with pytest.raises(LLMError, match="Empty choices"):
            await client.chat([{"role": "user", "content": "hi"}], "test-model")

    @pytest.mark.asyncio()
    async def test_returns_content(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=_make_response(choices=[_make_choice("world")])
        )
        result = await client.chat([{"role": "user", "content": "hi"}], "test-model")
        assert result == "world"

    @pytest.mark.asyncio()
    async def test_none_content_is_empty_string(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            return_value=_make_response(choices=[_make_choice(None)])
        )
        assert await client.chat([{"role": "user", "content": "hi"}], "test-model") == ""

    @pytest.mark.asyncio()
    async def test_json_mode_and_temperature_forwarded(self, client):
        client._client = MagicMock()
        create = AsyncMock(return_value=_make_response(choices=[_make_choice("{}")]))
        client._client.chat.completions.create = create

        await client.chat(
            [{"role": "user", "content": "hi"}], "test-model", temperature=0.2, json_output=True
        )

        kwargs = create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.2
        assert kwargs["model"] == "test-model"


class TestRetry:
    @pytest.mark.asyncio()
    async def test_status_error_wrapped_without_retry(self, client):
        response = httpx.Response(400, request=_REQUEST)
        client._client = MagicMock()
        create = AsyncMock(
            side_effect=APIStatusError("bad request", response=response, body=None)
        )
        client._client.chat.completions.create = create

        with pytest.raises(LLMError, match="LLM API error: 400"):
            await client.chat([{"role": "user", "content": "hi"}], "test-model")
        assert create.await_count == 1

    @pytest.mark.asyncio()
    async def test_connection_error_retried_then_wrapped(self):
        client = OpenAICompatModelClient(api_key="test-key", max_retries=1, base_delay=0.0)
        client._client = MagicMock()
        create = AsyncMock(side_effect=APIConnectionError(request=_REQUEST))
        client._client.chat.completions.create = create

        with pytest.raises(LLMError, match="after 2 attempts"):
            await client.chat([{"role": "user", "content": "hi"}], "test-model")
        assert create.await_count == 2

    @pytest.mark.asyncio()
    async def test_transient_error_recovers(self):
        client = OpenAICompatModelClient(api_key="test-key", max_retries=1, base_delay=0.0)
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            side_effect=[
                APIConnectionError(request=_REQUEST),
                _make_response(choices=[_make_choice("ok")]),
            ]
        )

        assert await client.chat([{"role": "user", "content": "hi"}], "test-model") == "ok"

    @pytest.mark.asyncio()
    async def test_server_error_is_transient(self):
        client = OpenAICompatModelClient(api_key="test-key", max_retries=1, base_delay=0.0)
        client._client = MagicMock()
        response = httpx.Response(503, request=_REQUEST)
        client._client.chat.completions.create = AsyncMock(
            side_effect=[
                InternalServerError("unavailable", response=response, body=None),
                _make_response(choices=[_make_choice("ok")]),
            ]
        )

        assert await client.chat([{"role": "user", "content": "hi"}], "test-model") == "ok"

    @pytest.mark.asyncio()
    async def test_error_codes(self, client):
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(
            side_effect=APIConnectionError(request=_REQUEST)
        )
        with pytest.raises(LLMError) as exc_info:
            await client.chat([{"role": "user", "content": "hi"}], "test-model")
        assert exc_info.value.code == "LLM_UNAVAILABLE"

    def test_sdk_retries_disabled(self):
        client = OpenAICompatModelClient(api_key="test-key", timeout=5.0)
        assert client._client.max_retries == 0
        assert client._client.timeout == 5.0
