"""Tests for the Claude API wrapper."""

import httpx
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from anthropic import APIConnectionError, BadRequestError, InternalServerError

from app.infra.claude import ClaudeClient, ClaudeClientError

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def message(text: str, stop_reason: str = "end_turn"):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=12, output_tokens=3),
    )


def server_error():
    return InternalServerError("overloaded", response=httpx.Response(500, request=REQUEST), body=None)


def bad_request():
    return BadRequestError("bad", response=httpx.Response(400, request=REQUEST), body=None)


class TestClaudeClient:
    """Test ClaudeClient retries and fallback."""

    @pytest.fixture
    def sdk(self):
        mock = MagicMock()
        mock.messages.create = AsyncMock()
        mock.close = AsyncMock()
        return mock

    @pytest.fixture
    def client(self, sdk):
        return ClaudeClient(anthropic_client=sdk)

    @pytest.fixture(autouse=True)
    def no_sleep(self):
        with patch("app.infra.claude.asyncio.sleep", AsyncMock()) as sleep:
            yield sleep

    @pytest.mark.asyncio
    async def test_generate(self, client, sdk):
        sdk.messages.create.return_value = message(" hola ")

        response = await client.generate("translate", system_prompt="be brief", model="m-1")

        assert response.content == "hola"
        assert response.model == "m-1"
        assert response.input_tokens == 12
        kwargs = sdk.messages.create.await_args.kwargs
        assert kwargs["system"] == "be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "translate"}]

    @pytest.mark.asyncio
    async def test_no_system_prompt_is_omitted(self, client, sdk):
        sdk.messages.create.return_value = message("ok")

        await client.generate("hi")

        assert "system" not in sdk.messages.create.await_args.kwargs

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, client, sdk, no_sleep):
        sdk.messages.create.side_effect = [APIConnectionError(request=REQUEST), message("ok")]

        response = await client.generate("hi", use_fallback_on_error=False)

        assert response.content == "ok"
        assert sdk.messages.create.await_count == 2
        no_sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, client, sdk):
        sdk.messages.create.side_effect = bad_request()

        with pytest.raises(ClaudeClientError):
            await client.generate("hi", use_fallback_on_error=False)

        assert sdk.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_fallback_model(self, client, sdk):
        sdk.messages.create.side_effect = [bad_request(), message("ok")]

        response = await client.generate("hi", model="primary-model")

        assert response.model == client._fallback_model
        assert sdk.messages.create.await_args.kwargs["model"] == client._fallback_model

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, client, sdk):
        sdk.messages.create.side_effect = server_error()

        with pytest.raises(ClaudeClientError):
            await client.generate("hi", use_fallback_on_error=False)

        assert sdk.messages.create.await_count == client._max_retries

    @pytest.mark.asyncio
    async def test_empty_answer(self, client, sdk):
        sdk.messages.create.return_value = message("   ", stop_reason="max_tokens")

        with pytest.raises(ClaudeClientError):
            await client.generate("hi")

    @pytest.mark.asyncio
    async def test_close(self, client, sdk):
        await client.close()

        sdk.close.assert_awaited_once()

    def test_requires_api_key(self):
        with patch("app.infra.claude.settings") as mock_settings:
            mock_settings.anthropic_api_key = None
            with pytest.raises(ClaudeClientError):
                ClaudeClient()
