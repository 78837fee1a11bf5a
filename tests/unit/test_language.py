"""Tests for reply language detection and translation."""

import pytest
from unittest.mock import AsyncMock, patch
from dataclasses import dataclass

from app.core.intelligence.language import ReplyTranslator, detect_language, is_ambiguous_language
from app.infra.claude import ClaudeClientError


@dataclass
class MockClaudeResponse:
    """Mock Claude response."""
    content: str
    model: str = "claude-3-5-haiku-20241022"
    input_tokens: int = 100
    output_tokens: int = 50
    stop_reason: str = "end_turn"
    latency_ms: float = 50.0


class TestDetectLanguage:
    """Test keyword language detection."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("hola, quiero una cita", "es"),
            ("¿tienes algo?", "es"),
            ("hi, I would like an appointment", "en"),
            ("can you book me for tomorrow", "en"),
        ],
    )
    def test_detect(self, text, expected):
        assert detect_language(text) == expected

    @pytest.mark.parametrize("text", ["ok", "2", "5pm", "si", "ok 3", "10:30", ""])
    def test_ambiguous(self, text):
        assert is_ambiguous_language(text)
        assert detect_language(text) is None


class TestReplyTranslator:
    """Test Claude-backed reply translation."""

    @pytest.fixture
    def mock_claude_client(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_templated_languages_pass_through(self, mock_claude_client):
        translator = ReplyTranslator(claude_client=mock_claude_client)

        assert await translator.translate("Hello", "en") == "Hello"
        assert await translator.translate("Hola", "es") == "Hola"
        mock_claude_client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_translates(self, mock_claude_client):
        mock_claude_client.generate.return_value = MockClaudeResponse(content=" Bonjour \n")
        translator = ReplyTranslator(claude_client=mock_claude_client)

        result = await translator.translate("Hello", "fr")

        assert result == "Bonjour"
        prompt = mock_claude_client.generate.await_args.kwargs["prompt"]
        assert '"fr"' in prompt
        assert prompt.endswith("Hello")

    @pytest.mark.asyncio
    async def test_api_error_keeps_english(self, mock_claude_client):
        mock_claude_client.generate.side_effect = ClaudeClientError("down")
        translator = ReplyTranslator(claude_client=mock_claude_client)

        assert await translator.translate("Hello", "fr") == "Hello"

    @pytest.mark.asyncio
    async def test_empty_translation_keeps_english(self, mock_claude_client):
        mock_claude_client.generate.return_value = MockClaudeResponse(content="  ")
        translator = ReplyTranslator(claude_client=mock_claude_client)

        assert await translator.translate("Hello", "fr") == "Hello"

    @pytest.mark.asyncio
    async def test_no_llm_configured(self):
        translator = ReplyTranslator()

        with patch("app.core.intelligence.language.settings") as mock_settings:
            mock_settings.llm_enabled = False
            assert await translator.translate("Hello", "fr") == "Hello"
