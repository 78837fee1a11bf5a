"""Tests for booking-intent classification."""

import pytest
from unittest.mock import AsyncMock, patch
from dataclasses import dataclass

from app.core.intelligence.intent.types import IntentSource
from app.core.intelligence.intent.classifier import IntentClassifier
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


class TestRules:
    """Test keyword-only detection."""

    @pytest.fixture
    def classifier(self):
        return IntentClassifier(claude_client=AsyncMock())

    def test_booking_term(self, classifier):
        result = classifier.classify_rules("Quiero una cita")

        assert result.wants_booking
        assert result.source == IntentSource.RULES
        assert result.purpose == "cita"
        assert result.is_high_confidence

    def test_tenant_terms(self, classifier):
        assert classifier.classify_rules("una clase de prueba", ["clase de prueba"]).wants_booking
        assert not classifier.classify_rules("una clase de prueba", ["sesion"]).wants_booking

    def test_topic_change_is_conclusive(self, classifier):
        result = classifier.classify_rules("how much does it cost?")

        assert not result.wants_booking
        assert result.source == IntentSource.RULES

    def test_inconclusive(self, classifier):
        assert classifier.classify_rules("hello there").source == IntentSource.NONE


class TestIntentClassifier:
    """Test rules-first classification with the Claude fallback."""

    @pytest.fixture
    def mock_claude_client(self):
        """Mock Claude client."""
        client = AsyncMock()
        return client

    @pytest.fixture
    def classifier(self, mock_claude_client):
        """Create classifier with mock client."""
        return IntentClassifier(claude_client=mock_claude_client)

    def _mock_response(self, mock_client, json_response: str):
        """Helper to mock Claude response."""
        mock_client.generate.return_value = MockClaudeResponse(content=json_response)

    @pytest.mark.asyncio
    async def test_rules_skip_llm(self, classifier, mock_claude_client):
        result = await classifier.classify("can you book me for friday?")

        assert result.wants_booking
        mock_claude_client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_message(self, classifier, mock_claude_client):
        result = await classifier.classify("   ")

        assert not result.wants_booking
        mock_claude_client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_short_message_never_reaches_llm(self, classifier, mock_claude_client):
        result = await classifier.classify("ok 2")

        assert not result.wants_booking
        mock_claude_client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_detects_booking(self, classifier, mock_claude_client):
        self._mock_response(
            mock_claude_client,
            '{"wants_booking": true, "confidence": 0.92, "purpose": "visita"}',
        )

        result = await classifier.classify("could I swing by and see the place thursday")

        assert result.wants_booking
        assert result.source == IntentSource.LLM
        assert result.purpose == "visita"
        assert not result.fallback_used
        assert mock_claude_client.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_markdown_fenced_json(self, classifier, mock_claude_client):
        self._mock_response(
            mock_claude_client,
            '```json\n{"wants_booking": false, "confidence": 0.9, "purpose": null}\n```',
        )

        result = await classifier.classify("just saying hello to everyone")

        assert not result.wants_booking
        assert result.purpose is None
        assert result.source == IntentSource.LLM

    @pytest.mark.asyncio
    async def test_low_confidence_uses_fallback_model(self, classifier, mock_claude_client):
        mock_claude_client.generate.side_effect = [
            MockClaudeResponse(content='{"wants_booking": true, "confidence": 0.3, "purpose": null}'),
            MockClaudeResponse(content='{"wants_booking": true, "confidence": 0.85, "purpose": "demo"}'),
        ]

        result = await classifier.classify("could I see the product working sometime")

        assert result.wants_booking
        assert result.fallback_used
        assert result.purpose == "demo"
        assert mock_claude_client.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_json(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, "I think they want to book")

        result = await classifier.classify("could I swing by and see the place")

        assert not result.wants_booking
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_non_object_json(self, classifier, mock_claude_client):
        self._mock_response(mock_claude_client, "[true]")

        result = await classifier.classify("could I swing by and see the place")

        assert not result.wants_booking
        assert result.source == IntentSource.NONE

    @pytest.mark.asyncio
    async def test_api_error_is_not_booking(self, classifier, mock_claude_client):
        mock_claude_client.generate.side_effect = ClaudeClientError("down")

        result = await classifier.classify("could I swing by and see the place")

        assert not result.wants_booking
        assert result.source == IntentSource.NONE

    @pytest.mark.asyncio
    async def test_no_llm_configured(self):
        classifier = IntentClassifier()

        with patch("app.core.intelligence.intent.classifier.settings") as mock_settings:
            mock_settings.llm_enabled = False
            result = await classifier.classify("could I swing by and see the place")

        assert not result.wants_booking
        assert result.source == IntentSource.NONE
