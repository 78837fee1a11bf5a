"""
Booking-intent detection.

Keyword rules decide first (tenant booking terms, direct requests). Only
when they are inconclusive and an Anthropic key is configured is Claude
asked; a low-confidence answer is retried on the fallback model.
"""

import json
import logging
import time
from typing import Iterable, Optional

from app.config import settings
from app.infra.claude import ClaudeClient, get_claude_client, ClaudeClientError
from .rules import (
    DEFAULT_BOOKING_TERMS,
    detect_purpose,
    is_direct_booking_request,
    matches_booking_intent,
    normalize_text,
    wants_to_change_topic,
)
from .types import IntentResult, IntentSource

logger = logging.getLogger(__name__)

# Shorter messages never reach the LLM ("ok", "2", "5pm")
_MIN_LLM_CHARS = 8


CLASSIFICATION_PROMPT = """You decide whether a customer message to a business is a request to book an appointment.

A booking request asks to schedule, reserve or set up a visit, call, class, consultation or demo.
Questions about prices, hours or location are NOT booking requests.

## Message

"{message}"

## Response

Respond with ONLY valid JSON:
{{
    "wants_booking": <true/false>,
    "confidence": <0.0-1.0>,
    "purpose": "<cita/clase/consulta/llamada/visita/demo or null>"
}}"""


class IntentClassifier:
    """
    Booking-intent detector.

    Rules are authoritative when they match; Claude is a fallback for
    phrasing the rules do not cover.
    """

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize classifier.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client
        self._confidence_threshold = settings.claude_intent_confidence_threshold

    @property
    def llm_available(self) -> bool:
        return self._client is not None or settings.llm_enabled

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    def classify_rules(self, message: str, booking_terms: Optional[Iterable[str]] = None) -> IntentResult:
        """Keyword-only detection (no I/O)."""
        terms = list(booking_terms or DEFAULT_BOOKING_TERMS)
        purpose = detect_purpose(message)

        if is_direct_booking_request(message) or matches_booking_intent(message, terms):
            return IntentResult(wants_booking=True, confidence=0.9, purpose=purpose)

        if wants_to_change_topic(message):
            return IntentResult(wants_booking=False, confidence=0.8)

        return IntentResult(wants_booking=False, confidence=0.0, purpose=purpose, source=IntentSource.NONE)

    async def classify(
        self,
        message: str,
        booking_terms: Optional[Iterable[str]] = None,
    ) -> IntentResult:
        """
        Detect whether a message asks to book.

        Args:
            message: Customer message
            booking_terms: Tenant-specific booking keywords

        Returns:
            IntentResult
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return IntentResult(wants_booking=False, confidence=1.0)

        result = self.classify_rules(message, booking_terms)
        if result.source != IntentSource.NONE:
            return result

        if not self.llm_available or len(normalize_text(message)) < _MIN_LLM_CHARS:
            return result

        client = await self._get_client()

        result = await self._classify_with_model(client, message, settings.claude_intent_model)

        if result.confidence < self._confidence_threshold:
            logger.debug(f"Intent confidence {result.confidence:.2f}, trying fallback model")
            result = await self._classify_with_model(client, message, settings.claude_fallback_model)
            result.fallback_used = True

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"Booking intent: {result.wants_booking} "
            f"(confidence: {result.confidence:.2f}, source: {result.source.value})"
        )
        return result

    async def _classify_with_model(
        self,
        client: ClaudeClient,
        message: str,
        model: str,
    ) -> IntentResult:
        """Run classification with specified model."""
        prompt = CLASSIFICATION_PROMPT.format(message=message)

        try:
            response = await client.generate(
                prompt=prompt,
                model=model,
                max_tokens=100,
                temperature=0,
                use_fallback_on_error=False,
            )
        except ClaudeClientError as e:
            logger.error(f"Claude API error: {e}")
            return IntentResult(wants_booking=False, confidence=0.0, source=IntentSource.NONE)

        return self._parse_response(response.content)

    def _parse_response(self, response: str) -> IntentResult:
        """Parse LLM JSON response."""
        response = response.strip()
        if response.startswith("```"):
            lines = response.split("\n")[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            response = "\n".join(lines).strip()

        try:
            data = json.loads(response)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
        except ValueError as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            return IntentResult(
                wants_booking=False,
                confidence=0.0,
                source=IntentSource.NONE,
                raw_response=response,
            )

        try:
            confidence = float(data.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5

        purpose = data.get("purpose")
        return IntentResult(
            wants_booking=bool(data.get("wants_booking")),
            confidence=confidence,
            purpose=purpose if isinstance(purpose, str) and purpose != "null" else None,
            source=IntentSource.LLM,
            raw_response=response,
        )


# Singleton
_classifier: Optional[IntentClassifier] = None


async def get_intent_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier


async def classify_intent(
    message: str,
    booking_terms: Optional[Iterable[str]] = None,
) -> IntentResult:
    """Convenience function to detect booking intent."""
    classifier = await get_intent_classifier()
    return await classifier.classify(message, booking_terms)
