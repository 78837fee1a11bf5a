"""
Claude API Client

Thin async wrapper used by the booking-intent fallback and reply
translation. Both callers sit on the chat request path, so calls are short:
a per-request timeout, a small retry budget for transient failures, and one
fallback model. Any failure surfaces as ClaudeClientError, which callers
treat as "no answer".
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    RateLimitError,
)

from app.config import settings

logger = logging.getLogger(__name__)


class ClaudeClientError(Exception):
    """Raised when no usable answer could be obtained from Claude."""
    pass


@dataclass
class ClaudeResponse:
    """Text answer from one Claude call."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: Optional[str]
    latency_ms: float


def _is_transient(error: APIError) -> bool:
    if isinstance(error, (RateLimitError, APIConnectionError, APITimeoutError)):
        return True
    return isinstance(error, APIStatusError) and error.status_code >= 500


def _text_of(message: Any) -> str:
    """Concatenate the text blocks of a Messages API response."""
    parts = [getattr(block, "text", "") for block in (message.content or [])]
    return "".join(p for p in parts if p).strip()


class ClaudeClient:
    """
    Async Claude wrapper.

    - Short timeout per call (``claude_timeout_seconds``)
    - Retries rate limits, connection errors and 5xx with backoff
    - One retry on the fallback model when the primary model fails
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        anthropic_client: Optional[AsyncAnthropic] = None,
    ):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
            anthropic_client: Preconfigured SDK client (for testing)

        Raises:
            ClaudeClientError: If no API key is configured
        """
        if anthropic_client is None:
            api_key = api_key or settings.anthropic_api_key
            if not api_key:
                raise ClaudeClientError("ANTHROPIC_API_KEY is not configured")
            # Retries are handled here so the backoff stays within the chat turn
            anthropic_client = AsyncAnthropic(
                api_key=api_key,
                timeout=settings.claude_timeout_seconds,
                max_retries=0,
            )

        self._client = anthropic_client
        self._default_model = settings.claude_intent_model
        self._fallback_model = settings.claude_fallback_model
        self._max_retries = max(1, settings.claude_max_retries)

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.0,
        use_fallback_on_error: bool = True,
    ) -> ClaudeResponse:
        """
        Ask Claude for a single text answer.

        Args:
            prompt: User message
            system_prompt: System prompt (optional)
            model: Model to use (defaults to the intent model)
            max_tokens: Maximum tokens in the answer
            temperature: Sampling temperature
            use_fallback_on_error: Retry once on the fallback model

        Returns:
            ClaudeResponse

        Raises:
            ClaudeClientError: If every attempt failed or the answer was empty
        """
        model = model or self._default_model
        started = time.time()

        try:
            message = await self._create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
                system=system_prompt,
            )
        except APIError as e:
            if use_fallback_on_error and model != self._fallback_model:
                logger.warning(f"Claude model {model} failed ({type(e).__name__}), using {self._fallback_model}")
                return await self.generate(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    model=self._fallback_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    use_fallback_on_error=False,
                )
            raise ClaudeClientError(f"Claude call failed on {model}: {e}") from e

        content = _text_of(message)
        if not content:
            raise ClaudeClientError(f"Claude returned no text ({message.stop_reason})")

        usage = getattr(message, "usage", None)
        return ClaudeResponse(
            content=content,
            model=model,
            input_tokens=getattr(usage, "input_tokens", 0),
            output_tokens=getattr(usage, "output_tokens", 0),
            stop_reason=message.stop_reason,
            latency_ms=(time.time() - started) * 1000,
        )

    async def _create(self, system: Optional[str], **kwargs: Any) -> Any:
        """messages.create with backoff on transient errors."""
        if system:
            kwargs["system"] = system

        for attempt in range(self._max_retries):
            try:
                return await self._client.messages.create(**kwargs)
            except APIError as e:
                if not _is_transient(e) or attempt == self._max_retries - 1:
                    raise
                wait = 0.5 * (2 ** attempt)
                logger.info(f"Claude transient error {type(e).__name__}, retry {attempt + 1} in {wait:.1f}s")
                await asyncio.sleep(wait)

        raise ClaudeClientError("Claude retry budget exhausted")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()


# Singleton
_client: Optional[ClaudeClient] = None


async def get_claude_client() -> ClaudeClient:
    """Get singleton ClaudeClient (raises ClaudeClientError without a key)."""
    global _client
    if _client is None:
        _client = ClaudeClient()
    return _client


async def close_claude_client() -> None:
    """Close the singleton if it was ever created."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
