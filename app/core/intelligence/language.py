"""
Reply language handling.

``detect_language`` is a cheap keyword heuristic used to lock a thread's
language on its first meaningful message. ``ReplyTranslator`` uses Claude
to render the English templates into any other locked language, falling
back to English when the API is unavailable.
"""

import logging
import re
from typing import Optional

from app.config import settings
from app.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from app.core.intelligence.intent.rules import normalize_text

logger = logging.getLogger(__name__)

_ES_MARKERS = re.compile(
    r"\b(hola|quiero|quisiera|necesito|cita|agendar|reservar|manana|tarde|gracias|por favor|"
    r"para|el|la|los|las|de|que|con|una|un|hoy|dia|hora|si|bueno|buenas|buenos|tienes|hay|me|mi)\b"
)
_EN_MARKERS = re.compile(
    r"\b(hi|hello|want|would|need|appointment|book|schedule|tomorrow|today|afternoon|morning|thanks|"
    r"please|the|for|at|with|an|day|time|yes|do|you|have|can|my|is|are|i)\b"
)
_AMBIGUOUS = re.compile(
    r"^(ok|okay|yes|no|si|dale|listo|vale|perfecto|gracias|thanks)\s*\d*$"
    r"|^\s*\d{1,2}(:\d{2})?\s*(am|pm)?\s*$"
    r"|^[\d\s.,;:!?()+\-/_]*$"
)

TRANSLATE_PROMPT = """Translate the following customer-service message into the language with ISO code "{lang}".

Rules:
- Keep numbers, times, dates, email addresses, links and list numbering exactly as they are.
- Keep line breaks.
- Reply with ONLY the translated message.

Message:
{text}"""


def is_ambiguous_language(text: str) -> bool:
    """Short replies ("ok", "2", "5pm") carry no language signal."""
    t = str(text or "").strip().lower()
    return not t or len(t) <= 3 or bool(_AMBIGUOUS.match(t))


def detect_language(text: str) -> Optional[str]:
    """Detect "es" or "en" from keywords, None when unclear."""
    if is_ambiguous_language(text):
        return None

    raw = str(text or "").lower()
    if re.search(r"[ñ¿¡]", raw):
        return "es"

    t = normalize_text(text)
    es = len(_ES_MARKERS.findall(t))
    en = len(_EN_MARKERS.findall(t))
    if es == en:
        return None
    return "es" if es > en else "en"


class ReplyTranslator:
    """Translate English reply templates into a thread's locked language."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize translator.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def translate(self, text: str, lang: str) -> str:
        """Translate text into ``lang``; returns the input unchanged on failure.

        Args:
            text: English reply
            lang: Target ISO language code

        Returns:
            Translated reply, or the original text
        """
        if not text or lang in ("en", "es"):
            return text

        if self._client is None and not settings.llm_enabled:
            logger.debug(f"No LLM configured, replying in English instead of {lang}")
            return text

        try:
            client = await self._get_client()
            response = await client.generate(
                prompt=TRANSLATE_PROMPT.format(lang=lang, text=text),
                max_tokens=600,
                temperature=0,
                use_fallback_on_error=True,
            )
        except ClaudeClientError as e:
            logger.warning(f"Reply translation to {lang} failed: {e}")
            return text

        translated = response.content.strip()
        return translated or text


# Singleton
_translator: Optional[ReplyTranslator] = None


def get_reply_translator() -> ReplyTranslator:
    """Get singleton ReplyTranslator."""
    global _translator
    if _translator is None:
        _translator = ReplyTranslator()
    return _translator
