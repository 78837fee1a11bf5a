"""Intent types for booking-intent detection."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class IntentSource(str, Enum):
    """Which signal produced the decision."""

    RULES = "rules"        # Tenant booking terms / direct-request keywords
    LLM = "llm"            # Claude fallback
    NONE = "none"          # Nothing conclusive


@dataclass
class IntentResult:
    """Result of booking-intent detection."""

    wants_booking: bool
    confidence: float  # 0.0 - 1.0

    # Appointment purpose if the message names one ("cita", "clase", ...)
    purpose: Optional[str] = None

    source: IntentSource = IntentSource.RULES

    # Raw LLM output for debugging
    raw_response: Optional[str] = None

    # Whether fallback model was used
    fallback_used: bool = False

    processing_time_ms: float = 0.0

    @property
    def is_high_confidence(self) -> bool:
        """Check if detection is high confidence."""
        return self.confidence >= 0.7

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "wants_booking": self.wants_booking,
            "confidence": self.confidence,
            "purpose": self.purpose,
            "source": self.source.value,
            "fallback_used": self.fallback_used,
            "processing_time_ms": self.processing_time_ms,
        }
