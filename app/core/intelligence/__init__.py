"""
Intelligence Layer Module

Provides booking-intent detection, regex entity extraction and reply
language handling for the booking engine.

Usage:
    from app.core.intelligence import (
        classify_intent,
        extract_date_only_token,
        detect_language,
    )

    # Booking intent (rules first, Claude fallback when configured)
    result = await classify_intent("quiero agendar una cita")
    print(result.wants_booking)  # True

    # Entities
    day = extract_date_only_token("el martes", tz=ZoneInfo("America/New_York"))
    at = extract_time_only_token("a las 5pm")  # time(17, 0)

    # Language
    detect_language("hola, quiero una cita")  # "es"
"""

# Intent Detection
from app.core.intelligence.intent.types import IntentResult, IntentSource
from app.core.intelligence.intent.classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

# Entity Extraction
from app.core.intelligence.slots.types import (
    AllInOne,
    ContactInfo,
    Daypart,
    Lang,
    TimeConstraint,
)
from app.core.intelligence.slots.extractor import (
    extract_datetime_token,
    extract_date_only_token,
    extract_time_only_token,
    extract_time_constraint,
)

# Language
from app.core.intelligence.language import (
    ReplyTranslator,
    get_reply_translator,
    detect_language,
)

__all__ = [
    # Intent
    "IntentResult",
    "IntentSource",
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
    # Slots
    "AllInOne",
    "ContactInfo",
    "Daypart",
    "Lang",
    "TimeConstraint",
    "extract_datetime_token",
    "extract_date_only_token",
    "extract_time_only_token",
    "extract_time_constraint",
    # Language
    "ReplyTranslator",
    "get_reply_translator",
    "detect_language",
]
