"""Booking-intent detection module."""

from .types import IntentResult, IntentSource
from .rules import (
    DEFAULT_BOOKING_TERMS,
    normalize_text,
    matches_booking_intent,
    is_direct_booking_request,
    detect_purpose,
    detect_daypart,
    wants_to_cancel,
    wants_to_change_topic,
    wants_more_slots,
    wants_another_day,
    asks_for_hours,
    is_yes,
    is_no,
    is_courtesy,
)
from .classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

__all__ = [
    # Types
    "IntentResult",
    "IntentSource",
    # Rules
    "DEFAULT_BOOKING_TERMS",
    "normalize_text",
    "matches_booking_intent",
    "is_direct_booking_request",
    "detect_purpose",
    "detect_daypart",
    "wants_to_cancel",
    "wants_to_change_topic",
    "wants_more_slots",
    "wants_another_day",
    "asks_for_hours",
    "is_yes",
    "is_no",
    "is_courtesy",
    # Classifier
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
]
