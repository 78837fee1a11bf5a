"""
Booking conversation state.

``BookingState`` is the per-thread record driven by the booking flow. Each
step only carries the fields that make sense for it (see STEP_FIELDS);
``evolve`` drops everything else, so a state can never hold, say, offered
slots while waiting for a yes/no answer. ``time_zone`` and ``lang`` are
sticky: set once by the hydrate step and never changed afterwards.

``ConversationContext`` wraps the booking state together with the
post-booking metadata used for idempotent follow-ups.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional

from app.core.scheduling.intervals import Slot, parse_iso, resolve_timezone

logger = logging.getLogger(__name__)


class InvalidBookingStateError(ValueError):
    """Stored booking state does not have a valid shape."""
    pass


class BookingStep(str, Enum):
    """Steps of the booking conversation."""

    IDLE = "idle"
    ASK_PURPOSE = "ask_purpose"
    ASK_DAYPART = "ask_daypart"
    OFFER_SLOTS = "offer_slots"
    ASK_CONTACT = "ask_contact"
    ASK_ALL = "ask_all"
    ASK_DATETIME = "ask_datetime"
    CONFIRM = "confirm"


STICKY_FIELDS = frozenset({"time_zone", "lang"})
IDENTITY_FIELDS = frozenset({"name", "email", "phone"})

# Soft context kept across most steps so short follow-ups can be resolved
_CONTEXT = frozenset({"purpose", "daypart", "date_only", "last_offered_date"})

STEP_FIELDS: dict[BookingStep, frozenset[str]] = {
    BookingStep.IDLE: frozenset({"purpose", "daypart", "date_only"}),
    BookingStep.ASK_PURPOSE: frozenset({"daypart", "date_only"}),
    BookingStep.ASK_DAYPART: frozenset({"purpose", "daypart", "date_only", "anchor_time"}),
    BookingStep.OFFER_SLOTS: _CONTEXT | {"slots", "anchor_time"},
    BookingStep.ASK_CONTACT: _CONTEXT | {"picked_start", "picked_end"},
    BookingStep.ASK_ALL: _CONTEXT | {"start_time", "end_time"},
    BookingStep.ASK_DATETIME: _CONTEXT,
    BookingStep.CONFIRM: _CONTEXT | {"start_time", "end_time"},
}

_CLEARABLE = (
    "purpose", "daypart", "date_only", "last_offered_date", "anchor_time", "slots",
    "start_time", "end_time", "picked_start", "picked_end",
)


def _cleared_value(name: str) -> Any:
    return () if name == "slots" else None


@dataclass(frozen=True)
class BookingState:
    """Booking state of one conversation thread."""

    step: BookingStep = BookingStep.IDLE

    # Sticky
    time_zone: Optional[str] = None
    lang: Optional[str] = None

    # Soft context
    purpose: Optional[str] = None
    daypart: Optional[str] = None
    date_only: Optional[date] = None
    last_offered_date: Optional[date] = None
    # Local time of an explicit request that had no exact match
    anchor_time: Optional[time] = None

    # Offer and selection
    slots: tuple[Slot, ...] = ()
    picked_start: Optional[datetime] = None
    picked_end: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    # Identity
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.step, BookingStep):
            object.__setattr__(self, "step", BookingStep(self.step))
        if not isinstance(self.slots, tuple):
            object.__setattr__(self, "slots", tuple(self.slots))
        allowed = STEP_FIELDS[self.step]
        for name in _CLEARABLE:
            if name not in allowed:
                object.__setattr__(self, name, _cleared_value(name))

    # === Transitions ===

    def evolve(self, **changes: Any) -> "BookingState":
        """Copy with changes; fields the target step does not carry are dropped.

        Raises:
            ValueError: When a sticky field would be overwritten
        """
        for name in STICKY_FIELDS & changes.keys():
            current = getattr(self, name)
            if current is not None and changes[name] != current:
                raise ValueError(f"{name} is fixed for this thread ({current!r})")
        return dataclasses.replace(self, **changes)

    def hydrated(self, time_zone: str, lang: Optional[str]) -> "BookingState":
        """Fill sticky fields that are not set yet."""
        return dataclasses.replace(
            self,
            time_zone=self.time_zone or time_zone,
            lang=self.lang or lang,
        )

    def reset(self, keep_context: bool = False) -> "BookingState":
        """Back to idle keeping sticky and identity fields.

        Args:
            keep_context: Also keep purpose/daypart/date (topic change)
        """
        if keep_context:
            return self.evolve(step=BookingStep.IDLE)
        return self.evolve(step=BookingStep.IDLE, purpose=None, daypart=None, date_only=None)

    # === Queries ===

    @property
    def is_active(self) -> bool:
        return self.step != BookingStep.IDLE

    @property
    def has_identity(self) -> bool:
        return bool(self.name and self.email)

    @property
    def context_date(self) -> Optional[date]:
        """Date a short follow-up ("5pm", "another day") refers to."""
        if self.date_only:
            return self.date_only
        if self.last_offered_date:
            return self.last_offered_date
        if self.slots and self.time_zone:
            return self.slots[0].local_date(resolve_timezone(self.time_zone))
        return None

    # === Serialization ===

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary."""
        return {
            "step": self.step.value,
            "time_zone": self.time_zone,
            "lang": self.lang,
            "purpose": self.purpose,
            "daypart": self.daypart,
            "date_only": self.date_only.isoformat() if self.date_only else None,
            "last_offered_date": self.last_offered_date.isoformat() if self.last_offered_date else None,
            "anchor_time": self.anchor_time.strftime("%H:%M") if self.anchor_time else None,
            "slots": [s.to_dict() for s in self.slots],
            "picked_start": self.picked_start.isoformat() if self.picked_start else None,
            "picked_end": self.picked_end.isoformat() if self.picked_end else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "BookingState":
        """Validate and build a state read from storage.

        Raises:
            InvalidBookingStateError: When the shape is invalid
        """
        if not isinstance(data, dict):
            raise InvalidBookingStateError(f"Booking state must be an object, got {type(data).__name__}")

        try:
            step = BookingStep(data.get("step") or BookingStep.IDLE.value)
        except ValueError:
            raise InvalidBookingStateError(f"Unknown booking step: {data.get('step')!r}")

        time_zone = _opt_str(data, "time_zone")
        tz = resolve_timezone(time_zone)

        lang = _opt_str(data, "lang")
        daypart = _opt_str(data, "daypart")
        if daypart not in (None, "morning", "afternoon"):
            raise InvalidBookingStateError(f"Invalid daypart: {daypart!r}")

        raw_slots = data.get("slots") or []
        if not isinstance(raw_slots, list):
            raise InvalidBookingStateError("slots must be a list")
        try:
            slots = tuple(Slot.from_dict(s, tz) for s in raw_slots)
        except (AttributeError, ValueError) as e:
            raise InvalidBookingStateError(f"Invalid slot in state: {e}")

        start_time = _opt_datetime(data, "start_time", tz)
        end_time = _opt_datetime(data, "end_time", tz)
        if start_time and end_time and not start_time < end_time:
            raise InvalidBookingStateError("start_time must precede end_time")

        picked_start = _opt_datetime(data, "picked_start", tz)
        picked_end = _opt_datetime(data, "picked_end", tz)
        _require_step_fields(step, slots, picked_start, picked_end, start_time, end_time)

        return cls(
            step=step,
            time_zone=time_zone,
            lang=lang,
            purpose=_opt_str(data, "purpose"),
            daypart=daypart,
            date_only=_opt_date(data, "date_only"),
            last_offered_date=_opt_date(data, "last_offered_date"),
            anchor_time=_opt_time(data, "anchor_time"),
            slots=slots,
            picked_start=picked_start,
            picked_end=picked_end,
            start_time=start_time,
            end_time=end_time,
            name=_opt_str(data, "name"),
            email=_opt_str(data, "email"),
            phone=_opt_str(data, "phone"),
        )


def _require_step_fields(
    step: BookingStep,
    slots: tuple,
    picked_start: Optional[datetime],
    picked_end: Optional[datetime],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> None:
    """Steps that act on a slot must carry it."""
    if step == BookingStep.OFFER_SLOTS and not slots:
        raise InvalidBookingStateError("offer_slots state has no slots")
    if step == BookingStep.ASK_CONTACT and not (picked_start and picked_end):
        raise InvalidBookingStateError("ask_contact state has no picked slot")
    if step == BookingStep.CONFIRM and not (start_time and end_time):
        raise InvalidBookingStateError("confirm state has no start_time/end_time")


def _opt_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidBookingStateError(f"{key} must be a string")
    return value


def _opt_date(data: dict, key: str) -> Optional[date]:
    value = _opt_str(data, key)
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidBookingStateError(f"{key} is not an ISO date: {value!r}")


def _opt_time(data: dict, key: str) -> Optional[time]:
    value = _opt_str(data, key)
    if value is None:
        return None
    try:
        return time.fromisoformat(value)
    except ValueError:
        raise InvalidBookingStateError(f"{key} is not a time of day: {value!r}")


def _opt_datetime(data: dict, key: str, tz) -> Optional[datetime]:
    value = _opt_str(data, key)
    if value is None:
        return None
    parsed = parse_iso(value, tz)
    if parsed is None:
        raise InvalidBookingStateError(f"{key} is not an ISO instant: {value!r}")
    return parsed


@dataclass
class ConversationContext:
    """Booking state plus post-booking metadata for one thread."""

    booking: BookingState = field(default_factory=BookingState)
    last_appointment_id: Optional[str] = None
    booking_completed: bool = False
    booking_completed_at: Optional[datetime] = None
    booking_last_done_at: Optional[datetime] = None
    booking_last_event_link: Optional[str] = None
    booking_last_touch_at: Optional[datetime] = None

    def apply(self, state: BookingState, patch: Optional[dict] = None) -> "ConversationContext":
        """New context with the given booking state and metadata patch."""
        return dataclasses.replace(self, booking=state, **(patch or {}))

    def to_dict(self) -> dict:
        """Convert to a JSON-safe dictionary."""
        return {
            "booking": self.booking.to_dict(),
            "last_appointment_id": self.last_appointment_id,
            "booking_completed": self.booking_completed,
            "booking_completed_at": _iso(self.booking_completed_at),
            "booking_last_done_at": _iso(self.booking_last_done_at),
            "booking_last_event_link": self.booking_last_event_link,
            "booking_last_touch_at": _iso(self.booking_last_touch_at),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ConversationContext":
        """Build from storage.

        An invalid booking state is logged and reset to idle; its sticky
        fields are kept when they can be read.
        """
        if not isinstance(data, dict):
            return cls()

        raw_booking = data.get("booking") or {}
        try:
            booking = BookingState.from_dict(raw_booking)
        except InvalidBookingStateError as e:
            logger.warning(f"Invalid stored booking state, resetting to idle: {e}")
            sticky = raw_booking if isinstance(raw_booking, dict) else {}
            booking = BookingState(
                time_zone=sticky.get("time_zone") if isinstance(sticky.get("time_zone"), str) else None,
                lang=sticky.get("lang") if isinstance(sticky.get("lang"), str) else None,
            )

        return cls(
            booking=booking,
            last_appointment_id=data.get("last_appointment_id"),
            booking_completed=bool(data.get("booking_completed")),
            booking_completed_at=parse_iso(data.get("booking_completed_at")),
            booking_last_done_at=parse_iso(data.get("booking_last_done_at")),
            booking_last_event_link=data.get("booking_last_event_link"),
            booking_last_touch_at=parse_iso(data.get("booking_last_touch_at")),
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class StepResult:
    """Outcome of one booking step.

    ``handled`` is False when the message should go back to the outer
    router (topic change, nothing booking-related).
    """

    handled: bool
    reply: Optional[str] = None
    state: Optional[BookingState] = None
    context_patch: dict = field(default_factory=dict)

    @property
    def patch(self) -> dict:
        """Serialized patch for the conversation context."""
        data: dict = {}
        if self.state is not None:
            data["booking"] = self.state.to_dict()
        for key, value in self.context_patch.items():
            data[key] = value.isoformat() if isinstance(value, datetime) else value
        return data
