"""Shared types for the booking core."""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.intelligence.slots.types import Daypart, Lang, TimeConstraint
from app.core.scheduling.intervals import Slot, WeeklyHours, resolve_timezone

__all__ = ["BookingConfig", "Daypart", "Lang", "SearchResult", "TimeConstraint"]


@dataclass
class BookingConfig:
    """Per-tenant booking configuration, resolved once per message."""

    tenant_id: str
    time_zone: str = field(default_factory=lambda: settings.booking_default_timezone)
    duration_min: int = field(default_factory=lambda: settings.booking_default_duration_min)
    buffer_min: int = field(default_factory=lambda: settings.booking_default_buffer_min)
    min_lead_minutes: int = field(default_factory=lambda: settings.booking_default_min_lead_minutes)
    hours: Optional[WeeklyHours] = None
    calendar_id: str = "primary"
    enabled: bool = True

    @property
    def tz(self) -> ZoneInfo:
        return resolve_timezone(self.time_zone)


@dataclass
class SearchResult:
    """Slots found by a search strategy.

    ``degraded`` is set when at least one queried window could not be
    verified against the calendar provider; such windows contribute no slots.
    """

    slots: list[Slot] = field(default_factory=list)
    degraded: bool = False
    day: Optional[date] = None

    @property
    def found(self) -> bool:
        return bool(self.slots)

    def __len__(self) -> int:
        return len(self.slots)
