"""
Interval model.

Primitive time types shared by the availability engine, the slot search
strategies and the booking state machine: half-open instants intervals,
offered slots and the weekly business-hours table.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings

logger = logging.getLogger(__name__)


WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# Aliases accepted in stored business hours (English and Spanish)
_WEEKDAY_ALIASES: dict[str, str] = {
    "mon": "mon", "monday": "mon", "lunes": "mon",
    "tue": "tue", "tues": "tue", "tuesday": "tue", "martes": "tue",
    "wed": "wed", "weds": "wed", "wednesday": "wed", "miercoles": "wed", "miércoles": "wed",
    "thu": "thu", "thur": "thu", "thurs": "thu", "thursday": "thu", "jueves": "thu",
    "fri": "fri", "friday": "fri", "viernes": "fri",
    "sat": "sat", "saturday": "sat", "sabado": "sat", "sábado": "sat",
    "sun": "sun", "sunday": "sun", "domingo": "sun",
}

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_RANGE_RE = re.compile(r"^(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})$")


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to the configured default.

    Args:
        name: Timezone name (e.g. "America/New_York")

    Returns:
        ZoneInfo instance
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {name!r}, using {settings.booking_default_timezone}")
    return ZoneInfo(settings.booking_default_timezone)


def parse_hhmm(value: Optional[str]) -> Optional[time]:
    """Parse "H:MM" / "HH:MM" into a time, or None when invalid."""
    m = _HHMM_RE.match(str(value or "").strip())
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def weekday_key(value: date) -> str:
    """Map a date (or datetime) to its weekday key, "mon".."sun"."""
    return WEEKDAY_KEYS[value.weekday()]


def parse_iso(value: Any, tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    """Parse an ISO-8601 instant; naive values are read in ``tz``.

    Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        raw = str(value or "").strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz or resolve_timezone(None))
    return dt


@dataclass(frozen=True)
class Interval:
    """Half-open interval [start, end) between two timezone-aware instants."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Interval bounds must be timezone-aware")
        if not self.start < self.end:
            raise ValueError(f"Interval start must precede end: {self.start} >= {self.end}")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "Interval") -> Optional["Interval"]:
        """Return the overlap with another interval, or None."""
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if end <= start:
            return None
        return Interval(start, end)

    def astimezone(self, tz: ZoneInfo) -> "Interval":
        return Interval(self.start.astimezone(tz), self.end.astimezone(tz))


@dataclass(frozen=True)
class Slot:
    """A candidate or offered bookable interval."""

    start: datetime
    end: datetime

    @property
    def start_iso(self) -> str:
        return self.start.isoformat()

    @property
    def end_iso(self) -> str:
        return self.end.isoformat()

    def as_interval(self) -> Interval:
        return Interval(self.start, self.end)

    def local_date(self, tz: ZoneInfo) -> date:
        return self.start.astimezone(tz).date()

    def local_hhmm(self, tz: ZoneInfo) -> str:
        return self.start.astimezone(tz).strftime("%H:%M")

    @classmethod
    def from_dict(cls, data: dict, tz: Optional[ZoneInfo] = None) -> "Slot":
        """Create from a stored dict ({"start", "end"} ISO strings)."""
        start = parse_iso(data.get("start", data.get("startISO")), tz)
        end = parse_iso(data.get("end", data.get("endISO")), tz)
        if start is None or end is None or not start < end:
            raise ValueError(f"Invalid slot: {data!r}")
        return cls(start=start, end=end)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"start": self.start_iso, "end": self.end_iso}


@dataclass(frozen=True)
class DayHours:
    """Opening and closing local time for one weekday."""

    start: time
    end: time

    def __post_init__(self) -> None:
        if not self.start < self.end:
            raise ValueError("Business hours must open before they close")

    def window(self, day: date, tz: ZoneInfo) -> Interval:
        """Business window for a given local date as an instants interval."""
        return Interval(
            datetime.combine(day, self.start, tzinfo=tz),
            datetime.combine(day, self.end, tzinfo=tz),
        )

    def to_dict(self) -> dict:
        return {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")}


class WeeklyHours:
    """
    Weekly business-hours table.

    Maps each weekday key to a DayHours, or None when closed that day.
    Overnight spans are not representable.
    """

    def __init__(self, days: Optional[dict[str, Optional[DayHours]]] = None):
        self._days: dict[str, Optional[DayHours]] = {key: None for key in WEEKDAY_KEYS}
        for key, hours in (days or {}).items():
            if key not in self._days:
                raise ValueError(f"Unknown weekday key: {key!r}")
            self._days[key] = hours

    def for_date(self, day: date) -> Optional[DayHours]:
        """Hours for a local date, None when closed."""
        return self._days[weekday_key(day)]

    def window_for(self, day: date, tz: ZoneInfo) -> Optional[Interval]:
        """Business window for a local date, None when closed."""
        hours = self.for_date(day)
        return hours.window(day, tz) if hours else None

    def is_open_any_day(self) -> bool:
        return any(self._days.values())

    def __getitem__(self, key: str) -> Optional[DayHours]:
        return self._days[key]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, WeeklyHours) and self._days == other._days

    def __repr__(self) -> str:
        return f"WeeklyHours({self.to_dict()!r})"

    def to_dict(self) -> dict:
        return {key: (h.to_dict() if h else None) for key, h in self._days.items()}

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["WeeklyHours"]:
        """Normalize stored business hours.

        Accepts:
        - "09:00-17:00" (Monday to Friday, weekend closed)
        - a mapping of day aliases (mon, monday, lunes, ...) to
          {"start", "end"}, {"open", "close"} or a two-item list

        Returns:
            WeeklyHours, or None when nothing usable is configured
        """
        if not raw:
            return None

        if isinstance(raw, str):
            m = _RANGE_RE.match(raw.strip())
            if not m:
                return None
            start, end = parse_hhmm(m.group(1)), parse_hhmm(m.group(2))
            if not start or not end or not start < end:
                return None
            weekday = DayHours(start, end)
            return cls({key: weekday for key in WEEKDAY_KEYS[:5]})

        if not isinstance(raw, dict):
            return None

        days: dict[str, Optional[DayHours]] = {}
        for key, value in raw.items():
            day_key = _WEEKDAY_ALIASES.get(str(key).strip().lower())
            if day_key:
                days[day_key] = _normalize_day(value)

        hours = cls(days)
        return hours if hours.is_open_any_day() else None


def _normalize_day(value: Any) -> Optional[DayHours]:
    if not value:
        return None

    start_raw = end_raw = None
    if isinstance(value, dict):
        start_raw = value.get("start") or value.get("open")
        end_raw = value.get("end") or value.get("close")
    elif isinstance(value, (list, tuple)) and len(value) >= 2:
        start_raw, end_raw = value[0], value[1]

    start, end = parse_hhmm(start_raw), parse_hhmm(end_raw)
    if not start or not end or not start < end:
        return None
    return DayHours(start, end)
