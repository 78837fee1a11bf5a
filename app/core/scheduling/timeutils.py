"""
Time helpers for validating a customer-requested appointment time.

A requested time can fail in three user-correctable ways: it cannot be
parsed, it starts before now + lead time (PAST_SLOT), or it falls outside
the tenant's business hours. None of them are system failures.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from app.core.scheduling.availability import is_past_slot
from app.core.scheduling.intervals import Interval, WeeklyHours, parse_hhmm

logger = logging.getLogger(__name__)

PAST_SLOT = "PAST_SLOT"

_DATETIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[ T](\d{1,2}:\d{2})$")

HoursReason = Literal["closed", "outside", "invalid", "invalid_hours"]


class PastSlotError(ValueError):
    """Requested start is earlier than now + minimum lead time."""

    code = PAST_SLOT

    def __init__(self, start: datetime):
        super().__init__(f"Requested start {start.isoformat()} is in the past")
        self.start = start


def parse_datetime_explicit(
    token: str,
    tz: ZoneInfo,
    duration_min: int,
    min_lead_minutes: int,
    now: Optional[datetime] = None,
) -> Optional[Interval]:
    """Parse a "YYYY-MM-DD HH:mm" token into an appointment interval.

    Args:
        token: Date-time token in the business's local time
        tz: Business timezone
        duration_min: Appointment length in minutes
        min_lead_minutes: Minimum lead time
        now: Current instant (defaults to real time)

    Returns:
        Interval, or None when the token cannot be parsed

    Raises:
        PastSlotError: The parsed start is before now + lead time
    """
    m = _DATETIME_RE.match(str(token or "").strip())
    if not m:
        return None

    hhmm = parse_hhmm(m.group(2))
    if hhmm is None:
        return None

    try:
        day = datetime.strptime(m.group(1), "%Y-%m-%d").date()
    except ValueError:
        return None

    start = datetime.combine(day, hhmm, tzinfo=tz)
    if is_past_slot(start, min_lead_minutes, now=now):
        raise PastSlotError(start)

    return Interval(start, start + timedelta(minutes=duration_min))


@dataclass
class HoursCheck:
    """Result of a business-hours check."""

    ok: bool
    reason: Optional[HoursReason] = None
    window: Optional[Interval] = None

    def __bool__(self) -> bool:
        return self.ok


def is_within_business_hours(
    hours: Optional[WeeklyHours],
    start: datetime,
    end: datetime,
    tz: ZoneInfo,
) -> HoursCheck:
    """Check that [start, end] sits inside that local day's business window.

    Tenants without configured hours accept any time.

    Returns:
        HoursCheck; on "outside" the business window for that day is attached
    """
    if hours is None:
        return HoursCheck(ok=True)

    if start.tzinfo is None or end.tzinfo is None or not start < end:
        return HoursCheck(ok=False, reason="invalid")

    if not hours.is_open_any_day():
        return HoursCheck(ok=False, reason="invalid_hours")

    local_start = start.astimezone(tz)
    window = hours.window_for(local_start.date(), tz)
    if window is None:
        return HoursCheck(ok=False, reason="closed")

    if start >= window.start and end <= window.end:
        return HoursCheck(ok=True)

    return HoursCheck(ok=False, reason="outside", window=window)
