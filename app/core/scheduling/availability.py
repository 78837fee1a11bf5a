"""
Availability engine.

Turns a business window plus busy intervals into free ranges, and slices
free ranges into bookable slots of fixed duration + buffer on a predictable
grid measured from local midnight.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Iterable, Optional, Protocol
from zoneinfo import ZoneInfo

from app.core.scheduling.intervals import Interval, Slot

logger = logging.getLogger(__name__)


class _HasBounds(Protocol):
    start: datetime
    end: datetime


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def merge_busy(busy: Iterable[_HasBounds]) -> list[Interval]:
    """Merge overlapping or adjacent busy blocks.

    Blocks are sorted by start; a block whose start is <= the current
    merged end extends it.
    """
    ordered = sorted(
        (Interval(b.start, b.end) for b in busy if b.start < b.end),
        key=lambda i: i.start,
    )

    merged: list[Interval] = []
    for block in ordered:
        if merged and block.start <= merged[-1].end:
            last = merged[-1]
            if block.end > last.end:
                merged[-1] = Interval(last.start, block.end)
        else:
            merged.append(block)
    return merged


def free_ranges(window: Interval, busy: Iterable[_HasBounds]) -> list[Interval]:
    """Subtract busy blocks from a window.

    Args:
        window: Business window
        busy: Busy blocks (anything with start/end instants)

    Returns:
        Sorted, disjoint free intervals clipped to the window
    """
    free: list[Interval] = []
    cursor = window.start

    for block in merge_busy(busy):
        if block.end <= window.start or block.start >= window.end:
            continue
        block_start = max(block.start, window.start)
        block_end = min(block.end, window.end)
        if block_start > cursor:
            free.append(Interval(cursor, block_start))
        cursor = max(cursor, block_end)

    if cursor < window.end:
        free.append(Interval(cursor, window.end))

    return free


def _ceil_to_minute(value: datetime) -> datetime:
    if value.second or value.microsecond:
        value = value.replace(second=0, microsecond=0) + timedelta(minutes=1)
    return value


def snap_to_grid(value: datetime, step_minutes: int, tz: ZoneInfo) -> datetime:
    """Round up to the next multiple of step_minutes from local midnight.

    Seconds are dropped first (rounding up, so the result never precedes
    the input).
    """
    local = _ceil_to_minute(value.astimezone(tz))
    midnight = datetime.combine(local.date(), time(0), tzinfo=tz)
    minutes = int((local - midnight).total_seconds() // 60)
    remainder = minutes % step_minutes
    if remainder:
        local = local + timedelta(minutes=step_minutes - remainder)
    return local


def slice_slots(
    ranges: Iterable[Interval],
    duration_min: int,
    buffer_min: int,
    min_lead_minutes: int,
    tz: ZoneInfo,
    now: Optional[datetime] = None,
) -> list[Slot]:
    """Slice free ranges into non-overlapping slots.

    For each range the cursor starts at max(range.start, now + lead),
    snapped up to the (duration + buffer) grid from local midnight. A slot
    [cursor, cursor + duration] is emitted only when
    cursor + duration + buffer <= range.end.

    Args:
        ranges: Free intervals
        duration_min: Slot length in minutes
        buffer_min: Gap required after each slot
        min_lead_minutes: Minimum minutes from now before a slot may start
        tz: Business timezone (grid origin and output zone)
        now: Current instant (defaults to real time)

    Returns:
        Chronological list of slots in the business timezone
    """
    if duration_min <= 0:
        raise ValueError("duration_min must be positive")
    if buffer_min < 0:
        raise ValueError("buffer_min must not be negative")

    step = duration_min + buffer_min
    duration = timedelta(minutes=duration_min)
    buffer = timedelta(minutes=buffer_min)
    earliest = (now or utcnow()) + timedelta(minutes=max(0, min_lead_minutes))

    slots: list[Slot] = []
    for free in ranges:
        cursor = snap_to_grid(max(free.start, earliest), step, tz)
        while cursor + duration + buffer <= free.end:
            slots.append(Slot(start=cursor, end=cursor + duration))
            cursor = cursor + timedelta(minutes=step)

    return slots


def is_past_slot(
    start: datetime,
    min_lead_minutes: int,
    now: Optional[datetime] = None,
) -> bool:
    """Check whether a start instant falls before now + lead time."""
    lead = max(0, min_lead_minutes or 0)
    return start < (now or utcnow()) + timedelta(minutes=lead)
