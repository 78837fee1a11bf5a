"""
Slot search strategies.

Read-only queries built on the availability engine:
- day search (optionally only slots after an instant)
- exact check of one requested start for tenants without business hours
- window-restricted search around a requested time
- nearest-to-target ordering and filters over an offered list
- morning/afternoon multi-day scan
- next day with any availability

Every strategy goes through the busy provider once per queried window. A
degraded busy answer contributes no slots and marks the result degraded.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.core.scheduling.availability import free_ranges, is_past_slot, slice_slots, utcnow
from app.core.scheduling.busy import BusyProvider, get_busy_adapter
from app.core.scheduling.intervals import Interval, Slot
from app.core.scheduling.types import BookingConfig, Daypart, SearchResult, TimeConstraint

logger = logging.getLogger(__name__)

NOON = time(12, 0)

# Default sub-window around a requested time for window searches
WINDOW_BEFORE = timedelta(hours=2)
WINDOW_AFTER = timedelta(hours=3)


# === Pure helpers over slot lists ===

def daypart_window(window: Interval, daypart: Daypart, tz: ZoneInfo) -> Optional[Interval]:
    """Restrict a business window to its morning (..noon) or afternoon (noon..) half."""
    noon = datetime.combine(window.start.astimezone(tz).date(), NOON, tzinfo=tz)
    if daypart == "morning":
        start, end = window.start, min(window.end, noon)
    else:
        start, end = max(window.start, noon), window.end
    if end <= start:
        return None
    return Interval(start, end)


def order_by_proximity(slots: list[Slot], target: datetime) -> list[Slot]:
    """Sort slots by absolute distance to target; ties keep chronological order."""
    return sorted(slots, key=lambda s: abs((s.start - target).total_seconds()))


def filter_near_time(
    slots: list[Slot],
    tz: ZoneInfo,
    at: time,
    window_minutes: int = 120,
    limit: int = 5,
) -> list[Slot]:
    """Closest slots to a local time of day on the first slot's day.

    Slots within ``window_minutes`` of the target are preferred; when none
    are, the closest ones overall are returned.
    """
    if not slots:
        return []

    day = slots[0].local_date(tz)
    target = datetime.combine(day, at, tzinfo=tz)
    ordered = order_by_proximity(slots, target)
    within = [s for s in ordered if abs((s.start - target).total_seconds()) <= window_minutes * 60]
    return (within or ordered)[:limit]


def filter_by_daypart(slots: list[Slot], tz: ZoneInfo, daypart: Daypart) -> list[Slot]:
    """Keep morning (< 12:00 local) or afternoon (>= 12:00 local) slots."""
    if daypart == "morning":
        return [s for s in slots if s.start.astimezone(tz).hour < 12]
    return [s for s in slots if s.start.astimezone(tz).hour >= 12]


def filter_by_constraint(
    slots: list[Slot],
    tz: ZoneInfo,
    constraint: TimeConstraint,
    limit: int = 5,
) -> list[Slot]:
    """Apply a soft time preference to an offered list.

    Filters that would leave nothing fall back to the unfiltered list, so a
    preference never turns a non-empty offer into an empty one.
    """
    if not slots:
        return []

    if constraint.kind == "earliest":
        return slots[:limit]

    if constraint.kind == "any_morning":
        return (filter_by_daypart(slots, tz, "morning") or slots)[:limit]

    if constraint.kind == "any_afternoon":
        return (filter_by_daypart(slots, tz, "afternoon") or slots)[:limit]

    if constraint.at is None:
        return slots[:limit]

    if constraint.kind == "around":
        return filter_near_time(slots, tz, constraint.at, window_minutes=150, limit=limit)

    target = datetime.combine(slots[0].local_date(tz), constraint.at, tzinfo=tz)
    if constraint.kind == "after":
        kept = [s for s in slots if s.start >= target]
    else:
        kept = [s for s in slots if s.start <= target]
    return (kept or slots)[:limit]


def window_around(target: datetime, business: Interval) -> Optional[Interval]:
    """Window from target - 2h to target + 3h, clipped to business hours."""
    return business.intersect(Interval(target - WINDOW_BEFORE, target + WINDOW_AFTER))


class SlotSearch:
    """
    Slot search strategies over one tenant calendar.

    Stateless apart from the injected busy provider; safe to share across
    conversations.
    """

    def __init__(self, busy_provider: Optional[BusyProvider] = None):
        """Initialize search.

        Args:
            busy_provider: Busy-block source (uses singleton adapter if not provided)
        """
        self._busy_provider = busy_provider

    def _get_busy_provider(self) -> BusyProvider:
        """Get busy provider."""
        if self._busy_provider is None:
            self._busy_provider = get_busy_adapter()
        return self._busy_provider

    # === Core ===

    async def search_window(
        self,
        config: BookingConfig,
        window: Interval,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        after: Optional[datetime] = None,
    ) -> SearchResult:
        """Free slots inside one window.

        Args:
            config: Tenant booking configuration
            window: Window to search (already clipped to business hours)
            now: Current instant
            limit: Maximum slots returned
            after: Only keep slots starting strictly after this instant

        Returns:
            SearchResult (degraded and empty when the provider was unreliable)
        """
        now = now or utcnow()
        earliest = now + timedelta(minutes=max(0, config.min_lead_minutes))
        if earliest >= window.end:
            return SearchResult()
        if window.start < earliest:
            window = Interval(earliest.replace(second=0, microsecond=0), window.end)

        busy = await self._get_busy_provider().get_busy(config.tenant_id, config.calendar_id, window)
        if busy.degraded:
            logger.warning(
                f"Availability unverified for tenant {config.tenant_id} "
                f"{window.start.isoformat()}..{window.end.isoformat()}: {busy.reason}"
            )
            return SearchResult(degraded=True)

        slots = slice_slots(
            free_ranges(window, busy.blocks),
            config.duration_min,
            config.buffer_min,
            config.min_lead_minutes,
            config.tz,
            now=now,
        )
        if after is not None:
            slots = [s for s in slots if s.start > after]
        if limit is not None:
            slots = slots[:limit]

        logger.debug(f"Window search tenant={config.tenant_id} slots={len(slots)}")
        return SearchResult(slots=slots, day=window.start.astimezone(config.tz).date())

    async def exact_search(
        self,
        config: BookingConfig,
        start: datetime,
        now: Optional[datetime] = None,
    ) -> SearchResult:
        """Check one requested start off the grid (tenants without business hours).

        The calendar is queried for [start, end + buffer]. The slot is
        returned only when that span is verified free.
        """
        now = now or utcnow()
        day = start.astimezone(config.tz).date()
        if is_past_slot(start, config.min_lead_minutes, now=now):
            return SearchResult(day=day)

        slot = Slot(start=start, end=start + timedelta(minutes=config.duration_min))
        window = Interval(start, slot.end + timedelta(minutes=max(0, config.buffer_min)))
        busy = await self._get_busy_provider().get_busy(config.tenant_id, config.calendar_id, window)
        if busy.degraded:
            logger.warning(f"Requested slot {start.isoformat()} unverified for tenant {config.tenant_id}: {busy.reason}")
            return SearchResult(degraded=True, day=day)
        if busy.is_busy:
            return SearchResult(day=day)
        return SearchResult(slots=[slot], day=day)

    # === Strategies ===

    async def day_search(
        self,
        config: BookingConfig,
        day: date,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        after: Optional[datetime] = None,
    ) -> SearchResult:
        """Slots for one local date within that weekday's business hours."""
        if config.hours is None:
            return SearchResult()
        window = config.hours.window_for(day, config.tz)
        if window is None:
            return SearchResult(day=day)

        result = await self.search_window(
            config,
            window,
            now=now,
            limit=limit or settings.booking_max_slots_offered,
            after=after,
        )
        result.day = day
        return result

    async def date_only_search(
        self,
        config: BookingConfig,
        day: date,
        now: Optional[datetime] = None,
        after: Optional[datetime] = None,
    ) -> SearchResult:
        """Short offer for a customer who named only a date."""
        return await self.day_search(
            config,
            day,
            now=now,
            limit=settings.booking_date_only_max_slots,
            after=after,
        )

    async def window_search(
        self,
        config: BookingConfig,
        target: datetime,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        """Slots around a requested instant, closest first.

        Searches [target - 2h, target + 3h] clipped to that day's business
        hours and orders results by distance to target.
        """
        if config.hours is None:
            return SearchResult()

        tz = config.tz
        day = target.astimezone(tz).date()
        business = config.hours.window_for(day, tz)
        window = window_around(target, business) if business else None
        if window is None:
            return SearchResult(day=day)

        result = await self.search_window(config, window, now=now)
        result.slots = order_by_proximity(result.slots, target)[
            : limit or settings.booking_max_slots_offered
        ]
        result.day = day
        return result

    async def daypart_scan(
        self,
        config: BookingConfig,
        daypart: Daypart,
        now: Optional[datetime] = None,
        days: Optional[int] = None,
        limit: Optional[int] = None,
        after: Optional[datetime] = None,
    ) -> SearchResult:
        """Scan forward day by day collecting morning or afternoon slots.

        Closed days are skipped. Stops once ``limit`` slots are collected.
        """
        if config.hours is None:
            return SearchResult()

        now = now or utcnow()
        tz = config.tz
        days = days or settings.booking_daypart_scan_days
        limit = limit or settings.booking_max_slots_offered
        start_day = (after or now).astimezone(tz).date()

        collected: list[Slot] = []
        degraded = False
        for offset in range(days):
            day = start_day + timedelta(days=offset)
            business = config.hours.window_for(day, tz)
            window = daypart_window(business, daypart, tz) if business else None
            if window is None:
                continue

            result = await self.search_window(
                config, window, now=now, limit=limit - len(collected), after=after
            )
            degraded = degraded or result.degraded
            collected.extend(result.slots)
            if len(collected) >= limit:
                break

        logger.debug(f"Daypart scan {daypart} tenant={config.tenant_id} slots={len(collected)}")
        return SearchResult(
            slots=collected[:limit],
            degraded=degraded,
            day=collected[0].local_date(tz) if collected else None,
        )

    async def next_available_day(
        self,
        config: BookingConfig,
        from_day: date,
        anchor: Optional[time] = None,
        daypart: Optional[Daypart] = None,
        now: Optional[datetime] = None,
        days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        """First open day after ``from_day`` that yields any slot.

        Args:
            config: Tenant booking configuration
            from_day: Last day already looked at (excluded)
            anchor: Local time of the original request; each day is searched
                around it instead of across the whole business window
            daypart: Restrict each day to its morning or afternoon half
            now: Current instant
            days: How many days to look ahead
            limit: Maximum slots returned

        Returns:
            SearchResult with ``day`` set to the day found
        """
        if config.hours is None:
            return SearchResult()

        tz = config.tz
        days = days or settings.booking_next_day_scan_days
        limit = limit or settings.booking_max_slots_offered

        degraded = False
        for offset in range(1, days + 1):
            day = from_day + timedelta(days=offset)
            window = config.hours.window_for(day, tz)
            if window is None:
                continue

            target: Optional[datetime] = None
            if anchor is not None:
                target = datetime.combine(day, anchor, tzinfo=tz)
                window = window_around(target, window)
            if window is not None and daypart:
                window = daypart_window(window, daypart, tz)
            if window is None:
                continue

            result = await self.search_window(config, window, now=now)
            degraded = degraded or result.degraded
            if result.found:
                slots = order_by_proximity(result.slots, target) if target else result.slots
                return SearchResult(slots=slots[:limit], degraded=degraded, day=day)

        return SearchResult(degraded=degraded)


# Singleton
_search: Optional[SlotSearch] = None


def get_slot_search() -> SlotSearch:
    """Get singleton SlotSearch."""
    global _search
    if _search is None:
        _search = SlotSearch()
    return _search
