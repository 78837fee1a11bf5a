"""
Busy-block adapter.

Normalizes a calendar provider's free/busy response into canonical busy
intervals for one calendar and one query window. Provider failures never
raise: they produce an empty, degraded result that callers must read as
"cannot prove unavailability", not as "free".
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from app.core.scheduling.calendar_client import (
    CalendarError,
    GoogleCalendarClient,
    get_calendar_client,
)
from app.core.scheduling.intervals import Interval, parse_iso

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_ID = "primary"


class InvalidWindowError(ValueError):
    """Raised when a busy query window is malformed."""
    pass


@dataclass(frozen=True)
class BusyBlock:
    """A busy interval as reported by the provider."""

    start: datetime
    end: datetime

    def as_interval(self) -> Interval:
        return Interval(self.start, self.end)


@dataclass
class BusyResult:
    """Busy blocks for one window, tagged when the provider was unreliable."""

    blocks: list[BusyBlock] = field(default_factory=list)
    degraded: bool = False
    reason: Optional[str] = None

    @property
    def is_busy(self) -> bool:
        return bool(self.blocks)

    @classmethod
    def degraded_result(cls, reason: str) -> "BusyResult":
        return cls(blocks=[], degraded=True, reason=reason)


class BusyProvider(Protocol):
    """Anything that can answer busy queries (real adapter or test double)."""

    async def get_busy(
        self,
        tenant_id: str,
        calendar_id: str,
        window: Interval,
    ) -> BusyResult: ...


def extract_busy_blocks(response: Any) -> list[BusyBlock]:
    """Pull busy blocks out of a freeBusy response.

    Reads calendars.primary.busy, then the first calendar in the response,
    then a top-level "busy" list. Entries without a parseable start and end,
    or with end <= start, are dropped.

    Args:
        response: Raw provider response

    Returns:
        List of busy blocks
    """
    if not isinstance(response, dict):
        return []

    raw: Any = None
    calendars = response.get("calendars")
    if isinstance(calendars, dict) and calendars:
        primary = calendars.get("primary")
        if isinstance(primary, dict) and isinstance(primary.get("busy"), list):
            raw = primary["busy"]
        else:
            first = next(iter(calendars.values()))
            if isinstance(first, dict) and isinstance(first.get("busy"), list):
                raw = first["busy"]

    if raw is None and isinstance(response.get("busy"), list):
        raw = response["busy"]

    blocks: list[BusyBlock] = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        start = parse_iso(item.get("start"))
        end = parse_iso(item.get("end"))
        if start is None or end is None or end <= start:
            continue
        blocks.append(BusyBlock(start=start, end=end))

    return blocks


def calendar_errors_in(response: Any) -> list[str]:
    """Per-calendar error reasons reported inside a 200 freeBusy response."""
    reasons: list[str] = []
    calendars = response.get("calendars") if isinstance(response, dict) else None
    if isinstance(calendars, dict):
        for cal in calendars.values():
            for err in (cal or {}).get("errors", []) or []:
                reasons.append(str(err.get("reason", "unknown")))
    return reasons


class BusyBlockAdapter:
    """
    Calendar-provider binding for busy queries.

    Degradation rules:
    - not connected / auth failure -> degraded
    - provider error / 5xx -> degraded
    - timeout -> degraded
    - per-calendar errors inside a 200 response -> degraded
    """

    def __init__(self, calendar_client: Optional[GoogleCalendarClient] = None):
        """Initialize adapter.

        Args:
            calendar_client: Provider client (uses singleton if not provided)
        """
        self._calendar_client = calendar_client

    def _get_calendar_client(self) -> GoogleCalendarClient:
        """Get calendar client."""
        if self._calendar_client is None:
            self._calendar_client = get_calendar_client()
        return self._calendar_client

    async def get_busy(
        self,
        tenant_id: str,
        calendar_id: str,
        window: Interval,
    ) -> BusyResult:
        """Get busy blocks for a calendar within a window.

        Args:
            tenant_id: Tenant identifier
            calendar_id: Calendar identifier
            window: Query window

        Returns:
            BusyResult (degraded on any provider problem)

        Raises:
            InvalidWindowError: If the window is not an Interval
        """
        if not isinstance(window, Interval):
            raise InvalidWindowError(f"Busy window must be an Interval, got {type(window).__name__}")

        client = self._get_calendar_client()

        try:
            response = await client.freebusy(
                tenant_id=tenant_id,
                calendar_id=calendar_id or DEFAULT_CALENDAR_ID,
                time_min=window.start,
                time_max=window.end,
            )
        except CalendarError as e:
            logger.warning(f"Busy query degraded for tenant {tenant_id}: {e.code} {e}")
            return BusyResult.degraded_result(e.code)

        errors = calendar_errors_in(response)
        if errors:
            logger.warning(f"Busy query degraded for tenant {tenant_id}: calendar errors {errors}")
            return BusyResult.degraded_result("CALENDAR_ERRORS")

        blocks = extract_busy_blocks(response)
        logger.debug(
            f"Busy query tenant={tenant_id} window={window.start.isoformat()}..{window.end.isoformat()} "
            f"blocks={len(blocks)}"
        )
        return BusyResult(blocks=blocks)


# Singleton
_adapter: Optional[BusyBlockAdapter] = None


def get_busy_adapter() -> BusyBlockAdapter:
    """Get singleton BusyBlockAdapter."""
    global _adapter
    if _adapter is None:
        _adapter = BusyBlockAdapter()
    return _adapter
