"""
Booking commit protocol.

Turns a chosen slot plus validated identity into a confirmed calendar event:

1. Reject past slots before anything is written; a retried webhook for an
   already confirmed booking still gets its stored link.
2. Upsert a pending appointment keyed by (tenant, channel, phone, start).
   Already confirmed -> return the stored link, no second event.
3. Reject times outside business hours.
4. Take the per-slot lock, re-check the calendar for [start, end + buffer].
   A degraded answer never confirms: verified alternatives are offered.
5. Create the event; success needs both an event id and a link.
6. Busy slot -> same-day alternatives, closest first, with the record left
   pending so the customer can pick again. Only a busy slot with no
   alternative marks the record failed. Losing the slot lock never
   persists anything: the lock holder decides the row.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from app.config import settings
from app.core.scheduling.availability import is_past_slot, utcnow
from app.core.scheduling.busy import BusyProvider, get_busy_adapter
from app.core.scheduling.calendar_client import (
    CalendarEvent,
    GoogleCalendarClient,
    get_calendar_client,
)
from app.core.scheduling.intervals import Interval, Slot
from app.core.scheduling.repository import (
    AppointmentRecord,
    AppointmentRepository,
    get_appointment_repository,
)
from app.core.scheduling.search import SlotSearch, order_by_proximity
from app.core.scheduling.timeutils import PAST_SLOT, is_within_business_hours
from app.core.scheduling.types import BookingConfig
from app.infra.redis import SlotLockStore, get_slot_lock_store

logger = logging.getLogger(__name__)


class CommitStatus(str, Enum):
    """Outcome codes of a commit attempt."""

    CONFIRMED = "CONFIRMED"
    ALREADY_CONFIRMED = "ALREADY_CONFIRMED"
    UNVERIFIED = "UNVERIFIED"                      # Provider degraded, nothing decided
    SLOT_BUSY = "SLOT_BUSY"
    PAST_SLOT = PAST_SLOT
    OUTSIDE_BUSINESS_HOURS = "OUTSIDE_BUSINESS_HOURS"
    CREATE_EVENT_FAILED = "CREATE_EVENT_FAILED"
    GOOGLE_ERROR = "GOOGLE_ERROR"


# Provider error codes that map onto the closed taxonomy as-is
_PROVIDER_CODES = {
    "SLOT_BUSY": CommitStatus.SLOT_BUSY,
    "CREATE_EVENT_FAILED": CommitStatus.CREATE_EVENT_FAILED,
}


@dataclass
class CommitRequest:
    """Everything needed to book one slot."""

    tenant_id: str
    channel: str
    name: str
    start: datetime
    end: datetime
    email: Optional[str] = None
    # Idempotency key part: the collected phone, or the channel contact id
    phone: str = ""


@dataclass
class CommitOutcome:
    """Result of the commit protocol."""

    status: CommitStatus
    appointment_id: Optional[str] = None
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    alternatives: list[Slot] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (CommitStatus.CONFIRMED, CommitStatus.ALREADY_CONFIRMED)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "ok": self.ok,
            "appointment_id": self.appointment_id,
            "event_id": self.event_id,
            "event_link": self.event_link,
            "alternatives": [s.to_dict() for s in self.alternatives],
        }


class BookingCommitter:
    """
    Idempotent commit of a booking to the appointment table and calendar.

    Collaborators are injected for testing and default to the module
    singletons.
    """

    def __init__(
        self,
        repository: Optional[AppointmentRepository] = None,
        calendar_client: Optional[GoogleCalendarClient] = None,
        busy_provider: Optional[BusyProvider] = None,
        slot_search: Optional[SlotSearch] = None,
        lock_store: Optional[SlotLockStore] = None,
    ):
        self._repository = repository
        self._calendar_client = calendar_client
        self._busy_provider = busy_provider
        self._slot_search = slot_search
        self._lock_store = lock_store

    def _get_repository(self) -> AppointmentRepository:
        if self._repository is None:
            self._repository = get_appointment_repository()
        return self._repository

    def _get_calendar_client(self) -> GoogleCalendarClient:
        if self._calendar_client is None:
            self._calendar_client = get_calendar_client()
        return self._calendar_client

    def _get_busy_provider(self) -> BusyProvider:
        if self._busy_provider is None:
            self._busy_provider = get_busy_adapter()
        return self._busy_provider

    def _get_slot_search(self) -> SlotSearch:
        if self._slot_search is None:
            self._slot_search = SlotSearch(busy_provider=self._get_busy_provider())
        return self._slot_search

    async def _get_lock_store(self) -> SlotLockStore:
        if self._lock_store is None:
            self._lock_store = await get_slot_lock_store()
        return self._lock_store

    async def commit(
        self,
        request: CommitRequest,
        config: BookingConfig,
        now: Optional[datetime] = None,
    ) -> CommitOutcome:
        """
        Run the commit protocol for one slot.

        Args:
            request: Identity and chosen slot
            config: Tenant booking configuration
            now: Current instant

        Returns:
            CommitOutcome
        """
        now = now or utcnow()
        repository = self._get_repository()

        if is_past_slot(request.start, config.min_lead_minutes, now=now):
            existing = await repository.find_appointment(
                request.tenant_id, request.channel, request.phone, request.start
            )
            if existing is not None and existing.is_confirmed:
                return _already_confirmed(existing)
            logger.info(f"Commit rejected, slot {request.start.isoformat()} is in the past")
            return CommitOutcome(
                status=CommitStatus.PAST_SLOT,
                appointment_id=existing.id if existing else None,
            )

        record = await repository.upsert_pending_appointment(
            tenant_id=request.tenant_id,
            channel=request.channel,
            customer_name=request.name,
            customer_phone=request.phone,
            customer_email=request.email,
            start_time=request.start,
            end_time=request.end,
        )

        if record.is_confirmed:
            return _already_confirmed(record)

        hours_check = is_within_business_hours(config.hours, request.start, request.end, config.tz)
        if not hours_check:
            return await self._fail(record.id, CommitStatus.OUTSIDE_BUSINESS_HOURS)

        if not settings.booking_slot_lock_enabled:
            return await self._commit_checked(request, config, record.id, now)

        lock_store = await self._get_lock_store()
        # Same instant, same key, whatever offset the caller used
        start_iso = request.start.astimezone(timezone.utc).isoformat()
        token = await lock_store.acquire(request.tenant_id, config.calendar_id, start_iso)
        if token is None:
            logger.info(f"Slot {start_iso} locked by another commit, appointment {record.id} left pending")
            alternatives = await self._alternatives(config, request.start, now, exclude=request.start)
            return CommitOutcome(
                status=CommitStatus.SLOT_BUSY,
                appointment_id=record.id,
                alternatives=alternatives,
            )

        try:
            return await self._commit_checked(request, config, record.id, now)
        finally:
            await lock_store.release(request.tenant_id, config.calendar_id, start_iso, token)

    async def _commit_checked(
        self,
        request: CommitRequest,
        config: BookingConfig,
        appointment_id: str,
        now: datetime,
    ) -> CommitOutcome:
        """Re-check availability and create the event (under the slot lock)."""
        window = Interval(request.start, request.end + timedelta(minutes=max(0, config.buffer_min)))
        busy = await self._get_busy_provider().get_busy(config.tenant_id, config.calendar_id, window)

        if busy.degraded:
            logger.warning(
                f"Commit of appointment {appointment_id} unverified ({busy.reason}), "
                f"offering verified alternatives"
            )
            alternatives = await self._alternatives(config, request.start, now, exclude=request.start)
            return CommitOutcome(
                status=CommitStatus.UNVERIFIED,
                appointment_id=appointment_id,
                alternatives=alternatives,
            )

        if busy.is_busy:
            return await self._slot_busy(appointment_id, config, request.start, now)

        event = CalendarEvent(
            summary=f"Booking: {request.name}",
            description=_event_description(request),
            start=request.start,
            end=request.end,
            time_zone=config.time_zone,
        )
        result = await self._get_calendar_client().create_event(config.tenant_id, config.calendar_id, event)

        if not result.success:
            status = _PROVIDER_CODES.get(result.error_code or "", CommitStatus.GOOGLE_ERROR)
            if status == CommitStatus.SLOT_BUSY:
                return await self._slot_busy(appointment_id, config, request.start, now)
            return await self._fail(appointment_id, status)

        if not result.event_id or not result.html_link:
            logger.error(f"Provider created event without id/link for appointment {appointment_id}")
            return await self._fail(appointment_id, CommitStatus.CREATE_EVENT_FAILED)

        await self._get_repository().mark_confirmed(appointment_id, result.event_id, result.html_link)
        return CommitOutcome(
            status=CommitStatus.CONFIRMED,
            appointment_id=appointment_id,
            event_id=result.event_id,
            event_link=result.html_link,
        )

    async def _slot_busy(
        self,
        appointment_id: str,
        config: BookingConfig,
        start: datetime,
        now: datetime,
    ) -> CommitOutcome:
        """Offer same-day alternatives; the record fails only when there are none."""
        alternatives = await self._alternatives(config, start, now)
        if not alternatives:
            return await self._fail(appointment_id, CommitStatus.SLOT_BUSY)

        logger.info(
            f"Slot {start.isoformat()} busy, appointment {appointment_id} kept pending "
            f"with {len(alternatives)} alternatives"
        )
        return CommitOutcome(
            status=CommitStatus.SLOT_BUSY,
            appointment_id=appointment_id,
            alternatives=alternatives,
        )

    async def _fail(self, appointment_id: str, status: CommitStatus) -> CommitOutcome:
        await self._get_repository().mark_failed(appointment_id, status.value)
        return CommitOutcome(status=status, appointment_id=appointment_id)

    async def _alternatives(
        self,
        config: BookingConfig,
        start: datetime,
        now: datetime,
        exclude: Optional[datetime] = None,
    ) -> list[Slot]:
        """Verified free slots on the same local day, closest to ``start`` first."""
        day = start.astimezone(config.tz).date()
        result = await self._get_slot_search().day_search(config, day, now=now, limit=50)
        if result.degraded:
            return []
        slots = [s for s in result.slots if exclude is None or s.start != exclude]
        return order_by_proximity(slots, start)[: settings.booking_max_slots_offered]


def _already_confirmed(record: AppointmentRecord) -> CommitOutcome:
    logger.info(f"Appointment {record.id} already confirmed, returning stored link")
    return CommitOutcome(
        status=CommitStatus.ALREADY_CONFIRMED,
        appointment_id=record.id,
        event_id=record.external_event_id,
        event_link=record.external_event_link,
    )


def _event_description(request: CommitRequest) -> str:
    lines = [f"Customer: {request.name}"]
    if request.email:
        lines.append(f"Email: {request.email}")
    if request.phone:
        lines.append(f"Phone: {request.phone}")
    lines.append(f"Channel: {request.channel}")
    return "\n".join(lines)


# Singleton
_committer: Optional[BookingCommitter] = None


def get_booking_committer() -> BookingCommitter:
    """Get singleton BookingCommitter."""
    global _committer
    if _committer is None:
        _committer = BookingCommitter()
    return _committer
