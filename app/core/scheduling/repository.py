"""
Appointment repository.

Tenant booking configuration, calendar integration lookups, the
appointment table transitions (pending -> confirmed | failed) and customer
identity upserts. Every method opens its own short session through
``get_db_context`` unless a session factory is injected.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Optional

from sqlalchemy import case, func, literal, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Insert

from app.config import settings
from app.core.intelligence.intent.rules import DEFAULT_BOOKING_TERMS
from app.core.scheduling.intervals import WeeklyHours
from app.core.scheduling.types import BookingConfig
from app.infra.database import get_db_context
from app.models.database import (
    Appointment,
    AppointmentSettings,
    AppointmentStatus,
    CalendarIntegration,
    Customer,
    IntegrationStatus,
    Tenant,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


@dataclass
class AppointmentRecord:
    """Row returned by the idempotent pending upsert."""

    id: str
    status: AppointmentStatus
    external_event_id: Optional[str] = None
    external_event_link: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == AppointmentStatus.CONFIRMED

    @classmethod
    def from_row(cls, row: Any) -> "AppointmentRecord":
        """Create from a RETURNING row."""
        status = row.status
        if not isinstance(status, AppointmentStatus):
            status = AppointmentStatus(str(status).lower())
        return cls(
            id=str(row.id),
            status=status,
            external_event_id=row.external_event_id,
            external_event_link=row.external_event_link,
        )


def build_pending_upsert(
    tenant_id: str,
    channel: str,
    customer_name: str,
    customer_phone: str,
    customer_email: Optional[str],
    start_time: datetime,
    end_time: datetime,
) -> Insert:
    """INSERT ... ON CONFLICT statement for a pending appointment.

    A retry of the same (tenant, channel, phone, start) reuses the row. A
    previously failed attempt is reopened as pending; a confirmed one is
    left untouched so the caller can short-circuit on it.
    """
    stmt = insert(Appointment).values(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        channel=channel,
        customer_name=customer_name,
        customer_phone=customer_phone,
        customer_email=customer_email,
        start_time=start_time,
        end_time=end_time,
        status=AppointmentStatus.PENDING,
    )
    excluded = stmt.excluded
    return stmt.on_conflict_do_update(
        constraint="uq_appointment_tenant_channel_phone_start",
        set_={
            "customer_name": func.coalesce(excluded.customer_name, Appointment.customer_name),
            "customer_email": func.coalesce(excluded.customer_email, Appointment.customer_email),
            "end_time": excluded.end_time,
            "status": case(
                (
                    Appointment.status == AppointmentStatus.FAILED,
                    literal(AppointmentStatus.PENDING, type_=Appointment.status.type),
                ),
                else_=Appointment.status,
            ),
            "updated_at": func.now(),
        },
    ).returning(
        Appointment.id,
        Appointment.status,
        Appointment.external_event_id,
        Appointment.external_event_link,
    )


class AppointmentRepository:
    """
    Database access for the booking engine.

    Uses:
    - tenants (business hours, hints)
    - appointment_settings
    - calendar_integrations
    - appointments
    - customers
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        """Initialize repository.

        Args:
            session_factory: Async context manager factory yielding a session
                (defaults to get_db_context)
        """
        self._session_factory = session_factory or get_db_context

    # === Tenant configuration ===

    async def get_appointment_settings(self, tenant_id: str) -> AppointmentSettings:
        """Get a tenant's booking settings, creating the default row if missing."""
        async with self._session_factory() as db:
            await db.execute(
                insert(AppointmentSettings)
                .values(
                    tenant_id=tenant_id,
                    duration_min=settings.booking_default_duration_min,
                    buffer_min=settings.booking_default_buffer_min,
                    timezone=settings.booking_default_timezone,
                    enabled=True,
                    min_lead_minutes=settings.booking_default_min_lead_minutes,
                )
                .on_conflict_do_nothing(index_elements=[AppointmentSettings.tenant_id])
            )
            result = await db.execute(
                select(AppointmentSettings).where(AppointmentSettings.tenant_id == tenant_id)
            )
            return result.scalar_one()

    async def get_business_hours(self, tenant_id: str) -> Optional[WeeklyHours]:
        """Get normalized business hours, None when not configured."""
        async with self._session_factory() as db:
            result = await db.execute(select(Tenant.business_hours).where(Tenant.id == tenant_id))
            raw = result.scalar_one_or_none()

        hours = WeeklyHours.from_raw(raw)
        if raw and hours is None:
            logger.warning(f"Unusable business hours for tenant {tenant_id}: {raw!r}")
        return hours

    async def get_tenant_hints(self, tenant_id: str) -> dict:
        """Get free-form tenant hints (booking terms, booking link, ...)."""
        async with self._session_factory() as db:
            result = await db.execute(select(Tenant.hints).where(Tenant.id == tenant_id))
            hints = result.scalar_one_or_none()
        return hints if isinstance(hints, dict) else {}

    async def get_booking_terms(self, tenant_id: str) -> list[str]:
        """Tenant booking keywords, or the defaults."""
        hints = await self.get_tenant_hints(tenant_id)
        terms = hints.get("booking_terms")
        if isinstance(terms, list):
            cleaned = [str(t).lower().strip() for t in terms if str(t).strip()]
            if cleaned:
                return cleaned
        return list(DEFAULT_BOOKING_TERMS)

    async def get_booking_config(self, tenant_id: str) -> BookingConfig:
        """Resolve everything the booking core needs for one tenant."""
        row = await self.get_appointment_settings(tenant_id)
        hours = await self.get_business_hours(tenant_id)
        calendar_id = await self.get_calendar_id(tenant_id)

        return BookingConfig(
            tenant_id=tenant_id,
            time_zone=row.timezone,
            duration_min=row.duration_min,
            buffer_min=row.buffer_min,
            min_lead_minutes=row.min_lead_minutes,
            hours=hours,
            calendar_id=calendar_id,
            enabled=row.enabled,
        )

    # === Calendar integration ===

    async def _get_integration(self, tenant_id: str) -> Optional[CalendarIntegration]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(CalendarIntegration).where(
                    CalendarIntegration.tenant_id == tenant_id,
                    CalendarIntegration.provider == "google",
                    CalendarIntegration.status == IntegrationStatus.CONNECTED,
                )
            )
            return result.scalars().first()

    async def is_calendar_connected(self, tenant_id: str) -> bool:
        """Check whether the tenant has a connected calendar."""
        return await self._get_integration(tenant_id) is not None

    async def get_refresh_token(self, tenant_id: str) -> Optional[str]:
        """OAuth refresh token of the connected calendar, if any."""
        integration = await self._get_integration(tenant_id)
        return integration.refresh_token if integration else None

    async def get_calendar_id(self, tenant_id: str) -> str:
        """Calendar to book into ("primary" by default)."""
        integration = await self._get_integration(tenant_id)
        return integration.calendar_id if integration and integration.calendar_id else "primary"

    # === Appointments ===

    async def upsert_pending_appointment(
        self,
        tenant_id: str,
        channel: str,
        customer_name: str,
        customer_phone: str,
        customer_email: Optional[str],
        start_time: datetime,
        end_time: datetime,
    ) -> AppointmentRecord:
        """Create the pending appointment or return the existing one.

        Args:
            tenant_id: Tenant identifier
            channel: Conversation channel
            customer_name: Customer full name
            customer_phone: Phone (or the channel contact id)
            customer_email: Customer email
            start_time: Slot start
            end_time: Slot end

        Returns:
            AppointmentRecord for the (tenant, channel, phone, start) key
        """
        stmt = build_pending_upsert(
            tenant_id, channel, customer_name, customer_phone, customer_email, start_time, end_time
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            record = AppointmentRecord.from_row(result.one())

        logger.debug(f"Pending appointment {record.id} status={record.status.value}")
        return record

    async def find_appointment(
        self,
        tenant_id: str,
        channel: str,
        customer_phone: str,
        start_time: datetime,
    ) -> Optional[AppointmentRecord]:
        """Look up the appointment for an idempotency key without writing."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    Appointment.id,
                    Appointment.status,
                    Appointment.external_event_id,
                    Appointment.external_event_link,
                ).where(
                    Appointment.tenant_id == tenant_id,
                    Appointment.channel == channel,
                    Appointment.customer_phone == customer_phone,
                    Appointment.start_time == start_time,
                )
            )
            row = result.one_or_none()

        return AppointmentRecord.from_row(row) if row is not None else None

    async def mark_confirmed(
        self,
        appointment_id: str,
        external_event_id: str,
        external_event_link: str,
    ) -> None:
        """Transition an appointment to confirmed."""
        async with self._session_factory() as db:
            await db.execute(
                update(Appointment)
                .where(Appointment.id == uuid.UUID(str(appointment_id)))
                .values(
                    status=AppointmentStatus.CONFIRMED,
                    external_event_id=external_event_id,
                    external_event_link=external_event_link,
                    updated_at=func.now(),
                )
            )
        logger.info(f"Appointment {appointment_id} confirmed")

    async def mark_failed(self, appointment_id: str, error_reason: str) -> bool:
        """Transition a pending appointment to failed with a reason code.

        Only pending rows move; a row confirmed meanwhile by a concurrent
        retry keeps its status.

        Returns:
            True when the row was updated
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(Appointment)
                .where(
                    Appointment.id == uuid.UUID(str(appointment_id)),
                    Appointment.status == AppointmentStatus.PENDING,
                )
                .values(
                    status=AppointmentStatus.FAILED,
                    error_reason=error_reason,
                    updated_at=func.now(),
                )
            )

        if not result.rowcount:
            logger.info(f"Appointment {appointment_id} not pending, kept its status ({error_reason})")
            return False

        logger.warning(f"Appointment {appointment_id} failed: {error_reason}")
        return True

    async def get_appointment_link(self, appointment_id: str) -> Optional[str]:
        """External link of a confirmed appointment."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Appointment.external_event_link).where(
                    Appointment.id == uuid.UUID(str(appointment_id))
                )
            )
            return result.scalar_one_or_none()

    # === Customers ===

    async def upsert_customer(
        self,
        tenant_id: str,
        channel: str,
        contact: Optional[str],
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> bool:
        """Store identity collected in a conversation.

        The contact key falls back to phone, then email. Fields already on
        file are only overwritten by non-empty values.

        Returns:
            True if a row was written
        """
        key = (contact or "").strip() or (phone or "").strip() or (email or "").strip()
        if not key:
            logger.warning(f"Customer upsert skipped for tenant {tenant_id}: no contact key")
            return False

        stmt = insert(Customer).values(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            channel=channel,
            contact=key,
            name=name or None,
            email=email or None,
            phone=phone or None,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            constraint="uq_customer_contact",
            set_={
                "name": func.coalesce(excluded.name, Customer.name),
                "email": func.coalesce(excluded.email, Customer.email),
                "phone": func.coalesce(excluded.phone, Customer.phone),
                "updated_at": func.now(),
            },
        )

        async with self._session_factory() as db:
            await db.execute(stmt)
        return True


# Singleton
_repository: Optional[AppointmentRepository] = None


def get_appointment_repository() -> AppointmentRepository:
    """Get singleton AppointmentRepository."""
    global _repository
    if _repository is None:
        _repository = AppointmentRepository()
    return _repository
