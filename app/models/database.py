"""
Database Models

SQLAlchemy ORM models for the multi-tenant booking engine.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint,
    Enum as SQLEnum, text
)
from sqlalchemy.dialects.postgresql import UUID, JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELED = "canceled"


class IntegrationStatus(str, Enum):
    """Calendar integration status enumeration."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    REVOKED = "revoked"


class Tenant(Base, TimestampMixin):
    """
    Tenant model (business).

    Each tenant has its own business hours, booking settings, calendar
    integration, customers and appointments.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_hours: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        doc='Weekday map ({"mon": {"start": "09:00", "end": "17:00"}, ...}) or "HH:mm-HH:mm"'
    )
    hints: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        doc="Free-form tenant hints: booking_terms, booking_link, booking_enabled"
    )

    # Relationships
    appointment_settings: Mapped[Optional["AppointmentSettings"]] = relationship(
        "AppointmentSettings",
        back_populates="tenant",
        uselist=False
    )
    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="tenant"
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}')>"


class AppointmentSettings(Base, TimestampMixin):
    """Per-tenant booking parameters."""

    __tablename__ = "appointment_settings"

    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        primary_key=True
    )
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    buffer_min: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    timezone: Mapped[str] = mapped_column(String(50), nullable=False, default="America/New_York")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    min_lead_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)

    # Relationships
    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="appointment_settings")

    def __repr__(self) -> str:
        return (
            f"<AppointmentSettings(tenant_id={self.tenant_id}, duration={self.duration_min}, "
            f"buffer={self.buffer_min}, tz='{self.timezone}')>"
        )


class CalendarIntegration(Base, TimestampMixin):
    """OAuth connection between a tenant and its calendar provider."""

    __tablename__ = "calendar_integrations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", name="uq_calendar_integration_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False
    )
    provider: Mapped[str] = mapped_column(String(30), nullable=False, default="google")
    status: Mapped[IntegrationStatus] = mapped_column(
        SQLEnum(IntegrationStatus),
        default=IntegrationStatus.CONNECTED
    )
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False, default="primary")

    def __repr__(self) -> str:
        return f"<CalendarIntegration(tenant_id={self.tenant_id}, provider='{self.provider}', status={self.status})>"


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    One row per (tenant, channel, customer phone, start time); the unique
    constraint is the idempotency key for retried confirmations.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "channel", "customer_phone", "start_time",
            name="uq_appointment_tenant_channel_phone_start"
        ),
        Index("idx_appointment_tenant", "tenant_id"),
        Index("idx_appointment_status", "tenant_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False
    )
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(AppointmentStatus, values_callable=lambda e: [m.value for m in e]),
        default=AppointmentStatus.PENDING,
        nullable=False
    )
    external_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    external_event_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Relationships
    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="appointments")

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, start={self.start_time}, "
            f"status={self.status})>"
        )


class Customer(Base, TimestampMixin):
    """Identity collected for a conversation contact."""

    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "channel", "contact", name="uq_customer_contact"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False
    )
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    contact: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Customer(tenant_id={self.tenant_id}, channel='{self.channel}', contact='{self.contact}')>"
