"""
Booking API Endpoints.

Direct slot search and commit for callers that run their own conversation
(web widgets, staff tools). Both go through the same engine as /chat.
"""

import logging
from datetime import date, datetime, time
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Header, status
from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.intelligence.slots.extractor import parse_email
from app.core.scheduling.calendar_client import CalendarNotConnectedError
from app.core.scheduling.engine import get_booking_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/booking", tags=["Booking"])


class SlotOut(BaseModel):
    """Free slot."""

    start: str
    end: str


class SlotsRequest(BaseModel):
    """Slot search request."""

    day: date = Field(..., description="Local date in the tenant's timezone")
    daypart: Optional[Literal["morning", "afternoon"]] = Field(
        default=None,
        description="Keep only morning (before 12:00) or afternoon slots",
    )
    at: Optional[time] = Field(
        default=None,
        description="Search around this local time instead of the whole day",
    )


class SlotsResponse(BaseModel):
    """Slot search response."""

    day: date
    slots: list[SlotOut]
    degraded: bool = Field(
        ...,
        description="True when the calendar could not be checked; no slots are offered then",
    )


class CommitBody(BaseModel):
    """Direct commit request."""

    name: str = Field(..., min_length=3, max_length=200)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: str = Field(..., min_length=3, max_length=64, description="Phone or channel contact id")
    channel: str = Field(default="web", max_length=32)
    start: datetime = Field(..., description="Slot start (ISO 8601 with offset)")
    end: datetime = Field(..., description="Slot end (ISO 8601 with offset)")

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        email = parse_email(value)
        if email is None:
            raise ValueError("invalid email address")
        return email

    @model_validator(mode="after")
    def _check_interval(self) -> "CommitBody":
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("start and end must carry a UTC offset")
        if not self.start < self.end:
            raise ValueError("start must precede end")
        return self


class CommitResponse(BaseModel):
    """Direct commit response."""

    status: str
    ok: bool
    appointment_id: Optional[str] = None
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    alternatives: list[SlotOut] = Field(default_factory=list)


def _tenant(x_tenant_id: str) -> str:
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return tenant_id


@router.post(
    "/slots",
    response_model=SlotsResponse,
    summary="Search free slots",
)
async def search_slots(
    request: SlotsRequest,
    x_tenant_id: str = Header(..., alias="X-Tenant-ID", description="Tenant identifier"),
) -> SlotsResponse:
    """Free slots for one date, optionally narrowed to a daypart or a time."""
    engine = get_booking_engine()
    result = await engine.search_slots(
        tenant_id=_tenant(x_tenant_id),
        day=request.day,
        daypart=request.daypart,
        at=request.at,
    )
    return SlotsResponse(
        day=request.day,
        slots=[SlotOut(**s.to_dict()) for s in result.slots],
        degraded=result.degraded,
    )


@router.post(
    "/commit",
    response_model=CommitResponse,
    summary="Book a slot",
    responses={409: {"description": "No calendar connected for this tenant"}},
)
async def commit(
    request: CommitBody,
    x_tenant_id: str = Header(..., alias="X-Tenant-ID", description="Tenant identifier"),
) -> CommitResponse:
    """
    Book a slot directly.

    Idempotent per (tenant, channel, phone, start): repeating a confirmed
    request returns the stored event link.
    """
    engine = get_booking_engine()
    try:
        outcome = await engine.commit_booking(
            tenant_id=_tenant(x_tenant_id),
            channel=request.channel.strip().lower() or "web",
            name=request.name.strip(),
            email=request.email,
            phone=request.phone.strip(),
            start=request.start,
            end=request.end,
        )
    except CalendarNotConnectedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return CommitResponse(**outcome.to_dict())
