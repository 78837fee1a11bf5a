"""
Chat API Endpoint.

One inbound customer message per request. The thread is identified by
(tenant, channel, contact); booking state lives in Redis between calls.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Header, status
from pydantic import BaseModel, Field

from app.core.scheduling.engine import EngineResponse, get_booking_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Chat message request."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Customer message",
        examples=["quiero agendar una cita mañana en la tarde"],
    )
    channel: str = Field(
        default="web",
        max_length=32,
        description="Conversation channel (whatsapp, sms, facebook, instagram, web)",
    )
    contact: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Channel contact id (phone number for SMS/WhatsApp)",
        examples=["+13055551234"],
    )
    lang: Optional[str] = Field(
        default=None,
        min_length=2,
        max_length=8,
        description="Reply language override (ISO code); detected when omitted",
    )


class SlotOut(BaseModel):
    """Offered slot."""

    start: str
    end: str


class ChatResponse(BaseModel):
    """Chat response."""

    handled: bool = Field(..., description="False when the message is not about booking")
    reply: Optional[str] = Field(default=None, description="Reply to send to the customer")
    step: str = Field(..., description="Booking conversation step after this message")
    lang: Optional[str] = Field(default=None, description="Thread language")
    slots: list[SlotOut] = Field(default_factory=list, description="Slots currently on offer")


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Run one booking conversation step for a customer message.",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)
async def chat(
    request: ChatRequest,
    x_tenant_id: str = Header(
        ...,
        alias="X-Tenant-ID",
        description="Tenant identifier",
    ),
) -> ChatResponse:
    """Process a chat message."""
    if not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )

    engine = get_booking_engine()
    response: EngineResponse = await engine.handle_message(
        tenant_id=x_tenant_id.strip(),
        channel=request.channel.strip().lower() or "web",
        contact=request.contact.strip(),
        text=request.message,
        lang=request.lang,
    )

    return ChatResponse(**response.to_dict())
