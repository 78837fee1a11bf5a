"""
Scheduling Module

Provides availability computation, slot search, the booking conversation
flow and the booking commit protocol.

Usage:
    from app.core.scheduling import get_booking_engine

    engine = get_booking_engine()

    # Process a chat message
    response = await engine.handle_message(
        tenant_id="acme",
        channel="whatsapp",
        contact="+13055551234",
        text="quiero agendar una cita mañana en la tarde",
    )
    print(response.reply)  # Numbered list of free times
    print(response.step)   # BookingStep.OFFER_SLOTS
"""

# Interval model
from app.core.scheduling.intervals import (
    Interval,
    Slot,
    WeeklyHours,
)
from app.core.scheduling.types import BookingConfig, SearchResult

# Calendar provider
from app.core.scheduling.calendar_client import (
    GoogleCalendarClient,
    get_calendar_client,
    CalendarEvent,
    EventResult,
)
from app.core.scheduling.busy import (
    BusyBlockAdapter,
    BusyResult,
    get_busy_adapter,
)

# Search
from app.core.scheduling.search import SlotSearch, get_slot_search

# Conversation flow
from app.core.scheduling.state import (
    BookingState,
    BookingStep,
    ConversationContext,
    StepResult,
)
from app.core.scheduling.flow import BookingFlow, BookingSignals, get_booking_flow

# Commit
from app.core.scheduling.commit import (
    BookingCommitter,
    CommitOutcome,
    CommitRequest,
    CommitStatus,
    get_booking_committer,
)

# Booking Engine (main orchestrator)
from app.core.scheduling.engine import (
    BookingEngine,
    EngineResponse,
    get_booking_engine,
)

__all__ = [
    # Intervals
    "Interval",
    "Slot",
    "WeeklyHours",
    "BookingConfig",
    "SearchResult",
    # Calendar
    "GoogleCalendarClient",
    "get_calendar_client",
    "CalendarEvent",
    "EventResult",
    "BusyBlockAdapter",
    "BusyResult",
    "get_busy_adapter",
    # Search
    "SlotSearch",
    "get_slot_search",
    # Flow
    "BookingState",
    "BookingStep",
    "ConversationContext",
    "StepResult",
    "BookingFlow",
    "BookingSignals",
    "get_booking_flow",
    # Commit
    "BookingCommitter",
    "CommitOutcome",
    "CommitRequest",
    "CommitStatus",
    "get_booking_committer",
    # Engine
    "BookingEngine",
    "EngineResponse",
    "get_booking_engine",
]
