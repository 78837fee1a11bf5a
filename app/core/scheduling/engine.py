"""
Booking Engine - Main Orchestrator.

Coordinates all components to process one inbound message:
- thread context load/save
- tenant configuration and gates
- booking-intent detection and language lock
- the booking flow step
- reply translation for languages without templates

Also exposes the direct slot search and commit used by the HTTP API.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.core.intelligence import (
    IntentClassifier,
    ReplyTranslator,
    detect_language,
    get_intent_classifier,
    get_reply_translator,
)
from app.core.intelligence.intent.rules import is_courtesy, is_no, is_yes
from app.core.scheduling.availability import utcnow
from app.core.scheduling.calendar_client import CalendarNotConnectedError
from app.core.scheduling.commit import (
    BookingCommitter,
    CommitOutcome,
    CommitRequest,
    get_booking_committer,
)
from app.core.scheduling.flow import BookingFlow, BookingSignals, get_booking_flow
from app.core.scheduling.formatting import reply
from app.core.scheduling.intervals import Slot
from app.core.scheduling.repository import AppointmentRepository, get_appointment_repository
from app.core.scheduling.search import SlotSearch, filter_by_daypart, get_slot_search
from app.core.scheduling.state import BookingState, BookingStep, ConversationContext
from app.core.scheduling.store import BookingStateStore, get_booking_state_store
from app.core.scheduling.types import Daypart, SearchResult

logger = logging.getLogger(__name__)

# A "thanks" this soon after a booking gets a short acknowledgement
COURTESY_WINDOW = timedelta(minutes=10)


@dataclass
class EngineResponse:
    """Response from the booking engine."""

    handled: bool
    reply: Optional[str]
    step: BookingStep
    lang: Optional[str] = None
    slots: list[Slot] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "handled": self.handled,
            "reply": self.reply,
            "step": self.step.value,
            "lang": self.lang,
            "slots": [s.to_dict() for s in self.slots],
        }


class BookingEngine:
    """
    Main orchestrator for the booking conversation.

    Collaborators are injected for testing and default to the module
    singletons.
    """

    def __init__(
        self,
        repository: Optional[AppointmentRepository] = None,
        flow: Optional[BookingFlow] = None,
        state_store: Optional[BookingStateStore] = None,
        slot_search: Optional[SlotSearch] = None,
        committer: Optional[BookingCommitter] = None,
        classifier: Optional[IntentClassifier] = None,
        translator: Optional[ReplyTranslator] = None,
    ):
        self._repository = repository
        self._flow = flow
        self._state_store = state_store
        self._slot_search = slot_search
        self._committer = committer
        self._classifier = classifier
        self._translator = translator

    def _get_repository(self) -> AppointmentRepository:
        if self._repository is None:
            self._repository = get_appointment_repository()
        return self._repository

    def _get_flow(self) -> BookingFlow:
        if self._flow is None:
            self._flow = get_booking_flow()
        return self._flow

    def _get_state_store(self) -> BookingStateStore:
        if self._state_store is None:
            self._state_store = get_booking_state_store()
        return self._state_store

    def _get_slot_search(self) -> SlotSearch:
        if self._slot_search is None:
            self._slot_search = get_slot_search()
        return self._slot_search

    def _get_committer(self) -> BookingCommitter:
        if self._committer is None:
            self._committer = get_booking_committer()
        return self._committer

    async def _get_classifier(self) -> IntentClassifier:
        if self._classifier is None:
            self._classifier = await get_intent_classifier()
        return self._classifier

    def _get_translator(self) -> ReplyTranslator:
        if self._translator is None:
            self._translator = get_reply_translator()
        return self._translator

    # === Conversation ===

    async def handle_message(
        self,
        tenant_id: str,
        channel: str,
        contact: str,
        text: str,
        lang: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EngineResponse:
        """
        Process one inbound message for a conversation thread.

        Args:
            tenant_id: Tenant identifier
            channel: Conversation channel (whatsapp, sms, facebook, ...)
            contact: Channel contact id
            text: Message text
            lang: Reply language override (ISO code)
            now: Current instant

        Returns:
            EngineResponse (handled=False when the message is not about booking)
        """
        now = now or utcnow()
        text = str(text or "").strip()
        repository = self._get_repository()
        store = self._get_state_store()

        context = await store.load(tenant_id, channel, contact)
        state = context.booking
        locked_lang = state.lang or lang or detect_language(text)
        reply_lang = locked_lang or settings.booking_default_language

        # === Post-booking guard ===
        if not state.is_active and context.last_appointment_id and (is_yes(text) or is_no(text)):
            link = context.booking_last_event_link or await repository.get_appointment_link(
                context.last_appointment_id
            )
            if link:
                return await self._finish(
                    tenant_id, channel, contact, context, state,
                    reply("already_booked", reply_lang, link=link), reply_lang,
                )

        wants_booking = False
        purpose: Optional[str] = None
        if not state.is_active:
            booking_terms = await repository.get_booking_terms(tenant_id)
            intent = await (await self._get_classifier()).classify(text, booking_terms)
            wants_booking = intent.wants_booking
            purpose = intent.purpose

        # === Gates ===
        if wants_booking or state.is_active:
            config = await repository.get_booking_config(tenant_id)
            hints = await repository.get_tenant_hints(tenant_id)

            if not config.enabled or hints.get("booking_enabled") is False:
                logger.info(f"Booking disabled for tenant {tenant_id}")
                return await self._finish(
                    tenant_id, channel, contact, context, state.reset(),
                    reply("booking_disabled", reply_lang), reply_lang,
                )

            booking_link = hints.get("booking_link")
            if isinstance(booking_link, str) and booking_link.strip():
                return await self._finish(
                    tenant_id, channel, contact, context, state.reset(),
                    reply("booking_link", reply_lang, link=booking_link.strip()), reply_lang,
                )

            if not await repository.is_calendar_connected(tenant_id):
                logger.warning(f"Booking requested but no calendar connected for tenant {tenant_id}")
                return await self._finish(
                    tenant_id, channel, contact, context, state.reset(),
                    reply("not_connected", reply_lang), reply_lang,
                )
        elif (
            is_courtesy(text)
            and context.booking_completed_at
            and now - context.booking_completed_at <= COURTESY_WINDOW
        ):
            return await self._finish(
                tenant_id, channel, contact, context, state, reply("courtesy", reply_lang), reply_lang
            )
        else:
            return EngineResponse(handled=False, reply=None, step=state.step, lang=locked_lang)

        # === Flow step ===
        signals = BookingSignals(wants_booking=wants_booking, purpose=purpose, lang=locked_lang)
        result = await self._get_flow().step(
            context, text, config, channel=channel, contact=contact, signals=signals, now=now
        )

        new_state = result.state or state
        new_context = context.apply(new_state, result.context_patch)
        await store.save(tenant_id, channel, contact, new_context)
        await self._remember_customer(tenant_id, channel, contact, state, new_state)

        thread_lang = new_state.lang or reply_lang
        message = await self._localize(result.reply, thread_lang) if result.reply else None
        return EngineResponse(
            handled=result.handled,
            reply=message,
            step=new_state.step,
            lang=thread_lang,
            slots=list(new_state.slots),
        )

    async def _finish(
        self,
        tenant_id: str,
        channel: str,
        contact: str,
        context: ConversationContext,
        state: BookingState,
        message: str,
        lang: str,
    ) -> EngineResponse:
        """Persist a gate/guard outcome and build its response."""
        await self._get_state_store().save(tenant_id, channel, contact, context.apply(state))
        return EngineResponse(
            handled=True,
            reply=await self._localize(message, lang),
            step=state.step,
            lang=lang,
        )

    async def _localize(self, message: str, lang: str) -> str:
        if lang in ("en", "es"):
            return message
        return await self._get_translator().translate(message, lang)

    async def _remember_customer(
        self,
        tenant_id: str,
        channel: str,
        contact: str,
        before: BookingState,
        after: BookingState,
    ) -> None:
        """Store identity collected in this step; never blocks the conversation."""
        if (before.name, before.email, before.phone) == (after.name, after.email, after.phone):
            return
        try:
            await self._get_repository().upsert_customer(
                tenant_id, channel, contact, name=after.name, email=after.email, phone=after.phone
            )
        except SQLAlchemyError as e:
            logger.warning(f"Customer upsert failed for tenant {tenant_id}: {e}")

    # === Direct API ===

    async def search_slots(
        self,
        tenant_id: str,
        day: date,
        daypart: Optional[Daypart] = None,
        at: Optional[time] = None,
        now: Optional[datetime] = None,
    ) -> SearchResult:
        """
        Free slots for one local date.

        Args:
            tenant_id: Tenant identifier
            day: Local date
            daypart: Keep only morning or afternoon slots
            at: Search around this local time instead of the whole day
            now: Current instant

        Returns:
            SearchResult
        """
        config = await self._get_repository().get_booking_config(tenant_id)
        search = self._get_slot_search()

        if at is not None:
            target = datetime.combine(day, at, tzinfo=config.tz)
            return await search.window_search(config, target, now=now)

        if daypart:
            result = await search.day_search(config, day, now=now, limit=50)
            result.slots = filter_by_daypart(result.slots, config.tz, daypart)[
                : settings.booking_max_slots_offered
            ]
            return result

        return await search.day_search(config, day, now=now)

    async def commit_booking(
        self,
        tenant_id: str,
        channel: str,
        name: str,
        start: datetime,
        end: datetime,
        email: Optional[str] = None,
        phone: str = "",
        now: Optional[datetime] = None,
    ) -> CommitOutcome:
        """
        Commit a booking without a conversation.

        Raises:
            CalendarNotConnectedError: Tenant has no connected calendar
        """
        repository = self._get_repository()
        if not await repository.is_calendar_connected(tenant_id):
            raise CalendarNotConnectedError(f"No calendar connected for tenant {tenant_id}")

        config = await repository.get_booking_config(tenant_id)
        request = CommitRequest(
            tenant_id=tenant_id,
            channel=channel,
            name=name,
            email=email,
            phone=phone,
            start=start,
            end=end,
        )
        return await self._get_committer().commit(request, config, now=now)


# Singleton
_engine: Optional[BookingEngine] = None


def get_booking_engine() -> BookingEngine:
    """Get singleton BookingEngine."""
    global _engine
    if _engine is None:
        _engine = BookingEngine()
    return _engine
