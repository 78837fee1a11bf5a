"""Tests for the booking engine orchestrator."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.exc import OperationalError

from app.core.intelligence.intent.types import IntentResult, IntentSource
from app.core.scheduling.busy import BusyResult
from app.core.scheduling.calendar_client import CalendarNotConnectedError
from app.core.scheduling.commit import CommitOutcome, CommitStatus
from app.core.scheduling.engine import BookingEngine, EngineResponse
from app.core.scheduling.intervals import Slot, WeeklyHours
from app.core.scheduling.search import SlotSearch
from app.core.scheduling.state import BookingState, BookingStep, ConversationContext, StepResult
from app.core.scheduling.types import BookingConfig


NY = ZoneInfo("America/New_York")
SUNDAY = date(2026, 3, 1)
MONDAY = date(2026, 3, 2)
NOW = datetime.combine(SUNDAY, time(12), tzinfo=NY).astimezone(timezone.utc)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=NY)


class FreeCalendar:
    """Busy provider double with an empty calendar."""

    async def get_busy(self, tenant_id, calendar_id, window):
        return BusyResult()


@pytest.fixture
def config():
    return BookingConfig(
        tenant_id="tenant-1",
        time_zone="America/New_York",
        duration_min=30,
        buffer_min=10,
        min_lead_minutes=60,
        hours=WeeklyHours.from_raw("09:00-17:00"),
    )


@pytest.fixture
def repository(config):
    repo = MagicMock()
    repo.get_booking_terms = AsyncMock(return_value=["cita"])
    repo.get_booking_config = AsyncMock(return_value=config)
    repo.get_tenant_hints = AsyncMock(return_value={})
    repo.is_calendar_connected = AsyncMock(return_value=True)
    repo.get_appointment_link = AsyncMock(return_value=None)
    repo.upsert_customer = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def store():
    mock = MagicMock()
    mock.load = AsyncMock(return_value=ConversationContext())
    mock.save = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def flow():
    mock = MagicMock()
    mock.step = AsyncMock(
        return_value=StepResult(
            handled=True,
            reply="Sure, I can help you schedule it.",
            state=BookingState(step=BookingStep.ASK_DAYPART, purpose="cita"),
            context_patch={"booking_last_touch_at": NOW},
        )
    )
    return mock


@pytest.fixture
def classifier():
    mock = MagicMock()
    mock.classify = AsyncMock(return_value=IntentResult(wants_booking=True, confidence=0.9, purpose="cita"))
    return mock


@pytest.fixture
def translator():
    mock = MagicMock()
    mock.translate = AsyncMock(side_effect=lambda text, lang: f"[{lang}] {text}")
    return mock


@pytest.fixture
def committer():
    mock = MagicMock()
    mock.commit = AsyncMock(return_value=CommitOutcome(status=CommitStatus.CONFIRMED, appointment_id="appt-1"))
    return mock


@pytest.fixture
def engine(repository, store, flow, classifier, translator, committer):
    return BookingEngine(
        repository=repository,
        flow=flow,
        state_store=store,
        slot_search=SlotSearch(busy_provider=FreeCalendar()),
        committer=committer,
        classifier=classifier,
        translator=translator,
    )


class TestHandleMessage:
    """Test routing of one inbound message."""

    @pytest.mark.asyncio
    async def test_booking_intent_runs_flow(self, engine, flow, store):
        response = await engine.handle_message("tenant-1", "whatsapp", "+1305", "quiero una cita", now=NOW)

        assert response.handled
        assert response.step == BookingStep.ASK_DAYPART
        assert response.reply == "Sure, I can help you schedule it."
        signals = flow.step.await_args.kwargs["signals"]
        assert signals.wants_booking
        assert signals.purpose == "cita"
        assert signals.lang == "es"

        saved = store.save.await_args.args[3]
        assert saved.booking.step == BookingStep.ASK_DAYPART
        assert saved.booking_last_touch_at == NOW

    @pytest.mark.asyncio
    async def test_not_booking_is_not_handled(self, engine, classifier, flow):
        classifier.classify.return_value = IntentResult(
            wants_booking=False, confidence=0.0, source=IntentSource.NONE
        )

        response = await engine.handle_message("tenant-1", "web", "c-1", "what is this place", now=NOW)

        assert not response.handled
        assert response.reply is None
        flow.step.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_active_flow_skips_classifier(self, engine, store, classifier, flow):
        store.load.return_value = ConversationContext(
            booking=BookingState(step=BookingStep.ASK_DAYPART, lang="en", time_zone="America/New_York")
        )

        await engine.handle_message("tenant-1", "web", "c-1", "afternoon", now=NOW)

        classifier.classify.assert_not_awaited()
        assert not flow.step.await_args.kwargs["signals"].wants_booking

    @pytest.mark.asyncio
    async def test_locked_language_wins(self, engine, store, flow):
        store.load.return_value = ConversationContext(
            booking=BookingState(step=BookingStep.ASK_DAYPART, lang="en", time_zone="America/New_York")
        )

        await engine.handle_message("tenant-1", "web", "c-1", "por la tarde", lang="es", now=NOW)

        assert flow.step.await_args.kwargs["signals"].lang == "en"

    @pytest.mark.asyncio
    async def test_other_language_is_translated(self, engine, flow, translator):
        flow.step.return_value = StepResult(
            handled=True,
            reply="Please reply: morning or afternoon.",
            state=BookingState(step=BookingStep.ASK_DAYPART, lang="fr"),
        )

        response = await engine.handle_message("tenant-1", "web", "c-1", "je voudrais une cita", lang="fr", now=NOW)

        assert response.reply == "[fr] Please reply: morning or afternoon."
        assert response.lang == "fr"

    @pytest.mark.asyncio
    async def test_customer_identity_is_stored(self, engine, flow, repository):
        flow.step.return_value = StepResult(
            handled=True,
            reply="ok",
            state=BookingState(step=BookingStep.CONFIRM, name="Ana Ruiz", email="ana@x.com",
                               start_time=at(10), end_time=at(10, 30)),
        )

        await engine.handle_message("tenant-1", "web", "c-1", "Ana Ruiz ana@x.com cita", now=NOW)

        repository.upsert_customer.assert_awaited_once_with(
            "tenant-1", "web", "c-1", name="Ana Ruiz", email="ana@x.com", phone=None
        )

    @pytest.mark.asyncio
    async def test_customer_store_failure_does_not_block(self, engine, flow, repository):
        flow.step.return_value = StepResult(
            handled=True, reply="ok", state=BookingState(step=BookingStep.ASK_CONTACT, name="Ana Ruiz",
                                                         picked_start=at(10), picked_end=at(10, 30)),
        )
        repository.upsert_customer.side_effect = OperationalError("upsert", {}, Exception("down"))

        response = await engine.handle_message("tenant-1", "web", "c-1", "Ana Ruiz cita", now=NOW)

        assert response.handled

    @pytest.mark.asyncio
    async def test_unchanged_identity_is_not_stored(self, engine, repository):
        await engine.handle_message("tenant-1", "web", "c-1", "quiero una cita", now=NOW)

        repository.upsert_customer.assert_not_awaited()


class TestGates:
    """Test tenant-level gates before the flow."""

    @pytest.mark.asyncio
    async def test_disabled_by_settings(self, engine, config, flow, store):
        config.enabled = False

        response = await engine.handle_message("tenant-1", "web", "c-1", "quiero una cita", now=NOW)

        assert response.handled
        assert response.reply == "El agendamiento está desactivado en este momento para este negocio."
        assert response.step == BookingStep.IDLE
        flow.step.assert_not_awaited()
        store.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disabled_by_hints(self, engine, repository, flow):
        repository.get_tenant_hints.return_value = {"booking_enabled": False}

        response = await engine.handle_message("tenant-1", "web", "c-1", "I want to book", now=NOW)

        assert response.reply == "Scheduling is currently disabled for this business."
        flow.step.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_booking_link(self, engine, repository, flow):
        repository.get_tenant_hints.return_value = {"booking_link": " https://book.example.com "}

        response = await engine.handle_message("tenant-1", "web", "c-1", "I want to book", now=NOW)

        assert response.reply == "You can book here: https://book.example.com"
        flow.step.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_calendar_not_connected(self, engine, repository, flow):
        repository.is_calendar_connected.return_value = False

        response = await engine.handle_message("tenant-1", "web", "c-1", "I want to book", now=NOW)

        assert response.reply == "Scheduling isn't available for this business right now."
        flow.step.assert_not_awaited()


class TestPostBooking:
    """Test replies after a completed booking."""

    @pytest.mark.asyncio
    async def test_yes_after_booking_repeats_link(self, engine, store, flow, classifier):
        store.load.return_value = ConversationContext(
            booking=BookingState(lang="en"),
            last_appointment_id="appt-1",
            booking_last_event_link="https://cal/e/1",
        )

        response = await engine.handle_message("tenant-1", "web", "c-1", "yes", now=NOW)

        assert response.reply == "Already booked. https://cal/e/1"
        classifier.classify.assert_not_awaited()
        flow.step.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_link_from_repository(self, engine, store, repository):
        store.load.return_value = ConversationContext(booking=BookingState(lang="en"), last_appointment_id="appt-1")
        repository.get_appointment_link.return_value = "https://cal/e/9"

        response = await engine.handle_message("tenant-1", "web", "c-1", "ok", now=NOW)

        assert response.reply == "Already booked. https://cal/e/9"
        repository.get_appointment_link.assert_awaited_once_with("appt-1")

    @pytest.mark.asyncio
    async def test_courtesy_after_booking(self, engine, store, classifier):
        classifier.classify.return_value = IntentResult(wants_booking=False, confidence=0.0)
        store.load.return_value = ConversationContext(
            booking=BookingState(lang="en"),
            booking_completed=True,
            booking_completed_at=NOW - timedelta(minutes=2),
        )

        response = await engine.handle_message("tenant-1", "web", "c-1", "thank you", now=NOW)

        assert response.handled
        assert response.reply == "You're welcome."

    @pytest.mark.asyncio
    async def test_courtesy_long_after_booking(self, engine, store, classifier):
        classifier.classify.return_value = IntentResult(wants_booking=False, confidence=0.0)
        store.load.return_value = ConversationContext(
            booking=BookingState(lang="en"),
            booking_completed=True,
            booking_completed_at=NOW - timedelta(hours=2),
        )

        response = await engine.handle_message("tenant-1", "web", "c-1", "thank you", now=NOW)

        assert not response.handled


class TestDirectApi:
    """Test the slot search and commit used by the HTTP API."""

    @pytest.mark.asyncio
    async def test_search_whole_day(self, engine):
        result = await engine.search_slots("tenant-1", MONDAY, now=NOW)

        assert [s.local_hhmm(NY) for s in result.slots] == ["09:20", "10:00", "10:40", "11:20", "12:00"]

    @pytest.mark.asyncio
    async def test_search_daypart(self, engine):
        result = await engine.search_slots("tenant-1", MONDAY, daypart="afternoon", now=NOW)

        assert [s.local_hhmm(NY) for s in result.slots] == ["12:00", "12:40", "13:20", "14:00", "14:40"]

    @pytest.mark.asyncio
    async def test_search_around_time(self, engine):
        result = await engine.search_slots("tenant-1", MONDAY, at=time(14), now=NOW)

        assert result.slots[0].start == at(14)

    @pytest.mark.asyncio
    async def test_commit(self, engine, committer):
        outcome = await engine.commit_booking(
            "tenant-1", "web", "Ana Ruiz", at(14), at(14, 30), email="ana@x.com", phone="+1305", now=NOW
        )

        assert outcome.ok
        request, config = committer.commit.await_args.args
        assert request.name == "Ana Ruiz"
        assert request.phone == "+1305"
        assert config.tenant_id == "tenant-1"

    @pytest.mark.asyncio
    async def test_commit_requires_calendar(self, engine, repository, committer):
        repository.is_calendar_connected.return_value = False

        with pytest.raises(CalendarNotConnectedError):
            await engine.commit_booking("tenant-1", "web", "Ana Ruiz", at(14), at(14, 30))

        committer.commit.assert_not_awaited()

    def test_response_to_dict(self):
        start = at(9, 20)
        response = EngineResponse(
            handled=True,
            reply="hi",
            step=BookingStep.OFFER_SLOTS,
            lang="en",
            slots=[Slot(start=start, end=start + timedelta(minutes=30))],
        )

        data = response.to_dict()

        assert data["step"] == "offer_slots"
        assert len(data["slots"]) == 1
