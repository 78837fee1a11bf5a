"""Tests for the HTTP surface (engine patched out)."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from fastapi.testclient import TestClient

from app.core.scheduling.calendar_client import CalendarNotConnectedError
from app.core.scheduling.commit import CommitOutcome, CommitStatus
from app.core.scheduling.engine import EngineResponse
from app.core.scheduling.intervals import Slot
from app.core.scheduling.state import BookingStep
from app.core.scheduling.types import SearchResult
from app.main import app


NY = ZoneInfo("America/New_York")
MONDAY = date(2026, 3, 2)


def slot(hour: int, minute: int = 0) -> Slot:
    start = datetime.combine(MONDAY, time(hour, minute), tzinfo=NY)
    return Slot(start=start, end=start + timedelta(minutes=30))


@pytest.fixture
def engine():
    mock = MagicMock()
    mock.handle_message = AsyncMock(
        return_value=EngineResponse(
            handled=True,
            reply="1) 9:20 AM",
            step=BookingStep.OFFER_SLOTS,
            lang="en",
            slots=[slot(9, 20)],
        )
    )
    mock.search_slots = AsyncMock(return_value=SearchResult(slots=[slot(9, 20), slot(10)], day=MONDAY))
    mock.commit_booking = AsyncMock(
        return_value=CommitOutcome(
            status=CommitStatus.CONFIRMED,
            appointment_id="appt-1",
            event_id="evt-1",
            event_link="https://cal/e/1",
        )
    )
    return mock


@pytest.fixture
def client(engine):
    with patch("app.api.routes.chat.get_booking_engine", return_value=engine), \
         patch("app.api.routes.booking.get_booking_engine", return_value=engine):
        yield TestClient(app)


COMMIT_BODY = {
    "name": "Ana Ruiz",
    "email": "Ana@X.com",
    "phone": "+13055551234",
    "start": "2026-03-02T14:00:00-05:00",
    "end": "2026-03-02T14:30:00-05:00",
}


class TestChatEndpoint:
    """Test POST /api/v1/chat."""

    def test_chat(self, client, engine):
        response = client.post(
            "/api/v1/chat",
            json={"message": "morning", "channel": " WhatsApp ", "contact": "+1305"},
            headers={"X-Tenant-ID": "tenant-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["step"] == "offer_slots"
        assert data["slots"][0]["start"].startswith("2026-03-02T09:20:00")
        engine.handle_message.assert_awaited_once_with(
            tenant_id="tenant-1", channel="whatsapp", contact="+1305", text="morning", lang=None
        )

    def test_blank_tenant(self, client):
        response = client.post(
            "/api/v1/chat",
            json={"message": "hi", "contact": "c-1"},
            headers={"X-Tenant-ID": "  "},
        )

        assert response.status_code == 400

    def test_missing_contact(self, client):
        response = client.post("/api/v1/chat", json={"message": "hi"}, headers={"X-Tenant-ID": "tenant-1"})

        assert response.status_code == 422


class TestBookingEndpoints:
    """Test the direct search and commit endpoints."""

    def test_slots(self, client, engine):
        response = client.post(
            "/api/v1/booking/slots",
            json={"day": "2026-03-02", "daypart": "morning"},
            headers={"X-Tenant-ID": "tenant-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert len(data["slots"]) == 2
        assert data["degraded"] is False
        assert engine.search_slots.await_args.kwargs["daypart"] == "morning"

    def test_slots_rejects_unknown_daypart(self, client):
        response = client.post(
            "/api/v1/booking/slots",
            json={"day": "2026-03-02", "daypart": "night"},
            headers={"X-Tenant-ID": "tenant-1"},
        )

        assert response.status_code == 422

    def test_commit(self, client, engine):
        response = client.post("/api/v1/booking/commit", json=COMMIT_BODY, headers={"X-Tenant-ID": "tenant-1"})

        assert response.status_code == 200
        assert response.json()["status"] == "CONFIRMED"
        assert engine.commit_booking.await_args.kwargs["email"] == "ana@x.com"

    def test_commit_rejects_bad_email(self, client):
        body = dict(COMMIT_BODY, email="not-an-email")

        response = client.post("/api/v1/booking/commit", json=body, headers={"X-Tenant-ID": "tenant-1"})

        assert response.status_code == 422

    def test_commit_rejects_reversed_interval(self, client):
        body = dict(COMMIT_BODY, start=COMMIT_BODY["end"], end=COMMIT_BODY["start"])

        response = client.post("/api/v1/booking/commit", json=body, headers={"X-Tenant-ID": "tenant-1"})

        assert response.status_code == 422

    def test_commit_without_calendar(self, client, engine):
        engine.commit_booking.side_effect = CalendarNotConnectedError("No calendar connected for tenant tenant-1")

        response = client.post("/api/v1/booking/commit", json=COMMIT_BODY, headers={"X-Tenant-ID": "tenant-1"})

        assert response.status_code == 409
