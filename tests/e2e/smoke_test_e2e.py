"""
E2E Smoke Tests for the Booking Engine.

These tests call a running instance over HTTP. Booking flows need a tenant
with business hours and a connected Google Calendar; they are skipped
unless E2E_BOOKING_TENANT_ID is set.

Usage:
    pytest tests/e2e/smoke_test_e2e.py -v
    pytest tests/e2e/smoke_test_e2e.py -v -k "health"

Prerequisites:
    - Booking Engine running at http://localhost:8000
    - PostgreSQL and Redis reachable from it
"""

import os
import uuid
from datetime import date, timedelta

import httpx
import pytest

# Configuration from environment
ENGINE_URL = os.getenv("ENGINE_URL", "http://localhost:8000")
TENANT_ID = os.getenv("E2E_TENANT_ID", "test-tenant")
BOOKING_TENANT_ID = os.getenv("E2E_BOOKING_TENANT_ID", "")
TIMEOUT = float(os.getenv("E2E_TIMEOUT", "30"))

needs_calendar = pytest.mark.skipif(
    not BOOKING_TENANT_ID,
    reason="E2E_BOOKING_TENANT_ID not configured",
)


class ChatClient:
    """Simple HTTP client for the chat API."""

    def __init__(self, base_url: str = ENGINE_URL, tenant_id: str = TENANT_ID):
        self.base_url = base_url.rstrip("/")
        self.tenant_id = tenant_id
        # One conversation thread per client
        self.contact = f"e2e-{uuid.uuid4().hex[:12]}"

    def send(self, message: str, channel: str = "web") -> dict:
        """Send a chat message on this client's thread and return the response."""
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.post(
                f"{self.base_url}/api/v1/chat",
                json={"message": message, "channel": channel, "contact": self.contact},
                headers={"X-Tenant-ID": self.tenant_id},
            )
            response.raise_for_status()
            return response.json()


@pytest.fixture
def client():
    """Fresh thread for each test."""
    return ChatClient()


@pytest.fixture
def booking_client():
    """Fresh thread on the tenant with a connected calendar."""
    return ChatClient(tenant_id=BOOKING_TENANT_ID)


def next_weekday(start: date) -> date:
    day = start + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


# =============================================================================
# Health
# =============================================================================


class TestHealthCheck:
    """Verify the service is up and responding."""

    def test_health_endpoint(self):
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.get(f"{ENGINE_URL}/health")
            assert response.status_code == 200
            assert response.json().get("status") == "healthy"

    def test_liveness(self):
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.get(f"{ENGINE_URL}/health/live")
            assert response.status_code == 200


# =============================================================================
# Routing
# =============================================================================


class TestRouting:
    """Messages that are not about booking are handed back."""

    @pytest.mark.parametrize("message", ["What are your prices?", "Where are you located?"])
    def test_not_booking(self, client, message):
        response = client.send(message)

        assert response["handled"] is False
        assert response["reply"] is None

    def test_language_detected(self, client):
        response = client.send("hola, quiero información de precios")

        assert response["lang"] in ("es", None)


# =============================================================================
# Booking Flow
# =============================================================================


class TestBookingFlow:
    """Conversation against a tenant with a connected calendar."""

    @needs_calendar
    def test_booking_intent_starts_flow(self, booking_client):
        response = booking_client.send("I want to book an appointment")

        assert response["handled"] is True
        assert response["step"] in ("ask_daypart", "ask_purpose", "offer_slots")

    @needs_calendar
    def test_daypart_offers_slots(self, booking_client):
        booking_client.send("I want to book an appointment")
        response = booking_client.send("morning")

        assert response["step"] in ("offer_slots", "ask_daypart")
        if response["step"] == "offer_slots":
            assert 1 <= len(response["slots"]) <= 5
            assert "1)" in response["reply"]

    @needs_calendar
    def test_cancel_resets(self, booking_client):
        booking_client.send("I want to book an appointment")
        response = booking_client.send("cancel")

        assert response["handled"] is True
        assert response["step"] == "idle"


# =============================================================================
# Direct API
# =============================================================================


class TestDirectApi:
    """Slot search without a conversation."""

    @needs_calendar
    def test_search_slots(self):
        day = next_weekday(date.today())
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.post(
                f"{ENGINE_URL}/api/v1/booking/slots",
                json={"day": day.isoformat(), "daypart": "afternoon"},
                headers={"X-Tenant-ID": BOOKING_TENANT_ID},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["day"] == day.isoformat()
        if data["degraded"]:
            assert data["slots"] == []


# =============================================================================
# Error Handling
# =============================================================================


class TestErrorHandling:
    """Test error handling."""

    def test_empty_message_rejected(self):
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.post(
                f"{ENGINE_URL}/api/v1/chat",
                json={"message": "", "contact": "e2e"},
                headers={"X-Tenant-ID": TENANT_ID},
            )
            assert response.status_code == 422

    def test_missing_tenant_id_rejected(self):
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.post(
                f"{ENGINE_URL}/api/v1/chat",
                json={"message": "Hello", "contact": "e2e"},
            )
            assert response.status_code == 422

    def test_commit_rejects_naive_datetimes(self):
        with httpx.Client(timeout=TIMEOUT) as client:
            response = client.post(
                f"{ENGINE_URL}/api/v1/booking/commit",
                json={
                    "name": "Ana Ruiz",
                    "phone": "+13055551234",
                    "start": "2030-01-07T10:00:00",
                    "end": "2030-01-07T10:30:00",
                },
                headers={"X-Tenant-ID": TENANT_ID},
            )
            assert response.status_code == 422
