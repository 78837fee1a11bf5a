"""
HTTP client for the Google Calendar REST API.

The booking core needs exactly two provider calls:
- POST /freeBusy - busy blocks for one calendar in a time window
- POST /calendars/{id}/events - create the booked event

OAuth refresh tokens are read per tenant from calendar_integrations and
exchanged for short-lived access tokens, cached in-process until expiry.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)

# Seconds shaved off a token's lifetime so it is refreshed before Google rejects it
_TOKEN_EXPIRY_MARGIN = 60

RefreshTokenLoader = Callable[[str], Awaitable[Optional[str]]]


class CalendarError(Exception):
    """Base class for calendar provider errors."""

    code = "GOOGLE_ERROR"


class CalendarNotConnectedError(CalendarError):
    """Tenant has no connected calendar integration."""

    code = "GOOGLE_NOT_CONNECTED"


class CalendarAuthError(CalendarError):
    """Token refresh failed or OAuth client is not configured."""

    code = "GOOGLE_AUTH_FAILED"


class CalendarProviderError(CalendarError):
    """Provider returned an error or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, timeout: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timeout = timeout


@dataclass
class CalendarEvent:
    """Event to create in the tenant's calendar."""

    summary: str
    start: datetime
    end: datetime
    time_zone: str
    description: str = ""

    def to_payload(self) -> dict:
        """Convert to Google Calendar event resource."""
        return {
            "summary": self.summary,
            "description": self.description,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.time_zone},
        }


@dataclass
class EventResult:
    """Result of an event creation attempt."""

    success: bool
    event_id: Optional[str] = None
    html_link: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_response(cls, data: dict) -> "EventResult":
        """Create from a provider response body."""
        return cls(
            success=True,
            event_id=data.get("id"),
            html_link=data.get("htmlLink"),
        )


class GoogleCalendarClient:
    """
    HTTP client for Google Calendar.

    Uses:
    - POST {token_url} - exchange refresh token for access token
    - POST /freeBusy - query busy blocks
    - POST /calendars/{calendarId}/events - create event
    """

    def __init__(
        self,
        refresh_token_loader: Optional[RefreshTokenLoader] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize client.

        Args:
            refresh_token_loader: Async callable returning a tenant's refresh token
                (defaults to the appointment repository)
            base_url: Calendar API base URL (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
        """
        settings = get_settings()
        self.base_url = base_url or settings.google_api_base_url
        self.token_url = settings.google_token_url
        self.timeout = timeout if timeout is not None else settings.calendar_request_timeout
        self._client_id = settings.google_client_id
        self._client_secret = settings.google_client_secret
        self._refresh_token_loader = refresh_token_loader
        self._client: Optional[httpx.AsyncClient] = None
        self._tokens: dict[str, tuple[str, float]] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # === Auth ===

    async def _load_refresh_token(self, tenant_id: str) -> Optional[str]:
        if self._refresh_token_loader is None:
            from app.core.scheduling.repository import get_appointment_repository

            self._refresh_token_loader = get_appointment_repository().get_refresh_token
        return await self._refresh_token_loader(tenant_id)

    async def get_access_token(self, tenant_id: str) -> str:
        """Get a valid access token for a tenant.

        Args:
            tenant_id: Tenant identifier

        Returns:
            OAuth access token

        Raises:
            CalendarNotConnectedError: No refresh token stored
            CalendarAuthError: OAuth client missing or refresh rejected
        """
        cached = self._tokens.get(tenant_id)
        if cached and cached[1] > time.monotonic():
            return cached[0]

        refresh_token = await self._load_refresh_token(tenant_id)
        if not refresh_token:
            raise CalendarNotConnectedError(f"No calendar connected for tenant {tenant_id}")

        if not self._client_id or not self._client_secret:
            raise CalendarAuthError("Google OAuth client is not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                self.token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise CalendarAuthError(f"Token refresh failed: {e}") from e

        data = response.json() if response.content else {}
        access_token = data.get("access_token")
        if response.status_code != 200 or not access_token:
            logger.error(f"Google token refresh failed: {response.status_code} {data.get('error')}")
            raise CalendarAuthError("Token refresh rejected")

        expires_in = int(data.get("expires_in", 3600))
        self._tokens[tenant_id] = (
            access_token,
            time.monotonic() + max(0, expires_in - _TOKEN_EXPIRY_MARGIN),
        )
        return access_token

    # === Free/busy ===

    async def freebusy(
        self,
        tenant_id: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> dict:
        """Query busy blocks for one calendar.

        Args:
            tenant_id: Tenant identifier
            calendar_id: Calendar to query ("primary" by default upstream)
            time_min: Window start (timezone-aware)
            time_max: Window end (timezone-aware)

        Returns:
            Raw freeBusy response body

        Raises:
            CalendarError: Auth failure, provider error or timeout
        """
        token = await self.get_access_token(tenant_id)
        client = await self._get_client()

        try:
            response = await client.post(
                "/freeBusy",
                json={
                    "timeMin": time_min.isoformat(),
                    "timeMax": time_max.isoformat(),
                    "items": [{"id": calendar_id}],
                },
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise CalendarProviderError(f"freeBusy timed out: {e}", timeout=True) from e
        except httpx.HTTPError as e:
            raise CalendarProviderError(f"freeBusy failed: {e}") from e

        if response.status_code == 401:
            self._tokens.pop(tenant_id, None)
            raise CalendarAuthError("Access token rejected by provider")
        if response.status_code != 200:
            raise CalendarProviderError(
                f"freeBusy returned {response.status_code}",
                status_code=response.status_code,
            )

        return response.json()

    # === Events ===

    async def create_event(
        self,
        tenant_id: str,
        calendar_id: str,
        event: CalendarEvent,
    ) -> EventResult:
        """Create an event in the tenant's calendar.

        Args:
            tenant_id: Tenant identifier
            calendar_id: Target calendar
            event: Event details

        Returns:
            EventResult; failures carry an error_code instead of raising
        """
        try:
            token = await self.get_access_token(tenant_id)
        except CalendarError as e:
            logger.error(f"Cannot create event for tenant {tenant_id}: {e}")
            return EventResult(success=False, error_code=e.code, message=str(e))

        client = await self._get_client()

        try:
            response = await client.post(
                f"/calendars/{quote(calendar_id, safe='')}/events",
                json=event.to_payload(),
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to create event: {e}")
            return EventResult(
                success=False,
                error_code="GOOGLE_ERROR",
                message="Unable to connect to calendar provider",
            )

        data = response.json() if response.content else {}

        if response.status_code in (200, 201):
            return EventResult.from_response(data)

        if response.status_code == 409:
            error_code = "SLOT_BUSY"
        else:
            error_code = "CREATE_EVENT_FAILED" if response.status_code < 500 else "GOOGLE_ERROR"

        error = data.get("error")
        logger.error(f"Google create event failed: {response.status_code} {error}")
        return EventResult(
            success=False,
            error_code=error_code,
            message=error.get("message") if isinstance(error, dict) else None,
        )


# Singleton
_client: Optional[GoogleCalendarClient] = None


def get_calendar_client() -> GoogleCalendarClient:
    """Get singleton GoogleCalendarClient."""
    global _client
    if _client is None:
        _client = GoogleCalendarClient()
    return _client
