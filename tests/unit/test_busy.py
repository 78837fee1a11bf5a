"""Tests for the busy-block adapter."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, timezone

from app.core.scheduling.busy import (
    BusyBlock,
    BusyBlockAdapter,
    InvalidWindowError,
    calendar_errors_in,
    extract_busy_blocks,
)
from app.core.scheduling.calendar_client import (
    CalendarAuthError,
    CalendarNotConnectedError,
    CalendarProviderError,
)
from app.core.scheduling.intervals import Interval


def utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)


WINDOW = Interval(utc(14), utc(22))


class TestExtractBusyBlocks:
    """Test response normalization."""

    def test_primary_calendar(self):
        blocks = extract_busy_blocks({
            "calendars": {
                "other": {"busy": [{"start": "2026-03-02T10:00:00Z", "end": "2026-03-02T11:00:00Z"}]},
                "primary": {"busy": [{"start": "2026-03-02T15:00:00Z", "end": "2026-03-02T16:00:00Z"}]},
            }
        })

        assert blocks == [BusyBlock(start=utc(15), end=utc(16))]

    def test_first_calendar_when_no_primary(self):
        blocks = extract_busy_blocks({
            "calendars": {
                "team@group.calendar.google.com": {
                    "busy": [{"start": "2026-03-02T15:00:00Z", "end": "2026-03-02T15:30:00Z"}]
                },
            }
        })

        assert blocks == [BusyBlock(start=utc(15), end=utc(15, 30))]

    def test_top_level_busy(self):
        blocks = extract_busy_blocks({"busy": [{"start": "2026-03-02T15:00:00Z", "end": "2026-03-02T16:00:00Z"}]})

        assert len(blocks) == 1

    def test_drops_malformed_entries(self):
        blocks = extract_busy_blocks({
            "busy": [
                {"start": "2026-03-02T15:00:00Z"},
                {"start": "garbage", "end": "2026-03-02T16:00:00Z"},
                {"start": "2026-03-02T16:00:00Z", "end": "2026-03-02T16:00:00Z"},
                {"start": "2026-03-02T17:00:00Z", "end": "2026-03-02T16:00:00Z"},
                "not a dict",
                {"start": "2026-03-02T18:00:00Z", "end": "2026-03-02T19:00:00Z"},
            ]
        })

        assert blocks == [BusyBlock(start=utc(18), end=utc(19))]

    def test_unrecognized_shapes(self):
        assert extract_busy_blocks(None) == []
        assert extract_busy_blocks([]) == []
        assert extract_busy_blocks({"calendars": {}}) == []

    def test_calendar_errors(self):
        response = {"calendars": {"primary": {"busy": [], "errors": [{"domain": "global", "reason": "notFound"}]}}}

        assert calendar_errors_in(response) == ["notFound"]
        assert calendar_errors_in({"calendars": {"primary": {"busy": []}}}) == []


class TestBusyBlockAdapter:
    """Test BusyBlockAdapter."""

    @pytest.fixture
    def mock_calendar_client(self):
        """Create mock calendar client."""
        client = MagicMock()
        client.freebusy = AsyncMock()
        return client

    @pytest.fixture
    def adapter(self, mock_calendar_client):
        """Create adapter with mock client."""
        return BusyBlockAdapter(calendar_client=mock_calendar_client)

    @pytest.mark.asyncio
    async def test_returns_blocks(self, adapter, mock_calendar_client):
        mock_calendar_client.freebusy.return_value = {
            "calendars": {"primary": {"busy": [{"start": "2026-03-02T15:00:00Z", "end": "2026-03-02T16:00:00Z"}]}}
        }

        result = await adapter.get_busy("tenant-1", "primary", WINDOW)

        assert not result.degraded
        assert result.is_busy
        assert result.blocks[0].as_interval() == Interval(utc(15), utc(16))
        mock_calendar_client.freebusy.assert_awaited_once_with(
            tenant_id="tenant-1",
            calendar_id="primary",
            time_min=WINDOW.start,
            time_max=WINDOW.end,
        )

    @pytest.mark.asyncio
    async def test_empty_calendar_id_defaults_to_primary(self, adapter, mock_calendar_client):
        mock_calendar_client.freebusy.return_value = {"calendars": {"primary": {"busy": []}}}

        result = await adapter.get_busy("tenant-1", "", WINDOW)

        assert result.blocks == []
        assert not result.degraded
        assert mock_calendar_client.freebusy.await_args.kwargs["calendar_id"] == "primary"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, reason",
        [
            (CalendarNotConnectedError("no integration"), "GOOGLE_NOT_CONNECTED"),
            (CalendarAuthError("refresh rejected"), "GOOGLE_AUTH_FAILED"),
            (CalendarProviderError("timed out", timeout=True), "GOOGLE_ERROR"),
            (CalendarProviderError("503", status_code=503), "GOOGLE_ERROR"),
        ],
    )
    async def test_provider_failures_degrade(self, adapter, mock_calendar_client, error, reason):
        mock_calendar_client.freebusy.side_effect = error

        result = await adapter.get_busy("tenant-1", "primary", WINDOW)

        assert result.degraded
        assert result.blocks == []
        assert result.reason == reason

    @pytest.mark.asyncio
    async def test_calendar_errors_degrade(self, adapter, mock_calendar_client):
        mock_calendar_client.freebusy.return_value = {
            "calendars": {"primary": {"busy": [], "errors": [{"reason": "backendError"}]}}
        }

        result = await adapter.get_busy("tenant-1", "primary", WINDOW)

        assert result.degraded
        assert result.reason == "CALENDAR_ERRORS"

    @pytest.mark.asyncio
    async def test_invalid_window(self, adapter, mock_calendar_client):
        with pytest.raises(InvalidWindowError):
            await adapter.get_busy("tenant-1", "primary", (utc(14), utc(15)))

        mock_calendar_client.freebusy.assert_not_awaited()
