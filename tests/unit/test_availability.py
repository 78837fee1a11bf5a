"""Tests for free-range computation and slot slicing."""

import pytest
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from app.core.scheduling.availability import (
    free_ranges,
    is_past_slot,
    merge_busy,
    slice_slots,
    snap_to_grid,
)
from app.core.scheduling.busy import BusyBlock
from app.core.scheduling.intervals import Interval


NY = ZoneInfo("America/New_York")
MONDAY = date(2026, 3, 2)
EARLY = datetime(2026, 2, 1, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime.combine(MONDAY, time(hour, minute, second), tzinfo=NY)


def block(start: datetime, end: datetime) -> BusyBlock:
    return BusyBlock(start=start, end=end)


class TestMergeBusy:
    """Test busy-block merging."""

    def test_merges_overlapping_and_adjacent(self):
        merged = merge_busy([
            block(at(13), at(14)),
            block(at(9), at(10)),
            block(at(10), at(11)),
            block(at(9, 30), at(10, 15)),
        ])

        assert merged == [Interval(at(9), at(11)), Interval(at(13), at(14))]

    def test_contained_block_does_not_shrink(self):
        merged = merge_busy([block(at(9), at(12)), block(at(10), at(11))])

        assert merged == [Interval(at(9), at(12))]

    def test_empty(self):
        assert merge_busy([]) == []


class TestFreeRanges:
    """Test subtraction of busy blocks from a window."""

    def test_no_busy_is_whole_window(self):
        window = Interval(at(9), at(17))

        assert free_ranges(window, []) == [window]

    def test_busy_in_middle(self):
        ranges = free_ranges(Interval(at(9), at(17)), [block(at(12), at(13))])

        assert ranges == [Interval(at(9), at(12)), Interval(at(13), at(17))]

    def test_busy_overhanging_both_edges(self):
        ranges = free_ranges(
            Interval(at(9), at(17)),
            [block(at(8), at(10)), block(at(16), at(18))],
        )

        assert ranges == [Interval(at(10), at(16))]

    def test_busy_covers_window(self):
        assert free_ranges(Interval(at(9), at(17)), [block(at(7), at(19))]) == []

    def test_busy_outside_window_ignored(self):
        ranges = free_ranges(Interval(at(9), at(12)), [block(at(13), at(14))])

        assert ranges == [Interval(at(9), at(12))]

    def test_utc_blocks_against_local_window(self):
        # 15:00Z is 10:00 in New York on this date
        busy = [block(datetime(2026, 3, 2, 15, tzinfo=timezone.utc), datetime(2026, 3, 2, 16, tzinfo=timezone.utc))]

        ranges = free_ranges(Interval(at(9), at(12)), busy)

        assert ranges == [Interval(at(9), at(10)), Interval(at(11), at(12))]

    def test_free_and_busy_partition_window(self):
        window = Interval(at(9), at(17))
        busy = [
            block(at(8, 30), at(9, 15)),
            block(at(10), at(11)),
            block(at(10, 30), at(12)),
            block(at(16, 45), at(18)),
        ]

        ranges = free_ranges(window, busy)
        clipped = [i for i in (b.intersect(window) for b in merge_busy(busy)) if i]

        assert ranges == [Interval(at(9, 15), at(10)), Interval(at(12), at(16, 45))]
        for earlier, later in zip(ranges, ranges[1:]):
            assert earlier.end < later.start
        pieces = sorted(ranges + clipped, key=lambda i: i.start)
        assert pieces[0].start == window.start
        assert pieces[-1].end == window.end
        for earlier, later in zip(pieces, pieces[1:]):
            assert earlier.end == later.start


class TestSnapToGrid:
    """Test grid alignment from local midnight."""

    def test_on_grid_unchanged(self):
        assert snap_to_grid(at(9, 20), 40, NY) == at(9, 20)

    def test_rounds_up_to_next_step(self):
        # 40-minute grid from midnight: ..., 8:40, 9:20, 10:00
        assert snap_to_grid(at(9), 40, NY) == at(9, 20)

    def test_seconds_round_up(self):
        assert snap_to_grid(at(9, 0, 1), 30, NY) == at(9, 30)


class TestSliceSlots:
    """Test slot slicing."""

    def test_duration_and_buffer(self):
        slots = slice_slots([Interval(at(9), at(11))], 30, 10, 0, NY, now=EARLY)

        # Grid step 40 min from midnight; 9:00 snaps to 9:20
        assert [s.start for s in slots] == [at(9, 20), at(10, 0)]
        assert all(s.end - s.start == timedelta(minutes=30) for s in slots)

    def test_buffer_must_fit_before_range_end(self):
        slots = slice_slots([Interval(at(9), at(9, 35))], 30, 10, 0, NY, now=EARLY)

        assert slots == []

    def test_zero_buffer_packs_range(self):
        slots = slice_slots([Interval(at(9), at(10, 30))], 30, 0, 0, NY, now=EARLY)

        assert [s.start for s in slots] == [at(9), at(9, 30), at(10)]

    def test_full_business_day_half_hours(self):
        slots = slice_slots([Interval(at(9), at(17))], 30, 0, 0, NY, now=EARLY)

        assert len(slots) == 16
        assert slots[0].start == at(9)
        assert slots[-1].start == at(16, 30)
        assert slots[-1].end == at(17)

    def test_busy_half_hour_removes_only_that_slot(self):
        window = Interval(at(9), at(12))

        slots = slice_slots(free_ranges(window, [block(at(10), at(10, 30))]), 30, 0, 0, NY, now=EARLY)

        assert [s.start for s in slots] == [at(9), at(9, 30), at(10, 30), at(11), at(11, 30)]

    def test_buffer_sets_hourly_grid(self):
        slots = slice_slots([Interval(at(9), at(13))], 45, 15, 0, NY, now=EARLY)

        assert [s.start for s in slots] == [at(9), at(10), at(11), at(12)]
        assert all(s.end.minute == 45 for s in slots)

    def test_min_lead_pushes_cursor(self):
        now = at(8, 50).astimezone(timezone.utc)

        slots = slice_slots([Interval(at(9), at(12))], 30, 0, 60, NY, now=now)

        assert slots[0].start == at(10)

    def test_slots_never_overlap_busy(self):
        window = Interval(at(9), at(17))
        busy = [block(at(10, 15), at(11, 5)), block(at(14), at(15))]

        slots = slice_slots(free_ranges(window, busy), 30, 10, 0, NY, now=EARLY)

        assert slots
        for slot in slots:
            assert window.contains(slot.as_interval())
            for b in busy:
                assert not slot.as_interval().overlaps(b.as_interval())

    def test_slots_are_in_business_timezone(self):
        slots = slice_slots([Interval(at(9), at(10))], 30, 0, 0, NY, now=EARLY)

        assert slots[0].to_dict()["start"].endswith("-05:00")

    def test_invalid_duration(self):
        with pytest.raises(ValueError):
            slice_slots([], 0, 10, 0, NY)
        with pytest.raises(ValueError):
            slice_slots([], 30, -1, 0, NY)


class TestIsPastSlot:
    """Test past-slot detection."""

    def test_inside_lead_time_is_past(self):
        now = at(9).astimezone(timezone.utc)

        assert is_past_slot(at(9, 30), 60, now=now)
        assert not is_past_slot(at(10), 60, now=now)

    def test_zero_lead(self):
        now = at(9).astimezone(timezone.utc)

        assert is_past_slot(at(8, 59), 0, now=now)
        assert not is_past_slot(at(9), 0, now=now)
