"""Tests for the occupancy reducer."""

import pytest

from tests.mocks.models import (
    EVENING_TEMPLATES,
    THURSDAY,
    WEDNESDAY,
    make_block,
    make_booking,
    make_template,
)
from venue_availability.models import BookingStatus
from venue_availability.services.occupancy import (
    build_occupancy,
    occupying_statuses,
    reduce_slots,
)
from venue_availability.services.templates import resolve_slots

GROUP = ("c1", "c2")


@pytest.fixture()
def candidates():
    return resolve_slots("c1", WEDNESDAY, EVENING_TEMPLATES)


def _by_start(slots):
    return {s.start_time: s for s in slots}


class TestOccupyingStatuses:
    def test_live_view(self):
        assert set(occupying_statuses(False)) == {BookingStatus.PENDING, BookingStatus.CONFIRMED}

    def test_admin_view_adds_completed(self):
        assert BookingStatus.COMPLETED in occupying_statuses(True)

    def test_cancelled_never_occupies(self):
        assert BookingStatus.CANCELLED not in occupying_statuses(True)


class TestBuildOccupancy:
    def test_block_wins_over_booking(self):
        occupancy = build_occupancy(
            GROUP, WEDNESDAY,
            bookings=[make_booking()],
            blocks=[make_block()],
        )
        source = occupancy.source_for("18:00", "19:00")
        assert source.kind == "block"
        assert source.reason == "Maintenance"
        assert len(occupancy) == 1

    def test_rows_outside_group_dropped(self):
        occupancy = build_occupancy(
            GROUP, WEDNESDAY,
            bookings=[make_booking(court_id="c9")],
            blocks=[make_block(court_id="c9")],
        )
        assert len(occupancy) == 0

    def test_rows_on_other_dates_dropped(self):
        occupancy = build_occupancy(
            GROUP, WEDNESDAY,
            bookings=[make_booking(booking_date=THURSDAY)],
            blocks=[make_block(date=THURSDAY)],
        )
        assert len(occupancy) == 0

    def test_cancelled_dropped_even_if_requested(self):
        occupancy = build_occupancy(
            GROUP, WEDNESDAY,
            bookings=[make_booking(status=BookingStatus.CANCELLED)],
            blocks=[],
            statuses=list(BookingStatus),
        )
        assert occupancy.source_for("18:00", "19:00") is None

    def test_lookup_normalises_times(self):
        occupancy = build_occupancy(GROUP, WEDNESDAY, [make_booking()], [])
        assert occupancy.source_for("18:00:00", "19:00:00") is not None

    def test_built_index_is_read_only(self):
        occupancy = build_occupancy(
            GROUP, WEDNESDAY,
            bookings=[make_booking(), make_booking(id="b-2", start_time="17:00", end_time="18:00")],
            blocks=[make_block(start_time="19:00", end_time="20:00")],
        )

        assert set(occupancy.bookings) == {("17:00:00", "18:00:00"), ("18:00:00", "19:00:00")}
        assert set(occupancy.blocks) == {("19:00:00", "20:00:00")}
        with pytest.raises(TypeError):
            occupancy.bookings[("20:00:00", "21:00:00")] = occupancy.blocks[("19:00:00", "20:00:00")]


class TestReduceSlots:
    def test_sibling_booking_takes_slot(self, candidates):
        """Booking on c2 hides the matching window on c1."""
        occupancy = build_occupancy(GROUP, WEDNESDAY, [make_booking(court_id="c2")], [])
        slots = _by_start(reduce_slots(candidates, occupancy))

        assert slots["18:00:00"].is_available is False
        assert slots["18:00:00"].occupied_by.court_id == "c2"
        assert slots["17:00:00"].is_available is True
        assert slots["19:00:00"].is_available is True

    def test_order_and_count_preserved(self, candidates):
        occupancy = build_occupancy(
            GROUP, WEDNESDAY,
            [make_booking()],
            [make_block(start_time="17:00", end_time="18:00")],
        )
        reduced = reduce_slots(candidates, occupancy)
        assert [s.window for s in reduced] == [s.window for s in candidates]

    def test_partial_overlap_does_not_occupy(self, candidates):
        occupancy = build_occupancy(
            GROUP, WEDNESDAY,
            [make_booking(start_time="18:30", end_time="19:30")],
            [],
        )
        assert all(s.is_available for s in reduce_slots(candidates, occupancy))

    def test_occupancy_never_reopens(self):
        closed = resolve_slots("c1", WEDNESDAY, [make_template(is_available=False)])
        occupancy = build_occupancy(GROUP, WEDNESDAY, [], [])
        assert reduce_slots(closed, occupancy)[0].is_available is False

    def test_completed_only_counts_for_admin(self, candidates):
        bookings = [make_booking(status=BookingStatus.COMPLETED)]
        live = build_occupancy(GROUP, WEDNESDAY, bookings, [], occupying_statuses(False))
        admin = build_occupancy(GROUP, WEDNESDAY, bookings, [], occupying_statuses(True))

        assert _by_start(reduce_slots(candidates, live))["18:00:00"].is_available is True
        assert _by_start(reduce_slots(candidates, admin))["18:00:00"].is_available is False

    def test_inputs_not_mutated(self, candidates):
        occupancy = build_occupancy(GROUP, WEDNESDAY, [make_booking()], [])
        reduce_slots(candidates, occupancy)
        assert all(s.is_available for s in candidates)
        assert all(s.occupied_by is None for s in candidates)

    def test_reapplying_is_stable(self, candidates):
        occupancy = build_occupancy(GROUP, WEDNESDAY, [make_booking()], [])
        once = reduce_slots(candidates, occupancy)
        assert reduce_slots(once, occupancy) == once
