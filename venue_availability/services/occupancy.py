"""
Occupancy reducer: overlays bookings and admin blocks onto template slots.

Occupancy is collected across the whole court group: a booking or block
on any court that shares the surface takes the same window on every court
of the group.

Matching is by exact normalised ``(start_time, end_time)`` equality, not
interval overlap. Bookings always target a template boundary, so a row
that does not align to one occupies nothing.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType

from venue_availability.models import (
    BlockedSlot,
    Booking,
    BookingStatus,
    OccupancySource,
    Slot,
)
from venue_availability.timeutils import pad_time

_Window = tuple[str, str]

_LIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def occupying_statuses(include_completed: bool) -> tuple[BookingStatus, ...]:
    """
    Booking statuses that take a slot.

    Admin views count completed bookings; live availability does not, so
    a finished game never hides a slot. Cancelled bookings never occupy.
    """
    if include_completed:
        return (*_LIVE_STATUSES, BookingStatus.COMPLETED)
    return _LIVE_STATUSES


def _key(start_time: str, end_time: str) -> _Window:
    return (pad_time(start_time), pad_time(end_time))


@dataclass(frozen=True)
class Occupancy:
    """Occupied windows of one date across a court group."""

    court_ids: frozenset[str]
    target_date: date
    blocks: Mapping[_Window, OccupancySource] = field(default_factory=dict)
    bookings: Mapping[_Window, OccupancySource] = field(default_factory=dict)

    def source_for(self, start_time: str, end_time: str) -> OccupancySource | None:
        """Return what occupies a window; a block wins over a booking."""
        key = _key(start_time, end_time)
        return self.blocks.get(key) or self.bookings.get(key)

    def __len__(self) -> int:
        return len(self.blocks.keys() | self.bookings.keys())


def build_occupancy(
    court_ids: Collection[str],
    target_date: date,
    bookings: Iterable[Booking],
    blocks: Iterable[BlockedSlot],
    statuses: Collection[BookingStatus] = _LIVE_STATUSES,
) -> Occupancy:
    """
    Merge bookings and blocks into one occupancy index.

    Rows for courts outside the group, other dates or non-occupying
    statuses are dropped even if the store returned them.
    """
    group = frozenset(court_ids)
    counted = frozenset(statuses) - {BookingStatus.CANCELLED}
    booked: dict[_Window, OccupancySource] = {}
    blocked: dict[_Window, OccupancySource] = {}

    for booking in bookings:
        if booking.court_id not in group or booking.booking_date != target_date:
            continue
        if booking.status not in counted:
            continue
        booked.setdefault(
            _key(booking.start_time, booking.end_time),
            OccupancySource(
                kind="booking",
                court_id=booking.court_id,
                status=booking.status,
                record_id=booking.id,
            ),
        )

    for block in blocks:
        if block.court_id not in group or block.date != target_date:
            continue
        blocked.setdefault(
            _key(block.start_time, block.end_time),
            OccupancySource(
                kind="block",
                court_id=block.court_id,
                reason=block.reason,
                record_id=block.id,
            ),
        )

    return Occupancy(
        court_ids=group,
        target_date=target_date,
        blocks=MappingProxyType(blocked),
        bookings=MappingProxyType(booked),
    )


def reduce_slots(candidates: Sequence[Slot], occupancy: Occupancy) -> list[Slot]:
    """
    Return *candidates* with occupancy applied.

    Same order and count as the input. Occupancy only ever removes
    availability; nothing re-opens a slot the template marks unavailable.
    """
    reduced: list[Slot] = []
    for slot in candidates:
        source = occupancy.source_for(slot.start_time, slot.end_time)
        reduced.append(
            slot.model_copy(
                update={
                    "is_available": slot.is_available and source is None,
                    "occupied_by": source,
                }
            )
        )
    return reduced
