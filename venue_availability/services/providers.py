"""
Abstract interface for the host data store.

The engine never reads the system of record directly. The host application
supplies an object satisfying this protocol so that the resolver, the
reducer and the change notifier stay decoupled from where courts,
templates, bookings and blocks actually live.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from typing import Protocol

from venue_availability.errors import SubscriptionFailed
from venue_availability.models import (
    BlockedSlot,
    Booking,
    BookingStatus,
    ChangeEvent,
    ChangeScope,
    SlotTemplate,
)

# Releases a subscription; safe to await more than once.
Disposer = Callable[[], Awaitable[None]]

ChangeCallback = Callable[[ChangeEvent], None]
ErrorCallback = Callable[[SubscriptionFailed], None]


class AvailabilityDataProvider(Protocol):
    """Protocol that every host store integration must satisfy."""

    # ── Templates ─────────────────────────────────────────────────────
    async def list_templates(self, court_id: str) -> list[SlotTemplate]:
        """Return every weekly template row of a court."""
        ...

    # ── Court groups ──────────────────────────────────────────────────
    async def resolve_court_group(self, court_id: str) -> list[str]:
        """Return the ids of all courts sharing a surface with *court_id*.

        At minimum ``[court_id]`` when the court is not grouped.
        """
        ...

    # ── Occupancy ─────────────────────────────────────────────────────
    async def list_bookings(
        self,
        court_ids: Sequence[str],
        booking_date: date,
        statuses: Sequence[BookingStatus],
    ) -> list[Booking]:
        ...

    async def list_blocked_slots(
        self,
        court_ids: Sequence[str],
        block_date: date,
    ) -> list[BlockedSlot]:
        ...

    # ── Change transport ──────────────────────────────────────────────
    async def subscribe_to_changes(
        self,
        scope: ChangeScope,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Disposer:
        """
        Register *on_change* for events matching *scope*.

        Returning means the transport confirmed the subscription. Callbacks
        may arrive on any thread. *on_error* is invoked if the transport
        later loses the subscription.
        """
        ...
