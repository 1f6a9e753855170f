"""
Live availability for one court and date.

A watch computes a snapshot, hands it to the consumer, then subscribes to
changes for the court's whole group on that date. Every change triggers a
full recompute. If the group membership itself changed, the watch moves
its subscription to the new set of courts.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import TYPE_CHECKING

from venue_availability.errors import AvailabilityError, SubscriptionFailed
from venue_availability.models import Slot
from venue_availability.services.notifier import (
    ChangeSubscription,
    SubscriptionState,
    court_scope,
)

if TYPE_CHECKING:
    from venue_availability.services.engine import AvailabilityEngine

logger = logging.getLogger(__name__)

UpdateHandler = Callable[[list[Slot]], Awaitable[None] | None]
ErrorHandler = Callable[[AvailabilityError], Awaitable[None] | None]


async def _maybe_await(result: Awaitable[None] | None) -> None:
    if inspect.isawaitable(result):
        await result


class AvailabilityWatch:
    """Keeps a consumer's slot grid current until closed."""

    def __init__(
        self,
        engine: AvailabilityEngine,
        court_id: str,
        target_date: date,
        on_update: UpdateHandler,
        *,
        on_error: ErrorHandler | None = None,
        include_completed_bookings: bool = False,
    ) -> None:
        self._engine = engine
        self._court_id = court_id
        self._date = target_date
        self._on_update = on_update
        self._on_error = on_error
        self._include_completed = include_completed_bookings

        self._version = 0
        self._court_group: tuple[str, ...] = ()
        self._slots: list[Slot] = []
        self._subscription: ChangeSubscription | None = None
        self._opened = False
        self._closed = False
        self._stale = False

    # ── Introspection ──────────────────────────────────────────────────

    @property
    def key(self) -> tuple[str, date]:
        return (self._court_id, self._date)

    @property
    def version(self) -> int:
        """Number of computations started so far."""
        return self._version

    @property
    def slots(self) -> list[Slot]:
        """Last successfully computed snapshot."""
        return list(self._slots)

    @property
    def court_group(self) -> tuple[str, ...]:
        return self._court_group

    @property
    def stale(self) -> bool:
        """True while change delivery is down; the snapshot may be outdated."""
        return self._stale

    @property
    def subscription_state(self) -> SubscriptionState:
        if self._subscription is None:
            return SubscriptionState.DISCONNECTED
        return self._subscription.state

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def open(self) -> None:
        await self._recompute(raise_errors=True)
        if self._closed:
            return
        self._opened = True
        await self._subscribe()
        if self.subscription_state is SubscriptionState.SUBSCRIBED:
            # Writes that landed between the snapshot and the subscription
            await self._recompute(only_if_changed=True)

    async def refresh(self) -> None:
        """Manual refresh; re-establishes a lost subscription before recomputing."""
        if self.subscription_state is not SubscriptionState.SUBSCRIBED:
            await self._resubscribe()
        if self._closed:
            return
        await self._recompute()

    async def close(self) -> None:
        """Dispose of the watch. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        subscription, self._subscription = self._subscription, None
        try:
            if subscription is not None:
                await self._engine.notifier.release(subscription)
        finally:
            self._engine._forget(self)
            logger.debug("Watch on %s/%s closed", self._court_id, self._date)

    async def __aenter__(self) -> AvailabilityWatch:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Internals ──────────────────────────────────────────────────────

    async def _recompute(
        self, *, raise_errors: bool = False, only_if_changed: bool = False,
    ) -> None:
        self._version += 1
        version = self._version
        try:
            court_group, slots = await self._engine.compute(
                self._court_id,
                self._date,
                include_completed_bookings=self._include_completed,
            )
        except AvailabilityError as exc:
            if raise_errors:
                raise
            await self._report(exc)
            return

        if self._closed or version != self._version:
            return
        if only_if_changed and slots == self._slots and court_group == self._court_group:
            return

        self._slots = slots
        await _maybe_await(self._on_update(list(slots)))

        if court_group != self._court_group:
            self._court_group = court_group
            if self._opened:
                logger.info(
                    "Court group of %s changed to %s; moving subscription",
                    self._court_id, ",".join(court_group),
                )
                await self._resubscribe()
                # Catch anything that landed while no subscription was open
                await self._recompute(only_if_changed=True)

    async def _subscribe(self) -> None:
        try:
            self._subscription = await self._engine.notifier.open(
                court_scope(self._court_group, self._date),
                self._recompute,
                on_error=self._report,
                name=f"watch:{self._court_id}:{self._date.isoformat()}",
            )
        except SubscriptionFailed as exc:
            self._subscription = None
            await self._report(exc)
            return
        self._stale = False

    async def _resubscribe(self) -> None:
        previous, self._subscription = self._subscription, None
        if previous is not None:
            await self._engine.notifier.release(previous)
        if not self._closed:
            await self._subscribe()

    async def _report(self, exc: AvailabilityError) -> None:
        if self._closed:
            return
        if isinstance(exc, SubscriptionFailed):
            self._stale = True
        logger.warning(
            "Watch on %s/%s: %s", self._court_id, self._date.isoformat(), exc,
        )
        if self._on_error is not None:
            await _maybe_await(self._on_error(exc))
