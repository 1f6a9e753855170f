"""
Consumer-side availability state for one selection at a time.

A booking screen or admin calendar shows exactly one of: a loading state,
a populated slot grid, or an error with a retry action. Switching to
another court or date discards any result still in flight for the old
selection.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum

from venue_availability.errors import AvailabilityError, SubscriptionFailed
from venue_availability.models import Slot
from venue_availability.services.engine import AvailabilityEngine
from venue_availability.services.watch import AvailabilityWatch

logger = logging.getLogger(__name__)


class ViewStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class ViewSnapshot:
    status: ViewStatus
    court_id: str | None = None
    date: date | None = None
    slots: tuple[Slot, ...] = field(default_factory=tuple)
    error: AvailabilityError | None = None
    # Grid shown but live updates are down; offer a manual refresh
    stale: bool = False


SnapshotHandler = Callable[[ViewSnapshot], Awaitable[None] | None]


class AvailabilityView:
    """Tracks the current ``(court_id, date)`` selection of one consumer."""

    def __init__(
        self,
        engine: AvailabilityEngine,
        *,
        include_completed_bookings: bool = False,
        on_snapshot: SnapshotHandler | None = None,
    ) -> None:
        self._engine = engine
        self._include_completed = include_completed_bookings
        self._on_snapshot = on_snapshot
        self._generation = 0
        self._watch: AvailabilityWatch | None = None
        self._snapshot = ViewSnapshot(status=ViewStatus.LOADING)

    @property
    def snapshot(self) -> ViewSnapshot:
        return self._snapshot

    @property
    def selection(self) -> tuple[str, date] | None:
        if self._snapshot.court_id is None or self._snapshot.date is None:
            return None
        return (self._snapshot.court_id, self._snapshot.date)

    async def select(self, court_id: str, target_date: date) -> ViewSnapshot:
        """Switch to a new court/date and return the resulting snapshot."""
        self._generation += 1
        generation = self._generation

        await self._release()
        await self._publish(
            ViewSnapshot(status=ViewStatus.LOADING, court_id=court_id, date=target_date),
            generation,
        )

        async def on_update(slots: list[Slot]) -> None:
            await self._publish(
                ViewSnapshot(
                    status=ViewStatus.READY,
                    court_id=court_id,
                    date=target_date,
                    slots=tuple(slots),
                    stale=self._watch is not None and self._watch.stale,
                ),
                generation,
            )

        async def on_error(exc: AvailabilityError) -> None:
            await self._fail(exc, generation)

        try:
            watch = await self._engine.watch_availability(
                court_id,
                target_date,
                on_update,
                on_error=on_error,
                include_completed_bookings=self._include_completed,
            )
        except AvailabilityError as exc:
            await self._fail(exc, generation)
            return self._snapshot

        if generation != self._generation:
            # A newer selection started while this one was loading
            logger.debug("Discarding superseded selection %s/%s", court_id, target_date)
            await watch.close()
            return self._snapshot

        self._watch = watch
        return self._snapshot

    async def retry(self) -> ViewSnapshot:
        """Reload the current selection from scratch."""
        selection = self.selection
        if selection is None:
            return self._snapshot
        if self._watch is not None and self._snapshot.status is ViewStatus.READY:
            await self._watch.refresh()
            if self._snapshot.stale and not self._watch.stale:
                await self._publish(
                    replace(self._snapshot, stale=False, error=None), self._generation,
                )
            return self._snapshot
        return await self.select(*selection)

    async def close(self) -> None:
        self._generation += 1
        await self._release()

    async def __aenter__(self) -> AvailabilityView:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Internals ──────────────────────────────────────────────────────

    async def _release(self) -> None:
        watch, self._watch = self._watch, None
        if watch is not None:
            await watch.close()

    async def _fail(self, exc: AvailabilityError, generation: int) -> None:
        current = self._snapshot
        if isinstance(exc, SubscriptionFailed) and current.status is ViewStatus.READY:
            # Keep the last known grid; it may be outdated
            await self._publish(replace(current, stale=True, error=exc), generation)
            return
        await self._publish(
            ViewSnapshot(
                status=ViewStatus.ERROR,
                court_id=current.court_id,
                date=current.date,
                error=exc,
            ),
            generation,
        )

    async def _publish(self, snapshot: ViewSnapshot, generation: int) -> None:
        if generation != self._generation:
            return
        self._snapshot = snapshot
        if self._on_snapshot is not None:
            result = self._on_snapshot(snapshot)
            if inspect.isawaitable(result):
                await result
