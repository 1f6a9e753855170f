"""
Availability engine: the outbound API consumed by booking and admin views.

One availability query is::

    templates → court group → (bookings ∥ blocks) → reduce

Bookings and blocks are independent and fetched concurrently. Every
failure surfaces as a typed AvailabilityError; the engine never returns a
guessed result and never retries, retry policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import date

from venue_availability.config import NOTIFY_DEBOUNCE_SECONDS
from venue_availability.errors import (
    AvailabilityError,
    GroupLookupFailed,
    OccupancyFetchFailed,
)
from venue_availability.models import BlockedSlot, Booking, Slot
from venue_availability.services.cache import AvailabilityCache
from venue_availability.services.notifier import ChangeNotifier
from venue_availability.services.occupancy import (
    build_occupancy,
    occupying_statuses,
    reduce_slots,
)
from venue_availability.services.providers import AvailabilityDataProvider
from venue_availability.services.templates import TemplateResolver
from venue_availability.services.watch import (
    AvailabilityWatch,
    ErrorHandler,
    UpdateHandler,
)
from venue_availability.timeutils import validate_court_id, validate_date

logger = logging.getLogger(__name__)


class AvailabilityEngine:
    """
    Computes bookable slots for a court and date.

    Pass an AvailabilityCache to reuse results across calls that carry the
    same invalidation *version*. Calls without a version neither read nor
    write the cache.
    """

    def __init__(
        self,
        provider: AvailabilityDataProvider,
        *,
        cache: AvailabilityCache | None = None,
        debounce: float = NOTIFY_DEBOUNCE_SECONDS,
    ) -> None:
        self._provider = provider
        self._resolver = TemplateResolver(provider)
        self._cache = cache
        self._notifier = ChangeNotifier(provider, debounce=debounce)
        self._watches: set[AvailabilityWatch] = set()

    @property
    def notifier(self) -> ChangeNotifier:
        return self._notifier

    @property
    def open_watches(self) -> int:
        return len(self._watches)

    # ── One-shot query ─────────────────────────────────────────────────

    async def get_availability(
        self,
        court_id: str,
        target_date: date,
        *,
        include_completed_bookings: bool = False,
        version: int | None = None,
    ) -> list[Slot]:
        """Return the slots of *court_id* on *target_date* with occupancy applied."""
        _, slots = await self.compute(
            court_id,
            target_date,
            include_completed_bookings=include_completed_bookings,
            version=version,
        )
        return slots

    async def compute(
        self,
        court_id: str,
        target_date: date,
        *,
        include_completed_bookings: bool = False,
        version: int | None = None,
    ) -> tuple[tuple[str, ...], list[Slot]]:
        """Like get_availability, also returning the resolved court group."""
        court_id = validate_court_id(court_id)
        target_date = validate_date(target_date)

        key = (court_id, target_date, include_completed_bookings)
        stamp = None
        if self._cache is not None and version is not None:
            entry = self._cache.get(key, version)
            if entry is not None:
                return entry.court_group, list(entry.slots)
            stamp = self._cache.stamp(version)

        candidates = await self._resolver.resolve(court_id, target_date)
        if not candidates:
            # Closed that day; nothing to reduce
            logger.debug("No templates for court %s on %s", court_id, target_date)
            court_group: tuple[str, ...] = (court_id,)
            slots: list[Slot] = []
        else:
            court_group = await self._resolve_group(court_id)
            bookings, blocks = await self._fetch_occupancy(
                court_group, target_date, include_completed_bookings,
            )
            occupancy = build_occupancy(
                court_group,
                target_date,
                bookings,
                blocks,
                occupying_statuses(include_completed_bookings),
            )
            slots = reduce_slots(candidates, occupancy)
            logger.debug(
                "Court %s on %s: %d slots, %d occupied windows across %d courts",
                court_id, target_date, len(slots), len(occupancy), len(court_group),
            )

        if stamp is not None:
            self._cache.put(key, stamp, court_group, slots)
        return court_group, slots

    async def _resolve_group(self, court_id: str) -> tuple[str, ...]:
        try:
            members = await self._provider.resolve_court_group(court_id)
        except AvailabilityError:
            raise
        except Exception as exc:
            raise GroupLookupFailed(
                "Failed to resolve court group", court_id=court_id,
            ) from exc

        group = set(members or ())
        group.add(court_id)
        return tuple(sorted(group))

    async def _fetch_occupancy(
        self,
        court_group: Sequence[str],
        target_date: date,
        include_completed: bool,
    ) -> tuple[list[Booking], list[BlockedSlot]]:
        bookings, blocks = await asyncio.gather(
            self._provider.list_bookings(
                list(court_group), target_date, list(occupying_statuses(include_completed)),
            ),
            self._provider.list_blocked_slots(list(court_group), target_date),
            return_exceptions=True,
        )
        for result, what in ((bookings, "bookings"), (blocks, "blocked slots")):
            if isinstance(result, AvailabilityError):
                raise result
            if isinstance(result, BaseException):
                raise OccupancyFetchFailed(
                    f"Failed to fetch {what}",
                    court_ids=",".join(court_group),
                    date=target_date.isoformat(),
                ) from result
        return bookings, blocks

    # ── Live query ─────────────────────────────────────────────────────

    async def watch_availability(
        self,
        court_id: str,
        target_date: date,
        on_update: UpdateHandler,
        *,
        on_error: ErrorHandler | None = None,
        include_completed_bookings: bool = False,
    ) -> AvailabilityWatch:
        """
        Deliver the current slots to *on_update* and again after every change.

        Raises if the first snapshot cannot be computed; nothing stays open
        in that case. The returned watch is the disposer: ``await
        watch.close()`` or use it as an async context manager.
        """
        watch = AvailabilityWatch(
            self,
            court_id,
            target_date,
            on_update,
            on_error=on_error,
            include_completed_bookings=include_completed_bookings,
        )
        self._watches.add(watch)
        try:
            await watch.open()
        except BaseException:
            await self._discard(watch)
            raise
        return watch

    async def _discard(self, watch: AvailabilityWatch) -> None:
        self._watches.discard(watch)
        await watch.close()

    def _forget(self, watch: AvailabilityWatch) -> None:
        self._watches.discard(watch)

    async def aclose(self) -> None:
        """Release every open watch and subscription."""
        for watch in list(self._watches):
            await watch.close()
        self._watches.clear()
        await self._notifier.aclose()
