"""
Versioned in-memory cache for computed availability.

Entries are keyed by ``(court_id, date, include_completed)``. Every
computation is stamped when its fetch *starts* with
``(version, sequence)``. Writes are last-write-wins by sequence, so a slow
fetch that began before a newer one can never overwrite the newer result.
Reads hit only when the caller names a version and the stored entry is at
least that version. The cache holds at most ``max_entries`` results and
evicts the least recently used one past that.

Usage::

    cache = AvailabilityCache()
    stamp = cache.stamp(version=3)
    slots = await compute(...)
    cache.put(key, stamp, group, slots)
    cache.get(key, version=3)       # hit
    cache.get(key, version=4)       # miss – caller asked for fresher data
"""

from __future__ import annotations

import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timezone

from venue_availability.models import Slot

logger = logging.getLogger(__name__)

CacheKey = tuple[str, date, bool]
Stamp = tuple[int, int]


@dataclass(frozen=True)
class CacheEntry:
    stamp: Stamp
    court_group: tuple[str, ...]
    slots: tuple[Slot, ...]
    stored_at: datetime

    @property
    def version(self) -> int:
        return self.stamp[0]


class AvailabilityCache:
    """Last-write-wins store guarded by a monotonic stamp."""

    def __init__(self, max_entries: int = 1024) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._sequence = itertools.count(1)

    # ── Write ──────────────────────────────────────────────────────────

    def stamp(self, version: int | None) -> Stamp:
        """Stamp a computation at the moment its fetch begins."""
        return (version or 0, next(self._sequence))

    def put(
        self,
        key: CacheKey,
        stamp: Stamp,
        court_group: tuple[str, ...],
        slots: list[Slot],
    ) -> bool:
        """Store *slots* unless a newer computation already landed."""
        current = self._entries.get(key)
        if current is not None and current.stamp[1] > stamp[1]:
            logger.debug(
                "Discarding stale availability for %s (fetch %s started before %s)",
                key, stamp, current.stamp,
            )
            return False
        self._entries[key] = CacheEntry(
            stamp=stamp,
            court_group=court_group,
            slots=tuple(slots),
            stored_at=datetime.now(timezone.utc),
        )
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cached availability for %s", evicted)
        return True

    def invalidate(self, court_id: str | None = None) -> None:
        if court_id is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == court_id]:
            del self._entries[key]

    # ── Read ───────────────────────────────────────────────────────────

    def get(self, key: CacheKey, version: int | None) -> CacheEntry | None:
        """Return the entry if it is at least *version*; ``None`` never hits."""
        if version is None:
            return None
        entry = self._entries.get(key)
        if entry is None or entry.version < version:
            return None
        self._entries.move_to_end(key)
        return entry

    def __len__(self) -> int:
        return len(self._entries)
