"""
SQLite host store using aiosqlite.

Holds courts, court groups, weekly slot templates, bookings and admin
blocks, and implements the AvailabilityDataProvider protocol on top of
them. Tables are created automatically on first connect.

Every write to a watched table is recorded in ``change_log`` by a trigger,
so writes made by *any* process reach the change feed, not only writes
made through this class.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from pathlib import Path
from uuid import uuid4

import aiosqlite

from venue_availability.config import CHANGE_FEED_INTERVAL, CHANGE_FEED_MAX_FAILURES
from venue_availability.errors import SubscriptionFailed
from venue_availability.models import (
    BlockedSlot,
    Booking,
    BookingStatus,
    ChangeEvent,
    ChangeScope,
    Court,
    CourtGroup,
    SlotTemplate,
)
from venue_availability.services.background import BackgroundWorker
from venue_availability.services.providers import (
    ChangeCallback,
    Disposer,
    ErrorCallback,
)
from venue_availability.timeutils import pad_time

logger = logging.getLogger(__name__)

# ── Schema ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS court_groups (
    id          TEXT PRIMARY KEY,
    venue_id    TEXT NOT NULL,
    name        TEXT NOT NULL,
    is_active   INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS courts (
    id              TEXT PRIMARY KEY,
    venue_id        TEXT NOT NULL,
    name            TEXT NOT NULL,
    court_group_id  TEXT REFERENCES court_groups(id) ON DELETE SET NULL,
    is_active       INTEGER NOT NULL DEFAULT 1,
    hourly_rate     REAL NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_courts_group ON courts(court_group_id);

CREATE TABLE IF NOT EXISTS template_slots (
    id          TEXT PRIMARY KEY,
    court_id    TEXT NOT NULL REFERENCES courts(id) ON DELETE CASCADE,
    day_of_week INTEGER NOT NULL CHECK (day_of_week BETWEEN 0 AND 6),
    start_time  TEXT NOT NULL,      -- HH:MM:SS
    end_time    TEXT NOT NULL,
    is_available INTEGER NOT NULL DEFAULT 1,
    price       REAL
);

CREATE INDEX IF NOT EXISTS idx_templates_court ON template_slots(court_id);

CREATE TABLE IF NOT EXISTS bookings (
    id              TEXT PRIMARY KEY,
    court_id        TEXT NOT NULL,
    booking_date    TEXT NOT NULL,  -- ISO date
    start_time      TEXT NOT NULL,
    end_time        TEXT NOT NULL,
    status          TEXT NOT NULL
        CHECK (status IN ('pending', 'confirmed', 'cancelled', 'completed')),
    guest_name      TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bookings_court_date ON bookings(court_id, booking_date);

CREATE TABLE IF NOT EXISTS blocked_slots (
    id          TEXT PRIMARY KEY,
    court_id    TEXT NOT NULL,
    date        TEXT NOT NULL,
    start_time  TEXT NOT NULL,
    end_time    TEXT NOT NULL,
    reason      TEXT,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_blocks_court_date ON blocked_slots(court_id, date);

CREATE TABLE IF NOT EXISTS change_log (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name  TEXT NOT NULL,
    action      TEXT NOT NULL,
    court_id    TEXT,
    venue_id    TEXT,
    date        TEXT,
    changed_at  TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


def _change_trigger(table: str, action: str, row: str, court: str, date_col: str | None) -> str:
    """Trigger appending one change_log row for a write to *table*."""
    court_expr = f"{row}.{court}"
    date_expr = f"{row}.{date_col}" if date_col else "NULL"
    return f"""
CREATE TRIGGER IF NOT EXISTS trg_{table}_{action.lower()}_{row.lower()}
AFTER {action} ON {table} BEGIN
    INSERT INTO change_log (table_name, action, court_id, venue_id, date)
    VALUES ('{table}', '{action}', {court_expr},
            (SELECT venue_id FROM courts WHERE id = {court_expr}), {date_expr});
END;
"""


def _build_triggers() -> str:
    parts: list[str] = []
    watched = (
        ("bookings", "court_id", "booking_date"),
        ("blocked_slots", "court_id", "date"),
        ("template_slots", "court_id", None),
        ("courts", "id", None),
    )
    for table, court, date_col in watched:
        parts.append(_change_trigger(table, "INSERT", "NEW", court, date_col))
        parts.append(_change_trigger(table, "DELETE", "OLD", court, date_col))
        # An update may move a row between courts or dates: report both sides
        parts.append(_change_trigger(table, "UPDATE", "OLD", court, date_col))
        parts.append(_change_trigger(table, "UPDATE", "NEW", court, date_col))

    # A court joining or leaving a group changes its siblings' occupancy too
    for action, groups in (
        ("INSERT", "NEW.court_group_id"),
        ("DELETE", "OLD.court_group_id"),
        ("UPDATE", "OLD.court_group_id, NEW.court_group_id"),
    ):
        row = "OLD" if action == "DELETE" else "NEW"
        parts.append(f"""
CREATE TRIGGER IF NOT EXISTS trg_courts_{action.lower()}_siblings
AFTER {action} ON courts BEGIN
    INSERT INTO change_log (table_name, action, court_id, venue_id, date)
    SELECT 'courts', '{action}', id, venue_id, NULL
    FROM courts
    WHERE id != {row}.id AND court_group_id IN ({groups});
END;
""")

    # Group changes fan out to every member court
    for action, row in (("INSERT", "NEW"), ("UPDATE", "NEW"), ("DELETE", "OLD")):
        parts.append(f"""
CREATE TRIGGER IF NOT EXISTS trg_court_groups_{action.lower()}
AFTER {action} ON court_groups BEGIN
    INSERT INTO change_log (table_name, action, court_id, venue_id, date)
    SELECT 'court_groups', '{action}', id, venue_id, NULL
    FROM courts WHERE court_group_id = {row}.id;
END;
""")
    return "".join(parts)


_TRIGGERS = _build_triggers()


# ── Helpers ───────────────────────────────────────────────────────────────


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(values: Sequence[object]) -> str:
    return ", ".join("?" for _ in values)


def _row_to_template(row: aiosqlite.Row) -> SlotTemplate:
    return SlotTemplate(
        id=row["id"],
        court_id=row["court_id"],
        day_of_week=row["day_of_week"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        is_available=bool(row["is_available"]),
        price=row["price"],
    )


def _row_to_booking(row: aiosqlite.Row) -> Booking:
    return Booking(
        id=row["id"],
        court_id=row["court_id"],
        booking_date=date.fromisoformat(row["booking_date"]),
        start_time=row["start_time"],
        end_time=row["end_time"],
        status=BookingStatus(row["status"]),
        guest_name=row["guest_name"],
    )


def _row_to_block(row: aiosqlite.Row) -> BlockedSlot:
    return BlockedSlot(
        id=row["id"],
        court_id=row["court_id"],
        date=date.fromisoformat(row["date"]),
        start_time=row["start_time"],
        end_time=row["end_time"],
        reason=row["reason"],
    )


def _row_to_court(row: aiosqlite.Row) -> Court:
    return Court(
        id=row["id"],
        venue_id=row["venue_id"],
        name=row["name"],
        court_group_id=row["court_group_id"],
        is_active=bool(row["is_active"]),
        hourly_rate=row["hourly_rate"],
    )


def _row_to_event(row: aiosqlite.Row) -> ChangeEvent:
    return ChangeEvent(
        table=row["table_name"],
        action=row["action"],
        court_id=row["court_id"],
        venue_id=row["venue_id"],
        date=date.fromisoformat(row["date"]) if row["date"] else None,
    )


# ══════════════════════════════════════════════════════════════════════════
#                              STORE
# ══════════════════════════════════════════════════════════════════════════


class SqliteStore:
    """aiosqlite-backed host store and AvailabilityDataProvider."""

    def __init__(
        self,
        db_path: str,
        *,
        poll_interval: float = CHANGE_FEED_INTERVAL,
        max_poll_failures: int = CHANGE_FEED_MAX_FAILURES,
    ) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self.feed = SqliteChangeFeed(
            self, interval=poll_interval, max_failures=max_poll_failures,
        )

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the database and create tables if they don't exist."""
        db_path = Path(self._db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(db_path))
        self._db.row_factory = aiosqlite.Row  # dict-like rows
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.executescript(_SCHEMA + _TRIGGERS)
        await self._db.commit()
        logger.info("Database initialized at %s", db_path)

    async def close(self) -> None:
        """Stop the change feed and close the database connection."""
        await self.feed.stop()
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> SqliteStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        """Return the active connection (connect() must have been called)."""
        if self._db is None:
            raise RuntimeError("Database not initialized; call connect() first")
        return self._db

    # ── AvailabilityDataProvider ───────────────────────────────────────

    async def list_templates(self, court_id: str) -> list[SlotTemplate]:
        async with self.db.execute(
            "SELECT * FROM template_slots WHERE court_id = ? "
            "ORDER BY day_of_week, start_time",
            (court_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_template(r) for r in rows]

    async def resolve_court_group(self, court_id: str) -> list[str]:
        """Active courts of the court's active group, or just the court."""
        async with self.db.execute(
            """
            SELECT c.court_group_id
            FROM courts c
            JOIN court_groups g ON g.id = c.court_group_id AND g.is_active = 1
            WHERE c.id = ?
            """,
            (court_id,),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return [court_id]

        async with self.db.execute(
            "SELECT id FROM courts WHERE court_group_id = ? AND is_active = 1",
            (row["court_group_id"],),
        ) as cur:
            members = [r["id"] for r in await cur.fetchall()]
        if court_id not in members:
            members.append(court_id)
        return members

    async def list_bookings(
        self,
        court_ids: Sequence[str],
        booking_date: date,
        statuses: Sequence[BookingStatus],
    ) -> list[Booking]:
        if not court_ids or not statuses:
            return []
        status_values = [BookingStatus(s).value for s in statuses]
        sql = (
            f"SELECT * FROM bookings WHERE court_id IN ({_placeholders(court_ids)}) "
            f"AND booking_date = ? AND status IN ({_placeholders(status_values)}) "
            "ORDER BY start_time"
        )
        params = [*court_ids, booking_date.isoformat(), *status_values]
        async with self.db.execute(sql, params) as cur:
            rows = await cur.fetchall()
        return [_row_to_booking(r) for r in rows]

    async def list_blocked_slots(
        self,
        court_ids: Sequence[str],
        block_date: date,
    ) -> list[BlockedSlot]:
        if not court_ids:
            return []
        sql = (
            f"SELECT * FROM blocked_slots WHERE court_id IN ({_placeholders(court_ids)}) "
            "AND date = ? ORDER BY start_time"
        )
        async with self.db.execute(sql, [*court_ids, block_date.isoformat()]) as cur:
            rows = await cur.fetchall()
        return [_row_to_block(r) for r in rows]

    async def subscribe_to_changes(
        self,
        scope: ChangeScope,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Disposer:
        if not self.feed.is_running:
            raise SubscriptionFailed("Change feed is not running")
        return self.feed.add_listener(scope, on_change, on_error)

    # ── Host writes (not used by the engine) ───────────────────────────

    async def add_court_group(
        self, venue_id: str, name: str, *, group_id: str | None = None, is_active: bool = True,
    ) -> CourtGroup:
        group = CourtGroup(
            id=group_id or str(uuid4()), venue_id=venue_id, name=name, is_active=is_active,
        )
        await self.db.execute(
            "INSERT INTO court_groups (id, venue_id, name, is_active) VALUES (?, ?, ?, ?)",
            (group.id, group.venue_id, group.name, int(group.is_active)),
        )
        await self.db.commit()
        return group

    async def set_court_group_active(self, group_id: str, is_active: bool) -> None:
        await self.db.execute(
            "UPDATE court_groups SET is_active = ? WHERE id = ?", (int(is_active), group_id),
        )
        await self.db.commit()

    async def add_court(
        self,
        venue_id: str,
        name: str,
        *,
        court_id: str | None = None,
        court_group_id: str | None = None,
        hourly_rate: float = 0.0,
        is_active: bool = True,
    ) -> Court:
        court = Court(
            id=court_id or str(uuid4()),
            venue_id=venue_id,
            name=name,
            court_group_id=court_group_id,
            is_active=is_active,
            hourly_rate=hourly_rate,
        )
        await self.db.execute(
            """
            INSERT INTO courts (id, venue_id, name, court_group_id, is_active, hourly_rate)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                court.id, court.venue_id, court.name, court.court_group_id,
                int(court.is_active), court.hourly_rate,
            ),
        )
        await self.db.commit()
        return court

    async def get_court(self, court_id: str) -> Court | None:
        async with self.db.execute("SELECT * FROM courts WHERE id = ?", (court_id,)) as cur:
            row = await cur.fetchone()
        return _row_to_court(row) if row else None

    async def set_court_group(self, court_id: str, court_group_id: str | None) -> None:
        await self.db.execute(
            "UPDATE courts SET court_group_id = ? WHERE id = ?", (court_group_id, court_id),
        )
        await self.db.commit()

    async def set_court_active(self, court_id: str, is_active: bool) -> None:
        await self.db.execute(
            "UPDATE courts SET is_active = ? WHERE id = ?", (int(is_active), court_id),
        )
        await self.db.commit()

    async def replace_templates(
        self, court_id: str, templates: Iterable[SlotTemplate],
    ) -> list[SlotTemplate]:
        """Replace every template row of a court in one transaction."""
        rows = [t for t in templates if t.court_id == court_id]
        db = self.db
        await db.execute("DELETE FROM template_slots WHERE court_id = ?", (court_id,))
        await db.executemany(
            """
            INSERT INTO template_slots
                (id, court_id, day_of_week, start_time, end_time, is_available, price)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    t.id or str(uuid4()), court_id, t.day_of_week,
                    t.start_time, t.end_time, int(t.is_available), t.price,
                )
                for t in rows
            ],
        )
        await db.commit()
        return await self.list_templates(court_id)

    async def create_booking(
        self,
        court_id: str,
        booking_date: date,
        start_time: str,
        end_time: str,
        *,
        status: BookingStatus = BookingStatus.CONFIRMED,
        guest_name: str | None = None,
    ) -> Booking:
        booking = Booking(
            id=str(uuid4()),
            court_id=court_id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            status=status,
            guest_name=guest_name,
        )
        await self.db.execute(
            """
            INSERT INTO bookings
                (id, court_id, booking_date, start_time, end_time, status, guest_name, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                booking.id, booking.court_id, booking.booking_date.isoformat(),
                booking.start_time, booking.end_time, booking.status.value,
                booking.guest_name, _now_iso(),
            ),
        )
        await self.db.commit()
        return booking

    async def update_booking_status(self, booking_id: str, status: BookingStatus) -> None:
        await self.db.execute(
            "UPDATE bookings SET status = ? WHERE id = ?",
            (BookingStatus(status).value, booking_id),
        )
        await self.db.commit()

    async def block_slot(
        self,
        court_id: str,
        block_date: date,
        start_time: str,
        end_time: str,
        *,
        reason: str | None = None,
    ) -> list[BlockedSlot]:
        """Block a window on the court and on every court sharing its surface."""
        court_ids = await self.resolve_court_group(court_id)
        blocks = [
            BlockedSlot(
                id=str(uuid4()),
                court_id=cid,
                date=block_date,
                start_time=pad_time(start_time),
                end_time=pad_time(end_time),
                reason=(reason or "").strip() or "Blocked by admin",
            )
            for cid in court_ids
        ]
        now = _now_iso()
        await self.db.executemany(
            """
            INSERT INTO blocked_slots (id, court_id, date, start_time, end_time, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (b.id, b.court_id, b.date.isoformat(), b.start_time, b.end_time, b.reason, now)
                for b in blocks
            ],
        )
        await self.db.commit()
        return blocks

    async def unblock_slot(self, block_id: str) -> None:
        await self.db.execute("DELETE FROM blocked_slots WHERE id = ?", (block_id,))
        await self.db.commit()

    # ── Change log ─────────────────────────────────────────────────────

    async def latest_change_seq(self) -> int:
        async with self.db.execute("SELECT COALESCE(MAX(seq), 0) AS seq FROM change_log") as cur:
            row = await cur.fetchone()
        return int(row["seq"])

    async def changes_since(self, seq: int, limit: int = 500) -> list[tuple[int, ChangeEvent]]:
        async with self.db.execute(
            "SELECT * FROM change_log WHERE seq > ? ORDER BY seq LIMIT ?", (seq, limit),
        ) as cur:
            rows = await cur.fetchall()
        return [(row["seq"], _row_to_event(row)) for row in rows]


# ══════════════════════════════════════════════════════════════════════════
#                           CHANGE FEED
# ══════════════════════════════════════════════════════════════════════════


class _Listener:
    __slots__ = ("scope", "on_change", "on_error")

    def __init__(
        self, scope: ChangeScope, on_change: ChangeCallback, on_error: ErrorCallback | None,
    ) -> None:
        self.scope = scope
        self.on_change = on_change
        self.on_error = on_error


class SqliteChangeFeed(BackgroundWorker):
    """
    Polls ``change_log`` and fans events out to registered listeners.

    After *max_failures* consecutive failed polls every listener receives
    a SubscriptionFailed and is dropped; consumers must re-subscribe.
    """

    def __init__(self, store: SqliteStore, *, interval: float, max_failures: int) -> None:
        super().__init__(interval=interval, name="change-feed")
        self._store = store
        self._max_failures = max_failures
        self._cursor = 0
        self._listeners: list[_Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(
        self,
        scope: ChangeScope,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Disposer:
        listener = _Listener(scope, on_change, on_error)
        self._listeners.append(listener)

        async def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    async def _on_start(self) -> None:
        # Only changes made after start are news
        self._cursor = await self._store.latest_change_seq()

    async def _tick(self) -> None:
        changes = await self._store.changes_since(self._cursor)
        for seq, event in changes:
            self._cursor = seq
            self._dispatch(event)

    async def _on_tick_error(self, exc: Exception, failures: int) -> None:
        if failures < self._max_failures or not self._listeners:
            return
        listeners, self._listeners = self._listeners, []
        logger.error(
            "Change feed failed %d times in a row; dropping %d listeners",
            failures, len(listeners),
        )
        for listener in listeners:
            if listener.on_error is None:
                continue
            failure = SubscriptionFailed("Change feed lost", reason=str(exc))
            try:
                result = listener.on_error(failure)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Change feed error callback failed")

    def _dispatch(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            if not listener.scope.matches(event):
                continue
            try:
                listener.on_change(event)
            except Exception:
                logger.exception("Change listener failed for %s", event)
