"""Pydantic models for the venue availability engine and its HTTP API."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from venue_availability.timeutils import pad_time

DEFAULT_WATCHED_TABLES = frozenset(
    {"bookings", "blocked_slots", "template_slots", "courts", "court_groups"}
)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class _TimeWindow(BaseModel):
    """Base for records carrying a wall-clock ``[start_time, end_time)`` pair."""

    start_time: str = Field(..., description="Start time (HH:MM:SS)")
    end_time: str = Field(..., description="End time (HH:MM:SS)")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _normalise_time(cls, value: str | dt.time) -> str:
        return pad_time(value)

    @property
    def window(self) -> tuple[str, str]:
        return (self.start_time, self.end_time)


# ── Upstream records (owned by the host store, read-only here) ────────────


class SlotTemplate(_TimeWindow):
    """Recurring weekly availability rule for one court."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    court_id: str
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday … 6 = Saturday")
    is_available: bool = Field(True, description="Availability before occupancy")
    price: float | None = None


class Booking(_TimeWindow):
    id: str | None = None
    court_id: str
    booking_date: dt.date
    status: BookingStatus
    guest_name: str | None = None


class BlockedSlot(_TimeWindow):
    """Admin override that always occupies its window."""

    id: str | None = None
    court_id: str
    date: dt.date
    reason: str | None = None


class Court(BaseModel):
    id: str
    venue_id: str
    name: str
    court_group_id: str | None = None
    is_active: bool = True
    hourly_rate: float = 0.0


class CourtGroup(BaseModel):
    """Courts sharing one physical surface."""

    id: str
    venue_id: str
    name: str
    is_active: bool = True


# ── Computed projection ───────────────────────────────────────────────────


class OccupancySource(BaseModel):
    """Why a slot is unavailable."""

    kind: Literal["booking", "block"]
    court_id: str
    status: BookingStatus | None = None
    reason: str | None = None
    record_id: str | None = None


class Slot(_TimeWindow):
    """A concrete dated slot. Never persisted, recomputed on every query."""

    is_available: bool
    price: float | None = None
    occupied_by: OccupancySource | None = None


# ── Change notification ───────────────────────────────────────────────────


class ChangeEvent(BaseModel):
    """A coarse "something changed" signal from the host store."""

    model_config = ConfigDict(frozen=True)

    table: str
    action: Literal["INSERT", "UPDATE", "DELETE"]
    court_id: str | None = None
    venue_id: str | None = None
    date: dt.date | None = None


class ChangeScope(BaseModel):
    """Filter describing which change events concern a consumer."""

    model_config = ConfigDict(frozen=True)

    court_ids: frozenset[str] = frozenset()
    venue_id: str | None = None
    date: dt.date | None = None
    tables: frozenset[str] = DEFAULT_WATCHED_TABLES

    def matches(self, event: ChangeEvent) -> bool:
        if event.table not in self.tables:
            return False
        in_scope = (
            (self.venue_id is not None and event.venue_id == self.venue_id)
            or (event.court_id is not None and event.court_id in self.court_ids)
        )
        if not in_scope:
            return False
        if self.date is not None and event.date is not None:
            return event.date == self.date
        return True


# ── API responses ─────────────────────────────────────────────────────────


class AvailabilityResponse(BaseModel):
    court_id: str
    date: dt.date
    include_completed: bool
    slots: list[Slot]


class HealthResponse(BaseModel):
    status: str = Field(..., description="ok, or degraded while live updates are down")
    version: str
    change_feed: str
    open_watches: int = Field(..., description="Live availability watches currently open")
    timestamp: dt.datetime


class Error(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, str] | None = Field(None, description="Additional error details")
