"""
Shared test fixtures.

Provides:
  • an in-memory provider and engine for unit tests (no SQLite)
  • a FastAPI TestClient whose lifespan opens a temporary, pre-seeded
    SQLite database with a fast change feed

The `client` fixture runs the full lifespan (DB init / shutdown) so that
the availability endpoints read real rows.
"""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from tests.mocks.models import EVENING_TEMPLATES, EVENING_TEMPLATES_C2, VENUE_ID, WEDNESDAY
from tests.mocks.services import TEST_DEBOUNCE, InMemoryProvider
from venue_availability.db import SqliteStore
from venue_availability.models import BookingStatus
from venue_availability.services.engine import AvailabilityEngine


# ── Unit-test fixtures ─────────────────────────────────────────────────────


@pytest.fixture()
def provider() -> InMemoryProvider:
    """c1 and c2 share a field; c3 stands alone. All have Wednesday evenings."""
    return InMemoryProvider(
        templates=[
            *EVENING_TEMPLATES,
            *EVENING_TEMPLATES_C2,
            *(t.model_copy(update={"court_id": "c3"}) for t in EVENING_TEMPLATES),
        ],
        groups={"field-1": ["c1", "c2"]},
    )


@pytest.fixture()
def engine(provider: InMemoryProvider) -> AvailabilityEngine:
    return AvailabilityEngine(provider, debounce=TEST_DEBOUNCE)


# ── SQLite seeding ─────────────────────────────────────────────────────────


async def seed_store(db_path: str) -> None:
    """Create the demo venue: c1 + c2 grouped, c3 on its own."""
    async with SqliteStore(db_path) as store:
        group = await store.add_court_group(VENUE_ID, "Main field", group_id="field-1")
        await store.add_court(VENUE_ID, "North half", court_id="c1", court_group_id=group.id)
        await store.add_court(VENUE_ID, "South half", court_id="c2", court_group_id=group.id)
        await store.add_court(VENUE_ID, "Court 3", court_id="c3")

        await store.replace_templates("c1", EVENING_TEMPLATES)
        await store.replace_templates("c2", EVENING_TEMPLATES_C2)
        await store.replace_templates(
            "c3", [t.model_copy(update={"court_id": "c3"}) for t in EVENING_TEMPLATES],
        )

        await store.create_booking(
            "c2", WEDNESDAY, "18:00", "19:00", status=BookingStatus.CONFIRMED,
        )
        await store.create_booking(
            "c3", WEDNESDAY, "17:00", "18:00", status=BookingStatus.COMPLETED,
        )
        await store.block_slot("c3", WEDNESDAY, "19:00", "20:00", reason="Lights repair")


# ── API fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def db_path(tmp_path) -> str:
    path = str(tmp_path / "test.db")
    asyncio.run(seed_store(path))
    return path


@pytest.fixture()
def _test_env(monkeypatch, db_path):
    """
    Internal fixture that points the app lifespan at the seeded temp
    database and speeds up the change feed.
    """
    monkeypatch.setattr("venue_availability.main.DB_PATH", db_path)
    monkeypatch.setattr("venue_availability.main.CHANGE_FEED_INTERVAL", 0.02)
    monkeypatch.setattr("venue_availability.main.NOTIFY_DEBOUNCE_SECONDS", TEST_DEBOUNCE)

    # ── Disable rate limiting in tests ────────────────────────────────
    from venue_availability.rate_limit import limiter as _limiter
    monkeypatch.setattr(_limiter, "enabled", False)

    return db_path


@pytest.fixture()
def client(_test_env: str) -> TestClient:
    """FastAPI TestClient running the full lifespan against the seeded DB."""
    from venue_availability.main import app

    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
