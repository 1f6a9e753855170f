"""Main FastAPI application for the venue availability engine."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from venue_availability.config import (
    API_VERSION,
    CACHE_MAX_ENTRIES,
    CHANGE_FEED_INTERVAL,
    DB_PATH,
    ENVIRONMENT,
    LOG_LEVEL,
    NOTIFY_DEBOUNCE_SECONDS,
)
from venue_availability.db import SqliteStore
from venue_availability.rate_limit import limiter
from venue_availability.routers import availability, health
from venue_availability.services.cache import AvailabilityCache
from venue_availability.services.engine import AvailabilityEngine

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store, start the change feed, tear both down on exit."""
    store = SqliteStore(DB_PATH, poll_interval=CHANGE_FEED_INTERVAL)
    await store.connect()
    await store.feed.start()

    engine = AvailabilityEngine(
        store, cache=AvailabilityCache(max_entries=CACHE_MAX_ENTRIES),
        debounce=NOTIFY_DEBOUNCE_SECONDS,
    )
    app.state.store = store
    app.state.engine = engine
    logger.info(
        "Venue availability API %s ready (env=%s, db=%s)", API_VERSION, ENVIRONMENT, DB_PATH,
    )
    try:
        yield
    finally:
        await engine.aclose()
        await store.close()
        logger.info("Venue availability API stopped")


app = FastAPI(
    title="Venue Availability API",
    description="Bookable court slots computed from weekly templates, bookings and admin blocks",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(health.router)
app.include_router(availability.router)
