"""
Health check endpoint.

Reports "degraded" while the change feed is down: one-shot queries still
work but live watchers get no updates.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from venue_availability.config import API_VERSION
from venue_availability.models import HealthResponse

router = APIRouter(prefix="/api", tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    operation_id="getHealth",
    summary="Health check",
)
async def get_health(request: Request) -> HealthResponse:
    store = request.app.state.store
    engine = request.app.state.engine
    feed_running = store.feed.is_running

    return HealthResponse(
        status="ok" if feed_running else "degraded",
        version=API_VERSION,
        change_feed="running" if feed_running else "stopped",
        open_watches=engine.open_watches,
        timestamp=datetime.now(timezone.utc),
    )
