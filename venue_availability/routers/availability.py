"""
Court availability endpoints – one-shot query and live WebSocket feed.
"""

import logging
from datetime import date

from fastapi import (
    APIRouter,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from venue_availability.dependencies import Engine
from venue_availability.errors import (
    AvailabilityError,
    InvalidInput,
    SubscriptionFailed,
)
from venue_availability.models import AvailabilityResponse, Error, Slot
from venue_availability.rate_limit import DEFAULT, limiter
from venue_availability.services.engine import AvailabilityEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courts/{court_id}", tags=["availability"])


def _error_status(exc: AvailabilityError) -> int:
    if isinstance(exc, InvalidInput):
        return status.HTTP_400_BAD_REQUEST
    # Upstream store trouble: the caller may retry
    return status.HTTP_503_SERVICE_UNAVAILABLE


def _error_detail(exc: AvailabilityError) -> dict:
    return Error(error=exc.code, message=exc.message, details=exc.details or None).model_dump()


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    operation_id="getCourtAvailability",
    summary="Bookable slots of a court on a date",
)
@limiter.limit(DEFAULT)
async def get_court_availability(
    request: Request,
    court_id: str,
    engine: Engine,
    target_date: date = Query(..., alias="date", description="Date (YYYY-MM-DD)"),
    include_completed: bool = Query(
        False, description="Count completed bookings as occupying (admin views)",
    ),
    version: int | None = Query(
        None, ge=0, description="Invalidation token; reuse a cached result of at least this version",
    ),
) -> AvailabilityResponse:
    try:
        slots = await engine.get_availability(
            court_id,
            target_date,
            include_completed_bookings=include_completed,
            version=version,
        )
    except AvailabilityError as exc:
        logger.warning("Availability for %s on %s failed: %s", court_id, target_date, exc)
        raise HTTPException(status_code=_error_status(exc), detail=_error_detail(exc)) from exc

    return AvailabilityResponse(
        court_id=court_id,
        date=target_date,
        include_completed=include_completed,
        slots=slots,
    )


def _snapshot_message(court_id: str, target_date: date, slots: list[Slot]) -> dict:
    return {
        "type": "snapshot",
        "court_id": court_id,
        "date": target_date.isoformat(),
        "slots": [s.model_dump(mode="json") for s in slots],
    }


def _error_message(exc: AvailabilityError) -> dict:
    return {
        "type": "error",
        **exc.to_dict(),
        # Last snapshot still shown, but live updates stopped
        "stale": isinstance(exc, SubscriptionFailed),
    }


@router.websocket("/availability/ws")
async def watch_court_availability(
    websocket: WebSocket,
    court_id: str,
    target_date: date = Query(..., alias="date"),
    include_completed: bool = Query(False),
) -> None:
    """
    Push a snapshot on connect and after every relevant change.

    Sending the text ``refresh`` forces a recompute (and re-subscribes if
    live updates were lost).
    """
    engine: AvailabilityEngine = websocket.app.state.engine
    await websocket.accept()

    async def on_update(slots: list[Slot]) -> None:
        await websocket.send_json(_snapshot_message(court_id, target_date, slots))

    async def on_error(exc: AvailabilityError) -> None:
        await websocket.send_json(_error_message(exc))

    try:
        watch = await engine.watch_availability(
            court_id,
            target_date,
            on_update,
            on_error=on_error,
            include_completed_bookings=include_completed,
        )
    except AvailabilityError as exc:
        await websocket.send_json(_error_message(exc))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        while True:
            message = await websocket.receive_text()
            if message.strip().lower() == "refresh":
                await watch.refresh()
    except WebSocketDisconnect:
        logger.debug("Availability watcher for %s disconnected", court_id)
    finally:
        await watch.close()
