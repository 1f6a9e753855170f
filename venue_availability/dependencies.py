from typing import Annotated

from fastapi import Depends, Request

from venue_availability.services.engine import AvailabilityEngine


def get_engine(request: Request) -> AvailabilityEngine:
    """Return the engine created by the application lifespan."""
    return request.app.state.engine


Engine = Annotated[AvailabilityEngine, Depends(get_engine)]
