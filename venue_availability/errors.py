"""
Error taxonomy for availability computation.

Every failure the engine reports is an AvailabilityError so consumers can
tell "could not compute" apart from "computed, nothing bookable".
"""

from __future__ import annotations

from typing import Any


class AvailabilityError(Exception):
    """Base class for all availability engine errors."""

    code = "availability_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {k: str(v) for k, v in details.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class InvalidInput(AvailabilityError, ValueError):
    """Malformed court id, date or time value."""

    code = "invalid_input"


class TemplateFetchFailed(AvailabilityError):
    """The slot template store could not be read."""

    code = "template_fetch_failed"


class GroupLookupFailed(AvailabilityError):
    """Court group membership could not be resolved.

    Never degraded to single-court occupancy: that could hide a booking on a
    sibling court and make a taken window look bookable.
    """

    code = "group_lookup_failed"


class OccupancyFetchFailed(AvailabilityError):
    """Bookings or blocked slots could not be fetched."""

    code = "occupancy_fetch_failed"


class SubscriptionFailed(AvailabilityError):
    """The change subscription could not be established or was lost."""

    code = "subscription_failed"
