"""
Template resolver: expands a court's weekly template into dated slots.

Pure apart from the template fetch; the result carries each template's
default availability and has not yet been reduced against occupancy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from venue_availability.errors import AvailabilityError, TemplateFetchFailed
from venue_availability.models import Slot, SlotTemplate
from venue_availability.services.providers import AvailabilityDataProvider
from venue_availability.timeutils import day_of_week, pad_time, validate_court_id, validate_date

logger = logging.getLogger(__name__)


def resolve_slots(
    court_id: str,
    target_date: date,
    templates: Iterable[SlotTemplate],
) -> list[Slot]:
    """
    Return the candidate slots of *court_id* on *target_date*.

    Templates for other courts or weekdays are ignored. An empty result is
    a valid state (closed that day), not an error.
    """
    court_id = validate_court_id(court_id)
    target_date = validate_date(target_date)
    weekday = day_of_week(target_date)

    matching = [
        t for t in templates
        if t.court_id == court_id and t.day_of_week == weekday
    ]
    matching.sort(key=lambda t: (pad_time(t.start_time), pad_time(t.end_time)))

    return [
        Slot(
            start_time=t.start_time,
            end_time=t.end_time,
            is_available=t.is_available,
            price=t.price,
        )
        for t in matching
    ]


class TemplateResolver:
    """Fetches templates from the host store and resolves them for a date."""

    def __init__(self, provider: AvailabilityDataProvider) -> None:
        self._provider = provider

    async def resolve(self, court_id: str, target_date: date) -> list[Slot]:
        # Fail fast on bad input before touching the store
        validate_court_id(court_id)
        validate_date(target_date)

        try:
            templates = await self._provider.list_templates(court_id)
        except AvailabilityError:
            raise
        except Exception as exc:
            raise TemplateFetchFailed(
                "Failed to load slot templates", court_id=court_id,
            ) from exc

        slots = resolve_slots(court_id, target_date, templates)
        logger.debug(
            "Resolved %d template slots for court %s on %s",
            len(slots), court_id, target_date.isoformat(),
        )
        return slots
