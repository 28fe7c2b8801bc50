"""On-demand coordinates for a single day's activities.

Runs independently of the planner and never touches the session itinerary: the
caller gets back enriched copies of the activities and owns them.
"""
import asyncio
import logging
from functools import partial
from typing import Dict, List, Optional, Sequence

from . import prompts
from .errors import EnrichmentError, PlannerError
from .gateway import ModelGateway
from .models import Activity, Coordinate, DayPlan


def apply_coordinates(activities: Sequence[Activity], coordinates: Sequence[Coordinate]) -> List[Activity]:
    """Copy coordinates onto activities whose name matches exactly.

    The first coordinate for a name wins; unmatched activities are returned
    unchanged.
    """
    by_name: Dict[str, Coordinate] = {}
    for coord in coordinates:
        by_name.setdefault(coord.name, coord)
    enriched: List[Activity] = []
    for activity in activities:
        coord = by_name.get(activity.name)
        if coord is None:
            enriched.append(activity.model_copy())
        else:
            enriched.append(
                activity.model_copy(update={"latitude": coord.latitude, "longitude": coord.longitude})
            )
    return enriched


async def enrich_activities(
    gateway: ModelGateway, activities: Sequence[Activity], destination: str
) -> List[Activity]:
    coordinates = await gateway.call_structured(
        prompts.coordinates_prompt(activities, destination),
        prompts.COORDINATES.schema,
        prompts.COORDINATES.response_type,
    )
    return apply_coordinates(activities, coordinates)


class MapEnricher:
    """Per-day cache: each day is looked up at most once until cleared."""

    def __init__(self, gateway: ModelGateway) -> None:
        self._gateway = gateway
        self._cache: Dict[int, List[Activity]] = {}
        self._pending: Dict[int, asyncio.Task] = {}

    def cached(self, day: int) -> bool:
        return day in self._cache

    def clear(self, day: Optional[int] = None) -> None:
        if day is None:
            self._cache.clear()
            self._pending.clear()
        else:
            self._cache.pop(day, None)
            self._pending.pop(day, None)

    def _settle(self, day: int, task: asyncio.Task) -> None:
        if self._pending.get(day) is not task:
            return
        del self._pending[day]
        if not task.cancelled() and task.exception() is None:
            self._cache[day] = task.result()

    async def locate(self, plan: DayPlan, destination: str) -> List[Activity]:
        if plan.day in self._cache:
            return self._cache[plan.day]

        # Concurrent requests for the same day share one lookup; a waiter that
        # goes away does not cancel it for the others.
        task = self._pending.get(plan.day)
        if task is None:
            task = asyncio.ensure_future(enrich_activities(self._gateway, plan.activities, destination))
            self._pending[plan.day] = task
            task.add_done_callback(partial(self._settle, plan.day))
        try:
            return await asyncio.shield(task)
        except PlannerError as e:
            logging.error(f"Failed to fetch coordinates for day {plan.day}: {e.message}")
            raise EnrichmentError() from e
