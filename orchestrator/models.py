"""Itinerary data model and the pure merge functions that evolve it.

An ``Itinerary`` is frozen: every merge returns a new snapshot and never touches
the one it was given, so a reader holding a snapshot never sees a half-applied
update.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Budget = Literal["budget", "moderate", "luxury"]
TravelMode = Literal["flight", "train", "other"]

MIN_DURATION = 1
MAX_DURATION = 14


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Preferences(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    origin: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    duration: int = Field(..., ge=MIN_DURATION, le=MAX_DURATION)
    interests: List[str] = Field(..., min_length=1)
    budget: Budget


class Activity(_Model):
    name: str
    description: str
    time: str  # free text, e.g. "10:00 AM" or "Evening"
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DayPlan(_Model):
    day: int = Field(..., ge=1)
    title: str
    summary: Optional[str] = None
    activities: List[Activity]


class TravelCost(_Model):
    mode: TravelMode
    estimated_cost: str
    cost_disclaimer: str


class DestinationQuote(_Model):
    quote: str
    author: str
    translation: Optional[str] = None


class TripHeader(_Model):
    trip_title: str
    trip_summary: str


class Coordinate(_Model):
    name: str
    latitude: float
    longitude: float


class Itinerary(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    destination: str
    duration: int
    trip_title: Optional[str] = None
    trip_summary: Optional[str] = None
    daily_plans: List[DayPlan] = Field(default_factory=list)
    packing_list: Optional[List[str]] = None
    travel_cost: Optional[TravelCost] = None
    destination_quote: Optional[DestinationQuote] = None
    is_complete: bool = False

    @property
    def subtitle(self) -> str:
        return f"{self.duration}-Day Adventure in {self.destination}"

    @property
    def pending_days(self) -> int:
        """Number of day plans still to arrive (placeholders to render)."""
        return self.duration - len(self.daily_plans)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def new_itinerary(preferences: Preferences) -> Itinerary:
    return Itinerary(destination=preferences.destination, duration=preferences.duration)


def with_header(itinerary: Itinerary, header: TripHeader) -> Itinerary:
    return itinerary.model_copy(
        update={"trip_title": header.trip_title, "trip_summary": header.trip_summary}
    )


def with_day_plan(itinerary: Itinerary, plan: DayPlan) -> Itinerary:
    """Append a day plan and re-sort by day number.

    Raises ``ValueError`` if the day is outside 1..duration or already present.
    """
    if not MIN_DURATION <= plan.day <= itinerary.duration:
        raise ValueError(f"day {plan.day} outside 1..{itinerary.duration}")
    if any(p.day == plan.day for p in itinerary.daily_plans):
        raise ValueError(f"day {plan.day} already merged")
    plans = sorted([*itinerary.daily_plans, plan], key=lambda p: p.day)
    return itinerary.model_copy(update={"daily_plans": plans})


def with_packing_item(itinerary: Itinerary, item: str) -> Itinerary:
    # Arrival order, no dedup.
    return itinerary.model_copy(update={"packing_list": [*(itinerary.packing_list or []), item]})


def with_travel_cost(itinerary: Itinerary, cost: TravelCost) -> Itinerary:
    return itinerary.model_copy(update={"travel_cost": cost})


def with_destination_quote(itinerary: Itinerary, quote: DestinationQuote) -> Itinerary:
    return itinerary.model_copy(update={"destination_quote": quote})


def mark_complete(itinerary: Itinerary) -> Itinerary:
    if itinerary.trip_title is None or itinerary.trip_summary is None:
        raise ValueError("cannot complete an itinerary without its header")
    if len(itinerary.daily_plans) != itinerary.duration:
        raise ValueError(
            f"cannot complete with {len(itinerary.daily_plans)} of {itinerary.duration} days"
        )
    return itinerary.model_copy(update={"is_complete": True})
