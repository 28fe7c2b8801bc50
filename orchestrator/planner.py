"""Progressive itinerary generation.

A session moves through ``IDLE -> HEADER_PENDING -> SHELL_LOADING -> COMPLETE``
(or ``FAILED``). The header is requested first so a title can be shown after a
single model round-trip; then three sub-flows run concurrently:

* the packing list stream, merged one item at a time (failures are logged and
  absorbed)
* the daily plans, requested strictly one day after another (any failure fails
  the session)
* travel cost and destination quote, requested together and merged as each one
  resolves (any failure fails the session)

Sub-flows never touch the itinerary directly. They send pure update functions
over a queue; a single consumer applies them in order and publishes the new
snapshot. Updates from a superseded session are dropped on arrival.
"""
import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional

from . import prompts
from .errors import PlannerError
from .gateway import ModelGateway
from .models import (
    DayPlan,
    Itinerary,
    Preferences,
    mark_complete,
    new_itinerary,
    with_day_plan,
    with_destination_quote,
    with_header,
    with_packing_item,
    with_travel_cost,
)


Update = Callable[[Itinerary], Itinerary]


class PlanState(str, Enum):
    IDLE = "idle"
    HEADER_PENDING = "header_pending"
    SHELL_LOADING = "shell_loading"
    COMPLETE = "complete"
    FAILED = "failed"


class PlanEvent(NamedTuple):
    generation: int
    state: PlanState
    itinerary: Optional[Itinerary]
    error: Optional[str]


Listener = Callable[[PlanEvent], None]


async def _all_or_cancel(*coros: Awaitable[Any]) -> List[Any]:
    """Like gather, but a failure in one cancels the rest."""
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


class TripPlanner:
    def __init__(self, gateway: ModelGateway) -> None:
        self._gateway = gateway
        self._listeners: List[Listener] = []
        self._state = PlanState.IDLE
        self._error: Optional[str] = None
        self._itinerary: Optional[Itinerary] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> PlanState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def itinerary(self) -> Optional[Itinerary]:
        return self._itinerary

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        event = PlanEvent(self._generation, self._state, self._itinerary, self._error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logging.exception("Plan listener failed")

    def _abandon_inflight(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def start(self, preferences: Preferences) -> "asyncio.Task[Optional[Itinerary]]":
        """Begin a new session, superseding any session still in flight.

        Returns the task driving the session. It resolves to the complete
        itinerary, or ``None`` if the session failed; it is cancelled if a
        later ``start`` or ``reset`` supersedes it.
        """
        self._abandon_inflight()
        self._generation += 1
        self._error = None
        self._state = PlanState.HEADER_PENDING
        self._itinerary = new_itinerary(preferences)
        self._publish()
        self._task = asyncio.ensure_future(self._run(self._generation, preferences))
        return self._task

    def reset(self) -> None:
        self._abandon_inflight()
        self._generation += 1
        self._state = PlanState.IDLE
        self._error = None
        self._itinerary = None
        self._publish()

    async def _consume(self, generation: int, channel: asyncio.Queue) -> None:
        while True:
            update, state, done = await channel.get()
            if done.cancelled():
                # sender was cancelled while waiting
                continue
            if generation != self._generation:
                logging.info(f"Discarding update from superseded session {generation}")
                done.set_result(False)
                continue
            try:
                snapshot = update(self._itinerary)
            except Exception as e:
                done.set_exception(e)
                continue
            self._itinerary = snapshot
            if state is not None:
                self._state = state
            self._publish()
            done.set_result(True)

    async def _merge(self, channel: asyncio.Queue, update: Update, state: Optional[PlanState] = None) -> None:
        done = asyncio.get_running_loop().create_future()
        channel.put_nowait((update, state, done))
        await done

    def _fail(self, generation: int, message: str) -> None:
        if generation != self._generation:
            return
        logging.error(f"Itinerary generation failed: {message}")
        self._state = PlanState.FAILED
        self._error = message
        self._itinerary = None
        self._publish()

    async def _run(self, generation: int, preferences: Preferences) -> Optional[Itinerary]:
        channel: asyncio.Queue = asyncio.Queue()
        consumer = asyncio.ensure_future(self._consume(generation, channel))
        try:
            header = await self._gateway.call_structured(
                prompts.header_prompt(preferences), prompts.HEADER.schema, prompts.HEADER.response_type
            )
            await self._merge(channel, partial(with_header, header=header), PlanState.SHELL_LOADING)

            await _all_or_cancel(
                self._stream_packing_list(channel, preferences),
                self._load_daily_plans(channel, preferences),
                self._load_secondary_data(channel, preferences),
            )

            await self._merge(channel, mark_complete, PlanState.COMPLETE)
            return self._itinerary
        except PlannerError as e:
            self._fail(generation, e.message)
            return None
        except Exception as e:
            logging.exception("Unexpected error while generating itinerary")
            self._fail(generation, str(e) or "An unexpected error occurred. Please try again.")
            return None
        finally:
            consumer.cancel()

    async def _stream_packing_list(self, channel: asyncio.Queue, preferences: Preferences) -> None:
        try:
            async for item in self._gateway.call_stream(prompts.packing_list_prompt(preferences)):
                await self._merge(channel, partial(with_packing_item, item=item))
        except Exception as e:
            logging.warning(f"Packing list stream failed: {e}")

    async def _load_daily_plans(self, channel: asyncio.Queue, preferences: Preferences) -> None:
        for day in range(1, preferences.duration + 1):
            plan: DayPlan = await self._gateway.call_structured(
                prompts.day_plan_prompt(preferences, day),
                prompts.DAY_PLAN.schema,
                prompts.DAY_PLAN.response_type,
            )
            if plan.day != day:
                logging.warning(f"Model returned day {plan.day} when asked for day {day}; renumbering")
                plan = plan.model_copy(update={"day": day})
            await self._merge(channel, partial(with_day_plan, plan=plan))

    async def _load_secondary_data(self, channel: asyncio.Queue, preferences: Preferences) -> None:
        async def load_cost() -> None:
            cost = await self._gateway.call_structured(
                prompts.travel_cost_prompt(preferences),
                prompts.TRAVEL_COST.schema,
                prompts.TRAVEL_COST.response_type,
            )
            await self._merge(channel, partial(with_travel_cost, cost=cost))

        async def load_quote() -> None:
            quote = await self._gateway.call_structured(
                prompts.destination_quote_prompt(preferences),
                prompts.DESTINATION_QUOTE.schema,
                prompts.DESTINATION_QUOTE.response_type,
            )
            await self._merge(channel, partial(with_destination_quote, quote=quote))

        await _all_or_cancel(load_cost(), load_quote())
