import asyncio
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
import uvicorn

from exporter.pdf import export_filename, render
from .config import CONFIG
from .deps import SESSIONS, PlanSession, get_gateway, get_session
from .errors import EnrichmentError, ExportError
from .gateway import ModelGateway
from .models import Preferences
from .planner import PlanEvent, PlanState


# --- Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler()  # Ensure logs go to stdout/stderr
    ]
)
# --------------------------

limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.gateway = ModelGateway(CONFIG.api_keys)
    try:
        yield
    finally:
        for session in SESSIONS.values():
            session.planner.reset()
        SESSIONS.clear()


app = FastAPI(title="VoyageAI - Trip Planner", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


class PlanRequest(BaseModel):
    preferences: Preferences
    session_id: Optional[str] = None


def _sse(payload) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def stream_plan(session_id: str, session: PlanSession, preferences: Preferences):
    planner = session.planner
    events: asyncio.Queue = asyncio.Queue()
    unsubscribe = planner.subscribe(events.put_nowait)
    session.maps.clear()
    task = planner.start(preferences)
    generation = planner.generation
    task.add_done_callback(lambda _: events.put_nowait(None))
    try:
        while True:
            event: Optional[PlanEvent] = await events.get()
            if event is None:
                break
            if event.generation != generation:
                continue
            if event.state == PlanState.FAILED:
                yield _sse({"type": "error", "session_id": session_id, "content": event.error})
            elif event.itinerary is not None:
                yield _sse({
                    "type": "snapshot",
                    "session_id": session_id,
                    "state": event.state.value,
                    "itinerary": event.itinerary.to_wire(),
                })
        if task.cancelled():
            yield _sse({"type": "cancelled", "session_id": session_id, "content": "This plan was replaced by a newer request."})
    finally:
        unsubscribe()
    yield "data: [DONE]\n\n"


@app.get("/")
async def root(_: Request):
    return {"status": "ok"}


@app.post("/plan-trip")
@limiter.limit(CONFIG.rate_limit)
async def plan_trip(request: Request, req: PlanRequest, gateway: ModelGateway = Depends(get_gateway)):
    session_id = req.session_id or str(uuid.uuid4())
    session = SESSIONS.get(session_id)
    if session is None:
        session = PlanSession(gateway)
        SESSIONS[session_id] = session
    return StreamingResponse(stream_plan(session_id, session, req.preferences), media_type="text/event-stream")


@app.get("/sessions/{session_id}")
async def session_status(session_id: str, session: PlanSession = Depends(get_session)):
    planner = session.planner
    itinerary = planner.itinerary
    return {
        "session_id": session_id,
        "state": planner.state.value,
        "error": planner.error,
        "itinerary": itinerary.to_wire() if itinerary is not None else None,
    }


@app.post("/sessions/{session_id}/reset")
async def reset_session(session_id: str, session: PlanSession = Depends(get_session)):
    session.planner.reset()
    session.maps.clear()
    return {"session_id": session_id, "state": session.planner.state.value}


def _day_plan(session: PlanSession, day: int):
    itinerary = session.planner.itinerary
    if itinerary is not None:
        for plan in itinerary.daily_plans:
            if plan.day == day:
                return itinerary, plan
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Day {day} is not available")


@app.post("/sessions/{session_id}/days/{day}/map")
@limiter.limit(CONFIG.rate_limit)
async def day_map(request: Request, session_id: str, day: int, session: PlanSession = Depends(get_session)):
    itinerary, plan = _day_plan(session, day)
    cached = session.maps.cached(day)
    try:
        activities = await session.maps.locate(plan, itinerary.destination)
    except EnrichmentError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return {
        "session_id": session_id,
        "day": day,
        "cached": cached,
        "activities": [a.model_dump(mode="json", by_alias=True, exclude_none=True) for a in activities],
    }


@app.delete("/sessions/{session_id}/days/{day}/map")
async def clear_day_map(session_id: str, day: int, session: PlanSession = Depends(get_session)):
    session.maps.clear(day)
    return {"session_id": session_id, "day": day, "cleared": True}


@app.get("/sessions/{session_id}/export")
def export_session(session_id: str, session: PlanSession = Depends(get_session)):
    # Plain def: fpdf rendering is synchronous and runs in the threadpool.
    itinerary = session.planner.itinerary
    if itinerary is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No itinerary to export")
    try:
        content = bytes(render(itinerary, CONFIG.brand_name).output())
    except ExportError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    filename = export_filename(itinerary, CONFIG.brand_name)
    quoted = quote(filename)
    if quoted != filename:
        disposition = f"attachment; filename*=utf-8''{quoted}"
    else:
        disposition = f'attachment; filename="{filename}"'
    return Response(content, media_type="application/pdf", headers={"Content-Disposition": disposition})


if __name__ == "__main__":
    port = int(os.getenv("PORT", "3002"))
    uvicorn.run(app, host="0.0.0.0", port=port)
