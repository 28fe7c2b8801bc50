from typing import Dict

from fastapi import HTTPException, Request, status

from .enrichment import MapEnricher
from .gateway import ModelGateway
from .planner import TripPlanner


class PlanSession:
    """One client's planner plus the map lookups made for its days."""

    def __init__(self, gateway: ModelGateway) -> None:
        self.planner = TripPlanner(gateway)
        self.maps = MapEnricher(gateway)


# In-memory session storage, one in-flight plan per session id
SESSIONS: Dict[str, PlanSession] = {}


def get_gateway(request: Request) -> ModelGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Model gateway not initialized",
        )
    return gateway


def get_session(session_id: str) -> PlanSession:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session")
    return session
