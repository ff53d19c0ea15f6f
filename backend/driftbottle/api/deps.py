"""Request dependencies shared by the routers."""
from fastapi import Request

from driftbottle.services.engine import BottleEngine


def get_engine(request: Request) -> BottleEngine:
    """The engine created in the app lifespan (one per process)."""
    return request.app.state.engine
