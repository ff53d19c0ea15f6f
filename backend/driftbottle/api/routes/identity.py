"""
Identity: connect / switch / disconnect the wallet address whose history and counters are shown.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from web3 import Web3

from driftbottle.api.deps import get_engine
from driftbottle.core.errors import BottleEngineError, InvalidRequestError, engine_error_to_http
from driftbottle.services.engine import BottleEngine

router = APIRouter()
logger = logging.getLogger(__name__)


class ConnectBody(BaseModel):
    address: str = Field(..., min_length=1, max_length=64)


@router.get("/identity")
def get_identity(engine: BottleEngine = Depends(get_engine)):
    current = engine.identity.current
    return {"connected": engine.identity.is_connected, "address": current}


@router.put("/identity")
async def connect_identity(body: ConnectBody, engine: BottleEngine = Depends(get_engine)):
    """
    Connect (or switch to) an address. Views and counters re-scope immediately;
    the targeted count is refreshed in the background.
    """
    address = body.address.strip()
    if not Web3.is_address(address):
        raise engine_error_to_http(InvalidRequestError(f"Not a valid address: {address}"))
    try:
        engine.identity.connect(address)
    except BottleEngineError as e:
        raise engine_error_to_http(e)
    return {"connected": True, "address": engine.identity.current}


@router.delete("/identity")
async def disconnect_identity(engine: BottleEngine = Depends(get_engine)):
    engine.identity.disconnect()
    return {"connected": False, "address": None}
