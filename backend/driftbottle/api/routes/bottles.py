"""
Bottles: throw / pick writes, operation status, identity-scoped history, counters,
and a read-only listing of the ledger's most recent bottles.

Writes return 202 with the claimed operation by default and finish in the background;
pass ?wait=true to hold the request until the operation reaches a terminal state.
"""
import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from driftbottle.api.deps import get_engine
from driftbottle.core.errors import BottleEngineError, UnknownRecordError, engine_error_to_http
from driftbottle.services.engine import BottleEngine

router = APIRouter()
logger = logging.getLogger(__name__)


class ThrowBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(..., description="Message text (non-empty, at most max_content_length chars)")
    target_receiver: str | None = Field(
        default=None,
        alias="targetReceiver",
        description="Optional recipient address; empty means anyone may pick it",
    )


class PickBody(BaseModel):
    targeted: bool = False


@router.post("/throw", status_code=202)
async def throw_bottle(
    body: ThrowBody,
    wait: bool = Query(False, description="Wait for the terminal state instead of returning immediately"),
    engine: BottleEngine = Depends(get_engine),
):
    """
    Throw a bottle. The optimistic record shows up in thrown history right away
    (status pending) and is swapped for the ledger record on confirmation.
    """
    tracker = engine.tracker
    try:
        op = tracker.begin_throw(body.content, body.target_receiver)
    except BottleEngineError as e:
        raise engine_error_to_http(e)
    if wait:
        result = await tracker.run(op)
        return result.to_dict()
    tracker.run_in_background(op)
    return {"operation": op.to_dict(), "bottle": None}


@router.post("/pick", status_code=202)
async def pick_bottle(
    body: PickBody,
    wait: bool = Query(False, description="Wait for the terminal state instead of returning immediately"),
    engine: BottleEngine = Depends(get_engine),
):
    """Pick a random bottle, or one addressed to the connected identity when targeted=true."""
    tracker = engine.tracker
    try:
        op = tracker.begin_pick(targeted=body.targeted)
    except BottleEngineError as e:
        raise engine_error_to_http(e)
    if wait:
        result = await tracker.run(op)
        return result.to_dict()
    tracker.run_in_background(op)
    return {"operation": op.to_dict(), "bottle": None}


@router.get("/operations")
def list_operations(engine: BottleEngine = Depends(get_engine)):
    """In-flight operations first, then recently finished ones."""
    return [op.to_dict() for op in engine.tracker.operations()]


@router.get("/operations/{op_id}")
def get_operation(op_id: str, engine: BottleEngine = Depends(get_engine)):
    op = engine.tracker.find_operation(op_id)
    if op is None:
        raise engine_error_to_http(UnknownRecordError(f"Unknown operation: {op_id}"))
    return op.to_dict()


@router.get("/history/{collection}")
def get_history(
    collection: Literal["thrown", "picked"],
    engine: BottleEngine = Depends(get_engine),
):
    """Thrown (filtered by sender) or picked (filtered by picker) for the connected identity."""
    identity = engine.identity.current
    view = engine.history.view_for(collection, identity)
    return {"identity": identity, "bottles": [b.to_json_dict() for b in view]}


@router.post("/history/thrown/{bottle_id}/reconcile")
async def reconcile_thrown(bottle_id: str, engine: BottleEngine = Depends(get_engine)):
    """Check again on a thrown bottle whose outcome is uncertain."""
    try:
        bottle = await engine.tracker.reconcile_placeholder(bottle_id)
    except BottleEngineError as e:
        raise engine_error_to_http(e)
    return bottle.to_json_dict()


@router.get("/counters")
def get_counters(engine: BottleEngine = Depends(get_engine)):
    """
    Last known counts. targetedCount is only reported if the snapshot was taken for the
    identity connected now; after a switch it stays null until the next refresh lands.
    """
    counters = engine.counters
    data = counters.snapshot.to_dict()
    data["targetedCount"] = counters.targeted_count_for(engine.identity.current)
    return data


@router.post("/counters/refresh")
async def refresh_counters(engine: BottleEngine = Depends(get_engine)):
    counters = engine.counters
    refreshed = await counters.request_refresh()
    data = counters.snapshot.to_dict()
    data["targetedCount"] = counters.targeted_count_for(engine.identity.current)
    data["refreshed"] = refreshed
    return data


@router.get("/ledger")
async def list_ledger(
    limit: int = Query(20, ge=1, le=200),
    engine: BottleEngine = Depends(get_engine),
):
    """Most recent ledger bottles, newest first (summary only; the ledger view has no content)."""
    try:
        rows = await engine.scanner.scan_recent(limit)
    except BottleEngineError as e:
        raise engine_error_to_http(e)
    return [row.to_row() for row in rows]
