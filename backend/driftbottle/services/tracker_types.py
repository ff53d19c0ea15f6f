"""Types for the optimistic transaction tracker: operation kinds, states, and the per-write result."""
import time
import uuid
from enum import Enum
from typing import Any

from driftbottle.core.errors import BottleEngineError, ErrorKind
from driftbottle.services.ledger.types import Bottle


class OperationKind(str, Enum):
    THROW = "throw"
    PICK_RANDOM = "pick-random"
    PICK_TARGETED = "pick-targeted"


class OperationState(str, Enum):
    SUBMITTED = "submitted"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


TERMINAL_STATES = frozenset({OperationState.CONFIRMED, OperationState.FAILED, OperationState.TIMED_OUT})


class PendingOperation:
    """
    One in-flight write. Created on submission; ends confirmed, failed or timed-out.
    At most one non-terminal operation per kind exists at a time (enforced by the tracker).
    """

    __slots__ = (
        "op_id",
        "kind",
        "identity",
        "call_args",
        "submitted_at",
        "finished_at",
        "state",
        "tx_hash",
        "optimistic_record_ref",
        "result_record_ref",
        "error",
    )

    def __init__(self, *, kind: OperationKind, identity: str, call_args: tuple[Any, ...] = ()):
        self.op_id = uuid.uuid4().hex
        self.kind = kind
        self.identity = identity
        self.call_args = call_args
        self.submitted_at = time.time()
        self.finished_at: float | None = None
        self.state = OperationState.SUBMITTED
        self.tx_hash: str | None = None
        self.optimistic_record_ref: str | None = None
        self.result_record_ref: str | None = None
        self.error: BottleEngineError | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            "opId": self.op_id,
            "kind": self.kind.value,
            "identity": self.identity,
            "state": self.state.value,
            "terminal": self.is_terminal,
            "submittedAt": self.submitted_at,
            "finishedAt": self.finished_at,
            "txHash": self.tx_hash,
            "optimisticRecordRef": self.optimistic_record_ref,
            "resultRecordRef": self.result_record_ref,
            "errorKind": self.error.kind.value if self.error else None,
            "message": self.error.message if self.error else None,
        }


class OperationResult:
    """Terminal outcome of one write: confirmed (with the committed bottle, if decoded), failed, or timed-out."""

    __slots__ = ("operation", "bottle")

    def __init__(self, operation: PendingOperation, bottle: Bottle | None = None):
        self.operation = operation
        self.bottle = bottle

    @property
    def state(self) -> OperationState:
        return self.operation.state

    @property
    def ok(self) -> bool:
        return self.operation.state == OperationState.CONFIRMED

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.operation.error.kind if self.operation.error else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.to_dict(),
            "bottle": self.bottle.to_json_dict() if self.bottle else None,
        }
