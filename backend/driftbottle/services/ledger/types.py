"""Ledger-facing types: the Bottle record plus handles/results for writes in flight."""
import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from driftbottle.core.constants import LOCAL_ID_PREFIX, NO_PICKER, NO_TARGET


def new_placeholder_id() -> str:
    """Locally unique id for an optimistic record. Never collides with a ledger id (prefix)."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_placeholder_id(bottle_id: str | None) -> bool:
    return bool(bottle_id) and bottle_id.startswith(LOCAL_ID_PREFIX)


class BottleStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"
    UNCERTAIN = "uncertain"
    # Write confirmed but no matching event: content trusted locally, id/timestamp may be provisional
    UNCONFIRMED_DETAIL = "unconfirmed-detail"


class Bottle(BaseModel):
    """
    One message record. Serialized with the original camelCase keys (targetReceiver, isPicked)
    so persisted history round-trips without losing any field.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    content: str
    sender: str
    target_receiver: str = Field(default=NO_TARGET, alias="targetReceiver")
    timestamp: int = 0
    is_picked: bool = Field(default=False, alias="isPicked")
    picker: str = NO_PICKER
    status: BottleStatus = BottleStatus.CONFIRMED
    tx_hash: str | None = Field(default=None, alias="txHash")

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> int:
        # Older payloads stored the ledger timestamp as a decimal string
        if v is None or v == "":
            return 0
        return int(v)

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_id(self.id)

    @property
    def has_ledger_id(self) -> bool:
        return not self.is_placeholder

    def with_status(self, status: BottleStatus) -> "Bottle":
        return self.model_copy(update={"status": status})

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class BottleDetails:
    """One row from getBottleDetails(index): the ledger's summary view (no content)."""

    __slots__ = ("index", "id", "sender", "is_picked", "picker")

    def __init__(self, *, index: int, id: str, sender: str, is_picked: bool, picker: str):
        self.index = index
        self.id = id
        self.sender = sender
        self.is_picked = is_picked
        self.picker = picker

    def to_row(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "id": self.id,
            "sender": self.sender,
            "isPicked": self.is_picked,
            "picker": self.picker,
        }


class OperationHandle:
    """Returned by submit: the write was accepted for broadcast, not yet included."""

    __slots__ = ("tx_hash", "operation", "submitted_at")

    def __init__(self, *, tx_hash: str, operation: str, submitted_at: float | None = None):
        self.tx_hash = tx_hash
        self.operation = operation
        self.submitted_at = submitted_at if submitted_at is not None else time.time()

    def __repr__(self) -> str:
        return f"OperationHandle({self.operation}, {self.tx_hash})"


class InclusionResult:
    """Receipt summary once the write reached the required depth. `logs` are raw, undecoded entries."""

    __slots__ = ("tx_hash", "block_number", "confirmations", "status", "logs")

    def __init__(
        self,
        *,
        tx_hash: str,
        block_number: int,
        confirmations: int,
        logs: list[Any],
        status: int = 1,
    ):
        self.tx_hash = tx_hash
        self.block_number = block_number
        self.confirmations = confirmations
        self.status = status
        self.logs = logs
