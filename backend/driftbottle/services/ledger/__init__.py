"""
Ledger gateway: read (query), write (submit) and confirmation-wait against the DriftingBottle contract.
Every caller goes through the LedgerGateway protocol so tests can swap the web3 client out.
"""
from driftbottle.services.ledger.base import LedgerGateway
from driftbottle.services.ledger.scan import LedgerScanner
from driftbottle.services.ledger.types import (
    Bottle,
    BottleDetails,
    BottleStatus,
    InclusionResult,
    OperationHandle,
    is_placeholder_id,
    new_placeholder_id,
)

__all__ = [
    "Bottle",
    "BottleDetails",
    "BottleStatus",
    "InclusionResult",
    "LedgerGateway",
    "LedgerScanner",
    "OperationHandle",
    "is_placeholder_id",
    "new_placeholder_id",
]
