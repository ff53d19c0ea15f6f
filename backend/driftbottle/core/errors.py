"""
Centralized error taxonomy for ledger/engine failures.
Exception classes the engine raises, plus a reusable helper so routes stay thin and
every user-visible failure is phrased as one of the surfaced kinds, never a raw
transport error.
"""
from __future__ import annotations

from enum import Enum

from fastapi import HTTPException


class ErrorKind(str, Enum):
    TRANSIENT_READ = "transient_read"
    INVALID_REQUEST = "invalid_request"
    REJECTED = "rejected"
    UNCERTAIN_OUTCOME = "uncertain_outcome"
    PERSISTENCE = "persistence"


# ---------------------------------------------------------------------------
# Constants: user-facing messages
# ---------------------------------------------------------------------------

MSG_TRANSIENT_READ = "The ledger could not be reached. Try again in a moment."
MSG_REJECTED = "The request was declined by the wallet."
MSG_UNCERTAIN = "The outcome is unknown. The operation may still complete; check again later."
MSG_NOT_CONNECTED = "No identity connected. Connect a wallet first."
MSG_IN_PROGRESS = "An operation of this kind is already in progress."
MSG_PERSISTENCE = "Local history could not be saved."

STATUS_BAD_REQUEST = 400
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_INTERNAL_ERROR = 500
STATUS_SERVICE_UNAVAILABLE = 503
STATUS_GATEWAY_TIMEOUT = 504


class BottleEngineError(Exception):
    """Base for every error the engine surfaces. `message` is safe to show to the user."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class TransientReadError(BottleEngineError):
    """Network/timeout on a read. Retry-safe; polling retries silently."""

    kind = ErrorKind.TRANSIENT_READ
    default_message = MSG_TRANSIENT_READ


class InvalidRequestError(BottleEngineError):
    """Malformed arguments or a reverted call. Never retried; shown verbatim."""

    kind = ErrorKind.INVALID_REQUEST
    default_message = "The ledger rejected the request as invalid."


class NotConnectedError(InvalidRequestError):
    default_message = MSG_NOT_CONNECTED


class OperationInProgressError(InvalidRequestError):
    default_message = MSG_IN_PROGRESS


class UnknownRecordError(InvalidRequestError):
    """Lookup by id (operation, history entry) found nothing."""

    default_message = "No such record."


class RejectedError(BottleEngineError):
    """The identity declined to authorize the write."""

    kind = ErrorKind.REJECTED
    default_message = MSG_REJECTED


class UncertainOutcomeError(BottleEngineError):
    """Confirmation wait ended without a verdict. Not a success, not a failure."""

    kind = ErrorKind.UNCERTAIN_OUTCOME
    default_message = MSG_UNCERTAIN


class InclusionTimeoutError(UncertainOutcomeError):
    pass


class NotFoundError(UncertainOutcomeError):
    """Handle vanished before reaching the required depth: dropped, or finalized and pruned."""


class PersistenceError(BottleEngineError):
    kind = ErrorKind.PERSISTENCE
    default_message = MSG_PERSISTENCE


class DecodeSkip(Exception):
    """Raised inside the decoder for an unrelated or malformed log entry. Never surfaced."""


# ---------------------------------------------------------------------------
# Error rules: (exception type, status_code). First match wins, so subclasses go first.
# ---------------------------------------------------------------------------

ENGINE_ERROR_RULES: list[tuple[type[BottleEngineError], int]] = [
    (OperationInProgressError, STATUS_CONFLICT),
    (UnknownRecordError, STATUS_NOT_FOUND),
    (InvalidRequestError, STATUS_BAD_REQUEST),
    (RejectedError, STATUS_CONFLICT),
    (UncertainOutcomeError, STATUS_GATEWAY_TIMEOUT),
    (TransientReadError, STATUS_SERVICE_UNAVAILABLE),
]


def _status_for(exc: BottleEngineError) -> int:
    for exc_type, status_code in ENGINE_ERROR_RULES:
        if isinstance(exc, exc_type):
            return status_code
    return STATUS_INTERNAL_ERROR


def engine_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from the engine into an HTTPException.
    Engine errors keep their user-facing message; anything else becomes a generic 500
    so transport details never leak to the caller.
    """
    if isinstance(exc, BottleEngineError):
        return HTTPException(
            status_code=_status_for(exc),
            detail={"kind": exc.kind.value, "message": exc.message},
        )
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail="Internal error")
