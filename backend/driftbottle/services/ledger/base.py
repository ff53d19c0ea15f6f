"""Protocol for the ledger gateway. Owns no state; the engine only talks to the ledger through this."""
from typing import Any, Protocol, Sequence

from driftbottle.services.ledger.types import InclusionResult, OperationHandle


class LedgerGateway(Protocol):
    """Read, write and confirmation-wait against the external ledger."""

    async def query(self, name: str, args: Sequence[Any] = (), *, identity: str | None = None) -> Any:
        """
        Read-only call. Never mutates ledger or local state; safe to call concurrently.
        Raises TransientReadError (retry-safe) or InvalidRequestError (not retried).
        """
        ...

    async def submit(self, name: str, args: Sequence[Any] = (), *, identity: str) -> OperationHandle:
        """
        Initiate a state-changing call; returns once the ledger accepted it for inclusion.
        Raises RejectedError if the identity declines to authorize.
        """
        ...

    async def await_inclusion(
        self,
        handle: OperationHandle,
        *,
        confirmations_required: int = 1,
        timeout: float = 120.0,
    ) -> InclusionResult:
        """
        Suspend until the write is included at the required depth.
        Raises InclusionTimeoutError / NotFoundError (uncertain outcome) or
        InvalidRequestError when the write was included but reverted.
        """
        ...
