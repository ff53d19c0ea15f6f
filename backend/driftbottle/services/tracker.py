"""
Optimistic transaction tracker: drives each write through
submitted -> awaiting-confirmation -> confirmed | failed | timed-out.

One slot per operation kind (throw, pick-random, pick-targeted): a second submission of a
kind that is still in flight is refused before anything is created or sent.

Throws are shown immediately: an optimistic placeholder (local_* id) goes into the thrown
history before submission and is swapped for the ledger's record once the BottleThrown
event is decoded. A rejected or timed-out throw keeps its placeholder (failed / uncertain)
so the user's text never disappears. Picks have no placeholder; the decoded bottle is
committed to picked history only on confirmation.

Timeouts cancel our wait, not the ledger write: a timed-out operation may still land.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any

from web3 import Web3

from driftbottle.core.constants import (
    EVENT_BOTTLE_PICKED,
    EVENT_BOTTLE_THROWN,
    INCLUSION_WAIT_GRACE_SECONDS,
    NO_PICKER,
    NO_TARGET,
    OP_PICK,
    OP_PICK_TARGETED,
    OP_THROW,
    PICKED,
    RECENT_OPERATIONS_LIMIT,
    RECONCILE_WAIT_SECONDS,
    THROWN,
)
from driftbottle.core.errors import (
    BottleEngineError,
    InclusionTimeoutError,
    InvalidRequestError,
    NotConnectedError,
    OperationInProgressError,
    PersistenceError,
    RejectedError,
    TransientReadError,
    UncertainOutcomeError,
    UnknownRecordError,
)
from driftbottle.core.identity import IdentitySession, same_identity
from driftbottle.services.counters import CounterSynchronizer
from driftbottle.services.events import DomainEvent, EventDecoder
from driftbottle.services.history_store import HistoryStore
from driftbottle.services.ledger.base import LedgerGateway
from driftbottle.services.ledger.client import classify_error
from driftbottle.services.ledger.scan import LedgerScanner
from driftbottle.services.ledger.types import (
    Bottle,
    BottleStatus,
    InclusionResult,
    OperationHandle,
    new_placeholder_id,
)
from driftbottle.services.tracker_types import (
    OperationKind,
    OperationResult,
    OperationState,
    PendingOperation,
)

logger = logging.getLogger(__name__)

OPERATION_NAMES = {
    OperationKind.THROW: OP_THROW,
    OperationKind.PICK_RANDOM: OP_PICK,
    OperationKind.PICK_TARGETED: OP_PICK_TARGETED,
}

# Placeholder states a reconciliation may still change
_RECONCILABLE = (BottleStatus.PENDING, BottleStatus.UNCERTAIN, BottleStatus.UNCONFIRMED_DETAIL)


class OptimisticTransactionTracker:
    def __init__(
        self,
        gateway: LedgerGateway,
        decoder: EventDecoder,
        history: HistoryStore,
        counters: CounterSynchronizer,
        identity: IdentitySession,
        *,
        scanner: LedgerScanner | None = None,
        confirmations_required: int = 1,
        inclusion_timeout: float = 120.0,
        max_content_length: int = 500,
    ) -> None:
        self._gateway = gateway
        self._decoder = decoder
        self._history = history
        self._counters = counters
        self._identity = identity
        self._scanner = scanner
        self._confirmations_required = confirmations_required
        self._inclusion_timeout = inclusion_timeout
        self._max_content_length = max_content_length

        self._active: dict[OperationKind, PendingOperation] = {}
        self._recent: deque[PendingOperation] = deque(maxlen=RECENT_OPERATIONS_LIMIT)
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def is_busy(self, kind: OperationKind) -> bool:
        return kind in self._active

    def active_operation(self, kind: OperationKind) -> PendingOperation | None:
        return self._active.get(kind)

    def operations(self) -> list[PendingOperation]:
        """Active operations first, then recently finished ones (newest first)."""
        return [*self._active.values(), *self._recent]

    def find_operation(self, op_id: str) -> PendingOperation | None:
        for op in self.operations():
            if op.op_id == op_id:
                return op
        return None

    # ------------------------------------------------------------------
    # Validation and slot claim (synchronous: nothing awaits between check and set)
    # ------------------------------------------------------------------

    def _require_identity(self) -> str:
        identity = self._identity.current
        if identity is None:
            raise NotConnectedError()
        return identity

    def _validate_content(self, content: str) -> str:
        if not content or not content.strip():
            raise InvalidRequestError("Bottle content must not be empty.")
        if len(content) > self._max_content_length:
            raise InvalidRequestError(f"Bottle content exceeds {self._max_content_length} characters.")
        return content

    def _validate_target(self, target_receiver: str | None) -> str:
        target = (target_receiver or "").strip()
        if not target:
            return NO_TARGET
        if not Web3.is_address(target):
            raise InvalidRequestError(f"Target receiver is not a valid address: {target}")
        return target

    def _claim(self, kind: OperationKind, identity: str, call_args: tuple[Any, ...]) -> PendingOperation:
        if kind in self._active:
            raise OperationInProgressError()
        op = PendingOperation(kind=kind, identity=identity, call_args=call_args)
        self._active[kind] = op
        return op

    def _release(self, op: PendingOperation) -> None:
        if self._active.get(op.kind) is op:
            del self._active[op.kind]
        op.finished_at = time.time()
        self._recent.appendleft(op)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def begin_throw(self, content: str, target_receiver: str | None = None) -> PendingOperation:
        """Claim the throw slot and commit the optimistic placeholder. Does not submit."""
        identity = self._require_identity()
        content = self._validate_content(content)
        target = self._validate_target(target_receiver)
        op = self._claim(OperationKind.THROW, identity, (content, target))
        placeholder = Bottle(
            id=new_placeholder_id(),
            content=content,
            sender=identity,
            target_receiver=target,
            timestamp=int(time.time()),
            is_picked=False,
            picker=NO_PICKER,
            status=BottleStatus.PENDING,
        )
        try:
            self._history.append(THROWN, placeholder)
        except BottleEngineError:
            self._active.pop(op.kind, None)
            raise
        op.optimistic_record_ref = placeholder.id
        return op

    def begin_pick(self, targeted: bool = False) -> PendingOperation:
        identity = self._require_identity()
        kind = OperationKind.PICK_TARGETED if targeted else OperationKind.PICK_RANDOM
        return self._claim(kind, identity, ())

    async def throw_bottle(self, content: str, target_receiver: str | None = None) -> OperationResult:
        return await self.run(self.begin_throw(content, target_receiver))

    async def pick_bottle(self, targeted: bool = False) -> OperationResult:
        return await self.run(self.begin_pick(targeted))

    def start_throw(self, content: str, target_receiver: str | None = None) -> PendingOperation:
        """Claim now, run the lifecycle in the background (HTTP callers poll operations)."""
        op = self.begin_throw(content, target_receiver)
        self.run_in_background(op)
        return op

    def start_pick(self, targeted: bool = False) -> PendingOperation:
        op = self.begin_pick(targeted)
        self.run_in_background(op)
        return op

    def run_in_background(self, op: PendingOperation) -> None:
        task = asyncio.get_running_loop().create_task(self.run(op))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background operation failed: %r", task.exception())

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def run(self, op: PendingOperation) -> OperationResult:
        """Submit, wait for inclusion, reconcile. Always frees the kind's slot."""
        name = OPERATION_NAMES[op.kind]
        try:
            try:
                handle = await self._gateway.submit(name, op.call_args, identity=op.identity)
                op.tx_hash = handle.tx_hash
                op.state = OperationState.AWAITING_CONFIRMATION
                self._attach_tx_hash(op)
                logger.info("%s %s awaiting confirmation: %s", op.kind.value, op.op_id, handle.tx_hash)
                result = await self._await_inclusion(handle, self._inclusion_timeout)
            except BottleEngineError as e:
                return self._settle_error(op, e)
            except Exception as e:
                # A raw error from the gateway: whether the write landed is unknown
                logger.exception("%s %s: unexpected gateway error", op.kind.value, op.op_id)
                err = classify_error(e)
                if not isinstance(err, UncertainOutcomeError):
                    err = UncertainOutcomeError(detail=err.detail or err.message)
                return self._time_out(op, err)
            return self._confirm(op, result)
        finally:
            self._release(op)

    def _settle_error(self, op: PendingOperation, error: BottleEngineError) -> OperationResult:
        if isinstance(error, (RejectedError, InvalidRequestError)):
            return self._fail(op, error)
        if isinstance(error, UncertainOutcomeError):
            return self._time_out(op, error)
        # Transport broke mid-submit or mid-wait: the write may or may not have been broadcast
        return self._time_out(op, UncertainOutcomeError(detail=error.detail or error.message))

    async def _await_inclusion(self, handle: OperationHandle, timeout: float) -> InclusionResult:
        """Gateway wait, bounded here as well so a stalled gateway cannot pin a slot."""
        try:
            return await asyncio.wait_for(
                self._gateway.await_inclusion(
                    handle,
                    confirmations_required=self._confirmations_required,
                    timeout=timeout,
                ),
                timeout + INCLUSION_WAIT_GRACE_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise InclusionTimeoutError(detail=f"{handle.tx_hash} not included within {timeout}s") from e

    def _attach_tx_hash(self, op: PendingOperation) -> None:
        if op.optimistic_record_ref is None:
            return
        placeholder = self._history.get(THROWN, op.optimistic_record_ref)
        if placeholder is None or placeholder.tx_hash == op.tx_hash:
            return
        try:
            self._history.replace(
                THROWN, placeholder.id, placeholder.model_copy(update={"tx_hash": op.tx_hash})
            )
        except PersistenceError as e:
            # The write is already out; only the local link to its hash is lost
            logger.warning("%s %s: could not record tx hash: %s", op.kind.value, op.op_id, e.detail or e.message)

    def _mark_placeholder(self, op: PendingOperation, status: BottleStatus) -> None:
        if op.optimistic_record_ref is None:
            return
        try:
            self._history.update_status(THROWN, op.optimistic_record_ref, status)
        except PersistenceError as e:
            logger.error(
                "%s %s: could not mark placeholder %s: %s",
                op.kind.value,
                op.op_id,
                status.value,
                e.detail or e.message,
            )

    def _fail(self, op: PendingOperation, error: BottleEngineError) -> OperationResult:
        op.state = OperationState.FAILED
        op.error = error
        self._mark_placeholder(op, BottleStatus.FAILED)
        logger.info("%s %s failed (%s): %s", op.kind.value, op.op_id, error.kind.value, error.detail or error.message)
        return OperationResult(op)

    def _time_out(self, op: PendingOperation, error: UncertainOutcomeError) -> OperationResult:
        op.state = OperationState.TIMED_OUT
        op.error = error
        self._mark_placeholder(op, BottleStatus.UNCERTAIN)
        logger.warning("%s %s outcome unknown: %s", op.kind.value, op.op_id, error.detail or error.message)
        return OperationResult(op)

    def _confirm(self, op: PendingOperation, result: InclusionResult) -> OperationResult:
        """The ledger has the write. A local save failure after this point never turns it into a failure."""
        op.state = OperationState.CONFIRMED
        logger.info("%s %s confirmed in block %s", op.kind.value, op.op_id, result.block_number)
        self._counters.request_refresh()
        try:
            if op.kind == OperationKind.THROW:
                bottle = self._settle_throw(op.optimistic_record_ref, op.identity, result)
            else:
                bottle = self._settle_pick(op, result)
        except PersistenceError as e:
            op.error = e
            logger.error("%s %s confirmed but not saved locally: %s", op.kind.value, op.op_id, e.detail or e.message)
            return OperationResult(op)
        if bottle is not None and bottle.has_ledger_id:
            op.result_record_ref = bottle.id
        return OperationResult(op, bottle)

    def _find_event(self, result: InclusionResult, name: str, field: str, identity: str) -> DomainEvent | None:
        """
        The event of this operation's kind among the receipt's own logs. One attributed to
        `identity` wins if there are several; otherwise the first of the kind.
        """
        first = None
        for event in self._decoder.decode(result.logs):
            if event.name != name:
                continue
            if same_identity(event.args.get(field), identity):
                return event
            if first is None:
                first = event
        return first

    def _settle_throw(self, local_id: str | None, identity: str, result: InclusionResult) -> Bottle | None:
        placeholder = self._history.get(THROWN, local_id) if local_id else None
        event = self._find_event(result, EVENT_BOTTLE_THROWN, "sender", identity)
        if event is None:
            logger.warning("Throw %s confirmed but no BottleThrown event found; keeping local record", result.tx_hash)
            if placeholder is None:
                return None
            return self._history.update_status(THROWN, placeholder.id, BottleStatus.UNCONFIRMED_DETAIL)
        # The event does not carry content: the locally entered text is kept
        bottle = event.to_bottle(
            content=placeholder.content if placeholder else "",
            tx_hash=result.tx_hash,
        )
        return self._history.replace(THROWN, local_id or bottle.id, bottle)

    def _settle_pick(self, op: PendingOperation, result: InclusionResult) -> Bottle | None:
        event = self._find_event(result, EVENT_BOTTLE_PICKED, "picker", op.identity)
        if event is None:
            logger.warning("Pick %s confirmed but no BottlePicked event found", result.tx_hash)
            return None
        overrides: dict[str, Any] = {"tx_hash": result.tx_hash}
        if op.kind == OperationKind.PICK_TARGETED:
            overrides["target_receiver"] = op.identity
        bottle = event.to_bottle(**overrides)
        self._history.append(PICKED, bottle)
        return self._history.get(PICKED, bottle.id)

    # ------------------------------------------------------------------
    # Uncertain outcomes
    # ------------------------------------------------------------------

    async def reconcile_placeholder(self, local_id: str) -> Bottle:
        """
        User-initiated "check again" for a thrown record whose outcome is unknown.
        1) Re-wait briefly on the stored tx hash; a decoded event settles it normally.
        2) Otherwise scan recent ledger entries for a bottle from this sender we do not
           know yet and adopt its id (content stays local, status unconfirmed-detail).
        Returns the record as it stands afterwards.
        """
        bottle = self._history.get(THROWN, local_id)
        if bottle is None:
            raise UnknownRecordError(f"Unknown bottle: {local_id}")
        if bottle.has_ledger_id or bottle.status not in _RECONCILABLE:
            return bottle
        for op in self._active.values():
            if op.optimistic_record_ref == local_id:
                # Still in flight; the running operation will settle it
                return bottle

        if bottle.tx_hash:
            handle = OperationHandle(tx_hash=bottle.tx_hash, operation=OP_THROW)
            try:
                result = await self._await_inclusion(handle, RECONCILE_WAIT_SECONDS)
            except (UncertainOutcomeError, TransientReadError) as e:
                logger.info("Reconcile %s: inclusion still unknown (%s)", local_id, e.message)
            except (RejectedError, InvalidRequestError) as e:
                logger.info("Reconcile %s: write did not land (%s)", local_id, e.detail or e.message)
                return self._history.update_status(THROWN, local_id, BottleStatus.FAILED) or bottle
            else:
                settled = self._settle_throw(local_id, bottle.sender, result)
                self._counters.request_refresh()
                if settled is not None and settled.has_ledger_id:
                    return settled

        if self._scanner is None:
            return self._history.get(THROWN, local_id) or bottle
        try:
            details = await self._scanner.find_unknown_by_sender(bottle.sender, self._history.known_ids(THROWN))
        except BottleEngineError as e:
            logger.warning("Reconcile %s: ledger scan failed: %s", local_id, e.detail or e.message)
            return self._history.get(THROWN, local_id) or bottle
        if details is None:
            logger.info("Reconcile %s: no matching ledger entry yet", local_id)
            return self._history.update_status(THROWN, local_id, BottleStatus.UNCERTAIN) or bottle

        current = self._history.get(THROWN, local_id) or bottle
        adopted = current.model_copy(
            update={
                "id": details.id,
                "is_picked": details.is_picked,
                "picker": details.picker,
                "status": BottleStatus.UNCONFIRMED_DETAIL,
            }
        )
        logger.info("Reconcile %s: adopted ledger id %s (index %s)", local_id, details.id, details.index)
        return self._history.replace(THROWN, local_id, adopted)
