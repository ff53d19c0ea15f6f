"""
Counter synchronizer: latest known aggregate counts (available, targeted at me, total).

Refreshed on a fixed interval by the scheduler and on demand after a confirmed write.
A refresh replaces the whole snapshot or nothing: if any read fails the previous snapshot
stays current and the next tick tries again.
"""
import asyncio
import logging
import time
from typing import Any

from driftbottle.core.constants import READ_AVAILABLE_COUNT, READ_BOTTLE_COUNT, READ_TARGETED_COUNT
from driftbottle.core.errors import BottleEngineError, TransientReadError
from driftbottle.core.identity import IdentitySession, same_identity
from driftbottle.services.ledger.base import LedgerGateway

logger = logging.getLogger(__name__)


class CounterSnapshot:
    """Not persisted; may be stale by up to the polling interval."""

    __slots__ = ("available_count", "targeted_count", "total_count", "identity", "as_of")

    def __init__(
        self,
        *,
        available_count: int | None = None,
        targeted_count: int | None = None,
        total_count: int | None = None,
        identity: str | None = None,
        as_of: float | None = None,
    ):
        self.available_count = available_count
        self.targeted_count = targeted_count
        self.total_count = total_count
        self.identity = identity
        self.as_of = as_of

    def to_dict(self) -> dict[str, Any]:
        return {
            "availableCount": self.available_count,
            "targetedCount": self.targeted_count,
            "totalCount": self.total_count,
            "identity": self.identity,
            "asOf": self.as_of,
        }


class CounterSynchronizer:
    def __init__(
        self,
        gateway: LedgerGateway,
        identity: IdentitySession,
        *,
        interval_seconds: float = 5.0,
    ) -> None:
        self._gateway = gateway
        self._identity = identity
        self._interval_seconds = interval_seconds
        self._snapshot = CounterSnapshot()
        self._task: asyncio.Task | None = None
        self._rerun = False
        identity.subscribe(self._on_identity_change)

    @property
    def snapshot(self) -> CounterSnapshot:
        return self._snapshot

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def targeted_count_for(self, identity: str | None) -> int | None:
        """Targeted count only if the snapshot was taken for this identity."""
        snap = self._snapshot
        if identity is None or not same_identity(snap.identity, identity):
            return None
        return snap.targeted_count

    async def refresh(self) -> bool:
        """Re-run all reads together. Returns False (snapshot kept) if any read failed."""
        identity = self._identity.current
        reads = [
            self._gateway.query(READ_AVAILABLE_COUNT),
            self._gateway.query(READ_BOTTLE_COUNT),
        ]
        if identity is not None:
            reads.append(self._gateway.query(READ_TARGETED_COUNT, identity=identity))
        results = await asyncio.gather(*reads, return_exceptions=True)

        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for e in errors:
                if isinstance(e, TransientReadError):
                    logger.warning("Counter refresh failed, keeping previous snapshot: %s", e.detail or e.message)
                elif isinstance(e, BottleEngineError):
                    logger.error("Counter refresh rejected by ledger: %s", e.detail or e.message)
                else:
                    logger.error("Counter refresh failed unexpectedly: %r", e)
            return False

        current = self._identity.current
        if identity != current and not same_identity(identity, current):
            # Identity switched mid-refresh; the switch scheduled its own refresh
            logger.debug("Counter refresh for %s discarded after identity change", identity)
            return False

        self._snapshot = CounterSnapshot(
            available_count=int(results[0]),
            total_count=int(results[1]),
            targeted_count=int(results[2]) if identity is not None else None,
            identity=identity,
            as_of=time.time(),
        )
        return True

    def request_refresh(self) -> asyncio.Task:
        """
        On-demand refresh (tracker after a confirmed write). Coalesces: if a refresh is
        already running it is re-run once more when it finishes, so the result reflects
        state after the trigger.
        """
        if self._task is not None and not self._task.done():
            self._rerun = True
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._refresh_until_settled())
        return self._task

    async def _refresh_until_settled(self) -> bool:
        while True:
            self._rerun = False
            ok = await self.refresh()
            if not self._rerun:
                return ok

    async def tick(self) -> None:
        """Scheduler job body."""
        await self.request_refresh()

    def _on_identity_change(self, identity: str | None) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop (e.g. called from a sync script); the next tick picks it up
            return
        self.request_refresh()
