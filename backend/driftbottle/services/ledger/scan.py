"""
Brute-index scan of the ledger's bottle list (getBottleCount + getBottleDetails(index)).

The ledger has no notion of "my history", only a flat list; this walks it newest-first.
Used for the recent-bottles listing and to resolve writes whose outcome is uncertain.
"""
import logging
from typing import Any, Iterable

from driftbottle.core.constants import READ_BOTTLE_COUNT, READ_BOTTLE_DETAILS
from driftbottle.core.errors import TransientReadError
from driftbottle.core.identity import same_identity
from driftbottle.services.ledger.base import LedgerGateway
from driftbottle.services.ledger.types import BottleDetails

logger = logging.getLogger(__name__)


def _details_from_row(index: int, row: Any) -> BottleDetails:
    """getBottleDetails returns (id, sender, isPicked, picker)."""
    bottle_id, sender, is_picked, picker = row
    return BottleDetails(
        index=index,
        id=str(bottle_id),
        sender=str(sender),
        is_picked=bool(is_picked),
        picker=str(picker),
    )


class LedgerScanner:
    def __init__(self, gateway: LedgerGateway, *, depth: int = 50) -> None:
        self._gateway = gateway
        self._depth = depth

    async def scan_recent(self, limit: int | None = None) -> list[BottleDetails]:
        """
        Newest-first details for the last `limit` bottles (default: configured depth).
        A failed read for one index is logged and skipped; a failed count read propagates.
        """
        limit = self._depth if limit is None else limit
        total = int(await self._gateway.query(READ_BOTTLE_COUNT))
        stop = max(total - limit, 0)
        rows: list[BottleDetails] = []
        for index in range(total - 1, stop - 1, -1):
            try:
                row = await self._gateway.query(READ_BOTTLE_DETAILS, [index])
            except TransientReadError as e:
                logger.warning("Bottle %s details unavailable: %s", index, e.detail or e.message)
                continue
            try:
                rows.append(_details_from_row(index, row))
            except (TypeError, ValueError) as e:
                logger.debug("Bottle %s details malformed, skipped: %s", index, e)
        return rows

    async def find_unknown_by_sender(
        self,
        identity: str,
        known_ids: Iterable[str],
        limit: int | None = None,
    ) -> BottleDetails | None:
        """Newest bottle sent by `identity` whose id is not already known locally."""
        known = set(known_ids)
        for details in await self.scan_recent(limit):
            if same_identity(details.sender, identity) and details.id not in known:
                return details
        return None
