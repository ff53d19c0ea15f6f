"""
Identity boundary: the currently connected wallet address, supplied by an external
wallet-connection collaborator. May become None (disconnected) at any time.
"""
import logging
from typing import Callable

from driftbottle.core.errors import InvalidRequestError

logger = logging.getLogger(__name__)

IdentityListener = Callable[[str | None], None]


def normalize_identity(handle: str | None) -> str | None:
    """Lowercased, stripped handle; None/empty stays None."""
    if handle is None:
        return None
    s = handle.strip()
    return s.lower() if s else None


def same_identity(a: str | None, b: str | None) -> bool:
    """Case-insensitive address equality. A missing handle never matches anything."""
    na = normalize_identity(a)
    nb = normalize_identity(b)
    return na is not None and na == nb


class IdentitySession:
    """
    Current identity handle plus change listeners (counters, views).

    `pinned_to` is set when writes are signed by a local key: the ledger attributes them to
    that account, so no other address may be connected.
    """

    def __init__(self, address: str | None = None, *, pinned_to: str | None = None) -> None:
        self._pinned_to = (pinned_to or "").strip() or None
        self._address = (address or "").strip() or self._pinned_to
        self._listeners: list[IdentityListener] = []
        if self._pinned_to and not same_identity(self._address, self._pinned_to):
            raise InvalidRequestError(f"Identity is pinned to the signing account {self._pinned_to}.")

    @property
    def pinned_to(self) -> str | None:
        return self._pinned_to

    @property
    def current(self) -> str | None:
        return self._address

    @property
    def is_connected(self) -> bool:
        return self._address is not None

    def subscribe(self, listener: IdentityListener) -> None:
        self._listeners.append(listener)

    def connect(self, address: str) -> None:
        address = (address or "").strip()
        if not address:
            self.disconnect()
            return
        if self._pinned_to and not same_identity(address, self._pinned_to):
            raise InvalidRequestError(
                f"Writes are signed by {self._pinned_to}; only that address can be connected."
            )
        if same_identity(address, self._address):
            self._address = address
            return
        self._address = address
        logger.info("Identity connected: %s", address)
        self._notify()

    def disconnect(self) -> None:
        if self._address is None:
            return
        logger.info("Identity disconnected: %s", self._address)
        self._address = None
        self._notify()

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener(self._address)
            except Exception as e:
                logger.exception("Identity listener failed: %s", e)
