"""Test configuration helpers: asyncio runner, a scripted ledger gateway, log builders."""

from __future__ import annotations

import asyncio
import sys
from collections import deque
from pathlib import Path
from typing import Any

import pytest
from eth_abi import encode as abi_encode
from web3 import Web3

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from driftbottle.config import Settings  # noqa: E402
from driftbottle.contracts.abi import BOTTLE_PICKED_EVENT, BOTTLE_THROWN_EVENT  # noqa: E402
from driftbottle.core.constants import (  # noqa: E402
    NO_TARGET,
    READ_AVAILABLE_COUNT,
    READ_BOTTLE_COUNT,
    READ_BOTTLE_DETAILS,
    READ_TARGETED_COUNT,
)
from driftbottle.core.identity import IdentitySession  # noqa: E402
from driftbottle.db.base import Base  # noqa: E402
from driftbottle.db.session import make_engine, make_session_factory  # noqa: E402
from driftbottle.services.engine import BottleEngine  # noqa: E402
from driftbottle.services.events import event_topic  # noqa: E402
from driftbottle.services.history_store import MemoryBlobStore, SqlBlobStore  # noqa: E402
from driftbottle.services.ledger.types import InclusionResult, OperationHandle  # noqa: E402

CONTRACT = "0xac7f0df29dca546f30ed1bf8eac46a53fc41b7c4"
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


def pytest_configure(config: pytest.Config) -> None:
    """Register the asyncio marker for the lightweight runner below."""

    config.addinivalue_line("markers", "asyncio: execute the test inside an event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute ``@pytest.mark.asyncio`` tests without requiring pytest-asyncio."""

    marker = pyfuncitem.get_closest_marker("asyncio")
    if marker is None:
        return None

    func = pyfuncitem.obj
    if not asyncio.iscoroutinefunction(func):
        return None

    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        # funcargs also carries fixtures pulled in only by other fixtures
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop.run_until_complete(func(**kwargs))
    finally:
        asyncio.set_event_loop(None)
        loop.close()
    return True


# ---------------------------------------------------------------------------
# Raw log builders (shape of a web3 receipt log entry)
# ---------------------------------------------------------------------------


def _address_topic(address: str) -> bytes:
    return abi_encode(["address"], [Web3.to_checksum_address(address)])


def thrown_log(
    bottle_id: str,
    sender: str,
    *,
    target: str = NO_TARGET,
    timestamp: int = 1_700_000_000,
    address: str = CONTRACT,
    tx_hash: str = "0x" + "11" * 32,
    log_index: int = 0,
) -> dict[str, Any]:
    return {
        "address": Web3.to_checksum_address(address),
        "topics": [event_topic(BOTTLE_THROWN_EVENT), _address_topic(sender), _address_topic(target)],
        "data": abi_encode(["string", "uint256"], [bottle_id, timestamp]),
        "transactionHash": tx_hash,
        "logIndex": log_index,
    }


def picked_log(
    bottle_id: str,
    content: str,
    sender: str,
    picker: str,
    *,
    timestamp: int = 1_700_000_100,
    address: str = CONTRACT,
    tx_hash: str = "0x" + "22" * 32,
    log_index: int = 0,
) -> dict[str, Any]:
    return {
        "address": Web3.to_checksum_address(address),
        "topics": [event_topic(BOTTLE_PICKED_EVENT), _address_topic(sender), _address_topic(picker)],
        "data": abi_encode(["string", "string", "uint256"], [bottle_id, content, timestamp]),
        "transactionHash": tx_hash,
        "logIndex": log_index,
    }


# ---------------------------------------------------------------------------
# Scripted gateway
# ---------------------------------------------------------------------------

BLOCK = object()


class FakeGateway:
    """
    In-memory LedgerGateway.

    reads:        name -> value | exception | callable(identity)
    details:      rows returned by getBottleDetails(index)
    submit_errors / inclusions: consumed one per call. An inclusion item is a list of
    raw logs (success), an exception (raised), or BLOCK (waits on `gate`).
    """

    def __init__(self) -> None:
        self.reads: dict[str, Any] = {
            READ_AVAILABLE_COUNT: 0,
            READ_BOTTLE_COUNT: 0,
            READ_TARGETED_COUNT: 0,
        }
        self.details: list[Any] = []
        self.submit_errors: deque[BaseException] = deque()
        self.inclusions: deque[Any] = deque()
        self.queries: list[tuple[str, tuple, str | None]] = []
        self.submits: list[tuple[str, tuple, str]] = []
        self.waits: list[str] = []
        self.gate: asyncio.Event | None = None

    async def query(self, name: str, args=(), *, identity: str | None = None) -> Any:
        self.queries.append((name, tuple(args), identity))
        if name == READ_BOTTLE_DETAILS:
            row = self.details[args[0]]
            if isinstance(row, BaseException):
                raise row
            return row
        value = self.reads.get(name)
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(identity)
        return value

    async def submit(self, name: str, args=(), *, identity: str) -> OperationHandle:
        self.submits.append((name, tuple(args), identity))
        if self.submit_errors:
            raise self.submit_errors.popleft()
        return OperationHandle(tx_hash="0x" + f"{len(self.submits):064x}", operation=name)

    async def await_inclusion(self, handle: OperationHandle, *, confirmations_required=1, timeout=120.0):
        self.waits.append(handle.tx_hash)
        outcome = self.inclusions.popleft() if self.inclusions else []
        if outcome is BLOCK:
            await self.gate.wait()
            outcome = self.inclusions.popleft() if self.inclusions else []
        if isinstance(outcome, BaseException):
            raise outcome
        return InclusionResult(
            tx_hash=handle.tx_hash,
            block_number=100,
            confirmations=confirmations_required,
            logs=list(outcome),
        )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        contract_address=CONTRACT,
        counter_poll_interval_seconds=60.0,
        inclusion_timeout_seconds=5.0,
    )


@pytest.fixture
def sql_blob_store(tmp_path) -> SqlBlobStore:
    db_engine = make_engine(f"sqlite:///{tmp_path / 'history.db'}")
    Base.metadata.create_all(bind=db_engine)
    return SqlBlobStore(make_session_factory(db_engine))


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def engine(gateway, blob_store, test_settings) -> BottleEngine:
    return BottleEngine(
        gateway=gateway,
        blob_store=blob_store,
        config=test_settings,
        contract_address=CONTRACT,
        identity=IdentitySession(),
    )
