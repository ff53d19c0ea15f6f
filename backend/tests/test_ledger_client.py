from __future__ import annotations

from collections import deque
from types import SimpleNamespace

import pytest
from eth_account import Account
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3RPCError

from driftbottle.config import Settings
from driftbottle.core.errors import (
    InclusionTimeoutError,
    InvalidRequestError,
    NotFoundError,
    RejectedError,
    TransientReadError,
)
from driftbottle.core.identity import IdentitySession, same_identity
from driftbottle.services.ledger.client import Web3LedgerGateway, classify_error
from driftbottle.services.ledger.types import OperationHandle

from conftest import ALICE, CONTRACT


def test_contract_revert_is_invalid_request():
    err = classify_error(ContractLogicError("execution reverted: No bottles available"))
    assert isinstance(err, InvalidRequestError)
    assert "No bottles available" in err.message


def test_user_rejection_is_rejected():
    exc = Web3RPCError("boom", rpc_response={"error": {"code": 4001, "message": "User rejected the request."}})
    assert isinstance(classify_error(exc), RejectedError)
    assert isinstance(classify_error(RuntimeError("MetaMask: user denied transaction signature")), RejectedError)


def test_rpc_invalid_params_is_invalid_request():
    exc = Web3RPCError("bad params", rpc_response={"error": {"code": -32602, "message": "invalid argument"}})
    assert isinstance(classify_error(exc), InvalidRequestError)


def test_transport_failures_are_transient():
    assert isinstance(classify_error(ConnectionError("connection refused")), TransientReadError)
    exc = Web3RPCError("server error", rpc_response={"error": {"code": -32000, "message": "header not found"}})
    assert isinstance(classify_error(exc), TransientReadError)


def test_bad_arguments_are_invalid_request():
    assert isinstance(classify_error(TypeError("wrong number of arguments")), InvalidRequestError)


def test_time_exhausted_is_inclusion_timeout():
    assert isinstance(classify_error(TimeExhausted("not in chain after 120s")), InclusionTimeoutError)


def test_engine_errors_pass_through():
    original = RejectedError()
    assert classify_error(original) is original


def test_gateway_binds_checksummed_contract():
    gateway = Web3LedgerGateway(Settings(contract_address=CONTRACT, private_key=""))
    assert gateway.contract_address.lower() == CONTRACT
    assert gateway._tx_params(ALICE)["from"].lower() == ALICE
    with pytest.raises(InvalidRequestError):
        gateway._tx_params("0x123")


# ---------------------------------------------------------------------------
# Inclusion wait against a scripted eth namespace
# ---------------------------------------------------------------------------

TX = "0x" + "ab" * 32


class _ScriptedEth:
    """
    receipts: per-poll results of get_transaction_receipt (None = not found yet,
    an exception = raised); the last item repeats. heads / known work the same way.
    """

    def __init__(self, receipts, heads=(100,), known=(True,)):
        self.receipts = deque(receipts)
        self.heads = deque(heads)
        self.known = deque(known)
        self.head_reads = 0

    @staticmethod
    def _next(items):
        return items.popleft() if len(items) > 1 else items[0]

    async def get_transaction_receipt(self, tx_hash):
        item = self._next(self.receipts)
        if item is None:
            raise TransactionNotFound(f"{tx_hash} not found")
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def block_number(self):
        return self._block_number()

    async def _block_number(self):
        self.head_reads += 1
        item = self._next(self.heads)
        if isinstance(item, BaseException):
            raise item
        return item

    async def get_transaction(self, tx_hash):
        if not self._next(self.known):
            raise TransactionNotFound(f"{tx_hash} not found")
        return {"hash": tx_hash}


def _receipt(block=100, status=1, logs=()):
    return {"status": status, "blockNumber": block, "logs": list(logs)}


def _gateway_with(eth: _ScriptedEth) -> Web3LedgerGateway:
    gateway = Web3LedgerGateway(Settings(contract_address=CONTRACT, private_key="", inclusion_poll_interval_seconds=0))
    gateway._w3 = SimpleNamespace(eth=eth)
    return gateway


def _handle() -> OperationHandle:
    return OperationHandle(tx_hash=TX, operation="pickBottle")


@pytest.mark.asyncio
async def test_inclusion_returns_receipt_logs():
    eth = _ScriptedEth([None, _receipt(logs=[{"logIndex": 0}])])
    result = await _gateway_with(eth).await_inclusion(_handle(), timeout=5)
    assert result.tx_hash == TX
    assert result.block_number == 100
    assert result.logs == [{"logIndex": 0}]


@pytest.mark.asyncio
async def test_inclusion_waits_for_confirmation_depth():
    eth = _ScriptedEth([_receipt(block=100)], heads=(100, 101, 102))
    result = await _gateway_with(eth).await_inclusion(_handle(), confirmations_required=3, timeout=5)
    assert result.confirmations == 3
    assert eth.head_reads == 3


@pytest.mark.asyncio
async def test_reverted_receipt_is_invalid_request():
    eth = _ScriptedEth([_receipt(status=0)])
    with pytest.raises(InvalidRequestError):
        await _gateway_with(eth).await_inclusion(_handle(), timeout=5)


@pytest.mark.asyncio
async def test_seen_transaction_that_disappears_is_not_found():
    eth = _ScriptedEth([None], known=(True, False))
    with pytest.raises(NotFoundError):
        await _gateway_with(eth).await_inclusion(_handle(), timeout=5)


@pytest.mark.asyncio
async def test_never_included_hits_deadline():
    eth = _ScriptedEth([None], known=(True,))
    with pytest.raises(InclusionTimeoutError):
        await _gateway_with(eth).await_inclusion(_handle(), timeout=0.05)


@pytest.mark.asyncio
async def test_transport_errors_while_polling_are_retried():
    eth = _ScriptedEth(
        [ConnectionError("reset"), _receipt(block=100)],
        heads=(ConnectionError("connection reset by peer"), 100),
    )
    result = await _gateway_with(eth).await_inclusion(_handle(), timeout=5)
    assert result.block_number == 100
    assert eth.head_reads == 2


# ---------------------------------------------------------------------------
# Local signing
# ---------------------------------------------------------------------------

SIGNING_KEY = "0x" + "4c" * 32


def test_local_signer_sends_every_write_from_its_account():
    gateway = Web3LedgerGateway(Settings(contract_address=CONTRACT, private_key=SIGNING_KEY))
    signer = Account.from_key(SIGNING_KEY).address
    assert gateway.signer_address == signer
    assert gateway._tx_params(ALICE)["from"] == signer


def test_gateway_without_key_has_no_signer():
    assert Web3LedgerGateway(Settings(contract_address=CONTRACT, private_key="")).signer_address is None


def test_identity_pinned_to_signer_refuses_other_addresses():
    signer = Account.from_key(SIGNING_KEY).address
    session = IdentitySession(pinned_to=signer)
    assert session.current == signer
    session.connect(signer.lower())
    assert same_identity(session.current, signer)
    with pytest.raises(InvalidRequestError):
        session.connect(ALICE)
    assert same_identity(session.current, signer)
    session.disconnect()
    assert session.current is None
