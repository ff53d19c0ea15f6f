"""Web3 ledger gateway: lowest level, sends calls/transactions to the DriftingBottle contract."""
import asyncio
import logging
from typing import Any, Sequence

from eth_account import Account
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import (
    ABIFunctionNotFound,
    ContractLogicError,
    MismatchedABI,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
    Web3ValidationError,
)
from web3.middleware import SignAndSendRawMiddlewareBuilder

from driftbottle.config import Settings, settings as default_settings
from driftbottle.contracts.abi import CONTRACT_ABI
from driftbottle.core.errors import (
    BottleEngineError,
    InclusionTimeoutError,
    InvalidRequestError,
    NotFoundError,
    RejectedError,
    TransientReadError,
)
from driftbottle.services.ledger.types import InclusionResult, OperationHandle

logger = logging.getLogger(__name__)

# EIP-1193 "user rejected request"
RPC_CODE_USER_REJECTED = 4001
RPC_CODES_INVALID = (-32600, -32602)
_REJECT_MARKERS = ("user rejected", "user denied", "rejected the request", "denied transaction")


def _rpc_code(exc: Web3RPCError) -> int | None:
    response = getattr(exc, "rpc_response", None) or {}
    error = response.get("error") if isinstance(response, dict) else None
    if isinstance(error, dict):
        return error.get("code")
    return None


def classify_error(exc: Exception) -> BottleEngineError:
    """Map a web3/transport exception to the engine's taxonomy. Raw errors never leave the gateway."""
    if isinstance(exc, BottleEngineError):
        return exc
    msg = str(exc)
    lower = msg.lower()
    if isinstance(exc, ContractLogicError):
        reason = getattr(exc, "message", None) or msg
        return InvalidRequestError(f"The ledger rejected the request: {reason}", detail=msg)
    if isinstance(exc, Web3RPCError):
        code = _rpc_code(exc)
        if code == RPC_CODE_USER_REJECTED or any(m in lower for m in _REJECT_MARKERS):
            return RejectedError(detail=msg)
        if code in RPC_CODES_INVALID:
            return InvalidRequestError(detail=msg)
        return TransientReadError(detail=msg)
    if any(m in lower for m in _REJECT_MARKERS):
        return RejectedError(detail=msg)
    if isinstance(exc, (Web3ValidationError, ABIFunctionNotFound, MismatchedABI, TypeError, ValueError)):
        return InvalidRequestError(detail=msg)
    if isinstance(exc, TimeExhausted):
        return InclusionTimeoutError(detail=msg)
    return TransientReadError(detail=msg)


class Web3LedgerGateway:
    """DriftingBottle contract over JSON-RPC. Stateless apart from the connection."""

    def __init__(self, config: Settings | None = None) -> None:
        self._config = config or default_settings
        self._w3 = AsyncWeb3(AsyncHTTPProvider(self._config.rpc_url))
        self._account = None
        if self._config.private_key:
            self._account = Account.from_key(self._config.private_key)
            self._w3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(self._account), layer=0)
            self._w3.eth.default_account = self._account.address
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(self._config.contract_address),
            abi=CONTRACT_ABI,
        )
        self._request_timeout = self._config.request_timeout_seconds
        self._poll_interval = self._config.inclusion_poll_interval_seconds

    @property
    def contract_address(self) -> str:
        return self._contract.address

    @property
    def signer_address(self) -> str | None:
        """Local signing account. When set, every write is sent from it whatever identity is connected."""
        return self._account.address if self._account is not None else None

    def _function(self, name: str, args: Sequence[Any]):
        try:
            return self._contract.functions[name](*args)
        except Exception as e:
            raise classify_error(e) from e

    def _tx_params(self, identity: str | None) -> dict[str, Any]:
        if self._account is not None:
            return {"from": self._account.address}
        if not identity:
            return {}
        try:
            return {"from": AsyncWeb3.to_checksum_address(identity)}
        except ValueError as e:
            raise InvalidRequestError(f"Invalid identity address: {identity}") from e

    async def query(self, name: str, args: Sequence[Any] = (), *, identity: str | None = None) -> Any:
        fn = self._function(name, args)
        try:
            return await asyncio.wait_for(fn.call(self._tx_params(identity)), self._request_timeout)
        except asyncio.TimeoutError as e:
            raise TransientReadError(detail=f"{name} timed out after {self._request_timeout}s") from e
        except Exception as e:
            raise classify_error(e) from e

    async def submit(self, name: str, args: Sequence[Any] = (), *, identity: str) -> OperationHandle:
        fn = self._function(name, args)
        params = self._tx_params(identity)
        if self._config.chain_id:
            params["chainId"] = self._config.chain_id
        try:
            tx_hash = await asyncio.wait_for(fn.transact(params), self._request_timeout)
        except asyncio.TimeoutError as e:
            raise TransientReadError(detail=f"{name} submission timed out") from e
        except Exception as e:
            raise classify_error(e) from e
        handle = OperationHandle(tx_hash=HexBytes(tx_hash).to_0x_hex(), operation=name)
        logger.info("Submitted %s: %s", name, handle.tx_hash)
        return handle

    async def await_inclusion(
        self,
        handle: OperationHandle,
        *,
        confirmations_required: int = 1,
        timeout: float = 120.0,
    ) -> InclusionResult:
        try:
            return await asyncio.wait_for(self._poll_inclusion(handle, confirmations_required), timeout)
        except asyncio.TimeoutError as e:
            raise InclusionTimeoutError(detail=f"{handle.tx_hash} not included within {timeout}s") from e

    async def _poll_inclusion(self, handle: OperationHandle, confirmations_required: int) -> InclusionResult:
        seen = False
        while True:
            try:
                receipt = await self._receipt_or_none(handle.tx_hash)
                if receipt is None:
                    if await self._transaction_known(handle.tx_hash):
                        seen = True
                    elif seen:
                        raise NotFoundError(detail=f"{handle.tx_hash} disappeared before inclusion")
                else:
                    if receipt["status"] == 0:
                        raise InvalidRequestError(
                            "The ledger reverted the transaction.", detail=handle.tx_hash
                        )
                    head = await self._w3.eth.block_number
                    confirmations = head - receipt["blockNumber"] + 1
                    if confirmations >= confirmations_required:
                        return InclusionResult(
                            tx_hash=handle.tx_hash,
                            block_number=receipt["blockNumber"],
                            confirmations=confirmations,
                            status=receipt["status"],
                            logs=list(receipt["logs"]),
                        )
            except BottleEngineError:
                raise
            except Exception as e:
                # Transport hiccup while polling: keep waiting, the deadline bounds us
                logger.debug("Inclusion poll for %s failed: %s", handle.tx_hash, e)
            await asyncio.sleep(self._poll_interval)

    async def _receipt_or_none(self, tx_hash: str):
        try:
            return await self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def _transaction_known(self, tx_hash: str) -> bool:
        try:
            await self._w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        except Exception as e:
            logger.debug("Transaction lookup for %s failed: %s", tx_hash, e)
            # Unknown is not "gone": only a definite not-found counts
            return True
        return True
