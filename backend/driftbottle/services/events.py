"""
Event decoder: raw receipt log entries -> typed domain events.

Tolerant by construction: an entry from another contract, with an unknown topic, or
whose payload fails to decode is skipped (debug log) so one bad entry never hides the
valid events in the same batch.
"""
import logging
from collections.abc import Mapping
from typing import Any, Iterable, Iterator

from eth_abi import decode as abi_decode
from hexbytes import HexBytes
from web3 import Web3

from driftbottle.contracts.abi import EVENT_ABIS
from driftbottle.core.constants import EVENT_BOTTLE_PICKED, EVENT_BOTTLE_THROWN, NO_PICKER, NO_TARGET
from driftbottle.core.errors import DecodeSkip
from driftbottle.core.identity import same_identity
from driftbottle.services.ledger.types import Bottle, BottleStatus

logger = logging.getLogger(__name__)


def event_signature(event_abi: dict) -> str:
    types = ",".join(i["type"] for i in event_abi["inputs"])
    return f"{event_abi['name']}({types})"


def event_topic(event_abi: dict) -> bytes:
    """topic0 of an event: keccak of its canonical signature."""
    return bytes(Web3.keccak(text=event_signature(event_abi)))


class EventSpec:
    __slots__ = ("name", "topic", "inputs", "indexed", "data")

    def __init__(self, event_abi: dict):
        self.name: str = event_abi["name"]
        self.topic = event_topic(event_abi)
        self.inputs = [(i["name"], i["type"], bool(i.get("indexed"))) for i in event_abi["inputs"]]
        self.indexed = [(n, t) for n, t, idx in self.inputs if idx]
        self.data = [(n, t) for n, t, idx in self.inputs if not idx]


class DomainEvent:
    """One decoded event. `name` is the discriminant (BottleThrown, BottlePicked)."""

    __slots__ = ("name", "args", "tx_hash", "log_index")

    def __init__(self, *, name: str, args: dict[str, Any], tx_hash: str | None = None, log_index: int | None = None):
        self.name = name
        self.args = args
        self.tx_hash = tx_hash
        self.log_index = log_index

    def __repr__(self) -> str:
        return f"DomainEvent({self.name}, {self.args.get('bottleId')!r})"

    def to_bottle(self, **overrides: Any) -> Bottle:
        """Authoritative Bottle from this event. `overrides` fill fields the event does not carry (e.g. content)."""
        a = self.args
        if self.name == EVENT_BOTTLE_THROWN:
            fields: dict[str, Any] = {
                "id": str(a["bottleId"]),
                "content": "",
                "sender": a["sender"],
                "target_receiver": a.get("targetReceiver") or NO_TARGET,
                "timestamp": int(a["timestamp"]),
                "is_picked": False,
                "picker": NO_PICKER,
            }
        elif self.name == EVENT_BOTTLE_PICKED:
            fields = {
                "id": str(a["bottleId"]),
                "content": a.get("content") or "",
                "sender": a["sender"],
                "target_receiver": NO_TARGET,
                "timestamp": int(a["timestamp"]),
                "is_picked": True,
                "picker": a["picker"],
            }
        else:
            raise ValueError(f"No bottle shape for event {self.name}")
        fields["status"] = BottleStatus.CONFIRMED
        fields["tx_hash"] = self.tx_hash
        fields.update(overrides)
        return Bottle(**fields)


def _field(raw: Any, key: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(key)
    return getattr(raw, key, None)


def _hex_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return HexBytes(value).to_0x_hex()


class EventDecoder:
    """Decodes logs against the contract's event ABIs; optionally only logs emitted by `contract_address`."""

    def __init__(self, contract_address: str | None = None, event_abis: list[dict] | None = None) -> None:
        self._contract_address = contract_address
        self._specs = {spec.topic: spec for spec in (EventSpec(e) for e in (event_abis or EVENT_ABIS))}

    def decode(self, raw_logs: Iterable[Any]) -> Iterator[DomainEvent]:
        """Lazy: yields one DomainEvent per recognizable entry, in log order."""
        for position, raw in enumerate(raw_logs):
            try:
                event = self._decode_one(raw)
            except DecodeSkip as e:
                logger.debug("Skipping log entry %s: %s", position, e)
                continue
            yield event

    def _decode_one(self, raw: Any) -> DomainEvent:
        address = _field(raw, "address")
        if self._contract_address and address and not same_identity(str(address), self._contract_address):
            raise DecodeSkip(f"emitted by {address}")

        try:
            topics = [HexBytes(t) for t in (_field(raw, "topics") or [])]
        except (TypeError, ValueError) as e:
            raise DecodeSkip(f"bad topics: {e}") from e
        if not topics:
            raise DecodeSkip("no topics")
        spec = self._specs.get(bytes(topics[0]))
        if spec is None:
            raise DecodeSkip("unknown event topic")
        if len(topics) - 1 != len(spec.indexed):
            raise DecodeSkip(f"{spec.name}: expected {len(spec.indexed)} indexed topics, got {len(topics) - 1}")

        values: dict[str, Any] = {}
        try:
            for (name, typ), topic in zip(spec.indexed, topics[1:]):
                if typ == "address":
                    values[name] = Web3.to_checksum_address("0x" + bytes(topic[-20:]).hex())
                else:
                    values[name] = abi_decode([typ], bytes(topic))[0]
            data = HexBytes(_field(raw, "data") or b"")
            decoded = abi_decode([t for _, t in spec.data], bytes(data))
            tx_hash = _hex_or_none(_field(raw, "transactionHash"))
        except Exception as e:
            raise DecodeSkip(f"{spec.name}: {e}") from e
        values.update(zip((n for n, _ in spec.data), decoded))

        args = {name: values[name] for name, _, _ in spec.inputs}
        log_index = _field(raw, "logIndex")
        return DomainEvent(
            name=spec.name,
            args=args,
            tx_hash=tx_hash,
            log_index=int(log_index) if log_index is not None else None,
        )
