from __future__ import annotations

from web3 import Web3

from driftbottle.core.constants import EVENT_BOTTLE_PICKED, EVENT_BOTTLE_THROWN, NO_TARGET
from driftbottle.services.events import EventDecoder
from driftbottle.services.ledger.types import BottleStatus

from conftest import ALICE, BOB, CONTRACT, picked_log, thrown_log


def test_decode_skips_malformed_and_unrelated_entries():
    decoder = EventDecoder(contract_address=CONTRACT)
    good = picked_log("7", "hello sea", ALICE, BOB)
    garbage = {"address": CONTRACT, "topics": [b"\x01" * 32], "data": b"\x00"}
    truncated = dict(picked_log("8", "cut", ALICE, BOB), data=b"\x00" * 5)

    events = list(decoder.decode([garbage, good, truncated]))

    assert len(events) == 1
    event = events[0]
    assert event.name == EVENT_BOTTLE_PICKED
    assert event.args["bottleId"] == "7"
    assert event.args["content"] == "hello sea"
    assert event.args["picker"] == Web3.to_checksum_address(BOB)


def test_decode_ignores_other_contracts():
    decoder = EventDecoder(contract_address=CONTRACT)
    foreign = thrown_log("1", ALICE, address="0x" + "99" * 20)
    assert list(decoder.decode([foreign])) == []


def test_decode_without_address_filter_accepts_any_emitter():
    decoder = EventDecoder()
    events = list(decoder.decode([thrown_log("1", ALICE, address="0x" + "99" * 20)]))
    assert [e.name for e in events] == [EVENT_BOTTLE_THROWN]


def test_decode_accepts_attribute_style_entries():
    class Entry:
        def __init__(self, raw):
            for k, v in raw.items():
                setattr(self, k, v)

    decoder = EventDecoder(contract_address=CONTRACT)
    events = list(decoder.decode([Entry(thrown_log("3", ALICE, target=BOB))]))
    assert len(events) == 1
    assert events[0].args["targetReceiver"] == Web3.to_checksum_address(BOB)


def test_decode_skips_missing_topics_and_wrong_indexed_count():
    decoder = EventDecoder(contract_address=CONTRACT)
    no_topics = {"address": CONTRACT, "topics": [], "data": b""}
    short = thrown_log("1", ALICE)
    short["topics"] = short["topics"][:2]
    assert list(decoder.decode([no_topics, short])) == []


def test_thrown_event_to_bottle_keeps_overrides():
    decoder = EventDecoder(contract_address=CONTRACT)
    event = next(decoder.decode([thrown_log("42", ALICE, timestamp=1234)]))
    bottle = event.to_bottle(content="message in a bottle")
    assert bottle.id == "42"
    assert bottle.content == "message in a bottle"
    assert bottle.timestamp == 1234
    assert bottle.target_receiver == NO_TARGET
    assert bottle.is_picked is False
    assert bottle.status == BottleStatus.CONFIRMED
    assert bottle.tx_hash == "0x" + "11" * 32


def test_picked_event_to_bottle_is_picked():
    decoder = EventDecoder(contract_address=CONTRACT)
    event = next(decoder.decode([picked_log("5", "hi", ALICE, BOB)]))
    bottle = event.to_bottle()
    assert bottle.is_picked is True
    assert bottle.content == "hi"
    assert bottle.picker == Web3.to_checksum_address(BOB)
