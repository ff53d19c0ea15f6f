from __future__ import annotations

import json

import pytest

from driftbottle.core.constants import PICKED, THROWN
from driftbottle.core.errors import PersistenceError
from driftbottle.services.history_store import HistoryStore, MemoryBlobStore
from driftbottle.services.ledger.types import Bottle, BottleStatus, new_placeholder_id

from conftest import ALICE, BOB


def _bottle(bottle_id: str, sender: str = ALICE, **kw) -> Bottle:
    return Bottle(id=bottle_id, content=kw.pop("content", f"text {bottle_id}"), sender=sender, **kw)


def test_append_is_idempotent_by_id():
    store = HistoryStore(MemoryBlobStore())
    assert store.append(THROWN, _bottle("1")) is True
    assert store.append(THROWN, _bottle("1", content="other")) is False
    assert [b.id for b in store.entries(THROWN)] == ["1"]
    assert store.entries(THROWN)[0].content == "text 1"


def test_views_are_scoped_to_identity():
    store = HistoryStore(MemoryBlobStore())
    store.append(THROWN, _bottle("1", sender=ALICE))
    store.append(THROWN, _bottle("2", sender=BOB))
    store.append(PICKED, _bottle("3", sender=BOB, picker=ALICE.upper().replace("0X", "0x"), is_picked=True))

    assert [b.id for b in store.view_for(THROWN, ALICE)] == ["1"]
    assert [b.id for b in store.view_for(THROWN, BOB)] == ["2"]
    # Picked is scoped by picker, case-insensitively
    assert [b.id for b in store.view_for(PICKED, ALICE)] == ["3"]
    assert list(store.view_for(PICKED, BOB)) == []


def test_disconnected_view_is_empty_and_restartable():
    store = HistoryStore(MemoryBlobStore())
    store.append(THROWN, _bottle("1"))
    assert list(store.view_for(THROWN, None)) == []
    assert not store.view_for(THROWN, None)

    view = store.view_for(THROWN, ALICE)
    assert [b.id for b in view] == ["1"]
    assert [b.id for b in view] == ["1"]
    assert len(view) == 1


def test_replace_keeps_position_and_records_mapping():
    store = HistoryStore(MemoryBlobStore())
    local_id = new_placeholder_id()
    store.append(THROWN, _bottle("1"))
    store.append(THROWN, _bottle(local_id, status=BottleStatus.PENDING))
    store.append(THROWN, _bottle("3"))

    store.replace(THROWN, local_id, _bottle("2"))

    assert [b.id for b in store.entries(THROWN)] == ["1", "2", "3"]
    assert store.resolved_id(local_id) == "2"
    assert store.get(THROWN, local_id).id == "2"


def test_replace_twice_never_duplicates():
    store = HistoryStore(MemoryBlobStore())
    local_id = new_placeholder_id()
    store.append(THROWN, _bottle(local_id, status=BottleStatus.PENDING))
    store.replace(THROWN, local_id, _bottle("9"))
    store.replace(THROWN, local_id, _bottle("9", content="again"))
    assert [b.id for b in store.entries(THROWN)] == ["9"]


def test_replace_collapses_existing_confirmed_copy():
    store = HistoryStore(MemoryBlobStore())
    local_id = new_placeholder_id()
    store.append(THROWN, _bottle(local_id, status=BottleStatus.PENDING))
    store.append(THROWN, _bottle("9"))
    store.replace(THROWN, local_id, _bottle("9"))
    assert [b.id for b in store.entries(THROWN)] == ["9"]


def test_history_survives_restart_including_pending(sql_blob_store):
    local_id = new_placeholder_id()
    first = HistoryStore(sql_blob_store)
    first.append(THROWN, _bottle("1", timestamp=1700000000))
    first.append(THROWN, _bottle(local_id, status=BottleStatus.PENDING))
    first.append(PICKED, _bottle("5", sender=BOB, picker=ALICE, is_picked=True))

    second = HistoryStore(sql_blob_store)

    assert second.entries(THROWN) == first.entries(THROWN)
    assert second.entries(PICKED) == first.entries(PICKED)
    assert second.get(THROWN, local_id).status == BottleStatus.PENDING


def test_store_persists_camel_case_keys():
    blobs = MemoryBlobStore()
    store = HistoryStore(blobs, name="bottle-history")
    store.append(THROWN, _bottle("1", target_receiver=BOB))
    payload = json.loads(blobs.load("bottle-history"))
    entry = payload[THROWN][0]
    assert entry["targetReceiver"] == BOB
    assert entry["isPicked"] is False
    assert payload[PICKED] == []


def test_load_tolerates_corrupt_blob_and_bad_entries():
    blobs = MemoryBlobStore()
    blobs.save("bottle-history", "{not json")
    assert HistoryStore(blobs).entries(THROWN) == ()

    blobs.save(
        "bottle-history",
        json.dumps({THROWN: [{"id": "1", "content": "ok", "sender": ALICE, "timestamp": "17"}, {"oops": 1}]}),
    )
    store = HistoryStore(blobs)
    assert [b.id for b in store.entries(THROWN)] == ["1"]
    assert store.entries(THROWN)[0].timestamp == 17


class _FailingBlobStore(MemoryBlobStore):
    def save(self, name: str, payload: str) -> None:
        raise PersistenceError(detail="disk full")


def test_failed_save_leaves_memory_unchanged():
    store = HistoryStore(_FailingBlobStore())
    with pytest.raises(PersistenceError):
        store.append(THROWN, _bottle("1"))
    assert store.entries(THROWN) == ()


def test_update_status_marks_entry():
    store = HistoryStore(MemoryBlobStore())
    local_id = new_placeholder_id()
    store.append(THROWN, _bottle(local_id, status=BottleStatus.PENDING))
    updated = store.update_status(THROWN, local_id, BottleStatus.FAILED)
    assert updated.status == BottleStatus.FAILED
    assert store.update_status(THROWN, "missing", BottleStatus.FAILED) is None


def test_unknown_collection_rejected():
    store = HistoryStore(MemoryBlobStore())
    with pytest.raises(ValueError):
        store.entries("sunk")
