"""
Identity-scoped bottle history: the bottles this device has thrown or picked.

Two ordered, append-only collections (thrown, picked) persisted as one JSON blob under a
fixed store name. Records are addressed by id; an optimistic placeholder (local_*) is
swapped for its confirmed counterpart in place, and the local -> ledger id mapping is
kept so a late or repeated reconciliation finds the same slot.

The tracker is the only writer. Presentation reads through view_for(), which filters on
the connected identity (sender for thrown, picker for picked) case-insensitively.
"""
import json
import logging
from typing import Iterator, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from driftbottle.core.constants import COLLECTIONS, PICKED, THROWN
from driftbottle.core.errors import PersistenceError
from driftbottle.core.identity import same_identity
from driftbottle.models.history_blob import HistoryBlob
from driftbottle.services.ledger.types import Bottle, BottleStatus, is_placeholder_id

logger = logging.getLogger(__name__)

# Identity field each collection is scoped by
VIEW_FIELDS = {THROWN: "sender", PICKED: "picker"}


class BlobStore(Protocol):
    def load(self, name: str) -> str | None:
        ...

    def save(self, name: str, payload: str) -> None:
        ...


class MemoryBlobStore:
    """Process-local blobs (tests, ephemeral runs)."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}

    def load(self, name: str) -> str | None:
        return self._blobs.get(name)

    def save(self, name: str, payload: str) -> None:
        self._blobs[name] = payload


class SqlBlobStore:
    """One history_blobs row per store name; upserted on every save."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def load(self, name: str) -> str | None:
        db = self._session_factory()
        try:
            row = db.query(HistoryBlob).filter(HistoryBlob.store_name == name).first()
            return row.payload_json if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(detail=str(e)) from e
        finally:
            db.close()

    def save(self, name: str, payload: str) -> None:
        db = self._session_factory()
        try:
            row = db.query(HistoryBlob).filter(HistoryBlob.store_name == name).first()
            if row:
                row.payload_json = payload
            else:
                db.add(HistoryBlob(store_name=name, payload_json=payload))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(detail=str(e)) from e
        finally:
            db.close()


class BottleView:
    """
    Read-only, restartable view: every iteration re-filters the snapshot taken at creation.
    Empty when identity is None (disconnected), never stale data from a previous identity.
    """

    def __init__(self, entries: tuple[Bottle, ...], field: str, identity: str | None) -> None:
        self._entries = entries
        self._field = field
        self._identity = identity

    def __iter__(self) -> Iterator[Bottle]:
        if self._identity is None:
            return iter(())
        return (b for b in self._entries if same_identity(getattr(b, self._field), self._identity))

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __bool__(self) -> bool:
        return any(True for _ in self)


def _check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}. Available: {list(COLLECTIONS)}")


def _index_of(items: list[Bottle], bottle_id: str, *, skip: int | None = None) -> int | None:
    for i, b in enumerate(items):
        if i != skip and b.id == bottle_id:
            return i
    return None


class HistoryStore:
    def __init__(self, blob_store: BlobStore, name: str = "bottle-history") -> None:
        self._blob_store = blob_store
        self._name = name
        self._collections: dict[str, list[Bottle]] = {c: [] for c in COLLECTIONS}
        self._resolved: dict[str, str] = {}
        self._load()

    @property
    def name(self) -> str:
        return self._name

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        raw = self._blob_store.load(self._name)
        if not raw:
            return
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            logger.warning("History %s unreadable, starting empty: %s", self._name, e)
            return
        if not isinstance(data, dict):
            logger.warning("History %s has unexpected shape, starting empty", self._name)
            return
        for collection in COLLECTIONS:
            items: list[Bottle] = []
            for item in data.get(collection) or []:
                try:
                    bottle = Bottle.model_validate(item)
                except ValidationError as e:
                    logger.warning("History %s: dropping malformed %s entry: %s", self._name, collection, e)
                    continue
                if _index_of(items, bottle.id) is None:
                    items.append(bottle)
            self._collections[collection] = items
        resolved = data.get("resolved") or {}
        if isinstance(resolved, dict):
            self._resolved = {str(k): str(v) for k, v in resolved.items()}
        logger.info(
            "History %s restored: %s thrown, %s picked",
            self._name,
            len(self._collections[THROWN]),
            len(self._collections[PICKED]),
        )

    def _commit(self, collection: str, items: list[Bottle], resolved: dict[str, str] | None = None) -> None:
        """Persist first, then swap the in-memory state, so a failed save leaves both unchanged."""
        collections = dict(self._collections)
        collections[collection] = items
        resolved = self._resolved if resolved is None else resolved
        payload = json.dumps(
            {
                THROWN: [b.to_json_dict() for b in collections[THROWN]],
                PICKED: [b.to_json_dict() for b in collections[PICKED]],
                "resolved": resolved,
            }
        )
        self._blob_store.save(self._name, payload)
        self._collections = collections
        self._resolved = resolved

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def entries(self, collection: str) -> tuple[Bottle, ...]:
        _check_collection(collection)
        return tuple(self._collections[collection])

    def get(self, collection: str, bottle_id: str) -> Bottle | None:
        """Entry by id; a superseded placeholder id resolves to its confirmed record."""
        _check_collection(collection)
        items = self._collections[collection]
        idx = _index_of(items, bottle_id)
        if idx is None and bottle_id in self._resolved:
            idx = _index_of(items, self._resolved[bottle_id])
        return items[idx] if idx is not None else None

    def resolved_id(self, local_id: str) -> str | None:
        return self._resolved.get(local_id)

    def known_ids(self, collection: str) -> set[str]:
        """Ledger ids present in a collection (placeholders excluded)."""
        return {b.id for b in self.entries(collection) if b.has_ledger_id}

    def view_for(self, collection: str, identity: str | None) -> BottleView:
        _check_collection(collection)
        return BottleView(tuple(self._collections[collection]), VIEW_FIELDS[collection], identity)

    # ------------------------------------------------------------------
    # Writes (tracker only)
    # ------------------------------------------------------------------

    def append(self, collection: str, bottle: Bottle) -> bool:
        """Append unless an entry with the same id exists. Returns False for the no-op."""
        _check_collection(collection)
        items = self._collections[collection]
        if _index_of(items, bottle.id) is not None:
            logger.debug("History %s: %s already present, append skipped", collection, bottle.id)
            return False
        self._commit(collection, [*items, bottle])
        return True

    def replace(self, collection: str, old_ref: str, new_bottle: Bottle) -> Bottle:
        """
        Supersede the entry `old_ref` with `new_bottle`, keeping its position.
        If the confirmed id is already present elsewhere, the two collapse into one entry.
        If `old_ref` is gone (already replaced or never stored), the new bottle is appended once.
        """
        _check_collection(collection)
        items = list(self._collections[collection])
        idx = _index_of(items, old_ref)
        if idx is None and old_ref in self._resolved:
            idx = _index_of(items, self._resolved[old_ref])
        dup = _index_of(items, new_bottle.id, skip=idx)

        if idx is None:
            if dup is None:
                items.append(new_bottle)
            else:
                items[dup] = new_bottle
        else:
            items[idx] = new_bottle
            if dup is not None:
                del items[dup]

        resolved = self._resolved
        if is_placeholder_id(old_ref) and new_bottle.has_ledger_id:
            resolved = {**self._resolved, old_ref: new_bottle.id}
        self._commit(collection, items, resolved)
        logger.info("History %s: %s -> %s", collection, old_ref, new_bottle.id)
        return new_bottle

    def update_status(self, collection: str, bottle_id: str, status: BottleStatus) -> Bottle | None:
        """Mark an existing entry (e.g. failed, uncertain). Returns the updated entry, or None if absent."""
        _check_collection(collection)
        items = list(self._collections[collection])
        idx = _index_of(items, bottle_id)
        if idx is None:
            return None
        if items[idx].status == status:
            return items[idx]
        items[idx] = items[idx].with_status(status)
        self._commit(collection, items)
        return items[idx]
