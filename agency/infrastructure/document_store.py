from __future__ import annotations

import copy
import itertools
import json
import logging
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Any, Callable, Dict, Iterator, List, Tuple

from agency.db import connect_database
from agency.domain.identifiers import now_iso
from agency.errors import NotFoundError, StoreUnavailableError


Document = Dict[str, Any]
SubscriptionCallback = Callable[[List[Document]], None]

LOGGER = logging.getLogger("agency")


class Subscription:
    """Handle returned by `subscribe`; `dispose()` may be called any number of times."""

    def __init__(self, on_dispose: Callable[[], None]) -> None:
        self._lock = Lock()
        self._on_dispose = on_dispose
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            on_dispose, self._on_dispose = self._on_dispose, None
        if on_dispose is not None:
            on_dispose()


class DocumentStore:
    """Schemaless key/document storage grouped by collection.

    Live queries (`subscribe`) receive the full matching result set once on
    registration and again after every write that touches the collection.
    """

    def __init__(self) -> None:
        self._watch_lock = RLock()
        self._watch_ids = itertools.count(1)
        self._watchers: Dict[str, Dict[int, Tuple[str, Any, SubscriptionCallback]]] = {}

    def get(self, collection: str, doc_id: str) -> Document | None:
        raise NotImplementedError

    def list(self, collection: str) -> List[Document]:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, document: Document) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def query(self, collection: str, field: str, value: Any) -> List[Document]:
        return [document for document in self.list(collection) if document.get(field) == value]

    def update(self, collection: str, doc_id: str, partial: Document) -> Document:
        current = self.get(collection, doc_id)
        if current is None:
            raise NotFoundError(
                code="document_not_found",
                message_key="entity_not_found",
                details=f"{collection}/{doc_id} not found",
                payload={"entity": collection, "entity_id": doc_id},
            )
        merged = dict(current)
        merged.update(partial or {})
        self.set(collection, doc_id, merged)
        return merged

    def subscribe(self, collection: str, field: str, value: Any, callback: SubscriptionCallback) -> Subscription:
        with self._watch_lock:
            watch_id = next(self._watch_ids)
            self._watchers.setdefault(collection, {})[watch_id] = (field, value, callback)

        def _release() -> None:
            with self._watch_lock:
                self._watchers.get(collection, {}).pop(watch_id, None)

        subscription = Subscription(_release)
        self._deliver(collection, field, value, callback)
        return subscription

    def active_subscription_count(self, collection: str | None = None) -> int:
        with self._watch_lock:
            if collection is not None:
                return len(self._watchers.get(collection, {}))
            return sum(len(watchers) for watchers in self._watchers.values())

    def _notify(self, collection: str) -> None:
        with self._watch_lock:
            watchers = list(self._watchers.get(collection, {}).values())
        for field, value, callback in watchers:
            self._deliver(collection, field, value, callback)

    def _deliver(self, collection: str, field: str, value: Any, callback: SubscriptionCallback) -> None:
        try:
            results = self.query(collection, field, value)
        except StoreUnavailableError:
            LOGGER.warning(
                "subscription_refresh_failed",
                extra={"collection": collection, "field": field},
            )
            return
        try:
            callback(results)
        except Exception:  # noqa: BLE001
            LOGGER.exception(
                "subscription_callback_failed",
                extra={"collection": collection, "field": field},
            )


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self._lock = RLock()
        self._collections: Dict[str, Dict[str, Document]] = {}

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            document = self._collections.get(collection, {}).get(str(doc_id))
            return copy.deepcopy(document) if document is not None else None

    def list(self, collection: str) -> List[Document]:
        with self._lock:
            return [copy.deepcopy(document) for document in self._collections.get(collection, {}).values()]

    def set(self, collection: str, doc_id: str, document: Document) -> None:
        with self._lock:
            stored = copy.deepcopy(dict(document))
            stored.setdefault("id", str(doc_id))
            self._collections.setdefault(collection, {})[str(doc_id)] = stored
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            removed = self._collections.get(collection, {}).pop(str(doc_id), None)
        if removed is not None:
            self._notify(collection)


class SqlDocumentStore(DocumentStore):
    """Documents serialized as JSON in the `documents` table (SQLite or PostgreSQL)."""

    def __init__(self, db_path: str) -> None:
        super().__init__()
        self.db_path = db_path

    @contextmanager
    def _connection(self, operation: str) -> Iterator[Any]:
        try:
            db = connect_database(self.db_path)
        except Exception as exc:  # noqa: BLE001
            raise StoreUnavailableError(details=f"{operation}: {exc}") from exc
        try:
            yield db
            db.commit()
        except StoreUnavailableError:
            raise
        except Exception as exc:  # noqa: BLE001
            try:
                db.rollback()
            except Exception:  # noqa: BLE001
                LOGGER.warning("document_store_rollback_failed", extra={"operation": operation})
            raise StoreUnavailableError(details=f"{operation}: {exc}") from exc
        finally:
            db.close()

    @staticmethod
    def _decode(raw: Any) -> Document | None:
        try:
            document = json.loads(raw)
        except (TypeError, ValueError):
            LOGGER.warning("document_decode_failed")
            return None
        return document if isinstance(document, dict) else None

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._connection("get") as db:
            row = db.execute(
                "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, str(doc_id)),
            ).fetchone()
        if not row:
            return None
        return self._decode(row["data"])

    def list(self, collection: str) -> List[Document]:
        with self._connection("list") as db:
            rows = db.execute(
                "SELECT data FROM documents WHERE collection = ? ORDER BY created_at, doc_id",
                (collection,),
            ).fetchall()
        documents = [self._decode(row["data"]) for row in rows]
        return [document for document in documents if document is not None]

    def set(self, collection: str, doc_id: str, document: Document) -> None:
        stored = dict(document)
        stored.setdefault("id", str(doc_id))
        timestamp = now_iso()
        with self._connection("set") as db:
            db.execute(
                """
                INSERT INTO documents (collection, doc_id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (collection, doc_id)
                DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (collection, str(doc_id), json.dumps(stored, ensure_ascii=False, default=str), timestamp, timestamp),
            )
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._connection("delete") as db:
            db.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, str(doc_id)),
            )
        self._notify(collection)


def build_document_store(config) -> DocumentStore:
    backend = str(config.get("DOCUMENT_STORE_BACKEND") or "sql").strip().lower()
    if backend == "memory":
        return InMemoryDocumentStore()
    return SqlDocumentStore(config["DB_PATH"])
