"""Reads and writes one collection across the remote store and the local cache.

The remote store is the source of truth whenever it answers. The local cache
(`<name>_<owner>` lists) fills gaps for privileged callers, when the remote
read fails, or when the remote has nothing in scope, and takes writes
while the remote is unreachable.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, Iterable, List, Tuple, Type, TypeVar

from agency.errors import StoreUnavailableError, SystemError
from agency.infrastructure.circuit_breaker import StoreCircuitBreaker
from agency.infrastructure.document_store import DocumentStore, Subscription
from agency.infrastructure.local_cache import LocalCache, cache_key
from agency.infrastructure.repositories.base import BaseRepository, LoadScope, PersistResult
from agency.observability import observe_store_degraded_write, observe_store_read_fallback
from agency.ui_strings import warning_message
from agency.workflow.derivations import dedupe_by_key


LOGGER = logging.getLogger("agency")

M = TypeVar("M")


class EntityRepository(BaseRepository, Generic[M]):
    collection: str = ""
    cache_name: str = ""
    model: Type[Any] = dict

    def __init__(
        self,
        store: DocumentStore,
        cache: LocalCache,
        *,
        owner_id: str | None,
        breaker: StoreCircuitBreaker | None = None,
        collection: str | None = None,
        cache_name: str | None = None,
        model: Type[Any] | None = None,
    ) -> None:
        super().__init__(owner_id=owner_id)
        self.store = store
        self.cache = cache
        self.breaker = breaker
        self.collection = collection or self.collection
        self.cache_name = cache_name or self.cache_name or self.collection
        self.model = model or self.model
        self._subscriptions: Dict[Tuple[str, Any], Subscription] = {}

    @property
    def cache_key(self) -> str:
        return cache_key(self.cache_name, self.owner_id)

    def _remote(self, operation: str, call: Callable[[], Any]) -> Any:
        if self.breaker is not None:
            allowed, state = self.breaker.before_call()
            if not allowed:
                raise StoreUnavailableError(
                    code="store_circuit_open",
                    details=f"{self.collection}.{operation} skipped: circuit {state}",
                )
        try:
            result = call()
        except StoreUnavailableError:
            if self.breaker is not None:
                self.breaker.record_failure()
            raise
        if self.breaker is not None:
            self.breaker.record_success()
        return result

    def narrow(self, document: Dict[str, Any]) -> M | None:
        if not isinstance(document, dict):
            return None
        entity = self.model.from_document(document)
        if not getattr(entity, "id", None):
            LOGGER.warning("document_without_id", extra={"collection": self.collection})
            return None
        return entity

    def narrow_all(self, documents: Iterable[Dict[str, Any]]) -> List[M]:
        entities = [self.narrow(document) for document in documents]
        return dedupe_by_key([entity for entity in entities if entity is not None], lambda entity: entity.id)

    def in_scope(self, entity: M, scope: LoadScope, client_ids: set[str]) -> bool:
        if scope.privileged:
            return True
        if getattr(entity, "admin_id", None) == scope.admin_id:
            return True
        client_id = getattr(entity, "cliente_id", None)
        return bool(client_id) and client_id in client_ids

    def _read_cache(self) -> List[Dict[str, Any]]:
        return self.cache.read_list(self.cache_key)

    def _write_cache(self, entities: List[M]) -> None:
        """Write the loaded entities back, keeping cached documents the load did not return."""
        loaded_ids = {str(entity.id) for entity in entities}
        try:
            carried = [item for item in self._read_cache() if str(item.get("id") or "") not in loaded_ids]
            self.cache.write_list(self.cache_key, [entity.to_document() for entity in entities] + carried)
        except StoreUnavailableError:
            LOGGER.warning("local_cache_write_failed", extra={"collection": self.collection})

    def load(self, scope: LoadScope, *, client_ids: Iterable[str] | None = None) -> List[M]:
        allowed_clients = {str(item) for item in (client_ids or []) if item}

        remote_failed = False
        remote_entities: List[M] = []
        try:
            remote_entities = self.narrow_all(self._remote("list", lambda: self.store.list(self.collection)))
        except StoreUnavailableError:
            remote_failed = True
            observe_store_read_fallback(self.collection)
            LOGGER.warning("store_read_fallback", extra={"collection": self.collection})
        remote_entities = [entity for entity in remote_entities if self.in_scope(entity, scope, allowed_clients)]

        cached_entities: List[M] = []
        if scope.privileged or remote_failed or not remote_entities:
            try:
                cached_entities = self.narrow_all(self._read_cache())
            except StoreUnavailableError:
                if remote_failed:
                    raise StoreUnavailableError(
                        code="data_unavailable",
                        details=f"{self.collection}: remote store and local cache unavailable",
                    )
                LOGGER.warning("local_cache_read_failed", extra={"collection": self.collection})
            cached_entities = [entity for entity in cached_entities if self.in_scope(entity, scope, allowed_clients)]

        merged: Dict[str, M] = {}
        for entity in cached_entities:
            merged[entity.id] = entity
        for entity in remote_entities:
            merged[entity.id] = entity
        entities = list(merged.values())
        self._write_cache(entities)
        return entities

    def get(self, entity_id: str) -> M | None:
        wanted = str(entity_id or "").strip()
        if not wanted:
            return None
        try:
            document = self._remote("get", lambda: self.store.get(self.collection, wanted))
        except StoreUnavailableError:
            observe_store_read_fallback(self.collection)
            LOGGER.warning("store_read_fallback", extra={"collection": self.collection, "entity_id": wanted})
            cached = [item for item in self._read_cache() if item.get("id") == wanted]
            return self.narrow(cached[0]) if cached else None
        return self.narrow(document) if document else None

    def query(self, field: str, value: Any) -> List[M]:
        try:
            documents = self._remote("query", lambda: self.store.query(self.collection, field, value))
        except StoreUnavailableError:
            observe_store_read_fallback(self.collection)
            LOGGER.warning("store_read_fallback", extra={"collection": self.collection, "field": field})
            documents = [item for item in self._read_cache() if item.get(field) == value]
        return self.narrow_all(documents)

    def id_in_use(self, entity_id: str) -> bool:
        """Taken in the remote store, or by a write still parked in the owner cache."""
        wanted = str(entity_id or "").strip()
        try:
            if any(str(item.get("id") or "") == wanted for item in self._read_cache()):
                return True
        except StoreUnavailableError:
            LOGGER.warning("local_cache_read_failed", extra={"collection": self.collection})
        return self.get(wanted) is not None

    def allocate_id(
        self,
        generate: Callable[[], str],
        *,
        in_use: Callable[[str], bool] | None = None,
        attempts: int = 8,
    ) -> str:
        """First generated id nobody holds yet; `persist` is an upsert and would overwrite."""
        taken = in_use or self.id_in_use
        for _ in range(attempts):
            candidate = generate()
            if not taken(candidate):
                return candidate
            LOGGER.warning("entity_id_collision", extra={"collection": self.collection, "entity_id": candidate})
        raise SystemError(
            code="id_allocation_failed",
            details=f"{self.collection}: no free id after {attempts} attempts",
        )

    def persist(self, entity: M) -> PersistResult:
        document = entity.to_document()
        entity_id = str(entity.id)
        try:
            self._remote("set", lambda: self.store.set(self.collection, entity_id, document))
        except StoreUnavailableError as exc:
            observe_store_degraded_write(self.collection)
            LOGGER.warning(
                "store_write_degraded",
                extra={"collection": self.collection, "entity_id": entity_id, "reason": exc.code},
            )
            self.cache.upsert(self.cache_key, document)
            return PersistResult(
                entity_id=entity_id,
                degraded=True,
                warning=warning_message("saved_offline"),
            )
        try:
            self.cache.upsert(self.cache_key, document)
        except StoreUnavailableError:
            LOGGER.warning("local_cache_write_failed", extra={"collection": self.collection})
        return PersistResult(entity_id=entity_id)

    def delete(self, entity_id: str) -> None:
        wanted = str(entity_id)
        self._remote("delete", lambda: self.store.delete(self.collection, wanted))
        try:
            self.cache.discard(self.cache_key, wanted)
        except StoreUnavailableError:
            LOGGER.warning("local_cache_write_failed", extra={"collection": self.collection})

    def subscribe(self, field: str, value: Any, callback: Callable[[List[M]], None]) -> Subscription:
        """Live query on `field == value`; a second call with the same key replaces the first."""
        key = (field, value)
        previous = self._subscriptions.pop(key, None)
        if previous is not None:
            previous.dispose()

        def _on_change(documents: List[Dict[str, Any]]) -> None:
            callback(self.narrow_all(documents))

        subscription = self.store.subscribe(self.collection, field, value, _on_change)
        self._subscriptions[key] = subscription
        return subscription

    def close(self) -> None:
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.dispose()
