from __future__ import annotations

import logging
import threading
from typing import Callable, List, Set

from agency.domain.identifiers import next_project_id
from agency.domain.models import Project
from agency.errors import StoreUnavailableError
from agency.infrastructure.repositories.base import PersistResult
from agency.infrastructure.repositories.entity_repository import EntityRepository


LOGGER = logging.getLogger("agency")

# Sequential ids are read-then-written; one writer at a time per process.
_ALLOCATION_LOCK = threading.Lock()


class ProjectRepository(EntityRepository[Project]):
    collection = "projetos"
    cache_name = "projetos"
    model = Project

    def for_client(self, client_id: str) -> List[Project]:
        return self.query("clienteId", client_id)

    def find_by_contract(self, contract_id: str | None) -> Project | None:
        if not contract_id:
            return None
        matches = self.query("contratoId", contract_id)
        return matches[0] if matches else None

    def find_by_solicitation(self, solicitation_id: str | None) -> Project | None:
        if not solicitation_id:
            return None
        matches = self.query("solicitacaoId", solicitation_id)
        return matches[0] if matches else None

    def next_id(self, year: int | None = None) -> str:
        existing = self._known_ids()
        candidate = next_project_id(existing, year)
        while self.id_in_use(candidate):
            LOGGER.warning("entity_id_collision", extra={"collection": self.collection, "entity_id": candidate})
            existing.add(candidate)
            candidate = next_project_id(existing, year)
        return candidate

    def create(self, build: Callable[[str], Project]) -> tuple[Project, PersistResult]:
        """Allocate the next id, build the project for it and write it under one lock."""
        with _ALLOCATION_LOCK:
            project = build(self.next_id())
            return project, self.persist(project)

    def _known_ids(self) -> Set[str]:
        ids: Set[str] = set()
        try:
            ids.update(str(item.get("id") or "") for item in self._remote("list", lambda: self.store.list(self.collection)))
        except StoreUnavailableError:
            LOGGER.warning("store_read_fallback", extra={"collection": self.collection})
        try:
            ids.update(str(item.get("id") or "") for item in self._read_cache())
        except StoreUnavailableError:
            LOGGER.warning("local_cache_read_failed", extra={"collection": self.collection})
        return ids
