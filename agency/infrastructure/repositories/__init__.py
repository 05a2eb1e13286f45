from __future__ import annotations

from dataclasses import dataclass

from agency.infrastructure.circuit_breaker import StoreCircuitBreaker
from agency.infrastructure.document_store import DocumentStore
from agency.infrastructure.local_cache import LocalCache
from agency.infrastructure.repositories.base import LoadScope, OwnerScopeRequiredError, PersistResult
from agency.infrastructure.repositories.clients import ClientRepository
from agency.infrastructure.repositories.entity_repository import EntityRepository
from agency.infrastructure.repositories.projects import ProjectRepository
from agency.infrastructure.repositories.records import (
    CatalogRepository,
    NotificationRepository,
    PortfolioRepository,
    SignedContractRepository,
)
from agency.infrastructure.repositories.solicitations import SolicitationRepository


@dataclass
class Repositories:
    clients: ClientRepository
    solicitations: SolicitationRepository
    projects: ProjectRepository
    signed_contracts: SignedContractRepository
    notifications: NotificationRepository
    catalog: CatalogRepository
    portfolio: PortfolioRepository

    def close(self) -> None:
        for repository in (
            self.clients,
            self.solicitations,
            self.projects,
            self.signed_contracts,
            self.notifications,
            self.catalog,
        ):
            repository.close()


def build_repositories(
    store: DocumentStore,
    cache: LocalCache,
    *,
    owner_id: str | None,
    breaker: StoreCircuitBreaker | None = None,
) -> Repositories:
    options = {"owner_id": owner_id, "breaker": breaker}
    return Repositories(
        clients=ClientRepository(store, cache, **options),
        solicitations=SolicitationRepository(store, cache, **options),
        projects=ProjectRepository(store, cache, **options),
        signed_contracts=SignedContractRepository(store, cache, **options),
        notifications=NotificationRepository(store, cache, **options),
        catalog=CatalogRepository(store, cache, **options),
        portfolio=PortfolioRepository(cache, owner_id=owner_id),
    )


__all__ = [
    "CatalogRepository",
    "ClientRepository",
    "EntityRepository",
    "LoadScope",
    "NotificationRepository",
    "OwnerScopeRequiredError",
    "PersistResult",
    "PortfolioRepository",
    "ProjectRepository",
    "Repositories",
    "SignedContractRepository",
    "SolicitationRepository",
    "build_repositories",
]
