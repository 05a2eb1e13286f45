from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from agency.application.catalog_service import CatalogService
from agency.application.client_service import ClientService
from agency.application.notification_service import NotificationService
from agency.application.project_service import ProjectService
from agency.application.workflow_service import WorkflowService
from agency.core.event_bus import EventBus
from agency.documents.contract_pdf import AgencyInfo
from agency.documents.proposal_pdf import ProposalTermsText
from agency.infrastructure.circuit_breaker import StoreCircuitBreaker
from agency.infrastructure.document_store import DocumentStore, build_document_store
from agency.infrastructure.local_cache import LocalCache, build_local_cache
from agency.infrastructure.repositories import NotificationRepository, Repositories, build_repositories
from agency.workflow.guards import TransitionGuard


SYSTEM_OWNER_ID = "system"


@dataclass
class AgencyRuntime:
    """Store, cache and services shared by every request of one app instance."""

    store: DocumentStore
    cache: LocalCache
    breaker: StoreCircuitBreaker
    event_bus: EventBus
    workflow: WorkflowService
    clients: ClientService
    projects: ProjectService
    catalog: CatalogService
    notifications: NotificationService

    def repositories(self, owner_id: str | None) -> Repositories:
        return build_repositories(self.store, self.cache, owner_id=owner_id, breaker=self.breaker)

    def system_repositories(self) -> Repositories:
        return self.repositories(SYSTEM_OWNER_ID)


def build_runtime(
    config,
    *,
    store: DocumentStore | None = None,
    cache: LocalCache | None = None,
    event_bus: EventBus | None = None,
) -> AgencyRuntime:
    store = store or build_document_store(config)
    cache = cache or build_local_cache(config)
    breaker = StoreCircuitBreaker.from_config(config)
    event_bus = event_bus or EventBus()
    guard = TransitionGuard()

    notifications = NotificationService(
        NotificationRepository(store, cache, owner_id=SYSTEM_OWNER_ID, breaker=breaker)
    )
    notifications.register(event_bus)
    return AgencyRuntime(
        store=store,
        cache=cache,
        breaker=breaker,
        event_bus=event_bus,
        workflow=WorkflowService(
            event_bus,
            agency=AgencyInfo.from_config(config),
            proposal_terms=ProposalTermsText.from_config(config),
            guard=guard,
        ),
        clients=ClientService(event_bus),
        projects=ProjectService(event_bus, guard=guard),
        catalog=CatalogService(),
        notifications=notifications,
    )


def get_runtime(app=None) -> AgencyRuntime:
    target = app or current_app
    return target.extensions["agency_runtime"]
