from __future__ import annotations

from typing import List

from agency.domain.catalog import SERVICE_CATALOG
from agency.domain.models import CatalogService, Notification, PortfolioItem, SignedContractRecord
from agency.infrastructure.local_cache import PORTFOLIO_KEY, LocalCache
from agency.infrastructure.repositories.base import BaseRepository, LoadScope
from agency.infrastructure.repositories.entity_repository import EntityRepository


class SignedContractRepository(EntityRepository[SignedContractRecord]):
    collection = "contratos_assinados"
    cache_name = "contratos_assinados"
    model = SignedContractRecord

    def in_scope(self, entity: SignedContractRecord, scope: LoadScope, client_ids: set[str]) -> bool:
        return scope.privileged or entity.cliente_id in client_ids


class NotificationRepository(EntityRepository[Notification]):
    collection = "notificacoes"
    cache_name = "notificacoes"
    model = Notification

    def for_recipient(self, recipient_type: str, recipient_id: str, *, unread_only: bool = False) -> List[Notification]:
        items = [
            notification
            for notification in self.query("destinatarioId", recipient_id)
            if notification.destinatario_tipo == recipient_type and (not unread_only or not notification.lida)
        ]
        return sorted(items, key=lambda notification: notification.criada_em or "", reverse=True)

    def mark_read(self, notification_id: str) -> Notification | None:
        notification = self.get(notification_id)
        if notification is None:
            return None
        if not notification.lida:
            notification.lida = True
            self.persist(notification)
        return notification

    def mark_all_read(self, recipient_type: str, recipient_id: str) -> int:
        updated = 0
        for notification in self.for_recipient(recipient_type, recipient_id, unread_only=True):
            notification.lida = True
            self.persist(notification)
            updated += 1
        return updated


class CatalogRepository(EntityRepository[CatalogService]):
    collection = "servicos"
    cache_name = "servicos"
    model = CatalogService

    def seed_defaults(self) -> int:
        """Write the built-in catalog entries that are not in the store yet."""
        existing = {service.id for service in self.load(LoadScope.all())}
        created = 0
        for entry in SERVICE_CATALOG:
            if entry["id"] in existing:
                continue
            self.persist(CatalogService.from_document(entry))
            created += 1
        return created

    def active(self) -> List[CatalogService]:
        services = [service for service in self.load(LoadScope.all()) if service.ativo]
        return sorted(services, key=lambda service: (not service.destaque, service.categoria, service.titulo))


class PortfolioRepository(BaseRepository):
    """Portfolio items live only in the flat `portfolio` cache list."""

    def __init__(self, cache: LocalCache, *, owner_id: str | None) -> None:
        super().__init__(owner_id=owner_id)
        self.cache = cache

    def list(self) -> List[PortfolioItem]:
        return [PortfolioItem.from_document(document) for document in self.cache.read_list(PORTFOLIO_KEY)]

    def add(self, item: PortfolioItem) -> PortfolioItem:
        self.cache.upsert(PORTFOLIO_KEY, item.to_document())
        return item
