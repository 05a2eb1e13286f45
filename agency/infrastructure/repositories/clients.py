from __future__ import annotations

from typing import List

from agency.domain.models import Client
from agency.infrastructure.repositories.base import LoadScope
from agency.infrastructure.repositories.entity_repository import EntityRepository


class ClientRepository(EntityRepository[Client]):
    collection = "clientes"
    cache_name = "clientes"
    model = Client

    def in_scope(self, entity: Client, scope: LoadScope, client_ids: set[str]) -> bool:
        if scope.privileged:
            return True
        return entity.admin_id == scope.admin_id or entity.id in client_ids

    def find_by_email(self, email: str, *, admin_id: str | None = None) -> Client | None:
        """Email is unique per admin scope; clients without an admin share the global scope."""
        normalized = str(email or "").strip().lower()
        if not normalized:
            return None
        wanted_admin = str(admin_id or "").strip() or None
        for client in self.query("email", normalized):
            if (client.admin_id or None) == wanted_admin:
                return client
        return None

    def ids_for_admin(self, admin_id: str) -> List[str]:
        return [client.id for client in self.query("adminId", admin_id)]
