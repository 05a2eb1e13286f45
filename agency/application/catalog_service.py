from __future__ import annotations

import logging
import re
from typing import Any, Dict

from agency.application.common import StepOutcome, require_staff
from agency.domain.contracts import Actor, ServiceOutput
from agency.domain.models import CatalogService as CatalogEntry
from agency.errors import ValidationError, not_found
from agency.infrastructure.repositories import LoadScope, Repositories
from agency.ui_strings import success_message


LOGGER = logging.getLogger("agency")


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


class CatalogService:
    """Service catalog offered on the portal; seeded with the built-in entries."""

    def seed_defaults(self, repos: Repositories) -> int:
        created = repos.catalog.seed_defaults()
        if created:
            LOGGER.info("catalog_seeded", extra={"seeded": created})
        return created

    def list_services(self, repos: Repositories, *, include_inactive: bool = False) -> ServiceOutput:
        if include_inactive:
            services = repos.catalog.load(LoadScope.all())
        else:
            services = repos.catalog.active()
        return ServiceOutput({"items": [service.to_document() for service in services], "total": len(services)})

    def upsert_service(self, repos: Repositories, *, actor: Actor, payload: Dict[str, Any]) -> ServiceOutput:
        require_staff(actor)
        titulo = str(payload.get("titulo") or "").strip()
        categoria = str(payload.get("categoria") or "").strip()
        if not titulo:
            raise ValidationError(code="titulo_required", message_key="titulo_required")
        if not categoria:
            raise ValidationError(code="categoria_required", message_key="categoria_required")

        service_id = str(payload.get("id") or "").strip() or _slug(titulo)
        existing = repos.catalog.get(service_id)
        document = existing.to_document() if existing is not None else {"ativo": True}
        document.update(payload)
        document["id"] = service_id
        entry = CatalogEntry.from_document(document)
        if entry.preco < 0:
            raise ValidationError(code="valor_invalid", message_key="valor_invalid")

        outcome = StepOutcome("upsert_catalog_service")
        outcome.record(repos.catalog.persist(entry))
        return ServiceOutput(
            outcome.payload(service=entry.to_document(), message=success_message("catalog_saved")),
            status_code=200 if existing is not None else 201,
        )

    def deactivate_service(self, repos: Repositories, *, actor: Actor, service_id: str) -> ServiceOutput:
        require_staff(actor)
        entry = repos.catalog.get(service_id)
        if entry is None:
            raise not_found("catalog_service", service_id)
        entry.ativo = False
        outcome = StepOutcome("deactivate_catalog_service")
        outcome.record(repos.catalog.persist(entry))
        return ServiceOutput(outcome.payload(service=entry.to_document(), message=success_message("catalog_saved")))
