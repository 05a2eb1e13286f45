from __future__ import annotations

import re
from typing import Any, Callable, Dict

from agency.application.common import StepOutcome, actor_author, actor_name, observed_transition, require_staff
from agency.core.event_bus import ClientRegistered, EventBus
from agency.domain.contracts import Actor, ClientRegisterInput, ServiceOutput
from agency.domain.identifiers import new_entity_id, now_iso
from agency.domain.models import Client
from agency.errors import ValidationError, not_found
from agency.infrastructure.repositories import Repositories
from agency.policies import ensure_admin_access, ensure_client_access, load_scope_for
from agency.ui_strings import status_label, success_message
from agency.workflow.flow_policy import FUNNEL_STAGES, FUNNEL_TERMINAL_STAGE, funnel_transition_allowed


_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PROFILE_FIELDS = ("nome", "email", "telefone", "empresa", "cargo", "endereco", "cidade", "estado", "cnpj", "rating")


def _validation(code: str, http_status: int = 400, **payload: Any) -> ValidationError:
    return ValidationError(code=code, message_key=code, http_status=http_status, payload=payload or None)


def _normalized_email(value: str | None) -> str:
    email = str(value or "").strip().lower()
    if not email:
        raise _validation("email_required")
    if not _EMAIL_PATTERN.match(email):
        raise _validation("email_invalid")
    return email


def present_client(client: Client) -> Dict[str, Any]:
    document = client.to_document()
    document["statusLabel"] = status_label("cliente", client.status)
    document["funnelLabel"] = status_label("funil", client.etapa_funil)
    return document


class ClientService:
    def __init__(self, event_bus: EventBus) -> None:
        self.event_bus = event_bus

    def _client(self, repos: Repositories, actor: Actor, client_id: str) -> Client:
        client = repos.clients.get(client_id)
        if client is None:
            raise not_found("client", client_id)
        ensure_client_access(actor, client.id)
        ensure_admin_access(actor, client.admin_id)
        return client

    @observed_transition("register_client")
    def register_client(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        register_input: ClientRegisterInput,
    ) -> ServiceOutput:
        nome = str(register_input.nome or "").strip()
        if not nome:
            raise _validation("name_required")
        email = _normalized_email(register_input.email)

        if actor.is_client:
            # portal self-registration: the client picks the agency admin it signs up with
            admin_id = register_input.admin_id
            admin_nome = register_input.admin_nome
            client_id = actor.client_id or register_input.user_id or actor.user_id
        elif actor.is_webmaster:
            admin_id = register_input.admin_id
            admin_nome = register_input.admin_nome
            client_id = register_input.user_id or new_entity_id("CLI")
        else:
            admin_id = actor.user_id
            admin_nome = actor_name(actor)
            client_id = register_input.user_id or new_entity_id("CLI")

        if repos.clients.find_by_email(email, admin_id=admin_id) is not None:
            raise _validation("email_already_registered", 409, email=email)

        registered_at = now_iso()
        client = Client(
            id=client_id,
            nome=nome,
            email=email,
            telefone=str(register_input.telefone or "").strip(),
            empresa=str(register_input.empresa or "").strip(),
            cargo=str(register_input.cargo or "").strip(),
            cidade=str(register_input.cidade or "").strip(),
            estado=str(register_input.estado or "").strip(),
            cnpj=str(register_input.cnpj or "").strip(),
            status="prospect",
            etapa_funil="prospect",
            admin_id=admin_id or None,
            admin_nome=admin_nome or None,
            data_cadastro=registered_at,
            data_mudanca_etapa=registered_at,
        )
        client.record_interaction("cadastro", "Cliente cadastrado", autor=actor_author(actor), data=registered_at)
        outcome = StepOutcome("register_client")
        outcome.record(repos.clients.persist(client))
        self.event_bus.publish(
            ClientRegistered(
                actor_id=actor.user_id,
                client_id=client.id,
                admin_id=client.admin_id,
                client_name=client.nome,
                company=client.empresa,
                email=client.email,
            )
        )
        return ServiceOutput(
            outcome.payload(client=present_client(client), message=success_message("client_saved")),
            status_code=201,
        )

    @observed_transition("update_client")
    def update_client(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        client_id: str,
        changes: Dict[str, Any],
    ) -> ServiceOutput:
        client = self._client(repos, actor, client_id)
        updates = {key: value for key, value in (changes or {}).items() if key in PROFILE_FIELDS}
        if not updates:
            raise _validation("no_changes")

        if "nome" in updates:
            nome = str(updates["nome"] or "").strip()
            if not nome:
                raise _validation("name_required")
            client.nome = nome
        if "email" in updates:
            email = _normalized_email(updates["email"])
            other = repos.clients.find_by_email(email, admin_id=client.admin_id)
            if other is not None and other.id != client.id:
                raise _validation("email_already_registered", 409, email=email)
            client.email = email
        if "rating" in updates:
            try:
                rating = int(updates["rating"])
            except (TypeError, ValueError):
                raise _validation("rating_invalid")
            if rating < 0 or rating > 5:
                raise _validation("rating_invalid")
            client.rating = rating
        for name in ("telefone", "empresa", "cargo", "endereco", "cidade", "estado", "cnpj"):
            if name in updates:
                setattr(client, name, str(updates[name] or "").strip())

        outcome = StepOutcome("update_client")
        outcome.record(repos.clients.persist(client))
        return ServiceOutput(outcome.payload(client=present_client(client), message=success_message("client_saved")))

    @observed_transition("update_funnel_stage")
    def update_funnel_stage(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        client_id: str,
        stage: str,
        motivo: str = "",
    ) -> ServiceOutput:
        require_staff(actor)
        target = str(stage or "").strip().lower()
        if target not in FUNNEL_STAGES:
            raise _validation("funnel_stage_invalid", stage=stage)
        client = self._client(repos, actor, client_id)
        if target == client.etapa_funil:
            return ServiceOutput({"client": present_client(client), "warnings": [], "degraded": False})
        if not funnel_transition_allowed(client.etapa_funil, target):
            raise _validation("funnel_regression_not_allowed", 409, current=client.etapa_funil, target=target)

        changed_at = now_iso()
        previous = client.etapa_funil
        client.etapa_funil = target
        client.data_mudanca_etapa = changed_at
        if target in ("contratado", "ativo"):
            client.status = "ativo"
        elif target in ("inativo", FUNNEL_TERMINAL_STAGE):
            client.status = "inativo"
        description = f"Etapa do funil: {previous} -> {target}"
        if str(motivo or "").strip():
            description += f" ({str(motivo).strip()})"
        client.record_interaction("funil", description, autor=actor_author(actor), data=changed_at)

        outcome = StepOutcome("update_funnel_stage")
        outcome.record(repos.clients.persist(client))
        return ServiceOutput(outcome.payload(client=present_client(client), message=success_message("funnel_updated")))

    def mark_lost(self, repos: Repositories, *, actor: Actor, client_id: str, motivo: str = "") -> ServiceOutput:
        return self.update_funnel_stage(
            repos, actor=actor, client_id=client_id, stage=FUNNEL_TERMINAL_STAGE, motivo=motivo
        )

    @observed_transition("deactivate_client")
    def deactivate_client(self, repos: Repositories, *, actor: Actor, client_id: str) -> ServiceOutput:
        require_staff(actor)
        client = self._client(repos, actor, client_id)
        changed_at = now_iso()
        client.status = "inativo"
        if funnel_transition_allowed(client.etapa_funil, "inativo") and client.etapa_funil != "inativo":
            client.etapa_funil = "inativo"
            client.data_mudanca_etapa = changed_at
        client.record_interaction("status", "Cliente marcado como inativo", autor=actor_author(actor), data=changed_at)
        outcome = StepOutcome("deactivate_client")
        outcome.record(repos.clients.persist(client))
        return ServiceOutput(
            outcome.payload(client=present_client(client), message=success_message("client_deactivated"))
        )

    @observed_transition("delete_client")
    def delete_client(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        client_id: str,
        require_confirmation_fn: Callable[..., None],
    ) -> ServiceOutput:
        require_staff(actor)
        client = self._client(repos, actor, client_id)
        require_confirmation_fn("delete_client", entity="client", entity_id=client.id)
        repos.clients.delete(client.id)
        return ServiceOutput({"deleted": client.id, "message": success_message("client_deleted")})

    def get_client(self, repos: Repositories, *, actor: Actor, client_id: str) -> ServiceOutput:
        return ServiceOutput({"client": present_client(self._client(repos, actor, client_id))})

    def list_clients(self, repos: Repositories, *, actor: Actor, status: str | None = None) -> ServiceOutput:
        require_staff(actor)
        clients = repos.clients.load(load_scope_for(actor))
        if status:
            clients = [client for client in clients if client.status == status]
        clients.sort(key=lambda client: client.data_cadastro or "", reverse=True)
        return ServiceOutput({"items": [present_client(client) for client in clients], "total": len(clients)})
