from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from agency.application.common import (
    StepOutcome,
    actor_author,
    actor_name,
    observed_transition,
    require_client,
    require_staff,
)
from agency.core.event_bus import EventBus, ProjectApproved, ProjectCreated, ProjectStatusChanged, ServiceFinalized
from agency.domain.contracts import Actor, DeliverableInput, ProjectCreateInput, ServiceOutput
from agency.domain.identifiers import new_portfolio_id, now_iso, today_iso
from agency.domain.models import Client, PortfolioItem, Project
from agency.errors import DuplicateTransitionError, PermissionError as AppPermissionError
from agency.errors import ValidationError, not_found
from agency.infrastructure.repositories import LoadScope, Repositories
from agency.observability import observe_project_refresh
from agency.policies import ensure_admin_access, ensure_client_access, load_scope_for
from agency.ui_strings import status_label, success_message
from agency.workflow.flow_policy import (
    PROJECT_TERMINAL_STATUSES,
    build_process_steps,
    canonical_status,
    flow_meta,
    project_transition_allowed,
    stage_for_project_status,
)
from agency.workflow.guards import TransitionGuard


LOGGER = logging.getLogger("agency")


def _validation(code: str, http_status: int = 400, **payload: Any) -> ValidationError:
    return ValidationError(code=code, message_key=code, http_status=http_status, payload=payload or None)


def present_project(project: Project) -> Dict[str, Any]:
    document = project.to_document()
    document["statusLabel"] = status_label("projeto", project.status)
    document["flow"] = flow_meta("projeto", project.status)
    document["processSteps"] = build_process_steps(stage_for_project_status(project.status))
    return document


class ProjectService:
    """Project lifecycle after signing, plus contracted service finalization."""

    def __init__(self, event_bus: EventBus, *, guard: TransitionGuard | None = None) -> None:
        self.event_bus = event_bus
        self.guard = guard or TransitionGuard()

    def _project(self, repos: Repositories, actor: Actor, project_id: str) -> Project:
        project = repos.projects.get(project_id)
        if project is None:
            raise not_found("project", project_id)
        if actor.is_client and project.cliente_id != actor.client_id:
            raise AppPermissionError(code="project_not_owned", message_key="project_not_owned")
        ensure_admin_access(actor, project.admin_id)
        return project

    def _client(self, repos: Repositories, actor: Actor, client_id: str) -> Client:
        client = repos.clients.get(client_id)
        if client is None:
            raise not_found("client", client_id)
        ensure_client_access(actor, client.id)
        ensure_admin_access(actor, client.admin_id)
        return client

    # -- projects ----------------------------------------------------------

    @observed_transition("approve_current_phase")
    def approve_current_phase(self, repos: Repositories, *, actor: Actor, project_id: str) -> ServiceOutput:
        require_client(actor)
        with self.guard.hold(project_id):
            project = self._project(repos, actor, project_id)
            if project.status == "concluido" and project.aprovado_por_cliente:
                raise DuplicateTransitionError(details=f"{project_id} already approved")
            if project.status != "aguardando-aprovacao":
                raise _validation("project_not_awaiting_approval", 409, status=project.status)

            approved_at = now_iso()
            project.status = "concluido"
            project.progresso = 100
            project.aprovado_por_cliente = True
            project.aprovado_em = approved_at
            project.aprovado_por = actor_name(actor)
            project.aguardando_aprovacao_cliente = False
            project.data_conclusao = project.data_conclusao or approved_at
            project.record_history("aprovado_pelo_cliente", status=project.status, autor="Cliente", data=approved_at)
            outcome = StepOutcome("approve_current_phase")
            outcome.record(repos.projects.persist(project))

        self.event_bus.publish(
            ProjectApproved(
                actor_id=actor.user_id,
                project_id=project.id,
                client_id=project.cliente_id,
                admin_id=project.admin_id,
                client_name=project.cliente_nome or actor_name(actor),
                name=project.nome,
            )
        )
        return ServiceOutput(
            outcome.payload(project=present_project(project), message=success_message("project_approved"))
        )

    @observed_transition("update_project_status")
    def update_project_status(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        project_id: str,
        status: str | None = None,
        progresso: Any = None,
        require_confirmation_fn: Callable[..., None],
    ) -> ServiceOutput:
        require_staff(actor)
        progress = None
        if progresso is not None and progresso != "":
            try:
                progress = int(progresso)
            except (TypeError, ValueError):
                raise _validation("progress_invalid")
            if progress < 0 or progress > 100:
                raise _validation("progress_invalid")

        with self.guard.hold(project_id):
            project = self._project(repos, actor, project_id)
            previous = project.status
            target = canonical_status("projeto", status) if status else previous
            if target == previous and progress is None:
                raise _validation("no_changes")
            if target != previous:
                if not project_transition_allowed(previous, target):
                    raise _validation("project_transition_invalid", 409, current=previous, target=target)
                if target == "cancelado":
                    require_confirmation_fn("cancel_project", entity="project", entity_id=project.id)
            elif previous in PROJECT_TERMINAL_STATUSES:
                raise _validation("project_transition_invalid", 409, current=previous, target=target)

            changed_at = now_iso()
            project.status = target
            project.aguardando_aprovacao_cliente = target == "aguardando-aprovacao"
            if progress is not None:
                project.progresso = progress
            if target == "concluido":
                project.progresso = 100
                project.data_conclusao = changed_at
            if target != previous:
                project.record_history("status_alterado", status=target, autor=actor_author(actor), data=changed_at)
            outcome = StepOutcome("update_project_status")
            outcome.record(repos.projects.persist(project))

        if target != previous:
            self.event_bus.publish(
                ProjectStatusChanged(
                    actor_id=actor.user_id,
                    project_id=project.id,
                    client_id=project.cliente_id,
                    previous_status=previous,
                    status=target,
                    name=project.nome,
                )
            )
        return ServiceOutput(
            outcome.payload(project=present_project(project), message=success_message("project_updated"))
        )

    @observed_transition("create_project")
    def create_project(self, repos: Repositories, *, actor: Actor, create_input: ProjectCreateInput) -> ServiceOutput:
        require_staff(actor)
        nome = str(create_input.nome or "").strip()
        if not nome:
            raise _validation("project_name_required")
        valor = float(create_input.valor or 0)
        if valor < 0:
            raise _validation("valor_invalid")
        client = self._client(repos, actor, create_input.client_id)

        solicitation = None
        if create_input.solicitation_id:
            solicitation = repos.solicitations.get(create_input.solicitation_id)
            if solicitation is None or solicitation.cliente_id != client.id:
                raise not_found("solicitation", create_input.solicitation_id)
            if solicitation.projeto_id or repos.projects.find_by_solicitation(solicitation.id) is not None:
                raise DuplicateTransitionError(
                    code="project_already_exists",
                    message_key="project_already_exists",
                    payload={"solicitation_id": solicitation.id},
                )

        created_at = now_iso()

        def _build(project_id: str) -> Project:
            project = Project(
                id=project_id,
                nome=nome,
                descricao=str(create_input.descricao or "").strip(),
                cliente_id=client.id,
                cliente_nome=client.nome,
                contrato_id=solicitation.contrato_id if solicitation is not None else None,
                solicitacao_id=solicitation.id if solicitation is not None else None,
                proposta_id=solicitation.id if solicitation is not None and solicitation.proposta is not None else None,
                status="planejamento",
                progresso=0,
                valor_contratado=valor,
                data_inicio=today_iso(),
                data_previsao=create_input.data_previsao or None,
                admin_id=client.admin_id or (None if actor.is_webmaster else actor.user_id),
            )
            project.record_history("projeto_criado", status=project.status, autor=actor_author(actor), data=created_at)
            return project

        project, persisted = repos.projects.create(_build)
        outcome = StepOutcome("create_project")
        outcome.record(persisted)

        if solicitation is not None:
            solicitation.projeto_id = project.id
            outcome.secondary("solicitation_project_link", lambda: repos.solicitations.persist(solicitation))

        def _update_client() -> Any:
            client.projetos += 1
            client.record_interaction("projeto", f"Projeto criado: {project.nome}", autor=actor_author(actor), data=created_at)
            return repos.clients.persist(client)

        outcome.secondary("client", _update_client)
        self.event_bus.publish(
            ProjectCreated(actor_id=actor.user_id, project_id=project.id, client_id=client.id, name=project.nome)
        )
        return ServiceOutput(
            outcome.payload(project=present_project(project), message=success_message("project_created")),
            status_code=201,
        )

    def list_projects(self, repos: Repositories, *, actor: Actor) -> ServiceOutput:
        if actor.is_client:
            projects = repos.projects.for_client(actor.client_id or "")
        elif actor.is_webmaster:
            projects = repos.projects.load(load_scope_for(actor))
        else:
            projects = repos.projects.load(load_scope_for(actor), client_ids=repos.clients.ids_for_admin(actor.user_id))
        projects.sort(key=lambda project: project.id, reverse=True)
        return ServiceOutput({"items": [present_project(project) for project in projects], "total": len(projects)})

    def get_project(self, repos: Repositories, *, actor: Actor, project_id: str) -> ServiceOutput:
        return ServiceOutput({"project": present_project(self._project(repos, actor, project_id))})

    def refresh_projects(self, repos: Repositories, scope: LoadScope | None = None) -> List[Project]:
        """Re-fetch the projects in scope into the owner's cache list; used by the polling scheduler."""
        scope = scope or LoadScope.all()
        try:
            if scope.privileged:
                projects = repos.projects.load(scope)
            else:
                projects = repos.projects.load(scope, client_ids=repos.clients.ids_for_admin(scope.admin_id))
        except Exception:
            observe_project_refresh("error")
            raise
        observe_project_refresh("ok")
        LOGGER.debug("project_refresh_completed", extra={"projects": len(projects), "owner_id": repos.projects.owner_id})
        return projects

    # -- contracted services -----------------------------------------------

    @observed_transition("finalize_service")
    def finalize_service(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        client_id: str,
        service_id: str,
        deliverable: DeliverableInput,
    ) -> ServiceOutput:
        require_staff(actor)
        titulo = str(deliverable.titulo or "").strip()
        descricao = str(deliverable.descricao or "").strip()
        if not titulo:
            raise _validation("deliverable_title_required")
        if not descricao:
            raise _validation("deliverable_description_required")

        with self.guard.hold(f"{client_id}:{service_id}"):
            client = self._client(repos, actor, client_id)
            service = client.find_service(service_id)
            if service is None:
                raise not_found("service", service_id)
            if service.status != "ativo":
                raise _validation("service_not_active", 409, status=service.status)

            finished_at = now_iso()
            service.status = "concluido"
            service.data_conclusao = finished_at
            client.record_interaction("servico", f"Servico finalizado: {service.nome}", autor=actor_author(actor), data=finished_at)
            outcome = StepOutcome("finalize_service")
            outcome.record(repos.clients.persist(client))

        portfolio_item = None
        if deliverable.autorizado_publicacao:
            project = outcome.secondary("project_lookup", lambda: repos.projects.find_by_contract(service.contrato_id))
            portfolio_item = PortfolioItem(
                id=new_portfolio_id(),
                titulo=titulo,
                descricao=descricao,
                cliente_id=client.id,
                servico_id=service.id,
                projeto_id=project.id if project is not None else None,
                cliente_nome=client.nome,
                cliente_empresa=client.empresa,
                categoria=service.categoria,
                imagem_capa=deliverable.imagem_capa,
                imagens_galeria=list(deliverable.imagens_galeria),
                tags=list(deliverable.tags),
                link_projeto=deliverable.link_projeto,
                arquivos_entregues=list(deliverable.arquivos_entregues),
                data_conclusao=finished_at,
                resultados=deliverable.resultados,
                testemunho=deliverable.testemunho,
                autorizado_publicacao=True,
                destaque=False,
            )
            portfolio_item = outcome.secondary("portfolio", lambda: repos.portfolio.add(portfolio_item))

        self.event_bus.publish(
            ServiceFinalized(
                actor_id=actor.user_id,
                client_id=client.id,
                service_id=service.id,
                service_name=service.nome,
                portfolio_item_id=portfolio_item.id if portfolio_item is not None else None,
            )
        )
        return ServiceOutput(
            outcome.payload(
                client=client.to_document(),
                service=service.to_document(),
                portfolio_item=portfolio_item.to_document() if portfolio_item is not None else None,
                message=success_message("service_finalized"),
            )
        )

    def _set_service_status(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        client_id: str,
        service_id: str,
        expected: str,
        target: str,
        error_code: str,
        message_key: str,
    ) -> ServiceOutput:
        require_staff(actor)
        with self.guard.hold(f"{client_id}:{service_id}"):
            client = self._client(repos, actor, client_id)
            service = client.find_service(service_id)
            if service is None:
                raise not_found("service", service_id)
            if service.status != expected:
                raise _validation(error_code, 409, status=service.status)
            service.status = target
            client.record_interaction(
                "servico", f"Servico {service.nome}: {expected} -> {target}", autor=actor_author(actor)
            )
            outcome = StepOutcome(f"{target}_service")
            outcome.record(repos.clients.persist(client))
        return ServiceOutput(
            outcome.payload(service=service.to_document(), message=success_message(message_key))
        )

    @observed_transition("pause_service")
    def pause_service(self, repos: Repositories, *, actor: Actor, client_id: str, service_id: str) -> ServiceOutput:
        return self._set_service_status(
            repos,
            actor=actor,
            client_id=client_id,
            service_id=service_id,
            expected="ativo",
            target="pausado",
            error_code="service_not_active",
            message_key="service_paused",
        )

    @observed_transition("resume_service")
    def resume_service(self, repos: Repositories, *, actor: Actor, client_id: str, service_id: str) -> ServiceOutput:
        return self._set_service_status(
            repos,
            actor=actor,
            client_id=client_id,
            service_id=service_id,
            expected="pausado",
            target="ativo",
            error_code="service_not_paused",
            message_key="service_resumed",
        )

    def list_portfolio(self, repos: Repositories, *, actor: Actor) -> ServiceOutput:
        require_staff(actor)
        items = repos.portfolio.list()
        return ServiceOutput({"items": [item.to_document() for item in items], "total": len(items)})
