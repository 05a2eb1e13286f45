from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from agency.application.common import (
    StepOutcome,
    actor_author,
    actor_name,
    observed_transition,
    require_staff,
)
from agency.core.event_bus import (
    ContractSigned,
    EventBus,
    MessagePosted,
    ProjectCreated,
    ProposalAccepted,
    ProposalSubmitted,
    SolicitationCreated,
    SolicitationRejected,
)
from agency.documents.contract_pdf import AgencyInfo, ContractDocument, build_contract_document
from agency.documents.proposal_pdf import ProposalDocument, ProposalTermsText, build_proposal_document
from agency.documents.signature import SignatureCapture
from agency.domain.catalog import CONTACT_SERVICE_ID, CONTACT_SOLICITATION_DEFAULTS, CUSTOM_SERVICE_ID, builtin_service
from agency.domain.contracts import Actor, ProposalSubmitInput, ServiceOutput, SolicitationCreateInput
from agency.domain.identifiers import (
    iso_timestamp,
    new_contract_id,
    new_solicitation_id,
    now_iso,
    today_iso,
    utc_now,
)
from agency.domain.models import (
    Client,
    ClientDocument,
    Contract,
    ContractedService,
    ContractTerms,
    Project,
    ProposalTerms,
    Reply,
    SignedContractRecord,
    Solicitation,
)
from agency.errors import (
    DuplicateTransitionError,
    StoreUnavailableError,
    ValidationError,
    not_found,
)
from agency.infrastructure.document_store import Subscription
from agency.infrastructure.repositories import Repositories
from agency.policies import ensure_admin_access, ensure_client_access, load_scope_for
from agency.ui_strings import status_label, success_message
from agency.workflow.derivations import (
    contract_from_solicitation,
    contract_services,
    has_contract,
    is_proposal_active,
)
from agency.workflow.flow_policy import (
    SOLICITATION_REJECTABLE_STATUSES,
    advance_funnel,
    build_process_steps,
    flow_meta,
    stage_for_solicitation_status,
)
from agency.workflow.guards import TransitionGuard


LOGGER = logging.getLogger("agency")

SIGNED_CONTRACT_URL = "/api/portal/contracts/{solicitation_id}/pdf"


def present_solicitation(solicitation: Solicitation) -> Dict[str, Any]:
    document = solicitation.to_document()
    document["statusLabel"] = status_label("solicitacao", solicitation.status)
    document["flow"] = flow_meta("solicitacao", solicitation.status)
    document["processSteps"] = build_process_steps(
        stage_for_solicitation_status(solicitation.status, has_project=bool(solicitation.projeto_id))
    )
    return document


def _advance_client_funnel(client: Client, target: str, when: str) -> None:
    stage = advance_funnel(client.etapa_funil, target)
    if stage != client.etapa_funil:
        client.etapa_funil = stage
        client.data_mudanca_etapa = when


def _validation(code: str, http_status: int = 400, **payload: Any) -> ValidationError:
    return ValidationError(code=code, message_key=code, http_status=http_status, payload=payload or None)


class WorkflowService:
    """Solicitation state machine: solicitation, proposal, contract, project.

    Every transition re-reads the solicitation inside the per-solicitation
    guard before checking its preconditions, writes the solicitation first
    (the commit point) and treats the client, project, record and
    notification writes that follow as secondary steps.
    """

    def __init__(
        self,
        event_bus: EventBus,
        *,
        agency: AgencyInfo | None = None,
        proposal_terms: ProposalTermsText | None = None,
        guard: TransitionGuard | None = None,
    ) -> None:
        self.event_bus = event_bus
        self.agency = agency or AgencyInfo()
        self.proposal_terms = proposal_terms or ProposalTermsText()
        self.guard = guard or TransitionGuard()

    # -- lookups -----------------------------------------------------------

    @staticmethod
    def _ensure_access(actor: Actor, solicitation: Solicitation) -> None:
        ensure_client_access(actor, solicitation.cliente_id)
        ensure_admin_access(actor, solicitation.admin_id)

    def _solicitation(self, repos: Repositories, actor: Actor, solicitation_id: str, entity: str = "solicitation") -> Solicitation:
        solicitation = repos.solicitations.get(solicitation_id)
        if solicitation is None:
            raise not_found(entity, solicitation_id)
        self._ensure_access(actor, solicitation)
        return solicitation

    @staticmethod
    def _client(repos: Repositories, client_id: str) -> Client:
        client = repos.clients.get(client_id)
        if client is None:
            raise not_found("client", client_id)
        return client

    def visible_solicitations(self, repos: Repositories, actor: Actor) -> List[Solicitation]:
        if actor.is_client:
            items = repos.solicitations.for_client(actor.client_id or "")
        elif actor.is_webmaster:
            items = repos.solicitations.load(load_scope_for(actor))
        else:
            items = repos.solicitations.load(
                load_scope_for(actor), client_ids=repos.clients.ids_for_admin(actor.user_id)
            )
        return sorted(items, key=lambda item: item.data_solicitacao or "", reverse=True)

    # -- transitions -------------------------------------------------------

    @observed_transition("create_solicitation")
    def create_solicitation(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        client_id: str,
        create_input: SolicitationCreateInput,
    ) -> ServiceOutput:
        ensure_client_access(actor, client_id)
        client = self._client(repos, client_id)
        ensure_admin_access(actor, client.admin_id)

        values = self._fill_from_catalog(repos, create_input)
        if not values["titulo"]:
            raise _validation("titulo_required")
        if not values["categoria"]:
            raise _validation("categoria_required")
        if values["valor"] < 0:
            raise _validation("valor_invalid")

        solicitation = self._new_solicitation(repos, client, values)
        outcome = StepOutcome("create_solicitation")
        outcome.record(repos.solicitations.persist(solicitation))

        def _update_client() -> Any:
            client.record_interaction(
                "solicitacao",
                f"Nova solicitacao: {solicitation.titulo}",
                autor=actor_author(actor),
                data=solicitation.data_solicitacao,
            )
            _advance_client_funnel(client, "contato", solicitation.data_solicitacao or now_iso())
            return repos.clients.persist(client)

        outcome.secondary("client", _update_client)
        self.event_bus.publish(
            SolicitationCreated(
                actor_id=actor.user_id,
                solicitation_id=solicitation.id,
                client_id=client.id,
                admin_id=client.admin_id,
                client_name=client.nome,
                title=solicitation.titulo,
            )
        )
        return ServiceOutput(
            outcome.payload(
                solicitation=present_solicitation(solicitation),
                message=success_message("solicitation_created"),
            ),
            status_code=201,
        )

    def _fill_from_catalog(self, repos: Repositories, create_input: SolicitationCreateInput) -> Dict[str, Any]:
        service_id = str(create_input.servico_id or "").strip() or CUSTOM_SERVICE_ID
        values: Dict[str, Any] = {
            "servico_id": service_id,
            "titulo": str(create_input.titulo or "").strip(),
            "categoria": str(create_input.categoria or "").strip(),
            "valor": float(create_input.valor or 0),
            "descricao": str(create_input.descricao or "").strip(),
            "prazo": str(create_input.prazo or "").strip(),
            "recorrente": bool(create_input.recorrente),
        }
        if service_id in (CUSTOM_SERVICE_ID, CONTACT_SERVICE_ID):
            return values

        entry = None
        try:
            catalog_service = repos.catalog.get(service_id)
        except StoreUnavailableError:
            catalog_service = None
        if catalog_service is not None:
            entry = {
                "titulo": catalog_service.titulo,
                "categoria": catalog_service.categoria,
                "preco": catalog_service.preco,
                "prazo": catalog_service.prazo,
                "recorrente": catalog_service.recorrente,
            }
        else:
            entry = builtin_service(service_id)
        if entry is None:
            raise not_found("catalog_service", service_id)

        values["titulo"] = values["titulo"] or str(entry.get("titulo") or "")
        values["categoria"] = values["categoria"] or str(entry.get("categoria") or "")
        values["valor"] = values["valor"] or float(entry.get("preco") or 0)
        values["prazo"] = values["prazo"] or str(entry.get("prazo") or "")
        values["recorrente"] = values["recorrente"] or bool(entry.get("recorrente"))
        return values

    @staticmethod
    def _new_solicitation(repos: Repositories, client: Client, values: Dict[str, Any]) -> Solicitation:
        return Solicitation(
            id=repos.solicitations.allocate_id(new_solicitation_id),
            titulo=values["titulo"],
            categoria=values["categoria"],
            cliente_id=client.id,
            servico_id=values["servico_id"],
            valor=values["valor"],
            status="nova",
            descricao=values.get("descricao", ""),
            prazo=values.get("prazo", ""),
            recorrente=bool(values.get("recorrente")),
            nome_cliente=client.nome,
            email_cliente=client.email,
            empresa_cliente=client.empresa,
            admin_id=client.admin_id,
            admin_nome=client.admin_nome,
            data_solicitacao=now_iso(),
        )

    @observed_transition("start_review")
    def start_review(self, repos: Repositories, *, actor: Actor, solicitation_id: str) -> ServiceOutput:
        require_staff(actor)
        with self.guard.hold(solicitation_id):
            solicitation = self._solicitation(repos, actor, solicitation_id)
            if solicitation.status == "analisando":
                raise DuplicateTransitionError(details=f"{solicitation_id} already under review")
            if solicitation.status != "nova":
                raise _validation("review_requires_new_solicitation", 409, status=solicitation.status)
            solicitation.status = "analisando"
            if not solicitation.admin_id and not actor.is_webmaster:
                solicitation.admin_id = actor.user_id
                solicitation.admin_nome = actor_name(actor)
            outcome = StepOutcome("start_review")
            outcome.record(repos.solicitations.persist(solicitation))
        return ServiceOutput(
            outcome.payload(solicitation=present_solicitation(solicitation), message=success_message("review_started"))
        )

    @observed_transition("submit_proposal")
    def submit_proposal(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        solicitation_id: str,
        proposal_input: ProposalSubmitInput,
    ) -> ServiceOutput:
        require_staff(actor)
        valor = float(proposal_input.valor or 0)
        descricao = str(proposal_input.descricao or "").strip()
        if valor <= 0:
            raise _validation("proposal_value_invalid")
        if not descricao:
            raise _validation("proposal_description_required")

        with self.guard.hold(solicitation_id):
            solicitation = self._solicitation(repos, actor, solicitation_id)
            if solicitation.status not in {"nova", "analisando"}:
                raise _validation("proposal_requires_open_solicitation", 409, status=solicitation.status)

            created_at = now_iso()
            solicitation.proposta = ProposalTerms.from_document(
                {
                    "valor": valor,
                    "descricao": descricao,
                    "prazo": proposal_input.prazo,
                    "dataCriacao": created_at,
                    "servicos": list(proposal_input.servicos or []),
                    "observacoes": proposal_input.observacoes,
                }
            )
            solicitation.status = "proposta-criada"
            solicitation.proposta_status = "pendente"
            solicitation.proposta_criada = True
            if not solicitation.admin_id and not actor.is_webmaster:
                solicitation.admin_id = actor.user_id
                solicitation.admin_nome = actor_name(actor)
            outcome = StepOutcome("submit_proposal")
            outcome.record(repos.solicitations.persist(solicitation))

        def _update_client() -> Any:
            client = self._client(repos, solicitation.cliente_id)
            client.record_interaction(
                "proposta", f"Proposta enviada: {solicitation.titulo}", autor="Admin", data=created_at
            )
            _advance_client_funnel(client, "proposta", created_at)
            return repos.clients.persist(client)

        outcome.secondary("client", _update_client)
        self.event_bus.publish(
            ProposalSubmitted(
                actor_id=actor.user_id,
                solicitation_id=solicitation.id,
                client_id=solicitation.cliente_id,
                value=valor,
                title=solicitation.titulo,
            )
        )
        return ServiceOutput(
            outcome.payload(solicitation=present_solicitation(solicitation), message=success_message("proposal_sent"))
        )

    @staticmethod
    def _contract_cached(repos: Repositories, solicitation_id: str) -> bool:
        try:
            cached = repos.solicitations.cached_contracts()
        except StoreUnavailableError:
            return False
        return any(
            contract.solicitacao_id == solicitation_id or contract.proposta_id == solicitation_id
            for contract in cached
        )

    @observed_transition("accept_proposal")
    def accept_proposal(self, repos: Repositories, *, actor: Actor, proposal_id: str) -> ServiceOutput:
        with self.guard.hold(proposal_id):
            solicitation = self._solicitation(repos, actor, proposal_id, entity="proposal")
            if (
                "contrato" in solicitation.status
                or has_contract(solicitation)
                or self._contract_cached(repos, solicitation.id)
            ):
                raise DuplicateTransitionError(
                    code="contract_already_exists",
                    message_key="contract_already_exists",
                    payload={"solicitation_id": solicitation.id, "contract_id": solicitation.contrato_id},
                )
            if solicitation.proposta_status == "aceita":
                raise DuplicateTransitionError(code="proposal_already_accepted", message_key="proposal_already_accepted")
            if not is_proposal_active(solicitation):
                raise _validation("proposal_not_active", 409, status=solicitation.status)

            accepted_at = now_iso()
            contract_id = repos.solicitations.allocate_id(
                new_contract_id, in_use=repos.solicitations.contract_id_in_use
            )
            solicitation.status = "contrato-pendente"
            solicitation.proposta_status = "aceita"
            solicitation.contrato_id = contract_id
            solicitation.contrato_status = "aguardando-assinatura"
            solicitation.data_aceite_proposta = accepted_at
            solicitation.contrato = ContractTerms(
                id=contract_id,
                valor=solicitation.proposta.valor,
                data_envio=accepted_at,
                status="aguardando-assinatura",
            )
            outcome = StepOutcome("accept_proposal")
            outcome.record(repos.solicitations.persist(solicitation))
            contract = contract_from_solicitation(solicitation)
            repos.solicitations.cache_contract(contract)

        def _update_client() -> Any:
            client = self._client(repos, solicitation.cliente_id)
            client.record_interaction(
                "proposta", f"Proposta aceita: {solicitation.titulo}", autor=actor_author(actor), data=accepted_at
            )
            _advance_client_funnel(client, "negociacao", accepted_at)
            return repos.clients.persist(client)

        outcome.secondary("client", _update_client)
        self.event_bus.publish(
            ProposalAccepted(
                actor_id=actor.user_id,
                solicitation_id=solicitation.id,
                contract_id=contract_id,
                client_id=solicitation.cliente_id,
                admin_id=solicitation.admin_id,
                client_name=solicitation.nome_cliente,
                title=solicitation.titulo,
            )
        )
        return ServiceOutput(
            outcome.payload(
                solicitation=present_solicitation(solicitation),
                contract=contract.to_document(),
                message=success_message("proposal_accepted"),
            )
        )

    @observed_transition("sign_contract")
    def sign_contract(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        contract_id: str,
        signature: Any,
        terms_accepted: Any,
    ) -> ServiceOutput:
        capture = SignatureCapture.coerce(signature)
        located = repos.solicitations.find_contract(contract_id)
        if located is None:
            raise not_found("contract", contract_id)
        solicitation_id = located[0].id

        with self.guard.hold(solicitation_id):
            solicitation = self._solicitation(repos, actor, solicitation_id, entity="contract")
            contract = contract_from_solicitation(solicitation)
            if contract is None:
                raise not_found("contract", contract_id)

            already_signed = contract.status == "assinado"
            if already_signed and self._signing_complete(repos, solicitation, contract):
                raise DuplicateTransitionError(
                    code="contract_already_signed",
                    message_key="contract_already_signed",
                    payload={"contract_id": contract.id, "project_id": solicitation.projeto_id},
                )
            if not already_signed and solicitation.status != "contrato-pendente":
                raise _validation("contract_requires_pending_signature", 409, status=solicitation.status)

            client = self._client(repos, solicitation.cliente_id)
            signed_at = utc_now()
            signed_iso = solicitation.data_assinatura if already_signed and solicitation.data_assinatura else iso_timestamp(signed_at)
            document = build_contract_document(
                client,
                contract.servicos,
                contract.valor,
                capture,
                terms_accepted,
                contract_id=contract.id,
                signed_at=signed_at,
                agency=self.agency,
            )

            outcome = StepOutcome("sign_contract")
            if not already_signed:
                solicitation.status = "concluida"
                solicitation.contrato_status = "assinado"
                solicitation.data_assinatura = signed_iso
                solicitation.data_finalizacao = signed_iso
                if solicitation.contrato is not None:
                    solicitation.contrato.status = "assinado"
                    solicitation.contrato.data_assinatura = signed_iso
                outcome.record(repos.solicitations.persist(solicitation))
            contract = contract_from_solicitation(solicitation)
            repos.solicitations.cache_contract(contract)

            project, project_created = outcome.secondary(
                "project", lambda: self._ensure_project(repos, actor, solicitation, contract, client, signed_iso)
            ) or (None, False)
            if project is not None and solicitation.projeto_id != project.id:
                solicitation.projeto_id = project.id
                outcome.secondary("solicitation_project_link", lambda: repos.solicitations.persist(solicitation))

            outcome.secondary(
                "client",
                lambda: self._apply_signature_to_client(
                    repos, client, solicitation, contract, document, capture, signed_iso, project_created
                ),
            )
            outcome.secondary("signed_record", lambda: self._store_signed_record(repos, solicitation, contract, document, signed_iso))

        if not already_signed:
            self.event_bus.publish(
                ContractSigned(
                    actor_id=actor.user_id,
                    solicitation_id=solicitation.id,
                    contract_id=contract.id,
                    project_id=project.id if project is not None else "",
                    client_id=solicitation.cliente_id,
                    admin_id=solicitation.admin_id,
                    client_name=client.nome,
                    title=solicitation.titulo,
                )
            )
        if project_created:
            self.event_bus.publish(
                ProjectCreated(actor_id=actor.user_id, project_id=project.id, client_id=project.cliente_id, name=project.nome)
            )
        return ServiceOutput(
            outcome.payload(
                solicitation=present_solicitation(solicitation),
                contract=contract.to_document(),
                project=project.to_document() if project is not None else None,
                document=self._document_summary(document, solicitation.id),
                message=success_message("contract_signed"),
            )
        )

    @staticmethod
    def _document_summary(document: ContractDocument, solicitation_id: str) -> Dict[str, Any]:
        return {
            "fileName": document.file_name,
            "contractId": document.contract_id,
            "verificationCode": document.verification_code,
            "hash": document.sha256,
            "url": SIGNED_CONTRACT_URL.format(solicitation_id=solicitation_id),
        }

    @staticmethod
    def _signing_complete(repos: Repositories, solicitation: Solicitation, contract: Contract) -> bool:
        try:
            record = repos.signed_contracts.get(solicitation.id)
            project = repos.projects.find_by_contract(contract.id)
            client = repos.clients.get(solicitation.cliente_id)
        except StoreUnavailableError:
            return True
        client_updated = client is not None and any(
            service.contrato_id == contract.id for service in client.servicos_contratados
        )
        return record is not None and project is not None and client_updated

    def _ensure_project(
        self,
        repos: Repositories,
        actor: Actor,
        solicitation: Solicitation,
        contract: Contract,
        client: Client,
        signed_iso: str,
    ) -> tuple[Project, bool]:
        existing = repos.projects.find_by_contract(contract.id) or repos.projects.find_by_solicitation(solicitation.id)
        if existing is not None:
            return existing, False
        proposal = solicitation.proposta

        def _build(project_id: str) -> Project:
            project = Project(
                id=project_id,
                nome=solicitation.titulo,
                descricao=(proposal.descricao if proposal is not None else "") or solicitation.descricao,
                cliente_id=solicitation.cliente_id,
                cliente_nome=client.nome,
                contrato_id=contract.id,
                solicitacao_id=solicitation.id,
                proposta_id=solicitation.id,
                status="em-andamento",
                progresso=0,
                valor_contratado=contract.valor,
                data_inicio=today_iso(),
                admin_id=solicitation.admin_id,
            )
            project.record_history("projeto_criado", status=project.status, autor=actor_author(actor), data=signed_iso)
            return project

        project, result = repos.projects.create(_build)
        if result.degraded:
            LOGGER.warning("project_saved_offline", extra={"project_id": project.id})
        return project, True

    @staticmethod
    def _apply_signature_to_client(
        repos: Repositories,
        client: Client,
        solicitation: Solicitation,
        contract: Contract,
        document: ContractDocument,
        capture: SignatureCapture,
        signed_iso: str,
        project_created: bool,
    ) -> Any:
        for index, item in enumerate(contract.servicos, start=1):
            service_id = f"SERV-{contract.id}-{index}"
            if client.find_service(service_id) is not None:
                continue
            service = ContractedService(
                id=service_id,
                nome=str(item.get("nome") or item.get("titulo") or solicitation.titulo),
                categoria=str(item.get("categoria") or solicitation.categoria),
                valor=float(item.get("valor") or 0),
                recorrente=bool(item.get("recorrente")),
                data_contratacao=signed_iso,
                status="ativo",
                contrato_id=contract.id,
            )
            client.servicos_contratados.append(service)
            client.valor_total += service.valor

        document_id = f"DOC-{contract.id}"
        if not any(item.id == document_id for item in client.documentos):
            client.documentos.append(
                ClientDocument(
                    id=document_id,
                    nome=document.file_name,
                    tipo="contrato",
                    url=SIGNED_CONTRACT_URL.format(solicitation_id=solicitation.id),
                    data_upload=signed_iso,
                    tamanho=len(document.content),
                    formato="pdf",
                )
            )
            client.record_interaction("contrato", f"Contrato {contract.id} assinado", autor="Cliente", data=signed_iso)

        client.status = "ativo"
        _advance_client_funnel(client, "contratado", signed_iso)
        client.contrato_assinado = True
        client.contrato_id = contract.id
        client.data_assinatura = signed_iso
        client.assinatura_base64 = capture.to_data_url()
        if project_created:
            client.projetos += 1
        return repos.clients.persist(client)

    @staticmethod
    def _store_signed_record(
        repos: Repositories,
        solicitation: Solicitation,
        contract: Contract,
        document: ContractDocument,
        signed_iso: str,
    ) -> Any:
        if repos.signed_contracts.get(solicitation.id) is not None:
            return None
        record = SignedContractRecord(
            solicitacao_id=solicitation.id,
            contrato_id=contract.id,
            cliente_id=solicitation.cliente_id,
            nome_arquivo=document.file_name,
            pdf_base64=document.to_data_url(),
            hash=document.sha256,
            assinado_em=signed_iso,
        )
        return repos.signed_contracts.persist(record)

    @observed_transition("reject_solicitation")
    def reject_solicitation(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        solicitation_id: str,
        motivo: str = "",
    ) -> ServiceOutput:
        with self.guard.hold(solicitation_id):
            solicitation = self._solicitation(repos, actor, solicitation_id)
            if solicitation.status == "rejeitada":
                raise DuplicateTransitionError(details=f"{solicitation_id} already rejected")
            if solicitation.status not in SOLICITATION_REJECTABLE_STATUSES:
                raise _validation("solicitation_not_rejectable", 409, status=solicitation.status)

            rejected_at = now_iso()
            reason = str(motivo or "").strip()
            solicitation.status = "rejeitada"
            solicitation.motivo_rejeicao = reason or None
            if actor.is_client and solicitation.proposta is not None:
                solicitation.proposta_status = "recusada"
            if reason:
                solicitation.respostas.append(
                    Reply(texto=f"Solicitacao recusada: {reason}", autor=actor_author(actor), data_criacao=rejected_at)
                )
                solicitation.ultima_resposta = rejected_at
            outcome = StepOutcome("reject_solicitation")
            outcome.record(repos.solicitations.persist(solicitation))

        def _update_client() -> Any:
            client = self._client(repos, solicitation.cliente_id)
            client.record_interaction(
                "solicitacao", f"Solicitacao recusada: {solicitation.titulo}", autor=actor_author(actor), data=rejected_at
            )
            return repos.clients.persist(client)

        outcome.secondary("client", _update_client)
        self.event_bus.publish(
            SolicitationRejected(
                actor_id=actor.user_id,
                solicitation_id=solicitation.id,
                client_id=solicitation.cliente_id,
                admin_id=solicitation.admin_id,
                rejected_by="cliente" if actor.is_client else "admin",
                title=solicitation.titulo,
            )
        )
        return ServiceOutput(
            outcome.payload(
                solicitation=present_solicitation(solicitation), message=success_message("solicitation_rejected")
            )
        )

    @observed_transition("post_message")
    def post_message(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        texto: str,
        solicitation_id: str | None = None,
    ) -> ServiceOutput:
        text = str(texto or "").strip()
        if not text:
            raise _validation("message_required")

        outcome = StepOutcome("post_message")
        created = False
        if solicitation_id:
            solicitation = self._solicitation(repos, actor, solicitation_id)
        elif actor.is_client:
            client = self._client(repos, actor.client_id or "")
            solicitation = self._new_solicitation(
                repos,
                client,
                {
                    "servico_id": CONTACT_SOLICITATION_DEFAULTS["servicoId"],
                    "titulo": CONTACT_SOLICITATION_DEFAULTS["titulo"],
                    "categoria": CONTACT_SOLICITATION_DEFAULTS["categoria"],
                    "valor": CONTACT_SOLICITATION_DEFAULTS["valor"],
                    "prazo": CONTACT_SOLICITATION_DEFAULTS["prazo"],
                    "descricao": text,
                    "recorrente": CONTACT_SOLICITATION_DEFAULTS["recorrente"],
                },
            )
            created = True
        else:
            raise not_found("solicitation", solicitation_id)

        sent_at = now_iso()
        author = actor_author(actor)
        solicitation.respostas.append(Reply(texto=text, autor=author, data_criacao=sent_at))
        solicitation.ultima_resposta = sent_at
        outcome.record(repos.solicitations.persist(solicitation))

        sender = solicitation.nome_cliente if actor.is_client else (solicitation.admin_nome or actor_name(actor))
        if created:
            self.event_bus.publish(
                SolicitationCreated(
                    actor_id=actor.user_id,
                    solicitation_id=solicitation.id,
                    client_id=solicitation.cliente_id,
                    admin_id=solicitation.admin_id,
                    client_name=solicitation.nome_cliente,
                    title=solicitation.titulo,
                )
            )
        self.event_bus.publish(
            MessagePosted(
                actor_id=actor.user_id,
                solicitation_id=solicitation.id,
                client_id=solicitation.cliente_id,
                admin_id=solicitation.admin_id,
                author=author,
                sender_name=sender,
                preview=text[:80],
            )
        )
        return ServiceOutput(
            outcome.payload(
                solicitation=present_solicitation(solicitation), message=success_message("message_sent")
            ),
            status_code=201 if created else 200,
        )

    # -- read side ---------------------------------------------------------

    def list_solicitations(self, repos: Repositories, *, actor: Actor) -> ServiceOutput:
        items = self.visible_solicitations(repos, actor)
        return ServiceOutput({"items": [present_solicitation(item) for item in items], "total": len(items)})

    def get_solicitation(self, repos: Repositories, *, actor: Actor, solicitation_id: str) -> ServiceOutput:
        solicitation = self._solicitation(repos, actor, solicitation_id)
        return ServiceOutput({"solicitation": present_solicitation(solicitation)})

    def list_proposals(self, repos: Repositories, *, actor: Actor, active_only: bool = False) -> ServiceOutput:
        solicitations = self.visible_solicitations(repos, actor)
        active_ids = {item.id for item in solicitations if is_proposal_active(item)}
        items = []
        for proposal in repos.solicitations.proposals(solicitations):
            if active_only and proposal.id not in active_ids:
                continue
            document = proposal.to_document()
            document["ativa"] = proposal.id in active_ids
            items.append(document)
        return ServiceOutput({"items": items, "total": len(items)})

    def list_contracts(self, repos: Repositories, *, actor: Actor) -> ServiceOutput:
        contracts = repos.solicitations.contracts(self.visible_solicitations(repos, actor))
        items = [contract.to_document() for contract in contracts]
        return ServiceOutput({"items": items, "total": len(items)})

    def proposal_document(self, repos: Repositories, *, actor: Actor, proposal_id: str) -> ProposalDocument:
        solicitation = self._solicitation(repos, actor, proposal_id, entity="proposal")
        proposal = solicitation.proposta
        if proposal is None:
            raise not_found("proposal", proposal_id)
        client = repos.clients.get(solicitation.cliente_id)
        client_info = client if client is not None else {
            "nome": solicitation.nome_cliente,
            "email": solicitation.email_cliente,
            "empresa": solicitation.empresa_cliente,
        }
        services = [
            {
                "nome": item.get("nome") or item.get("titulo"),
                "categoria": item.get("categoria"),
                "prazo": item.get("prazo") or proposal.prazo,
                "valor": item.get("valor"),
                "recorrente": item.get("recorrente"),
            }
            for item in contract_services(solicitation)
        ]
        terms = ProposalTermsText(
            validity_days=proposal.validade,
            payment_terms=self.proposal_terms.payment_terms,
            warranty=self.proposal_terms.warranty,
            delivery=f"{proposal.prazo} dias" if proposal.prazo.isdigit() else proposal.prazo,
            start=self.proposal_terms.start,
        )
        return build_proposal_document(
            client_info,
            services,
            terms=terms,
            observations=proposal.observacoes,
            agency=self.agency,
        )

    def signed_contract(self, repos: Repositories, *, actor: Actor, solicitation_id: str) -> SignedContractRecord:
        record = repos.signed_contracts.get(solicitation_id)
        if record is None:
            raise not_found("signed_contract", solicitation_id)
        ensure_client_access(actor, record.cliente_id)
        owner = repos.solicitations.get(record.solicitacao_id) or repos.clients.get(record.cliente_id)
        ensure_admin_access(actor, owner.admin_id if owner is not None else None)
        return record

    def watch_solicitations(
        self,
        repos: Repositories,
        *,
        actor: Actor,
        client_id: str,
        callback: Callable[[List[Dict[str, Any]]], None],
    ) -> Subscription:
        """Live view of one client's solicitations, replayed on every write."""
        ensure_client_access(actor, client_id)
        return repos.solicitations.subscribe(
            "clienteId",
            client_id,
            lambda items: callback([present_solicitation(item) for item in items]),
        )

