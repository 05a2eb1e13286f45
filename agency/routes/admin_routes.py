from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from agency.auth import current_actor
from agency.domain.contracts import ClientRegisterInput, DeliverableInput, ProjectCreateInput, ProposalSubmitInput
from agency.errors import ValidationError
from agency.policies import require_roles
from agency.routes.route_helpers import (
    decode_pdf_data_url,
    list_field,
    number_field,
    pdf_response,
    request_payload,
    request_repositories,
    require_critical_confirmation,
    respond,
    text_field,
    wants_download,
)
from agency.runtime import get_runtime
from agency.workflow.critical_actions import is_explicit_true


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.before_request
def _staff_only():
    require_roles("admin", "webmaster")


def _runtime():
    return get_runtime()


def _watch_projects() -> None:
    scheduler = current_app.extensions.get("project_refresh_scheduler")
    if scheduler is not None:
        scheduler.watch(current_actor())


# -- clients ------------------------------------------------------------------


@admin_bp.route("/clients", methods=["GET"])
def list_clients():
    status = (request.args.get("status") or "").strip() or None
    result = _runtime().clients.list_clients(request_repositories(), actor=current_actor(), status=status)
    return respond(result)


@admin_bp.route("/clients", methods=["POST"])
def create_client():
    payload = request_payload()
    result = _runtime().clients.register_client(
        request_repositories(),
        actor=current_actor(),
        register_input=ClientRegisterInput(
            nome=text_field(payload, "nome"),
            email=text_field(payload, "email"),
            telefone=text_field(payload, "telefone"),
            empresa=text_field(payload, "empresa"),
            cargo=text_field(payload, "cargo"),
            cidade=text_field(payload, "cidade"),
            estado=text_field(payload, "estado"),
            cnpj=text_field(payload, "cnpj"),
            admin_id=text_field(payload, "adminId") or None,
            admin_nome=text_field(payload, "adminNome") or None,
        ),
    )
    return respond(result)


@admin_bp.route("/clients/<client_id>", methods=["GET"])
def get_client(client_id: str):
    return respond(_runtime().clients.get_client(request_repositories(), actor=current_actor(), client_id=client_id))


@admin_bp.route("/clients/<client_id>", methods=["PATCH", "PUT"])
def update_client(client_id: str):
    result = _runtime().clients.update_client(
        request_repositories(),
        actor=current_actor(),
        client_id=client_id,
        changes=request_payload(),
    )
    return respond(result)


@admin_bp.route("/clients/<client_id>", methods=["DELETE"])
def delete_client(client_id: str):
    result = _runtime().clients.delete_client(
        request_repositories(),
        actor=current_actor(),
        client_id=client_id,
        require_confirmation_fn=require_critical_confirmation,
    )
    return respond(result)


@admin_bp.route("/clients/<client_id>/funnel", methods=["POST"])
def update_funnel(client_id: str):
    payload = request_payload()
    result = _runtime().clients.update_funnel_stage(
        request_repositories(),
        actor=current_actor(),
        client_id=client_id,
        stage=text_field(payload, "etapa") or text_field(payload, "stage"),
        motivo=text_field(payload, "motivo"),
    )
    return respond(result)


@admin_bp.route("/clients/<client_id>/lost", methods=["POST"])
def mark_client_lost(client_id: str):
    payload = request_payload()
    result = _runtime().clients.mark_lost(
        request_repositories(),
        actor=current_actor(),
        client_id=client_id,
        motivo=text_field(payload, "motivo"),
    )
    return respond(result)


@admin_bp.route("/clients/<client_id>/deactivate", methods=["POST"])
def deactivate_client(client_id: str):
    result = _runtime().clients.deactivate_client(request_repositories(), actor=current_actor(), client_id=client_id)
    return respond(result)


# -- contracted services --------------------------------------------------------


@admin_bp.route("/clients/<client_id>/services/<service_id>/finalize", methods=["POST"])
def finalize_service(client_id: str, service_id: str):
    payload = request_payload()
    result = _runtime().projects.finalize_service(
        request_repositories(),
        actor=current_actor(),
        client_id=client_id,
        service_id=service_id,
        deliverable=DeliverableInput(
            titulo=text_field(payload, "titulo"),
            descricao=text_field(payload, "descricao"),
            autorizado_publicacao=is_explicit_true(payload.get("autorizadoPublicacao")),
            imagem_capa=text_field(payload, "imagemCapa"),
            imagens_galeria=list_field(payload, "imagensGaleria"),
            tags=list_field(payload, "tags"),
            link_projeto=text_field(payload, "linkProjeto"),
            arquivos_entregues=list_field(payload, "arquivosEntregues"),
            resultados=text_field(payload, "resultados"),
            testemunho=text_field(payload, "testemunho"),
        ),
    )
    return respond(result)


@admin_bp.route("/portfolio", methods=["GET"])
def list_portfolio():
    return respond(_runtime().projects.list_portfolio(request_repositories(), actor=current_actor()))


@admin_bp.route("/clients/<client_id>/services/<service_id>/pause", methods=["POST"])
def pause_service(client_id: str, service_id: str):
    result = _runtime().projects.pause_service(
        request_repositories(), actor=current_actor(), client_id=client_id, service_id=service_id
    )
    return respond(result)


@admin_bp.route("/clients/<client_id>/services/<service_id>/resume", methods=["POST"])
def resume_service(client_id: str, service_id: str):
    result = _runtime().projects.resume_service(
        request_repositories(), actor=current_actor(), client_id=client_id, service_id=service_id
    )
    return respond(result)


# -- solicitations, proposals, contracts --------------------------------------------


@admin_bp.route("/solicitations", methods=["GET"])
def list_solicitations():
    return respond(_runtime().workflow.list_solicitations(request_repositories(), actor=current_actor()))


@admin_bp.route("/solicitations/<solicitation_id>", methods=["GET"])
def get_solicitation(solicitation_id: str):
    result = _runtime().workflow.get_solicitation(
        request_repositories(), actor=current_actor(), solicitation_id=solicitation_id
    )
    return respond(result)


@admin_bp.route("/solicitations/<solicitation_id>/review", methods=["POST"])
def start_review(solicitation_id: str):
    result = _runtime().workflow.start_review(
        request_repositories(), actor=current_actor(), solicitation_id=solicitation_id
    )
    return respond(result)


@admin_bp.route("/solicitations/<solicitation_id>/proposal", methods=["POST"])
def submit_proposal(solicitation_id: str):
    payload = request_payload()
    services = payload.get("servicos")
    if services is not None and not isinstance(services, list):
        raise ValidationError(code="proposal_services_invalid", message_key="proposal_description_required")
    result = _runtime().workflow.submit_proposal(
        request_repositories(),
        actor=current_actor(),
        solicitation_id=solicitation_id,
        proposal_input=ProposalSubmitInput(
            valor=number_field(payload, "valor", error_key="proposal_value_invalid"),
            descricao=text_field(payload, "descricao"),
            prazo=text_field(payload, "prazo"),
            servicos=[item for item in services or [] if isinstance(item, dict)],
            observacoes=text_field(payload, "observacoes"),
        ),
    )
    return respond(result)


@admin_bp.route("/solicitations/<solicitation_id>/messages", methods=["POST"])
def reply_solicitation(solicitation_id: str):
    payload = request_payload()
    result = _runtime().workflow.post_message(
        request_repositories(),
        actor=current_actor(),
        texto=text_field(payload, "texto"),
        solicitation_id=solicitation_id,
    )
    return respond(result)


@admin_bp.route("/solicitations/<solicitation_id>/reject", methods=["POST"])
def reject_solicitation(solicitation_id: str):
    payload = request_payload()
    result = _runtime().workflow.reject_solicitation(
        request_repositories(),
        actor=current_actor(),
        solicitation_id=solicitation_id,
        motivo=text_field(payload, "motivo"),
    )
    return respond(result)


@admin_bp.route("/proposals", methods=["GET"])
def list_proposals():
    active_only = is_explicit_true(request.args.get("active"))
    result = _runtime().workflow.list_proposals(request_repositories(), actor=current_actor(), active_only=active_only)
    return respond(result)


@admin_bp.route("/proposals/<proposal_id>/pdf", methods=["GET"])
def proposal_pdf(proposal_id: str):
    document = _runtime().workflow.proposal_document(
        request_repositories(), actor=current_actor(), proposal_id=proposal_id
    )
    return pdf_response(document.content, document.file_name)


@admin_bp.route("/contracts", methods=["GET"])
def list_contracts():
    return respond(_runtime().workflow.list_contracts(request_repositories(), actor=current_actor()))


@admin_bp.route("/contracts/<solicitation_id>/signed", methods=["GET"])
def signed_contract(solicitation_id: str):
    record = _runtime().workflow.signed_contract(
        request_repositories(), actor=current_actor(), solicitation_id=solicitation_id
    )
    if wants_download():
        return pdf_response(decode_pdf_data_url(record.pdf_base64), record.nome_arquivo)
    return jsonify({"contract": record.to_document()}), 200


# -- projects -------------------------------------------------------------------


@admin_bp.route("/projects", methods=["GET"])
def list_projects():
    _watch_projects()
    return respond(_runtime().projects.list_projects(request_repositories(), actor=current_actor()))


@admin_bp.route("/projects", methods=["POST"])
def create_project():
    payload = request_payload()
    result = _runtime().projects.create_project(
        request_repositories(),
        actor=current_actor(),
        create_input=ProjectCreateInput(
            client_id=text_field(payload, "clienteId"),
            nome=text_field(payload, "nome"),
            valor=number_field(payload, "valor"),
            descricao=text_field(payload, "descricao"),
            solicitation_id=text_field(payload, "solicitacaoId") or None,
            data_previsao=text_field(payload, "dataPrevisao") or None,
        ),
    )
    return respond(result)


@admin_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id: str):
    return respond(_runtime().projects.get_project(request_repositories(), actor=current_actor(), project_id=project_id))


@admin_bp.route("/projects/<project_id>/status", methods=["POST"])
def update_project_status(project_id: str):
    payload = request_payload()
    result = _runtime().projects.update_project_status(
        request_repositories(),
        actor=current_actor(),
        project_id=project_id,
        status=text_field(payload, "status") or None,
        progresso=payload.get("progresso"),
        require_confirmation_fn=require_critical_confirmation,
    )
    return respond(result)


# -- catalog --------------------------------------------------------------------


@admin_bp.route("/catalog", methods=["GET"])
def list_catalog():
    include_inactive = is_explicit_true(request.args.get("all"))
    result = _runtime().catalog.list_services(request_repositories(), include_inactive=include_inactive)
    return respond(result)


@admin_bp.route("/catalog", methods=["POST"])
def upsert_catalog_service():
    result = _runtime().catalog.upsert_service(request_repositories(), actor=current_actor(), payload=request_payload())
    return respond(result)


@admin_bp.route("/catalog/<service_id>/deactivate", methods=["POST"])
def deactivate_catalog_service(service_id: str):
    result = _runtime().catalog.deactivate_service(
        request_repositories(), actor=current_actor(), service_id=service_id
    )
    return respond(result)


# -- notifications --------------------------------------------------------------


@admin_bp.route("/notifications", methods=["GET"])
def list_notifications():
    unread_only = is_explicit_true(request.args.get("unread"))
    return respond(_runtime().notifications.list_for(current_actor(), unread_only=unread_only))


@admin_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id: str):
    return respond(_runtime().notifications.mark_read(current_actor(), notification_id))


@admin_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_notifications_read():
    return respond(_runtime().notifications.mark_all_read(current_actor()))
