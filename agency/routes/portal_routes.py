from __future__ import annotations

import json
import queue

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from agency.auth import current_actor
from agency.domain.contracts import ClientRegisterInput, SolicitationCreateInput
from agency.policies import require_roles
from agency.routes.route_helpers import (
    decode_pdf_data_url,
    number_field,
    pdf_response,
    request_payload,
    request_repositories,
    respond,
    text_field,
    wants_download,
)
from agency.runtime import get_runtime
from agency.workflow.critical_actions import is_explicit_true


portal_bp = Blueprint("portal", __name__, url_prefix="/api/portal")


@portal_bp.before_request
def _clients_only():
    require_roles("cliente")


def _runtime():
    return get_runtime()


def _client_id() -> str:
    actor = current_actor()
    return actor.client_id or actor.user_id


# -- profile --------------------------------------------------------------------


@portal_bp.route("/register", methods=["POST"])
def register():
    payload = request_payload()
    actor = current_actor()
    result = _runtime().clients.register_client(
        request_repositories(),
        actor=actor,
        register_input=ClientRegisterInput(
            nome=text_field(payload, "nome") or actor.display_name,
            email=text_field(payload, "email") or actor.email,
            telefone=text_field(payload, "telefone"),
            empresa=text_field(payload, "empresa"),
            cargo=text_field(payload, "cargo"),
            cidade=text_field(payload, "cidade"),
            estado=text_field(payload, "estado"),
            cnpj=text_field(payload, "cnpj"),
            admin_id=text_field(payload, "adminId") or None,
            admin_nome=text_field(payload, "adminNome") or None,
            user_id=_client_id(),
        ),
    )
    return respond(result)


@portal_bp.route("/profile", methods=["GET"])
def profile():
    return respond(_runtime().clients.get_client(request_repositories(), actor=current_actor(), client_id=_client_id()))


@portal_bp.route("/profile", methods=["PATCH", "PUT"])
def update_profile():
    result = _runtime().clients.update_client(
        request_repositories(),
        actor=current_actor(),
        client_id=_client_id(),
        changes=request_payload(),
    )
    return respond(result)


@portal_bp.route("/catalog", methods=["GET"])
def catalog():
    return respond(_runtime().catalog.list_services(request_repositories()))


# -- solicitations ----------------------------------------------------------------


@portal_bp.route("/solicitations", methods=["GET"])
def list_solicitations():
    return respond(_runtime().workflow.list_solicitations(request_repositories(), actor=current_actor()))


@portal_bp.route("/solicitations", methods=["POST"])
def create_solicitation():
    payload = request_payload()
    result = _runtime().workflow.create_solicitation(
        request_repositories(),
        actor=current_actor(),
        client_id=_client_id(),
        create_input=SolicitationCreateInput(
            titulo=text_field(payload, "titulo"),
            categoria=text_field(payload, "categoria"),
            valor=number_field(payload, "valor"),
            descricao=text_field(payload, "descricao"),
            prazo=text_field(payload, "prazo"),
            servico_id=text_field(payload, "servicoId") or None,
            recorrente=is_explicit_true(payload.get("recorrente")),
        ),
    )
    return respond(result)


@portal_bp.route("/solicitations/<solicitation_id>", methods=["GET"])
def get_solicitation(solicitation_id: str):
    result = _runtime().workflow.get_solicitation(
        request_repositories(), actor=current_actor(), solicitation_id=solicitation_id
    )
    return respond(result)


@portal_bp.route("/solicitations/stream", methods=["GET"])
def stream_solicitations():
    """Server-sent events: the client's solicitation list, resent after every write."""
    actor = current_actor()
    runtime = _runtime()
    max_events = max(0, int(current_app.config.get("STREAM_MAX_EVENTS") or 0))
    keepalive_seconds = max(1, int(current_app.config.get("STREAM_KEEPALIVE_SECONDS") or 15))

    updates: "queue.Queue[list]" = queue.Queue()
    # The stream outlives the request, so it owns a repository bundle of its own.
    repos = runtime.repositories(actor.user_id)
    try:
        subscription = runtime.workflow.watch_solicitations(
            repos, actor=actor, client_id=_client_id(), callback=updates.put
        )
    except Exception:
        repos.close()
        raise

    def _events():
        sent = 0
        try:
            while True:
                try:
                    items = updates.get(timeout=keepalive_seconds)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                data = json.dumps({"items": items, "total": len(items)}, ensure_ascii=False, default=str)
                yield f"event: solicitations\ndata: {data}\n\n"
                sent += 1
                if max_events and sent >= max_events:
                    break
        finally:
            subscription.dispose()
            repos.close()

    return Response(
        stream_with_context(_events()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@portal_bp.route("/messages", methods=["POST"])
def post_message():
    payload = request_payload()
    result = _runtime().workflow.post_message(
        request_repositories(),
        actor=current_actor(),
        texto=text_field(payload, "texto"),
        solicitation_id=text_field(payload, "solicitacaoId") or None,
    )
    return respond(result)


@portal_bp.route("/solicitations/<solicitation_id>/reject", methods=["POST"])
def reject_solicitation(solicitation_id: str):
    payload = request_payload()
    result = _runtime().workflow.reject_solicitation(
        request_repositories(),
        actor=current_actor(),
        solicitation_id=solicitation_id,
        motivo=text_field(payload, "motivo"),
    )
    return respond(result)


# -- proposals and contracts --------------------------------------------------------


@portal_bp.route("/proposals", methods=["GET"])
def list_proposals():
    active_only = is_explicit_true(request.args.get("active"))
    result = _runtime().workflow.list_proposals(request_repositories(), actor=current_actor(), active_only=active_only)
    return respond(result)


@portal_bp.route("/proposals/<proposal_id>/pdf", methods=["GET"])
def proposal_pdf(proposal_id: str):
    document = _runtime().workflow.proposal_document(
        request_repositories(), actor=current_actor(), proposal_id=proposal_id
    )
    return pdf_response(document.content, document.file_name)


@portal_bp.route("/proposals/<proposal_id>/accept", methods=["POST"])
def accept_proposal(proposal_id: str):
    result = _runtime().workflow.accept_proposal(
        request_repositories(), actor=current_actor(), proposal_id=proposal_id
    )
    return respond(result)


@portal_bp.route("/proposals/<proposal_id>/reject", methods=["POST"])
def reject_proposal(proposal_id: str):
    return reject_solicitation(proposal_id)


@portal_bp.route("/contracts", methods=["GET"])
def list_contracts():
    return respond(_runtime().workflow.list_contracts(request_repositories(), actor=current_actor()))


@portal_bp.route("/contracts/<contract_id>/sign", methods=["POST"])
def sign_contract(contract_id: str):
    payload = request_payload()
    terms_field = next(
        (field for field in ("aceitoTermos", "termosAceitos", "termsAccepted") if field in payload),
        "aceitoTermos",
    )
    result = _runtime().workflow.sign_contract(
        request_repositories(),
        actor=current_actor(),
        contract_id=contract_id,
        signature=payload.get("assinatura") if "assinatura" in payload else payload.get("signature"),
        terms_accepted=payload.get(terms_field),
    )
    return respond(result)


@portal_bp.route("/contracts/<solicitation_id>/pdf", methods=["GET"])
def signed_contract_pdf(solicitation_id: str):
    record = _runtime().workflow.signed_contract(
        request_repositories(), actor=current_actor(), solicitation_id=solicitation_id
    )
    if request.args.get("format") and not wants_download():
        return jsonify({"contract": record.to_document()}), 200
    return pdf_response(decode_pdf_data_url(record.pdf_base64), record.nome_arquivo)


# -- projects ---------------------------------------------------------------------


@portal_bp.route("/projects", methods=["GET"])
def list_projects():
    return respond(_runtime().projects.list_projects(request_repositories(), actor=current_actor()))


@portal_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id: str):
    return respond(_runtime().projects.get_project(request_repositories(), actor=current_actor(), project_id=project_id))


@portal_bp.route("/projects/<project_id>/approve", methods=["POST"])
def approve_project(project_id: str):
    result = _runtime().projects.approve_current_phase(
        request_repositories(), actor=current_actor(), project_id=project_id
    )
    return respond(result)


# -- notifications ------------------------------------------------------------------


@portal_bp.route("/notifications", methods=["GET"])
def list_notifications():
    unread_only = is_explicit_true(request.args.get("unread"))
    return respond(_runtime().notifications.list_for(current_actor(), unread_only=unread_only))


@portal_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id: str):
    return respond(_runtime().notifications.mark_read(current_actor(), notification_id))


@portal_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_notifications_read():
    return respond(_runtime().notifications.mark_all_read(current_actor()))
