from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List

from flask import Response, current_app, g, jsonify, request

from agency.auth import current_actor
from agency.domain.contracts import Actor, ServiceOutput
from agency.errors import SystemError, ValidationError
from agency.infrastructure.repositories import Repositories
from agency.observability import current_request_id
from agency.runtime import get_runtime
from agency.ui_strings import confirm_message, get_ui_text
from agency.workflow.critical_actions import CRITICAL_ACTIONS, get_critical_action, resolve_confirmation


def request_repositories() -> Repositories:
    """Repositories scoped to the caller, built once per request."""
    repos = g.get("repos")
    if repos is None:
        repos = get_runtime().repositories(current_actor().user_id)
        g.repos = repos
    return repos


def close_request_repositories(_error=None) -> None:
    repos = g.pop("repos", None)
    if repos is not None:
        repos.close()


def request_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def respond(result: ServiceOutput):
    return jsonify(result.payload), result.status_code


def text_field(payload: Dict[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    if value is None:
        return default
    return str(value).strip()


def number_field(payload: Dict[str, Any], key: str, default: float = 0.0, *, error_key: str = "valor_invalid") -> float:
    value = payload.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(code=error_key, message_key=error_key, payload={"field": key})
    if isinstance(value, str):
        value = value.strip().replace("R$", "").strip()
        if "," in value:
            value = value.replace(".", "").replace(",", ".")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(code=error_key, message_key=error_key, payload={"field": key}) from None


def list_field(payload: Dict[str, Any], key: str) -> List[Any]:
    value = payload.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def critical_confirmation_details(action_key: str) -> dict:
    meta = get_critical_action(action_key) or {}
    confirm_key = meta.get("confirm_message_key") or action_key
    impact_key = meta.get("impact_text_key") or f"impact.{action_key}"
    return {
        "action_key": action_key,
        "confirm_key": confirm_key,
        "confirm_message": confirm_message(confirm_key, confirm_key),
        "impact_key": impact_key,
        "impact": get_ui_text(impact_key, impact_key),
    }


def critical_actions_bundle() -> dict:
    return {action_key: critical_confirmation_details(action_key) for action_key in CRITICAL_ACTIONS}


def _audit_confirmation(action_key: str, entity: str, entity_id: str, mode: str) -> None:
    actor: Actor = current_actor()
    user = (actor.email or actor.display_name or actor.user_id or "anonymous").strip() or "anonymous"
    current_app.logger.info(
        "confirmation_event",
        extra={
            "request_id": current_request_id("n/a"),
            "user": user,
            "action": action_key,
            "entity": entity,
            "entity_id": entity_id,
            "mode": mode,
        },
    )


def require_critical_confirmation(
    action_key: str,
    *,
    entity: str,
    entity_id: str,
    payload: dict | None = None,
) -> None:
    meta = get_critical_action(action_key)
    if not meta:
        return

    confirmed, mode = resolve_confirmation(request, payload if payload is not None else request_payload())
    if not confirmed:
        raise ValidationError(
            code="confirmation_required",
            message_key="confirmation_required",
            http_status=400,
            critical=False,
            payload={
                "action": action_key,
                "confirmation": critical_confirmation_details(action_key),
            },
        )

    _audit_confirmation(action_key, entity, entity_id, mode)


def pdf_response(content: bytes, file_name: str, *, inline: bool = False) -> Response:
    disposition = "inline" if inline else "attachment"
    return Response(
        content,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'{disposition}; filename="{file_name}"'},
    )


def decode_pdf_data_url(data_url: str) -> bytes:
    _, _, encoded = str(data_url or "").partition("base64,")
    try:
        return base64.b64decode(encoded or data_url, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SystemError(
            code="stored_pdf_corrupted",
            message_key="unexpected_error",
            http_status=500,
            details=str(exc),
        ) from exc


def wants_download() -> bool:
    return (request.args.get("format") or "").strip().lower() in {"pdf", "download"}
