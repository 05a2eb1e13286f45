from __future__ import annotations

from typing import Iterable, Set

from flask import g, has_request_context, session

from agency.domain.contracts import Actor
from agency.errors import PermissionError as AppPermissionError
from agency.infrastructure.repositories.base import LoadScope


VALID_ROLES: Set[str] = {"webmaster", "admin", "cliente"}
STAFF_ROLES = ("webmaster", "admin")


def normalize_role(role: str | None, default: str = "cliente") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_role() -> str:
    actor = g.get("actor") if has_request_context() else None
    if actor is not None:
        return actor.role
    return normalize_role(session.get("user_role") if has_request_context() else None)


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role, default="")
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    normalized_role = normalize_role(role)
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalized_role in allowed


def require_roles(*allowed_roles: str, role: str | None = None) -> str:
    normalized_role = normalize_role(role) if role is not None else current_role()
    if has_any_role(normalized_role, allowed_roles):
        return normalized_role
    raise AppPermissionError(
        code="permission_denied",
        message_key="permission_denied",
        http_status=403,
        critical=False,
    )


def parse_email_list(raw: object) -> Set[str]:
    if not raw:
        return set()
    if isinstance(raw, str):
        items = raw.replace(";", ",").replace("\n", ",").split(",")
    elif isinstance(raw, (list, tuple, set)):
        items = [str(item) for item in raw]
    else:
        return set()
    return {item.strip().lower() for item in items if item.strip()}


def resolve_role(role: str | None, email: str | None, webmaster_emails: object) -> str:
    if str(email or "").strip().lower() in parse_email_list(webmaster_emails):
        return "webmaster"
    return normalize_role(role)


def load_scope_for(actor: Actor) -> LoadScope:
    if actor.is_webmaster:
        return LoadScope.all()
    return LoadScope.owned_by_admin(actor.user_id)


def ensure_client_access(actor: Actor, client_id: str | None) -> None:
    """Clients only reach their own records."""
    if actor.is_webmaster:
        return
    if actor.is_client:
        if not client_id or client_id != actor.client_id:
            raise AppPermissionError()
        return


def ensure_admin_access(actor: Actor, admin_id: str | None) -> None:
    if actor.is_webmaster or actor.is_client:
        return
    if admin_id and admin_id != actor.user_id:
        raise AppPermissionError()
