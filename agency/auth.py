from __future__ import annotations

import hmac
from typing import Iterable

from flask import Blueprint, current_app, g, jsonify, request, session

from agency.domain.contracts import Actor
from agency.policies import normalize_role, resolve_role
from agency.ui_strings import error_message


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

PUBLIC_PATHS = {"/health", "/metrics", "/api/auth/login", "/api/auth/logout", "/api/ui-config"}


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _require_login():
        g.actor = resolve_actor(app.config)
        if not app.config.get("AUTH_ENABLED", True):
            return None

        path = request.path or "/"
        if path in PUBLIC_PATHS or not path.startswith("/api/"):
            return None
        if g.actor is not None:
            return None
        return jsonify({"error": "auth_required", "message": error_message("auth_required")}), 401


def resolve_actor(config) -> Actor | None:
    """Identity comes from the login session or from the auth provider headers."""
    user_id = str(session.get("user_id") or "").strip()
    if user_id:
        email = str(session.get("user_email") or "")
        role = resolve_role(session.get("user_role"), email, config.get("WEBMASTER_EMAILS"))
        return Actor(
            user_id=user_id,
            role=role,
            email=email,
            display_name=str(session.get("display_name") or ""),
            client_id=(session.get("client_id") or user_id) if role == "cliente" else None,
        )

    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        return None
    email = (request.headers.get("X-User-Email") or "").strip().lower()
    role = resolve_role(request.headers.get("X-User-Role"), email, config.get("WEBMASTER_EMAILS"))
    client_id = None
    if role == "cliente":
        client_id = (request.headers.get("X-Client-Id") or "").strip() or user_id
    return Actor(
        user_id=user_id,
        role=role,
        email=email,
        display_name=(request.headers.get("X-User-Name") or "").strip(),
        client_id=client_id,
    )


def current_actor() -> Actor:
    actor = g.get("actor")
    if actor is None:
        # Only reachable with AUTH_ENABLED off.
        # Anonymous callers get a client identity that owns no records.
        return Actor(user_id="anonymous", role="cliente", client_id="anonymous")
    return actor


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")

    user = _find_user(email, password, current_app.config.get("APP_USERS"))
    if not user:
        return jsonify({"error": "invalid_credentials", "message": "Credenciais invalidas. Tente novamente."}), 401

    session.clear()
    session["user_id"] = user["user_id"]
    session["user_email"] = user["email"]
    session["display_name"] = user["display_name"]
    session["user_role"] = user["role"]
    if user["role"] == "cliente":
        session["client_id"] = user["user_id"]
    actor = resolve_actor(current_app.config)
    return jsonify({"user": _actor_payload(actor)}), 200


@auth_bp.route("/logout", methods=["POST", "GET"])
def logout():
    scheduler = current_app.extensions.get("project_refresh_scheduler")
    actor = g.get("actor")
    if scheduler is not None and actor is not None:
        scheduler.unwatch(actor.user_id)
    session.clear()
    return jsonify({"status": "logged_out"}), 200


@auth_bp.route("/me", methods=["GET"])
def me():
    return jsonify({"user": _actor_payload(current_actor())}), 200


def _actor_payload(actor: Actor) -> dict:
    return {
        "id": actor.user_id,
        "email": actor.email,
        "role": actor.role,
        "displayName": actor.display_name,
        "clientId": actor.client_id,
    }


def _find_user(email: str, password: str, raw_users: object) -> dict | None:
    if not email or not password:
        return None
    for user in _parse_users(raw_users):
        if user["email"] == email and hmac.compare_digest(user["password"].encode("utf-8"), password.encode("utf-8")):
            return user
    return None


def _parse_users(raw_users: object) -> Iterable[dict]:
    if not raw_users:
        return []
    if isinstance(raw_users, str):
        entries = []
        for chunk in raw_users.replace("\n", ",").replace(";", ",").split(","):
            entry = chunk.strip()
            if entry:
                entries.append(entry)
    elif isinstance(raw_users, (list, tuple, set)):
        entries = [str(item).strip() for item in raw_users if str(item).strip()]
    else:
        return []

    users = []
    for entry in entries:
        parts = [part.strip() for part in entry.split(":")]
        if len(parts) < 3:
            continue
        email, password = parts[0].lower(), parts[1]
        role = normalize_role(parts[2])
        display_name = parts[3] if len(parts) > 3 and parts[3] else email.split("@")[0]
        user_id = parts[4] if len(parts) > 4 and parts[4] else email
        users.append(
            {
                "email": email,
                "password": password,
                "role": role,
                "display_name": display_name,
                "user_id": user_id,
            }
        )
    return users
