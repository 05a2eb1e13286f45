from __future__ import annotations

from typing import Any, Dict

from agency.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    """Guard failure detected before any write: missing field, bad value, empty signature."""

    default_code = "validation_error"
    default_message_key = "status_invalid"
    default_http_status = 400
    default_critical = False


class DuplicateTransitionError(UserActionError):
    """The requested transition already happened (or is happening) for this entity."""

    default_code = "duplicate_transition"
    default_message_key = "transition_already_done"
    default_http_status = 409
    default_critical = False


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "entity_not_found"
    default_http_status = 404
    default_critical = False


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class StoreUnavailableError(AppError):
    """Remote document store (or local cache) could not be reached."""

    default_code = "store_unavailable"
    default_message_key = "data_unavailable"
    default_http_status = 503
    default_critical = False


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


def not_found(entity: str, entity_id: str | None) -> NotFoundError:
    return NotFoundError(
        code=f"{entity}_not_found",
        message_key=f"{entity}_not_found",
        details=f"{entity} {entity_id} not found",
        payload={"entity": entity, "entity_id": entity_id},
    )
