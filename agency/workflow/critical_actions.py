from __future__ import annotations

from typing import Dict, Tuple


CRITICAL_ACTIONS: Dict[str, Dict[str, str]] = {
    "delete_client": {
        "action_key": "delete_client",
        "confirm_message_key": "delete_client",
        "impact_text_key": "impact.delete_client",
    },
    "cancel_project": {
        "action_key": "cancel_project",
        "confirm_message_key": "cancel_project",
        "impact_text_key": "impact.cancel_project",
    },
}


_TRUE_TEXT_VALUES = {"1", "true", "yes", "on", "sim"}


def get_critical_action(action_key: str | None) -> Dict[str, str] | None:
    if not action_key:
        return None
    return CRITICAL_ACTIONS.get(str(action_key).strip())


def is_critical_action(action_key: str | None) -> bool:
    return get_critical_action(action_key) is not None


def is_explicit_true(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_TEXT_VALUES
    return False


def resolve_confirmation(request_obj, payload: dict | None = None) -> Tuple[bool, str]:
    payload_dict = payload if isinstance(payload, dict) else {}

    confirm_token = (
        payload_dict.get("confirm_token")
        or request_obj.args.get("confirm_token")
        or request_obj.headers.get("X-Confirm-Token")
    )
    if isinstance(confirm_token, str) and confirm_token.strip():
        return True, "confirm_token"

    confirm_value = payload_dict.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.args.get("confirm")
    if confirm_value is None:
        confirm_value = request_obj.headers.get("X-Confirm")

    if is_explicit_true(confirm_value):
        return True, "confirm_flag"

    return False, "missing_confirmation"
