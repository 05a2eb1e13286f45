from __future__ import annotations

import functools
import logging
from typing import Any, Callable, List

from agency.domain.contracts import Actor, ServiceOutput
from agency.errors import AppError
from agency.errors import PermissionError as AppPermissionError
from agency.infrastructure.repositories import PersistResult
from agency.observability import observe_workflow_transition
from agency.ui_strings import warning_message


LOGGER = logging.getLogger("agency")


def observed_transition(transition: str) -> Callable:
    """Count every call of a workflow step as ok, degraded or rejected."""

    def decorator(func: Callable[..., ServiceOutput]) -> Callable[..., ServiceOutput]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> ServiceOutput:
            try:
                output = func(*args, **kwargs)
            except AppError as exc:
                observe_workflow_transition(transition, "rejected")
                LOGGER.info("workflow_transition_rejected", extra={"transition": transition, "error_code": exc.code})
                raise
            result = "degraded" if output.payload.get("degraded") else "ok"
            observe_workflow_transition(transition, result)
            return output

        return wrapper

    return decorator


class StepOutcome:
    """Collects degraded writes and failed secondary steps of one workflow call."""

    def __init__(self, transition: str) -> None:
        self.transition = transition
        self.warnings: List[str] = []
        self.degraded = False

    def record(self, result: PersistResult | None) -> None:
        if result is not None and result.degraded:
            self.degraded = True
            if result.warning and result.warning not in self.warnings:
                self.warnings.append(result.warning)

    def secondary(self, step: str, call: Callable[[], Any]) -> Any:
        """Run a step after the commit point; a failure is logged and reported, never raised."""
        try:
            result = call()
        except AppError as exc:
            LOGGER.warning(
                "workflow_step_failed",
                extra={"transition": self.transition, "step": step, "error_code": exc.code},
            )
            self._partial()
            return None
        if isinstance(result, PersistResult):
            self.record(result)
        return result

    def _partial(self) -> None:
        message = warning_message("partial_sync")
        if message not in self.warnings:
            self.warnings.append(message)

    def payload(self, **values: Any) -> dict:
        values["warnings"] = list(self.warnings)
        values["degraded"] = self.degraded
        return values


def actor_author(actor: Actor) -> str:
    return "Cliente" if actor.is_client else "Admin"


def actor_name(actor: Actor) -> str:
    return actor.display_name or actor.email or actor.user_id


def require_staff(actor: Actor) -> None:
    if not actor.is_staff:
        raise AppPermissionError(details=f"{actor.role} cannot perform staff actions")


def require_client(actor: Actor) -> None:
    if not actor.is_client:
        raise AppPermissionError(details=f"{actor.role} cannot perform client actions")
