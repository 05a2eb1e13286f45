from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Type

from agency.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    actor_id: str = ""

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        normalized_occurred_at = normalized_occurred_at.astimezone(timezone.utc)

        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at)
        object.__setattr__(self, "actor_id", str(self.actor_id or "").strip() or "system")


@dataclass(frozen=True, kw_only=True)
class ClientRegistered(DomainEvent):
    client_id: str
    admin_id: str | None = None
    client_name: str = ""
    company: str = ""
    email: str = ""


@dataclass(frozen=True, kw_only=True)
class SolicitationCreated(DomainEvent):
    solicitation_id: str
    client_id: str
    admin_id: str | None = None
    client_name: str = ""
    title: str = ""


@dataclass(frozen=True, kw_only=True)
class ProposalSubmitted(DomainEvent):
    solicitation_id: str
    client_id: str
    value: float = 0.0
    title: str = ""


@dataclass(frozen=True, kw_only=True)
class ProposalAccepted(DomainEvent):
    solicitation_id: str
    contract_id: str
    client_id: str
    admin_id: str | None = None
    client_name: str = ""
    title: str = ""


@dataclass(frozen=True, kw_only=True)
class SolicitationRejected(DomainEvent):
    solicitation_id: str
    client_id: str
    admin_id: str | None = None
    rejected_by: str = "admin"
    title: str = ""


@dataclass(frozen=True, kw_only=True)
class ContractSigned(DomainEvent):
    solicitation_id: str
    contract_id: str
    project_id: str
    client_id: str
    admin_id: str | None = None
    client_name: str = ""
    title: str = ""


@dataclass(frozen=True, kw_only=True)
class ProjectCreated(DomainEvent):
    project_id: str
    client_id: str
    name: str = ""


@dataclass(frozen=True, kw_only=True)
class ProjectStatusChanged(DomainEvent):
    project_id: str
    client_id: str
    previous_status: str
    status: str
    name: str = ""


@dataclass(frozen=True, kw_only=True)
class ProjectApproved(DomainEvent):
    project_id: str
    client_id: str
    admin_id: str | None = None
    client_name: str = ""
    name: str = ""


@dataclass(frozen=True, kw_only=True)
class MessagePosted(DomainEvent):
    solicitation_id: str
    client_id: str
    admin_id: str | None = None
    author: str = "Cliente"
    sender_name: str = ""
    preview: str = ""


@dataclass(frozen=True, kw_only=True)
class ServiceFinalized(DomainEvent):
    client_id: str
    service_id: str
    service_name: str = ""
    portfolio_item_id: str | None = None


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("agency")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception(
                    "event_handler_failed",
                    extra={"event_type": type(event).__name__, "event_id": event.event_id},
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
