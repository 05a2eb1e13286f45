from __future__ import annotations

import logging
from typing import List

from agency.core.event_bus import (
    ClientRegistered,
    ContractSigned,
    EventBus,
    MessagePosted,
    ProjectApproved,
    ProjectCreated,
    ProjectStatusChanged,
    ProposalAccepted,
    ProposalSubmitted,
    ServiceFinalized,
    SolicitationCreated,
    SolicitationRejected,
)
from agency.documents.contract_pdf import format_brl
from agency.domain.contracts import Actor, ServiceOutput
from agency.domain.identifiers import new_notification_id, now_iso
from agency.domain.models import Notification
from agency.errors import PermissionError as AppPermissionError
from agency.errors import not_found
from agency.infrastructure.repositories import NotificationRepository
from agency.observability import observe_notification
from agency.ui_strings import notification_text, status_label, success_message


LOGGER = logging.getLogger("agency")

DEFAULT_ADMIN_RECIPIENT = "admin"


def _admin_recipient(admin_id: str | None) -> str:
    return str(admin_id or "").strip() or DEFAULT_ADMIN_RECIPIENT


class NotificationService:
    """Turns domain events into notification documents for admins and clients.

    Dispatch is fire-and-forget: a failed write is logged and counted, and
    never reaches the workflow step that emitted the event.
    """

    def __init__(self, repository: NotificationRepository) -> None:
        self.repository = repository

    def register(self, event_bus: EventBus) -> None:
        event_bus.subscribe(ClientRegistered, self.on_client_registered)
        event_bus.subscribe(SolicitationCreated, self.on_solicitation_created)
        event_bus.subscribe(ProposalSubmitted, self.on_proposal_submitted)
        event_bus.subscribe(ProposalAccepted, self.on_proposal_accepted)
        event_bus.subscribe(SolicitationRejected, self.on_solicitation_rejected)
        event_bus.subscribe(ContractSigned, self.on_contract_signed)
        event_bus.subscribe(ProjectCreated, self.on_project_created)
        event_bus.subscribe(ProjectStatusChanged, self.on_project_status_changed)
        event_bus.subscribe(ProjectApproved, self.on_project_approved)
        event_bus.subscribe(MessagePosted, self.on_message_posted)
        event_bus.subscribe(ServiceFinalized, self.on_service_finalized)

    def notify(
        self,
        kind: str,
        *,
        recipient_type: str,
        recipient_id: str,
        reference_id: str | None = None,
        reference_type: str | None = None,
        sender_name: str = "",
        **values: object,
    ) -> Notification | None:
        try:
            text = notification_text(kind, **values)
            notification = Notification(
                id=new_notification_id(),
                tipo=kind,
                titulo=text["titulo"],
                mensagem=text["mensagem"],
                destinatario_tipo=recipient_type,
                destinatario_id=recipient_id,
                remetente_nome=sender_name,
                referencia_id=reference_id,
                referencia_tipo=reference_type,
                lida=False,
                criada_em=now_iso(),
                link=text["link"],
                prioridade=text["prioridade"],
            )
            self.repository.persist(notification)
        except Exception:  # noqa: BLE001
            observe_notification(kind, failed=True)
            LOGGER.exception(
                "notification_dispatch_failed",
                extra={"kind": kind, "recipient_type": recipient_type, "recipient_id": recipient_id},
            )
            return None
        observe_notification(kind)
        return notification

    def on_client_registered(self, event: ClientRegistered) -> None:
        self.notify(
            "novo_cliente",
            recipient_type="admin",
            recipient_id=_admin_recipient(event.admin_id),
            reference_id=event.client_id,
            reference_type="cliente",
            sender_name=event.client_name,
            cliente_nome=event.client_name,
            cliente_empresa=event.company,
            cliente_email=event.email,
        )

    def on_solicitation_created(self, event: SolicitationCreated) -> None:
        self.notify(
            "nova_solicitacao",
            recipient_type="admin",
            recipient_id=_admin_recipient(event.admin_id),
            reference_id=event.solicitation_id,
            reference_type="solicitacao",
            sender_name=event.client_name,
            cliente_nome=event.client_name,
            servico_titulo=event.title,
        )

    def on_proposal_submitted(self, event: ProposalSubmitted) -> None:
        self.notify(
            "proposta_enviada",
            recipient_type="cliente",
            recipient_id=event.client_id,
            reference_id=event.solicitation_id,
            reference_type="proposta",
            sender_name="Admin",
            servico_titulo=event.title,
            valor=format_brl(event.value).replace("R$ ", ""),
        )

    def on_proposal_accepted(self, event: ProposalAccepted) -> None:
        self.notify(
            "proposta_aceita",
            recipient_type="admin",
            recipient_id=_admin_recipient(event.admin_id),
            reference_id=event.solicitation_id,
            reference_type="contrato",
            sender_name=event.client_name,
            cliente_nome=event.client_name,
            servico_titulo=event.title,
        )

    def on_solicitation_rejected(self, event: SolicitationRejected) -> None:
        if event.rejected_by == "cliente":
            recipient_type, recipient_id = "admin", _admin_recipient(event.admin_id)
        else:
            recipient_type, recipient_id = "cliente", event.client_id
        self.notify(
            "proposta_recusada",
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            reference_id=event.solicitation_id,
            reference_type="solicitacao",
            servico_titulo=event.title,
        )

    def on_contract_signed(self, event: ContractSigned) -> None:
        self.notify(
            "contrato_assinado",
            recipient_type="admin",
            recipient_id=_admin_recipient(event.admin_id),
            reference_id=event.contract_id,
            reference_type="contrato",
            sender_name=event.client_name,
            cliente_nome=event.client_name,
            servico_titulo=event.title,
        )

    def on_project_created(self, event: ProjectCreated) -> None:
        self.notify(
            "projeto_criado",
            recipient_type="cliente",
            recipient_id=event.client_id,
            reference_id=event.project_id,
            reference_type="projeto",
            projeto_titulo=event.name,
        )

    def on_project_status_changed(self, event: ProjectStatusChanged) -> None:
        kind = "aguardando_aprovacao" if event.status == "aguardando-aprovacao" else "projeto_atualizado"
        self.notify(
            kind,
            recipient_type="cliente",
            recipient_id=event.client_id,
            reference_id=event.project_id,
            reference_type="projeto",
            projeto_titulo=event.name,
            status_label=status_label("projeto", event.status),
        )

    def on_project_approved(self, event: ProjectApproved) -> None:
        self.notify(
            "projeto_aprovado",
            recipient_type="admin",
            recipient_id=_admin_recipient(event.admin_id),
            reference_id=event.project_id,
            reference_type="projeto",
            sender_name=event.client_name,
            cliente_nome=event.client_name,
            projeto_titulo=event.name,
        )

    def on_message_posted(self, event: MessagePosted) -> None:
        if event.author == "Cliente":
            recipient_type, recipient_id = "admin", _admin_recipient(event.admin_id)
        else:
            recipient_type, recipient_id = "cliente", event.client_id
        self.notify(
            "nova_mensagem",
            recipient_type=recipient_type,
            recipient_id=recipient_id,
            reference_id=event.solicitation_id,
            reference_type="solicitacao",
            sender_name=event.sender_name,
            remetente_nome=event.sender_name,
            preview=event.preview,
        )

    def on_service_finalized(self, event: ServiceFinalized) -> None:
        self.notify(
            "servico_concluido",
            recipient_type="cliente",
            recipient_id=event.client_id,
            reference_id=event.service_id,
            reference_type="servico",
            servico_titulo=event.service_name,
        )

    @staticmethod
    def recipient_for(actor: Actor) -> tuple[str, str]:
        if actor.is_client:
            return "cliente", actor.client_id or actor.user_id
        return "admin", actor.user_id

    def list_for(self, actor: Actor, *, unread_only: bool = False) -> ServiceOutput:
        recipient_type, recipient_id = self.recipient_for(actor)
        notifications: List[Notification] = self.repository.for_recipient(
            recipient_type, recipient_id, unread_only=unread_only
        )
        if recipient_type == "admin" and recipient_id != DEFAULT_ADMIN_RECIPIENT:
            notifications += self.repository.for_recipient("admin", DEFAULT_ADMIN_RECIPIENT, unread_only=unread_only)
        notifications.sort(key=lambda item: item.criada_em or "", reverse=True)
        return ServiceOutput(
            {
                "items": [item.to_document() for item in notifications],
                "unread": sum(1 for item in notifications if not item.lida),
            }
        )

    def mark_read(self, actor: Actor, notification_id: str) -> ServiceOutput:
        notification = self.repository.get(notification_id)
        if notification is None:
            raise not_found("notification", notification_id)
        recipient_type, recipient_id = self.recipient_for(actor)
        shared_admin = recipient_type == "admin" and notification.destinatario_id == DEFAULT_ADMIN_RECIPIENT
        if notification.destinatario_tipo != recipient_type or (
            notification.destinatario_id != recipient_id and not shared_admin
        ):
            raise AppPermissionError()
        self.repository.mark_read(notification_id)
        notification.lida = True
        return ServiceOutput({"notification": notification.to_document()})

    def mark_all_read(self, actor: Actor) -> ServiceOutput:
        recipient_type, recipient_id = self.recipient_for(actor)
        updated = self.repository.mark_all_read(recipient_type, recipient_id)
        return ServiceOutput({"updated": updated, "message": success_message("notifications_read")})
