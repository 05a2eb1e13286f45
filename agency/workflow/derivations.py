"""Proposals and contracts are not stored on their own: they are rebuilt from
the solicitation documents that embed them. Remote subscription replays and
local cache merges can both hand over the same solicitation twice, so every
derived list goes through `dedupe_by_key` before it is exposed.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, TypeVar

from agency.domain.models import Contract, Proposal, Solicitation


T = TypeVar("T")

_INACTIVE_SOLICITATION_STATUSES = {"contrato-pendente", "contrato-assinado", "concluida", "rejeitada"}
_SIGNED_CONTRACT_STATUSES = {"assinado", "assinado-digitalmente"}


def dedupe_by_key(items: Iterable[T], key_fn: Callable[[T], Any]) -> List[T]:
    seen = set()
    unique: List[T] = []
    for item in items:
        key = key_fn(item)
        if key in (None, ""):
            unique.append(item)
            continue
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def has_contract(solicitation: Solicitation) -> bool:
    return bool(solicitation.contrato_id or solicitation.contrato is not None)


def is_proposal_active(solicitation: Solicitation) -> bool:
    if solicitation.proposta is None:
        return False
    if solicitation.status in _INACTIVE_SOLICITATION_STATUSES:
        return False
    if (solicitation.contrato_status or "") in _SIGNED_CONTRACT_STATUSES:
        return False
    return solicitation.proposta_status != "aceita"


def _proposal_status(solicitation: Solicitation) -> str:
    if solicitation.proposta_status in {"aceita", "recusada"}:
        return solicitation.proposta_status
    if solicitation.status == "rejeitada":
        return "recusada"
    return "pendente"


def contract_services(solicitation: Solicitation) -> List[Dict[str, Any]]:
    """Line items a signed contract turns into contracted services."""
    proposal = solicitation.proposta
    if proposal is not None and proposal.servicos:
        return [dict(item) for item in proposal.servicos]
    value = proposal.valor if proposal is not None else solicitation.valor
    return [
        {
            "id": solicitation.servico_id,
            "nome": solicitation.titulo,
            "categoria": solicitation.categoria,
            "valor": value,
            "recorrente": solicitation.recorrente,
        }
    ]


def proposal_from_solicitation(solicitation: Solicitation) -> Proposal | None:
    proposal = solicitation.proposta
    if proposal is None:
        return None
    return Proposal(
        id=solicitation.id,
        solicitacao_id=solicitation.id,
        cliente_id=solicitation.cliente_id,
        titulo=solicitation.titulo,
        categoria=solicitation.categoria,
        valor=proposal.valor,
        descricao=proposal.descricao,
        prazo=proposal.prazo,
        validade=proposal.validade,
        data_criacao=proposal.data_criacao,
        servicos=contract_services(solicitation),
        status=_proposal_status(solicitation),
        proposta_status=solicitation.proposta_status,
        contrato_status=solicitation.contrato_status,
    )


def contract_from_solicitation(solicitation: Solicitation) -> Contract | None:
    if not has_contract(solicitation):
        return None
    embedded = solicitation.contrato
    contract_id = solicitation.contrato_id or (embedded.id if embedded else "")
    status = solicitation.contrato_status or (embedded.status if embedded else None) or "aguardando-assinatura"
    if status in _SIGNED_CONTRACT_STATUSES:
        status = "assinado"
    if embedded is not None:
        value = embedded.valor
    elif solicitation.proposta is not None:
        value = solicitation.proposta.valor
    else:
        value = solicitation.valor
    return Contract(
        id=contract_id,
        proposta_id=solicitation.id,
        solicitacao_id=solicitation.id,
        cliente_id=solicitation.cliente_id,
        titulo=solicitation.titulo,
        valor=value,
        servicos=contract_services(solicitation),
        status=status,
        data_envio=embedded.data_envio if embedded else solicitation.data_aceite_proposta,
        data_assinatura=solicitation.data_assinatura or (embedded.data_assinatura if embedded else None),
    )


def proposals_from_solicitations(solicitations: Iterable[Solicitation]) -> List[Proposal]:
    derived = [proposal_from_solicitation(item) for item in solicitations]
    return dedupe_by_key([item for item in derived if item is not None], lambda proposal: proposal.id)


def contracts_from_solicitations(solicitations: Iterable[Solicitation]) -> List[Contract]:
    derived = [contract_from_solicitation(item) for item in solicitations]
    return dedupe_by_key([item for item in derived if item is not None], lambda contract: contract.solicitacao_id)
