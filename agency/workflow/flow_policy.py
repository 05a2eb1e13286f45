from __future__ import annotations

from typing import Dict, List


PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "solicitacao", "label": "Solicitacao"},
    {"key": "proposta", "label": "Proposta"},
    {"key": "contrato", "label": "Contrato"},
    {"key": "projeto", "label": "Projeto"},
    {"key": "entrega", "label": "Entrega"},
]


ACTION_LABELS: Dict[str, str] = {
    "start_review": "Iniciar analise",
    "submit_proposal": "Enviar proposta",
    "reply": "Responder",
    "reject_solicitation": "Recusar solicitacao",
    "view_proposal": "Ver proposta",
    "accept_proposal": "Aceitar proposta",
    "sign_contract": "Assinar contrato",
    "view_contract": "Ver contrato",
    "download_contract": "Baixar contrato assinado",
    "view_project": "Acompanhar projeto",
    "start_project": "Iniciar projeto",
    "pause_project": "Pausar projeto",
    "resume_project": "Retomar projeto",
    "send_to_review": "Enviar para revisao",
    "request_approval": "Solicitar aprovacao do cliente",
    "approve_phase": "Aprovar etapa",
    "complete_project": "Concluir projeto",
    "cancel_project": "Cancelar projeto",
    "finalize_service": "Finalizar servico",
    "pause_service": "Pausar servico",
    "resume_service": "Retomar servico",
}


FLOW_POLICY: Dict[str, Dict[str, Dict[str, object]]] = {
    "solicitacao": {
        "nova": {
            "allowed_actions": ["start_review", "submit_proposal", "reply", "reject_solicitation"],
            "primary_action": "submit_proposal",
        },
        "analisando": {
            "allowed_actions": ["submit_proposal", "reply", "reject_solicitation"],
            "primary_action": "submit_proposal",
        },
        "proposta-criada": {
            "allowed_actions": ["view_proposal", "accept_proposal", "reject_solicitation", "reply"],
            "primary_action": "accept_proposal",
        },
        "contrato-pendente": {
            "allowed_actions": ["view_contract", "sign_contract", "reply"],
            "primary_action": "sign_contract",
        },
        "concluida": {
            "allowed_actions": ["view_contract", "download_contract", "view_project", "reply"],
            "primary_action": "view_project",
        },
        "rejeitada": {
            "allowed_actions": ["reply"],
            "primary_action": None,
        },
    },
    "projeto": {
        "planejamento": {
            "allowed_actions": ["start_project", "cancel_project"],
            "primary_action": "start_project",
        },
        "em-andamento": {
            "allowed_actions": ["pause_project", "send_to_review", "request_approval", "cancel_project"],
            "primary_action": "request_approval",
        },
        "pausado": {
            "allowed_actions": ["resume_project", "cancel_project"],
            "primary_action": "resume_project",
        },
        "revisao": {
            "allowed_actions": ["resume_project", "request_approval", "complete_project", "cancel_project"],
            "primary_action": "request_approval",
        },
        "aguardando-aprovacao": {
            "allowed_actions": ["approve_phase", "send_to_review", "resume_project", "cancel_project"],
            "primary_action": "approve_phase",
        },
        "concluido": {
            "allowed_actions": ["view_project"],
            "primary_action": None,
        },
        "cancelado": {
            "allowed_actions": ["view_project"],
            "primary_action": None,
        },
    },
    "servico": {
        "ativo": {
            "allowed_actions": ["finalize_service", "pause_service"],
            "primary_action": "finalize_service",
        },
        "pausado": {
            "allowed_actions": ["resume_service"],
            "primary_action": "resume_service",
        },
        "concluido": {
            "allowed_actions": [],
            "primary_action": None,
        },
    },
}


# Admin-side project transitions. Client approval of `aguardando-aprovacao`
# is the only path into `concluido` that is not listed here.
PROJECT_TRANSITIONS: Dict[str, set[str]] = {
    "planejamento": {"em-andamento", "cancelado"},
    "em-andamento": {"pausado", "revisao", "aguardando-aprovacao", "cancelado"},
    "pausado": {"em-andamento", "cancelado"},
    "revisao": {"em-andamento", "aguardando-aprovacao", "concluido", "cancelado"},
    "aguardando-aprovacao": {"em-andamento", "revisao", "cancelado"},
    "concluido": set(),
    "cancelado": set(),
}


STATUS_SYNONYMS: Dict[str, Dict[str, str]] = {
    "solicitacao": {
        "proposta-enviada": "proposta-criada",
        "aceita": "contrato-pendente",
        "contrato-assinado": "concluida",
        "em-projeto": "concluida",
        "concluída": "concluida",
        "recusada": "rejeitada",
    },
    "projeto": {
        "aprovacao": "aguardando-aprovacao",
        "aguardando_aprovacao": "aguardando-aprovacao",
        "em_andamento": "em-andamento",
        "em-revisao": "revisao",
        "concluído": "concluido",
        "finalizado": "concluido",
    },
    "contrato": {
        "assinado-digitalmente": "assinado",
        "pendente": "aguardando-assinatura",
    },
}


SOLICITATION_TERMINAL_STATUSES = {"concluida", "rejeitada"}
SOLICITATION_CONTRACT_STATUSES = {"contrato-pendente", "concluida"}
SOLICITATION_REJECTABLE_STATUSES = {"nova", "analisando", "proposta-criada"}
PROJECT_TERMINAL_STATUSES = {"concluido", "cancelado"}


FUNNEL_STAGES: List[str] = [
    "prospect",
    "contato",
    "proposta",
    "negociacao",
    "contratado",
    "ativo",
    "inativo",
    "perdido",
]
FUNNEL_TERMINAL_STAGE = "perdido"


def _fallback_policy() -> Dict[str, object]:
    return {"allowed_actions": [], "primary_action": None}


def canonical_status(stage: str, status: str | None) -> str:
    normalized = str(status or "").strip().lower()
    return STATUS_SYNONYMS.get(stage, {}).get(normalized, normalized)


def status_policy(stage: str, status: str | None) -> Dict[str, object]:
    if not status:
        return _fallback_policy()
    return FLOW_POLICY.get(stage, {}).get(canonical_status(stage, status), _fallback_policy())


def allowed_actions(stage: str, status: str | None) -> List[str]:
    actions = status_policy(stage, status).get("allowed_actions") or []
    if not isinstance(actions, list):
        return []
    return [str(action) for action in actions]


def primary_action(stage: str, status: str | None) -> str | None:
    action = status_policy(stage, status).get("primary_action")
    if not action:
        return None
    return str(action)


def action_allowed(stage: str, status: str | None, action: str) -> bool:
    if not action:
        return False
    return action in set(allowed_actions(stage, status))


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(stage: str, status: str | None) -> Dict[str, object]:
    return {
        "stage": stage,
        "status": canonical_status(stage, status) if status else status,
        "allowed_actions": allowed_actions(stage, status),
        "primary_action": primary_action(stage, status),
    }


def project_transition_allowed(current: str | None, target: str | None) -> bool:
    current_status = canonical_status("projeto", current)
    target_status = canonical_status("projeto", target)
    return target_status in PROJECT_TRANSITIONS.get(current_status, set())


def funnel_index(stage: str | None) -> int:
    normalized = str(stage or "").strip().lower()
    try:
        return FUNNEL_STAGES.index(normalized)
    except ValueError:
        return 0


def funnel_transition_allowed(current: str | None, target: str | None) -> bool:
    current_stage = str(current or "prospect").strip().lower()
    target_stage = str(target or "").strip().lower()
    if target_stage not in FUNNEL_STAGES:
        return False
    if current_stage == FUNNEL_TERMINAL_STAGE:
        return target_stage == FUNNEL_TERMINAL_STAGE
    if target_stage == FUNNEL_TERMINAL_STAGE:
        return True
    return funnel_index(target_stage) >= funnel_index(current_stage)


def advance_funnel(current: str | None, target: str) -> str:
    """Return the stage a client ends up in when a workflow step asks for `target`.

    Workflow steps never move a client backwards: a client already further
    down the funnel keeps its stage, and a lost client stays lost.
    """
    current_stage = str(current or "prospect").strip().lower()
    if current_stage not in FUNNEL_STAGES:
        current_stage = "prospect"
    if funnel_transition_allowed(current_stage, target):
        return target
    return current_stage


def _stage_index(stage: str) -> int:
    for idx, item in enumerate(PROCESS_STAGES):
        if item["key"] == stage:
            return idx
    return 0


def build_process_steps(current_stage: str) -> List[Dict[str, object]]:
    current_idx = _stage_index(current_stage)
    steps: List[Dict[str, object]] = []
    for idx, stage in enumerate(PROCESS_STAGES):
        state = "future"
        if idx < current_idx:
            state = "completed"
        elif idx == current_idx:
            state = "current"
        steps.append(
            {
                "key": stage["key"],
                "label": stage["label"],
                "state": state,
            }
        )
    return steps


def stage_for_solicitation_status(status: str | None, *, has_project: bool = False) -> str:
    mapping = {
        "nova": "solicitacao",
        "analisando": "solicitacao",
        "proposta-criada": "proposta",
        "contrato-pendente": "contrato",
        "concluida": "contrato",
        "rejeitada": "solicitacao",
    }
    stage = mapping.get(canonical_status("solicitacao", status), "solicitacao")
    if has_project and stage == "contrato":
        return "projeto"
    return stage


def stage_for_project_status(status: str | None) -> str:
    if canonical_status("projeto", status) == "concluido":
        return "entrega"
    return "projeto"


def frontend_bundle() -> Dict[str, object]:
    return {
        "stages": PROCESS_STAGES,
        "policy": FLOW_POLICY,
        "action_labels": ACTION_LABELS,
        "status_synonyms": STATUS_SYNONYMS,
        "funnel_stages": FUNNEL_STAGES,
    }
