from __future__ import annotations

from typing import Dict, List

from agency.workflow.flow_policy import canonical_status, frontend_bundle as flow_frontend_bundle


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Plataforma Agencia",
    "client": "Cliente",
    "solicitation": "Solicitacao",
    "proposal": "Proposta",
    "contract": "Contrato",
    "project": "Projeto",
    "contracted_service": "Servico contratado",
    "portfolio": "Portfolio",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "solicitacao": [
        {"key": "nova", "label": "Nova", "description": "Solicitacao recebida, aguardando analise."},
        {"key": "analisando", "label": "Em analise", "description": "Equipe avaliando o pedido do cliente."},
        {"key": "proposta-criada", "label": "Proposta enviada", "description": "Proposta comercial aguardando decisao do cliente."},
        {"key": "contrato-pendente", "label": "Contrato pendente", "description": "Proposta aceita, contrato aguardando assinatura."},
        {"key": "concluida", "label": "Concluida", "description": "Contrato assinado e projeto criado."},
        {"key": "rejeitada", "label": "Recusada", "description": "Solicitacao encerrada sem contrato."},
    ],
    "contrato": [
        {"key": "aguardando-assinatura", "label": "Aguardando assinatura", "description": "Contrato gerado, falta a assinatura do cliente."},
        {"key": "assinado", "label": "Assinado", "description": "Contrato assinado digitalmente."},
    ],
    "projeto": [
        {"key": "planejamento", "label": "Planejamento", "description": "Escopo e cronograma em definicao."},
        {"key": "em-andamento", "label": "Em andamento", "description": "Equipe executando o projeto."},
        {"key": "pausado", "label": "Pausado", "description": "Execucao temporariamente suspensa."},
        {"key": "revisao", "label": "Em revisao", "description": "Entrega em revisao interna."},
        {"key": "aguardando-aprovacao", "label": "Aguardando aprovacao", "description": "Etapa pronta para aprovacao do cliente."},
        {"key": "concluido", "label": "Concluido", "description": "Projeto aprovado e encerrado."},
        {"key": "cancelado", "label": "Cancelado", "description": "Projeto encerrado sem entrega."},
    ],
    "servico": [
        {"key": "ativo", "label": "Ativo", "description": "Servico contratado em execucao."},
        {"key": "pausado", "label": "Pausado", "description": "Servico suspenso temporariamente."},
        {"key": "concluido", "label": "Concluido", "description": "Servico entregue ao cliente."},
    ],
    "cliente": [
        {"key": "prospect", "label": "Prospect", "description": "Cliente cadastrado sem contrato."},
        {"key": "ativo", "label": "Ativo", "description": "Cliente com contrato assinado."},
        {"key": "inativo", "label": "Inativo", "description": "Cliente desativado ou perdido."},
    ],
    "funil": [
        {"key": "prospect", "label": "Prospect", "description": "Contato inicial ainda nao qualificado."},
        {"key": "contato", "label": "Contato", "description": "Cliente ja fez um pedido ou conversa."},
        {"key": "proposta", "label": "Proposta", "description": "Proposta comercial enviada."},
        {"key": "negociacao", "label": "Negociacao", "description": "Proposta aceita, contrato em assinatura."},
        {"key": "contratado", "label": "Contratado", "description": "Contrato assinado."},
        {"key": "ativo", "label": "Ativo", "description": "Cliente com servicos em andamento."},
        {"key": "inativo", "label": "Inativo", "description": "Cliente sem servicos ativos."},
        {"key": "perdido", "label": "Perdido", "description": "Oportunidade encerrada sem contrato."},
    ],
}


NOTIFICATION_TEMPLATES: Dict[str, Dict[str, str]] = {
    "novo_cliente": {
        "titulo": "Novo cliente cadastrado",
        "mensagem": "{cliente_nome} ({cliente_empresa}) acabou de se cadastrar. Email: {cliente_email}",
        "link": "/crm",
        "prioridade": "alta",
    },
    "nova_solicitacao": {
        "titulo": "Nova solicitacao de servico",
        "mensagem": "{cliente_nome} solicitou: {servico_titulo}",
        "link": "/solicitacoes",
        "prioridade": "alta",
    },
    "proposta_enviada": {
        "titulo": "Nova proposta disponivel",
        "mensagem": "Recebemos sua solicitacao e enviamos uma proposta de R$ {valor}",
        "link": "/portal",
        "prioridade": "alta",
    },
    "proposta_aceita": {
        "titulo": "Proposta aceita",
        "mensagem": "{cliente_nome} aceitou a proposta para: {servico_titulo}",
        "link": "/solicitacoes",
        "prioridade": "alta",
    },
    "proposta_recusada": {
        "titulo": "Proposta recusada",
        "mensagem": "A solicitacao \"{servico_titulo}\" foi recusada.",
        "link": "/solicitacoes",
        "prioridade": "normal",
    },
    "contrato_assinado": {
        "titulo": "Contrato assinado",
        "mensagem": "{cliente_nome} assinou o contrato para: {servico_titulo}",
        "link": "/projetos",
        "prioridade": "alta",
    },
    "projeto_criado": {
        "titulo": "Novo projeto iniciado",
        "mensagem": "Seu projeto \"{projeto_titulo}\" foi criado e ja esta em andamento",
        "link": "/portal",
        "prioridade": "alta",
    },
    "projeto_atualizado": {
        "titulo": "Projeto atualizado",
        "mensagem": "O projeto \"{projeto_titulo}\" foi atualizado para: {status_label}",
        "link": "/portal",
        "prioridade": "normal",
    },
    "aguardando_aprovacao": {
        "titulo": "Aguardando sua aprovacao",
        "mensagem": "O projeto \"{projeto_titulo}\" esta pronto para sua aprovacao.",
        "link": "/portal",
        "prioridade": "alta",
    },
    "projeto_aprovado": {
        "titulo": "Projeto aprovado",
        "mensagem": "{cliente_nome} aprovou o projeto: {projeto_titulo}",
        "link": "/projetos",
        "prioridade": "alta",
    },
    "nova_mensagem": {
        "titulo": "Nova mensagem",
        "mensagem": "{remetente_nome}: {preview}",
        "link": "/portal",
        "prioridade": "normal",
    },
    "servico_concluido": {
        "titulo": "Servico concluido",
        "mensagem": "O servico \"{servico_titulo}\" foi finalizado.",
        "link": "/portal",
        "prioridade": "normal",
    },
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "client_saved": "Cliente salvo com sucesso.",
        "client_deleted": "Cliente removido.",
        "client_deactivated": "Cliente marcado como inativo.",
        "funnel_updated": "Etapa do funil atualizada.",
        "solicitation_created": "Solicitacao enviada. Nossa equipe vai analisar em breve.",
        "review_started": "Solicitacao em analise.",
        "proposal_sent": "Proposta enviada ao cliente.",
        "proposal_accepted": "Proposta aceita. O contrato esta pronto para assinatura.",
        "contract_signed": "Contrato assinado com sucesso. Seu projeto foi criado.",
        "solicitation_rejected": "Solicitacao recusada.",
        "message_sent": "Mensagem enviada.",
        "project_created": "Projeto criado.",
        "project_updated": "Projeto atualizado.",
        "project_approved": "Projeto aprovado. Obrigado pelo retorno!",
        "service_finalized": "Servico finalizado.",
        "service_paused": "Servico pausado.",
        "service_resumed": "Servico retomado.",
        "catalog_saved": "Servico do catalogo salvo.",
        "notifications_read": "Notificacoes marcadas como lidas.",
    },
    "warning": {
        "saved_offline": "Sem conexao com o servidor. A alteracao foi salva localmente e sera sincronizada.",
        "partial_sync": "Parte das atualizacoes nao foi sincronizada. Tente novamente em instantes.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "action_not_allowed_for_status": "Esta acao nao e permitida para o status atual.",
        "auth_required": "Autenticacao necessaria.",
        "confirmation_required": "Confirme explicitamente esta acao critica para continuar.",
        "data_unavailable": "Dados indisponiveis no momento. Verifique sua conexao e tente novamente.",
        "entity_not_found": "Registro nao encontrado.",
        "permission_denied": "Voce nao possui permissao para executar esta acao.",
        "status_invalid": "Status informado e invalido para esta etapa.",
        "transition_already_done": "Esta acao ja foi realizada.",
        "transition_in_progress": "Esta operacao ja esta em andamento. Aguarde a conclusao.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "no_changes": "Nenhuma alteracao informada.",
        "catalog_service_not_found": "Servico do catalogo nao encontrado.",
        "client_not_found": "Cliente nao encontrado.",
        "contract_not_found": "Contrato nao encontrado.",
        "notification_not_found": "Notificacao nao encontrada.",
        "project_not_found": "Projeto nao encontrado.",
        "proposal_not_found": "Proposta nao encontrada.",
        "service_not_found": "Servico contratado nao encontrado.",
        "signed_contract_not_found": "Contrato assinado nao encontrado para esta solicitacao.",
        "solicitation_not_found": "Solicitacao nao encontrada.",
        "name_required": "Informe o nome.",
        "email_required": "Informe o email.",
        "email_invalid": "Email informado e invalido.",
        "email_already_registered": "Email ja cadastrado para este administrador.",
        "rating_invalid": "Avaliacao deve estar entre 0 e 5.",
        "funnel_stage_invalid": "Etapa do funil invalida.",
        "funnel_regression_not_allowed": "A etapa do funil nao pode voltar para uma etapa anterior.",
        "titulo_required": "Informe o titulo da solicitacao.",
        "categoria_required": "Informe a categoria do servico.",
        "valor_invalid": "Valor informado e invalido.",
        "message_required": "Digite uma mensagem antes de enviar.",
        "proposal_value_invalid": "O valor da proposta deve ser maior que zero.",
        "proposal_description_required": "Descreva o escopo da proposta.",
        "proposal_requires_open_solicitation": "A proposta so pode ser enviada para solicitacoes novas ou em analise.",
        "review_requires_new_solicitation": "Somente solicitacoes novas podem entrar em analise.",
        "proposal_not_active": "Esta proposta nao esta mais disponivel para aceite.",
        "proposal_already_accepted": "Esta proposta ja foi aceita.",
        "contract_already_exists": "Esta proposta ja gerou um contrato. Verifique a aba de contratos.",
        "contract_requires_pending_signature": "O contrato nao esta aguardando assinatura.",
        "contract_already_signed": "Este contrato ja foi assinado.",
        "signature_required": "Por favor, assine o contrato antes de confirmar.",
        "signature_invalid": "Nao foi possivel ler a assinatura enviada.",
        "terms_not_accepted": "Por favor, aceite os termos e condicoes do contrato.",
        "solicitation_not_rejectable": "Esta solicitacao nao pode mais ser recusada.",
        "project_already_exists": "Esta solicitacao ja possui um projeto.",
        "project_not_awaiting_approval": "O projeto nao esta aguardando aprovacao.",
        "project_not_owned": "Este projeto pertence a outro cliente.",
        "project_transition_invalid": "Mudanca de status nao permitida para este projeto.",
        "progress_invalid": "O progresso deve estar entre 0 e 100.",
        "project_name_required": "Informe o nome do projeto.",
        "service_not_active": "Somente servicos ativos podem ser finalizados ou pausados.",
        "service_not_paused": "Somente servicos pausados podem ser retomados.",
        "deliverable_title_required": "Titulo e descricao sao obrigatorios: informe o titulo da entrega.",
        "deliverable_description_required": "Titulo e descricao sao obrigatorios: informe a descricao da entrega.",
    },
    "confirm": {
        "delete_client": "Confirma a exclusao definitiva do cliente?",
        "cancel_project": "Confirma o cancelamento do projeto?",
    },
}


UI_TEXTS: Dict[str, str] = {
    "impact.delete_client": "Remove o cliente, seus servicos e documentos. Projetos permanecem no historico.",
    "impact.cancel_project": "Encerra o projeto sem entrega. O cliente sera notificado.",
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_items_for_group(group: str) -> List[Dict[str, str]]:
    return list(STATUS_GROUPS.get(group, []))


def build_status_labels() -> Dict[str, Dict[str, str]]:
    labels: Dict[str, Dict[str, str]] = {}
    for group, items in STATUS_GROUPS.items():
        labels[group] = {item["key"]: item["label"] for item in items}
    return labels


STATUS_LABELS = build_status_labels()


def status_label(group: str, status: str | None) -> str:
    key = canonical_status(group, status)
    return STATUS_LABELS.get(group, {}).get(key, key)


def get_ui_text(key: str, default: str | None = None) -> str:
    if key in UI_TEXTS:
        return UI_TEXTS[key]
    if default is not None:
        return default
    return key


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def warning_message(key: str, default: str | None = None) -> str:
    return get_message("warning", key, default)


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def notification_text(kind: str, **values: object) -> Dict[str, str]:
    template = NOTIFICATION_TEMPLATES.get(kind) or {
        "titulo": kind,
        "mensagem": "",
        "link": "/",
        "prioridade": "normal",
    }
    safe_values = _DefaultDict({key: "" if value is None else value for key, value in values.items()})
    return {
        "titulo": template["titulo"],
        "mensagem": template["mensagem"].format_map(safe_values),
        "link": template["link"],
        "prioridade": template["prioridade"],
    }


class _DefaultDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "status_groups": STATUS_GROUPS,
        "status_labels": STATUS_LABELS,
        "messages": MESSAGES,
        "flow": flow_frontend_bundle(),
    }
