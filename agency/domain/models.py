"""Entity schemas for the documents kept in the remote store and local cache.

Documents are loosely structured JSON maps written by several surfaces over
time. Every collection is narrowed into one of the dataclasses below on read
(`from_document`) so the workflow never handles raw maps, and widened back on
write (`to_document`). Keys the schema does not know about are kept in
`extras` and written back untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List

from agency.domain.identifiers import now_iso
from agency.workflow.flow_policy import FUNNEL_STAGES, canonical_status


_CAMEL_BOUNDARY = re.compile(r"_([a-z0-9])")


def document_key(attribute: str) -> str:
    return _CAMEL_BOUNDARY.sub(lambda match: match.group(1).upper(), attribute)


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value).strip()


def _opt_text(value: Any) -> str | None:
    text = _text(value)
    return text or None


def _number(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace("R$", "").replace(" ", "").replace(",", "."))
    except ValueError:
        return default


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "sim", "on"}
    return bool(value)


def _bounded_int(value: Any, lower: int, upper: int, default: int = 0) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        number = default
    return max(lower, min(number, upper))


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [dict(item) for item in value if isinstance(item, dict)]


def _text_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _extras(cls, document: Dict[str, Any]) -> Dict[str, Any]:
    known = {document_key(item.name) for item in fields(cls)}
    return {key: value for key, value in document.items() if key not in known}


def _to_plain(value: Any) -> Any:
    if hasattr(value, "to_document"):
        return value.to_document()
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_plain(item) for key, item in value.items()}
    return value


class DocumentModel:
    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = dict(getattr(self, "extras", None) or {})
        for item in fields(self):
            if item.name == "extras":
                continue
            value = getattr(self, item.name)
            if value is None and item.name not in ("proposta", "contrato"):
                continue
            document[document_key(item.name)] = _to_plain(value)
        return {key: value for key, value in document.items() if value is not None}


@dataclass
class ContractedService(DocumentModel):
    id: str
    nome: str
    categoria: str = ""
    valor: float = 0.0
    recorrente: bool = False
    data_contratacao: str | None = None
    status: str = "ativo"
    contrato_id: str | None = None
    data_conclusao: str | None = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ContractedService":
        status = _text(document.get("status"), "ativo").lower()
        if status not in {"ativo", "pausado", "concluido"}:
            status = "concluido" if status in {"concluído", "finalizado"} else "ativo"
        return cls(
            id=_text(document.get("id")),
            nome=_text(document.get("nome") or document.get("titulo")),
            categoria=_text(document.get("categoria")),
            valor=_number(document.get("valor")),
            recorrente=_flag(document.get("recorrente")),
            data_contratacao=_opt_text(document.get("dataContratacao")),
            status=status,
            contrato_id=_opt_text(document.get("contratoId")),
            data_conclusao=_opt_text(document.get("dataConclusao")),
        )


@dataclass
class ClientDocument(DocumentModel):
    id: str
    nome: str
    tipo: str = "outro"
    url: str = ""
    data_upload: str | None = None
    tamanho: int = 0
    formato: str = "pdf"

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ClientDocument":
        return cls(
            id=_text(document.get("id")),
            nome=_text(document.get("nome")),
            tipo=_text(document.get("tipo"), "outro"),
            url=_text(document.get("url")),
            data_upload=_opt_text(document.get("dataUpload")),
            tamanho=_bounded_int(document.get("tamanho"), 0, 2**31),
            formato=_text(document.get("formato"), "pdf"),
        )


@dataclass
class Client(DocumentModel):
    id: str
    nome: str
    email: str
    telefone: str = ""
    empresa: str = ""
    cargo: str = ""
    endereco: str = ""
    cidade: str = ""
    estado: str = ""
    cnpj: str = ""
    status: str = "prospect"
    etapa_funil: str = "prospect"
    rating: int = 0
    valor_total: float = 0.0
    contrato_assinado: bool = False
    contrato_id: str | None = None
    data_assinatura: str | None = None
    assinatura_base64: str | None = None
    admin_id: str | None = None
    admin_nome: str | None = None
    servicos_contratados: List[ContractedService] = field(default_factory=list)
    documentos: List[ClientDocument] = field(default_factory=list)
    historico_interacoes: List[Dict[str, Any]] = field(default_factory=list)
    data_cadastro: str | None = None
    data_mudanca_etapa: str | None = None
    projetos: int = 0
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Client":
        status = _text(document.get("status"), "prospect").lower()
        if status not in {"prospect", "ativo", "inativo"}:
            status = "prospect"
        stage = _text(document.get("etapaFunil"), "prospect").lower()
        if stage not in FUNNEL_STAGES:
            stage = "prospect"
        return cls(
            id=_text(document.get("id")),
            nome=_text(document.get("nome")),
            email=_text(document.get("email")).lower(),
            telefone=_text(document.get("telefone")),
            empresa=_text(document.get("empresa")),
            cargo=_text(document.get("cargo")),
            endereco=_text(document.get("endereco")),
            cidade=_text(document.get("cidade")),
            estado=_text(document.get("estado")),
            cnpj=_text(document.get("cnpj")),
            status=status,
            etapa_funil=stage,
            rating=_bounded_int(document.get("rating"), 0, 5),
            valor_total=_number(document.get("valorTotal")),
            contrato_assinado=_flag(document.get("contratoAssinado")),
            contrato_id=_opt_text(document.get("contratoId")),
            data_assinatura=_opt_text(document.get("dataAssinatura")),
            assinatura_base64=_opt_text(document.get("assinaturaBase64")),
            admin_id=_opt_text(document.get("adminId")),
            admin_nome=_opt_text(document.get("adminNome")),
            servicos_contratados=[
                ContractedService.from_document(item) for item in _dict_list(document.get("servicosContratados"))
            ],
            documentos=[ClientDocument.from_document(item) for item in _dict_list(document.get("documentos"))],
            historico_interacoes=_dict_list(document.get("historicoInteracoes")),
            data_cadastro=_opt_text(document.get("dataCadastro")),
            data_mudanca_etapa=_opt_text(document.get("dataMudancaEtapa")),
            projetos=_bounded_int(document.get("projetos"), 0, 10**6),
            extras=_extras(cls, document),
        )

    def find_service(self, service_id: str) -> ContractedService | None:
        return next((item for item in self.servicos_contratados if item.id == service_id), None)

    def record_interaction(self, tipo: str, descricao: str, *, autor: str = "Sistema", data: str | None = None) -> None:
        self.historico_interacoes.append({"tipo": tipo, "descricao": descricao, "data": data or now_iso(), "autor": autor})


@dataclass
class Reply(DocumentModel):
    texto: str
    autor: str = "Cliente"
    data_criacao: str | None = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Reply":
        author = _text(document.get("autor"), "Cliente")
        if author not in {"Cliente", "Admin", "Sistema"}:
            author = "Cliente"
        return cls(
            texto=_text(document.get("texto")),
            autor=author,
            data_criacao=_opt_text(document.get("dataCriacao")),
        )


@dataclass
class ProposalTerms(DocumentModel):
    valor: float
    descricao: str
    prazo: str = ""
    validade: int = 30
    data_criacao: str | None = None
    servicos: List[Dict[str, Any]] = field(default_factory=list)
    observacoes: str = ""

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ProposalTerms":
        prazo = _text(document.get("prazo"))
        validade = document.get("validade")
        if validade in (None, ""):
            validade = prazo
        return cls(
            valor=_number(document.get("valor")),
            descricao=_text(document.get("descricao")),
            prazo=prazo,
            validade=_bounded_int(validade, 1, 3650, default=30),
            data_criacao=_opt_text(document.get("dataCriacao")),
            servicos=_dict_list(document.get("servicos")),
            observacoes=_text(document.get("observacoes")),
        )


@dataclass
class ContractTerms(DocumentModel):
    id: str
    valor: float
    data_envio: str | None = None
    status: str = "aguardando-assinatura"
    data_assinatura: str | None = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ContractTerms":
        return cls(
            id=_text(document.get("id")),
            valor=_number(document.get("valor")),
            data_envio=_opt_text(document.get("dataEnvio")),
            status=canonical_status("contrato", document.get("status")) or "aguardando-assinatura",
            data_assinatura=_opt_text(document.get("dataAssinatura")),
        )


@dataclass
class Solicitation(DocumentModel):
    id: str
    titulo: str
    categoria: str
    cliente_id: str
    servico_id: str = "custom"
    valor: float = 0.0
    status: str = "nova"
    descricao: str = ""
    prazo: str = ""
    recorrente: bool = False
    nome_cliente: str = ""
    email_cliente: str = ""
    empresa_cliente: str = ""
    admin_id: str | None = None
    admin_nome: str | None = None
    data_solicitacao: str | None = None
    respostas: List[Reply] = field(default_factory=list)
    ultima_resposta: str | None = None
    proposta: ProposalTerms | None = None
    proposta_status: str | None = None
    proposta_criada: bool = False
    contrato: ContractTerms | None = None
    contrato_id: str | None = None
    contrato_status: str | None = None
    data_aceite_proposta: str | None = None
    data_assinatura: str | None = None
    data_finalizacao: str | None = None
    projeto_id: str | None = None
    motivo_rejeicao: str | None = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Solicitation":
        proposal = document.get("proposta")
        contract = document.get("contrato")
        contract_status = _opt_text(document.get("contratoStatus"))
        return cls(
            id=_text(document.get("id")),
            titulo=_text(document.get("titulo")),
            categoria=_text(document.get("categoria")),
            cliente_id=_text(document.get("clienteId")),
            servico_id=_text(document.get("servicoId"), "custom") or "custom",
            valor=_number(document.get("valor")),
            status=canonical_status("solicitacao", document.get("status")) or "nova",
            descricao=_text(document.get("descricao")),
            prazo=_text(document.get("prazo")),
            recorrente=_flag(document.get("recorrente")),
            nome_cliente=_text(document.get("nomeCliente")),
            email_cliente=_text(document.get("emailCliente")).lower(),
            empresa_cliente=_text(document.get("empresaCliente")),
            admin_id=_opt_text(document.get("adminId")),
            admin_nome=_opt_text(document.get("adminNome")),
            data_solicitacao=_opt_text(document.get("dataSolicitacao")),
            respostas=[Reply.from_document(item) for item in _dict_list(document.get("respostas"))],
            ultima_resposta=_opt_text(document.get("ultimaResposta")),
            proposta=ProposalTerms.from_document(proposal) if isinstance(proposal, dict) else None,
            proposta_status=_opt_text(document.get("propostaStatus")),
            proposta_criada=_flag(document.get("propostaCriada")),
            contrato=ContractTerms.from_document(contract) if isinstance(contract, dict) else None,
            contrato_id=_opt_text(document.get("contratoId")),
            contrato_status=canonical_status("contrato", contract_status) if contract_status else None,
            data_aceite_proposta=_opt_text(document.get("dataAceiteProposta")),
            data_assinatura=_opt_text(document.get("dataAssinatura")),
            data_finalizacao=_opt_text(document.get("dataFinalizacao")),
            projeto_id=_opt_text(document.get("projetoId")),
            motivo_rejeicao=_opt_text(document.get("motivoRejeicao")),
            extras=_extras(cls, document),
        )


@dataclass(frozen=True)
class Proposal:
    id: str
    solicitacao_id: str
    cliente_id: str
    titulo: str
    categoria: str
    valor: float
    descricao: str
    prazo: str
    validade: int
    data_criacao: str | None
    servicos: List[Dict[str, Any]]
    status: str
    proposta_status: str | None
    contrato_status: str | None

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "solicitacaoId": self.solicitacao_id,
            "clienteId": self.cliente_id,
            "titulo": self.titulo,
            "categoria": self.categoria,
            "valor": self.valor,
            "descricao": self.descricao,
            "prazo": self.prazo,
            "validade": self.validade,
            "dataCriacao": self.data_criacao,
            "servicos": list(self.servicos),
            "status": self.status,
            "propostaStatus": self.proposta_status,
            "contratoStatus": self.contrato_status,
        }


@dataclass
class Contract(DocumentModel):
    id: str
    proposta_id: str
    solicitacao_id: str
    cliente_id: str
    titulo: str
    valor: float
    servicos: List[Dict[str, Any]] = field(default_factory=list)
    status: str = "aguardando-assinatura"
    data_envio: str | None = None
    data_assinatura: str | None = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Contract":
        return cls(
            id=_text(document.get("id")),
            proposta_id=_text(document.get("propostaId")),
            solicitacao_id=_text(document.get("solicitacaoId")),
            cliente_id=_text(document.get("clienteId")),
            titulo=_text(document.get("titulo")),
            valor=_number(document.get("valor")),
            servicos=_dict_list(document.get("servicos")),
            status=canonical_status("contrato", document.get("status")) or "aguardando-assinatura",
            data_envio=_opt_text(document.get("dataEnvio")),
            data_assinatura=_opt_text(document.get("dataAssinatura")),
        )


@dataclass
class Project(DocumentModel):
    id: str
    nome: str
    cliente_id: str
    descricao: str = ""
    cliente_nome: str = ""
    contrato_id: str | None = None
    solicitacao_id: str | None = None
    proposta_id: str | None = None
    status: str = "planejamento"
    progresso: int = 0
    valor_contratado: float = 0.0
    data_inicio: str | None = None
    data_previsao: str | None = None
    data_conclusao: str | None = None
    aguardando_aprovacao_cliente: bool = False
    aprovado_por_cliente: bool = False
    aprovado_em: str | None = None
    aprovado_por: str | None = None
    admin_id: str | None = None
    historico: List[Dict[str, Any]] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Project":
        return cls(
            id=_text(document.get("id")),
            nome=_text(document.get("nome") or document.get("titulo")),
            cliente_id=_text(document.get("clienteId")),
            descricao=_text(document.get("descricao")),
            cliente_nome=_text(document.get("clienteNome") or document.get("cliente")),
            contrato_id=_opt_text(document.get("contratoId")),
            solicitacao_id=_opt_text(document.get("solicitacaoId")),
            proposta_id=_opt_text(document.get("propostaId")),
            status=canonical_status("projeto", document.get("status")) or "planejamento",
            progresso=_bounded_int(document.get("progresso"), 0, 100),
            valor_contratado=_number(document.get("valorContratado", document.get("valor"))),
            data_inicio=_opt_text(document.get("dataInicio")),
            data_previsao=_opt_text(document.get("dataPrevisao")),
            data_conclusao=_opt_text(document.get("dataConclusao")),
            aguardando_aprovacao_cliente=_flag(document.get("aguardandoAprovacaoCliente")),
            aprovado_por_cliente=_flag(document.get("aprovadoPorCliente")),
            aprovado_em=_opt_text(document.get("aprovadoEm")),
            aprovado_por=_opt_text(document.get("aprovadoPor")),
            admin_id=_opt_text(document.get("adminId")),
            historico=_dict_list(document.get("historico")),
            extras=_extras(cls, document),
        )

    def record_history(self, evento: str, *, status: str, autor: str, data: str | None = None) -> None:
        self.historico.append({"evento": evento, "status": status, "autor": autor, "data": data or now_iso()})


@dataclass
class PortfolioItem(DocumentModel):
    id: str
    titulo: str
    descricao: str
    cliente_id: str
    servico_id: str
    projeto_id: str | None = None
    cliente_nome: str = ""
    cliente_empresa: str = ""
    categoria: str = ""
    imagem_capa: str = ""
    imagens_galeria: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    link_projeto: str = ""
    arquivos_entregues: List[str] = field(default_factory=list)
    data_conclusao: str | None = None
    resultados: str = ""
    testemunho: str = ""
    autorizado_publicacao: bool = False
    destaque: bool = False

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "PortfolioItem":
        return cls(
            id=_text(document.get("id")),
            titulo=_text(document.get("titulo")),
            descricao=_text(document.get("descricao")),
            cliente_id=_text(document.get("clienteId")),
            servico_id=_text(document.get("servicoId")),
            projeto_id=_opt_text(document.get("projetoId")),
            cliente_nome=_text(document.get("clienteNome")),
            cliente_empresa=_text(document.get("clienteEmpresa")),
            categoria=_text(document.get("categoria")),
            imagem_capa=_text(document.get("imagemCapa")),
            imagens_galeria=_text_list(document.get("imagensGaleria")),
            tags=_text_list(document.get("tags")),
            link_projeto=_text(document.get("linkProjeto")),
            arquivos_entregues=_text_list(document.get("arquivosEntregues")),
            data_conclusao=_opt_text(document.get("dataConclusao")),
            resultados=_text(document.get("resultados")),
            testemunho=_text(document.get("testemunho")),
            autorizado_publicacao=_flag(document.get("autorizadoPublicacao")),
            destaque=_flag(document.get("destaque")),
        )


@dataclass
class SignedContractRecord(DocumentModel):
    solicitacao_id: str
    contrato_id: str
    cliente_id: str
    nome_arquivo: str
    pdf_base64: str
    hash: str = ""
    assinado_em: str | None = None

    @property
    def id(self) -> str:
        return self.solicitacao_id

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "SignedContractRecord":
        return cls(
            solicitacao_id=_text(document.get("solicitacaoId") or document.get("id")),
            contrato_id=_text(document.get("contratoId")),
            cliente_id=_text(document.get("clienteId")),
            nome_arquivo=_text(document.get("nomeArquivo")),
            pdf_base64=_text(document.get("pdfBase64") or document.get("pdfUrl")),
            hash=_text(document.get("hash")),
            assinado_em=_opt_text(document.get("assinadoEm")),
        )


@dataclass
class Notification(DocumentModel):
    id: str
    tipo: str
    titulo: str
    mensagem: str
    destinatario_tipo: str
    destinatario_id: str
    remetente_nome: str = ""
    referencia_id: str | None = None
    referencia_tipo: str | None = None
    lida: bool = False
    criada_em: str | None = None
    link: str = ""
    prioridade: str = "normal"

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Notification":
        recipient_type = _text(document.get("destinatarioTipo"), "admin")
        if recipient_type not in {"admin", "cliente"}:
            recipient_type = "admin"
        priority = _text(document.get("prioridade"), "normal")
        if priority not in {"baixa", "normal", "alta"}:
            priority = "normal"
        return cls(
            id=_text(document.get("id")),
            tipo=_text(document.get("tipo"), "sistema"),
            titulo=_text(document.get("titulo")),
            mensagem=_text(document.get("mensagem")),
            destinatario_tipo=recipient_type,
            destinatario_id=_text(document.get("destinatarioId")),
            remetente_nome=_text(document.get("remetenteNome")),
            referencia_id=_opt_text(document.get("referenciaId")),
            referencia_tipo=_opt_text(document.get("referenciaTipo")),
            lida=_flag(document.get("lida")),
            criada_em=_opt_text(document.get("criadaEm")),
            link=_text(document.get("link")),
            prioridade=priority,
        )


@dataclass
class CatalogService(DocumentModel):
    id: str
    titulo: str
    categoria: str
    descricao: str = ""
    preco: float = 0.0
    prazo: str = ""
    recorrente: bool = False
    destaque: bool = False
    ativo: bool = True

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "CatalogService":
        return cls(
            id=_text(document.get("id")),
            titulo=_text(document.get("titulo")),
            categoria=_text(document.get("categoria")),
            descricao=_text(document.get("descricao")),
            preco=_number(document.get("preco")),
            prazo=_text(document.get("prazo")),
            recorrente=_flag(document.get("recorrente")),
            destaque=_flag(document.get("destaque")),
            ativo=_flag(document.get("ativo", True)),
        )
