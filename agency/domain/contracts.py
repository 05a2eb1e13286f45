from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class Actor:
    """Caller identity resolved from the session or the auth provider headers."""

    user_id: str
    role: str
    email: str = ""
    display_name: str = ""
    client_id: str | None = None

    @property
    def is_client(self) -> bool:
        return self.role == "cliente"

    @property
    def is_staff(self) -> bool:
        return self.role in {"admin", "webmaster"}

    @property
    def is_webmaster(self) -> bool:
        return self.role == "webmaster"


SYSTEM_ACTOR = Actor(user_id="system", role="webmaster", display_name="Sistema")


@dataclass(frozen=True)
class SolicitationCreateInput:
    titulo: str
    categoria: str
    valor: float = 0.0
    descricao: str = ""
    prazo: str = ""
    servico_id: str | None = None
    recorrente: bool = False


@dataclass(frozen=True)
class ProposalSubmitInput:
    valor: float
    descricao: str
    prazo: str = ""
    servicos: List[Dict[str, Any]] = field(default_factory=list)
    observacoes: str = ""


@dataclass(frozen=True)
class ClientRegisterInput:
    nome: str
    email: str
    telefone: str = ""
    empresa: str = ""
    cargo: str = ""
    cidade: str = ""
    estado: str = ""
    cnpj: str = ""
    admin_id: str | None = None
    admin_nome: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class DeliverableInput:
    titulo: str
    descricao: str
    autorizado_publicacao: bool = False
    imagem_capa: str = ""
    imagens_galeria: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    link_projeto: str = ""
    arquivos_entregues: List[str] = field(default_factory=list)
    resultados: str = ""
    testemunho: str = ""


@dataclass(frozen=True)
class ProjectCreateInput:
    client_id: str
    nome: str
    valor: float = 0.0
    descricao: str = ""
    solicitation_id: str | None = None
    data_previsao: str | None = None
