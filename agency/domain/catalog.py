from __future__ import annotations

from typing import Any, Dict, List


# Built-in service catalog used to seed the `servicos` collection.
SERVICE_CATALOG: List[Dict[str, Any]] = [
    {
        "id": "branding-completo",
        "titulo": "Identidade Visual Completa",
        "categoria": "branding",
        "descricao": "Logo, paleta de cores, tipografia e manual de marca.",
        "preco": 8000.0,
        "prazo": "30 dias",
        "recorrente": False,
        "destaque": True,
    },
    {
        "id": "redesign-marca",
        "titulo": "Redesign de Marca",
        "categoria": "branding",
        "descricao": "Atualizacao da identidade visual existente.",
        "preco": 5000.0,
        "prazo": "21 dias",
        "recorrente": False,
        "destaque": False,
    },
    {
        "id": "landing-page",
        "titulo": "Landing Page",
        "categoria": "web",
        "descricao": "Pagina unica focada em conversao, responsiva.",
        "preco": 2500.0,
        "prazo": "15 dias",
        "recorrente": False,
        "destaque": True,
    },
    {
        "id": "site-institucional",
        "titulo": "Site Institucional",
        "categoria": "web",
        "descricao": "Site com ate 8 paginas e painel de conteudo.",
        "preco": 5000.0,
        "prazo": "30 dias",
        "recorrente": False,
        "destaque": False,
    },
    {
        "id": "gestao-redes-basico",
        "titulo": "Gestao de Redes Sociais - Basico",
        "categoria": "social",
        "descricao": "12 posts mensais em duas redes e relatorio mensal.",
        "preco": 1500.0,
        "prazo": "Mensal",
        "recorrente": True,
        "destaque": True,
    },
    {
        "id": "campanha-ads",
        "titulo": "Campanha de Trafego Pago",
        "categoria": "marketing",
        "descricao": "Gestao de campanhas Google Ads e Meta Ads.",
        "preco": 2000.0,
        "prazo": "Mensal",
        "recorrente": True,
        "destaque": False,
    },
    {
        "id": "video-institucional",
        "titulo": "Video Institucional",
        "categoria": "video",
        "descricao": "Roteiro, captacao e edicao de video de ate 3 minutos.",
        "preco": 6000.0,
        "prazo": "20 dias",
        "recorrente": False,
        "destaque": False,
    },
    {
        "id": "design-grafico",
        "titulo": "Peca de Design Grafico",
        "categoria": "design",
        "descricao": "Criacao de peca avulsa para impresso ou digital.",
        "preco": 500.0,
        "prazo": "5 dias",
        "recorrente": False,
        "destaque": False,
    },
]

CONTACT_SERVICE_ID = "contato"
CUSTOM_SERVICE_ID = "custom"

CONTACT_SOLICITATION_DEFAULTS: Dict[str, Any] = {
    "servicoId": CONTACT_SERVICE_ID,
    "titulo": "Contato Geral",
    "categoria": "Contato",
    "valor": 0.0,
    "prazo": "N/A",
    "recorrente": False,
}


def builtin_service(service_id: str | None) -> Dict[str, Any] | None:
    wanted = str(service_id or "").strip()
    for entry in SERVICE_CATALOG:
        if entry["id"] == wanted:
            return dict(entry)
    return None
