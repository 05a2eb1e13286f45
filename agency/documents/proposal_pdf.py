from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Sequence
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from agency.documents.contract_pdf import AgencyInfo, field_text, footer_canvas, format_brl, safe_file_token
from agency.domain.identifiers import utc_now
from agency.errors import ValidationError


@dataclass(frozen=True)
class ProposalTermsText:
    validity_days: int = 30
    payment_terms: str = "30/60/90 dias"
    warranty: str = "90 dias"
    delivery: str = ""
    start: str = ""

    @classmethod
    def from_config(cls, config, **overrides: Any) -> "ProposalTermsText":
        values = {
            "validity_days": int(config.get("PROPOSAL_VALIDITY_DAYS") or 30),
            "payment_terms": str(config.get("PROPOSAL_PAYMENT_TERMS") or cls.payment_terms),
            "warranty": str(config.get("PROPOSAL_WARRANTY") or cls.warranty),
        }
        values.update({key: value for key, value in overrides.items() if value not in (None, "")})
        return cls(**values)


@dataclass(frozen=True)
class ProposalDocument:
    content: bytes
    file_name: str
    generated_at: datetime


def build_proposal_document(
    client_info: Any,
    services: Sequence[Dict[str, Any]],
    *,
    terms: ProposalTermsText | None = None,
    observations: str = "",
    generated_at: datetime | None = None,
    agency: AgencyInfo | None = None,
) -> ProposalDocument:
    if not services:
        raise ValidationError(code="proposal_services_required", message_key="proposal_description_required")

    terms = terms or ProposalTermsText()
    agency = agency or AgencyInfo()
    generated_at = generated_at or utc_now()
    company = field_text(client_info, "empresa") or field_text(client_info, "nome")
    base = getSampleStyleSheet()
    title_style = ParagraphStyle(name="ProposalTitle", parent=base["Title"], fontSize=18, leading=22)
    header_style = ParagraphStyle(name="ProposalHeader", parent=base["Heading3"], fontSize=11, spaceBefore=10)
    body_style = ParagraphStyle(name="ProposalBody", parent=base["Normal"], fontSize=10, leading=14)

    one_off_total = sum(float(item.get("valor") or 0) for item in services if not item.get("recorrente"))
    monthly_total = sum(float(item.get("valor") or 0) for item in services if item.get("recorrente"))

    story: List[Any] = [
        Paragraph(escape(agency.name), title_style),
        Paragraph(
            f"PROPOSTA COMERCIAL | Data: {generated_at.strftime('%d/%m/%Y')} | Validade: {terms.validity_days} dias",
            body_style,
        ),
        Paragraph("DADOS DO CLIENTE", header_style),
        Paragraph(f"<b>Cliente:</b> {escape(field_text(client_info, 'nome'))}", body_style),
        Paragraph(f"<b>Empresa:</b> {escape(company)}", body_style),
        Paragraph(
            f"<b>Email:</b> {escape(field_text(client_info, 'email'))} &nbsp; "
            f"<b>Telefone:</b> {escape(field_text(client_info, 'telefone'))}",
            body_style,
        ),
        Paragraph("SERVICOS PROPOSTOS", header_style),
    ]

    rows = [["Servico", "Categoria", "Prazo", "Valor"]]
    for item in services:
        value_label = format_brl(item.get("valor") or 0)
        if item.get("recorrente"):
            value_label += "/mes"
        rows.append(
            [
                Paragraph(escape(str(item.get("nome") or item.get("titulo") or "")), body_style),
                str(item.get("categoria") or ""),
                str(item.get("prazo") or ""),
                value_label,
            ]
        )
    table = Table(rows, colWidths=[7.5 * cm, 3 * cm, 3 * cm, 3.5 * cm])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), HexColor("#F3F4F6")),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("LINEBELOW", (0, 0), (-1, -1), 0.3, HexColor("#DDDDDD")),
                ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
            ]
        )
    )
    story.append(table)

    story.append(Paragraph("RESUMO FINANCEIRO", header_style))
    if one_off_total:
        story.append(Paragraph(f"Investimento unico: {format_brl(one_off_total)}", body_style))
    if monthly_total:
        story.append(Paragraph(f"Investimento mensal: {format_brl(monthly_total)}", body_style))
    story.append(Paragraph(f"<b>TOTAL: {format_brl(one_off_total + monthly_total)}</b>", body_style))

    story.append(Paragraph("CONDICOES COMERCIAIS", header_style))
    for line in (
        f"Condicoes de Pagamento: {terms.payment_terms}",
        f"Prazo de Entrega: {terms.delivery or 'A definir apos aprovacao'}",
        f"Inicio Estimado: {terms.start or 'Imediato apos assinatura do contrato'}",
        f"Garantia: {terms.warranty} para correcoes e ajustes",
    ):
        story.append(Paragraph(f"&bull; {escape(line)}", body_style))

    if str(observations or "").strip():
        story.append(Paragraph("OBSERVACOES", header_style))
        story.append(Paragraph(escape(str(observations).strip()), body_style))

    story.append(Spacer(1, 16))
    story.append(Paragraph("<b>Pronto para comecar?</b>", body_style))
    story.append(Paragraph(f"Entre em contato: {escape(agency.email)} | {escape(agency.phone)}", body_style))

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=2 * cm,
        leftMargin=2 * cm,
        topMargin=2 * cm,
        bottomMargin=2.2 * cm,
        title=f"Proposta {company}",
    )
    footer = "Esta proposta foi gerada automaticamente pelo Sistema de Gestao Criativa"
    doc.build(
        story,
        onFirstPage=lambda canvas, document: footer_canvas(canvas, document, footer),
        onLaterPages=lambda canvas, document: footer_canvas(canvas, document, footer),
    )
    return ProposalDocument(
        content=buffer.getvalue(),
        file_name=f"Proposta_{safe_file_token(company)}_{generated_at.strftime('%Y-%m-%d')}.pdf",
        generated_at=generated_at,
    )
