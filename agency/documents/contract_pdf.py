"""Signed service contract rendered as PDF.

`build_contract_document` is pure: it validates its preconditions, renders
the artifact and hands it back. Persisting the artifact and moving the
workflow forward is left to the caller.
"""

from __future__ import annotations

import base64
import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Sequence
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from agency.documents.signature import SignatureCapture
from agency.domain.identifiers import new_contract_id, utc_now
from agency.errors import ValidationError


@dataclass(frozen=True)
class AgencyInfo:
    name: str = "Creative Agency LTDA"
    cnpj: str = "12.345.678/0001-90"
    city: str = "Sao Paulo/SP"
    email: str = "contato@creativeagency.com"
    phone: str = "(11) 9999-9999"

    @classmethod
    def from_config(cls, config) -> "AgencyInfo":
        return cls(
            name=str(config.get("AGENCY_NAME") or cls.name),
            cnpj=str(config.get("AGENCY_CNPJ") or cls.cnpj),
            city=str(config.get("AGENCY_CITY") or cls.city),
            email=str(config.get("AGENCY_EMAIL") or cls.email),
            phone=str(config.get("AGENCY_PHONE") or cls.phone),
        )


@dataclass(frozen=True)
class ContractDocument:
    content: bytes
    file_name: str
    contract_id: str
    verification_code: str
    signed_at: datetime

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content).hexdigest()

    def to_data_url(self) -> str:
        return "data:application/pdf;base64," + base64.b64encode(self.content).decode("ascii")


CONTRACTOR_DUTIES = (
    "Executar os servicos com qualidade e profissionalismo;",
    "Entregar os trabalhos nos prazos estabelecidos;",
    "Manter sigilo sobre informacoes confidenciais;",
    "Fornecer suporte tecnico conforme acordado.",
)

CLIENT_DUTIES = (
    "Efetuar os pagamentos nos prazos acordados;",
    "Fornecer informacoes e materiais necessarios;",
    "Aprovar ou reprovar materiais em ate 5 dias uteis;",
    "Respeitar os direitos autorais dos trabalhos.",
)


def format_brl(value: float) -> str:
    formatted = f"{float(value or 0):,.2f}"
    return "R$ " + formatted.replace(",", "_").replace(".", ",").replace("_", ".")


def verification_code(contract_id: str, email: str) -> str:
    return base64.b64encode(f"{contract_id}{email}".encode("utf-8")).decode("ascii")[:32]


def safe_file_token(value: str, fallback: str = "Cliente") -> str:
    token = re.sub(r"[^\w-]+", "_", str(value or "").strip(), flags=re.UNICODE).strip("_")
    return token or fallback


def field_text(source: Any, name: str) -> str:
    if isinstance(source, dict):
        value = source.get(name)
    else:
        value = getattr(source, name, None)
    return str(value or "").strip()


def _styles() -> Dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(name="ContractTitle", parent=base["Title"], fontSize=16, leading=20, alignment=TA_CENTER),
        "subtitle": ParagraphStyle(
            name="ContractSubtitle", parent=base["Normal"], fontSize=10, alignment=TA_CENTER, textColor=HexColor("#555555")
        ),
        "clause": ParagraphStyle(name="Clause", parent=base["Heading3"], fontSize=11, spaceBefore=10, spaceAfter=4),
        "body": ParagraphStyle(name="ContractBody", parent=base["Normal"], fontSize=10, leading=14, alignment=TA_JUSTIFY),
        "muted": ParagraphStyle(name="ContractMuted", parent=base["Normal"], fontSize=8, textColor=HexColor("#666666")),
    }


def footer_canvas(canvas, doc, footer_text: str) -> None:
    canvas.saveState()
    canvas.setStrokeColor(HexColor("#DDDDDD"))
    canvas.setLineWidth(0.6)
    canvas.line(doc.leftMargin, 1.7 * cm, A4[0] - doc.rightMargin, 1.7 * cm)
    canvas.setFillColor(HexColor("#666666"))
    canvas.setFont("Helvetica", 8)
    canvas.drawString(doc.leftMargin, 1.2 * cm, footer_text)
    canvas.drawRightString(A4[0] - doc.rightMargin, 1.2 * cm, f"Pagina {doc.page}")
    canvas.restoreState()


def _require_preconditions(signature: SignatureCapture, terms_accepted: bool, total_value: float) -> None:
    if signature is None or signature.is_empty():
        raise ValidationError(
            code="signature_required",
            message_key="signature_required",
            payload={"precondition": "signature"},
        )
    if terms_accepted is not True:
        raise ValidationError(
            code="terms_not_accepted",
            message_key="terms_not_accepted",
            payload={"precondition": "aceitoTermos"},
        )
    if float(total_value or 0) < 0:
        raise ValidationError(code="valor_invalid", message_key="valor_invalid")


def build_contract_document(
    client_info: Any,
    services: Sequence[Dict[str, Any]],
    total_value: float,
    signature: SignatureCapture,
    terms_accepted: bool,
    *,
    contract_id: str | None = None,
    signed_at: datetime | None = None,
    agency: AgencyInfo | None = None,
) -> ContractDocument:
    _require_preconditions(signature, terms_accepted, total_value)

    agency = agency or AgencyInfo()
    signed_at = signed_at or utc_now()
    contract_id = contract_id or new_contract_id(signed_at.year)
    email = field_text(client_info, "email")
    company = field_text(client_info, "empresa") or field_text(client_info, "nome")
    code = verification_code(contract_id, email)
    styles = _styles()
    date_label = signed_at.strftime("%d/%m/%Y")

    story: List[Any] = [
        Paragraph("CONTRATO DE PRESTACAO DE SERVICOS", styles["title"]),
        Paragraph(escape(agency.name), styles["subtitle"]),
        Spacer(1, 12),
        Paragraph(f"<b>Contrato N:</b> {escape(contract_id)} &nbsp;&nbsp; <b>Data:</b> {date_label}", styles["body"]),
        Paragraph("DAS PARTES", styles["clause"]),
    ]

    party_lines = [
        f"<b>CONTRATANTE:</b> {escape(company)}",
        f"Representante: {escape(field_text(client_info, 'nome'))}",
    ]
    if field_text(client_info, "cnpj"):
        party_lines.append(f"CNPJ: {escape(field_text(client_info, 'cnpj'))}")
    party_lines.append(f"E-mail: {escape(email)}")
    if field_text(client_info, "telefone"):
        party_lines.append(f"Telefone: {escape(field_text(client_info, 'telefone'))}")
    address = ", ".join(
        part for part in (field_text(client_info, "endereco"), field_text(client_info, "cidade"), field_text(client_info, "estado")) if part
    )
    if address:
        party_lines.append(f"Endereco: {escape(address)}")
    for line in party_lines:
        story.append(Paragraph(line, styles["body"]))
    story.append(Spacer(1, 6))
    story.append(Paragraph(f"<b>CONTRATADA:</b> {escape(agency.name)}", styles["body"]))
    story.append(Paragraph(f"CNPJ: {escape(agency.cnpj)}", styles["body"]))
    story.append(Paragraph(f"E-mail: {escape(agency.email)} | Telefone: {escape(agency.phone)}", styles["body"]))

    story.append(Paragraph("CLAUSULA PRIMEIRA - DO OBJETO", styles["clause"]))
    story.append(
        Paragraph(
            "O presente contrato tem por objeto a prestacao de servicos de comunicacao, marketing e design "
            "pela CONTRATADA para a CONTRATANTE, conforme especificado abaixo:",
            styles["body"],
        )
    )
    rows = [["#", "Servico", "Categoria", "Valor"]]
    for index, service in enumerate(services or [], start=1):
        value_label = format_brl(service.get("valor") or 0)
        if service.get("recorrente"):
            value_label += "/mes"
        rows.append(
            [
                str(index),
                Paragraph(escape(str(service.get("nome") or service.get("titulo") or "")), styles["body"]),
                str(service.get("categoria") or ""),
                value_label,
            ]
        )
    rows.append(["", "VALOR TOTAL DOS SERVICOS", "", format_brl(total_value)])
    table = Table(rows, colWidths=[1 * cm, 8 * cm, 3.5 * cm, 3.5 * cm])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), HexColor("#F3F4F6")),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("LINEBELOW", (0, 0), (-1, -1), 0.3, HexColor("#DDDDDD")),
                ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]
        )
    )
    story.extend([Spacer(1, 6), table])

    clauses = [
        (
            "CLAUSULA SEGUNDA - DO PAGAMENTO",
            "O pagamento sera realizado conforme as condicoes estabelecidas na proposta comercial aceita pela "
            "CONTRATANTE. Para servicos recorrentes, o pagamento sera mensal, com vencimento no dia 10 de cada mes. "
            "Atrasos superiores a 15 dias poderao resultar na suspensao dos servicos.",
        ),
        (
            "CLAUSULA TERCEIRA - DO PRAZO E VIGENCIA",
            "O presente contrato tera vigencia a partir da data de sua assinatura. Para servicos pontuais, o prazo "
            "de entrega sera conforme estabelecido na proposta. Para servicos recorrentes, o contrato tera vigencia "
            "indeterminada, podendo ser rescindido por qualquer das partes mediante aviso previo de 30 dias.",
        ),
    ]
    for heading, text in clauses:
        story.append(Paragraph(heading, styles["clause"]))
        story.append(Paragraph(text, styles["body"]))

    story.append(Paragraph("CLAUSULA QUARTA - DAS OBRIGACOES", styles["clause"]))
    story.append(Paragraph("<b>Da CONTRATADA:</b>", styles["body"]))
    story.extend(Paragraph(f"&bull; {duty}", styles["body"]) for duty in CONTRACTOR_DUTIES)
    story.append(Paragraph("<b>Da CONTRATANTE:</b>", styles["body"]))
    story.extend(Paragraph(f"&bull; {duty}", styles["body"]) for duty in CLIENT_DUTIES)

    story.append(Paragraph("CLAUSULA QUINTA - DA RESCISAO", styles["clause"]))
    story.append(
        Paragraph(
            "O presente contrato podera ser rescindido por qualquer das partes mediante comunicacao previa de 30 "
            "dias. Em caso de inadimplencia superior a 30 dias, a CONTRATADA podera rescindir o contrato "
            "imediatamente, sem prejuizo da cobranca dos valores devidos.",
            styles["body"],
        )
    )
    story.append(Paragraph("CLAUSULA SEXTA - DO FORO", styles["clause"]))
    story.append(
        Paragraph(
            f"Fica eleito o foro da Comarca de {escape(agency.city)} para dirimir quaisquer duvidas ou "
            "controversias oriundas do presente contrato, com renuncia expressa a qualquer outro, por mais "
            "privilegiado que seja.",
            styles["body"],
        )
    )

    story.append(Spacer(1, 14))
    story.append(
        Paragraph("E por estarem assim justas e contratadas, as partes assinam o presente contrato.", styles["body"])
    )
    story.append(Paragraph(f"{escape(agency.city)}, {date_label}", styles["subtitle"]))
    story.append(Spacer(1, 10))

    signature_image = Image(BytesIO(signature.to_png()), width=6 * cm, height=2.4 * cm, kind="proportional")
    signature_table = Table(
        [
            [signature_image, Paragraph("[Assinatura Digital]", styles["muted"])],
            [
                Paragraph(f"{escape(field_text(client_info, 'nome'))}<br/>{escape(company)} - CONTRATANTE", styles["body"]),
                Paragraph(f"{escape(agency.name)} - CONTRATADA<br/>CNPJ: {escape(agency.cnpj)}", styles["body"]),
            ],
        ],
        colWidths=[8 * cm, 8 * cm],
    )
    signature_table.setStyle(TableStyle([("LINEABOVE", (0, 1), (-1, 1), 0.6, HexColor("#333333"))]))
    story.append(signature_table)
    story.append(Spacer(1, 12))
    story.append(
        Paragraph(
            "Este contrato foi assinado digitalmente e possui validade juridica conforme MP 2.200-2/2001",
            styles["muted"],
        )
    )
    story.append(
        Paragraph(
            f"Codigo de verificacao: {escape(contract_id)} | Assinado em: {signed_at.strftime('%d/%m/%Y %H:%M')}",
            styles["muted"],
        )
    )
    story.append(Paragraph(f"Hash de autenticidade: {escape(code)}", styles["muted"]))

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=2 * cm,
        leftMargin=2 * cm,
        topMargin=2 * cm,
        bottomMargin=2.2 * cm,
        title=f"Contrato {contract_id}",
    )
    footer = f"{agency.name} | Contrato {contract_id}"
    doc.build(
        story,
        onFirstPage=lambda canvas, document: footer_canvas(canvas, document, footer),
        onLaterPages=lambda canvas, document: footer_canvas(canvas, document, footer),
    )

    return ContractDocument(
        content=buffer.getvalue(),
        file_name=f"Contrato_{safe_file_token(company)}_{contract_id}.pdf",
        contract_id=contract_id,
        verification_code=code,
        signed_at=signed_at,
    )
