"""Order documents (encounter form, patient invoice, proof of delivery).

Each document is first assembled as a plain dict so the API can return it as
JSON; the DOCX and PDF builders render that same structure.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from io import BytesIO
from typing import Any

from docx import Document
from fpdf import FPDF, XPos, YPos

from backend.models import Order
from backend.pricing import order_totals

BRAND = "MedSupply OS"

DOCUMENT_KINDS: dict[str, dict[str, str]] = {
    "encounter": {
        "title": "Encounter Form",
        "subtitle": f"{BRAND} - Clinical Documentation",
        "description": "Clinical encounter documentation with diagnosis and prescription details.",
    },
    "invoice": {
        "title": "Patient Invoice",
        "subtitle": BRAND,
        "description": "Itemized invoice for patient with allowed amounts and co-pay breakdown.",
    },
    "pod": {
        "title": "Proof of Delivery",
        "subtitle": f"{BRAND} - Delivery Confirmation",
        "description": "Delivery confirmation form with patient acknowledgment and signature.",
    },
}

_CLINICAL_NOTE = (
    "Face-to-face encounter completed. Patient meets medical necessity criteria for prescribed "
    "equipment. Detailed clinical assessment on file."
)
_ACKNOWLEDGMENT = (
    "I acknowledge receipt of the items listed above. The equipment was delivered in good condition "
    "and I have been instructed on the proper use and care of the equipment. I understand that I may "
    f"contact {BRAND} with any questions or concerns."
)


def _fmt_currency(value: float) -> str:
    return f"${value:,.2f}"


def list_documents(order: Order) -> list[dict[str, str]]:
    return [
        {
            "kind": kind,
            "title": meta["title"],
            "description": meta["description"],
            "href": f"/orders/{order.id}/documents/{kind}",
        }
        for kind, meta in DOCUMENT_KINDS.items()
    ]


def build_document(order: Order, kind: str) -> dict[str, Any]:
    """Assemble the content of one document for an order."""

    if kind not in DOCUMENT_KINDS:
        raise KeyError(f"Unknown document type '{kind}'")
    meta = DOCUMENT_KINDS[kind]
    payload: dict[str, Any] = {
        "kind": kind,
        "title": meta["title"],
        "subtitle": meta["subtitle"],
        "order_id": order.id,
        "fields": [],
        "tables": [],
        "paragraphs": [],
        "totals": [],
        "signatures": [],
    }

    if kind == "encounter":
        payload["fields"] = [
            {"label": "Order ID", "value": order.id},
            {"label": "Date", "value": order.updated},
            {"label": "Patient", "value": order.patient},
            {"label": "DOB", "value": order.dob},
            {"label": "Payer", "value": order.payer},
            {"label": "Insurance ID", "value": order.insurance_id},
        ]
        payload["tables"] = [
            {
                "heading": "Prescribed Items",
                "columns": ["Item", "HCPCS", "Qty"],
                "rows": [[li.product, li.hcpcs, str(li.qty)] for li in order.line_items],
            }
        ]
        payload["paragraphs"] = [{"heading": "Clinical Notes", "text": _CLINICAL_NOTE}]
        payload["signatures"] = ["Prescribing Physician Signature", "Date"]

    elif kind == "invoice":
        totals = order_totals(order.line_items)
        payload["fields"] = [
            {"label": "Order ID", "value": order.id},
            {"label": "Date", "value": order.updated},
            {"label": "Bill To", "value": f"{order.patient}, {order.address}, {order.city}, {order.state} {order.zip}"},
            {"label": "Insurance", "value": order.payer},
            {"label": "ID", "value": order.insurance_id},
            {"label": "Group", "value": order.group_number},
        ]
        payload["tables"] = [
            {
                "heading": "Items",
                "columns": ["Item", "HCPCS", "Qty", "Allowed", "Patient Share"],
                "rows": [
                    [
                        li.product,
                        li.hcpcs,
                        str(li.qty),
                        _fmt_currency(li.allowed_amount * li.qty),
                        _fmt_currency(li.patient_share * li.qty),
                    ]
                    for li in order.line_items
                ],
            }
        ]
        payload["totals"] = [
            {"label": "Total Allowed", "value": totals["total_allowed"]},
            {"label": "Insurance Pays", "value": totals["insurance_pays"]},
            {"label": "Patient Responsibility", "value": totals["total_patient_share"]},
        ]
        payload["signatures"] = ["Patient Signature", "Date"]

    else:
        payload["fields"] = [
            {"label": "Order ID", "value": order.id},
            {"label": "Delivery Date", "value": order.updated},
            {"label": "Patient", "value": order.patient},
            {"label": "Phone", "value": order.phone},
            {"label": "Address", "value": f"{order.address}, {order.city}, {order.state} {order.zip}"},
        ]
        payload["tables"] = [
            {
                "heading": "Items Delivered",
                "columns": ["Item", "HCPCS", "Qty", "Condition"],
                "rows": [[li.product, li.hcpcs, str(li.qty), "New"] for li in order.line_items],
            }
        ]
        payload["paragraphs"] = [{"heading": "Patient Acknowledgment", "text": _ACKNOWLEDGMENT}]
        payload["signatures"] = ["Patient Signature", "Delivery Technician", "Date"]

    return payload


def build_document_docx(order: Order, kind: str) -> bytes:
    content = build_document(order, kind)

    document = Document()
    document.add_heading(content["title"], level=1)
    document.add_paragraph(content["subtitle"])

    for field in content["fields"]:
        document.add_paragraph(f"{field['label']}: {field['value']}")

    for table_def in content["tables"]:
        document.add_heading(table_def["heading"], level=2)
        table = document.add_table(rows=1, cols=len(table_def["columns"]))
        for cell, column in zip(table.rows[0].cells, table_def["columns"]):
            cell.text = column
        for row in table_def["rows"]:
            cells = table.add_row().cells
            for cell, value in zip(cells, row):
                cell.text = value
        if not table_def["rows"]:
            document.add_paragraph("No line items.")

    for total in content["totals"]:
        document.add_paragraph(f"{total['label']}: {_fmt_currency(total['value'])}")

    for paragraph in content["paragraphs"]:
        document.add_heading(paragraph["heading"], level=2)
        document.add_paragraph(paragraph["text"])

    document.add_paragraph("")
    for label in content["signatures"]:
        document.add_paragraph("_" * 30)
        document.add_paragraph(label)

    buffer = BytesIO()
    document.save(buffer)
    buffer.seek(0)
    return buffer.read()


def _safe_pdf_text(s: str) -> str:
    """Map smart punctuation to ASCII and drop anything the core PDF fonts cannot encode."""

    s = str(s)
    s = s.replace("\u2014", "-")
    s = s.replace("\u2013", "-")
    s = s.replace("\u2018", "'")
    s = s.replace("\u2019", "'")
    s = s.replace("\u2265", ">=")
    s = unicodedata.normalize("NFKD", s)
    s = re.sub(r"[\u200b-\u200d\ufeff]", "", s)
    return s.encode("latin-1", errors="ignore").decode("latin-1")


class _DocumentPDF(FPDF):
    def __init__(self, *, title: str, order_id: str, generated_at: str) -> None:
        super().__init__()
        self.doc_title = title
        self.order_id = order_id
        self.generated_at = generated_at

    def header(self) -> None:
        self.set_font("Helvetica", "B", 12)
        self.cell(0, 10, _safe_pdf_text(f"{self.doc_title} - {self.order_id}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
        self.set_font("Helvetica", "", 9)
        self.cell(0, 6, f"Generated {self.generated_at}", new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
        self.ln(4)

    def footer(self) -> None:
        self.set_y(-15)
        self.set_font("Helvetica", "", 9)
        self.cell(0, 10, f"Page {self.page_no()}", align="C")


def build_document_pdf(order: Order, kind: str) -> bytes:
    content = build_document(order, kind)
    timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    pdf = _DocumentPDF(title=content["title"], order_id=order.id, generated_at=timestamp)
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 10, _safe_pdf_text(content["title"]), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_font("Helvetica", "", 10)
    pdf.cell(0, 6, _safe_pdf_text(content["subtitle"]), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    pdf.set_font("Helvetica", "", 11)
    for field in content["fields"]:
        pdf.multi_cell(0, 6, _safe_pdf_text(f"{field['label']}: {field['value']}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    for table_def in content["tables"]:
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(0, 8, _safe_pdf_text(table_def["heading"]), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        columns = table_def["columns"]
        first_width = pdf.epw * 0.4
        other_width = (pdf.epw - first_width) / max(len(columns) - 1, 1)
        widths = [first_width] + [other_width] * (len(columns) - 1)

        pdf.set_font("Helvetica", "B", 10)
        for width, column in zip(widths, columns):
            pdf.cell(width, 7, _safe_pdf_text(column), border=1)
        pdf.ln(7)
        pdf.set_font("Helvetica", "", 10)
        for row in table_def["rows"]:
            for width, value in zip(widths, row):
                pdf.cell(width, 7, _safe_pdf_text(value)[:48], border=1)
            pdf.ln(7)
        if not table_def["rows"]:
            pdf.cell(0, 7, "No line items.", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(4)

    if content["totals"]:
        pdf.set_font("Helvetica", "", 11)
        for total in content["totals"]:
            pdf.cell(0, 6, _safe_pdf_text(f"{total['label']}: {_fmt_currency(total['value'])}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="R")
        pdf.ln(4)

    for paragraph in content["paragraphs"]:
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(0, 8, _safe_pdf_text(paragraph["heading"]), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.set_font("Helvetica", "", 10)
        pdf.multi_cell(0, 5, _safe_pdf_text(paragraph["text"]), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(4)

    pdf.ln(8)
    pdf.set_font("Helvetica", "", 9)
    for label in content["signatures"]:
        pdf.cell(0, 8, "_" * 40, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.cell(0, 5, _safe_pdf_text(label), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(2)

    return bytes(pdf.output())
