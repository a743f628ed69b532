from __future__ import annotations

from io import BytesIO

import pytest
from fastapi.testclient import TestClient

from backend.documents import _safe_pdf_text, build_document, list_documents
from backend.main import app
from backend.orders import get_order


client = TestClient(app)


def test_document_list() -> None:
	docs = list_documents(get_order("ORD-1003", None))
	assert [d["title"] for d in docs] == ["Encounter Form", "Patient Invoice", "Proof of Delivery"]
	assert docs[0]["href"] == "/orders/ORD-1003/documents/encounter"


def test_invoice_totals() -> None:
	invoice = build_document(get_order("ORD-1007", None), "invoice")
	totals = {item["label"]: item["value"] for item in invoice["totals"]}

	assert totals["Total Allowed"] == pytest.approx(1650.0 + 1700.0 + 800.0 + 1800.0)
	assert totals["Patient Responsibility"] == pytest.approx(330.0 + 340.0 + 160.0 + 360.0)
	assert totals["Insurance Pays"] == pytest.approx(5950.0 - 1190.0)
	assert invoice["tables"][0]["rows"][1][3] == "$1,700.00"


def test_pod_and_encounter_content() -> None:
	order = get_order("ORD-1006", None)
	pod = build_document(order, "pod")
	assert pod["tables"][0]["rows"][0][-1] == "New"
	assert pod["signatures"] == ["Patient Signature", "Delivery Technician", "Date"]

	encounter = build_document(order, "encounter")
	assert encounter["paragraphs"][0]["heading"] == "Clinical Notes"


def test_unknown_document_kind() -> None:
	with pytest.raises(KeyError):
		build_document(get_order("ORD-1006", None), "receipt")
	assert client.get("/orders/ORD-1006/documents/receipt").status_code == 404
	assert client.get("/orders/ORD-1006/documents/invoice", params={"format": "xml"}).status_code == 400


def test_safe_pdf_text() -> None:
	assert _safe_pdf_text("Power Wheelchair – Group 2") == "Power Wheelchair - Group 2"


def test_document_docx_export() -> None:
	docx_module = pytest.importorskip("docx")

	response = client.get("/orders/ORD-1007/documents/invoice", params={"format": "docx"})
	assert response.status_code == 200
	assert (
		response.headers.get("content-type")
		== "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
	)

	doc = docx_module.Document(BytesIO(response.content))
	paragraph_text = [p.text for p in doc.paragraphs if p.text.strip()]
	assert "Patient Invoice" in paragraph_text
	assert any(text.startswith("Patient Responsibility") for text in paragraph_text)


def test_document_pdf_export() -> None:
	pdf_module = pytest.importorskip("PyPDF2")

	response = client.get("/orders/ORD-1001/documents/pod", params={"format": "pdf"})
	assert response.status_code == 200
	assert response.headers.get("content-type") == "application/pdf"

	reader = pdf_module.PdfReader(BytesIO(response.content))
	assert reader.pages, "Generated PDF has no pages"
	text = "".join(page.extract_text() or "" for page in reader.pages)
	assert "Proof of Delivery" in text


def test_json_document() -> None:
	response = client.get("/orders/ORD-1004/documents/encounter")
	assert response.status_code == 200
	assert response.json()["tables"][0]["rows"] == []
