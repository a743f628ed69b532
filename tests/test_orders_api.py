from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend import attachments
from backend.main import app


client = TestClient(app)


def _start() -> str:
	response = client.post("/session/start")
	assert response.status_code == 200
	return response.json()["session_id"]


def _order_body(session_id: str, **overrides) -> dict:
	body = {
		"session_id": session_id,
		"first_name": "Ada",
		"last_name": "Lovelace",
		"dob": "1950-12-10",
		"phone": "512-555-0199",
		"payer": "Medicare",
		"insurance_id": "MBI-1",
		"group_number": "12345",
		"address": "1 Analytical Way",
		"city": "Austin",
		"state": "TX",
		"zip": "73301",
		"line_items": [{"product_id": "P-1", "qty": 1}],
	}
	body.update(overrides)
	return body


def test_health() -> None:
	assert client.get("/health").json()["ok"] is True


def test_listing_and_metrics() -> None:
	listing = client.get("/orders").json()
	assert listing["count"] == 7

	assert client.get("/orders/metrics").json() == {"open": 3, "needs_approval": 2, "docs_ready": 2}

	filtered = client.get("/orders", params={"search": "chen"}).json()
	assert [o["id"] for o in filtered["orders"]] == ["ORD-1001"]

	by_status = client.get("/orders", params={"status": "Docs Ready", "payer": "Aetna"}).json()
	assert {o["id"] for o in by_status["orders"]} == {"ORD-1003", "ORD-1007"}

	assert client.get("/orders", params={"status": "Shipped"}).status_code == 400


def test_order_detail() -> None:
	payload = client.get("/orders/ord-1001").json()

	assert payload["order"]["id"] == "ORD-1001"
	assert payload["totals"]["total_allowed"] == pytest.approx(2450.0)
	assert payload["totals"]["margin"] == pytest.approx(122.7)
	assert payload["items_requiring_approval"] == ["LI-1"]
	assert payload["actions"] == ["reject", "approve"]

	assert client.get("/orders/ORD-0000").status_code == 404



def test_approved_order_offers_reject_and_flags_shared_codes() -> None:
	sid = _start()

	detail = client.get("/orders/ORD-1002", params={"session_id": sid}).json()
	assert detail["actions"] == ["reject", "generate_docs"]
	assert detail["items_requiring_approval"] == []

	client.post(
		"/products",
		json={
			"session_id": sid,
			"name": "Premium Mattress",
			"hcpcs": "E0277",
			"vendor": "Invacare",
			"cost": "300",
			"msrp": "700",
			"requires_approval": True,
		},
	)
	assert client.get("/orders/ORD-1002", params={"session_id": sid}).json()["items_requiring_approval"] == ["LI-4"]

	rejected = client.post("/orders/ORD-1002/reject", json={"reason": "Auth expired", "session_id": sid})
	assert rejected.status_code == 200
	assert rejected.json()["order"]["status"] == "Action Required"


def test_mutations_require_session() -> None:
	response = client.post("/orders/ORD-1001/approve")
	assert response.status_code == 400
	assert response.json()["detail"] == "No session. Call /session/start first."


def test_approve_and_generate_documents() -> None:
	sid = _start()

	approved = client.post("/orders/ORD-1001/approve", params={"session_id": sid})
	assert approved.status_code == 200
	assert approved.json()["order"]["status"] == "Approved"

	again = client.post("/orders/ORD-1001/approve", params={"session_id": sid})
	assert again.status_code == 409

	generated = client.post("/orders/ORD-1001/documents/generate", params={"session_id": sid})
	assert generated.status_code == 200
	assert generated.json()["order"]["status"] == "Docs Ready"
	assert [d["kind"] for d in generated.json()["documents"]] == ["encounter", "invoice", "pod"]

	metrics = client.get("/orders/metrics", params={"session_id": sid}).json()
	assert metrics == {"open": 2, "needs_approval": 1, "docs_ready": 3}


def test_reject_requires_reason() -> None:
	sid = _start()

	refused = client.post("/orders/ORD-1005/reject", json={"reason": "  ", "session_id": sid})
	assert refused.status_code == 400
	assert client.get("/orders/ORD-1005", params={"session_id": sid}).json()["order"]["status"] == "Needs Approval"

	rejected = client.post("/orders/ORD-1005/reject", json={"reason": "Need CMN", "session_id": sid})
	assert rejected.status_code == 200
	order = rejected.json()["order"]
	assert order["status"] == "Action Required"
	assert order["rejection_reason"] == "Need CMN"
	assert order["notes"][-1]["text"] == "Order rejected: Need CMN"


def test_submit_order_flow() -> None:
	sid = _start()

	invalid = client.post("/orders", json={"session_id": sid})
	assert invalid.status_code == 400
	assert invalid.json()["detail"]["message"] == "Please fix the form"

	created = client.post("/orders", json=_order_body(sid))
	assert created.status_code == 200
	order = created.json()["order"]
	assert order["id"] == "ORD-1008"
	assert order["status"] == "Needs Approval"
	assert order["total_allowed"] == pytest.approx(1650.0)

	listing = client.get("/orders", params={"session_id": sid}).json()
	assert listing["count"] == 8
	# Other sessions never see it.
	assert client.get("/orders", params={"session_id": _start()}).json()["count"] == 7


def test_quote_and_fee_schedule_prefill() -> None:
	quote = client.post("/pricing/quote", json={"payer": "BCBS", "line_items": [{"product_id": "P-1", "qty": 1}]})
	assert quote.status_code == 200
	warning = quote.json()["warnings"][0]

	prefill = client.get(warning["fee_schedule_link"].replace("/fee-schedules?", "/fee-schedules/prefill?"))
	assert prefill.json()["product_id"] == "P-1"
	assert prefill.json()["open_dialog"] is True


def test_draft_and_prefill() -> None:
	sid = _start()

	draft = client.post("/orders/draft", json={"session_id": sid, "first_name": "Grace"})
	assert draft.status_code == 200
	draft_id = draft.json()["order"]["id"]
	assert draft.json()["order"]["status"] == "Draft"

	prefill = client.get("/orders/new/prefill", params={"continue": draft_id, "session_id": sid}).json()
	assert prefill["continue_id"] == draft_id
	assert prefill["first_name"] == "Grace"

	stashed = client.put("/orders/form-draft", params={"session_id": sid}, json={"first_name": "Ada"})
	assert stashed.status_code == 200
	assert client.get("/orders/form-draft", params={"session_id": sid}).json()["draft"] == {"first_name": "Ada"}


def test_products_and_fee_schedules_routes() -> None:
	sid = _start()

	bad = client.post("/products", json={"session_id": sid})
	assert bad.status_code == 400
	assert bad.json()["detail"]["errors"]["name"] == "Product name is required"

	added = client.post(
		"/products",
		json={"session_id": sid, "name": "Walker", "hcpcs": "E0143", "vendor": "Drive", "cost": "40", "msrp": "95"},
	)
	assert added.json()["product"]["id"] == "P-13"
	assert len(client.get("/products", params={"session_id": sid}).json()["products"]) == 13

	fs = client.post("/fee-schedules", json={"session_id": sid, "payer": "Aetna", "product_id": "P-13", "allowed_amount": "80"})
	assert fs.status_code == 200
	assert fs.json()["fee_schedule"]["patient_share_percent"] == 20

	dup = client.post("/fee-schedules", json={"session_id": sid, "payer": "Aetna", "product_id": "P-13", "allowed_amount": "80"})
	assert dup.status_code == 400


def test_notes() -> None:
	sid = _start()
	response = client.post("/orders/ORD-1002/notes", json={"text": "Called patient", "session_id": sid})
	assert response.status_code == 200
	assert response.json()["order"]["notes"][-1]["author"] == "You"

	assert client.post("/orders/ORD-1002/notes", json={"text": " ", "session_id": sid}).status_code == 400


def test_attachments() -> None:
	sid = _start()
	params = {"session_id": sid}

	uploaded = client.post(
		"/orders/ORD-1002/attachments",
		params=params,
		files={"file": ("rx.pdf", b"%PDF-1.4 fake", "application/pdf")},
	)
	assert uploaded.status_code == 200
	attachment = uploaded.json()["attachment"]
	assert attachment["name"] == "rx.pdf"
	assert "content" not in attachment

	wrong_type = client.post(
		"/orders/ORD-1002/attachments", params=params, files={"file": ("scan.png", b"img", "image/png")}
	)
	assert wrong_type.status_code == 400
	assert wrong_type.json()["detail"] == "scan.png: PDF or Word only"

	download = client.get(f"/orders/ORD-1002/attachments/{attachment['id']}", params=params)
	assert download.content == b"%PDF-1.4 fake"

	listing = client.get("/orders/ORD-1002/attachments", params=params).json()["attachments"]
	assert [item["id"] for item in listing] == [attachment["id"]]

	removed = client.delete(f"/orders/ORD-1002/attachments/{attachment['id']}", params=params)
	assert removed.json()["attachments"] == []
	assert client.delete(f"/orders/ORD-1002/attachments/{attachment['id']}", params=params).status_code == 404


def test_attachment_names_outside_latin1_download() -> None:
	sid = _start()
	params = {"session_id": sid}

	uploaded = client.post(
		"/orders/ORD-1002/attachments", params=params, files={"file": ("处方.pdf", b"body", "application/pdf")}
	)
	assert uploaded.status_code == 200
	stored = [uploaded.json()["attachment"]]
	stored.append(attachments.add_attachment(sid, "ORD-1002", 'rx "final".docx', b"body"))

	expected = [
		('filename="download.pdf"', "filename*=UTF-8''%E5%A4%84%E6%96%B9.pdf"),
		('filename="rx _final.docx"', "filename*=UTF-8''rx%20%22final%22.docx"),
	]
	for attachment, (fallback, encoded) in zip(stored, expected):
		download = client.get(f"/orders/ORD-1002/attachments/{attachment['id']}", params=params)
		assert download.status_code == 200
		assert download.content == b"body"
		assert fallback in download.headers["content-disposition"]
		assert encoded in download.headers["content-disposition"]


def test_attachment_size_limit_and_word_files(monkeypatch) -> None:
	sid = _start()
	params = {"session_id": sid}
	monkeypatch.setattr(attachments, "MAX_BYTES", 16)

	too_big = client.post(
		"/orders/ORD-1002/attachments", params=params, files={"file": ("big.pdf", b"x" * 17, "application/pdf")}
	)
	assert too_big.status_code == 400
	assert too_big.json()["detail"].startswith("File too large: big.pdf")

	for name in ("letter.doc", "LETTER.DOCX"):
		uploaded = client.post(
			"/orders/ORD-1002/attachments", params=params, files={"file": (name, b"x" * 16, "application/msword")}
		)
		assert uploaded.status_code == 200
		assert uploaded.json()["attachment"]["name"] == name

	listing = client.get("/orders/ORD-1002/attachments", params=params).json()["attachments"]
	assert [item["name"] for item in listing] == ["letter.doc", "LETTER.DOCX"]


def test_session_lifecycle() -> None:
	sid = _start()
	sessions = client.get("/session/list").json()["sessions"]
	assert any(item["session_id"] == sid and item["is_current"] for item in sessions)

	assert client.delete(f"/session/{sid}").json()["status"] == "deleted"
	assert client.delete(f"/session/{sid}").status_code == 404
