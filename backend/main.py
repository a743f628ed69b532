"""FastAPI application for the MedSupply order-management backend."""

from __future__ import annotations

import logging
import re
import unicodedata
from io import BytesIO
from pathlib import PurePath
from typing import Any
from urllib.parse import quote

from fastapi import Body, File, FastAPI, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse, StreamingResponse

from backend import attachments, catalog, intake, orders
from backend.config import LOG_LEVEL, PAYERS
from backend.documents import build_document, build_document_docx, build_document_pdf, list_documents
from backend.models import FeeScheduleForm, NoteRequest, OrderForm, OrderStatus, ProductForm, QuoteRequest, RejectRequest
from backend.session import (
	delete_session,
	list_sessions,
	resolve_session,
	start_session,
)
from backend.validation import FormValidationError
from backend.workflow import InvalidTransition

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
LOGGER = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _http_error(exc: Exception) -> HTTPException:
	"""Translate a domain exception into the HTTP error the dashboard expects."""

	if isinstance(exc, FormValidationError):
		return HTTPException(status_code=400, detail=exc.to_payload())
	if isinstance(exc, InvalidTransition):
		return HTTPException(status_code=409, detail=str(exc))
	if isinstance(exc, KeyError):
		message = exc.args[0] if exc.args else "not found"
		return HTTPException(status_code=404, detail=str(message))
	return HTTPException(status_code=400, detail=str(exc))


def _order_payload(order: Any) -> dict[str, Any]:
	return order.model_dump(mode="json")


def _content_disposition(filename: str) -> str:
	"""Attachment header safe for any file name: ASCII fallback plus the RFC 5987 UTF-8 form."""

	path = PurePath(filename or "download")
	stem = unicodedata.normalize("NFKD", path.stem).encode("ascii", "ignore").decode("ascii")
	stem = re.sub(r"[^A-Za-z0-9._ -]", "_", stem).strip(" ._") or "download"
	suffix = re.sub(r"[^A-Za-z0-9.]", "", path.suffix)
	return f"attachment; filename=\"{stem}{suffix}\"; filename*=UTF-8''{quote(path.name, safe='')}"


app = FastAPI(title="MedSupply", version="0.1.0")

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
	"""Redirect callers to the interactive documentation."""
	return RedirectResponse(url="/docs")


@app.get("/health")
async def health_check() -> dict[str, object]:
	"""Return readiness metadata for external monitors."""
	return {"ok": True, "service": "MedSupply", "version": "0.1.0"}


@app.post("/session/start")
async def session_start_route() -> dict[str, str]:
	"""Create and initialize a new session."""
	return start_session()


@app.get("/session/list")
async def session_list_route() -> dict[str, Any]:
	"""List known sessions and their metadata."""
	return list_sessions()


@app.delete("/session/{session_id}")
async def session_delete_route(session_id: str) -> dict[str, Any]:
	"""Drop a session and every change made in it."""
	return delete_session(session_id)


@app.get("/products")
async def products_route(session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=False)
	return {"products": [p.model_dump() for p in catalog.list_products(resolved)]}


@app.post("/products")
async def add_product_route(payload: ProductForm) -> dict[str, Any]:
	"""Add a catalog product for the rest of the session."""

	resolved = resolve_session(payload.session_id, required=True)
	try:
		product = catalog.add_product(resolved, payload.model_dump(exclude={"session_id"}))
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"product": product.model_dump()}


@app.get("/fee-schedules")
async def fee_schedules_route(session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=False)
	return {
		"payers": list(PAYERS),
		"fee_schedules": [fs.model_dump() for fs in catalog.list_fee_schedules(resolved)],
	}


@app.get("/fee-schedules/prefill")
async def fee_schedule_prefill_route(
	payer: str | None = Query(None),
	hcpcs: str | None = Query(None),
	session_id: str | None = Query(None),
) -> dict[str, Any]:
	"""Preselect the add-fee-schedule dialog from a missing-schedule link."""

	resolved = resolve_session(session_id, required=False)
	return catalog.fee_schedule_prefill(payer, hcpcs, resolved)


@app.post("/fee-schedules")
async def add_fee_schedule_route(payload: FeeScheduleForm) -> dict[str, Any]:
	resolved = resolve_session(payload.session_id, required=True)
	try:
		fee_schedule = catalog.add_fee_schedule(resolved, payload.model_dump(exclude={"session_id"}))
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"fee_schedule": fee_schedule.model_dump()}


@app.post("/pricing/quote")
async def pricing_quote_route(payload: QuoteRequest) -> dict[str, Any]:
	"""Price line items for a payer without creating an order."""

	resolved = resolve_session(payload.session_id, required=False)
	try:
		return intake.quote(payload, resolved)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc


@app.get("/orders")
async def orders_route(
	search: str | None = Query(None),
	status: str | None = Query(None),
	payer: str | None = Query(None),
	session_id: str | None = Query(None),
) -> dict[str, Any]:
	"""List orders with the dashboard filters applied."""

	if status and status != "all" and status not in {s.value for s in OrderStatus}:
		raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")
	resolved = resolve_session(session_id, required=False)
	matched = orders.filter_orders(orders.load_orders(resolved), search=search, status=status, payer=payer)
	return {"orders": [_order_payload(o) for o in matched], "count": len(matched)}


@app.get("/orders/metrics")
async def order_metrics_route(session_id: str | None = Query(None)) -> dict[str, int]:
	resolved = resolve_session(session_id, required=False)
	return orders.order_metrics(orders.load_orders(resolved))


@app.get("/orders/new/prefill")
async def order_prefill_route(
	continue_id: str | None = Query(None, alias="continue"),
	session_id: str | None = Query(None),
) -> dict[str, Any]:
	"""Form values for the new-order page, optionally continuing an existing order."""

	resolved = resolve_session(session_id, required=False)
	if not continue_id:
		return {"continue_id": None, "line_items": [], "attachments": [], "draft": intake.load_form_draft(resolved)}
	try:
		return intake.continue_prefill(continue_id, resolved)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc


@app.get("/orders/form-draft")
async def get_form_draft_route(session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=False)
	return {"draft": intake.load_form_draft(resolved)}


@app.put("/orders/form-draft")
async def put_form_draft_route(
	payload: dict[str, Any] = Body(...),
	session_id: str | None = Query(None),
) -> dict[str, Any]:
	"""Stash the in-progress order form before leaving to create a fee schedule."""

	hint = session_id or payload.get("session_id")
	resolved = resolve_session(str(hint) if hint else None, required=True)
	return {"draft": intake.stash_form_draft(resolved, payload)}


@app.post("/orders")
async def submit_order_route(payload: OrderForm) -> dict[str, Any]:
	"""Validate, price and submit the new-order form."""

	resolved = resolve_session(payload.session_id, required=True)
	try:
		order, warnings = intake.submit_order(resolved, payload)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"order": _order_payload(order), "warnings": warnings}


@app.post("/orders/draft")
async def save_draft_route(payload: OrderForm) -> dict[str, Any]:
	resolved = resolve_session(payload.session_id, required=True)
	try:
		order = intake.save_draft(resolved, payload)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"order": _order_payload(order)}


@app.get("/orders/{order_id}")
async def order_detail_route(order_id: str, session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=False)
	try:
		order = orders.get_order(order_id, resolved)
	except KeyError as exc:
		raise _http_error(exc) from exc
	return orders.order_detail(order, resolved)


@app.post("/orders/{order_id}/approve")
async def approve_order_route(order_id: str, session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=True)
	try:
		order = orders.approve_order(resolved, order_id)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"order": _order_payload(order)}


@app.post("/orders/{order_id}/reject")
async def reject_order_route(order_id: str, payload: RejectRequest) -> dict[str, Any]:
	"""Reject an order with a mandatory reason."""

	resolved = resolve_session(payload.session_id, required=True)
	try:
		order = orders.reject_order(resolved, order_id, payload.reason)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"order": _order_payload(order)}


@app.post("/orders/{order_id}/documents/generate")
async def generate_documents_route(order_id: str, session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=True)
	try:
		order = orders.generate_order_documents(resolved, order_id)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"order": _order_payload(order), "documents": list_documents(order)}


@app.post("/orders/{order_id}/notes")
async def add_note_route(order_id: str, payload: NoteRequest) -> dict[str, Any]:
	resolved = resolve_session(payload.session_id, required=True)
	try:
		order = orders.add_order_note(resolved, order_id, payload.text, payload.author)
	except (KeyError, ValueError) as exc:
		raise _http_error(exc) from exc
	return {"order": _order_payload(order)}


@app.get("/orders/{order_id}/attachments")
async def list_attachments_route(order_id: str, session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=False)
	try:
		items = attachments.list_attachments(resolved, order_id)
	except KeyError as exc:
		raise _http_error(exc) from exc
	return {"attachments": items}


@app.post("/orders/{order_id}/attachments")
async def add_attachment_route(
	order_id: str,
	file: UploadFile = File(...),
	session_id: str | None = Query(None),
) -> dict[str, Any]:
	"""Attach a PDF or Word document to an order."""

	content = await file.read()
	resolved = resolve_session(session_id, required=True)
	try:
		item = attachments.add_attachment(resolved, order_id, file.filename or "upload", content, file.content_type)
	except KeyError as exc:
		raise _http_error(exc) from exc
	return {"attachment": item}


@app.get("/orders/{order_id}/attachments/{attachment_id}")
async def download_attachment_route(
	order_id: str,
	attachment_id: str,
	session_id: str | None = Query(None),
) -> StreamingResponse:
	resolved = resolve_session(session_id, required=False)
	try:
		item, content = attachments.get_attachment(resolved, order_id, attachment_id)
	except KeyError as exc:
		raise _http_error(exc) from exc
	headers = {"Content-Disposition": _content_disposition(item.name)}
	return StreamingResponse(BytesIO(content), media_type=item.type or "application/octet-stream", headers=headers)


@app.delete("/orders/{order_id}/attachments/{attachment_id}")
async def remove_attachment_route(
	order_id: str,
	attachment_id: str,
	session_id: str | None = Query(None),
) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=True)
	try:
		remaining = attachments.remove_attachment(resolved, order_id, attachment_id)
	except KeyError as exc:
		raise _http_error(exc) from exc
	return {"attachments": remaining}


@app.get("/orders/{order_id}/documents")
async def list_documents_route(order_id: str, session_id: str | None = Query(None)) -> dict[str, Any]:
	resolved = resolve_session(session_id, required=False)
	try:
		order = orders.get_order(order_id, resolved)
	except KeyError as exc:
		raise _http_error(exc) from exc
	return {"order_id": order.id, "status": order.status.value, "documents": list_documents(order)}


@app.get("/orders/{order_id}/documents/{kind}")
async def document_route(
	order_id: str,
	kind: str,
	format: str = Query("json"),
	session_id: str | None = Query(None),
):
	"""Render one order document as JSON, DOCX or PDF."""

	fmt = (format or "json").strip().lower()
	if fmt not in {"json", "docx", "pdf"}:
		raise HTTPException(status_code=400, detail="format must be one of json, docx, pdf")

	resolved = resolve_session(session_id, required=False)
	try:
		order = orders.get_order(order_id, resolved)
		if fmt == "json":
			return build_document(order, kind)
		content = build_document_docx(order, kind) if fmt == "docx" else build_document_pdf(order, kind)
	except KeyError as exc:
		raise _http_error(exc) from exc

	media_type = DOCX_MEDIA_TYPE if fmt == "docx" else "application/pdf"
	filename = f"{order.id}_{kind}.{fmt}"
	headers = {"Content-Disposition": _content_disposition(filename)}
	return StreamingResponse(BytesIO(content), media_type=media_type, headers=headers)
