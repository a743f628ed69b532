"""New-order intake: form validation, line pricing, submit, draft and continue flows."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from backend import catalog, orders, workflow
from backend import session as session_store
from backend.config import PAYERS
from backend.models import LineItem, Order, OrderForm, OrderStatus, Product, QuoteRequest
from backend.pricing import order_totals, recalc_line_items
from backend.validation import FormValidationError, is_numeric_text, parse_iso_date

LOGGER = logging.getLogger(__name__)

PLACEHOLDER = "—"


def order_form_issues(form: OrderForm) -> list[tuple[str, str]]:
    """Every (field, message) problem in form order; a blank numeric field reports both messages."""

    issues: list[tuple[str, str]] = []
    insured = not form.self_pay

    def _required(field: str, value: str | None, message: str) -> None:
        if not (value or "").strip():
            issues.append((field, message))

    def _numeric(field: str, value: str | None, required: str, invalid: str) -> None:
        _required(field, value, required)
        if not is_numeric_text(value):
            issues.append((field, invalid))

    _required("first_name", form.first_name, "First name is required")
    _required("last_name", form.last_name, "Last name is required")
    if parse_iso_date(form.dob) is None:
        issues.append(("dob", "Date of birth is required"))
    _numeric("phone", form.phone, "Phone is required", "Phone must be a number")
    if insured:
        _required("insurance_id", form.insurance_id, "Insurance ID is required")
        if form.payer not in PAYERS:
            issues.append(("payer", "Payer is required"))
        _numeric("group_number", form.group_number, "Group number is required", "Group number must be a number")
    _required("address", form.address, "Address is required")
    _required("city", form.city, "City is required")
    _required("state", form.state, "State is required")
    _numeric("zip", form.zip, "ZIP is required", "ZIP must be a number")

    if not form.line_items:
        issues.append(("line_items", "Add at least one line item"))
    elif not all(item.product_id for item in form.line_items):
        issues.append(("line_items", "Each line item must have a product selected"))
    return issues


def fee_schedule_link(payer: str, hcpcs: str) -> str:
    return f"/fee-schedules?{urlencode({'payer': payer, 'hcpcs': hcpcs})}"


def _price_lines(
    items: list[Any],
    *,
    self_pay: bool,
    payer: str | None,
    session_id: str | None,
    placeholder: bool = False,
) -> tuple[list[LineItem], list[Product], list[dict[str, str]]]:
    products = catalog.list_products(session_id)
    by_id = {p.id: p for p in products}
    for item in items:
        if item.product_id and item.product_id not in by_id:
            raise KeyError(f"Product {item.product_id} not found")

    repriced = recalc_line_items(
        [item.model_dump() for item in items],
        self_pay=self_pay,
        payer=payer,
        products=products,
        fee_schedules=catalog.list_fee_schedules(session_id),
    )

    line_items: list[LineItem] = []
    selected: list[Product] = []
    warnings: list[dict[str, str]] = []
    blank = PLACEHOLDER if placeholder else ""
    for idx, row in enumerate(repriced, start=1):
        line_id = f"LI-{idx}"
        if not row.get("product_id"):
            line_items.append(LineItem(id=line_id, product=blank, hcpcs=blank, qty=row["qty"]))
            continue

        if not row["has_fee_schedule"] and payer:
            LOGGER.warning("No fee schedule for %s / %s", payer, row["hcpcs"])
            warnings.append(
                {
                    "line_item": line_id,
                    "payer": payer,
                    "product": row["product"],
                    "hcpcs": row["hcpcs"],
                    "message": f"No fee schedule for {row['hcpcs']} under {payer}",
                    "fee_schedule_link": fee_schedule_link(payer, row["hcpcs"]),
                }
            )
        selected.append(by_id[row["product_id"]])
        line_items.append(LineItem.model_validate({**row, "id": line_id}))
    return line_items, selected, warnings


def quote(request: QuoteRequest, session_id: str | None) -> dict[str, Any]:
    """Price the selected products for the chosen payer without creating anything."""

    line_items, _, warnings = _price_lines(
        request.line_items, self_pay=request.self_pay, payer=request.payer, session_id=session_id
    )
    totals = order_totals(line_items)
    return {
        "line_items": [li.model_dump() for li in line_items],
        "total_allowed": totals["total_allowed"],
        "margin": totals["margin"],
        "warnings": warnings,
    }


def _order_fields(form: OrderForm, *, draft: bool) -> dict[str, Any]:
    def _value(raw: str | None) -> str:
        text = (raw or "").strip()
        return text or (PLACEHOLDER if draft else "")

    patient = f"{form.first_name.strip()} {form.last_name.strip()}".strip()
    dob = parse_iso_date(form.dob)
    if form.self_pay:
        payer = "Self-Pay"
    else:
        payer = (form.payer or "").strip() or (PLACEHOLDER if draft else "")
    return {
        "patient": patient or (PLACEHOLDER if draft else ""),
        "payer": payer,
        "self_pay": form.self_pay,
        "address": _value(form.address),
        "city": _value(form.city),
        "state": _value(form.state),
        "zip": _value(form.zip),
        "phone": _value(form.phone),
        "dob": dob.isoformat() if dob else (PLACEHOLDER if draft else ""),
        "insurance_id": "" if form.self_pay else (form.insurance_id or "").strip(),
        "group_number": "N/A" if form.self_pay else (form.group_number or "").strip(),
    }


def _continued_order(form: OrderForm, session_id: str) -> Order | None:
    if not form.continue_id:
        return None
    order = orders.get_order(form.continue_id, session_id)
    if order.status not in workflow.EDITABLE_STATES:
        raise workflow.InvalidTransition(order.id, order.status, "edit")
    return order


def submit_order(session_id: str, form: OrderForm) -> tuple[Order, list[dict[str, str]]]:
    """Validate and submit the order form; returns the stored order and pricing warnings.

    Continuing a draft or rejected order resubmits it under its own id, otherwise a
    new id is allocated.
    """

    issues = order_form_issues(form)
    if issues:
        raise FormValidationError.from_issues(issues, limit=5, ellipsis=True)

    line_items, selected, warnings = _price_lines(
        form.line_items, self_pay=form.self_pay, payer=form.payer, session_id=session_id
    )
    fields = _order_fields(form, draft=False)
    existing = _continued_order(form, session_id)

    if existing is not None:
        edited = existing.model_copy(update={**fields, "line_items": line_items})
        order = workflow.resubmit(edited, selected)
        session_store.clear_order_rejected(session_id, order.id)
    else:
        order = Order(
            id=orders.next_order_id(session_id),
            status=workflow.initial_status(selected),
            updated="",
            line_items=line_items,
            **fields,
        )
    saved = orders.save_order(session_id, order)
    session_store.clear_order_form_draft(session_id)
    LOGGER.info("Order %s submitted as '%s'", saved.id, saved.status.value)
    return saved, warnings


def save_draft(session_id: str, form: OrderForm) -> Order:
    """Store the form as a Draft order without validating it."""

    line_items, _, _ = _price_lines(
        form.line_items, self_pay=form.self_pay, payer=form.payer, session_id=session_id, placeholder=True
    )
    fields = _order_fields(form, draft=True)
    existing = _continued_order(form, session_id)
    if existing is not None:
        session_store.clear_order_rejected(session_id, existing.id)
        order = existing.model_copy(
            update={**fields, "line_items": line_items, "status": OrderStatus.DRAFT, "rejection_reason": None}
        )
    else:
        order = Order(
            id=orders.next_order_id(session_id),
            status=OrderStatus.DRAFT,
            updated="",
            line_items=line_items,
            **fields,
        )
    saved = orders.save_order(session_id, order)
    session_store.clear_order_form_draft(session_id)
    LOGGER.info("Draft %s saved", saved.id)
    return saved


def continue_prefill(order_id: str, session_id: str | None) -> dict[str, Any]:
    """Turn an existing order back into new-order form values (``?continue=<id>``)."""

    order = orders.get_order(order_id, session_id)
    products = catalog.list_products(session_id)

    def _clean(value: str) -> str:
        return "" if value == PLACEHOLDER else value

    name_parts = _clean(order.patient).split()
    line_items: list[dict[str, Any]] = []
    for li in order.line_items:
        product = catalog.find_product_for_line(li.product, li.hcpcs, products)
        line_items.append(
            {
                "product_id": product.id if product else "",
                "product": li.product,
                "hcpcs": li.hcpcs,
                "qty": li.qty,
                "cost": li.cost,
                "allowed_amount": li.allowed_amount,
                "patient_share": li.patient_share,
            }
        )

    attachments = session_store.get_order_attachments(session_id, order.id)
    return {
        "continue_id": order.id,
        "first_name": name_parts[0] if name_parts else "",
        "last_name": " ".join(name_parts[1:]),
        "dob": parse_iso_date(order.dob).isoformat() if parse_iso_date(order.dob) else None,
        "phone": _clean(order.phone),
        "self_pay": order.self_pay,
        "payer": "" if order.self_pay else _clean(order.payer),
        "insurance_id": order.insurance_id,
        "group_number": "" if order.group_number == "N/A" else order.group_number,
        "address": _clean(order.address),
        "city": _clean(order.city),
        "state": _clean(order.state),
        "zip": _clean(order.zip),
        "line_items": line_items,
        "attachments": [{k: v for k, v in item.items() if k != "content"} for item in attachments],
    }


def stash_form_draft(session_id: str, draft: dict[str, Any]) -> dict[str, Any]:
    """Keep the in-progress form so the user can return after creating a missing fee schedule."""

    cleaned = {key: value for key, value in draft.items() if key != "session_id"}
    session_store.set_order_form_draft(session_id, cleaned)
    return cleaned


def load_form_draft(session_id: str | None) -> dict[str, Any]:
    return session_store.get_order_form_draft(session_id)
