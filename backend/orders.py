"""Order book: fixture orders overlaid with everything the current session changed."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable

from backend import catalog, workflow
from backend import session as session_store
from backend.models import Order, OrderStatus
from backend.pricing import order_totals

LOGGER = logging.getLogger(__name__)

OPEN_STATES = frozenset({OrderStatus.DRAFT, OrderStatus.NEEDS_APPROVAL})


def with_totals(order: Order) -> Order:
    """Derive total allowed and margin from the line items; stored figures are ignored."""

    totals = order_totals(order.line_items)
    return order.model_copy(update={"total_allowed": totals["total_allowed"], "margin": totals["margin"]})


def _apply_overlays(order: Order, rejected: dict[str, dict[str, str]], docs_ready: list[str]) -> Order:
    rejection = rejected.get(order.id)
    if rejection is not None:
        return order.model_copy(
            update={"status": OrderStatus.ACTION_REQUIRED, "rejection_reason": rejection["rejectionReason"]}
        )
    if order.id in docs_ready:
        return order.model_copy(update={"status": OrderStatus.DOCS_READY})
    return order


def load_orders(session_id: str | None) -> list[Order]:
    """Every order visible in the session, fixtures first, in stable order."""

    merged: dict[str, Order] = {order.id: order for order in catalog.fixture_orders()}
    for order_id, payload in session_store.get_session_orders(session_id).items():
        try:
            merged[order_id] = Order.model_validate(payload)
        except ValueError:
            LOGGER.warning("Ignoring malformed session order %s", order_id)

    rejected = session_store.get_rejected_orders(session_id)
    docs_ready = session_store.get_docs_ready_order_ids(session_id)
    return [with_totals(_apply_overlays(order, rejected, docs_ready)) for order in merged.values()]


def get_order(order_id: str, session_id: str | None) -> Order:
    needle = (order_id or "").strip().lower()
    for order in load_orders(session_id):
        if order.id.lower() == needle:
            return order
    raise KeyError(f"Order {order_id} not found")


def filter_orders(
    orders: Iterable[Order],
    *,
    search: str | None = None,
    status: str | None = None,
    payer: str | None = None,
) -> list[Order]:
    term = (search or "").strip().lower()
    status_filter = None if not status or status == "all" else status
    payer_filter = None if not payer or payer == "all" else payer

    matched: list[Order] = []
    for order in orders:
        if term and term not in order.patient.lower() and term not in order.id.lower():
            continue
        if status_filter and order.status.value != status_filter:
            continue
        if payer_filter and order.payer != payer_filter:
            continue
        matched.append(order)
    return matched


def order_metrics(orders: Iterable[Order]) -> dict[str, int]:
    items = list(orders)
    return {
        "open": sum(1 for o in items if o.status in OPEN_STATES),
        "needs_approval": sum(1 for o in items if o.status == OrderStatus.NEEDS_APPROVAL),
        "docs_ready": sum(1 for o in items if o.status == OrderStatus.DOCS_READY),
    }


def next_order_id(session_id: str | None) -> str:
    highest = 1000
    for order in load_orders(session_id):
        try:
            highest = max(highest, int(order.id.split("-", 1)[1]))
        except (IndexError, ValueError):
            continue
    return f"ORD-{highest + 1}"


def save_order(session_id: str, order: Order) -> Order:
    """Persist the session copy of an order, stamping today's date."""

    stamped = order.model_copy(update={"updated": date.today().isoformat()})
    payload = stamped.model_dump(mode="json", exclude={"total_allowed", "margin"})
    session_store.save_session_order(session_id, payload)
    return with_totals(stamped)


def order_detail(order: Order, session_id: str | None) -> dict[str, Any]:
    """Order payload for the detail view: totals, approval flags and available actions."""

    products = catalog.list_products(session_id)
    flagged = workflow.items_requiring_approval(order.line_items, products)
    actions: list[str] = []
    if order.status in workflow.EDITABLE_STATES:
        actions.append("continue" if order.status == OrderStatus.DRAFT else "edit")
    if order.status in workflow.REJECTABLE_STATES:
        actions.append("reject")
    if order.status == OrderStatus.NEEDS_APPROVAL:
        actions.append("approve")
    if order.status == OrderStatus.APPROVED:
        actions.append("generate_docs")
    return {
        "order": order.model_dump(mode="json"),
        "totals": order_totals(order.line_items),
        "items_requiring_approval": [li.id for li in flagged],
        "actions": actions,
    }


def approve_order(session_id: str, order_id: str) -> Order:
    order = workflow.approve(get_order(order_id, session_id))
    return save_order(session_id, order)


def reject_order(session_id: str, order_id: str, reason: str) -> Order:
    order = workflow.reject(get_order(order_id, session_id), reason)
    session_store.set_order_rejected(session_id, order.id, order.rejection_reason or "")
    return save_order(session_id, order)


def generate_order_documents(session_id: str, order_id: str) -> Order:
    order = workflow.generate_documents(get_order(order_id, session_id))
    session_store.set_order_docs_ready(session_id, order.id)
    return save_order(session_id, order)


def add_order_note(session_id: str, order_id: str, text: str, author: str | None = None) -> Order:
    order = workflow.add_note(get_order(order_id, session_id), text, author=author or "You")
    return save_order(session_id, order)
