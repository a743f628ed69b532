"""Order status workflow.

Orders move ``Draft -> Needs Approval -> Approved -> Docs Ready``. Rejection
sends an active order to ``Action Required``; resubmitting a draft or a
rejected order recomputes its initial status. Every function returns a new
``Order`` and leaves its input untouched.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Iterable

from backend.models import LineItem, Note, Order, OrderStatus, Product

LOGGER = logging.getLogger(__name__)

REJECTABLE_STATES = frozenset({OrderStatus.NEEDS_APPROVAL, OrderStatus.APPROVED})
EDITABLE_STATES = frozenset({OrderStatus.DRAFT, OrderStatus.ACTION_REQUIRED})


class InvalidTransition(ValueError):
    """Raised when an action is not allowed from the order's current status."""

    def __init__(self, order_id: str, status: OrderStatus, action: str) -> None:
        self.order_id = order_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} order {order_id} while it is '{status.value}'")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _new_note(author: str, text: str, prefix: str = "N") -> Note:
    return Note(id=f"{prefix}-{secrets.token_hex(4)}", author=author, text=text, timestamp=_now_iso())


def initial_status(products: Iterable[Product]) -> OrderStatus:
    """Status a freshly submitted order starts in."""

    if any(product.requires_approval for product in products):
        return OrderStatus.NEEDS_APPROVAL
    return OrderStatus.APPROVED


def items_requiring_approval(line_items: Iterable[LineItem], products: list[Product]) -> list[LineItem]:
    """Lines matching, by name or code, any catalog product that requires approval."""

    return [
        li
        for li in line_items
        if any(p.requires_approval and (p.name == li.product or p.hcpcs == li.hcpcs) for p in products)
    ]


def approve(order: Order) -> Order:
    if order.status != OrderStatus.NEEDS_APPROVAL:
        raise InvalidTransition(order.id, order.status, "approve")
    LOGGER.info("Order %s approved", order.id)
    return order.model_copy(update={"status": OrderStatus.APPROVED})


def reject(order: Order, reason: str, *, author: str = "Manager") -> Order:
    """Send an active order back for correction; the reason is required and becomes a note."""

    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValueError("Please provide a reason for rejection")
    if order.status not in REJECTABLE_STATES:
        raise InvalidTransition(order.id, order.status, "reject")

    note = _new_note(author, f"Order rejected: {cleaned}", prefix="N-reject")
    LOGGER.info("Order %s rejected: %s", order.id, cleaned)
    return order.model_copy(
        update={
            "status": OrderStatus.ACTION_REQUIRED,
            "rejection_reason": cleaned,
            "notes": [*order.notes, note],
        }
    )


def generate_documents(order: Order) -> Order:
    if order.status != OrderStatus.APPROVED:
        raise InvalidTransition(order.id, order.status, "generate documents for")
    LOGGER.info("Documents generated for order %s", order.id)
    return order.model_copy(update={"status": OrderStatus.DOCS_READY})


def resubmit(order: Order, products: Iterable[Product]) -> Order:
    """Submit a draft or corrected order again; clears any rejection."""

    if order.status not in EDITABLE_STATES:
        raise InvalidTransition(order.id, order.status, "resubmit")
    status = initial_status(products)
    LOGGER.info("Order %s resubmitted as '%s'", order.id, status.value)
    return order.model_copy(update={"status": status, "rejection_reason": None})


def add_note(order: Order, text: str, *, author: str = "You") -> Order:
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValueError("Note text is required")
    return order.model_copy(update={"notes": [*order.notes, _new_note(author or "You", cleaned)]})
