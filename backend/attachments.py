"""Per-order file attachments kept in session storage.

Files are limited to PDF or Word documents and stored base64 encoded, which
is enough for the dashboard to list and download them within the session.
"""

from __future__ import annotations

import base64
import logging
import secrets
from pathlib import Path
from typing import Any

from fastapi import HTTPException

from backend import orders
from backend import session as session_store
from backend.config import MAX_ATTACHMENT_BYTES
from backend.models import StoredAttachment

LOGGER = logging.getLogger(__name__)

MAX_BYTES = MAX_ATTACHMENT_BYTES

ALLOWED_EXT = {".pdf", ".doc", ".docx"}


def _metadata(attachment: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in attachment.items() if key != "content"}


def list_attachments(session_id: str | None, order_id: str) -> list[dict[str, Any]]:
    order = orders.get_order(order_id, session_id)
    return [_metadata(item) for item in session_store.get_order_attachments(session_id, order.id)]


def get_attachment(session_id: str | None, order_id: str, attachment_id: str) -> tuple[StoredAttachment, bytes]:
    order = orders.get_order(order_id, session_id)
    for item in session_store.get_order_attachments(session_id, order.id):
        if item.get("id") == attachment_id:
            attachment = StoredAttachment.model_validate(item)
            return attachment, base64.b64decode(attachment.content)
    raise KeyError(f"Attachment {attachment_id} not found on order {order.id}")


def add_attachment(
    session_id: str,
    order_id: str,
    filename: str,
    content: bytes,
    content_type: str | None = None,
) -> dict[str, Any]:
    """Validate and store one uploaded file; returns its metadata."""

    order = orders.get_order(order_id, session_id)
    name = Path(filename or "upload").name
    if len(content) > MAX_BYTES:
        LOGGER.warning("Rejected attachment %s for %s: too large", name, order.id)
        raise HTTPException(status_code=400, detail=f"File too large: {name} (max {MAX_BYTES // (1024 * 1024)}MB)")
    if Path(name).suffix.lower() not in ALLOWED_EXT:
        LOGGER.warning("Rejected attachment %s for %s: unsupported type", name, order.id)
        raise HTTPException(status_code=400, detail=f"{name}: PDF or Word only")

    existing = session_store.get_order_attachments(session_id, order.id)
    attachment = StoredAttachment(
        id=f"att-{secrets.token_hex(4)}",
        name=name,
        type=content_type or "",
        size=len(content),
        content=base64.b64encode(content).decode("ascii"),
    )
    existing.append(attachment.model_dump())
    session_store.set_order_attachments(session_id, order.id, existing)
    LOGGER.info("Stored attachment %s (%d bytes) on %s", name, len(content), order.id)
    return _metadata(attachment.model_dump())


def remove_attachment(session_id: str, order_id: str, attachment_id: str) -> list[dict[str, Any]]:
    order = orders.get_order(order_id, session_id)
    existing = session_store.get_order_attachments(session_id, order.id)
    remaining = [item for item in existing if item.get("id") != attachment_id]
    if len(remaining) == len(existing):
        raise KeyError(f"Attachment {attachment_id} not found on order {order.id}")
    session_store.set_order_attachments(session_id, order.id, remaining)
    return [_metadata(item) for item in remaining]
