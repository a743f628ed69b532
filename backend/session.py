"""Session lifecycle helpers and the session-scoped key-value store.

Each session owns a directory under ``<data root>/user_sessions/<session_id>``
with a single ``storage.json`` document mapping fixed keys to JSON-encoded
string values. Readers treat absent or malformed values as empty.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import HTTPException

from backend.config import DATA_ROOT

LOGGER = logging.getLogger(__name__)

SESSION_ROOT = DATA_ROOT / "user_sessions"
STORAGE_FILENAME = "storage.json"
_SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

DOCS_READY_IDS_KEY = "medsupply-docs-ready-order-ids"
ORDER_ATTACHMENTS_KEY = "medsupply-order-attachments"
REJECTED_ORDERS_KEY = "medsupply-rejected-orders"
SESSION_ORDERS_KEY = "medsupply-orders"
SESSION_PRODUCTS_KEY = "medsupply-products"
SESSION_FEE_SCHEDULES_KEY = "medsupply-fee-schedules"
ORDER_FORM_DRAFT_KEY = "orderDraft"

_current_session_id: str | None = None


def _ensure_session_root() -> None:
    SESSION_ROOT.mkdir(parents=True, exist_ok=True)


def _write_json(target: Path, payload: Any) -> None:
    try:
        target.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    except OSError as exc:
        raise HTTPException(status_code=500, detail=f"unable to persist session artifact: {exc}") from exc


def _storage_path(session_id: str) -> Path:
    return session_dir(session_id) / STORAGE_FILENAME


def _read_storage(session_id: str) -> dict[str, str]:
    path = _storage_path(session_id)
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        LOGGER.warning("Session %s storage unreadable; treating as empty", session_id)
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(key): value for key, value in data.items() if isinstance(value, str)}


def set_current_session(session_id: str | None) -> None:
    global _current_session_id
    _current_session_id = session_id


def get_current_session() -> str | None:
    """Session used by requests that do not name one."""

    return _current_session_id


def session_dir(session_id: str) -> Path:
    return SESSION_ROOT / session_id


def _session_missing(session_id: str) -> HTTPException:
    known = [item["session_id"] for item in list_sessions()["sessions"]]
    return HTTPException(
        status_code=404,
        detail={"error": "session not found", "session_id": session_id, "available_sessions": known},
    )


def _checked_id(raw: str | None) -> str:
    session_id = str(raw or "").strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="session_id is required")
    if not _SAFE_ID_PATTERN.fullmatch(session_id):
        raise HTTPException(status_code=400, detail="invalid session_id")
    return session_id


def ensure_session_files(session_id: str) -> None:
    base = session_dir(session_id)
    if not base.exists():
        raise _session_missing(session_id)
    if not (base / STORAGE_FILENAME).exists():
        _write_json(base / STORAGE_FILENAME, {})


def resolve_session(session_id: str | None, *, required: bool = True) -> str | None:
    """Pick the session a request works in.

    An explicit id must exist and becomes the current session. Without one the
    current session is used; when there is none, ``required`` decides between
    a 400 and ``None`` (read-only requests then see fixture data only).
    """

    if str(session_id or "").strip():
        chosen = _checked_id(session_id)
        ensure_session_files(chosen)
        set_current_session(chosen)
        return chosen

    fallback = get_current_session()
    if fallback and session_dir(fallback).exists():
        ensure_session_files(fallback)
        return fallback

    if required:
        raise HTTPException(status_code=400, detail="No session. Call /session/start first.")
    return None


# Key-value access. Values are JSON-encoded strings, like browser sessionStorage.


def get_item(session_id: str, key: str) -> str | None:
    return _read_storage(session_id).get(key)


def set_item(session_id: str, key: str, value: str) -> None:
    ensure_session_files(session_id)
    data = _read_storage(session_id)
    data[key] = value
    _write_json(_storage_path(session_id), data)


def remove_item(session_id: str, key: str) -> None:
    ensure_session_files(session_id)
    data = _read_storage(session_id)
    if data.pop(key, None) is not None:
        _write_json(_storage_path(session_id), data)


def _load_json_list(session_id: str | None, key: str) -> list[Any]:
    if not session_id:
        return []
    raw = get_item(session_id, key)
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        return []
    return data if isinstance(data, list) else []


def _load_json_dict(session_id: str | None, key: str) -> dict[str, Any]:
    if not session_id:
        return {}
    raw = get_item(session_id, key)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _store_json(session_id: str, key: str, payload: Any) -> None:
    set_item(session_id, key, json.dumps(payload, ensure_ascii=False))


def get_docs_ready_order_ids(session_id: str | None) -> list[str]:
    return [str(item) for item in _load_json_list(session_id, DOCS_READY_IDS_KEY) if isinstance(item, str)]


def set_order_docs_ready(session_id: str, order_id: str) -> None:
    ids = get_docs_ready_order_ids(session_id)
    if order_id not in ids:
        ids.append(order_id)
        _store_json(session_id, DOCS_READY_IDS_KEY, ids)


def get_rejected_orders(session_id: str | None) -> dict[str, dict[str, str]]:
    data = _load_json_dict(session_id, REJECTED_ORDERS_KEY)
    return {
        key: value
        for key, value in data.items()
        if isinstance(value, dict) and isinstance(value.get("rejectionReason"), str)
    }


def set_order_rejected(session_id: str, order_id: str, rejection_reason: str) -> None:
    data = get_rejected_orders(session_id)
    data[order_id] = {"rejectionReason": rejection_reason}
    _store_json(session_id, REJECTED_ORDERS_KEY, data)


def clear_order_rejected(session_id: str, order_id: str) -> None:
    data = get_rejected_orders(session_id)
    if data.pop(order_id, None) is not None:
        _store_json(session_id, REJECTED_ORDERS_KEY, data)


def get_order_attachments(session_id: str | None, order_id: str) -> list[dict[str, Any]]:
    data = _load_json_dict(session_id, ORDER_ATTACHMENTS_KEY)
    stored = data.get(order_id)
    if not isinstance(stored, list):
        return []
    return [item for item in stored if isinstance(item, dict)]


def set_order_attachments(session_id: str, order_id: str, attachments: list[dict[str, Any]]) -> None:
    data = _load_json_dict(session_id, ORDER_ATTACHMENTS_KEY)
    data[order_id] = attachments
    _store_json(session_id, ORDER_ATTACHMENTS_KEY, data)


def get_session_orders(session_id: str | None) -> dict[str, dict[str, Any]]:
    data = _load_json_dict(session_id, SESSION_ORDERS_KEY)
    return {key: value for key, value in data.items() if isinstance(value, dict)}


def save_session_order(session_id: str, order: dict[str, Any]) -> None:
    data = get_session_orders(session_id)
    data[str(order["id"])] = order
    _store_json(session_id, SESSION_ORDERS_KEY, data)


def get_session_products(session_id: str | None) -> list[dict[str, Any]]:
    return [item for item in _load_json_list(session_id, SESSION_PRODUCTS_KEY) if isinstance(item, dict)]


def append_session_product(session_id: str, product: dict[str, Any]) -> None:
    rows = get_session_products(session_id)
    rows.append(product)
    _store_json(session_id, SESSION_PRODUCTS_KEY, rows)


def get_session_fee_schedules(session_id: str | None) -> list[dict[str, Any]]:
    return [item for item in _load_json_list(session_id, SESSION_FEE_SCHEDULES_KEY) if isinstance(item, dict)]


def append_session_fee_schedule(session_id: str, fee_schedule: dict[str, Any]) -> None:
    rows = get_session_fee_schedules(session_id)
    rows.append(fee_schedule)
    _store_json(session_id, SESSION_FEE_SCHEDULES_KEY, rows)


def get_order_form_draft(session_id: str | None) -> dict[str, Any]:
    return _load_json_dict(session_id, ORDER_FORM_DRAFT_KEY)


def set_order_form_draft(session_id: str, draft: dict[str, Any]) -> None:
    _store_json(session_id, ORDER_FORM_DRAFT_KEY, draft)


def clear_order_form_draft(session_id: str) -> None:
    remove_item(session_id, ORDER_FORM_DRAFT_KEY)


def _created_at(path: Path) -> str:
    try:
        ts = path.stat().st_mtime
    except OSError:
        ts = datetime.now(tz=timezone.utc).timestamp()
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _count_keys(session_dir_path: Path) -> int:
    target = session_dir_path / STORAGE_FILENAME
    if not target.exists():
        return 0
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return 0
    return len(data) if isinstance(data, dict) else 0


def list_sessions() -> dict[str, list[dict[str, Any]]]:
    """Known sessions, newest first, with how many storage keys each has written."""

    if not SESSION_ROOT.exists():
        return {"sessions": []}

    current = get_current_session()
    sessions = [
        {
            "session_id": path.name,
            "created_at": _created_at(path),
            "key_count": _count_keys(path),
            "is_current": path.name == current,
        }
        for path in SESSION_ROOT.iterdir()
        if path.is_dir()
    ]
    sessions.sort(key=lambda item: item["created_at"], reverse=True)
    return {"sessions": sessions}


def start_session() -> dict[str, str]:
    """Open a fresh session (empty storage) and make it current."""

    _ensure_session_root()
    for _ in range(8):
        session_id = str(uuid.uuid4())
        base = session_dir(session_id)
        try:
            base.mkdir(exist_ok=False)
        except FileExistsError:
            continue
        except OSError as exc:
            raise HTTPException(status_code=500, detail=f"unable to create session: {exc}") from exc

        _write_json(base / STORAGE_FILENAME, {})
        set_current_session(session_id)
        LOGGER.info("Started session %s", session_id)
        return {"session_id": session_id}

    raise HTTPException(status_code=500, detail="unable to allocate a session id")


def delete_session(session_id: str) -> dict[str, Any]:
    """Drop a session directory; every change made in it is discarded."""

    session_id = _checked_id(session_id)
    target = session_dir(session_id)
    if not target.exists():
        raise _session_missing(session_id)

    try:
        shutil.rmtree(target)
    except OSError as exc:
        raise HTTPException(status_code=500, detail=f"unable to delete session: {exc}") from exc

    if get_current_session() == session_id:
        set_current_session(None)

    LOGGER.info("Deleted session %s", session_id)
    return {"status": "deleted", "session_id": session_id}
