"""Reference data: fixture products, fee schedules and orders plus session additions."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from backend import session as session_store
from backend.config import PATIENT_SHARE_DEFAULTS, PAYERS, SAMPLES_DIR, SEED_SAMPLES
from backend.models import FeeSchedule, Order, Product
from backend.validation import FormValidationError, parse_amount

LOGGER = logging.getLogger(__name__)

_FIXTURE_CACHE: dict[str, list[dict[str, Any]]] = {}


def _load_fixture(name: str) -> list[dict[str, Any]]:
    if not SEED_SAMPLES:
        return []
    if name not in _FIXTURE_CACHE:
        path: Path = SAMPLES_DIR / f"{name}.json"
        if not path.exists():
            raise FileNotFoundError(f"Fixture file missing at {path}")
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        _FIXTURE_CACHE[name] = [row for row in payload if isinstance(row, dict)] if isinstance(payload, list) else []
    return [dict(row) for row in _FIXTURE_CACHE[name]]


def fixture_orders() -> list[Order]:
    return [Order.model_validate(row) for row in _load_fixture("orders")]


def list_products(session_id: str | None = None) -> list[Product]:
    rows = _load_fixture("products") + session_store.get_session_products(session_id)
    return [Product.model_validate(row) for row in rows]


def list_fee_schedules(session_id: str | None = None) -> list[FeeSchedule]:
    rows = _load_fixture("fee_schedules") + session_store.get_session_fee_schedules(session_id)
    return [FeeSchedule.model_validate(row) for row in rows]


def get_product(product_id: str, session_id: str | None = None) -> Product | None:
    return next((p for p in list_products(session_id) if p.id == product_id), None)


def find_product_for_line(name: str, hcpcs: str, products: list[Product]) -> Product | None:
    """Match a denormalized line item back to its catalog product by name or code."""

    return next((p for p in products if p.name == name or p.hcpcs == hcpcs), None)


def default_patient_share_percent(payer: str) -> int:
    return PATIENT_SHARE_DEFAULTS.get(payer, 20)


def _next_id(prefix: str, existing: list[str]) -> str:
    highest = 0
    for value in existing:
        if not value.startswith(prefix):
            continue
        try:
            highest = max(highest, int(value[len(prefix):]))
        except ValueError:
            continue
    return f"{prefix}{highest + 1}"


def validate_product_form(form: dict[str, Any]) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not str(form.get("name") or "").strip():
        errors["name"] = "Product name is required"
    if not str(form.get("hcpcs") or "").strip():
        errors["hcpcs"] = "HCPCS code is required"
    if not str(form.get("vendor") or "").strip():
        errors["vendor"] = "Vendor is required"
    for field, label in (("cost", "Cost"), ("msrp", "MSRP")):
        raw = str(form.get(field) or "")
        if not raw.strip():
            errors[field] = f"{label} is required"
        elif parse_amount(raw) is None:
            errors[field] = f"{label} must be a number ≥ 0"
    return errors


def add_product(session_id: str, form: dict[str, Any]) -> Product:
    """Validate and store a product for the rest of the session."""

    errors = validate_product_form(form)
    if errors:
        raise FormValidationError(errors, limit=4)

    existing = [p.id for p in list_products(session_id)]
    product = Product(
        id=_next_id("P-", existing),
        name=str(form["name"]).strip(),
        hcpcs=str(form["hcpcs"]).strip().upper(),
        vendor=str(form["vendor"]).strip(),
        cost=float(str(form["cost"]).strip()),
        msrp=float(str(form["msrp"]).strip()),
        requires_approval=bool(form.get("requires_approval")),
        requires_measurement=bool(form.get("requires_measurement")),
    )
    session_store.append_session_product(session_id, product.model_dump())
    LOGGER.info("Session %s added product %s (%s)", session_id, product.id, product.hcpcs)
    return product


def validate_fee_schedule_form(form: dict[str, Any], products: list[Product]) -> dict[str, str]:
    errors: dict[str, str] = {}
    payer = str(form.get("payer") or "")
    if payer not in PAYERS:
        errors["payer"] = "Payer is required"
    product_id = str(form.get("product_id") or "")
    if not product_id:
        errors["product_id"] = "Product is required"
    elif not any(p.id == product_id for p in products):
        errors["product_id"] = "Unknown product"
    raw = str(form.get("allowed_amount") or "")
    if not raw.strip():
        errors["allowed_amount"] = "Allowed amount is required"
    elif parse_amount(raw) is None:
        errors["allowed_amount"] = "Allowed amount must be a number ≥ 0"
    return errors


def add_fee_schedule(session_id: str, form: dict[str, Any]) -> FeeSchedule:
    """Store a new (payer, code) fee schedule; the patient share comes from the payer default."""

    products = list_products(session_id)
    errors = validate_fee_schedule_form(form, products)
    if errors:
        raise FormValidationError(errors, limit=3)

    payer = str(form["payer"])
    product = next(p for p in products if p.id == form["product_id"])
    schedules = list_fee_schedules(session_id)
    if any(fs.payer == payer and fs.hcpcs == product.hcpcs for fs in schedules):
        raise ValueError(f"Fee schedule already exists for {payer} / {product.hcpcs}")

    fee_schedule = FeeSchedule(
        id=_next_id("FS-", [fs.id for fs in schedules]),
        payer=payer,
        hcpcs=product.hcpcs,
        allowed_amount=float(str(form["allowed_amount"]).strip()),
        patient_share_percent=default_patient_share_percent(payer),
    )
    session_store.append_session_fee_schedule(session_id, fee_schedule.model_dump())
    LOGGER.info("Session %s added fee schedule %s for %s / %s", session_id, fee_schedule.id, payer, product.hcpcs)
    return fee_schedule


def fee_schedule_prefill(payer: str | None, hcpcs: str | None, session_id: str | None = None) -> dict[str, Any]:
    """Resolve ``?payer=&hcpcs=`` query parameters into a preselected add-fee-schedule form."""

    prefill: dict[str, Any] = {"payer": "", "product_id": "", "open_dialog": False, "patient_share_percent": None}
    if not payer or payer not in PAYERS:
        return prefill
    prefill["payer"] = payer
    prefill["patient_share_percent"] = default_patient_share_percent(payer)
    prefill["open_dialog"] = True
    if hcpcs:
        product = next((p for p in list_products(session_id) if p.hcpcs == hcpcs), None)
        if product is not None:
            prefill["product_id"] = product.id
    return prefill
