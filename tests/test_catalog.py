from __future__ import annotations

import pytest

from backend import catalog, intake
from backend.models import LineItemInput, QuoteRequest
from backend.validation import FormValidationError


def test_fixtures_loaded() -> None:
	products = catalog.list_products()
	schedules = catalog.list_fee_schedules()

	assert len(products) == 12
	assert len(schedules) == 17
	assert len({(fs.payer, fs.hcpcs) for fs in schedules}) == len(schedules)


def test_add_product_validation_summary(session_id: str) -> None:
	with pytest.raises(FormValidationError) as excinfo:
		catalog.add_product(session_id, {"cost": "-3", "msrp": "abc"})

	error = excinfo.value
	assert error.errors["cost"] == "Cost must be a number ≥ 0"
	assert error.description == (
		"Product name is required. HCPCS code is required. Vendor is required. Cost must be a number ≥ 0"
	)


def test_add_product(session_id: str) -> None:
	product = catalog.add_product(
		session_id,
		{"name": "Walker", "hcpcs": "e0143", "vendor": "Drive Medical", "cost": "40", "msrp": "95.5"},
	)

	assert product.id == "P-13"
	assert product.hcpcs == "E0143"
	assert catalog.get_product("P-13", session_id) == product
	assert catalog.get_product("P-13", None) is None


def test_add_fee_schedule_enables_pricing(session_id: str) -> None:
	fee_schedule = catalog.add_fee_schedule(session_id, {"payer": "BCBS", "product_id": "P-1", "allowed_amount": "1500"})

	assert fee_schedule.id == "FS-37"
	assert fee_schedule.hcpcs == "K0823"
	assert fee_schedule.patient_share_percent == 15

	quote = intake.quote(QuoteRequest(payer="BCBS", line_items=[LineItemInput(product_id="P-1")]), session_id)
	assert quote["warnings"] == []
	assert quote["line_items"][0]["patient_share"] == pytest.approx(225.0)


def test_duplicate_fee_schedule_rejected(session_id: str) -> None:
	with pytest.raises(ValueError, match="already exists"):
		catalog.add_fee_schedule(session_id, {"payer": "Medicare", "product_id": "P-1", "allowed_amount": "10"})


def test_fee_schedule_form_errors(session_id: str) -> None:
	with pytest.raises(FormValidationError) as excinfo:
		catalog.add_fee_schedule(session_id, {"payer": "Cigna", "product_id": "P-404", "allowed_amount": "x"})
	assert excinfo.value.errors == {
		"payer": "Payer is required",
		"product_id": "Unknown product",
		"allowed_amount": "Allowed amount must be a number ≥ 0",
	}


def test_fee_schedule_prefill() -> None:
	assert catalog.fee_schedule_prefill("BCBS", "K0823") == {
		"payer": "BCBS",
		"product_id": "P-1",
		"open_dialog": True,
		"patient_share_percent": 15,
	}
	assert catalog.fee_schedule_prefill("Cigna", "K0823")["open_dialog"] is False
	assert catalog.fee_schedule_prefill("Aetna", "Z9999")["product_id"] == ""
