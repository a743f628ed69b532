from __future__ import annotations

import pytest

from backend import intake, orders
from backend.models import LineItemInput, OrderForm, OrderStatus, QuoteRequest
from backend.validation import FormValidationError
from backend.workflow import InvalidTransition


def _form(**overrides) -> OrderForm:
	values = {
		"first_name": "Ada",
		"last_name": "Lovelace",
		"dob": "1950-12-10",
		"phone": "(512) 555-0199",
		"self_pay": False,
		"payer": "Medicare",
		"insurance_id": "MBI-1",
		"group_number": "12345",
		"address": "1 Analytical Way",
		"city": "Austin",
		"state": "TX",
		"zip": "73301",
		"line_items": [LineItemInput(product_id="P-1", qty=1)],
	}
	values.update(overrides)
	return OrderForm(**values)


def test_empty_form_reports_first_five_messages() -> None:
	with pytest.raises(FormValidationError) as excinfo:
		intake.submit_order("unused", OrderForm())

	error = excinfo.value
	assert error.errors["first_name"] == "First name is required"
	assert error.errors["line_items"] == "Add at least one line item"
	assert error.description == (
		"First name is required. Last name is required. Date of birth is required. "
		"Phone is required. Phone must be a number …"
	)
	assert error.errors["phone"] == "Phone is required"
	assert error.to_payload()["message"] == "Please fix the form"


def test_numeric_fields_and_blank_product() -> None:
	with pytest.raises(FormValidationError) as excinfo:
		intake.submit_order("unused", _form(phone="call me", zip="abc", group_number="GRP", line_items=[LineItemInput(product_id="")]))
	assert excinfo.value.errors == {
		"phone": "Phone must be a number",
		"zip": "ZIP must be a number",
		"group_number": "Group number must be a number",
		"line_items": "Each line item must have a product selected",
	}


def test_messages_follow_form_order_with_blank_numbers() -> None:
	form = _form(first_name="", phone="", insurance_id="", group_number="", address="", zip="")

	assert intake.order_form_issues(form) == [
		("first_name", "First name is required"),
		("phone", "Phone is required"),
		("phone", "Phone must be a number"),
		("insurance_id", "Insurance ID is required"),
		("group_number", "Group number is required"),
		("group_number", "Group number must be a number"),
		("address", "Address is required"),
		("zip", "ZIP is required"),
		("zip", "ZIP must be a number"),
	]

	with pytest.raises(FormValidationError) as excinfo:
		intake.submit_order("unused", form)
	assert excinfo.value.description == (
		"First name is required. Phone is required. Phone must be a number. "
		"Insurance ID is required. Group number is required …"
	)


def test_self_pay_skips_insurance_fields() -> None:
	assert intake.order_form_issues(_form(self_pay=True, payer=None, insurance_id="", group_number="")) == []


def test_quote_warns_for_missing_schedule() -> None:
	result = intake.quote(
		QuoteRequest(payer="BCBS", line_items=[LineItemInput(product_id="P-1"), LineItemInput(product_id="P-4", qty=2)]),
		None,
	)

	assert result["total_allowed"] == pytest.approx(640.0)
	assert [w["hcpcs"] for w in result["warnings"]] == ["K0823"]
	assert result["warnings"][0]["fee_schedule_link"] == "/fee-schedules?payer=BCBS&hcpcs=K0823"


def test_quote_unknown_product() -> None:
	with pytest.raises(KeyError):
		intake.quote(QuoteRequest(payer="BCBS", line_items=[LineItemInput(product_id="P-999")]), None)


def test_submit_new_order(session_id: str) -> None:
	order, warnings = intake.submit_order(session_id, _form())

	assert order.id == "ORD-1008"
	assert order.status == OrderStatus.NEEDS_APPROVAL
	assert order.patient == "Ada Lovelace"
	assert order.total_allowed == pytest.approx(1650.0)
	assert order.line_items[0].patient_share == pytest.approx(330.0)
	assert warnings == []
	assert orders.get_order("ord-1008", session_id).id == "ORD-1008"


def test_submit_without_approval_items(session_id: str) -> None:
	order, warnings = intake.submit_order(session_id, _form(line_items=[LineItemInput(product_id="P-3")]))

	assert order.status == OrderStatus.APPROVED
	assert order.total_allowed == 0.0
	assert warnings[0]["message"] == "No fee schedule for E0260 under Medicare"


def test_self_pay_order(session_id: str) -> None:
	order, _ = intake.submit_order(
		session_id, _form(self_pay=True, payer=None, insurance_id="", group_number="", line_items=[LineItemInput(product_id="P-4", qty=2)])
	)
	assert order.payer == "Self-Pay"
	assert order.group_number == "N/A"
	assert order.total_allowed == pytest.approx(760.0)


def test_draft_then_continue(session_id: str) -> None:
	draft = intake.save_draft(session_id, OrderForm(first_name="Grace", line_items=[LineItemInput(product_id="")]))

	assert draft.status == OrderStatus.DRAFT
	assert draft.city == intake.PLACEHOLDER
	assert draft.line_items[0].product == intake.PLACEHOLDER

	prefill = intake.continue_prefill(draft.id, session_id)
	assert prefill["continue_id"] == draft.id
	assert prefill["first_name"] == "Grace"
	assert prefill["city"] == ""

	submitted, _ = intake.submit_order(session_id, _form(continue_id=draft.id))
	assert submitted.id == draft.id
	assert submitted.status == OrderStatus.NEEDS_APPROVAL


def test_continue_fixture_prefill() -> None:
	prefill = intake.continue_prefill("ORD-1001", None)

	assert prefill["first_name"] == "Margaret"
	assert prefill["last_name"] == "Chen"
	assert prefill["group_number"] == ""
	assert [li["product_id"] for li in prefill["line_items"]] == ["P-1", "P-9"]


def test_resubmit_rejected_order_clears_rejection(session_id: str) -> None:
	orders.reject_order(session_id, "ORD-1001", "Wrong insurance ID")
	assert orders.get_order("ORD-1001", session_id).status == OrderStatus.ACTION_REQUIRED

	resubmitted, _ = intake.submit_order(session_id, _form(continue_id="ORD-1001"))
	assert resubmitted.id == "ORD-1001"
	assert resubmitted.status == OrderStatus.NEEDS_APPROVAL
	assert orders.get_order("ORD-1001", session_id).rejection_reason is None


def test_continue_on_approved_order_is_refused(session_id: str) -> None:
	with pytest.raises(InvalidTransition):
		intake.submit_order(session_id, _form(continue_id="ORD-1002"))


def test_form_draft_stash(session_id: str) -> None:
	intake.stash_form_draft(session_id, {"first_name": "Ada", "session_id": session_id})
	assert intake.load_form_draft(session_id) == {"first_name": "Ada"}


def test_submit_and_draft_clear_stashed_form(session_id: str) -> None:
	intake.stash_form_draft(session_id, {"first_name": "Ada"})
	intake.submit_order(session_id, _form())
	assert intake.load_form_draft(session_id) == {}

	intake.stash_form_draft(session_id, {"first_name": "Grace"})
	intake.save_draft(session_id, OrderForm(first_name="Grace"))
	assert intake.load_form_draft(session_id) == {}


def test_priced_lines_carry_catalog_fields(session_id: str) -> None:
	result = intake.quote(QuoteRequest(payer="BCBS", line_items=[LineItemInput(product_id="P-4", qty=2)]), session_id)
	line = result["line_items"][0]

	assert line["product"] == "Pressure Mattress"
	assert line["hcpcs"] == "E0277"
	assert line["allowed_amount"] == pytest.approx(320.0)
	assert result["warnings"] == []
