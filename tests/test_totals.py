from __future__ import annotations

import pytest

from backend.models import LineItem
from backend.orders import get_order
from backend.pricing import margin_percent, order_totals


def _line(allowed: float, cost: float, share: float = 0.0, qty: int = 1) -> LineItem:
	return LineItem(id="LI-x", product="Item", hcpcs="X0000", qty=qty, cost=cost, allowed_amount=allowed, patient_share=share)


def test_totals_extend_by_quantity() -> None:
	totals = order_totals([_line(550.0, 25.0, 110.0, qty=2), _line(890.0, 380.0, 178.0)])

	assert totals["total_allowed"] == pytest.approx(1990.0)
	assert totals["total_cost"] == pytest.approx(430.0)
	assert totals["total_patient_share"] == pytest.approx(398.0)
	assert totals["insurance_pays"] == pytest.approx(1592.0)


def test_empty_order_has_zero_totals() -> None:
	totals = order_totals([])
	assert totals["total_allowed"] == 0
	assert totals["margin"] == 0


def test_margin_zero_without_cost() -> None:
	assert margin_percent(500.0, 0.0) == 0.0
	assert order_totals([_line(500.0, 0.0)])["margin"] == 0.0


def test_margin_rounds_half_up_to_one_decimal() -> None:
	# (2450 - 1100) / 1100 = 1.227272...
	assert margin_percent(2450.0, 1100.0) == pytest.approx(122.7)
	assert margin_percent(900.0, 1000.0) == pytest.approx(-10.0)


def test_stored_totals_are_ignored() -> None:
	order = get_order("ORD-1005", None)

	assert order.total_allowed == pytest.approx(890.0 + 450.0 + 2 * 550.0)
	assert order.margin == pytest.approx(343.6)
