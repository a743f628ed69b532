"""Per-line pricing against payer fee schedules, plus order totals and margin."""

from __future__ import annotations

import math
from typing import Any, Iterable, Sequence

from backend.models import FeeSchedule, LineItem, Pricing, Product


def find_fee_schedule(
	fee_schedules: Iterable[FeeSchedule],
	payer: str,
	hcpcs: str,
) -> FeeSchedule | None:
	"""Return the unique fee schedule for (payer, code), or None when the combination is missing."""

	return next((fs for fs in fee_schedules if fs.payer == payer and fs.hcpcs == hcpcs), None)


def resolve_pricing(
	product: Product,
	*,
	self_pay: bool,
	payer: str | None,
	fee_schedules: Sequence[FeeSchedule],
) -> Pricing:
	"""Price one unit of a product.

	Self-pay orders pay list price and skip the fee-schedule lookup. With no payer
	chosen the line is simply unpriced. A payer without a schedule for the code
	prices at zero and flags `has_fee_schedule=False` so callers can prompt the
	user to clear the line or create the missing schedule.
	"""

	if self_pay:
		return Pricing(allowed_amount=product.msrp, patient_share=product.msrp)
	if not payer:
		return Pricing()

	fee_schedule = find_fee_schedule(fee_schedules, payer, product.hcpcs)
	if fee_schedule is None:
		return Pricing(has_fee_schedule=False)

	patient_share = fee_schedule.allowed_amount * (fee_schedule.patient_share_percent / 100)
	return Pricing(allowed_amount=fee_schedule.allowed_amount, patient_share=patient_share)


def recalc_line_items(
	items: Sequence[dict[str, Any]],
	*,
	self_pay: bool,
	payer: str | None,
	products: Sequence[Product],
	fee_schedules: Sequence[FeeSchedule],
) -> list[dict[str, Any]]:
	"""Re-price form line items after the payer or self-pay flag changes.

	Rows pointing at a known product get its name, code, cost and measurement flag
	copied in, the per-unit price, and `has_fee_schedule`. Rows without a product,
	or pointing at an unknown product, are returned untouched.
	"""

	repriced: list[dict[str, Any]] = []
	for item in items:
		product_id = item.get("product_id")
		product = next((p for p in products if p.id == product_id), None) if product_id else None
		if product is None:
			repriced.append(dict(item))
			continue
		pricing = resolve_pricing(product, self_pay=self_pay, payer=payer, fee_schedules=fee_schedules)
		repriced.append(
			{
				**item,
				"product": product.name,
				"hcpcs": product.hcpcs,
				"cost": product.cost,
				"has_measurement": product.requires_measurement,
				"allowed_amount": pricing.allowed_amount,
				"patient_share": pricing.patient_share,
				"has_fee_schedule": pricing.has_fee_schedule,
			}
		)
	return repriced


def _round_half_up(value: float) -> float:
	return math.floor(value + 0.5)


def margin_percent(total_allowed: float, total_cost: float) -> float:
	"""Margin over cost in percent, one decimal place; zero when there is no cost."""

	if total_cost <= 0:
		return 0.0
	return _round_half_up((total_allowed - total_cost) / total_cost * 1000) / 10


def order_totals(line_items: Iterable[LineItem]) -> dict[str, float]:
	"""Aggregate extended amounts across an order's lines."""

	items = list(line_items)
	total_allowed = sum(li.allowed_amount * li.qty for li in items)
	total_cost = sum(li.cost * li.qty for li in items)
	total_patient_share = sum(li.patient_share * li.qty for li in items)
	return {
		"total_allowed": total_allowed,
		"total_cost": total_cost,
		"total_patient_share": total_patient_share,
		"insurance_pays": total_allowed - total_patient_share,
		"margin": margin_percent(total_allowed, total_cost),
	}
