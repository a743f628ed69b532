"""Shared data models for MedSupply's backend services."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
	"""Lifecycle state of an order."""

	DRAFT = "Draft"
	NEEDS_APPROVAL = "Needs Approval"
	APPROVED = "Approved"
	DOCS_READY = "Docs Ready"
	ACTION_REQUIRED = "Action Required"


class Product(BaseModel):
	"""Catalog entry for a billable piece of equipment."""

	id: str
	name: str
	hcpcs: str
	vendor: str
	cost: float
	msrp: float
	requires_approval: bool = False
	requires_measurement: bool = False


class FeeSchedule(BaseModel):
	"""Allowed amount a payer reimburses for one billing code."""

	id: str
	payer: str
	hcpcs: str
	allowed_amount: float
	patient_share_percent: float


class LineItem(BaseModel):
	"""Order line with product details copied at creation time.

	`allowed_amount` and `patient_share` are per unit.
	"""

	id: str
	product: str
	hcpcs: str
	qty: int = 1
	cost: float = 0.0
	allowed_amount: float = 0.0
	patient_share: float = 0.0
	has_measurement: bool = False


class Note(BaseModel):
	id: str
	author: str
	text: str
	timestamp: str


class Order(BaseModel):
	id: str
	patient: str
	payer: str
	status: OrderStatus
	total_allowed: float = 0.0
	margin: float = 0.0
	updated: str
	self_pay: bool = False
	address: str = ""
	city: str = ""
	state: str = ""
	zip: str = ""
	phone: str = ""
	dob: str = ""
	insurance_id: str = ""
	group_number: str = "N/A"
	line_items: list[LineItem] = Field(default_factory=list)
	notes: list[Note] = Field(default_factory=list)
	rejection_reason: str | None = None


class StoredAttachment(BaseModel):
	"""Attachment kept in session storage; `content` is base64 encoded."""

	id: str
	name: str
	type: str = ""
	size: int
	content: str


class Pricing(BaseModel):
	"""Per-unit pricing for a product under a payer (or self-pay)."""

	allowed_amount: float = 0.0
	patient_share: float = 0.0
	has_fee_schedule: bool = True


class LineItemInput(BaseModel):
	"""Line item as submitted by the order form."""

	product_id: str = ""
	qty: int = Field(1, ge=1)


class OrderForm(BaseModel):
	"""Raw new-order form. Fields stay loose so validation can report every problem at once."""

	first_name: str = ""
	last_name: str = ""
	dob: str | None = None
	phone: str = ""
	self_pay: bool = False
	payer: str | None = None
	insurance_id: str | None = None
	group_number: str | None = None
	address: str = ""
	city: str = ""
	state: str = ""
	zip: str = ""
	line_items: list[LineItemInput] = Field(default_factory=list)
	continue_id: str | None = None
	session_id: str | None = None


class QuoteRequest(BaseModel):
	payer: str | None = None
	self_pay: bool = False
	line_items: list[LineItemInput] = Field(default_factory=list)
	session_id: str | None = None


class RejectRequest(BaseModel):
	reason: str = ""
	session_id: str | None = None


class NoteRequest(BaseModel):
	text: str = ""
	author: str | None = None
	session_id: str | None = None


class ProductForm(BaseModel):
	"""Add-product form; numeric fields arrive as text and are validated server-side."""

	name: str = ""
	hcpcs: str = ""
	vendor: str = ""
	cost: str = ""
	msrp: str = ""
	requires_approval: bool = False
	requires_measurement: bool = False
	session_id: str | None = None


class FeeScheduleForm(BaseModel):
	payer: str = ""
	product_id: str = ""
	allowed_amount: str = ""
	session_id: str | None = None
