"""Field-level form validation shared by the intake and catalog forms."""

from __future__ import annotations

import re
from datetime import date

_NON_DIGITS = re.compile(r"\D")


class FormValidationError(ValueError):
	"""Raised when a submitted form has one or more invalid fields.

	`errors` maps field name to the first message reported for it. `messages`
	optionally lists every message in report order and then drives the summary;
	`limit` caps how many distinct messages go into that summary.
	"""

	def __init__(
		self,
		errors: dict[str, str],
		*,
		messages: list[str] | None = None,
		limit: int = 5,
		ellipsis: bool = False,
	) -> None:
		self.errors = dict(errors)
		self.messages = list(messages) if messages is not None else list(self.errors.values())
		self.limit = limit
		self.ellipsis = ellipsis
		super().__init__(self.description)

	@classmethod
	def from_issues(cls, issues: list[tuple[str, str]], **kwargs: object) -> "FormValidationError":
		errors: dict[str, str] = {}
		for field, message in issues:
			errors.setdefault(field, message)
		return cls(errors, messages=[message for _, message in issues], **kwargs)

	@property
	def description(self) -> str:
		unique: list[str] = []
		for message in self.messages:
			if message not in unique:
				unique.append(message)
		text = ". ".join(unique[: self.limit])
		if self.ellipsis and len(unique) > self.limit:
			text += " …"
		return text

	def to_payload(self) -> dict[str, object]:
		return {"message": "Please fix the form", "description": self.description, "errors": self.errors}


def is_numeric_text(value: str | None) -> bool:
	"""True when the value still has digits once separators like '-' or '()' are stripped."""

	digits = _NON_DIGITS.sub("", value or "")
	return bool(digits)


def parse_amount(raw: object) -> float | None:
	"""Parse a non-negative money amount entered as text; None when invalid."""

	text = str(raw if raw is not None else "").strip()
	if not text:
		return None
	try:
		value = float(text)
	except ValueError:
		return None
	if value != value or value < 0:
		return None
	return value


def parse_iso_date(raw: str | None) -> date | None:
	if not raw:
		return None
	try:
		return date.fromisoformat(str(raw).strip()[:10])
	except ValueError:
		return None
