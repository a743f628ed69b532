"""Configuration flags for the MedSupply backend."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final


def _get_bool(env_var: str, default: bool) -> bool:
	value = os.getenv(env_var)
	if value is None:
		return default
	return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_var: str, default: int) -> int:
	value = os.getenv(env_var)
	if value is None or not value.strip():
		return default
	try:
		return int(value)
	except ValueError:
		return default


DATA_ROOT: Final[Path] = Path(os.getenv("MEDSUPPLY_DATA_ROOT", "data"))
SAMPLES_DIR: Final[Path] = Path(__file__).resolve().parent.parent / "data" / "samples"

SEED_SAMPLES: Final[bool] = _get_bool("MEDSUPPLY_SEED_SAMPLES", True)
LOG_LEVEL: Final[str] = os.getenv("MEDSUPPLY_LOG_LEVEL", "INFO").upper()

MAX_ATTACHMENT_BYTES: Final[int] = _get_int("MEDSUPPLY_MAX_ATTACHMENT_MB", 4) * 1024 * 1024

PAYERS: Final[tuple[str, ...]] = ("Medicare", "BCBS", "Aetna")
PATIENT_SHARE_DEFAULTS: Final[dict[str, int]] = {"Medicare": 20, "Aetna": 20, "BCBS": 15}
