from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_STATE_PATH = "data/tjhs-rental-storage.json"


def _int_env(name: str, default: str) -> int:
    raw = (os.environ.get(name) or default).strip()
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: str) -> float:
    raw = (os.environ.get(name) or default).strip()
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}") from exc


class RentalSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state_path: Optional[Path] = Path(DEFAULT_STATE_PATH)
    booking_window_days: int = Field(default=30, ge=0)
    reminder_max_attempts: int = Field(default=3, ge=1)
    reminder_retry_delay_seconds: float = Field(default=0.5, ge=0)
    reminder_workers: int = Field(default=4, ge=1)
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    school_name: str = "The Jannali High School"

    @classmethod
    def from_env(cls) -> "RentalSettings":
        raw_path = os.environ.get("RENTAL_STATE_PATH")
        if raw_path is None:
            state_path: Optional[Path] = Path(DEFAULT_STATE_PATH)
        else:
            # empty value keeps the state in memory only
            state_path = Path(raw_path.strip()) if raw_path.strip() else None
        return cls(
            state_path=state_path,
            booking_window_days=_int_env("RENTAL_BOOKING_WINDOW_DAYS", "30"),
            reminder_max_attempts=_int_env("RENTAL_REMINDER_MAX_ATTEMPTS", "3"),
            reminder_retry_delay_seconds=_float_env("RENTAL_REMINDER_RETRY_DELAY_SECONDS", "0.5"),
            reminder_workers=_int_env("RENTAL_REMINDER_WORKERS", "4"),
            admin_email=(os.environ.get("RENTAL_ADMIN_EMAIL") or "").strip() or None,
            admin_password=(os.environ.get("RENTAL_ADMIN_PASSWORD") or "").strip() or None,
            school_name=(os.environ.get("RENTAL_SCHOOL_NAME") or "").strip() or "The Jannali High School",
        )
