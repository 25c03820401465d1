"""Configuration management for circdesk.

Loads configuration from environment variables and provides defaults.
Every lending policy number lives here so it can be tuned per library.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.environ.get(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _optional_decimal_env(name: str) -> Optional[Decimal]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    return _decimal_env(name, raw)


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path
    busy_timeout: float  # seconds a writer waits for the lock

    # Logging
    log_level: str

    # Free tier
    free_max_loans: int
    free_loan_days: int
    free_daily_fine: Decimal

    # Premium tiers (monthly / yearly)
    premium_max_loans: int
    premium_loan_days: int
    premium_daily_fine: Decimal
    yearly_fine_discount_percent: Decimal

    # Fines
    fine_block_threshold: Decimal  # pending balance above this blocks borrowing
    fine_grace_days: int
    fine_cap: Optional[Decimal]

    # Loans and reservations
    max_renewals: int
    hold_window_hours: int
    sweep_interval_seconds: int
    due_reminder_days: int  # loans due within this many days get a reminder

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "CIRCDESK_DB_PATH",
            str(Path.home() / ".circdesk" / "library.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            busy_timeout=float(os.environ.get("CIRCDESK_BUSY_TIMEOUT", "30")),
            log_level=os.environ.get("CIRCDESK_LOG_LEVEL", "WARNING").upper(),
            free_max_loans=int(os.environ.get("CIRCDESK_FREE_MAX_LOANS", "1")),
            free_loan_days=int(os.environ.get("CIRCDESK_FREE_LOAN_DAYS", "7")),
            free_daily_fine=_decimal_env("CIRCDESK_FREE_DAILY_FINE", "30"),
            premium_max_loans=int(os.environ.get("CIRCDESK_PREMIUM_MAX_LOANS", "4")),
            premium_loan_days=int(os.environ.get("CIRCDESK_PREMIUM_LOAN_DAYS", "20")),
            premium_daily_fine=_decimal_env("CIRCDESK_PREMIUM_DAILY_FINE", "15"),
            yearly_fine_discount_percent=_decimal_env(
                "CIRCDESK_YEARLY_FINE_DISCOUNT", "0"
            ),
            fine_block_threshold=_decimal_env("CIRCDESK_FINE_BLOCK_THRESHOLD", "0"),
            fine_grace_days=int(os.environ.get("CIRCDESK_FINE_GRACE_DAYS", "0")),
            fine_cap=_optional_decimal_env("CIRCDESK_FINE_CAP"),
            max_renewals=int(os.environ.get("CIRCDESK_MAX_RENEWALS", "2")),
            hold_window_hours=int(os.environ.get("CIRCDESK_HOLD_WINDOW_HOURS", "48")),
            sweep_interval_seconds=int(
                os.environ.get("CIRCDESK_SWEEP_INTERVAL", "300")
            ),
            due_reminder_days=int(os.environ.get("CIRCDESK_DUE_REMINDER_DAYS", "3")),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        # Check database directory is writable
        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        for name in ("free_max_loans", "premium_max_loans", "free_loan_days", "premium_loan_days"):
            if getattr(self, name) < 1:
                errors.append(f"{name} must be at least 1")

        for name in ("free_daily_fine", "premium_daily_fine", "fine_block_threshold"):
            if getattr(self, name) < 0:
                errors.append(f"{name} cannot be negative")

        if not Decimal("0") <= self.yearly_fine_discount_percent <= Decimal("100"):
            errors.append("yearly_fine_discount_percent must be between 0 and 100")

        if self.fine_cap is not None and self.fine_cap < 0:
            errors.append("fine_cap cannot be negative")

        if self.fine_grace_days < 0:
            errors.append("fine_grace_days cannot be negative")

        if self.max_renewals < 0:
            errors.append("max_renewals cannot be negative")

        if self.hold_window_hours < 1:
            errors.append("hold_window_hours must be at least 1")

        if self.sweep_interval_seconds < 1:
            errors.append("sweep_interval_seconds must be at least 1")

        if self.due_reminder_days < 0:
            errors.append("due_reminder_days cannot be negative")

        return errors


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
