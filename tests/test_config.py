"""Tests for configuration loading."""

from decimal import Decimal
from pathlib import Path

import pytest

from circdesk.config import Config, get_config, reset_config
from conftest import make_config


@pytest.fixture
def clean_env(monkeypatch):
    """Remove any CIRCDESK_* variables from the environment."""
    import os

    for name in list(os.environ):
        if name.startswith("CIRCDESK_"):
            monkeypatch.delenv(name)
    return monkeypatch


class TestFromEnv:
    """Tests for Config.from_env."""

    def test_defaults(self, clean_env):
        """Test stock policy numbers."""
        config = Config.from_env()

        assert config.free_max_loans == 1
        assert config.free_loan_days == 7
        assert config.free_daily_fine == Decimal("30")
        assert config.premium_max_loans == 4
        assert config.premium_loan_days == 20
        assert config.premium_daily_fine == Decimal("15")
        assert config.max_renewals == 2
        assert config.hold_window_hours == 48
        assert config.due_reminder_days == 3
        assert config.fine_block_threshold == Decimal("0")
        assert config.fine_cap is None
        assert config.db_path == Path.home() / ".circdesk" / "library.db"

    def test_overrides(self, clean_env, tmp_path):
        """Test values are read from CIRCDESK_* variables."""
        clean_env.setenv("CIRCDESK_DB_PATH", str(tmp_path / "lib.db"))
        clean_env.setenv("CIRCDESK_PREMIUM_MAX_LOANS", "6")
        clean_env.setenv("CIRCDESK_YEARLY_FINE_DISCOUNT", "20")
        clean_env.setenv("CIRCDESK_FINE_CAP", "50.00")
        clean_env.setenv("CIRCDESK_LOG_LEVEL", "debug")

        config = Config.from_env()

        assert config.db_path == tmp_path / "lib.db"
        assert config.premium_max_loans == 6
        assert config.yearly_fine_discount_percent == Decimal("20")
        assert config.fine_cap == Decimal("50.00")
        assert config.log_level == "DEBUG"

    def test_bad_decimal(self, clean_env):
        """Test a non-numeric fine rate is reported by name."""
        clean_env.setenv("CIRCDESK_FREE_DAILY_FINE", "lots")

        with pytest.raises(ValueError, match="CIRCDESK_FREE_DAILY_FINE"):
            Config.from_env()


class TestValidate:
    """Tests for Config.validate."""

    def test_valid(self, tmp_path):
        """Test stock configuration has no problems."""
        assert make_config(db_path=tmp_path / "lib.db").validate() == []

    def test_problems_listed(self, tmp_path):
        """Test each bad value is reported."""
        config = make_config(
            db_path=tmp_path / "lib.db",
            free_max_loans=0,
            premium_daily_fine=Decimal("-1"),
            yearly_fine_discount_percent=Decimal("150"),
            hold_window_hours=0,
        )

        errors = config.validate()

        assert "free_max_loans must be at least 1" in errors
        assert "premium_daily_fine cannot be negative" in errors
        assert "yearly_fine_discount_percent must be between 0 and 100" in errors
        assert "hold_window_hours must be at least 1" in errors


class TestGlobalConfig:
    """Tests for the process-wide config."""

    def test_cached(self, clean_env):
        """Test get_config returns the same instance until reset."""
        first = get_config()
        assert get_config() is first

        reset_config()
        assert get_config() is not first
