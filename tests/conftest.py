"""Pytest configuration and shared fixtures.

This module provides fixtures for testing circdesk: an in-memory
database, a controllable clock, a fully wired circulation desk and
sample members and titles.
"""

import os
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest

from circdesk.config import Config, reset_config
from circdesk.db.sqlite import Database, reset_db
from circdesk.desk import CirculationDesk
from circdesk.members.schemas import MemberSnapshot, SubscriptionStatus, SubscriptionTier

START = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_config(**overrides) -> Config:
    """Config with the stock policy numbers, ignoring the environment."""
    config = Config(
        db_path=Path(":memory:"),
        busy_timeout=30.0,
        log_level="WARNING",
        free_max_loans=1,
        free_loan_days=7,
        free_daily_fine=Decimal("30"),
        premium_max_loans=4,
        premium_loan_days=20,
        premium_daily_fine=Decimal("15"),
        yearly_fine_discount_percent=Decimal("0"),
        fine_block_threshold=Decimal("0"),
        fine_grace_days=0,
        fine_cap=None,
        max_renewals=2,
        hold_window_hours=48,
        sweep_interval_seconds=300,
        due_reminder_days=3,
    )
    return replace(config, **overrides)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Keep the process-wide config and database out of each test."""
    reset_db()
    reset_config()
    yield
    reset_db()
    reset_config()


@pytest.fixture
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    for suffix in ("", "-journal", "-wal", "-shm"):
        path = Path(str(db_path) + suffix)
        if path.exists():
            path.unlink()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def desk(db: Database, config: Config, clock: ManualClock) -> CirculationDesk:
    """Circulation desk over the in-memory database."""
    return CirculationDesk(db, config=config, clock=clock)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


def add_member(
    desk: CirculationDesk,
    member_id: str,
    tier: SubscriptionTier = SubscriptionTier.FREE,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    days_left: int = 30,
):
    """Store a member snapshot; paid tiers run ``days_left`` days from now."""
    end_date = None
    if tier != SubscriptionTier.FREE:
        end_date = desk.clock() + timedelta(days=days_left)
    return desk.members.upsert(
        MemberSnapshot(id=member_id, name=member_id.title(), tier=tier, status=status, end_date=end_date)
    )


@pytest.fixture
def free_member(desk: CirculationDesk) -> str:
    add_member(desk, "alice")
    return "alice"


@pytest.fixture
def premium_member(desk: CirculationDesk) -> str:
    add_member(desk, "bob", SubscriptionTier.MONTHLY)
    return "bob"


@pytest.fixture
def yearly_member(desk: CirculationDesk) -> str:
    add_member(desk, "carol", SubscriptionTier.YEARLY, days_left=365)
    return "carol"


@pytest.fixture
def title_id(desk: CirculationDesk) -> str:
    """A title with a single copy."""
    return desk.add_title("Dune", copies=1).id


@pytest.fixture
def title_ids(desk: CirculationDesk) -> list[str]:
    """Three titles with two copies each."""
    return [desk.add_title(name, copies=2).id for name in ("Emma", "Beloved", "Ulysses")]


@pytest.fixture
def env_db(temp_db_path: Path) -> Generator[Path, None, None]:
    """Point the process-wide database at a temporary file."""
    os.environ["CIRCDESK_DB_PATH"] = str(temp_db_path)
    yield temp_db_path
    reset_db()
    del os.environ["CIRCDESK_DB_PATH"]
