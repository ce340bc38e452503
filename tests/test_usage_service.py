"""
Unit tests for the usage ledger database backend.
Tests daily counting, limit enforcement, day rollover and storage failures.
"""
import pytest
from datetime import date, timedelta
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from studypal.db.base import Base
from studypal.db.models.daily_usage import DailyUsage
from studypal.core.identity import Anonymous, Authenticated
from studypal.core.plan_limits import Plan
from studypal.services.anonymous_usage_service import LocalUsageBackend, MemoryStorage
from studypal.services.usage_service import (
    DatabaseUsageBackend,
    LedgerError,
    UsageLedger,
)


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TODAY = date(2026, 3, 14)
USER = Authenticated(user_id="user-1", email="student@example.com")


@pytest.fixture(scope="function", autouse=True)
def setup_db():
    """Create and drop tables for each test."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


class Calendar:
    """Settable 'today' for ledger tests."""

    def __init__(self, day: date):
        self.day = day

    def __call__(self) -> date:
        return self.day


@pytest.fixture
def calendar():
    return Calendar(TODAY)


@pytest.fixture
def ledger(calendar):
    return UsageLedger(
        remote=DatabaseUsageBackend(TestSessionLocal),
        local=LocalUsageBackend(MemoryStorage()),
        today=calendar,
    )


def stored_count(user_id: str, day: date) -> int:
    db = TestSessionLocal()
    try:
        row = db.query(DailyUsage).filter(
            DailyUsage.user_id == user_id, DailyUsage.date == day
        ).first()
        return row.questions_asked if row else 0
    finally:
        db.close()


def test_new_user_has_full_quota(ledger):
    """No row today means zero usage."""
    result = ledger.get_usage(USER, Plan.FREE)

    assert result.success
    assert result.usage.questions_asked == 0
    assert result.usage.limit == 5
    assert result.usage.remaining == 5
    assert result.usage.date == "2026-03-14"
    assert not result.degraded
    # Reading does not persist a zero row
    assert stored_count(USER.user_id, TODAY) == 0


def test_record_question_creates_and_increments(ledger):
    first = ledger.record_question(USER, Plan.FREE)
    second = ledger.record_question(USER, Plan.FREE)

    assert first.success and first.usage.questions_asked == 1
    assert second.success and second.usage.questions_asked == 2
    assert second.usage.remaining == 3
    assert stored_count(USER.user_id, TODAY) == 2


def test_record_question_stops_at_limit(ledger):
    """Counts never exceed the plan quota."""
    results = [ledger.record_question(USER, Plan.FREE) for _ in range(7)]

    assert [r.success for r in results] == [True] * 5 + [False] * 2
    assert results[-1].error == LedgerError.LIMIT_EXCEEDED
    assert results[-1].usage.questions_asked == 5
    assert results[-1].usage.remaining == 0
    assert stored_count(USER.user_id, TODAY) == 5

    counts = [r.usage.questions_asked for r in results]
    assert counts == sorted(counts)


def test_upgrade_raises_limit_same_day(ledger):
    for _ in range(5):
        ledger.record_question(USER, Plan.FREE)
    assert not ledger.can_ask(USER, Plan.FREE)

    result = ledger.record_question(USER, Plan.GOLD)

    assert result.success
    assert result.usage.questions_asked == 6
    assert result.usage.limit == 150


def test_day_rollover_resets_usage(ledger, calendar):
    for _ in range(3):
        ledger.record_question(USER, Plan.FREE)

    calendar.day = TODAY + timedelta(days=1)
    result = ledger.get_usage(USER, Plan.FREE)

    assert result.usage.questions_asked == 0
    assert result.usage.remaining == 5
    assert result.usage.date == "2026-03-15"
    # Yesterday's row is left alone
    assert stored_count(USER.user_id, TODAY) == 3


def test_concurrent_first_question_retries_increment(calendar, monkeypatch):
    """A row created between the update and the insert is incremented instead."""
    backend = DatabaseUsageBackend(TestSessionLocal)
    ledger = UsageLedger(remote=backend, local=LocalUsageBackend(MemoryStorage()), today=calendar)
    ledger.record_question(USER, Plan.FREE)

    real_find = DatabaseUsageBackend._find
    calls = []

    def find_missing_once(db, user_id, day):
        calls.append(user_id)
        if len(calls) == 1:
            return None
        return real_find(db, user_id, day)

    # Force the first update to miss so the insert collides with the existing row
    monkeypatch.setattr(backend, "_increment_if_below_limit", _miss_first(backend._increment_if_below_limit))
    monkeypatch.setattr(backend, "_find", find_missing_once)

    result = ledger.record_question(USER, Plan.FREE)

    assert result.success
    assert result.usage.questions_asked == 2
    assert stored_count(USER.user_id, TODAY) == 2


def _miss_first(increment):
    state = {"calls": 0}

    def wrapper(*args, **kwargs):
        state["calls"] += 1
        if state["calls"] == 1:
            return None
        return increment(*args, **kwargs)

    return wrapper


def _broken_session_factory():
    error = OperationalError("SELECT 1", {}, Exception("database is down"))
    session = MagicMock()
    session.query.side_effect = error
    session.execute.side_effect = error
    return lambda: session


def test_read_failure_fails_open(calendar):
    ledger = UsageLedger(
        remote=DatabaseUsageBackend(_broken_session_factory()),
        local=LocalUsageBackend(MemoryStorage()),
        today=calendar,
    )

    result = ledger.get_usage(USER, Plan.GOLD)

    assert result.success
    assert result.degraded
    assert result.usage.questions_asked == 0
    assert result.usage.remaining == 150


def test_write_failure_fails_closed(calendar):
    ledger = UsageLedger(
        remote=DatabaseUsageBackend(_broken_session_factory()),
        local=LocalUsageBackend(MemoryStorage()),
        today=calendar,
    )

    result = ledger.record_question(USER, Plan.FREE)

    assert not result.success
    assert result.error == LedgerError.STORAGE_UNAVAILABLE


def test_unexpected_backend_error_is_contained(calendar):
    remote = MagicMock()
    remote.get_usage.side_effect = RuntimeError("boom")
    remote.record_question.side_effect = RuntimeError("boom")
    ledger = UsageLedger(remote=remote, local=LocalUsageBackend(MemoryStorage()), today=calendar)

    assert ledger.get_usage(USER, Plan.FREE).degraded
    assert ledger.record_question(USER, Plan.FREE).error == LedgerError.STORAGE_UNAVAILABLE


def test_anonymous_always_uses_free_plan(ledger):
    device = Anonymous(device_id="device-1")

    result = ledger.record_question(device, Plan.DIAMOND)

    assert result.usage.limit == 5
    assert result.usage.plan_type == Plan.FREE
    # Anonymous usage never touches the database
    assert stored_count("device-1", TODAY) == 0
