"""
Usage ledger for daily question quotas.

Answers "can this identity ask one more question today?" and records that it
just did. Signed-in users are tracked in the daily_usage table, anonymous
devices in a local key-value store (see anonymous_usage_service).

The ledger never raises past its own boundary: every operation returns a
UsageResult. Reads fail open (zero usage), writes fail closed.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from studypal.core.identity import Identity, Anonymous, Authenticated, describe_identity
from studypal.core.plan_limits import Plan, get_daily_limit, normalize_plan
from studypal.db.models.daily_usage import DailyUsage

logger = logging.getLogger(__name__)


class LedgerError(str, Enum):
    LIMIT_EXCEEDED = "limit_exceeded"
    STORAGE_UNAVAILABLE = "storage_unavailable"


@dataclass
class UsageSnapshot:
    """Questions used today against the plan quota."""
    questions_asked: int
    limit: int
    remaining: int
    date: str
    plan_type: Plan

    @classmethod
    def build(cls, questions_asked: int, plan: Plan, day_key: str) -> "UsageSnapshot":
        limit = get_daily_limit(plan)
        return cls(
            questions_asked=questions_asked,
            limit=limit,
            remaining=max(0, limit - questions_asked),
            date=day_key,
            plan_type=normalize_plan(plan),
        )

    @property
    def can_ask(self) -> bool:
        return self.remaining > 0

    def to_dict(self) -> dict:
        return {
            "questions_asked": self.questions_asked,
            "limit": self.limit,
            "remaining": self.remaining,
            "date": self.date,
            "plan_type": self.plan_type.value,
        }


@dataclass
class UsageResult:
    """Outcome of a ledger operation."""
    success: bool
    usage: Optional[UsageSnapshot] = None
    error: Optional[LedgerError] = None
    message: Optional[str] = None
    degraded: bool = False  # storage read failed and zero usage was assumed

    @classmethod
    def ok(cls, usage: UsageSnapshot, degraded: bool = False) -> "UsageResult":
        return cls(success=True, usage=usage, degraded=degraded)

    @classmethod
    def fail(cls, error: LedgerError, message: str, usage: Optional[UsageSnapshot] = None) -> "UsageResult":
        return cls(success=False, usage=usage, error=error, message=message)


class UsageBackend(ABC):
    """Storage for one kind of identity."""

    @abstractmethod
    def get_usage(self, identity: Identity, plan: Plan, day: date) -> UsageResult:
        pass

    @abstractmethod
    def record_question(self, identity: Identity, plan: Plan, day: date) -> UsageResult:
        pass


class DatabaseUsageBackend(UsageBackend):
    """
    daily_usage table backend for signed-in users.

    Recording is a single conditional increment, so two tabs racing on the
    last question cannot both succeed.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @staticmethod
    def _find(db: Session, user_id: str, day: date) -> Optional[DailyUsage]:
        return db.query(DailyUsage).filter(
            DailyUsage.user_id == user_id,
            DailyUsage.date == day
        ).first()

    def _increment_if_below_limit(self, db: Session, user_id: str, plan: Plan, day: date, limit: int) -> Optional[int]:
        """Increment today's row when below limit; returns the new count or None."""
        result = db.execute(
            update(DailyUsage)
            .where(
                DailyUsage.user_id == user_id,
                DailyUsage.date == day,
                DailyUsage.questions_asked < limit,
            )
            .values(
                questions_asked=DailyUsage.questions_asked + 1,
                plan_type=plan.value,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return None

        db.commit()
        row = self._find(db, user_id, day)
        return row.questions_asked if row else 1

    def get_usage(self, identity: Authenticated, plan: Plan, day: date) -> UsageResult:
        day_key = DailyUsage.get_date_key(day)
        db = self.session_factory()
        try:
            row = self._find(db, identity.user_id, day)
        except SQLAlchemyError as e:
            logger.warning(
                f"Usage read failed for user_id={identity.user_id}, assuming zero usage: {e}"
            )
            return UsageResult.ok(UsageSnapshot.build(0, plan, day_key), degraded=True)
        finally:
            db.close()

        # No row yet means nothing asked today; the zero record is not persisted
        questions_asked = row.questions_asked if row else 0
        return UsageResult.ok(UsageSnapshot.build(questions_asked, plan, day_key))

    def record_question(self, identity: Authenticated, plan: Plan, day: date) -> UsageResult:
        user_id = identity.user_id
        day_key = DailyUsage.get_date_key(day)
        limit = get_daily_limit(plan)
        db = self.session_factory()
        try:
            count = self._increment_if_below_limit(db, user_id, plan, day, limit)

            if count is None:
                existing = self._find(db, user_id, day)
                if existing is not None:
                    logger.warning(
                        f"Daily limit reached: user_id={user_id}, plan={plan.value}, "
                        f"used={existing.questions_asked}/{limit}"
                    )
                    return UsageResult.fail(
                        LedgerError.LIMIT_EXCEEDED,
                        "Daily limit exceeded",
                        UsageSnapshot.build(existing.questions_asked, plan, day_key),
                    )

                # First question of the day
                try:
                    db.add(DailyUsage(
                        user_id=user_id,
                        date=day,
                        questions_asked=1,
                        plan_type=plan.value,
                    ))
                    db.commit()
                    count = 1
                except IntegrityError:
                    # A concurrent request created today's row first
                    db.rollback()
                    count = self._increment_if_below_limit(db, user_id, plan, day, limit)
                    if count is None:
                        return UsageResult.fail(
                            LedgerError.LIMIT_EXCEEDED,
                            "Daily limit exceeded",
                            UsageSnapshot.build(limit, plan, day_key),
                        )

            logger.info(
                f"Question recorded: user_id={user_id}, plan={plan.value}, "
                f"used={count}/{limit}, date={day_key}"
            )
            return UsageResult.ok(UsageSnapshot.build(count, plan, day_key))

        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record question for user_id={user_id}: {e}", exc_info=True)
            return UsageResult.fail(LedgerError.STORAGE_UNAVAILABLE, "Failed to record question")
        finally:
            db.close()


class UsageLedger:
    """
    Routes ledger operations to the right backend for an identity.

    Anonymous devices are always metered on the free plan. The day boundary
    comes from ``today`` so that rollover is computed lazily on each call.
    """

    def __init__(
        self,
        remote: UsageBackend,
        local: UsageBackend,
        today: Callable[[], date] = date.today,
    ):
        self.remote = remote
        self.local = local
        self.today = today

    def _backend_for(self, identity: Identity) -> UsageBackend:
        return self.remote if isinstance(identity, Authenticated) else self.local

    @staticmethod
    def _effective_plan(identity: Identity, plan) -> Plan:
        if isinstance(identity, Anonymous):
            return Plan.FREE
        return normalize_plan(plan)

    def get_usage(self, identity: Identity, plan) -> UsageResult:
        """Get today's usage; storage failures degrade to zero usage."""
        effective_plan = self._effective_plan(identity, plan)
        day = self.today()
        try:
            return self._backend_for(identity).get_usage(identity, effective_plan, day)
        except Exception as e:
            logger.exception(f"Unexpected usage read failure for {describe_identity(identity)}: {e}")
            return UsageResult.ok(
                UsageSnapshot.build(0, effective_plan, day.isoformat()),
                degraded=True,
            )

    def can_ask(self, identity: Identity, plan) -> bool:
        result = self.get_usage(identity, plan)
        return bool(result.usage and result.usage.can_ask)

    def record_question(self, identity: Identity, plan) -> UsageResult:
        """Consume one question; fails with LIMIT_EXCEEDED when nothing is left."""
        effective_plan = self._effective_plan(identity, plan)
        try:
            return self._backend_for(identity).record_question(identity, effective_plan, self.today())
        except Exception as e:
            logger.exception(f"Unexpected usage write failure for {describe_identity(identity)}: {e}")
            return UsageResult.fail(LedgerError.STORAGE_UNAVAILABLE, "Failed to record question")
