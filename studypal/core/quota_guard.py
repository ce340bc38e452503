"""
Daily question quota enforcement for HTTP endpoints.

consume_question() is called by handlers once the request body has validated:
1. Looks up the caller's plan
2. Records one question in the usage ledger
3. Raises HTTPException if the quota is used up or storage is down
"""
import logging
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, status

from studypal.core import config
from studypal.core.identity import Identity, Anonymous, describe_identity
from studypal.core.plan_limits import Plan, plan_rank, PAID_PLANS
from studypal.db.session import SessionLocal
from studypal.services.anonymous_usage_service import FileStorage, LocalUsageBackend
from studypal.services.chat_controller import limit_reached_message
from studypal.services.profile_service import ProfilePlanSource
from studypal.services.usage_service import (
    DatabaseUsageBackend,
    LedgerError,
    UsageLedger,
    UsageSnapshot,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_ledger() -> UsageLedger:
    """Shared usage ledger (database for users, files for anonymous devices)."""
    return UsageLedger(
        remote=DatabaseUsageBackend(SessionLocal),
        local=LocalUsageBackend(FileStorage(config.ANONYMOUS_USAGE_DIR)),
    )


@lru_cache(maxsize=1)
def get_plan_source() -> ProfilePlanSource:
    return ProfilePlanSource(SessionLocal)


def upgrade_hint(plan: Plan, identity: Identity) -> Optional[str]:
    """Next plan up, if there is one worth suggesting."""
    if isinstance(identity, Anonymous):
        return Plan.GOLD.value
    for candidate in PAID_PLANS:
        if plan_rank(candidate) > plan_rank(plan):
            return candidate.value
    return None


def quota_exceeded_detail(usage: UsageSnapshot, identity: Identity) -> dict:
    return {
        "error": "quota_exceeded",
        "plan": usage.plan_type.value,
        "limit": usage.limit,
        "used": usage.questions_asked,
        "remaining": 0,
        "message": limit_reached_message(usage, identity),
        "upgrade_hint": upgrade_hint(usage.plan_type, identity),
    }


def consume_question(
    identity: Identity,
    ledger: UsageLedger,
    plan_source: ProfilePlanSource,
) -> UsageSnapshot:
    """
    Consume one question for the caller.

    Call from the handler body, after request validation; never as a
    dependency.

    Returns:
        Usage snapshot after recording

    Raises:
        HTTPException 429: Daily limit reached, with structured error detail
        HTTPException 503: Usage storage unavailable (question not sent)
    """
    plan = plan_source(identity)
    result = ledger.record_question(identity, plan)

    if result.success:
        logger.debug(
            f"Quota check passed: {describe_identity(identity)}, plan={plan.value}, "
            f"remaining={result.usage.remaining}"
        )
        return result.usage

    if result.error == LedgerError.LIMIT_EXCEEDED:
        usage = result.usage or UsageSnapshot.build(0, plan, "")
        logger.warning(
            f"Quota exceeded: {describe_identity(identity)}, plan={usage.plan_type.value}, "
            f"limit={usage.limit}, used={usage.questions_asked}"
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=quota_exceeded_detail(usage, identity),
        )

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "error": "storage_unavailable",
            "message": "We couldn't record your question right now. Please try again in a moment.",
        },
    )
