"""
Usage tracking and plan endpoints.

Provides today's question quota for the caller and the public plan table.
"""
import logging
from fastapi import APIRouter, Depends, status

from studypal.core.auth_dependency import get_identity
from studypal.core.identity import Identity, describe_identity
from studypal.core.plan_limits import get_all_plans
from studypal.core.quota_guard import get_ledger, get_plan_source
from studypal.schemas.usage import UsageResponse, PlansResponse
from studypal.services.profile_service import ProfilePlanSource
from studypal.services.usage_service import UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Usage"])


@router.get("/me/usage", response_model=UsageResponse, status_code=status.HTTP_200_OK)
def get_usage(
    identity: Identity = Depends(get_identity),
    ledger: UsageLedger = Depends(get_ledger),
    plan_source: ProfilePlanSource = Depends(get_plan_source),
):
    """
    Get today's question usage for the caller.

    Works for signed-in users (Bearer token) and anonymous devices
    (X-Device-Id header). If storage is unreachable the counters show zero
    usage and ``degraded`` is true.
    """
    plan = plan_source(identity)
    result = ledger.get_usage(identity, plan)
    usage = result.usage

    logger.debug(
        f"Usage requested: {describe_identity(identity)}, plan={usage.plan_type.value}, "
        f"used={usage.questions_asked}/{usage.limit}"
    )

    return UsageResponse(
        **usage.to_dict(),
        can_ask=usage.can_ask,
        degraded=result.degraded,
    )


@router.get("/plans", response_model=PlansResponse)
def list_plans():
    """Public plan table used by the pricing page."""
    return PlansResponse(plans=get_all_plans())
