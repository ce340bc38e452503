"""
Profile endpoints for signed-in users.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from studypal.core.auth_dependency import get_authenticated_user, get_db
from studypal.core.identity import Authenticated
from studypal.core.plan_limits import get_daily_limit, get_plan_display_name, normalize_plan
from studypal.db.models.profile import Profile
from studypal.schemas.profile import ProfileResponse, DowngradeRequest
from studypal.services import profile_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/me", tags=["Profile"])


def to_response(profile: Profile) -> ProfileResponse:
    plan = normalize_plan(profile.plan_type)
    return ProfileResponse(
        user_id=profile.id,
        email=profile.email,
        plan_type=plan.value,
        display_name=get_plan_display_name(plan),
        daily_questions=get_daily_limit(plan),
    )


@router.get("/profile", response_model=ProfileResponse)
def get_profile(
    user: Authenticated = Depends(get_authenticated_user),
    db: Session = Depends(get_db),
):
    """Get the caller's profile, creating a free one on first sign-in."""
    profile = profile_service.get_or_create_profile(db, user.user_id, user.email)
    return to_response(profile)


@router.post("/plan/downgrade", response_model=ProfileResponse)
def downgrade(
    request: DowngradeRequest,
    user: Authenticated = Depends(get_authenticated_user),
    db: Session = Depends(get_db),
):
    """
    Move to a cheaper plan.

    Allowed: diamond -> gold, diamond -> free, gold -> free. Upgrades go
    through billing.
    """
    try:
        profile = profile_service.downgrade_plan(db, user.user_id, request.plan_type)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_downgrade", "message": str(e)},
        )
    return to_response(profile)
