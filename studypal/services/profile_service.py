"""
Profile service: the source of truth for a user's subscription plan.

Plans only change through the payment and downgrade flows; everything else
reads them.
"""
import logging
from typing import Callable, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from studypal.core.identity import Identity, Authenticated
from studypal.core.plan_limits import Plan, PAID_PLANS, normalize_plan, parse_plan, plan_rank
from studypal.db.models.profile import Profile

logger = logging.getLogger(__name__)


def get_or_create_profile(db: Session, user_id: str, email: Optional[str] = None) -> Profile:
    """Fetch a user's profile, creating a free one on first sight."""
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if profile:
        if email and not profile.email:
            profile.email = email
            db.commit()
        return profile

    logger.info(f"Profile not found, creating free profile for user_id={user_id}")
    profile = Profile(id=user_id, email=email, plan_type=Plan.FREE.value)
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def get_plan(db: Session, user_id: str, email: Optional[str] = None) -> Plan:
    """
    Get user's plan, defaulting to free if the profile cannot be read.

    Args:
        db: Database session
        user_id: Auth provider user id
        email: Stored on the profile when it is created

    Returns:
        Plan enum value
    """
    try:
        profile = get_or_create_profile(db, user_id, email)
        return normalize_plan(profile.plan_type)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to read plan for user_id={user_id}, defaulting to free: {e}")
        return Plan.FREE


def update_plan(
    db: Session,
    user_id: str,
    plan,
    email: Optional[str] = None,
    payment_intent_id: Optional[str] = None,
) -> Profile:
    """
    Move a user onto a paid plan after a successful payment.

    Raises:
        ValueError: If the plan is not a paid plan
    """
    target = parse_plan(plan)
    if target not in PAID_PLANS:
        raise ValueError(f"Invalid plan type: {plan}. Must be 'gold' or 'diamond'")

    profile = get_or_create_profile(db, user_id, email)
    previous = profile.plan_type
    profile.plan_type = target.value
    if payment_intent_id:
        profile.last_payment_intent_id = payment_intent_id
    db.commit()
    db.refresh(profile)

    logger.info(
        f"Plan updated: user_id={user_id}, {previous} -> {target.value}, "
        f"payment_intent={payment_intent_id}"
    )
    return profile


def downgrade_plan(db: Session, user_id: str, target_plan) -> Profile:
    """
    Move a user to a cheaper plan (diamond -> gold/free, gold -> free).

    Raises:
        ValueError: If the target is not strictly below the current plan
    """
    target = parse_plan(target_plan)
    if target is None:
        raise ValueError(f"Invalid plan type: {target_plan}")

    profile = get_or_create_profile(db, user_id)
    current = normalize_plan(profile.plan_type)

    if plan_rank(target) >= plan_rank(current):
        raise ValueError(f"Cannot downgrade from {current.value} to {target.value}")

    profile.plan_type = target.value
    db.commit()
    db.refresh(profile)

    logger.info(f"Plan downgraded: user_id={user_id}, {current.value} -> {target.value}")
    return profile


class ProfilePlanSource:
    """Resolves the current plan for an identity, one short session per lookup."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def __call__(self, identity: Identity) -> Plan:
        if not isinstance(identity, Authenticated):
            return Plan.FREE

        db = self.session_factory()
        try:
            return get_plan(db, identity.user_id, identity.email)
        finally:
            db.close()
