"""
Script to put a user on a plan by hand (support refunds, comped accounts).
Run: python -m scripts.set_user_plan <user_id> <free|gold|diamond> [email]
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from studypal.db.session import SessionLocal
from studypal.core.plan_limits import parse_plan, plan_rank, Plan
from studypal.services.profile_service import get_or_create_profile, update_plan, downgrade_plan
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def set_user_plan(user_id: str, plan_value: str, email: str = None) -> bool:
    """Move a user to any plan, creating the profile if needed."""
    plan = parse_plan(plan_value)
    if plan is None:
        logger.error(f"Unknown plan: {plan_value}")
        return False

    db = SessionLocal()
    try:
        profile = get_or_create_profile(db, user_id, email)
        current = parse_plan(profile.plan_type) or Plan.FREE

        if plan == current:
            logger.info(f"User {user_id} is already on {plan.value}")
        elif plan_rank(plan) > plan_rank(current):
            update_plan(db, user_id, plan, email=email)
        else:
            downgrade_plan(db, user_id, plan)
        return True
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating user: {e}", exc_info=True)
        return False
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python -m scripts.set_user_plan <user_id> <free|gold|diamond> [email]")
        sys.exit(2)

    user_id, plan_value = sys.argv[1], sys.argv[2]
    email = sys.argv[3] if len(sys.argv) > 3 else None

    if set_user_plan(user_id, plan_value, email):
        print(f"\n[SUCCESS] User {user_id} is now on the {plan_value} plan")
    else:
        print(f"\n[ERROR] Failed to update user {user_id}")
        sys.exit(1)
