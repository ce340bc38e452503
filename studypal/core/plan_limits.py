"""
Plan configuration for StudyPal subscriptions.

Single source of truth for daily question quotas, prices and display names.
Both the usage ledger and the pricing endpoint read from PLANS.
"""
from enum import Enum
from typing import Dict, List, Any, Optional


class Plan(str, Enum):
    FREE = "free"
    GOLD = "gold"
    DIAMOND = "diamond"


PLANS: Dict[Plan, Dict[str, Any]] = {
    Plan.FREE: {
        "daily_questions": 5,
        "price_cents": 0,
        "display_name": "Free Member",
    },
    Plan.GOLD: {
        "daily_questions": 150,
        "price_cents": 999,  # $9.99
        "display_name": "Gold Member",
    },
    Plan.DIAMOND: {
        "daily_questions": 500,
        "price_cents": 1999,  # $19.99
        "display_name": "Diamond Member",
    },
}

PAID_PLANS: List[Plan] = [Plan.GOLD, Plan.DIAMOND]

_PLAN_ORDER: List[Plan] = [Plan.FREE, Plan.GOLD, Plan.DIAMOND]


def parse_plan(value: Optional[Any]) -> Optional[Plan]:
    """Strictly parse a plan value; returns None when it names no plan."""
    if isinstance(value, Plan):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Plan(value.strip().lower())
    except ValueError:
        return None


def normalize_plan(value: Optional[Any]) -> Plan:
    """
    Coerce a stored or user-supplied plan value to a Plan.

    Unknown or empty values fall back to the free plan.
    """
    return parse_plan(value) or Plan.FREE


def get_daily_limit(plan: Any) -> int:
    """Get the number of questions a plan may ask per day."""
    return PLANS[normalize_plan(plan)]["daily_questions"]


def get_plan_price(plan: Any) -> int:
    """Get the plan price in cents (USD)."""
    return PLANS[normalize_plan(plan)]["price_cents"]


def get_plan_display_name(plan: Any) -> str:
    return PLANS[normalize_plan(plan)]["display_name"]


def plan_rank(plan: Any) -> int:
    """Position of the plan in the free < gold < diamond ordering."""
    return _PLAN_ORDER.index(normalize_plan(plan))


def get_all_plans() -> List[Dict[str, Any]]:
    """Get every plan in upgrade order, for pricing displays."""
    return [
        {"plan": plan.value, **PLANS[plan]}
        for plan in _PLAN_ORDER
    ]
