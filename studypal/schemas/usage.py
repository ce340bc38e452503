"""
Pydantic schemas for usage and plan endpoints.
"""
from typing import Optional, List
from pydantic import BaseModel, Field


class UsageResponse(BaseModel):
    """Response schema for GET /me/usage."""
    questions_asked: int = Field(..., description="Questions asked today")
    limit: int = Field(..., description="Daily question limit for the plan")
    remaining: int = Field(..., description="Questions left today (never negative)")
    date: str = Field(..., description="Usage day in YYYY-MM-DD format")
    plan_type: str = Field(..., description="Plan the counters were computed for (free, gold, diamond)")
    can_ask: bool = Field(..., description="Whether another question is allowed today")
    degraded: bool = Field(False, description="True when storage was unreachable and defaults are shown")

    class Config:
        json_schema_extra = {
            "example": {
                "questions_asked": 3,
                "limit": 5,
                "remaining": 2,
                "date": "2026-01-15",
                "plan_type": "free",
                "can_ask": True,
                "degraded": False
            }
        }


class PlanInfo(BaseModel):
    """One entry of the public plan table."""
    plan: str = Field(..., description="Plan identifier")
    display_name: str = Field(..., description="Name shown to users")
    daily_questions: int = Field(..., description="Questions allowed per day")
    price_cents: int = Field(..., description="One-off price in USD cents (0 for free)")


class PlansResponse(BaseModel):
    """Response schema for GET /plans."""
    plans: List[PlanInfo]
    currency: str = "usd"


class QuotaExceededResponse(BaseModel):
    """Error response schema for quota exceeded."""
    error: str = Field("quota_exceeded", description="Error code")
    plan: str = Field(..., description="User's current plan")
    limit: int = Field(..., description="Daily question limit")
    used: int = Field(..., description="Questions asked today")
    remaining: int = Field(0, description="Remaining quota (0 if exceeded)")
    message: str = Field(..., description="Human-readable error message")
    upgrade_hint: Optional[str] = Field(None, description="Suggested next plan, if any")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "quota_exceeded",
                "plan": "free",
                "limit": 5,
                "used": 5,
                "remaining": 0,
                "message": "You've reached your daily limit of 5 questions.",
                "upgrade_hint": "gold"
            }
        }
