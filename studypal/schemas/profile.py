"""
Pydantic schemas for profile endpoints.
"""
from typing import Optional
from pydantic import BaseModel, Field


class ProfileResponse(BaseModel):
    """Response schema for GET /me/profile."""
    user_id: str
    email: Optional[str] = None
    plan_type: str = Field(..., description="free, gold or diamond")
    display_name: str = Field(..., description="Plan name shown to users")
    daily_questions: int


class DowngradeRequest(BaseModel):
    """Request schema for POST /me/plan/downgrade."""
    plan_type: str = Field(..., description="Target plan; must rank below the current plan")

    class Config:
        json_schema_extra = {
            "example": {
                "plan_type": "free"
            }
        }
