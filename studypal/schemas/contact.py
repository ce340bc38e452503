"""
Pydantic schemas for the contact form.
"""
from pydantic import BaseModel, Field, field_validator

from studypal.services.billing_service import is_valid_email


class ContactRequest(BaseModel):
    """Request schema for POST /contact."""
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=254)
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)

    @field_validator("name", "subject", "message")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_email(value):
            raise ValueError("Invalid email format")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Sam Student",
                "email": "sam@example.com",
                "subject": "Question about Diamond",
                "message": "Does Diamond carry over unused questions?"
            }
        }
