"""
Pydantic schemas for billing endpoints.
"""
from typing import Optional
from pydantic import BaseModel, Field


class CreatePaymentIntentRequest(BaseModel):
    """Request schema for creating a plan payment."""
    amount: int = Field(..., description="Amount in cents; must match the plan price")
    currency: str = Field("usd", description="Only 'usd' is supported")
    plan_type: str = Field(..., description="Plan type: 'gold' or 'diamond'")
    user_email: Optional[str] = Field(None, description="Receipt email")

    class Config:
        json_schema_extra = {
            "example": {
                "amount": 999,
                "currency": "usd",
                "plan_type": "gold",
                "user_email": "student@example.com"
            }
        }


class CreatePaymentIntentResponse(BaseModel):
    """Response schema for payment intent creation."""
    client_secret: str = Field(..., description="Secret used by Stripe.js to confirm the payment")
    payment_intent_id: str = Field(..., description="Stripe PaymentIntent ID")


class CreateCustomerRequest(BaseModel):
    """Request schema for creating (or finding) a Stripe customer."""
    email: str = Field(..., description="Customer email")
    name: Optional[str] = Field(None, description="Customer name")


class CreateCustomerResponse(BaseModel):
    customer_id: str
    email: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    """Request schema for applying a finished payment to the caller's plan."""
    payment_intent_id: str = Field(..., description="Stripe PaymentIntent ID (pi_...)")

    class Config:
        json_schema_extra = {
            "example": {
                "payment_intent_id": "pi_3Nabc..."
            }
        }


class BillingErrorResponse(BaseModel):
    """Error response schema for billing operations."""
    error: str = Field(..., description="Error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Your card was declined.",
                "code": "CARD_DECLINED"
            }
        }
