"""
Billing endpoints for Stripe plan payments.
"""
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from studypal.core.auth_dependency import get_authenticated_user, get_db
from studypal.core.identity import Authenticated
from studypal.core.logging_config import sanitize_log_data
from studypal.core.rate_limit import check_rate_limit
from studypal.schemas.billing import (
    CreatePaymentIntentRequest,
    CreatePaymentIntentResponse,
    CreateCustomerRequest,
    CreateCustomerResponse,
    ConfirmPaymentRequest,
)
from studypal.schemas.profile import ProfileResponse
from studypal.api.routes.profile import to_response
from studypal.services import billing_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def require_stripe() -> None:
    if not billing_service.stripe_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Payment processing is not configured", "code": "NOT_CONFIGURED"}
        )


def stripe_http_error(e: stripe.StripeError) -> HTTPException:
    status_code, message, code = billing_service.describe_stripe_error(e)
    logger.error(f"Stripe error ({code}): {e}")
    return HTTPException(status_code=status_code, detail={"error": message, "code": code})


def limit_payments(request: Request) -> None:
    check_rate_limit(
        request,
        request.app.state.payment_limiter,
        "Too many payment attempts. Please try again later."
    )


@router.post(
    "/create-payment-intent",
    response_model=CreatePaymentIntentResponse,
    dependencies=[Depends(limit_payments), Depends(require_stripe)],
)
def create_payment_intent(
    request: CreatePaymentIntentRequest,
    user: Authenticated = Depends(get_authenticated_user),
):
    """Start a one-off payment for the Gold or Diamond plan."""
    logger.info(f"Payment intent requested: {sanitize_log_data(request.model_dump())}")
    try:
        intent = billing_service.create_payment_intent(
            amount=request.amount,
            currency=request.currency,
            plan_type=request.plan_type,
            user_id=user.user_id,
            user_email=request.user_email or user.email,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "code": "VALIDATION_ERROR"}
        )
    except stripe.StripeError as e:
        raise stripe_http_error(e)

    return CreatePaymentIntentResponse(
        client_secret=intent["client_secret"],
        payment_intent_id=intent["id"],
    )


@router.post(
    "/create-customer",
    response_model=CreateCustomerResponse,
    dependencies=[Depends(limit_payments), Depends(require_stripe)],
)
def create_customer(
    request: CreateCustomerRequest,
    user: Authenticated = Depends(get_authenticated_user),
):
    """Find or create the Stripe customer for an email."""
    try:
        customer = billing_service.create_customer(request.email, request.name)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "code": "VALIDATION_ERROR"}
        )
    except stripe.StripeError as e:
        raise stripe_http_error(e)

    return CreateCustomerResponse(customer_id=customer.id, email=customer.get("email"))


@router.post(
    "/confirm-payment",
    response_model=ProfileResponse,
    dependencies=[Depends(require_stripe)],
)
def confirm_payment(
    request: ConfirmPaymentRequest,
    user: Authenticated = Depends(get_authenticated_user),
    db: Session = Depends(get_db),
):
    """Apply a succeeded payment to the caller's plan."""
    try:
        profile = billing_service.confirm_payment(
            db, user.user_id, request.payment_intent_id, email=user.email
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "code": "PAYMENT_NOT_APPLIED"}
        )
    except stripe.StripeError as e:
        raise stripe_http_error(e)

    return to_response(profile)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """
    Stripe webhook receiver.

    Upgrades plans on payment_intent.succeeded and logs failed payments.
    """
    payload = await request.body()

    try:
        event = billing_service.verify_webhook(payload, stripe_signature)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        outcome = billing_service.handle_webhook_event(event, db)
    except ValueError as e:
        # Acknowledge so Stripe does not retry a payment we will never apply
        logger.error(f"Webhook event {event['id']} not applied: {e}")
        return {"received": True, "status": "rejected"}

    return {"received": True, "status": outcome}
