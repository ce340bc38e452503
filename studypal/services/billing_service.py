"""
Billing service for Stripe integration.

Handles one-off plan payments (PaymentIntents), customer lookup and webhook
event processing. A succeeded payment is the only way onto a paid plan.
"""
import logging
import re
from typing import Optional, Dict, Tuple

import stripe
from sqlalchemy.orm import Session

from studypal.core.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from studypal.core.plan_limits import Plan, PAID_PLANS, parse_plan, get_plan_price
from studypal.db.models.profile import Profile
from studypal.services import profile_service

logger = logging.getLogger(__name__)

PAYMENT_CURRENCY = "usd"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Initialize Stripe
if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY
else:
    logger.warning("STRIPE_SECRET_KEY not configured - Stripe features disabled")


def stripe_configured() -> bool:
    return bool(stripe.api_key)


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_PATTERN.match(email))


def validate_payment_request(
    amount,
    currency: Optional[str],
    plan_type: Optional[str],
    user_email: Optional[str] = None,
) -> Plan:
    """
    Validate a payment request against the plan table.

    Returns:
        The paid plan being purchased

    Raises:
        ValueError: With a client-facing message when the request is invalid
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError("Amount must be a positive integer in cents")

    if currency != PAYMENT_CURRENCY:
        raise ValueError("Only USD currency is supported")

    plan = parse_plan(plan_type)
    if plan not in PAID_PLANS:
        raise ValueError("Invalid plan type. Must be gold or diamond")

    if amount != get_plan_price(plan):
        raise ValueError("Amount does not match plan pricing")

    if user_email and not is_valid_email(user_email):
        raise ValueError("Invalid email format")

    return plan


def create_payment_intent(
    amount: int,
    currency: str,
    plan_type: str,
    user_id: str,
    user_email: Optional[str] = None,
) -> Dict[str, str]:
    """
    Create a Stripe PaymentIntent for a plan purchase.

    Returns:
        Dictionary with 'client_secret' and 'id'
    """
    plan = validate_payment_request(amount, currency, plan_type, user_email)

    intent = stripe.PaymentIntent.create(
        amount=amount,
        currency=currency,
        automatic_payment_methods={"enabled": True},
        metadata={
            "plan_type": plan.value,
            "user_id": user_id,
            "user_email": user_email or "",
        },
    )

    logger.info(f"Created payment intent: id={intent.id}, user_id={user_id}, plan={plan.value}")
    return {"client_secret": intent.client_secret, "id": intent.id}


def create_customer(email: str, name: Optional[str] = None):
    """
    Get the Stripe customer for an email, creating one if none exists.

    Raises:
        ValueError: If the email or name is invalid
    """
    if not is_valid_email(email):
        raise ValueError("Invalid email format")
    if name is not None and not name.strip():
        raise ValueError("Name must be a non-empty string")

    existing = stripe.Customer.list(email=email, limit=1)
    if existing.data:
        logger.info(f"Reusing Stripe customer: id={existing.data[0].id}")
        return existing.data[0]

    customer = stripe.Customer.create(email=email, name=name.strip() if name else None)
    logger.info(f"Created Stripe customer: id={customer.id}")
    return customer


def _plan_from_intent(intent) -> Plan:
    metadata = intent.get("metadata") or {}
    plan = parse_plan(metadata.get("plan_type"))
    if plan not in PAID_PLANS:
        raise ValueError("Payment is not for a paid plan")
    if intent.get("amount") != get_plan_price(plan):
        raise ValueError("Payment amount does not match plan pricing")
    return plan


def confirm_payment(db: Session, user_id: str, payment_intent_id: str, email: Optional[str] = None) -> Profile:
    """
    Upgrade the caller after the client reports a finished payment.

    The PaymentIntent is re-read from Stripe; it must have succeeded and
    belong to the caller.

    Raises:
        ValueError: If the payment cannot be applied
    """
    if not payment_intent_id or not payment_intent_id.startswith("pi_"):
        raise ValueError("Invalid payment intent ID format")

    intent = stripe.PaymentIntent.retrieve(payment_intent_id)

    if intent.get("status") != "succeeded":
        raise ValueError(f"Payment has not succeeded (status={intent.get('status')})")

    metadata = intent.get("metadata") or {}
    if metadata.get("user_id") != user_id:
        logger.warning(
            f"Payment intent {payment_intent_id} belongs to another user "
            f"(caller user_id={user_id})"
        )
        raise ValueError("Payment does not belong to this user")

    plan = _plan_from_intent(intent)
    return profile_service.update_plan(
        db, user_id, plan, email=email, payment_intent_id=payment_intent_id
    )


def verify_webhook(request_body: bytes, signature: Optional[str]):
    """
    Verify and parse Stripe webhook event.

    Raises:
        ValueError: If webhook verification fails
    """
    if not STRIPE_WEBHOOK_SECRET:
        raise ValueError("STRIPE_WEBHOOK_SECRET not configured")

    try:
        event = stripe.Webhook.construct_event(request_body, signature, STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValueError(f"Invalid webhook payload: {e}")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise ValueError(f"Invalid signature: {e}")

    logger.info(f"Verified webhook event: {event['type']}, id={event['id']}")
    return event


def handle_payment_intent_succeeded(intent: Dict, db: Session) -> Optional[Profile]:
    """Apply a succeeded plan payment; payments without a user are only logged."""
    metadata = intent.get("metadata") or {}
    user_id = metadata.get("user_id")
    if not user_id:
        logger.warning(f"Payment succeeded without user_id metadata: {intent.get('id')}")
        return None

    plan = _plan_from_intent(intent)
    return profile_service.update_plan(
        db,
        user_id,
        plan,
        email=metadata.get("user_email") or None,
        payment_intent_id=intent.get("id"),
    )


def handle_webhook_event(event, db: Session) -> str:
    """
    Process a verified webhook event.

    Returns:
        Short description of what was done, for logging and the response body
    """
    event_type = event["type"]
    data_object = event["data"]["object"]

    if event_type == "payment_intent.succeeded":
        profile = handle_payment_intent_succeeded(data_object, db)
        if profile is None:
            return "ignored"
        return f"upgraded:{profile.plan_type}"

    if event_type == "payment_intent.payment_failed":
        error = (data_object.get("last_payment_error") or {}).get("message")
        logger.warning(f"Payment failed: id={data_object.get('id')}, reason={error}")
        return "logged"

    logger.info(f"Unhandled event type {event_type}")
    return "unhandled"


def describe_stripe_error(error: Exception) -> Tuple[int, str, str]:
    """
    Map a Stripe exception to (http_status, message, code).
    """
    if isinstance(error, stripe.CardError):
        return 400, "Your card was declined.", "CARD_DECLINED"
    if isinstance(error, stripe.RateLimitError):
        return 429, "Too many requests made to the API too quickly.", "RATE_LIMIT"
    if isinstance(error, stripe.InvalidRequestError):
        return 400, "Invalid parameters were supplied to Stripe's API.", "INVALID_REQUEST"
    if isinstance(error, stripe.AuthenticationError):
        return 401, "You probably used an incorrect API key.", "AUTHENTICATION_ERROR"
    if isinstance(error, stripe.APIConnectionError):
        return 502, "Some kind of error occurred during the HTTPS communication.", "CONNECTION_ERROR"
    if isinstance(error, stripe.APIError):
        return 500, "An error occurred internally with Stripe's API.", "STRIPE_API_ERROR"
    return 500, "An unexpected error occurred.", "INTERNAL_ERROR"
