"""
Contact form endpoint.
"""
import logging
from fastapi import APIRouter, HTTPException, Request, status

from studypal.core.rate_limit import get_client_ip
from studypal.schemas.contact import ContactRequest
from studypal.services import contact_service
from studypal.services.contact_service import ContactDeliveryError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contact", tags=["Contact"])


@router.post("", status_code=status.HTTP_200_OK)
def submit_contact(request: ContactRequest, http_request: Request):
    """
    Forward a contact form message to support.

    Limited to 5 successful submissions per 15 minutes per IP; failed sends
    do not count.
    """
    limiter = http_request.app.state.contact_limiter
    ip = get_client_ip(http_request)

    if limiter.is_limited(ip):
        logger.warning(f"Contact form rate limit exceeded for IP: {ip}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many contact requests. Please try again later."
        )

    try:
        contact_service.send_contact_email(request)
    except ContactDeliveryError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

    limiter.record(ip)
    return {"success": True, "message": "Message sent successfully"}
