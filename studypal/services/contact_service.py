"""
Contact form delivery over SMTP.
"""
import html
import logging
import smtplib
from email.mime.text import MIMEText

from studypal.core.config import EMAIL_USER, EMAIL_PASS, CONTACT_EMAIL, SMTP_HOST, SMTP_PORT
from studypal.schemas.contact import ContactRequest

logger = logging.getLogger(__name__)


class ContactDeliveryError(Exception):
    """The message could not be handed to the mail server."""


def render_contact_email(request: ContactRequest) -> MIMEText:
    message_html = html.escape(request.message).replace("\n", "<br>")
    body = f"""
        <h2>New Contact Form Submission</h2>
        <p><strong>Name:</strong> {html.escape(request.name)}</p>
        <p><strong>Email:</strong> {html.escape(request.email)}</p>
        <p><strong>Subject:</strong> {html.escape(request.subject)}</p>
        <p><strong>Message:</strong></p>
        <p>{message_html}</p>
        <hr>
        <p><em>Sent from StudyPal Contact Form</em></p>
    """
    msg = MIMEText(body, "html")
    msg["Subject"] = f"StudyPal Contact: {request.subject}"
    msg["From"] = EMAIL_USER
    msg["To"] = CONTACT_EMAIL
    msg["Reply-To"] = request.email
    return msg


def send_contact_email(request: ContactRequest) -> None:
    """
    Send a contact form submission to the support inbox.

    Raises:
        ContactDeliveryError: If email is not configured or sending fails
    """
    if not EMAIL_USER or not EMAIL_PASS:
        raise ContactDeliveryError("Email delivery is not configured")

    msg = render_contact_email(request)
    try:
        with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
            server.login(EMAIL_USER, EMAIL_PASS)
            server.sendmail(msg["From"], [msg["To"]], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Contact email failed: {e}", exc_info=True)
        raise ContactDeliveryError("Failed to send email") from e

    logger.info(f"Contact email sent: subject={request.subject!r}")
