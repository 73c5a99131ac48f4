"""
Outbound email, fire-and-forget.

Routes schedule these functions with FastAPI BackgroundTasks so the
response is sent first. Delivery failures are logged and counted, never
raised: a broken SMTP server must not fail a booking or a payment.
"""

import smtplib
from email.message import EmailMessage

from carrental.core.config import get_settings
from carrental.core.logging import get_logger
from carrental.core.metrics import record_email

logger = get_logger(__name__)


def send_email(to: str, subject: str, body: str) -> bool:
    settings = get_settings()

    if not settings.EMAIL_ENABLED:
        logger.info("email_skipped", to=to, subject=subject)
        record_email("skipped")
        return False

    message = EmailMessage()
    message["From"] = settings.EMAIL_FROM
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("email_failed", to=to, subject=subject, error=str(e))
        record_email("failed")
        return False

    logger.info("email_sent", to=to, subject=subject)
    record_email("sent")
    return True


def send_booking_confirmation(to: str, name: str, car_name: str, start_date, end_date) -> bool:
    body = (
        f"Dear {name},\n\n"
        f"Your booking for {car_name} has been confirmed.\n\n"
        f"Booking Details:\n"
        f"Start Date: {start_date}\n"
        f"End Date: {end_date}\n\n"
        f"Thank you for choosing our service.\n\n"
        f"Best regards,\nCar Rental Team"
    )
    return send_email(to, "Booking Confirmation", body)


def send_login_code(to: str, code: str, ttl_seconds: int) -> bool:
    body = (
        f"Your login code is {code}.\n\n"
        f"It expires in {ttl_seconds // 60} minutes. "
        f"If you did not request it, you can ignore this email."
    )
    return send_email(to, "Your login code", body)
