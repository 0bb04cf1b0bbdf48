"""Async e-mail delivery for booking outcomes, OTP codes and contact messages.

Messages are rendered from Jinja2 HTML templates in ``booking_api/templates/email`` and sent over SMTP with
aiosmtplib. Delivery failures raise NotificationError; the caller decides whether and when to retry.
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

import aiosmtplib
from jinja2 import Environment, FileSystemLoader

from booking_api.core.exceptions import NotificationError
from booking_api.core.models import ContactMessage, CustomerData, ServiceData
from booking_api.core.settings import Settings
from booking_api.core.utils import get_logger, mask_email, utcnow
from booking_api.services.base import Notifier

logger = get_logger("booking-api.email")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

URGENCY_COLORS = {
    "low": "#10b981",
    "normal": "#3b82f6",
    "high": "#f59e0b",
    "urgent": "#ef4444",
}

_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=True,
)


class EmailService(Notifier):
    """SMTP notifier for the booking flow."""

    def __init__(self, settings: Settings) -> None:
        """Initialize the service with SMTP settings."""
        self.settings = settings

    @staticmethod
    def render_template(template_name: str, **context: object) -> str:
        """Render a Jinja2 e-mail template."""
        return _jinja_env.get_template(template_name).render(**context)

    async def send_email(self, to_email: str, subject: str, html_body: str) -> None:
        """Send one HTML e-mail, raising NotificationError when it cannot be delivered."""
        if not self.settings.smtp_username or not self.settings.smtp_password:
            msg = f"SMTP credentials not configured; e-mail to {mask_email(to_email)} not sent"
            logger.warning(msg)
            raise NotificationError(msg)

        message = MIMEMultipart("alternative")
        message["From"] = self.settings.sender_address
        message["To"] = to_email
        message["Subject"] = subject
        message.attach(MIMEText(html_body, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_username,
                password=self.settings.smtp_password,
                start_tls=self.settings.smtp_use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            msg = f"Failed to send e-mail to {mask_email(to_email)}: {exc}"
            logger.error(msg)
            raise NotificationError(msg) from exc
        logger.info(f"E-mail sent to {mask_email(to_email)}: {subject}")

    async def send_customer_confirmation(self, customer_data: CustomerData, service_data: ServiceData) -> None:
        """Send the booking confirmation to the customer."""
        html = self.render_template(
            "customer_confirmation.html",
            customer=customer_data,
            service=service_data,
            owner_email=self.settings.owner_address,
        )
        await self.send_email(customer_data.email, f"Booking Confirmation - {service_data.title}", html)

    async def send_business_notification(self, customer_data: CustomerData, service_data: ServiceData) -> None:
        """Tell the business owner about a new paid booking."""
        html = self.render_template(
            "business_notification.html",
            customer=customer_data,
            service=service_data,
            urgency_color=URGENCY_COLORS.get(customer_data.urgency, URGENCY_COLORS["normal"]),
            booked_at=utcnow().strftime("%Y-%m-%d %H:%M UTC"),
        )
        await self.send_email(
            self.settings.owner_address,
            f"New Booking: {service_data.title} - {customer_data.full_name}",
            html,
        )

    async def send_booking_emails(self, customer_data: CustomerData, service_data: ServiceData) -> None:
        """Send the customer confirmation followed by the business notification."""
        await self.send_customer_confirmation(customer_data, service_data)
        await self.send_business_notification(customer_data, service_data)

    async def send_payment_failure_notification(
        self, customer_data: CustomerData, service_data: ServiceData, reason: str, transaction_id: str
    ) -> None:
        """Report a failed or timed-out payment to the business owner."""
        html = self.render_template(
            "payment_failure.html",
            customer=customer_data,
            service=service_data,
            reason=reason,
            transaction_id=transaction_id,
            failed_at=utcnow().strftime("%Y-%m-%d %H:%M UTC"),
        )
        await self.send_email(
            self.settings.owner_address,
            f"Payment Failed: {service_data.title} - {customer_data.full_name}",
            html,
        )

    async def send_otp_email(self, email: str, otp: str) -> None:
        """Send an e-mail verification code."""
        html = self.render_template(
            "otp.html",
            otp=otp,
            expiry_minutes=self.settings.otp_expiry_minutes,
            sender_name=self.settings.merchant_name,
        )
        await self.send_email(email, "Verify Your Email - OTP Code", html)

    async def send_contact_message(self, contact: ContactMessage) -> None:
        """Forward a contact-form message to the business owner."""
        html = self.render_template("contact_message.html", contact=contact)
        await self.send_email(self.settings.owner_address, f"New Contact Message from {contact.name}", html)
