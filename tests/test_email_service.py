"""Tests for e-mail rendering and SMTP delivery."""

from unittest.mock import AsyncMock

import aiosmtplib
import pytest

from booking_api.core.exceptions import NotificationError
from booking_api.core.models import ContactMessage, CustomerData, ServiceData
from booking_api.core.settings import Settings
from booking_api.services.email_service import EmailService

BOOKING_EMAIL_COUNT = 2


@pytest.fixture
def smtp_settings() -> Settings:
    """Provide settings with SMTP credentials and a separate business inbox."""
    return Settings(
        _env_file=None,
        smtp_username="bot@example.com",
        smtp_password="app-password",
        business_email="owner@example.com",
    )


@pytest.fixture
def smtp_send(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
    """Replace aiosmtplib.send with a recording mock."""
    mock = AsyncMock()
    monkeypatch.setattr(aiosmtplib, "send", mock)
    return mock


def test_templates_escape_user_input(customer: CustomerData, service: ServiceData) -> None:
    """Customer-supplied text is HTML-escaped in rendered e-mails."""
    hostile = customer.model_copy(update={"full_name": "<script>alert(1)</script>"})
    html = EmailService.render_template("customer_confirmation.html", customer=hostile, service=service)
    if "<script>" in html or "&lt;script&gt;" not in html:
        msg = "Expected the customer name to be escaped"
        raise AssertionError(msg)
    if service.title not in html:
        msg = "Expected the service title in the confirmation"
        raise AssertionError(msg)


async def test_missing_credentials_raise(customer: CustomerData, service: ServiceData, smtp_send: AsyncMock) -> None:
    """Without SMTP credentials nothing is sent and NotificationError is raised."""
    service_without_smtp = EmailService(Settings(_env_file=None))
    with pytest.raises(NotificationError):
        await service_without_smtp.send_booking_emails(customer, service)
    if smtp_send.await_count != 0:
        msg = "Expected no SMTP call without credentials"
        raise AssertionError(msg)


async def test_booking_emails_go_to_customer_and_owner(
    smtp_settings: Settings, customer: CustomerData, service: ServiceData, smtp_send: AsyncMock
) -> None:
    """A completed booking sends the confirmation and then the business notification."""
    await EmailService(smtp_settings).send_booking_emails(customer, service)
    if smtp_send.await_count != BOOKING_EMAIL_COUNT:
        msg = f"Expected two e-mails, got {smtp_send.await_count}"
        raise AssertionError(msg)
    confirmation = smtp_send.await_args_list[0].args[0]
    notification = smtp_send.await_args_list[1].args[0]
    expected_subject = "Booking Confirmation - Technical Consultation"
    if confirmation["To"] != "priya@example.com" or confirmation["Subject"] != expected_subject:
        msg = f"Unexpected confirmation headers {confirmation['To']} / {confirmation['Subject']}"
        raise AssertionError(msg)
    if notification["To"] != "owner@example.com" or not notification["Subject"].startswith("New Booking:"):
        msg = f"Unexpected notification headers {notification['To']} / {notification['Subject']}"
        raise AssertionError(msg)
    if confirmation["From"] != "bot@example.com":
        msg = f"Expected the SMTP login as sender, got {confirmation['From']}"
        raise AssertionError(msg)
    if smtp_send.await_args_list[0].kwargs["username"] != "bot@example.com":
        msg = "Expected the SMTP login to be used"
        raise AssertionError(msg)


async def test_failure_notification_goes_to_owner(
    smtp_settings: Settings, customer: CustomerData, service: ServiceData, smtp_send: AsyncMock
) -> None:
    """Failed and timed-out payments are reported to the business inbox with the reason."""
    await EmailService(smtp_settings).send_payment_failure_notification(
        customer, service, "Payment failed during processing", "txn-9"
    )
    message = smtp_send.await_args.args[0]
    if message["To"] != "owner@example.com":
        msg = f"Expected the owner as recipient, got {message['To']}"
        raise AssertionError(msg)
    if message["Subject"] != "Payment Failed: Technical Consultation - Priya Sharma":
        msg = f"Unexpected subject {message['Subject']}"
        raise AssertionError(msg)
    html = message.get_payload()[0].get_payload(decode=True).decode()
    if "txn-9" not in html or "Payment failed during processing" not in html:
        msg = "Expected the transaction id and reason in the body"
        raise AssertionError(msg)


async def test_smtp_error_raises_notification_error(
    smtp_settings: Settings, smtp_send: AsyncMock
) -> None:
    """SMTP failures surface as NotificationError."""
    smtp_send.side_effect = aiosmtplib.SMTPException("connection refused")
    contact = ContactMessage(name="Ravi", email="ravi@example.com", message="Hello")
    with pytest.raises(NotificationError):
        await EmailService(smtp_settings).send_contact_message(contact)
