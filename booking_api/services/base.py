"""Abstract seams for the external collaborators of the booking backend.

The payment gateway and the notification channel are defined here as abstract base classes so the routes and the
transaction processor depend only on these interfaces; tests and alternative providers plug in their own
implementations.
"""

from abc import ABC, abstractmethod

from booking_api.core.models import CallbackPayload, ContactMessage, CustomerData, GatewayStatus, PaymentInitiation, ServiceData


class PaymentGateway(ABC):
    """Creates payment requests and reports authoritative order status."""

    @abstractmethod
    async def initiate_payment(
        self, amount: float, service_data: ServiceData, customer_data: CustomerData
    ) -> PaymentInitiation:
        """Create a payment request and return its id and redirect URL."""

    @abstractmethod
    async def check_payment_status(self, merchant_order_id: str) -> GatewayStatus:
        """Query the live status of an order. Must not have side effects."""

    @abstractmethod
    def validate_callback(self, authorization: str, body: bytes | str) -> CallbackPayload:
        """Authenticate and parse a gateway webhook callback."""

    async def aclose(self) -> None:
        """Release network resources held by the gateway client."""


class Notifier(ABC):
    """Sends booking outcome, verification and contact e-mails. Callers are responsible for idempotency."""

    @abstractmethod
    async def send_booking_emails(self, customer_data: CustomerData, service_data: ServiceData) -> None:
        """Send the customer confirmation and the business notification for a paid booking."""

    @abstractmethod
    async def send_payment_failure_notification(
        self, customer_data: CustomerData, service_data: ServiceData, reason: str, transaction_id: str
    ) -> None:
        """Report a failed or abandoned payment."""

    @abstractmethod
    async def send_otp_email(self, email: str, otp: str) -> None:
        """Send an e-mail verification code."""

    @abstractmethod
    async def send_contact_message(self, contact: ContactMessage) -> None:
        """Forward a contact-form message to the business owner."""
