"""Shared pytest fixtures: fake gateway and notifier, a controllable clock, and an API client."""

import asyncio
import json
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from booking_api.api.limiter import limiter
from booking_api.core.exceptions import CallbackValidationError, NotificationError, PaymentGatewayError
from booking_api.core.ledger import TransactionLedger
from booking_api.core.models import (
    CallbackPayload,
    ContactMessage,
    CustomerData,
    GatewayState,
    GatewayStatus,
    PaymentInitiation,
    ServiceData,
)
from booking_api.core.settings import Settings
from booking_api.main import create_app
from booking_api.services.base import Notifier, PaymentGateway
from booking_api.workers.transaction_processor import TransactionProcessor

VALID_AUTHORIZATION = "valid-webhook-token"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2025, 5, 18, 10, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway(PaymentGateway):
    """In-memory gateway; per-id outcomes may be a state or an exception to raise."""

    def __init__(self) -> None:
        self.outcomes: dict[str, GatewayState | Exception] = {}
        self.status_calls: list[str] = []
        self.initiate_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.closed = False
        self._counter = 0

    async def initiate_payment(
        self, amount: float, service_data: ServiceData, customer_data: CustomerData
    ) -> PaymentInitiation:
        if self.initiate_error is not None:
            raise self.initiate_error
        self._counter += 1
        transaction_id = f"txn-{self._counter}"
        return PaymentInitiation(
            transaction_id=transaction_id,
            payment_url=f"https://pay.example.test/{transaction_id}",
            order_id=f"OMO-{self._counter}",
            state="PENDING",
        )

    async def check_payment_status(self, merchant_order_id: str) -> GatewayStatus:
        self.status_calls.append(merchant_order_id)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.get(merchant_order_id, GatewayState.PENDING)
        if isinstance(outcome, Exception):
            raise outcome
        return GatewayStatus(order_id=f"OMO-{merchant_order_id}", state=outcome, amount=49900)

    def validate_callback(self, authorization: str, body: bytes | str) -> CallbackPayload:
        if authorization != VALID_AUTHORIZATION:
            msg = "authorization mismatch"
            raise CallbackValidationError(msg)
        data = json.loads(body)
        payload = data["payload"]
        return CallbackPayload(
            type=data["type"],
            order_id=payload.get("orderId"),
            original_merchant_order_id=payload.get("originalMerchantOrderId"),
            state=payload.get("state"),
        )

    async def aclose(self) -> None:
        self.closed = True


class FakeNotifier(Notifier):
    """Records every e-mail instead of sending it; ``fail`` makes every send raise."""

    def __init__(self) -> None:
        self.booking_emails: list[tuple[CustomerData, ServiceData]] = []
        self.failure_notices: list[tuple[str, str]] = []
        self.otp_emails: list[tuple[str, str]] = []
        self.contact_messages: list[ContactMessage] = []
        self.fail = False

    def _maybe_fail(self) -> None:
        if self.fail:
            msg = "SMTP unavailable"
            raise NotificationError(msg)

    @property
    def total_sent(self) -> int:
        return len(self.booking_emails) + len(self.failure_notices)

    async def send_booking_emails(self, customer_data: CustomerData, service_data: ServiceData) -> None:
        self._maybe_fail()
        self.booking_emails.append((customer_data, service_data))

    async def send_payment_failure_notification(
        self, customer_data: CustomerData, service_data: ServiceData, reason: str, transaction_id: str
    ) -> None:
        self._maybe_fail()
        self.failure_notices.append((transaction_id, reason))

    async def send_otp_email(self, email: str, otp: str) -> None:
        self._maybe_fail()
        self.otp_emails.append((email, otp))

    async def send_contact_message(self, contact: ContactMessage) -> None:
        self._maybe_fail()
        self.contact_messages.append(contact)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> TransactionLedger:
    """Provide a fresh ledger using the fake clock."""
    return TransactionLedger(retry_limit=10, retention=timedelta(hours=24), clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    """Provide a fake payment gateway."""
    return FakeGateway()


@pytest.fixture
def notifier() -> FakeNotifier:
    """Provide a fake notifier."""
    return FakeNotifier()


@pytest.fixture
def processor(ledger: TransactionLedger, gateway: FakeGateway, notifier: FakeNotifier) -> TransactionProcessor:
    """Provide a processor wired to the fakes."""
    return TransactionProcessor(ledger, gateway, notifier)


@pytest.fixture
def customer() -> CustomerData:
    """Provide a complete customer payload."""
    return CustomerData(
        full_name="Priya Sharma",
        email="priya@example.com",
        phone="9876543210",
        project_title="Inventory dashboard",
        project_description="Realtime stock view for three warehouses",
        timeline="1 month",
        urgency="high",
    )


@pytest.fixture
def service() -> ServiceData:
    """Provide a consultation service payload."""
    return ServiceData(id=2, title="Technical Consultation", price=499, duration="60 minutes", original_price=999)


@pytest.fixture
def settings() -> Settings:
    """Provide settings with the background processor disabled and no .env file."""
    return Settings(_env_file=None, processor_enabled=False, merchant_upi_id="owner@upi", merchant_name="Site Owner")


@pytest.fixture
def client(settings: Settings, gateway: FakeGateway, notifier: FakeNotifier) -> Iterator[TestClient]:
    """Provide a TestClient whose lifespan builds the app around the fakes, with fresh rate limit counters."""
    limiter.reset()
    app = create_app(settings, gateway=gateway, email_service=notifier)
    with TestClient(app) as test_client:
        yield test_client
