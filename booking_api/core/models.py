"""Pydantic models for the booking API.

This module defines the booking payloads captured from the frontend (customer and service details), the in-memory
Transaction record tracked by the ledger, the normalized gateway results, and the request/response bodies of the HTTP
endpoints.
"""

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_AMOUNT = 999999


class CamelModel(BaseModel):
    """Base model accepting both the frontend's camelCase keys and snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionStatus(StrEnum):
    """Lifecycle state of a ledger transaction."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        """Return True for states that are never reconciled again."""
        return self != TransactionStatus.PENDING


class GatewayState(StrEnum):
    """Order state as reported by the payment gateway."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CustomerData(CamelModel):
    """Booking form details about the customer, consumed by the e-mail templates."""

    full_name: str
    email: EmailStr
    phone: str = ""
    company: str = ""
    role: str = ""
    project_title: str = "Not specified"
    project_description: str = ""
    timeline: str = ""
    urgency: str = "normal"
    specific_requirements: str = ""
    expectations: str = ""
    preferred_day: str = ""
    preferred_meeting_time: str = ""
    communication_preference: str = ""


class ServiceData(CamelModel):
    """The consultation package being booked."""

    id: int | str
    title: str
    price: float = 0
    duration: str = ""
    original_price: float | None = None

    @property
    def discount_percent(self) -> int | None:
        """Percentage saved against the original price, if one is set."""
        if not self.original_price:
            return None
        return round((1 - self.price / self.original_price) * 100)


class Transaction(BaseModel):
    """One attempted payment, tracked from initiation through its terminal outcome.

    Instances are frozen; the ledger replaces an entry with a patched copy on every update, so any instance handed
    out by the ledger is a stable snapshot.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    status: TransactionStatus = TransactionStatus.PENDING
    retry_count: int = 0
    email_sent: bool = False
    created_at: datetime
    last_checked: datetime
    amount: float | None = None
    customer_data: CustomerData | None = None
    service_data: ServiceData | None = None
    phonepe_order_id: str | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    timeout_at: datetime | None = None
    timeout_reason: str | None = None


class PaymentInitiation(BaseModel):
    """Result of creating a payment request with the gateway."""

    transaction_id: str
    payment_url: str
    order_id: str | None = None
    state: str | None = None


class GatewayStatus(BaseModel):
    """Authoritative order status reported by the gateway."""

    order_id: str | None = None
    state: GatewayState
    amount: int | None = None
    expire_at: int | None = None
    payment_details: list[dict[str, Any]] = Field(default_factory=list)


class CallbackPayload(BaseModel):
    """A validated gateway webhook event."""

    type: str
    order_id: str | None = None
    original_merchant_order_id: str | None = None
    state: str | None = None
    amount: int | None = None


class PaymentRequest(CamelModel):
    """Body of the payment creation endpoint."""

    amount: float = Field(gt=0, le=MAX_AMOUNT)
    service_data: ServiceData
    customer_data: CustomerData


class PaymentResponse(CamelModel):
    """Data returned to the frontend after a payment request is created."""

    transaction_id: str
    payment_url: str
    amount: float
    status: str = TransactionStatus.PENDING.value
    payment_method: str = "phonepe"


class BookingNotificationRequest(CamelModel):
    """Body of the client-triggered confirmation e-mail endpoint.

    The booking and service payloads may be sent as objects or as JSON-encoded strings, and the customer payload is
    also accepted under its older ``bookingData`` key.
    """

    transaction_id: str = Field(min_length=1)
    customer_data: CustomerData = Field(
        validation_alias=AliasChoices("customerData", "bookingData", "customer_data")
    )
    service_data: ServiceData

    @field_validator("customer_data", "service_data", mode="before")
    @classmethod
    def decode_json_string(cls, value: Any) -> Any:
        """Decode payloads that arrive as JSON strings."""
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError as exc:
                msg = "must be an object or a JSON-encoded object"
                raise ValueError(msg) from exc
        return value


class FailureNotificationRequest(BookingNotificationRequest):
    """Body of the client-triggered payment failure notification endpoint."""

    reason: str = Field(min_length=1)


class OTPRequest(BaseModel):
    """Body of the send-otp endpoint."""

    email: EmailStr


class OTPVerifyRequest(BaseModel):
    """Body of the verify-otp endpoint."""

    email: EmailStr
    otp: str = Field(min_length=1)


class OTPResult(BaseModel):
    """Outcome of an OTP verification."""

    is_valid: bool
    message: str


class ContactMessage(BaseModel):
    """Body of the contact form endpoint."""

    name: str = Field(min_length=1)
    email: EmailStr
    message: str = Field(min_length=1)


class ApiResponse(BaseModel):
    """Standard response envelope used by every endpoint."""

    success: bool
    data: Any = None
    message: str = ""
    status_code: int = 200
    timestamp: str
