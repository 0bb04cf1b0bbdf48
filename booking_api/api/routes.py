"""FastAPI endpoints for the booking API.

This module defines the routes for creating PhonePe payments, checking payment status, receiving PhonePe webhooks,
sending booking e-mails on client request, verifying e-mail addresses with one-time codes, forwarding contact
messages, and health checks. Every endpoint answers with the standard ``ApiResponse`` envelope.
"""

import time
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from booking_api.api.dependencies import (
    get_app_settings,
    get_email_service,
    get_gateway,
    get_ledger,
    get_otp_service,
    get_processor,
    get_sent_confirmations,
)
from booking_api.api.limiter import PAYMENT_RATE_LIMIT, limiter
from booking_api.core.exceptions import CallbackValidationError, NotificationError, OTPError, PaymentGatewayError
from booking_api.core.ledger import TransactionLedger
from booking_api.core.models import (
    ApiResponse,
    BookingNotificationRequest,
    ContactMessage,
    FailureNotificationRequest,
    GatewayState,
    OTPRequest,
    OTPVerifyRequest,
    PaymentRequest,
    PaymentResponse,
)
from booking_api.core.settings import Settings
from booking_api.core.utils import generate_trace_id, get_logger, mask_email, sanitize_customer_data, utcnow_iso
from booking_api.services.base import Notifier, PaymentGateway
from booking_api.services.otp_service import OTPService
from booking_api.workers.transaction_processor import TransactionProcessor

router = APIRouter(prefix="/api")
logger = get_logger("booking-api.api")

STARTED_AT = time.monotonic()

CALLBACK_STATES = {
    "CHECKOUT_ORDER_COMPLETED": GatewayState.COMPLETED,
    "CHECKOUT_ORDER_FAILED": GatewayState.FAILED,
}


def api_response(data: Any = None, message: str = "", status_code: int = 200, success: bool = True) -> JSONResponse:
    """Wrap a payload in the standard response envelope."""
    body = ApiResponse(success=success, data=data, message=message, status_code=status_code, timestamp=utcnow_iso())
    return JSONResponse(body.model_dump(mode="json"), status_code=status_code)


def build_fallback_payment(payment: PaymentRequest, settings: Settings) -> PaymentResponse:
    """Build a manual UPI deep link used when the gateway cannot create an order."""
    transaction_id = f"MT{int(time.time() * 1000)}"
    payment_url = (
        f"upi://pay?pa={settings.merchant_upi_id}&pn={quote(settings.merchant_name)}"
        f"&am={payment.amount:.2f}&cu=INR&tn={quote(payment.service_data.title)}"
    )
    return PaymentResponse(transaction_id=transaction_id, payment_url=payment_url, amount=payment.amount)


@router.get("/", summary="API index")
async def index() -> JSONResponse:
    """List the available endpoints."""
    return api_response(
        {
            "message": "Portfolio Booking API",
            "version": "1.0.0",
            "endpoints": {
                "health": "/api/health",
                "createPhonePePayment": "/api/create-phonepe-payment",
                "phonePeWebhook": "/api/phonepe-webhook",
                "checkPaymentStatus": "/api/payment-status/{transaction_id}",
                "transaction": "/api/transactions/{transaction_id}",
                "sendConfirmationEmails": "/api/send-confirmation-emails",
                "sendFailureNotification": "/api/send-failure-notification",
                "sendOtp": "/api/send-otp",
                "verifyOtp": "/api/verify-otp",
                "sendContactMessage": "/api/send-contact-message",
            },
        },
        "Portfolio Booking API is running",
    )


@router.get(
    "/health",
    summary="Health check",
    description="Returns uptime, environment and the state of the background transaction processor.",
    responses={200: {"description": "API is healthy."}},
)
async def health(
    settings: Settings = Depends(get_app_settings),
    ledger: TransactionLedger = Depends(get_ledger),
    processor: TransactionProcessor = Depends(get_processor),
) -> JSONResponse:
    """Health check endpoint."""
    return api_response(
        {
            "status": "OK",
            "timestamp": utcnow_iso(),
            "uptime": round(time.monotonic() - STARTED_AT, 3),
            "environment": settings.environment,
            "processor_running": processor.is_running,
            "pending_transactions": len(ledger.list_pending()),
        },
        "Payment API is running",
    )


@router.post(
    "/create-phonepe-payment",
    summary="Create a PhonePe payment for a consultation booking",
    description=(
        "Creates a PhonePe checkout order and records it as PENDING so the background processor can confirm it "
        "and send the booking e-mails. When PhonePe is unreachable a manual UPI deep link is returned instead; "
        "that fallback payment is not tracked.\n\n"
        "**Response:**\n"
        "- 200 OK: `transactionId`, `paymentUrl`, `amount`, `status`.\n"
        "- 400 Bad Request: Missing or invalid fields."
    ),
    responses={
        200: {
            "description": "Payment request created.",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "data": {
                            "transactionId": "6f1c2b9e-3b0f-4e55-9a43-1d2f0c9b7a10",
                            "paymentUrl": "https://mercury-uat.phonepe.com/transact/...",
                            "amount": 499,
                            "status": "PENDING",
                            "paymentMethod": "phonepe",
                        },
                        "message": "PhonePe payment initiated successfully",
                        "status_code": 200,
                        "timestamp": "2025-05-18T10:30:49+00:00",
                    }
                }
            },
        },
        400: {"description": "Missing or invalid fields."},
        429: {"description": "Too many payment requests from this client."},
    },
)
@limiter.limit(PAYMENT_RATE_LIMIT)
async def create_phonepe_payment(
    request: Request,
    payment: PaymentRequest,
    settings: Settings = Depends(get_app_settings),
    ledger: TransactionLedger = Depends(get_ledger),
    gateway: PaymentGateway = Depends(get_gateway),
) -> JSONResponse:
    """Create a PhonePe payment and record it in the ledger."""
    trace_id = generate_trace_id()
    customer_log = sanitize_customer_data(payment.customer_data.model_dump())
    logger.info(f"[{trace_id}] Payment request: service={payment.service_data.title}, customer={customer_log}")
    try:
        initiation = await gateway.initiate_payment(payment.amount, payment.service_data, payment.customer_data)
    except PaymentGatewayError as exc:
        logger.error(f"[{trace_id}] PhonePe payment initiation failed: {exc}")
        fallback = build_fallback_payment(payment, settings)
        logger.info(f"[{trace_id}] Fallback UPI payment created: {fallback.transaction_id}")
        return api_response(fallback.model_dump(by_alias=True), "Payment request created successfully")

    ledger.put(
        initiation.transaction_id,
        amount=payment.amount,
        service_data=payment.service_data,
        customer_data=payment.customer_data,
        phonepe_order_id=initiation.order_id,
    )
    logger.info(f"[{trace_id}] PhonePe payment {initiation.transaction_id} initiated and stored as PENDING")
    response = PaymentResponse(
        transaction_id=initiation.transaction_id,
        payment_url=initiation.payment_url,
        amount=payment.amount,
    )
    return api_response(response.model_dump(by_alias=True), "PhonePe payment initiated successfully")


@router.get(
    "/payment-status/{transaction_id}",
    summary="Check live payment status",
    description="Queries PhonePe directly for the order state. The ledger is neither read nor changed.",
    responses={502: {"description": "PhonePe could not be reached."}},
)
async def payment_status(transaction_id: str, gateway: PaymentGateway = Depends(get_gateway)) -> JSONResponse:
    """Pass a status check straight through to the gateway."""
    trace_id = generate_trace_id()
    try:
        status = await gateway.check_payment_status(transaction_id)
    except PaymentGatewayError as exc:
        logger.error(f"[{trace_id}] Payment status check failed for {transaction_id}: {exc}")
        raise HTTPException(502, "Failed to check payment status") from exc
    logger.info(f"[{trace_id}] Payment status for {transaction_id}: {status.state}")
    return api_response(status.model_dump(mode="json"), "Payment status retrieved successfully")


@router.get(
    "/transactions/{transaction_id}",
    summary="Read the reconciliation record of a transaction",
    responses={404: {"description": "Transaction not tracked."}},
)
async def get_transaction(transaction_id: str, ledger: TransactionLedger = Depends(get_ledger)) -> JSONResponse:
    """Return the ledger entry for a transaction without the customer payload."""
    transaction = ledger.get(transaction_id)
    if transaction is None:
        raise HTTPException(404, "Transaction not found")
    data = transaction.model_dump(mode="json", exclude={"customer_data", "service_data"})
    return api_response(data, "Transaction retrieved successfully")


@router.post(
    "/phonepe-webhook",
    summary="Receive PhonePe order callbacks",
    description=(
        "Validates the callback Authorization header and applies completed/failed order events to the ledger, "
        "sending the outcome e-mail if the background processor has not already done so."
    ),
    responses={400: {"description": "Missing or invalid authorization, or malformed body."}},
)
async def phonepe_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    processor: TransactionProcessor = Depends(get_processor),
) -> JSONResponse:
    """Handle a PhonePe webhook callback."""
    trace_id = generate_trace_id()
    authorization = request.headers.get("authorization")
    if not authorization:
        logger.warning(f"[{trace_id}] Missing authorization header in PhonePe webhook")
        raise HTTPException(400, "Missing authorization header")
    body = await request.body()
    try:
        callback = gateway.validate_callback(authorization, body)
    except CallbackValidationError as exc:
        logger.error(f"[{trace_id}] PhonePe webhook rejected: {exc}")
        raise HTTPException(400, f"PhonePe Webhook Error: {exc}") from exc

    logger.info(f"[{trace_id}] PhonePe webhook {callback.type} for order {callback.order_id} ({callback.state})")
    state = CALLBACK_STATES.get(callback.type)
    transaction_status = None
    if state is None:
        logger.info(f"[{trace_id}] Unhandled callback type {callback.type}")
    elif callback.original_merchant_order_id:
        transaction = await processor.apply_gateway_state(
            callback.original_merchant_order_id, state, order_id=callback.order_id, trace_id=trace_id
        )
        if transaction is None:
            logger.warning(f"[{trace_id}] Callback for untracked transaction {callback.original_merchant_order_id}")
        else:
            transaction_status = transaction.status
    return api_response(
        {"received": True, "transaction_status": transaction_status},
        "PhonePe webhook processed successfully",
    )


def _reconciled_notification(transaction_id: str, ledger: TransactionLedger, trace_id: str) -> JSONResponse | None:
    """Answer for tracked transactions, whose outcome e-mail belongs to the transaction processor."""
    transaction = ledger.get(transaction_id)
    if transaction is None:
        return None
    if transaction.email_sent:
        logger.info(f"[{trace_id}] E-mails already sent for {transaction_id}")
        return api_response({"sent": False, "reason": "already_sent"}, "Emails already sent for this transaction")
    logger.info(f"[{trace_id}] {transaction_id} is tracked ({transaction.status}); leaving e-mail to reconciliation")
    return api_response(
        {"sent": False, "reason": "reconciliation", "transaction_status": transaction.status},
        "Emails for this transaction are sent once the payment is reconciled",
    )


@router.post(
    "/send-confirmation-emails",
    summary="Send booking confirmation e-mails on client request",
    description=(
        "Sends the customer confirmation and the business notification for a paid booking. Transactions tracked "
        "in the ledger are answered without sending, because the transaction processor sends their e-mails. "
        "Untracked transactions (manual UPI payments) are confirmed at most once per transaction id."
    ),
    responses={
        400: {"description": "Missing or invalid fields."},
        429: {"description": "Too many requests from this client."},
        500: {"description": "E-mail delivery failed."},
    },
)
@limiter.limit(PAYMENT_RATE_LIMIT)
async def send_confirmation_emails(
    request: Request,
    body: BookingNotificationRequest,
    ledger: TransactionLedger = Depends(get_ledger),
    email_service: Notifier = Depends(get_email_service),
    sent_confirmations: set[str] = Depends(get_sent_confirmations),
) -> JSONResponse:
    """Send booking confirmation e-mails for a transaction not handled by reconciliation."""
    trace_id = generate_trace_id()
    reconciled = _reconciled_notification(body.transaction_id, ledger, trace_id)
    if reconciled is not None:
        return reconciled
    if body.transaction_id in sent_confirmations:
        logger.info(f"[{trace_id}] Confirmation e-mails already sent for {body.transaction_id}")
        return api_response({"sent": False, "reason": "already_sent"}, "Emails already sent for this transaction")

    # Claimed before the send so a concurrent duplicate request is answered as already sent.
    sent_confirmations.add(body.transaction_id)
    try:
        await email_service.send_booking_emails(body.customer_data, body.service_data)
    except NotificationError as exc:
        sent_confirmations.discard(body.transaction_id)
        logger.error(f"[{trace_id}] Confirmation e-mails for {body.transaction_id} failed: {exc}")
        raise HTTPException(500, "Failed to send confirmation emails") from exc
    logger.info(
        f"[{trace_id}] Confirmation e-mails sent for {body.transaction_id} to {mask_email(body.customer_data.email)}"
    )
    return api_response({"sent": True}, "Confirmation emails sent successfully")


@router.post(
    "/send-failure-notification",
    summary="Report a failed payment on client request",
    description=(
        "Notifies the business owner that a payment failed. Transactions tracked in the ledger are answered "
        "without sending, because the transaction processor reports their failure or timeout."
    ),
    responses={
        400: {"description": "Missing or invalid fields."},
        429: {"description": "Too many requests from this client."},
        500: {"description": "E-mail delivery failed."},
    },
)
@limiter.limit(PAYMENT_RATE_LIMIT)
async def send_failure_notification(
    request: Request,
    body: FailureNotificationRequest,
    ledger: TransactionLedger = Depends(get_ledger),
    email_service: Notifier = Depends(get_email_service),
) -> JSONResponse:
    """Send a payment failure notice for a transaction not handled by reconciliation."""
    trace_id = generate_trace_id()
    reconciled = _reconciled_notification(body.transaction_id, ledger, trace_id)
    if reconciled is not None:
        return reconciled
    try:
        await email_service.send_payment_failure_notification(
            body.customer_data, body.service_data, body.reason, body.transaction_id
        )
    except NotificationError as exc:
        logger.error(f"[{trace_id}] Failure notification for {body.transaction_id} failed: {exc}")
        raise HTTPException(500, "Failed to send failure notification") from exc
    logger.info(f"[{trace_id}] Failure notification sent for {body.transaction_id}: {body.reason}")
    return api_response({"sent": True}, "Failure notification sent successfully")


@router.post("/send-otp", summary="Send an e-mail verification code")
async def send_otp(body: OTPRequest, otp_service: OTPService = Depends(get_otp_service)) -> JSONResponse:
    """Send a one-time code to the given address."""
    try:
        await otp_service.send_otp(body.email)
    except OTPError as exc:
        logger.error(f"OTP delivery to {mask_email(body.email)} failed: {exc}")
        raise HTTPException(500, "Failed to send OTP") from exc
    return api_response(None, "OTP sent successfully")


@router.post("/verify-otp", summary="Verify an e-mail verification code")
async def verify_otp(body: OTPVerifyRequest, otp_service: OTPService = Depends(get_otp_service)) -> JSONResponse:
    """Verify a one-time code."""
    result = otp_service.verify_otp(body.email, body.otp)
    if not result.is_valid:
        raise HTTPException(400, result.message)
    logger.info(f"Email verified: {mask_email(body.email)}")
    return api_response({"emailVerified": True}, result.message)


@router.post("/send-contact-message", summary="Forward a contact-form message")
async def send_contact_message(
    body: ContactMessage, email_service: Notifier = Depends(get_email_service)
) -> JSONResponse:
    """Send a contact-form message to the site owner."""
    try:
        await email_service.send_contact_message(body)
    except NotificationError as exc:
        logger.error(f"Contact message from {mask_email(body.email)} failed: {exc}")
        raise HTTPException(500, "Failed to send message") from exc
    logger.info(f"Contact message sent from {mask_email(body.email)}")
    return api_response({"sent": True}, "Message sent successfully")
