"""FastAPI dependencies for DI (settings, ledger, gateway, e-mail, OTP, processor, sent confirmations).

Every long-lived component is built once in the application lifespan and stored on ``app.state``; these helpers
hand them to the endpoints so tests can swap any of them through ``app.dependency_overrides``.
"""

from fastapi import Request

from booking_api.core.ledger import TransactionLedger
from booking_api.core.settings import Settings
from booking_api.services.base import Notifier, PaymentGateway
from booking_api.services.otp_service import OTPService
from booking_api.workers.transaction_processor import TransactionProcessor

def get_app_settings(request: Request) -> Settings:
    """Provide the settings the application was built with."""
    return request.app.state.settings

def get_ledger(request: Request) -> TransactionLedger:
    """Provide the process-wide transaction ledger."""
    return request.app.state.ledger

def get_gateway(request: Request) -> PaymentGateway:
    """Provide the payment gateway client."""
    return request.app.state.gateway

def get_email_service(request: Request) -> Notifier:
    """Provide the e-mail service."""
    return request.app.state.email_service

def get_otp_service(request: Request) -> OTPService:
    """Provide the OTP service."""
    return request.app.state.otp_service

def get_processor(request: Request) -> TransactionProcessor:
    """Provide the background transaction processor."""
    return request.app.state.processor


def get_sent_confirmations(request: Request) -> set[str]:
    """Provide the ids of untracked transactions whose confirmation e-mails were sent on client request."""
    return request.app.state.sent_confirmations
