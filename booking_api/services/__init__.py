"""Services package: payment gateway, e-mail and OTP adapters."""

from .base import Notifier, PaymentGateway  # noqa: F401
from .email_service import EmailService  # noqa: F401
from .otp_service import OTPService  # noqa: F401
from .phonepe_service import PhonePeService  # noqa: F401
