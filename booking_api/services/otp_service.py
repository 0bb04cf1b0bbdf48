"""OTP generation, storage and verification for booking-form e-mail checks."""

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from booking_api.core.exceptions import NotificationError, OTPError
from booking_api.core.models import OTPResult
from booking_api.core.utils import get_logger, mask_email, utcnow
from booking_api.services.base import Notifier

logger = get_logger("booking-api.otp")


@dataclass(frozen=True)
class _StoredOTP:
    otp: str
    expires_at: datetime


class OTPService:
    """Issues six-digit codes by e-mail and verifies them once."""

    def __init__(
        self,
        email_service: Notifier,
        expiry: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize an empty in-memory OTP store."""
        self.email_service = email_service
        self.expiry = expiry
        self._clock = clock
        self._store: dict[str, _StoredOTP] = {}

    @staticmethod
    def generate_otp() -> str:
        """Return a random six-digit code."""
        return str(secrets.randbelow(900000) + 100000)

    async def send_otp(self, email: str) -> None:
        """Store a fresh code for ``email`` and mail it, replacing any earlier code.

        Expired codes of other addresses are swept first, so the store only ever holds codes issued within the
        expiry window.
        """
        swept = self.clean_expired()
        if swept:
            logger.debug(f"Dropped {swept} expired OTP codes")
        key = email.lower()
        otp = self.generate_otp()
        self._store[key] = _StoredOTP(otp=otp, expires_at=self._clock() + self.expiry)
        try:
            await self.email_service.send_otp_email(email, otp)
        except NotificationError as exc:
            self._store.pop(key, None)
            msg = "Failed to send OTP"
            raise OTPError(msg) from exc
        logger.info(f"OTP sent to {mask_email(email)}")

    def verify_otp(self, email: str, otp: str) -> OTPResult:
        """Check a submitted code; a matching code is consumed."""
        key = email.lower()
        stored = self._store.get(key)
        if stored is None:
            return OTPResult(is_valid=False, message="OTP not found or expired")
        if self._clock() > stored.expires_at:
            del self._store[key]
            return OTPResult(is_valid=False, message="OTP expired")
        if not secrets.compare_digest(stored.otp, otp.strip()):
            return OTPResult(is_valid=False, message="Invalid OTP")
        del self._store[key]
        return OTPResult(is_valid=True, message="Email verified successfully")

    def clean_expired(self) -> int:
        """Drop expired codes and return how many were removed."""
        now = self._clock()
        expired = [key for key, stored in self._store.items() if now > stored.expires_at]
        for key in expired:
            del self._store[key]
        return len(expired)
