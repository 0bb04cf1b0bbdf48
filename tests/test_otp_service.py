"""Unit tests for OTP issuing and verification."""

from datetime import timedelta

import pytest

from booking_api.core.exceptions import OTPError
from booking_api.services.otp_service import OTPService
from tests.conftest import FakeClock, FakeNotifier

OTP_LENGTH = 6


@pytest.fixture
def otp_service(notifier: FakeNotifier, clock: FakeClock) -> OTPService:
    """Provide an OTP service with a ten minute expiry on the fake clock."""
    return OTPService(notifier, expiry=timedelta(minutes=10), clock=clock)


def test_generate_otp_is_six_digits() -> None:
    """Generated codes are six-digit numbers."""
    for _ in range(50):
        code = OTPService.generate_otp()
        if len(code) != OTP_LENGTH or not code.isdigit():
            msg = f"Expected a six-digit code, got {code}"
            raise AssertionError(msg)


async def test_send_and_verify(otp_service: OTPService, notifier: FakeNotifier) -> None:
    """The mailed code verifies once, case-insensitively on the address."""
    await otp_service.send_otp("Priya@example.com")
    email, code = notifier.otp_emails[0]
    if email != "Priya@example.com":
        msg = f"Expected the code to be mailed to the given address, got {email}"
        raise AssertionError(msg)
    result = otp_service.verify_otp("priya@example.com", code)
    if not result.is_valid or result.message != "Email verified successfully":
        msg = f"Expected a successful verification, got {result}"
        raise AssertionError(msg)
    again = otp_service.verify_otp("priya@example.com", code)
    if again.is_valid or again.message != "OTP not found or expired":
        msg = f"Expected a consumed code to be rejected, got {again}"
        raise AssertionError(msg)


async def test_wrong_code_keeps_stored_code(otp_service: OTPService, notifier: FakeNotifier) -> None:
    """A wrong guess is rejected without consuming the real code."""
    await otp_service.send_otp("priya@example.com")
    code = notifier.otp_emails[0][1]
    wrong = otp_service.verify_otp("priya@example.com", "12345")
    if wrong.is_valid or wrong.message != "Invalid OTP":
        msg = f"Expected an invalid OTP result, got {wrong}"
        raise AssertionError(msg)
    if not otp_service.verify_otp("priya@example.com", code).is_valid:
        msg = "Expected the real code to still verify"
        raise AssertionError(msg)


async def test_expired_code(otp_service: OTPService, notifier: FakeNotifier, clock: FakeClock) -> None:
    """Codes past their expiry are rejected and dropped."""
    await otp_service.send_otp("priya@example.com")
    code = notifier.otp_emails[0][1]
    clock.advance(minutes=11)
    result = otp_service.verify_otp("priya@example.com", code)
    if result.is_valid or result.message != "OTP expired":
        msg = f"Expected an expired OTP result, got {result}"
        raise AssertionError(msg)


async def test_resend_replaces_code(otp_service: OTPService, notifier: FakeNotifier) -> None:
    """Requesting a new code invalidates the previous one."""
    await otp_service.send_otp("priya@example.com")
    await otp_service.send_otp("priya@example.com")
    first, second = notifier.otp_emails[0][1], notifier.otp_emails[1][1]
    if first != second and otp_service.verify_otp("priya@example.com", first).is_valid:
        msg = "Expected the first code to be replaced"
        raise AssertionError(msg)
    if not otp_service.verify_otp("priya@example.com", second).is_valid:
        msg = "Expected the latest code to verify"
        raise AssertionError(msg)


async def test_send_failure_discards_code(otp_service: OTPService, notifier: FakeNotifier) -> None:
    """A delivery failure raises OTPError and leaves nothing to verify."""
    notifier.fail = True
    with pytest.raises(OTPError):
        await otp_service.send_otp("priya@example.com")
    result = otp_service.verify_otp("priya@example.com", "123456")
    if result.message != "OTP not found or expired":
        msg = f"Expected no stored code, got {result}"
        raise AssertionError(msg)


async def test_clean_expired(otp_service: OTPService, clock: FakeClock) -> None:
    """Only expired codes are cleaned up."""
    await otp_service.send_otp("old@example.com")
    clock.advance(minutes=9)
    await otp_service.send_otp("new@example.com")
    clock.advance(minutes=2)
    if otp_service.clean_expired() != 1:
        msg = "Expected exactly one expired code to be removed"
        raise AssertionError(msg)
    if otp_service.clean_expired() != 0:
        msg = "Expected nothing left to clean"
        raise AssertionError(msg)


async def test_send_sweeps_abandoned_codes(otp_service: OTPService, clock: FakeClock) -> None:
    """Issuing a code drops codes that expired without ever being verified."""
    await otp_service.send_otp("abandoned@example.com")
    clock.advance(minutes=11)
    await otp_service.send_otp("priya@example.com")
    if "abandoned@example.com" in otp_service._store or "priya@example.com" not in otp_service._store:
        msg = f"Expected only the fresh code to remain, got {sorted(otp_service._store)}"
        raise AssertionError(msg)
