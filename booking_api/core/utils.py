"""Shared utility functions for the booking API."""

import logging
import secrets
import time
from datetime import UTC, datetime

import colorlog

ROOT_LOGGER_NAME = "booking-api"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def utcnow() -> datetime:
    """Get the current UTC time as an aware datetime."""
    return datetime.now(UTC)


def utcnow_iso() -> str:
    """Get the current UTC time as an ISO8601 string."""
    return utcnow().isoformat()


def generate_trace_id() -> str:
    """Build a short trace id used to correlate log lines of one request or tick."""
    return f"trace-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def mask_email(email: str) -> str:
    """Keep the first two characters of the local part, hide the rest."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:2]}***@{domain}"


def mask_phone(phone: str) -> str:
    """Keep the first three and last four digits of a phone number."""
    if len(phone) <= 7:  # noqa: PLR2004
        return "***"
    return f"{phone[:3]}***{phone[-4:]}"


def sanitize_customer_data(customer: dict) -> dict:
    """Return a copy of a customer payload that is safe to log."""
    sanitized = dict(customer)
    if sanitized.get("email"):
        sanitized["email"] = mask_email(sanitized["email"])
    if sanitized.get("phone"):
        sanitized["phone"] = mask_phone(sanitized["phone"])
    return sanitized
