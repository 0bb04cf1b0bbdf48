"""Per-client rate limiting for the booking API.

Every route shares a default budget per client address; payment creation and the client-triggered e-mail routes
get a stricter one because each call reaches PhonePe or sends mail.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

DEFAULT_RATE_LIMIT = "100 per 15 minutes"
PAYMENT_RATE_LIMIT = "10 per 15 minutes"


def get_client_ip(request: Request) -> str:
    """Return the originating client address, honouring the first X-Forwarded-For hop behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri="memory://",
    strategy="fixed-window",
)
