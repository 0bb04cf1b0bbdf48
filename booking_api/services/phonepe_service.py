"""PhonePeService: PhonePe standard checkout adapter built on httpx.

Covers the three calls the booking flow needs: creating a checkout order, reading an order's status, and validating
the webhook callbacks PhonePe posts back. OAuth access tokens are fetched with the client-credentials grant and reused
until shortly before they expire.
"""

import hashlib
import hmac
import json
import time
import uuid

import httpx
from pydantic import ValidationError

from booking_api.core.exceptions import CallbackValidationError, PaymentGatewayError
from booking_api.core.models import CallbackPayload, CustomerData, GatewayStatus, PaymentInitiation, ServiceData
from booking_api.core.settings import Settings
from booking_api.core.utils import get_logger
from booking_api.services.base import PaymentGateway

logger = get_logger("booking-api.phonepe")

BASE_URLS = {
    "SANDBOX": {
        "auth": "https://api-preprod.phonepe.com/apis/pg-sandbox",
        "pg": "https://api-preprod.phonepe.com/apis/pg-sandbox",
    },
    "PRODUCTION": {
        "auth": "https://api.phonepe.com/apis/identity-manager",
        "pg": "https://api.phonepe.com/apis/pg",
    },
}
PAISA_PER_RUPEE = 100
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class PhonePeService(PaymentGateway):
    """Payment gateway client for PhonePe standard checkout (v2 API)."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the service with settings and an optional pre-built httpx client."""
        self.settings = settings
        urls = BASE_URLS[settings.phonepe_env]
        self.auth_url = f"{urls['auth']}/v1/oauth/token"
        self.pg_url = urls["pg"]
        self.client = client or httpx.AsyncClient(timeout=settings.phonepe_timeout_seconds)
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @staticmethod
    def generate_transaction_id() -> str:
        """Return a fresh merchant order id."""
        return str(uuid.uuid4())

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        await self.client.aclose()

    async def _get_access_token(self) -> str:
        """Return a cached OAuth token, fetching a new one when it is missing or about to expire."""
        if self._access_token and time.time() < self._token_expires_at - TOKEN_EXPIRY_MARGIN_SECONDS:
            return self._access_token
        form = {
            "client_id": self.settings.phonepe_client_id,
            "client_version": str(self.settings.phonepe_client_version),
            "client_secret": self.settings.phonepe_client_secret,
            "grant_type": "client_credentials",
        }
        try:
            response = await self.client.post(self.auth_url, data=form)
            response.raise_for_status()
            body = response.json()
            access_token = body["access_token"]
            expires_at = float(body.get("expires_at") or time.time() + 3600)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            msg = f"PhonePe authorization failed: {exc!r}"
            logger.exception(msg)
            raise PaymentGatewayError(msg) from exc
        self._access_token = access_token
        self._token_expires_at = expires_at
        return self._access_token

    async def _request(self, method: str, path: str, **kwargs: object) -> dict:
        """Send an authorized request to the checkout API and return the decoded JSON body."""
        token = await self._get_access_token()
        headers = {"Authorization": f"O-Bearer {token}", "Content-Type": "application/json"}
        try:
            response = await self.client.request(method, f"{self.pg_url}{path}", headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            msg = f"PhonePe API error {exc.response.status_code}: {exc.response.text}"
            raise PaymentGatewayError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"PhonePe request failed: {exc}"
            raise PaymentGatewayError(msg) from exc
        try:
            body = response.json()
        except ValueError as exc:
            msg = f"PhonePe returned a non-JSON body ({response.status_code}): {response.text[:200]}"
            raise PaymentGatewayError(msg) from exc
        if not isinstance(body, dict):
            msg = f"PhonePe returned an unexpected body: {response.text[:200]}"
            raise PaymentGatewayError(msg)
        return body

    async def initiate_payment(
        self, amount: float, service_data: ServiceData, customer_data: CustomerData
    ) -> PaymentInitiation:
        """Create a checkout order; ``amount`` is in rupees and is sent in paisa."""
        merchant_order_id = self.generate_transaction_id()
        payload = {
            "merchantOrderId": merchant_order_id,
            "amount": round(amount * PAISA_PER_RUPEE),
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "message": service_data.title,
                "merchantUrls": {
                    "redirectUrl": f"{self.settings.frontend_url}/payment-success?txnId={merchant_order_id}",
                },
            },
            "metaInfo": {"udf1": str(service_data.id), "udf2": customer_data.project_title},
        }
        try:
            body = await self._request("POST", "/checkout/v2/pay", json=payload)
            payment_url = body["redirectUrl"]
        except (PaymentGatewayError, KeyError) as exc:
            msg = f"PhonePe payment initiation failed: {exc}"
            raise PaymentGatewayError(msg) from exc
        logger.info(f"Created PhonePe order {body.get('orderId')} for merchant order {merchant_order_id}")
        return PaymentInitiation(
            transaction_id=merchant_order_id,
            payment_url=payment_url,
            order_id=body.get("orderId"),
            state=body.get("state"),
        )

    async def check_payment_status(self, merchant_order_id: str) -> GatewayStatus:
        """Fetch the authoritative state of an order by merchant order id."""
        try:
            body = await self._request(
                "GET", f"/checkout/v2/order/{merchant_order_id}/status", params={"details": "false"}
            )
            return GatewayStatus(
                order_id=body.get("orderId"),
                state=body.get("state"),
                amount=body.get("amount"),
                expire_at=body.get("expireAt"),
                payment_details=body.get("paymentDetails") or [],
            )
        except (PaymentGatewayError, ValidationError) as exc:
            msg = f"Status check failed: {exc}"
            raise PaymentGatewayError(msg) from exc

    def validate_callback(self, authorization: str, body: bytes | str) -> CallbackPayload:
        """Check the webhook Authorization header and parse the callback body.

        PhonePe signs callbacks with ``sha256("<username>:<password>")`` of the credentials configured on the
        merchant dashboard.
        """
        credentials = f"{self.settings.phonepe_webhook_username}:{self.settings.phonepe_webhook_password}"
        expected = hashlib.sha256(credentials.encode()).hexdigest()
        received = authorization.removeprefix("SHA256").strip().lower()
        if not hmac.compare_digest(expected, received):
            msg = "Callback validation failed: authorization mismatch"
            raise CallbackValidationError(msg)
        try:
            data = json.loads(body)
            payload = data["payload"]
        except (ValueError, KeyError, TypeError) as exc:
            msg = f"Callback validation failed: malformed body ({exc})"
            raise CallbackValidationError(msg) from exc
        # v2 callbacks carry a dotted "event" name; older ones a "type"
        event_type = data.get("type") or str(data.get("event", "")).replace(".", "_").upper()
        return CallbackPayload(
            type=event_type,
            order_id=payload.get("orderId"),
            original_merchant_order_id=payload.get("originalMerchantOrderId") or payload.get("merchantOrderId"),
            state=payload.get("state"),
            amount=payload.get("amount"),
        )
