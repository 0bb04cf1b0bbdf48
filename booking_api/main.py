"""Main entrypoint and application factory for the booking API.

This module configures logging, builds the long-lived components (transaction ledger, PhonePe client, e-mail and
OTP services, background transaction processor) in the application lifespan, applies per-client rate limits,
registers the error handlers that render failures in the standard response envelope, and exposes the Scalar API
reference endpoint. It also includes the main entrypoint for running the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from scalar_fastapi import get_scalar_api_reference
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from booking_api.api.limiter import limiter
from booking_api.api.routes import api_response, router
from booking_api.core.ledger import TransactionLedger
from booking_api.core.settings import Settings, get_settings
from booking_api.core.utils import ROOT_LOGGER_NAME, get_logger
from booking_api.services.base import Notifier, PaymentGateway
from booking_api.services.email_service import EmailService
from booking_api.services.otp_service import OTPService
from booking_api.services.phonepe_service import PhonePeService
from booking_api.workers.transaction_processor import TransactionProcessor

logger = get_logger(ROOT_LOGGER_NAME)


# --- Logging Setup ---
def setup_logging(level: str) -> None:
    """Apply the configured level to the project's logger hierarchy."""
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level.upper())
    for name, child in logging.Logger.manager.loggerDict.items():
        if name.startswith(f"{ROOT_LOGGER_NAME}.") and isinstance(child, logging.Logger):
            child.setLevel(level.upper())


def create_app(
    settings: Settings | None = None,
    gateway: PaymentGateway | None = None,
    email_service: Notifier | None = None,
) -> FastAPI:
    """Build the FastAPI application; collaborators may be injected, otherwise they are built from settings."""
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create the shared components, run the processor while serving, and shut everything down in order."""
        ledger = TransactionLedger(
            retry_limit=settings.retry_limit,
            retention=timedelta(hours=settings.retention_hours),
        )
        app_gateway = gateway or PhonePeService(settings)
        app_email = email_service or EmailService(settings)
        processor = TransactionProcessor(
            ledger, app_gateway, app_email, concurrency=settings.reconcile_concurrency
        )
        app.state.settings = settings
        app.state.ledger = ledger
        app.state.gateway = app_gateway
        app.state.email_service = app_email
        app.state.otp_service = OTPService(app_email, expiry=timedelta(minutes=settings.otp_expiry_minutes))
        app.state.processor = processor
        app.state.sent_confirmations = set()

        if settings.processor_enabled:
            processor.start(settings.reconcile_interval_seconds)
        logger.info(f"Booking API ready ({settings.environment}, PhonePe {settings.phonepe_env})")
        try:
            yield
        finally:
            logger.info("Shutdown signal received, stopping background work")
            await processor.stop()
            await app_gateway.aclose()

    app = FastAPI(
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        title="Portfolio Booking API",
        description="""
    Backend for booking paid consultations from the portfolio site.

    **Endpoints:**
    - `POST /api/create-phonepe-payment`: Create a PhonePe payment for a booking.
    - `GET /api/payment-status/{transaction_id}`: Live payment status from PhonePe.
    - `GET /api/transactions/{transaction_id}`: Reconciliation record of a tracked payment.
    - `POST /api/phonepe-webhook`: PhonePe order callbacks.
    - `POST /api/send-confirmation-emails`, `POST /api/send-failure-notification`: Client-triggered booking e-mails.
    - `POST /api/send-otp`, `POST /api/verify-otp`: E-mail verification.
    - `POST /api/send-contact-message`: Contact form.
    - `GET /api/health`: Health check.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
        version="1.0.0",
    )
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Render HTTP errors, including unknown routes, in the response envelope."""
        message = exc.detail
        if exc.status_code == 404 and message == "Not Found":  # noqa: PLR2004
            message = f"Route {request.method} {request.url.path} not found"
        return api_response(None, str(message), status_code=exc.status_code, success=False)

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Render rate limit rejections in the response envelope.

        Must stay synchronous: SlowAPIMiddleware calls it without awaiting for the default per-client limit.
        """
        logger.warning(f"Rate limit exceeded for {request.method} {request.url.path}: {exc.detail}")
        return api_response(
            None, f"Too many requests, please try again later ({exc.detail})", status_code=429, success=False
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Render any unhandled error as a 500 in the response envelope."""
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return api_response(None, "Internal server error", status_code=500, success=False)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Render request validation failures as 400 responses listing the offending fields."""
        fields = sorted(
            {".".join(str(part) for part in error["loc"] if part != "body") or "body" for error in exc.errors()}
        )
        logger.warning(f"Validation failed for {request.method} {request.url.path}: {fields}")
        return api_response(
            {"errors": fields}, f"Missing or invalid fields: {', '.join(fields)}", status_code=400, success=False
        )

    @app.get("/scalar", include_in_schema=False)
    async def scalar_docs() -> JSONResponse:
        """Return Scalar API reference."""
        return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("booking_api.main:app", host=settings.server_host, port=settings.server_port, reload=True)
