"""API package: provides FastAPI dependencies and route definitions for the application."""

from .dependencies import get_gateway, get_ledger, get_processor  # noqa: F401
from .routes import router  # noqa: F401
