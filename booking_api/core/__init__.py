"""Core package: provides models, the transaction ledger, settings, exceptions and shared utilities."""

from .ledger import TransactionLedger  # noqa: F401
from .models import CustomerData, ServiceData, Transaction, TransactionStatus  # noqa: F401
from .settings import Settings, get_settings  # noqa: F401
from .utils import get_logger  # noqa: F401
