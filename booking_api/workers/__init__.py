"""Workers package: background reconciliation of pending payments."""

from .transaction_processor import TransactionProcessor  # noqa: F401
