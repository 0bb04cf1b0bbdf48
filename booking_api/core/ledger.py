"""In-memory ledger of gateway transactions awaiting reconciliation.

The ledger lives for the lifetime of the server process; nothing is persisted. It is built once in the application
lifespan and shared by the intake routes (which insert entries) and the transaction processor (which mutates them).
All methods are synchronous, so under the single event loop each call is atomic with respect to other coroutines.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from booking_api.core.models import Transaction, TransactionStatus
from booking_api.core.utils import utcnow

DEFAULT_RETRY_LIMIT = 10
DEFAULT_RETENTION = timedelta(hours=24)


class TransactionLedger:
    """Process-wide map of transaction id to its reconciliation state."""

    def __init__(
        self,
        retry_limit: int = DEFAULT_RETRY_LIMIT,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize an empty ledger with its retry budget, retention window and clock."""
        self.retry_limit = retry_limit
        self.retention = retention
        self._clock = clock
        self._transactions: dict[str, Transaction] = {}

    def __len__(self) -> int:
        return len(self._transactions)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._transactions

    def put(self, transaction_id: str, **data: Any) -> Transaction:
        """Insert a fresh PENDING entry, replacing any entry with the same id."""
        now = self._clock()
        data.update(
            id=transaction_id,
            status=TransactionStatus.PENDING,
            retry_count=0,
            email_sent=False,
            created_at=now,
            last_checked=now,
        )
        transaction = Transaction(**data)
        self._transactions[transaction_id] = transaction
        return transaction

    def get(self, transaction_id: str) -> Transaction | None:
        """Return the entry for an id, or None when unknown."""
        return self._transactions.get(transaction_id)

    def update(self, transaction_id: str, status: TransactionStatus, **patch: Any) -> Transaction | None:
        """Record a reconciliation attempt.

        Merges ``patch`` into the entry, sets the new status, stamps ``last_checked`` and increments ``retry_count``.
        Unknown ids are ignored and None is returned.
        """
        current = self._transactions.get(transaction_id)
        if current is None:
            return None
        patch.update(
            status=status,
            last_checked=self._clock(),
            retry_count=current.retry_count + 1,
        )
        updated = current.model_copy(update=patch)
        self._transactions[transaction_id] = updated
        return updated

    def list_pending(self) -> list[Transaction]:
        """Snapshot of every PENDING entry that still has retry budget left."""
        return [
            transaction
            for transaction in self._transactions.values()
            if transaction.status == TransactionStatus.PENDING and transaction.retry_count < self.retry_limit
        ]

    def prune(self) -> int:
        """Delete terminal entries not checked within the retention window; return how many were removed."""
        cutoff = self._clock() - self.retention
        expired = [
            transaction_id
            for transaction_id, transaction in self._transactions.items()
            if transaction.status != TransactionStatus.PENDING and transaction.last_checked < cutoff
        ]
        for transaction_id in expired:
            del self._transactions[transaction_id]
        return len(expired)
