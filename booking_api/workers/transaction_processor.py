"""Background reconciliation of pending gateway transactions.

The processor owns one asyncio task that runs a reconciliation pass immediately on start and then once per interval.
A pass snapshots the eligible PENDING entries of the ledger, asks the payment gateway for each one's authoritative
state, moves the entry to its next state and, when that state is terminal, sends exactly one outcome e-mail. Passes
never overlap: the next wait only begins after the previous pass has finished.
"""

import asyncio

from booking_api.core.ledger import TransactionLedger
from booking_api.core.models import GatewayState, Transaction, TransactionStatus
from booking_api.core.utils import generate_trace_id, get_logger, utcnow
from booking_api.services.base import Notifier, PaymentGateway

logger = get_logger("booking-api.processor")

DEFAULT_INTERVAL_SECONDS = 30.0

FAILURE_REASON = "Payment failed at gateway"
TIMEOUT_REASON = "Exceeded maximum retry attempts"
FAILURE_NOTICE = "Payment failed during processing"
TIMEOUT_NOTICE = "Payment timeout - exceeded maximum retry attempts"


class TransactionProcessor:
    """Periodically reconciles PENDING ledger entries against the payment gateway."""

    def __init__(
        self,
        ledger: TransactionLedger,
        gateway: PaymentGateway,
        notifier: Notifier,
        concurrency: int = 1,
    ) -> None:
        """Initialize the processor with its ledger, collaborators and per-pass fan-out limit."""
        self.ledger = ledger
        self.gateway = gateway
        self.notifier = notifier
        self.concurrency = max(1, concurrency)
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        """Return True while the background task is alive."""
        return self._task is not None and not self._task.done()

    def start(self, interval_seconds: float = DEFAULT_INTERVAL_SECONDS) -> None:
        """Start the background loop; must be called from a running event loop.

        A second call while running only logs a warning.
        """
        if self.is_running:
            logger.warning("Transaction processor is already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(interval_seconds), name="transaction-processor")
        logger.info(f"Transaction processor started (interval={interval_seconds}s, concurrency={self.concurrency})")

    async def stop(self) -> None:
        """Stop scheduling new passes and wait for the pass in progress to finish."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        await self._task
        self._task = None
        self._stop_event = None
        logger.info("Transaction processor stopped")

    async def _run(self, interval_seconds: float) -> None:
        while True:
            try:
                await self.process_pending_transactions()
            except Exception:
                logger.exception("Reconciliation pass failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
            except TimeoutError:
                continue
            return

    async def process_pending_transactions(self) -> int:
        """Run one reconciliation pass and prune expired entries; return the number of entries checked."""
        trace_id = generate_trace_id()
        pending = self.ledger.list_pending()
        if pending:
            logger.info(f"[{trace_id}] Processing {len(pending)} pending transactions")
            if self.concurrency == 1:
                for transaction in pending:
                    await self.process_transaction(transaction, trace_id)
            else:
                semaphore = asyncio.Semaphore(self.concurrency)

                async def bounded(transaction: Transaction) -> None:
                    async with semaphore:
                        await self.process_transaction(transaction, trace_id)

                await asyncio.gather(*(bounded(transaction) for transaction in pending))
        pruned = self.ledger.prune()
        if pruned:
            logger.info(f"[{trace_id}] Pruned {pruned} finished transactions")
        return len(pending)

    async def process_transaction(self, transaction: Transaction, trace_id: str | None = None) -> None:
        """Reconcile a single entry. Never raises; failures are logged and counted as an attempt."""
        trace_id = trace_id or generate_trace_id()
        logger.info(f"[{trace_id}] Checking transaction {transaction.id} (retry_count={transaction.retry_count})")
        try:
            status = await self.gateway.check_payment_status(transaction.id)
        except Exception:
            logger.exception(f"[{trace_id}] Error checking transaction {transaction.id}")
            await self._record_failed_attempt(transaction.id, trace_id)
            return
        await self.apply_gateway_state(transaction.id, status.state, order_id=status.order_id, trace_id=trace_id)

    async def apply_gateway_state(
        self,
        transaction_id: str,
        state: GatewayState | str,
        order_id: str | None = None,
        trace_id: str | None = None,
    ) -> Transaction | None:
        """Move a PENDING entry according to the gateway's reported state and notify on a terminal outcome.

        Used by the polling pass and by the webhook. Entries that are unknown or no longer PENDING are returned
        untouched, so a webhook and a poll racing on the same order notify only once.
        """
        trace_id = trace_id or generate_trace_id()
        current = self.ledger.get(transaction_id)
        if current is None or current.status != TransactionStatus.PENDING:
            return current

        # No await between the read above and the status write below, so the claim is atomic.
        if state == GatewayState.COMPLETED:
            updated = self.ledger.update(
                transaction_id,
                TransactionStatus.COMPLETED,
                phonepe_order_id=order_id or current.phonepe_order_id,
                completed_at=utcnow(),
            )
            logger.info(f"[{trace_id}] Transaction {transaction_id} completed")
        elif state == GatewayState.FAILED:
            updated = self.ledger.update(
                transaction_id, TransactionStatus.FAILED, failure_reason=FAILURE_REASON, failed_at=utcnow()
            )
            logger.warning(f"[{trace_id}] Transaction {transaction_id} failed")
        elif current.retry_count + 1 >= self.ledger.retry_limit:
            updated = self._time_out(transaction_id, trace_id)
        else:
            updated = self.ledger.update(transaction_id, TransactionStatus.PENDING)
            logger.info(
                f"[{trace_id}] Transaction {transaction_id} still pending (retry_count={updated.retry_count})"
            )
            return updated

        await self._notify(updated, trace_id)
        return self.ledger.get(transaction_id)

    async def _record_failed_attempt(self, transaction_id: str, trace_id: str) -> None:
        """Count an attempt whose gateway query raised; the last allowed attempt times the entry out."""
        current = self.ledger.get(transaction_id)
        if current is None or current.status != TransactionStatus.PENDING:
            return
        if current.retry_count + 1 >= self.ledger.retry_limit:
            await self._notify(self._time_out(transaction_id, trace_id), trace_id)
        else:
            self.ledger.update(transaction_id, TransactionStatus.PENDING)

    def _time_out(self, transaction_id: str, trace_id: str) -> Transaction:
        logger.warning(f"[{trace_id}] Transaction {transaction_id} timed out")
        return self.ledger.update(
            transaction_id, TransactionStatus.TIMEOUT, timeout_reason=TIMEOUT_REASON, timeout_at=utcnow()
        )

    async def _notify(self, transaction: Transaction, trace_id: str) -> None:
        """Send the outcome e-mail for a freshly terminal entry and flag it as sent on success."""
        if transaction.email_sent:
            return
        if transaction.customer_data is None or transaction.service_data is None:
            logger.info(f"[{trace_id}] No booking data for {transaction.id}; skipping notification")
            return
        try:
            if transaction.status == TransactionStatus.COMPLETED:
                await self.notifier.send_booking_emails(transaction.customer_data, transaction.service_data)
            else:
                reason = TIMEOUT_NOTICE if transaction.status == TransactionStatus.TIMEOUT else FAILURE_NOTICE
                await self.notifier.send_payment_failure_notification(
                    transaction.customer_data, transaction.service_data, reason, transaction.id
                )
        except Exception:
            # Terminal entries are never polled again, so this notification is not retried.
            logger.exception(f"[{trace_id}] Failed to send {transaction.status} notification for {transaction.id}")
            return
        self.ledger.update(transaction.id, transaction.status, email_sent=True)
        logger.info(f"[{trace_id}] {transaction.status} notification sent for {transaction.id}")
