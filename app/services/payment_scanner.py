from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import structlog

from metrics.metrics import MetricsCollector
from models.rental import PaymentRecord, RentalTransaction
from services.rental_store import RentalTransactionStore
from services.scan_lock import NullScanLock, ScanLock
from utils.date_helper import (
    BILLING_MONTH,
    MonthPolicy,
    billing_due_date,
    thirty_day_months,
    to_day,
    utcnow,
)
from utils.exceptions import NotificationError, StorageError, ValidationError

logger = structlog.get_logger(__name__)


# =====================================
# DUE COMPUTATION
# =====================================

@dataclass(frozen=True)
class DueComputation:
    months_since_start: int
    months_paid: int
    months_due: int
    amount_due: Decimal
    next_payment_due: datetime

    @property
    def has_amount_due(self) -> bool:
        return self.amount_due > 0


def compute_due(
    txn: RentalTransaction,
    now: datetime,
    month_policy: MonthPolicy = thirty_day_months,
) -> DueComputation:
    """
    Months elapsed vs months covered by rent paid (deposit excluded).

    Only defined for transactions with a start date and positive rent.
    """
    months_since_start = max(0, month_policy(txn.rental_start_date, now))
    months_paid = txn.months_paid
    months_due = max(0, months_since_start - months_paid)
    return DueComputation(
        months_since_start=months_since_start,
        months_paid=months_paid,
        months_due=months_due,
        amount_due=months_due * txn.monthly_rent,
        next_payment_due=billing_due_date(txn.rental_start_date, months_paid + 1),
    )


# =====================================
# REPORTING
# =====================================

@dataclass
class PaymentDueEvent:
    transaction_id: str
    user_id: Optional[str]
    due_date: datetime
    amount: Decimal
    amount_due: Decimal
    months_due: int
    days_until_due: int
    notified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["due_date"] = self.due_date.isoformat()
        data["amount"] = str(self.amount)
        data["amount_due"] = str(self.amount_due)
        return data


@dataclass
class ScanReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    skipped: int = 0
    payment_due_events: int = 0
    notifications_sent: int = 0
    overdue_marked: int = 0
    failures: int = 0
    skipped_locked: bool = False
    events: List[PaymentDueEvent] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        if self.skipped_locked:
            return "skipped_locked"
        return "partial" if self.failures else "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outcome": self.outcome,
            "scanned": self.scanned,
            "skipped": self.skipped,
            "payment_due_events": self.payment_due_events,
            "notifications_sent": self.notifications_sent,
            "overdue_marked": self.overdue_marked,
            "failures": self.failures,
            "skipped_locked": self.skipped_locked,
            "events": [e.to_dict() for e in self.events],
        }


# =====================================
# SCANNER
# =====================================

class PaymentDueScanner:
    """
    Daily reconciliation of rent collected against months elapsed.

    Per transaction: stale Pending records are flipped to Overdue, then a
    single payment-due event is emitted for the next unpaid billing month
    once a full billing month has passed since the start date or the last
    record. The event is persisted as a PaymentRecord before the customer
    is emailed, so a repeated run finds it and stays quiet.
    """

    def __init__(
        self,
        store: RentalTransactionStore,
        notifier,
        lock: Optional[ScanLock] = None,
        month_policy: MonthPolicy = thirty_day_months,
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.lock = lock or NullScanLock()
        self.month_policy = month_policy
        self.clock = clock
        self.metrics = metrics

    async def run_due_scan(self) -> ScanReport:
        report = ScanReport(started_at=self.clock())

        try:
            acquired = await self.lock.acquire()
        except StorageError as e:
            # advisory only, scan anyway
            logger.warning("payment_scan_lock_unavailable", error=str(e))
            acquired = None

        if acquired is False:
            report.skipped_locked = True
            report.finished_at = self.clock()
            logger.info("payment_scan_skipped_locked")
            self._record(report)
            return report

        try:
            await self._scan(report)
        except StorageError:
            if self.metrics is not None:
                self.metrics.record_scan("failed")
            raise
        finally:
            if acquired:
                await self.lock.release()

        report.finished_at = self.clock()
        logger.info(
            "payment_scan_completed",
            scanned=report.scanned,
            skipped=report.skipped,
            payment_due_events=report.payment_due_events,
            notifications_sent=report.notifications_sent,
            overdue_marked=report.overdue_marked,
            failures=report.failures,
        )
        self._record(report)
        return report

    def _record(self, report: ScanReport):
        if self.metrics is not None:
            self.metrics.record_scan(report.outcome, report.payment_due_events, report.overdue_marked)

    async def _scan(self, report: ScanReport):
        candidates = await self.store.find_due_scan_candidates()
        logger.info("payment_scan_started", candidates=len(candidates))

        for txn in candidates:
            report.scanned += 1
            try:
                await self.process_transaction(txn, report)
            except (StorageError, NotificationError) as e:
                report.failures += 1
                logger.error(
                    "payment_scan_transaction_failed",
                    transaction_id=txn.transaction_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )

    async def process_transaction(self, txn: RentalTransaction, report: ScanReport):
        if txn.monthly_rent <= 0:
            report.skipped += 1
            logger.debug("payment_scan_skip_no_rent", transaction_id=txn.transaction_id)
            return
        if txn.rental_start_date is None:
            report.skipped += 1
            logger.warning("payment_scan_skip_no_start_date", transaction_id=txn.transaction_id)
            return

        now = self.clock()
        today = to_day(now)

        for record in txn.pending_past_due(today):
            if await self.store.mark_record_overdue(txn.transaction_id, record.due_date):
                report.overdue_marked += 1
                logger.info(
                    "payment_record_marked_overdue",
                    transaction_id=txn.transaction_id,
                    month=record.month,
                )

        due = compute_due(txn, now, self.month_policy)
        if not due.has_amount_due:
            return

        reference = max(txn.rental_start_date, txn.latest_due_date or txn.rental_start_date)
        if now - reference < BILLING_MONTH:
            return

        if txn.has_record_due_on(due.next_payment_due):
            logger.debug(
                "payment_due_already_recorded",
                transaction_id=txn.transaction_id,
                due_date=due.next_payment_due.isoformat(),
            )
            return

        record = PaymentRecord.for_due_date(due.next_payment_due, txn.monthly_rent, today=now)
        if not await self.store.append_payment_record(txn.transaction_id, record):
            # another writer recorded this due date first
            return

        event = PaymentDueEvent(
            transaction_id=txn.transaction_id,
            user_id=str(txn.user_id) if txn.user_id is not None else None,
            due_date=record.due_date,
            amount=record.amount,
            amount_due=due.amount_due,
            months_due=due.months_due,
            days_until_due=(to_day(record.due_date) - today).days,
        )
        report.payment_due_events += 1
        report.events.append(event)
        logger.info(
            "payment_due_event",
            transaction_id=txn.transaction_id,
            months_due=due.months_due,
            amount_due=str(due.amount_due),
            due_date=record.due_date.isoformat(),
            status=record.status.value,
        )

        customer = await self.store.get_customer(txn.user_id)
        if customer is None or not customer.email:
            raise ValidationError(f"No email address on file for rental {txn.transaction_id}")
        product = await self.store.get_product(txn.furniture_id)

        await self.notifier.send_payment_reminder(
            customer.email,
            txn.to_summary(customer, product),
            record.to_payload(),
            event.days_until_due,
            amount_due=due.amount_due,
            months_due=due.months_due,
        )
        event.notified = True
        report.notifications_sent += 1
