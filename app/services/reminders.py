from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from metrics.metrics import MetricsCollector
from models.rental import Customer, PaymentRecord, PaymentStatus, Product, RentalStatus, RentalTransaction
from services.rental_store import RentalTransactionStore
from utils.date_helper import calendar_due_dates, to_day, utcnow
from utils.exceptions import NotFoundError, NotificationError, StorageError, ValidationError

logger = structlog.get_logger(__name__)

# days before the due date on which a reminder goes out
DUE_REMINDER_DAYS = (3, 1, 0)
OVERDUE_DAILY_DAYS = 3
OVERDUE_REPEAT_EVERY = 7


def should_send_overdue_reminder(days_overdue: int) -> bool:
    """Daily for the first three days past due, weekly afterwards."""
    return 0 < days_overdue <= OVERDUE_DAILY_DAYS or (
        days_overdue > 0 and days_overdue % OVERDUE_REPEAT_EVERY == 0
    )


def days_until(record: PaymentRecord, today: date) -> int:
    return (to_day(record.due_date) - today).days


@dataclass
class ReminderReport:
    rentals_checked: int = 0
    reminders_sent: int = 0
    overdue_reminders_sent: int = 0
    overdue_marked: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RecordGenerationReport:
    rentals_checked: int = 0
    records_generated: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReminderService:
    """Monthly payment records and due-date reminders for active rentals."""

    def __init__(
        self,
        store: RentalTransactionStore,
        notifier,
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.metrics = metrics

    async def _recipient(self, txn: RentalTransaction) -> Tuple[str, Dict[str, Any]]:
        customer: Optional[Customer] = await self.store.get_customer(txn.user_id)
        if customer is None or not customer.email:
            raise ValidationError(f"No email address on file for rental {txn.transaction_id}")
        product: Optional[Product] = await self.store.get_product(txn.furniture_id)
        return customer.email, txn.to_summary(customer, product)

    async def _send_due(self, email: str, summary: Dict[str, Any], record: PaymentRecord, days: int):
        await self.notifier.send_payment_reminder(email, summary, record.to_payload(), days)
        if self.metrics is not None:
            self.metrics.record_reminder("due")

    async def _send_overdue(self, email: str, summary: Dict[str, Any], record: PaymentRecord, days: int):
        await self.notifier.send_overdue_payment_reminder(email, summary, record.to_payload(), days)
        if self.metrics is not None:
            self.metrics.record_reminder("overdue")

    async def generate_payment_records(self) -> RecordGenerationReport:
        """
        Give every active rental one record per calendar month, from its start
        month through next month. Months that already have a record are left
        alone, so daily runs only add the newly opened month.
        """
        report = RecordGenerationReport()
        now = self.clock()
        rentals = await self.store.find_active_rentals()

        for txn in rentals:
            report.rentals_checked += 1
            if txn.monthly_rent <= 0 or txn.rental_start_date is None:
                continue

            existing = {r.month for r in txn.payment_records}
            created = 0
            try:
                for key, due_date in calendar_due_dates(txn.rental_start_date, now):
                    if key in existing:
                        continue
                    record = PaymentRecord.for_due_date(due_date, txn.monthly_rent, today=now)
                    if await self.store.append_monthly_record(txn.transaction_id, record):
                        created += 1
            except StorageError as e:
                report.failures += 1
                logger.warning("payment_record_generation_failed", transaction_id=txn.transaction_id, error=str(e))

            report.records_generated += created
            if created:
                logger.info("payment_records_generated", transaction_id=txn.transaction_id, records=created)

        logger.info("payment_record_generation_completed", **report.to_dict())
        return report

    async def check_and_send_reminders(self) -> ReminderReport:
        report = ReminderReport()
        today = to_day(self.clock())
        rentals = await self.store.find_active_rentals()
        logger.info("payment_reminder_check_started", rentals=len(rentals))

        for txn in rentals:
            report.rentals_checked += 1
            recipient = None

            for record in txn.payment_records:
                if record.status == PaymentStatus.PAID:
                    continue
                days = days_until(record, today)
                try:
                    if days in DUE_REMINDER_DAYS:
                        recipient = recipient or await self._recipient(txn)
                        await self._send_due(*recipient, record, days)
                        report.reminders_sent += 1
                    elif days < 0:
                        if record.status == PaymentStatus.PENDING:
                            if await self.store.mark_record_overdue(txn.transaction_id, record.due_date):
                                report.overdue_marked += 1
                            record = record.transition(PaymentStatus.OVERDUE)
                        if should_send_overdue_reminder(-days):
                            recipient = recipient or await self._recipient(txn)
                            await self._send_overdue(*recipient, record, -days)
                            report.overdue_reminders_sent += 1
                except (StorageError, NotificationError) as e:
                    report.failures += 1
                    logger.error(
                        "payment_reminder_failed",
                        transaction_id=txn.transaction_id,
                        month=record.month,
                        error_type=type(e).__name__,
                        error=str(e),
                    )

        logger.info("payment_reminder_check_completed", **report.to_dict())
        return report

    async def send_reminders_for_rental(self, transaction_id: str) -> int:
        """Admin trigger: remind about every unpaid record of one rental now."""
        txn = await self.store.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(f"Rental {transaction_id} not found")
        if txn.status != RentalStatus.ACTIVE:
            raise ValidationError(f"Rental {transaction_id} is not active")

        today = to_day(self.clock())
        unpaid = [r for r in txn.payment_records if r.status != PaymentStatus.PAID]
        if not unpaid:
            return 0

        email, summary = await self._recipient(txn)
        sent = 0
        for record in unpaid:
            days = days_until(record, today)
            if days >= 0:
                await self._send_due(email, summary, record, days)
            else:
                await self._send_overdue(email, summary, record, -days)
            sent += 1

        logger.info("manual_payment_reminders_sent", transaction_id=transaction_id, reminders_sent=sent)
        return sent
