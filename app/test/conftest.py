# test/conftest.py - shared fixtures and in-memory fakes

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

os.environ.setdefault("DRAMATIQ_BROKER", "stub")

from core.config import CompanyInfo, MailConfig
from metrics.metrics import MetricsCollector
from models.notifications import DeliveryResult, NotificationMessage
from models.rental import (
    SCAN_PAYMENT_STATUSES,
    Customer,
    PaymentRecord,
    PaymentStatus,
    Product,
    RentalStatus,
    RentalTransaction,
    TransactionType,
)
from services.email_services import EmailService
from services.mail.providers.base import EmailTransport
from services.notifications.renderer import Renderer
from utils.date_helper import to_day

NOW = datetime(2024, 6, 15, 2, 0, tzinfo=timezone.utc)


class InMemoryRentalStore:
    """Dict-backed stand-in for RentalTransactionStore."""

    def __init__(self, transactions=(), customers=None, products=None):
        self.transactions: Dict[str, RentalTransaction] = {t.transaction_id: t for t in transactions}
        self.customers: Dict[str, Customer] = dict(customers or {})
        self.products: Dict[str, Product] = dict(products or {})
        self.writes: List[tuple] = []

    def _snapshot(self, txn: RentalTransaction) -> RentalTransaction:
        return txn.model_copy(deep=True)

    async def ensure_indexes(self):
        return None

    async def find_due_scan_candidates(self) -> List[RentalTransaction]:
        return [
            self._snapshot(t) for t in self.transactions.values()
            if t.transaction_type == TransactionType.RENT
            and t.status == RentalStatus.ACTIVE
            and (
                t.payment_status in SCAN_PAYMENT_STATUSES
                or any(r.status in SCAN_PAYMENT_STATUSES for r in t.payment_records)
            )
        ]

    async def find_active_rentals(self) -> List[RentalTransaction]:
        return [
            self._snapshot(t) for t in self.transactions.values()
            if t.transaction_type == TransactionType.RENT and t.status == RentalStatus.ACTIVE
        ]

    async def get_transaction(self, transaction_id: str) -> Optional[RentalTransaction]:
        txn = self.transactions.get(transaction_id)
        return self._snapshot(txn) if txn else None

    async def get_customer(self, ref) -> Optional[Customer]:
        return self.customers.get(str(ref))

    async def get_product(self, ref) -> Optional[Product]:
        return self.products.get(str(ref))

    async def mark_record_overdue(self, transaction_id: str, due_date: datetime) -> bool:
        txn = self.transactions[transaction_id]
        for i, record in enumerate(txn.payment_records):
            if record.due_date == due_date and record.status == PaymentStatus.PENDING:
                txn.payment_records[i] = record.transition(PaymentStatus.OVERDUE)
                self.writes.append(("mark_record_overdue", transaction_id, record.month))
                return True
        return False

    async def append_payment_record(self, transaction_id: str, record: PaymentRecord) -> bool:
        txn = self.transactions[transaction_id]
        if any(r.due_date == record.due_date for r in txn.payment_records):
            return False
        txn.payment_records.append(record)
        self.writes.append(("append_payment_record", transaction_id, record.month))
        return True

    async def append_monthly_record(self, transaction_id: str, record: PaymentRecord) -> bool:
        txn = self.transactions[transaction_id]
        if any(r.month == record.month for r in txn.payment_records):
            return False
        txn.payment_records.append(record)
        self.writes.append(("append_monthly_record", transaction_id, record.month))
        return True

    async def mark_record_paid(self, transaction_id, month, paid_date, payment_method=None) -> bool:
        txn = self.transactions[transaction_id]
        for i, record in enumerate(txn.payment_records):
            if record.month == month and record.status != PaymentStatus.PAID:
                txn.payment_records[i] = record.model_copy(update={
                    "status": PaymentStatus.PAID,
                    "paid_date": paid_date,
                    "payment_method": payment_method,
                })
                self.writes.append(("mark_record_paid", transaction_id, month))
                return True
        return False


class RecordingTransport(EmailTransport):
    """Transport that keeps every message instead of sending it."""

    name = "recording"

    def __init__(self, config: MailConfig, fail_with: Optional[Exception] = None):
        super().__init__(config)
        self.sent: List[NotificationMessage] = []
        self.fail_with = fail_with

    async def send(self, message: NotificationMessage) -> DeliveryResult:
        prepared = self.prepare(message)
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)
        return DeliveryResult(
            provider=self.name,
            status="sent",
            message_id=f"msg-{len(self.sent)}",
            recipients=prepared.recipients,
        )


def make_rental(
    transaction_id: str = "FTXN-2024-0312-AAAA0001",
    days_since_start: int = 95,
    monthly_rent="1000",
    deposit="500",
    total_paid="2500",
    records=(),
    user_id: str = "user-1",
    **overrides,
) -> RentalTransaction:
    data = {
        "transaction_id": transaction_id,
        "transaction_type": "Rent",
        "status": "Active",
        "payment_status": "Pending",
        "monthly_rent": Decimal(monthly_rent),
        "deposit_amount": Decimal(deposit),
        "total_paid": Decimal(total_paid),
        "rental_start_date": NOW - timedelta(days=days_since_start),
        "user_id": user_id,
        "furniture_id": "sofa-1",
        "payment_records": list(records),
    }
    data.update(overrides)
    return RentalTransaction.model_validate(data)


def make_record(days_from_now: int, status: str = "Pending", amount="1000") -> PaymentRecord:
    due = datetime.combine(to_day(NOW + timedelta(days=days_from_now)), datetime.min.time(), tzinfo=timezone.utc)
    return PaymentRecord(
        month=f"{due.year}-{due.month:02d}",
        amount=Decimal(amount),
        due_date=due,
        status=PaymentStatus(status),
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def company():
    return CompanyInfo(
        name="BrokerIn",
        email="support@brokerin.test",
        phone="+91-9000000000",
        address="Kanakapura Road, Bangalore",
        website="https://brokerin.test",
        logo_url="https://brokerin.test/logo.png",
    )


@pytest.fixture
def mail_config(company):
    return MailConfig(
        company=company,
        smtp_email="mailer@brokerin.test",
        smtp_password="secret",
        admin_email="admin@brokerin.test",
    )


@pytest.fixture
def zepto_config(company):
    return MailConfig(
        company=company,
        zepto_url="https://api.zeptomail.test/v1.1/email",
        zepto_token="abc123",
        zepto_from_email="noreply@brokerin.test",
        zepto_from_name="BrokerIn Rentals",
        zepto_bounce_email="bounce@brokerin.test",
    )


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MetricsCollector(registry=registry)


@pytest.fixture
def renderer(mail_config):
    return Renderer(mail_config)


@pytest.fixture
def transport(mail_config):
    return RecordingTransport(mail_config)


@pytest.fixture
def email_service(transport, renderer, mail_config, metrics):
    return EmailService(transport, renderer, config=mail_config, metrics=metrics)


@pytest.fixture
def customer():
    return Customer(full_name="Asha Rao", email="asha@example.com")


@pytest.fixture
def product():
    return Product(name="3 Seater Sofa", category="Living Room")


@pytest.fixture
def store(customer, product):
    return InMemoryRentalStore(customers={"user-1": customer}, products={"sofa-1": product})
