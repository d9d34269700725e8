import secrets
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from bson import Decimal128
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.PyObjectId import PyObjectId
from utils.date_helper import ensure_utc, month_key, to_day, utcnow

# ============================================
# Enums
# ============================================

class TransactionType(str, Enum):
    RENT = "Rent"
    SALE = "Sale"


class RentalStatus(str, Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    ON_HOLD = "On Hold"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PARTIAL = "Partial"
    OVERDUE = "Overdue"
    PAID = "Paid"


# Pending -> Overdue (time based), Pending/Overdue -> Paid (payment based)
ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.OVERDUE, PaymentStatus.PAID},
    PaymentStatus.OVERDUE: {PaymentStatus.PAID},
    PaymentStatus.PAID: set(),
}

SCAN_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PARTIAL)


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return PaymentStatus(target) in ALLOWED_TRANSITIONS.get(PaymentStatus(current), set())


def generate_transaction_id(now: Optional[datetime] = None) -> str:
    """FTXN-2024-0319-A1B2C3D4"""
    now = now or utcnow()
    return f"FTXN-{now.year}-{now.month:02d}{now.day:02d}-{secrets.token_hex(4).upper()}"


def _to_decimal(value: Any) -> Any:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, float):
        return Decimal(str(value))
    return value


# ============================================
# Sub-Models
# ============================================

class PaymentRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    month: str
    amount: Decimal
    due_date: datetime = Field(alias="dueDate")
    status: PaymentStatus = PaymentStatus.PENDING
    paid_date: Optional[datetime] = Field(None, alias="paidDate")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    notes: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _decimal_amount(cls, v):
        return _to_decimal(v)

    @field_validator("due_date", "paid_date", mode="after")
    @classmethod
    def _utc(cls, v):
        return ensure_utc(v)

    @classmethod
    def for_due_date(cls, due_date: datetime, amount: Decimal, today=None) -> "PaymentRecord":
        """New record for a billing period; already past due days start Overdue."""
        today = to_day(today or utcnow())
        status = PaymentStatus.OVERDUE if to_day(due_date) < today else PaymentStatus.PENDING
        return cls(month=month_key(due_date), amount=amount, due_date=due_date, status=status)

    def is_past_due(self, today) -> bool:
        return to_day(self.due_date) < to_day(today)

    def transition(self, target: PaymentStatus) -> "PaymentRecord":
        if not can_transition(self.status, target):
            raise ValueError(f"Illegal payment status transition {self.status.value} -> {PaymentStatus(target).value}")
        return self.model_copy(update={"status": PaymentStatus(target)})

    def to_payload(self) -> dict:
        return {
            "month": self.month,
            "amount": self.amount,
            "due_date": self.due_date,
            "status": self.status.value,
            "paid_date": self.paid_date,
            "payment_method": self.payment_method,
        }

    def to_mongo(self) -> dict:
        doc = {
            "month": self.month,
            "amount": Decimal128(self.amount),
            "dueDate": self.due_date,
            "status": self.status.value,
        }
        if self.paid_date:
            doc["paidDate"] = self.paid_date
        if self.payment_method:
            doc["paymentMethod"] = self.payment_method
        if self.notes:
            doc["notes"] = self.notes
        return doc


class LineItem(BaseModel):
    product_id: Optional[str] = None
    product_name: str
    monthly_price: Decimal = Decimal(0)
    quantity: int = 1
    deposit: Decimal = Decimal(0)

    @field_validator("monthly_price", "deposit", mode="before")
    @classmethod
    def _decimal_prices(cls, v):
        return _to_decimal(v)


class Customer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    id: Optional[PyObjectId] = Field(None, alias="_id")
    full_name: str = Field("Customer", alias="fullName")
    email: Optional[str] = None
    phone_number: Optional[str] = Field(None, alias="phoneNumber")


class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    id: Optional[PyObjectId] = Field(None, alias="_id")
    name: str = "Furniture Item"
    category: Optional[str] = None


# ============================================
# Aggregate
# ============================================

class RentalTransaction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True, extra="ignore")

    id: Optional[PyObjectId] = Field(None, alias="_id")
    transaction_id: str = Field(default_factory=generate_transaction_id)
    transaction_type: TransactionType = TransactionType.RENT
    status: RentalStatus = RentalStatus.ACTIVE
    payment_status: PaymentStatus = PaymentStatus.PENDING
    monthly_rent: Decimal = Field(Decimal(0), ge=0)
    deposit_amount: Decimal = Field(Decimal(0), ge=0)
    total_paid: Decimal = Field(Decimal(0), ge=0)
    rental_start_date: Optional[datetime] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    user_id: Optional[Any] = None
    furniture_id: Optional[Any] = None
    line_items: List[LineItem] = Field(default_factory=list)
    payment_records: List[PaymentRecord] = Field(default_factory=list)

    @field_validator("monthly_rent", "deposit_amount", "total_paid", mode="before")
    @classmethod
    def _decimal_money(cls, v):
        return _to_decimal(v)

    @field_validator("rental_start_date", "created_at", mode="after")
    @classmethod
    def _utc(cls, v):
        return ensure_utc(v)

    @field_validator("payment_records", mode="before")
    @classmethod
    def _records(cls, v):
        # FurnitureTransaction payment receipts share the field name but carry
        # no due date; only due-date bearing entries are billing records.
        return [r for r in (v or []) if not isinstance(r, dict) or "dueDate" in r or "due_date" in r]

    @model_validator(mode="after")
    def _start_date(self):
        if self.rental_start_date is None:
            self.rental_start_date = self.created_at
        return self

    @property
    def rent_paid(self) -> Decimal:
        """Rent collected so far, i.e. everything paid beyond the deposit."""
        return max(Decimal(0), self.total_paid - self.deposit_amount)

    @property
    def months_paid(self) -> int:
        if self.monthly_rent <= 0:
            return 0
        return int(self.rent_paid // self.monthly_rent)

    @property
    def latest_due_date(self) -> Optional[datetime]:
        if not self.payment_records:
            return None
        return max(r.due_date for r in self.payment_records)

    def has_record_due_on(self, due_date: datetime) -> bool:
        day = to_day(due_date)
        return any(to_day(r.due_date) == day for r in self.payment_records)

    def pending_past_due(self, today) -> List[PaymentRecord]:
        return [
            r for r in self.payment_records
            if r.status == PaymentStatus.PENDING and r.is_past_due(today)
        ]

    def to_summary(self, customer: Customer, product: Optional[Product] = None) -> dict:
        """Render-time view with the customer and product looked up fresh."""
        if self.line_items:
            items = [item.model_dump() for item in self.line_items]
        else:
            items = [{
                "product_name": product.name if product else Product().name,
                "monthly_price": self.monthly_rent,
            }]
        return {
            "rental_id": self.transaction_id,
            "customer_name": customer.full_name,
            "items": items,
            "start_date": self.rental_start_date,
            "status": self.status.value,
            "total_monthly_amount": self.monthly_rent,
            "total_deposit": self.deposit_amount,
        }
