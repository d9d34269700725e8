from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from utils.date_helper import ensure_utc


class Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================
# Accounts
# ============================================

class OtpPayload(Payload):
    otp: str = Field(min_length=1)
    purpose: str = "Signup"


# ============================================
# Service bookings
# ============================================

class BookingDetails(Payload):
    service_booking_id: str
    name: str
    service_type: str
    preferred_date: datetime
    preferred_time: str
    service_address: Optional[str] = None
    status: str = "pending"
    email: Optional[str] = None
    phone_number: Optional[str] = None
    additional_notes: Optional[str] = None


class BookingStatusPayload(Payload):
    booking: BookingDetails
    new_status: str


class BookingReschedulePayload(Payload):
    booking: BookingDetails
    old_date: datetime
    old_time: str
    new_date: datetime
    new_time: str


# ============================================
# Furniture / property requests
# ============================================

class FurnitureRequestPayload(Payload):
    customer_name: str
    furniture_id: str
    furniture_name: Optional[str] = None
    category: Optional[str] = None
    listing_type: Optional[str] = None
    status: str = "Requested"

    @property
    def display_name(self) -> str:
        return self.furniture_name or self.furniture_id


class FurnitureStatusPayload(FurnitureRequestPayload):
    new_status: str


class PropertyRequestPayload(Payload):
    customer_name: str
    property_id: str
    property_name: Optional[str] = None
    location: Optional[str] = None
    property_type: Optional[str] = None
    status: str = "Requested"

    @property
    def display_name(self) -> str:
        return self.property_name or self.property_id


class PropertyStatusPayload(PropertyRequestPayload):
    new_status: str


# ============================================
# Rentals and payments
# ============================================

class RentalItem(Payload):
    product_name: str
    monthly_price: Decimal = Decimal(0)
    quantity: int = 1
    deposit: Decimal = Decimal(0)


class RentalSummary(Payload):
    rental_id: str
    customer_name: str
    items: List[RentalItem] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[str] = None
    total_monthly_amount: Optional[Decimal] = None
    total_deposit: Optional[Decimal] = None

    @model_validator(mode="after")
    def _totals(self):
        if self.total_monthly_amount is None:
            self.total_monthly_amount = sum((i.monthly_price * i.quantity for i in self.items), Decimal(0))
        if self.total_deposit is None:
            self.total_deposit = sum((i.deposit * i.quantity for i in self.items), Decimal(0))
        return self


class RentalConfirmedPayload(RentalSummary):
    start_date: datetime
    status: str = "Active"


class PaymentRecordDetails(Payload):
    month: str
    amount: Decimal
    due_date: datetime = Field(alias="dueDate")
    status: str = "Pending"
    paid_date: Optional[datetime] = Field(None, alias="paidDate")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")


class PaymentDuePayload(Payload):
    rental: RentalSummary
    record: PaymentRecordDetails
    days_until_due: int
    # outstanding total across every unpaid month; defaults to this record
    amount_due: Optional[Decimal] = None
    months_due: Optional[int] = Field(None, ge=0)

    @property
    def total_due(self) -> Decimal:
        return self.record.amount if self.amount_due is None else self.amount_due


class PaymentOverduePayload(Payload):
    rental: RentalSummary
    record: PaymentRecordDetails
    days_overdue: int = Field(ge=0)


class PaymentReceivedPayload(Payload):
    rental: RentalSummary
    record: PaymentRecordDetails


class RentalStatusPayload(Payload):
    rental: RentalSummary
    old_status: str
    new_status: str


class PaymentSummaryPayload(Payload):
    """All pending and overdue months of one rental in a single reminder."""
    rental: RentalSummary
    pending: List[PaymentRecordDetails] = Field(default_factory=list)
    overdue: List[PaymentRecordDetails] = Field(default_factory=list)
    payment_link: Optional[str] = None
    as_of: Optional[datetime] = None

    @property
    def total_pending(self) -> Decimal:
        return sum((r.amount for r in self.pending), Decimal(0))

    @property
    def total_overdue(self) -> Decimal:
        return sum((r.amount for r in self.overdue), Decimal(0))

    @property
    def total_due(self) -> Decimal:
        return self.total_pending + self.total_overdue

    def days_overdue(self, record: PaymentRecordDetails) -> int:
        as_of = ensure_utc(self.as_of) if self.as_of else None
        if as_of is None:
            return 0
        return max(0, (as_of - ensure_utc(record.due_date)).days)


# ============================================
# Invoices
# ============================================

class InvoiceAddress(Payload):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    country: Optional[str] = None

    @property
    def lines(self) -> List[str]:
        region = ", ".join(p for p in (self.city, self.state, self.zipcode) if p)
        return [p for p in (self.street, region, self.country) if p]


class InvoiceItem(Payload):
    description: str
    quantity: int = 1
    unit_price: Decimal
    total: Decimal


class InvoiceData(Payload):
    invoice_number: str
    invoice_date: datetime
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[InvoiceAddress] = None
    items: List[InvoiceItem] = Field(min_length=1)
    subtotal: Decimal
    tax: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    delivery_charge: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    total: Decimal
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None


class InvoiceReceiptPayload(Payload):
    transaction_id: str
    invoice: InvoiceData
