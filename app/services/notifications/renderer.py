import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Type

import structlog
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError, UndefinedError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.config import MailConfig
from models.notification_payloads import (
    BookingDetails,
    BookingReschedulePayload,
    BookingStatusPayload,
    FurnitureRequestPayload,
    FurnitureStatusPayload,
    InvoiceReceiptPayload,
    OtpPayload,
    PaymentDuePayload,
    PaymentOverduePayload,
    PaymentReceivedPayload,
    PaymentSummaryPayload,
    PropertyRequestPayload,
    PropertyStatusPayload,
    RentalConfirmedPayload,
    RentalStatusPayload,
)
from models.notifications import RenderedEmail
from services.mail.addressing import html_to_text
from services.notifications.statuses import INFO_STYLE, status_message, status_style
from utils.date_helper import due_phrase, format_long_date, format_money, format_month, utcnow
from utils.exceptions import RenderError

logger = structlog.get_logger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATE_DIR = os.path.join(BASE_DIR, "templates")


@dataclass(frozen=True)
class EmailTemplate:
    model: Type[BaseModel]
    template: str
    title: str
    subject: Callable[[Any, "Renderer"], str]
    text_template: Optional[str] = None


TEMPLATES: Dict[str, EmailTemplate] = {
    "otp": EmailTemplate(
        OtpPayload, "otp.html", "Verification Code",
        lambda p, r: f"Your {p.purpose} Verification Code - {r.company.name}",
        text_template="otp.txt",
    ),
    "booking_confirmed": EmailTemplate(
        BookingDetails, "booking_confirmed.html", "Service Booking Confirmation",
        lambda p, r: f"Service Booking Confirmation - {p.service_booking_id}",
    ),
    "booking_rescheduled": EmailTemplate(
        BookingReschedulePayload, "booking_rescheduled.html", "Service Booking Update",
        lambda p, r: f"Service Booking Update - {p.booking.service_booking_id}",
    ),
    "booking_status_changed": EmailTemplate(
        BookingStatusPayload, "booking_status_changed.html", "Service Booking Status Update",
        lambda p, r: f"Service Booking Status Update - {p.booking.service_booking_id}",
    ),
    "booking_admin_alert": EmailTemplate(
        BookingDetails, "booking_admin_alert.html", "New Service Booking Request",
        lambda p, r: f"New Service Booking Request - {p.service_booking_id}",
    ),
    "furniture_request_confirmed": EmailTemplate(
        FurnitureRequestPayload, "furniture_request_confirmed.html", "Furniture Request Confirmation",
        lambda p, r: f"Furniture Request Confirmation - {p.display_name}",
    ),
    "furniture_status_changed": EmailTemplate(
        FurnitureStatusPayload, "furniture_status_changed.html", "Furniture Request Status Update",
        lambda p, r: f"Furniture Request Status Update - {p.display_name}",
    ),
    "property_request_confirmed": EmailTemplate(
        PropertyRequestPayload, "property_request_confirmed.html", "Property Request Confirmation",
        lambda p, r: f"Property Request Confirmation - {p.display_name}",
    ),
    "property_status_changed": EmailTemplate(
        PropertyStatusPayload, "property_status_changed.html", "Property Request Status Update",
        lambda p, r: f"Property Request Status Update - {p.property_id}",
    ),
    "rental_confirmed": EmailTemplate(
        RentalConfirmedPayload, "rental_confirmed.html", "Rental Confirmation",
        lambda p, r: f"Rental Confirmation - {p.rental_id}",
    ),
    "payment_due": EmailTemplate(
        PaymentDuePayload, "payment_due.html", "Payment Reminder",
        lambda p, r: (
            f"Payment Reminder - {r.money(p.total_due)} "
            f"{due_phrase(p.days_until_due)} - {p.rental.rental_id}"
        ),
    ),
    "payment_overdue": EmailTemplate(
        PaymentOverduePayload, "payment_overdue.html", "Overdue Payment",
        lambda p, r: f"URGENT: Overdue Payment - {r.money(p.record.amount)} - {p.rental.rental_id}",
    ),
    "payment_received": EmailTemplate(
        PaymentReceivedPayload, "payment_received.html", "Payment Confirmation",
        lambda p, r: f"Payment Confirmation - {r.money(p.record.amount)} - {p.rental.rental_id}",
    ),
    "payment_summary": EmailTemplate(
        PaymentSummaryPayload, "payment_summary.html", "Payment Reminder",
        lambda p, r: f"Payment Reminder - {r.money(p.total_due)} Due - {p.rental.rental_id}",
        text_template="payment_summary.txt",
    ),
    "rental_status_changed": EmailTemplate(
        RentalStatusPayload, "rental_status_changed.html", "Rental Status Update",
        lambda p, r: f"Rental Status Update - {p.rental.rental_id}",
    ),
    "invoice_receipt": EmailTemplate(
        InvoiceReceiptPayload, "invoice_receipt.html", "Payment Received",
        lambda p, r: f"Invoice {p.invoice.invoice_number} - Payment Received",
        text_template="invoice_receipt.txt",
    ),
}


def _compact_text(text: str) -> str:
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


class Renderer:
    """
    Renders notification kinds into subject, HTML and plain text.

    Rendering is pure: no I/O beyond loading templates from disk. Every
    kind's payload is validated against its model first and any missing
    or invalid field surfaces as a RenderError naming that field.
    """

    def __init__(self, config: Optional[MailConfig] = None, template_dir: str = TEMPLATE_DIR):
        self.config = config or MailConfig()
        self.company = self.config.company
        self.env = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["money"] = self.money
        self.env.filters["long_date"] = self.long_date
        self.env.filters["month_name"] = self.month_name
        self.env.globals["status_message"] = lambda domain, status: status_message(domain, status, self.company.name)
        self.env.globals["status_style"] = status_style
        self.env.globals["info_style"] = INFO_STYLE
        self.env.globals["due_phrase"] = due_phrase

    @property
    def kinds(self):
        return sorted(TEMPLATES)

    def money(self, amount) -> str:
        return format_money(amount, currency=self.config.currency, locale=self.config.locale)

    def long_date(self, value) -> str:
        return format_long_date(value, locale=self.config.locale)

    def month_name(self, key: str) -> str:
        return format_month(key, locale=self.config.locale)

    def validate(self, kind: str, payload: Any) -> BaseModel:
        entry = TEMPLATES.get(kind)
        if entry is None:
            raise RenderError(f"Unknown notification kind: {kind}", field="kind")
        if isinstance(payload, entry.model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=False)
        if not isinstance(payload, Mapping):
            raise RenderError(f"Payload for {kind} must be a mapping", field="payload")
        try:
            return entry.model.model_validate(payload)
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error.get("loc", ())) or None
            raise RenderError(f"Invalid {kind} payload: {field}: {error.get('msg')}", field=field) from e

    def render(self, kind: str, payload: Any) -> RenderedEmail:
        entry = TEMPLATES.get(kind)
        data = self.validate(kind, payload)

        try:
            subject = entry.subject(data, self)
            context = {
                "p": data,
                "company": self.company,
                "title": entry.title,
                "subject": subject,
                "year": utcnow().year,
            }
            html = self.env.get_template(entry.template).render(**context)
            if entry.text_template:
                text = self.env.get_template(entry.text_template).render(**context).strip()
            else:
                text = _compact_text(html_to_text(html))
        except UndefinedError as e:
            raise RenderError(f"Template {entry.template} is missing a value: {e.message}") from e
        except TemplateError as e:
            logger.error("template_render_failed", kind=kind, template=entry.template, error=str(e))
            raise RenderError(f"Template {entry.template} failed to render: {e}") from e

        return RenderedEmail(subject=subject, html=html, text=text)
