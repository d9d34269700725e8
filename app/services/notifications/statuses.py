from typing import Dict, NamedTuple


class BadgeStyle(NamedTuple):
    bg: str
    text: str
    border: str


NEUTRAL_STYLE = BadgeStyle("#f3f4f6", "#374151", "#9ca3af")
INFO_STYLE = BadgeStyle("#dbeafe", "#1e40af", "#2563eb")
WARNING_STYLE = BadgeStyle("#fef3c7", "#92400e", "#f59e0b")
SUCCESS_STYLE = BadgeStyle("#d1fae5", "#065f46", "#10b981")
DANGER_STYLE = BadgeStyle("#fee2e2", "#991b1b", "#dc2626")

BOOKING_STATUS_MESSAGES = {
    "accepted": "Your service booking has been accepted!",
    "ongoing": "Our team has started your service.",
    "completed": "Your service has been completed. We hope you were satisfied!",
    "cancelled": "Your service booking has been cancelled.",
}

BOOKING_STATUS_STYLES = {
    "accepted": INFO_STYLE,
    "ongoing": WARNING_STYLE,
    "completed": SUCCESS_STYLE,
    "cancelled": DANGER_STYLE,
}

FURNITURE_STATUS_MESSAGES = {
    "Requested": "Your furniture request has been received.",
    "Accepted": "Your furniture request has been accepted! We will contact you shortly.",
    "Ongoing": "Your furniture is being prepared.",
    "Completed": "Your furniture request has been completed. We hope you enjoy your new furniture!",
    "Cancelled": "Your furniture request has been cancelled.",
    "Ordered": "Your furniture order has been placed.",
    "Confirmed": "Your furniture order has been confirmed!",
    "Scheduled Delivery": "Your furniture delivery has been scheduled.",
    "Out for Delivery": "Your furniture is out for delivery!",
    "Delivered": "Your furniture has been delivered. We hope you enjoy it!",
}

PROPERTY_STATUS_MESSAGES = {
    "Requested": "Your property request has been received.",
    "Accepted": "Your property request has been accepted! We will contact you shortly.",
    "Ongoing": "Your property request is being processed.",
    "Completed": "Your property request has been completed. We hope you found your perfect property!",
    "Cancelled": "Your property request has been cancelled.",
}

RENTAL_STATUS_MESSAGES = {
    "Active": "Your rental is now active.",
    "Completed": "Your rental period has been completed. Thank you for using {company}!",
    "Cancelled": "Your rental has been cancelled.",
    "On Hold": "Your rental is temporarily on hold.",
}

RENTAL_STATUS_STYLES = {
    "Active": SUCCESS_STYLE,
    "Completed": INFO_STYLE,
    "Cancelled": DANGER_STYLE,
    "On Hold": WARNING_STYLE,
}

PAYMENT_STATUS_STYLES = {
    "Pending": BadgeStyle("#fbbf24", "#78350f", "#f59e0b"),
    "Partial": BadgeStyle("#fbbf24", "#78350f", "#f59e0b"),
    "Overdue": BadgeStyle("#dc2626", "#ffffff", "#dc2626"),
    "Paid": SUCCESS_STYLE,
}

FALLBACK_MESSAGES = {
    "booking": "Your service booking status has been updated.",
    "furniture": "Your furniture request status has been updated.",
    "property": "Your property request status has been updated.",
    "rental": "Your rental status has been updated.",
}

_MESSAGES: Dict[str, Dict[str, str]] = {
    "booking": BOOKING_STATUS_MESSAGES,
    "furniture": FURNITURE_STATUS_MESSAGES,
    "property": PROPERTY_STATUS_MESSAGES,
    "rental": RENTAL_STATUS_MESSAGES,
}

_STYLES: Dict[str, Dict[str, BadgeStyle]] = {
    "booking": BOOKING_STATUS_STYLES,
    "rental": RENTAL_STATUS_STYLES,
    "payment": PAYMENT_STATUS_STYLES,
}


def status_message(domain: str, status: str, company: str = "") -> str:
    """Lookup never raises; unknown statuses get the generic message."""
    message = _MESSAGES.get(domain, {}).get(status or "")
    if message is None:
        return FALLBACK_MESSAGES.get(domain, "Your status has been updated.")
    return message.format(company=company)


def status_style(domain: str, status: str) -> BadgeStyle:
    return _STYLES.get(domain, {}).get(status or "", NEUTRAL_STYLE)
