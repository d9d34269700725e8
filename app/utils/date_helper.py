import calendar
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, Union

from babel import Locale
from babel.dates import format_date
from babel.numbers import format_currency

BILLING_MONTH = timedelta(days=30)

# (start, now) -> whole billing months elapsed
MonthPolicy = Callable[[datetime, datetime], int]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        # default to midnight
        return datetime.combine(value, time.min)
    return value


def ensure_utc(value: Optional[Union[date, datetime]]) -> Optional[datetime]:
    """Mongo hands back naive datetimes that are already UTC."""
    value = ensure_datetime(value)
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_day(value: Union[date, datetime]) -> date:
    """Truncate to the calendar day (UTC)."""
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value


def thirty_day_months(start: datetime, now: datetime) -> int:
    """
    Whole billing months between start and now using a fixed 30 day month.

    Real months vary between 28 and 31 days; callers that need calendar
    accuracy pass a different MonthPolicy.
    """
    return (ensure_utc(now) - ensure_utc(start)) // BILLING_MONTH


def billing_due_date(start: datetime, months: int) -> datetime:
    """Due date of the given billing month under the 30 day month rule."""
    return ensure_utc(start) + months * BILLING_MONTH


def month_key(value: Union[date, datetime]) -> str:
    value = to_day(value)
    return f"{value.year}-{value.month:02d}"


def clamped_due_date(year: int, month: int, day: int) -> datetime:
    """Same day of month, or the month's last day when it is shorter (Jan 31 -> Feb 29)."""
    day = min(day, calendar.monthrange(year, month)[1])
    return datetime(year, month, day, tzinfo=timezone.utc)


def calendar_due_dates(start: datetime, today: Union[date, datetime]) -> List[Tuple[str, datetime]]:
    """
    (month key, due date) for every calendar month from the start month
    through the month after `today`.

    The first payment is due on the start day itself; later ones fall on
    the same day of each following month.
    """
    start_day = to_day(start)
    today = to_day(today)
    last = (today.year * 12 + today.month - 1) + 1

    schedule = []
    index = start_day.year * 12 + start_day.month - 1
    while index <= last:
        year, month = divmod(index, 12)
        month += 1
        if not schedule:
            due = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
        else:
            due = clamped_due_date(year, month, start_day.day)
        schedule.append((f"{year}-{month:02d}", due))
        index += 1
    return schedule


# =====================================
# LOCALE FORMATTING
# =====================================

def format_money(amount: Union[Decimal, float, int], currency: str = "INR", locale: str = "en_IN") -> str:
    """Locale currency format without fractional digits, e.g. ₹1,00,000."""
    pattern = Locale.parse(locale).currency_formats["standard"].pattern
    whole_pattern = pattern.split(";")[0]
    if "." in whole_pattern:
        head, _, tail = whole_pattern.partition(".")
        whole_pattern = head + tail.lstrip("0#")
    value = Decimal(str(amount)).quantize(Decimal(1))
    return format_currency(value, currency, format=whole_pattern, locale=locale, currency_digits=False)


def format_long_date(value: Union[date, datetime], locale: str = "en_IN") -> str:
    return format_date(to_day(value), format="full", locale=locale)


def format_month(key: str, locale: str = "en_IN") -> str:
    """'2024-11' -> 'November 2024'"""
    year, month = key.split("-")[:2]
    return format_date(date(int(year), int(month), 1), format="MMMM y", locale=locale)


def due_phrase(days_until_due: int) -> str:
    if days_until_due == 0:
        return "due today"
    if days_until_due == 1:
        return "due tomorrow"
    if days_until_due < 0:
        days = abs(days_until_due)
        return f"overdue by {days} day{'s' if days != 1 else ''}"
    return f"due in {days_until_due} days"
