import asyncio
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Dict, Iterable, Optional, Set

import httpx
import structlog

from core.config import MailConfig
from metrics.metrics import MetricsCollector
from models.notifications import DeliveryResult, NotificationMessage
from services.mail.addressing import normalize_address_list
from services.mail.provider_selector import build_transport
from services.mail.providers.base import EmailTransport
from services.notifications.renderer import Renderer
from utils.date_helper import utcnow
from utils.exceptions import NotificationError, ValidationError

logger = structlog.get_logger(__name__)


class EmailService:
    """
    Typed notification API over an injected transport and renderer.

    Without a configured transport every send returns a skipped result
    before anything is rendered. Otherwise rendering problems raise
    RenderError, a missing recipient raises ValidationError and provider
    failures raise TransportError. Callers that must not fail use
    send_in_background.
    """

    def __init__(
        self,
        transport: EmailTransport,
        renderer: Renderer,
        config: Optional[MailConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.transport = transport
        self.renderer = renderer
        self.config = config or transport.config
        self.metrics = metrics
        self._background: Set[asyncio.Task] = set()

    # =====================================
    # CORE SEND
    # =====================================

    async def send_email(self, message: NotificationMessage) -> DeliveryResult:
        recipients = [a.address for a in normalize_address_list(message.to)]
        started = time.perf_counter()
        try:
            result = await self.transport.send(message)
        except NotificationError as e:
            self._record(message.kind, "failed", time.perf_counter() - started)
            logger.error(
                "email_send_failed",
                provider=self.transport.name,
                kind=message.kind,
                recipients=recipients,
                subject=message.subject,
                error=str(e),
            )
            raise

        self._record(message.kind, result.status, time.perf_counter() - started)
        logger.info(
            "email_sent" if result.sent else "email_skipped",
            provider=result.provider,
            kind=message.kind,
            recipients=recipients,
            subject=message.subject,
            message_id=result.message_id,
        )
        return result

    def _record(self, kind: str, outcome: str, duration: float):
        if self.metrics is not None:
            self.metrics.record_email(self.transport.name, kind, outcome, duration)

    def _skip_unconfigured(self, kind: str) -> Optional[DeliveryResult]:
        if self.transport.configured:
            return None
        logger.info("email_skipped_unconfigured", kind=kind)
        self._record(kind, "skipped", 0.0)
        return DeliveryResult(provider=self.transport.name, status="skipped")

    async def send_notification(self, kind: str, to: Any, payload: Any, **message_fields) -> DeliveryResult:
        """Render a notification kind and send it to `to`."""
        skipped = self._skip_unconfigured(kind)
        if skipped is not None:
            return skipped
        if not normalize_address_list(to):
            raise ValidationError(f"No recipient address provided for {kind}")
        rendered = self.renderer.render(kind, payload)
        message = NotificationMessage(
            to=to,
            subject=rendered.subject,
            html_body=rendered.html,
            text_body=rendered.text,
            kind=kind,
            **message_fields,
        )
        return await self.send_email(message)

    def send_in_background(self, label: str, coro: Awaitable[DeliveryResult], **context) -> asyncio.Task:
        """
        Fire-and-forget dispatch: the outcome is logged, never raised.
        """
        async def runner():
            try:
                result = await coro
            except NotificationError as e:
                logger.error("background_email_failed", label=label, error=str(e), **context)
                return None
            logger.info("background_email_dispatched", label=label, status=result.status, **context)
            return result

        task = asyncio.ensure_future(runner())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # =====================================
    # ACCOUNTS
    # =====================================

    async def send_otp(self, email: str, otp: str, purpose: str = "Signup") -> DeliveryResult:
        try:
            return await self.send_notification("otp", email, {"otp": otp, "purpose": purpose})
        except NotificationError as e:
            # OTP is logged on failure only, so support can hand it over manually
            logger.error("otp_email_failed", email=email, purpose=purpose, otp=otp, error=str(e))
            raise

    # =====================================
    # SERVICE BOOKINGS
    # =====================================

    async def send_booking_confirmation(self, booking: Any) -> DeliveryResult:
        skipped = self._skip_unconfigured("booking_confirmed")
        if skipped is not None:
            return skipped
        data = self.renderer.validate("booking_confirmed", booking)
        return await self.send_notification("booking_confirmed", data.email, data)

    async def send_booking_update(
        self, booking: Any, old_date: datetime, old_time: str, new_date: datetime, new_time: str
    ) -> DeliveryResult:
        skipped = self._skip_unconfigured("booking_rescheduled")
        if skipped is not None:
            return skipped
        data = self.renderer.validate("booking_rescheduled", {
            "booking": booking,
            "old_date": old_date,
            "old_time": old_time,
            "new_date": new_date,
            "new_time": new_time,
        })
        return await self.send_notification("booking_rescheduled", data.booking.email, data)

    async def send_booking_status_update(self, booking: Any, new_status: str) -> DeliveryResult:
        skipped = self._skip_unconfigured("booking_status_changed")
        if skipped is not None:
            return skipped
        data = self.renderer.validate("booking_status_changed", {"booking": booking, "new_status": new_status})
        return await self.send_notification("booking_status_changed", data.booking.email, data)

    async def send_admin_booking_notification(self, booking: Any) -> DeliveryResult:
        return await self.send_notification("booking_admin_alert", self.config.admin_email, booking)

    # =====================================
    # FURNITURE / PROPERTY REQUESTS
    # =====================================

    async def send_furniture_request_confirmation(self, email: str, request: Any) -> DeliveryResult:
        return await self.send_notification("furniture_request_confirmed", email, request)

    async def send_furniture_status_update(self, email: str, request: Any, new_status: str) -> DeliveryResult:
        payload = {**_as_dict(request), "new_status": new_status}
        return await self.send_notification("furniture_status_changed", email, payload)

    async def send_property_request_confirmation(self, email: str, request: Any) -> DeliveryResult:
        return await self.send_notification("property_request_confirmed", email, request)

    async def send_property_status_update(self, email: str, request: Any, new_status: str) -> DeliveryResult:
        payload = {**_as_dict(request), "new_status": new_status}
        return await self.send_notification("property_status_changed", email, payload)

    # =====================================
    # RENTALS AND PAYMENTS
    # =====================================

    async def send_rental_confirmation(self, email: str, rental: Any) -> DeliveryResult:
        return await self.send_notification("rental_confirmed", email, rental)

    async def send_payment_reminder(
        self,
        email: str,
        rental: Any,
        record: Any,
        days_until_due: int,
        amount_due: Optional[Decimal] = None,
        months_due: Optional[int] = None,
    ) -> DeliveryResult:
        return await self.send_notification("payment_due", email, {
            "rental": rental,
            "record": record,
            "days_until_due": days_until_due,
            "amount_due": amount_due,
            "months_due": months_due,
        })

    async def send_overdue_payment_reminder(self, email: str, rental: Any, record: Any, days_overdue: int) -> DeliveryResult:
        return await self.send_notification("payment_overdue", email, {
            "rental": rental,
            "record": record,
            "days_overdue": days_overdue,
        })

    async def send_payment_summary(
        self,
        email: str,
        rental: Any,
        pending: Iterable[Any] = (),
        overdue: Iterable[Any] = (),
        payment_link: Optional[str] = None,
        as_of: Optional[datetime] = None,
    ) -> DeliveryResult:
        return await self.send_notification("payment_summary", email, {
            "rental": rental,
            "pending": list(pending),
            "overdue": list(overdue),
            "payment_link": payment_link,
            "as_of": as_of or utcnow(),
        })

    async def send_payment_confirmation(self, email: str, rental: Any, record: Any) -> DeliveryResult:
        return await self.send_notification("payment_received", email, {"rental": rental, "record": record})

    async def send_rental_status_update(self, email: str, rental: Any, old_status: str, new_status: str) -> DeliveryResult:
        return await self.send_notification("rental_status_changed", email, {
            "rental": rental,
            "old_status": old_status,
            "new_status": new_status,
        })

    async def send_invoice_email(self, email: str, invoice: Any, transaction_id: str) -> DeliveryResult:
        return await self.send_notification("invoice_receipt", email, {
            "transaction_id": transaction_id,
            "invoice": invoice,
        })

    # =====================================
    # HEALTH
    # =====================================

    async def health_check(self) -> Dict[str, Any]:
        """Check email service health"""
        info = self.transport.describe()
        if not self.transport.configured:
            return {**info, "status": "unconfigured"}
        healthy = await self.transport.verify()
        return {**info, "status": "healthy" if healthy else "unhealthy"}


def _as_dict(value: Any) -> Dict[str, Any]:
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return dict(value or {})


def create_email_service(
    config: Optional[MailConfig] = None,
    metrics: Optional[MetricsCollector] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> EmailService:
    """Wire transport and renderer from environment configuration."""
    config = config or MailConfig.from_env()
    return EmailService(build_transport(config, http_client), Renderer(config), config=config, metrics=metrics)
