from typing import Any, Dict

import structlog

from models.notifications import DeliveryResult, NotificationMessage
from services.mail.providers.base import EmailTransport

logger = structlog.get_logger(__name__)


class UnconfiguredTransport(EmailTransport):
    """No provider credentials: every send is logged and skipped."""

    name = "unconfigured"

    @property
    def configured(self) -> bool:
        return False

    async def send(self, message: NotificationMessage) -> DeliveryResult:
        logger.info(
            "email_skipped_unconfigured",
            kind=message.kind,
            subject=message.subject,
        )
        return DeliveryResult(provider=self.name, status="skipped")

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.name, "configured": False}
