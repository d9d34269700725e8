from abc import ABC, abstractmethod
from typing import Any, Dict, List

from core.config import MailConfig
from models.notifications import DeliveryResult, EmailAddress, NotificationMessage
from services.mail.addressing import html_to_text, normalize_address_list
from utils.exceptions import ValidationError


class EmailTransport(ABC):
    """Abstract base class for email delivery backends."""

    name = "base"

    def __init__(self, config: MailConfig):
        self.config = config

    @abstractmethod
    async def send(self, message: NotificationMessage) -> DeliveryResult:
        """Deliver a message or raise TransportError / ValidationError."""
        pass

    async def verify(self) -> bool:
        """Best-effort connectivity check, run once at startup."""
        return True

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.name}

    @property
    def configured(self) -> bool:
        return True

    def prepare(self, message: NotificationMessage) -> "PreparedMessage":
        """Normalize recipients and bodies; shared by every backend."""
        to = normalize_address_list(message.to)
        if not to:
            raise ValidationError("No recipient address provided")
        if not message.has_body:
            raise ValidationError("Email requires either an HTML or a text body")

        text_body = message.text_body
        if message.html_body and not text_body:
            text_body = html_to_text(message.html_body)

        reply_to = normalize_address_list(message.reply_to)
        return PreparedMessage(
            to=to,
            cc=normalize_address_list(message.cc),
            bcc=normalize_address_list(message.bcc),
            reply_to=reply_to[0] if reply_to else None,
            subject=message.subject,
            html_body=message.html_body,
            text_body=text_body,
        )


class PreparedMessage:
    __slots__ = ("to", "cc", "bcc", "reply_to", "subject", "html_body", "text_body")

    def __init__(self, to: List[EmailAddress], cc: List[EmailAddress], bcc: List[EmailAddress],
                 reply_to, subject: str, html_body, text_body):
        self.to = to
        self.cc = cc
        self.bcc = bcc
        self.reply_to = reply_to
        self.subject = subject
        self.html_body = html_body
        self.text_body = text_body

    @property
    def recipients(self) -> List[str]:
        return [a.address for a in self.to + self.cc + self.bcc]
