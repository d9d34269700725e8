from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class EmailAddress:
    address: str
    name: Optional[str] = None

    def formatted(self) -> str:
        return f'"{self.name}" <{self.address}>' if self.name else self.address

    def to_dict(self) -> Dict[str, str]:
        data = {"address": self.address}
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class NotificationMessage:
    """
    Outbound email. `to`, `cc`, `bcc` and `reply_to` accept anything the
    address normaliser understands; transports normalise before sending.
    """
    to: Any
    subject: str
    html_body: Optional[str] = None
    text_body: Optional[str] = None
    from_: Any = None
    cc: Any = None
    bcc: Any = None
    reply_to: Any = None
    kind: str = "generic"

    @property
    def has_body(self) -> bool:
        return bool(self.html_body or self.text_body)


@dataclass
class DeliveryResult:
    provider: str
    status: str  # 'sent' or 'skipped'
    message_id: Optional[str] = None
    recipients: List[str] = field(default_factory=list)
    raw: Optional[Dict[str, Any]] = None

    @property
    def sent(self) -> bool:
        return self.status == "sent"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str
