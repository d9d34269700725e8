from typing import Optional

import httpx
import structlog

from core.config import MailConfig
from services.mail.providers.base import EmailTransport
from services.mail.providers.smtp import SMTPTransport
from services.mail.providers.unconfigured import UnconfiguredTransport
from services.mail.providers.zeptomail import ZeptoMailTransport

logger = structlog.get_logger(__name__)

PROVIDERS: dict[str, type[EmailTransport]] = {
    "zeptomail": ZeptoMailTransport,
    "smtp": SMTPTransport,
    "unconfigured": UnconfiguredTransport,
}


def select_provider_name(config: MailConfig) -> str:
    if config.http_enabled:
        return "zeptomail"
    if config.smtp_enabled:
        return "smtp"
    return "unconfigured"


def build_transport(config: MailConfig, http_client: Optional[httpx.AsyncClient] = None) -> EmailTransport:
    """Factory for the email transport selected by configuration precedence."""
    name = select_provider_name(config)
    provider_cls = PROVIDERS[name]
    if provider_cls is ZeptoMailTransport:
        transport = provider_cls(config, client=http_client)
    else:
        transport = provider_cls(config)
    logger.info("email_transport_selected", **transport.describe())
    return transport
