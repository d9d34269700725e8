import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Any, Dict, Optional

import certifi
import structlog

from core.config import MailConfig
from models.notifications import DeliveryResult, EmailAddress, NotificationMessage
from services.mail.addressing import resolve_from_address
from services.mail.providers.base import EmailTransport, PreparedMessage
from utils.exceptions import TransportError

logger = structlog.get_logger(__name__)


def create_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context(cafile=certifi.where())
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


class _GreetingTimeoutMixin:
    """Apply a separate timeout while waiting for the server greeting."""

    greeting_timeout: Optional[float] = None

    def _get_socket(self, host, port, timeout):
        sock = super()._get_socket(host, port, timeout)
        if self.greeting_timeout is not None:
            sock.settimeout(self.greeting_timeout)
        return sock


class TimeoutSMTP(_GreetingTimeoutMixin, smtplib.SMTP):
    pass


class TimeoutSMTP_SSL(_GreetingTimeoutMixin, smtplib.SMTP_SSL):
    pass


def _format(address: EmailAddress) -> str:
    return formataddr((address.name, address.address)) if address.name else address.address


class SMTPTransport(EmailTransport):
    """SMTP delivery over implicit TLS or mandatory STARTTLS."""

    name = "smtp"

    def __init__(self, config: MailConfig):
        super().__init__(config)
        self.ssl_context = create_ssl_context()

    def build_mime(self, message: NotificationMessage, prepared: PreparedMessage) -> MIMEMultipart:
        sender = resolve_from_address(self.config, message.from_, use_override=False)

        mime = MIMEMultipart("alternative")
        mime["Subject"] = prepared.subject
        mime["From"] = _format(sender)
        mime["To"] = ", ".join(_format(a) for a in prepared.to)
        if prepared.cc:
            mime["Cc"] = ", ".join(_format(a) for a in prepared.cc)
        if prepared.reply_to:
            mime["Reply-To"] = _format(prepared.reply_to)
        mime["Message-ID"] = make_msgid(domain=sender.address.split("@")[-1])

        if prepared.text_body:
            mime.attach(MIMEText(prepared.text_body, "plain", "utf-8"))
        if prepared.html_body:
            mime.attach(MIMEText(prepared.html_body, "html", "utf-8"))
        return mime

    def _open(self) -> smtplib.SMTP:
        config = self.config
        if config.smtp_use_ssl:
            server = TimeoutSMTP_SSL(context=self.ssl_context, timeout=config.smtp_connection_timeout)
        else:
            server = TimeoutSMTP(timeout=config.smtp_connection_timeout)
        server.greeting_timeout = config.smtp_greeting_timeout
        if config.smtp_debug:
            server.set_debuglevel(1)

        server.connect(config.smtp_host, config.smtp_port)
        try:
            if server.sock is not None:
                server.sock.settimeout(config.smtp_socket_timeout)

            if not config.smtp_use_ssl:
                server.ehlo()
                if not server.has_extn("starttls"):
                    raise smtplib.SMTPNotSupportedError("Server does not support STARTTLS")
                server.starttls(context=self.ssl_context)
                server.ehlo()

            if config.smtp_email and config.smtp_password:
                server.login(config.smtp_email, config.smtp_password)
        except Exception:
            server.close()
            raise
        return server

    def _deliver(self, mime: MIMEMultipart, recipients) -> Dict[str, Any]:
        server = self._open()
        try:
            refused = server.send_message(mime, to_addrs=recipients)
        finally:
            server.quit()
        return {"refused": refused or {}}

    async def send(self, message: NotificationMessage) -> DeliveryResult:
        prepared = self.prepare(message)
        mime = self.build_mime(message, prepared)
        recipients = prepared.recipients

        try:
            raw = await asyncio.to_thread(self._deliver, mime, recipients)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "smtp_send_failed",
                error=str(e),
                host=self.config.smtp_host,
                port=self.config.smtp_port,
                recipients=recipients,
            )
            code = getattr(e, "smtp_code", None)
            raise TransportError(f"SMTP send failed: {e}", code=str(code) if code else None) from e

        return DeliveryResult(
            provider=self.name,
            status="sent",
            message_id=mime["Message-ID"],
            recipients=recipients,
            raw=raw,
        )

    def _check(self) -> None:
        server = self._open()
        server.quit()

    async def verify(self) -> bool:
        try:
            await asyncio.to_thread(self._check)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "smtp_verify_failed",
                error=str(e),
                host=self.config.smtp_host,
                port=self.config.smtp_port,
                secure=self.config.smtp_use_ssl,
            )
            return False
        logger.info("smtp_verified", host=self.config.smtp_host, port=self.config.smtp_port)
        return True

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "smtp_host": self.config.smtp_host,
            "smtp_port": self.config.smtp_port,
            "secure": self.config.smtp_use_ssl,
        }
