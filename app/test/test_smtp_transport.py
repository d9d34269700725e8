# tests/test_smtp_transport.py - SMTP delivery with a patched smtplib client

import smtplib
from dataclasses import replace
from email import message_from_string
from unittest.mock import MagicMock, patch

import pytest

from models.notifications import NotificationMessage
from services.mail.providers.smtp import SMTPTransport
from utils.exceptions import TransportError

SMTP_CLASS = "services.mail.providers.smtp.TimeoutSMTP"
SMTP_SSL_CLASS = "services.mail.providers.smtp.TimeoutSMTP_SSL"


@pytest.fixture
def server():
    server = MagicMock()
    server.has_extn.return_value = True
    server.send_message.return_value = {}
    return server


@pytest.fixture
def message():
    return NotificationMessage(
        to=["asha@example.com", {"address": "ravi@example.com", "name": "Ravi"}],
        bcc="audit@brokerin.test",
        subject="Rental Confirmation - FTXN-1",
        html_body="<h1>Welcome</h1><p>Your rental is active.</p>",
        kind="rental_confirmed",
    )


class TestSMTPTransport:

    @pytest.mark.asyncio
    async def test_starttls_login_and_send(self, mail_config, server, message):
        with patch(SMTP_CLASS, return_value=server) as smtp_cls:
            result = await SMTPTransport(mail_config).send(message)

        smtp_cls.assert_called_once_with(timeout=mail_config.smtp_connection_timeout)
        server.connect.assert_called_once_with("smtp.zoho.in", 587)
        server.sock.settimeout.assert_called_once_with(mail_config.smtp_socket_timeout)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer@brokerin.test", "secret")
        server.quit.assert_called_once()

        mime, = server.send_message.call_args.args
        assert server.send_message.call_args.kwargs["to_addrs"] == [
            "asha@example.com", "ravi@example.com", "audit@brokerin.test",
        ]
        assert mime["From"] == "BrokerIn <mailer@brokerin.test>"
        assert mime["To"] == "asha@example.com, Ravi <ravi@example.com>"
        assert mime["Bcc"] is None

        parsed = message_from_string(mime.as_string())
        content_types = [part.get_content_type() for part in parsed.walk()]
        assert "text/plain" in content_types and "text/html" in content_types

        assert result.sent
        assert result.provider == "smtp"
        assert result.message_id == mime["Message-ID"]

    @pytest.mark.asyncio
    async def test_implicit_tls_port(self, mail_config, server, message):
        config = replace(mail_config, smtp_port=465)
        with patch(SMTP_SSL_CLASS, return_value=server) as ssl_cls, patch(SMTP_CLASS) as plain_cls:
            await SMTPTransport(config).send(message)

        ssl_cls.assert_called_once()
        plain_cls.assert_not_called()
        server.starttls.assert_not_called()
        server.login.assert_called_once()

    @pytest.mark.asyncio
    async def test_starttls_is_mandatory(self, mail_config, server, message):
        server.has_extn.return_value = False
        with patch(SMTP_CLASS, return_value=server):
            with pytest.raises(TransportError):
                await SMTPTransport(mail_config).send(message)

        server.close.assert_called_once()
        server.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_auth_failure_carries_smtp_code(self, mail_config, server, message):
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"Authentication failed")
        with patch(SMTP_CLASS, return_value=server):
            with pytest.raises(TransportError) as exc_info:
                await SMTPTransport(mail_config).send(message)

        assert exc_info.value.code == "535"
        server.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self, mail_config, server, message):
        server.connect.side_effect = OSError("timed out")
        with patch(SMTP_CLASS, return_value=server):
            with pytest.raises(TransportError):
                await SMTPTransport(mail_config).send(message)


class TestSMTPVerify:

    @pytest.mark.asyncio
    async def test_verify_success(self, mail_config, server):
        with patch(SMTP_CLASS, return_value=server):
            assert await SMTPTransport(mail_config).verify() is True
        server.quit.assert_called_once()

    @pytest.mark.asyncio
    async def test_verify_failure_does_not_raise(self, mail_config, server):
        server.connect.side_effect = ConnectionRefusedError("refused")
        with patch(SMTP_CLASS, return_value=server):
            assert await SMTPTransport(mail_config).verify() is False

    def test_describe(self, mail_config):
        assert SMTPTransport(mail_config).describe() == {
            "provider": "smtp",
            "smtp_host": "smtp.zoho.in",
            "smtp_port": 587,
            "secure": False,
        }
