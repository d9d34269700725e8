# tests/test_email_service.py - notification API over a recording transport

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from conftest import RecordingTransport, make_record, make_rental
from core.config import MailConfig
from models.notification_payloads import FurnitureRequestPayload
from services.email_services import EmailService, create_email_service
from services.mail.providers.smtp import SMTPTransport
from services.mail.providers.unconfigured import UnconfiguredTransport
from utils.exceptions import TransportError, ValidationError


def _sent_total(registry, **labels):
    return registry.get_sample_value("emails_sent_total", labels) or 0


class TestSendNotification:

    @pytest.mark.asyncio
    async def test_renders_and_sends(self, email_service, transport, registry):
        result = await email_service.send_otp("asha@example.com", "123456")

        assert result.sent
        message, = transport.sent
        assert message.kind == "otp"
        assert message.to == "asha@example.com"
        assert message.subject == "Your Signup Verification Code - BrokerIn"
        assert "123456" in message.html_body
        assert "123456" in message.text_body
        assert _sent_total(registry, provider="recording", kind="otp", outcome="sent") == 1

    @pytest.mark.asyncio
    async def test_missing_recipient(self, email_service, transport):
        with pytest.raises(ValidationError):
            await email_service.send_payment_confirmation(None, {}, {})
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, mail_config, renderer, metrics, registry):
        failing = RecordingTransport(mail_config, fail_with=TransportError("boom", code="TM_5000"))
        service = EmailService(failing, renderer, metrics=metrics)

        with pytest.raises(TransportError):
            await service.send_otp("asha@example.com", "999999")
        assert _sent_total(registry, provider="recording", kind="otp", outcome="failed") == 1

    @pytest.mark.asyncio
    async def test_otp_logged_only_on_failure(self, mail_config, renderer):
        failing = RecordingTransport(mail_config, fail_with=TransportError("boom"))
        service = EmailService(failing, renderer)

        with patch("services.email_services.logger") as logger:
            with pytest.raises(TransportError):
                await service.send_otp("asha@example.com", "999999", purpose="Login")

        logger.error.assert_any_call(
            "otp_email_failed", email="asha@example.com", purpose="Login", otp="999999", error="boom",
        )

    @pytest.mark.asyncio
    async def test_unconfigured_transport_skips(self, company, renderer, registry, metrics):
        service = EmailService(UnconfiguredTransport(MailConfig(company=company)), renderer, metrics=metrics)
        result = await service.send_otp("asha@example.com", "123456")
        assert result.status == "skipped"
        assert _sent_total(registry, provider="unconfigured", kind="otp", outcome="skipped") == 1

    @pytest.mark.asyncio
    async def test_unconfigured_transport_skips_before_recipient_check(self, company, renderer):
        service = EmailService(UnconfiguredTransport(MailConfig(company=company)), renderer)
        result = await service.send_otp("", "123456")
        assert result.status == "skipped"
        assert result.provider == "unconfigured"

    @pytest.mark.asyncio
    async def test_unconfigured_admin_alert_without_admin_mailbox(self, company, renderer):
        config = MailConfig(company=company)
        assert config.admin_email is None
        service = EmailService(UnconfiguredTransport(config), renderer)

        result = await service.send_admin_booking_notification({
            "service_booking_id": "SB-1",
            "name": "Ravi",
            "service_type": "Deep Cleaning",
            "preferred_date": datetime(2024, 7, 1, tzinfo=timezone.utc),
            "preferred_time": "09:30",
        })

        assert result.status == "skipped"

    @pytest.mark.asyncio
    async def test_unconfigured_booking_update_skips_without_validation(self, company, renderer):
        service = EmailService(UnconfiguredTransport(MailConfig(company=company)), renderer)
        result = await service.send_booking_status_update({}, "Confirmed")
        assert result.status == "skipped"

    @pytest.mark.asyncio
    async def test_configured_transport_requires_recipient(self, email_service, transport):
        with pytest.raises(ValidationError):
            await email_service.send_otp("", "123456")
        assert transport.sent == []


class TestTypedNotifications:

    @pytest.mark.asyncio
    async def test_admin_booking_alert_goes_to_admin(self, email_service, transport):
        await email_service.send_admin_booking_notification({
            "service_booking_id": "SB-1",
            "name": "Ravi",
            "service_type": "Deep Cleaning",
            "preferred_date": datetime(2024, 7, 1, tzinfo=timezone.utc),
            "preferred_time": "09:30",
        })
        assert transport.sent[0].to == "admin@brokerin.test"

    @pytest.mark.asyncio
    async def test_booking_confirmation_uses_booking_email(self, email_service, transport):
        await email_service.send_booking_confirmation({
            "service_booking_id": "SB-2",
            "name": "Ravi",
            "service_type": "Plumbing",
            "preferred_date": datetime(2024, 7, 1, tzinfo=timezone.utc),
            "preferred_time": "09:30",
            "email": "ravi@example.com",
        })
        assert transport.sent[0].to == "ravi@example.com"
        assert transport.sent[0].subject == "Service Booking Confirmation - SB-2"

    @pytest.mark.asyncio
    async def test_furniture_status_update_accepts_models(self, email_service, transport):
        request = FurnitureRequestPayload(customer_name="Asha", furniture_id="F-9", furniture_name="Oak Table")
        await email_service.send_furniture_status_update("asha@example.com", request, "Delivered")
        assert transport.sent[0].subject == "Furniture Request Status Update - Oak Table"
        assert "We hope you enjoy it!" in transport.sent[0].html_body

    @pytest.mark.asyncio
    async def test_payment_reminder_from_stored_rental(self, email_service, transport, customer, product):
        txn = make_rental()
        record = make_record(days_from_now=3)

        await email_service.send_payment_reminder(
            customer.email, txn.to_summary(customer, product), record.to_payload(), 3,
        )

        message, = transport.sent
        assert message.kind == "payment_due"
        assert message.subject == f"Payment Reminder - ₹1,000 due in 3 days - {txn.transaction_id}"
        assert "3 Seater Sofa" in message.html_body


class TestBackgroundDispatch:

    @pytest.mark.asyncio
    async def test_failures_are_logged_not_raised(self, email_service):
        failing = AsyncMock(side_effect=TransportError("down"))()
        task = email_service.send_in_background("otp", failing, email="asha@example.com")
        assert await task is None

    @pytest.mark.asyncio
    async def test_success_returns_result(self, email_service, transport):
        task = email_service.send_in_background("otp", email_service.send_otp("asha@example.com", "1"))
        result = await task
        assert result.sent
        await asyncio.sleep(0)
        assert task not in email_service._background


class TestHealthAndFactory:

    @pytest.mark.asyncio
    async def test_health_healthy(self, email_service):
        health = await email_service.health_check()
        assert health == {"provider": "recording", "status": "healthy"}

    @pytest.mark.asyncio
    async def test_health_unconfigured(self, company, renderer):
        service = EmailService(UnconfiguredTransport(MailConfig(company=company)), renderer)
        health = await service.health_check()
        assert health["status"] == "unconfigured"

    def test_factory_wires_selected_transport(self, mail_config):
        service = create_email_service(mail_config)
        assert isinstance(service.transport, SMTPTransport)
        assert service.renderer.config is mail_config
