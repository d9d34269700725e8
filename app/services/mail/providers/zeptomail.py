import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import httpx
import structlog

from core.config import MailConfig
from models.notifications import DeliveryResult, EmailAddress, NotificationMessage
from services.mail.addressing import resolve_from_address
from services.mail.providers.base import EmailTransport, PreparedMessage
from utils.exceptions import TransportError

logger = structlog.get_logger(__name__)

TOKEN_PREFIX = "Zoho-enczapikey "


def _recipients(addresses: List[EmailAddress]) -> List[Dict[str, Any]]:
    return [
        {"email_address": {"address": a.address, "name": a.name or ""}}
        for a in addresses
    ]


class ZeptoMailTransport(EmailTransport):
    """ZeptoMail transactional email API implementation."""

    name = "zeptomail"

    def __init__(self, config: MailConfig, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._client = client

    @property
    def auth_header(self) -> str:
        token = (self.config.zepto_token or "").strip()
        return token if token.startswith(TOKEN_PREFIX) else f"{TOKEN_PREFIX}{token}"

    @asynccontextmanager
    async def _http(self):
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
            yield client

    def build_payload(self, message: NotificationMessage, prepared: PreparedMessage) -> Dict[str, Any]:
        sender = resolve_from_address(self.config, message.from_)
        payload: Dict[str, Any] = {
            "from": {"address": sender.address, "name": sender.name},
            "to": _recipients(prepared.to),
            "subject": prepared.subject,
        }
        if self.config.zepto_bounce_email:
            payload["bounce_address"] = {"address": self.config.zepto_bounce_email}
        if prepared.cc:
            payload["cc"] = _recipients(prepared.cc)
        if prepared.bcc:
            payload["bcc"] = _recipients(prepared.bcc)
        if prepared.reply_to:
            payload["reply_to"] = {
                "address": prepared.reply_to.address,
                "name": prepared.reply_to.name or "",
            }
        if prepared.html_body:
            payload["htmlbody"] = prepared.html_body
        if prepared.text_body:
            payload["textbody"] = prepared.text_body
        return payload

    async def send(self, message: NotificationMessage) -> DeliveryResult:
        prepared = self.prepare(message)
        payload = self.build_payload(message, prepared)

        logger.info(
            "zeptomail_payload_prepared",
            sender=payload["from"]["address"],
            to_count=len(payload["to"]),
            subject=payload["subject"],
            has_html="htmlbody" in payload,
            has_text="textbody" in payload,
            bounce_address=self.config.zepto_bounce_email,
        )

        try:
            async with self._http() as client:
                response = await client.post(
                    self.config.zepto_url,
                    headers={
                        "Authorization": self.auth_header,
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                    },
                    json=payload,
                    timeout=self.config.http_timeout,
                )
        except httpx.HTTPError as e:
            logger.error("zeptomail_request_failed", error=str(e), url=self.config.zepto_url)
            raise TransportError(f"ZeptoMail send failed: {e}") from e

        if not response.is_success:
            raise self._error_from_response(response, payload)

        body = self._parse_body(response)
        message_id = None
        data = body.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            message_id = data[0].get("message_id") or body.get("request_id")
        elif body.get("request_id"):
            message_id = body["request_id"]

        return DeliveryResult(
            provider=self.name,
            status="sent",
            message_id=message_id,
            recipients=prepared.recipients,
            raw=body,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        text = response.text
        if not text.strip():
            return {"success": True}
        try:
            body = json.loads(text)
        except ValueError:
            logger.warning("zeptomail_non_json_response", preview=text[:200])
            return {"success": True, "message": "Email sent (empty response)"}
        return body if isinstance(body, dict) else {"success": True, "data": body}

    def _error_from_response(self, response: httpx.Response, payload: Dict[str, Any]) -> TransportError:
        message = f"ZeptoMail API error: {response.status_code} {response.reason_phrase}"
        code = None
        details: Dict[str, Any] = {}

        try:
            details = json.loads(response.text)
        except ValueError:
            message += f" - Response: {response.text[:500]}"
            details = {}

        error = details.get("error") if isinstance(details, dict) else None
        if isinstance(error, dict):
            code = error.get("code")
            message = f"ZeptoMail API error ({code or 'UNKNOWN'}): {error.get('message') or 'Unknown error'}"
            items = error.get("details") if isinstance(error.get("details"), list) else []

            bounce = next((d for d in items if isinstance(d, dict) and d.get("target") == "bounce_address"), None)
            if bounce:
                current = payload.get("bounce_address", {}).get("address", "not set")
                message += (
                    f"\nBounce address error: {bounce.get('message')}"
                    f" (current bounce address: {current}; it is optional and can be unset)"
                )

            auth = any(isinstance(d, dict) and d.get("target") == "authorization" for d in items)
            if auth or code == "TM_4001":
                message += f"\nAuthentication error: check ZEPTO_TOKEN and its '{TOKEN_PREFIX.strip()}' prefix"
        elif details:
            message += f" - {json.dumps(details)}"

        logger.error(
            "zeptomail_api_error",
            status_code=response.status_code,
            code=code,
            details=details,
            sender=payload["from"]["address"],
        )
        if not isinstance(details, dict):
            details = {"body": details}
        return TransportError(message, code=code, status_code=response.status_code, details=details)

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "url": self.config.zepto_url,
            "bounce_address": self.config.zepto_bounce_email,
        }
