# /regdesk/services/whatsapp_service.py

import httpx
import json
import logging
import re
from typing import Optional, Dict

from regdesk.config.settings import settings
from regdesk.errors import TransportError
from regdesk.utils.alerting import AlertingService, alerting_service

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 1600


def normalize_recipient(sender_id: str) -> str:
    """'whatsapp:+263 77-123 4567' -> '+263771234567'"""
    bare = sender_id.split(":", 1)[1] if sender_id.lower().startswith("whatsapp:") else sender_id
    digits = re.sub(r"[^\d+]", "", bare)
    if not digits.startswith("+"):
        digits = "+" + digits.lstrip("+")
    return digits


class TwilioWhatsAppService:
    """
    Outbound WhatsApp messages through Twilio's Messages API.

    Each call makes exactly one request: callers decide whether to fall
    back or give up. Successful sends return the Twilio message sid; any
    failure raises TransportError.
    """

    def __init__(self, account_sid: str, auth_token: str, messaging_service_sid: str,
                 base_url: str = "https://api.twilio.com/2010-04-01",
                 address_prefix: str = "whatsapp:",
                 status_callback_url: Optional[str] = None,
                 timeout: float = 15.0,
                 http_client: Optional[httpx.AsyncClient] = None,
                 alerts: Optional[AlertingService] = None):
        self.account_sid = account_sid
        self.messaging_service_sid = messaging_service_sid
        self.address_prefix = address_prefix
        self.status_callback_url = status_callback_url
        self.messages_url = f"{base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout, auth=(account_sid, auth_token))
        self.alerts = alerts or alerting_service

    async def send_template(self, to: str, template_id: str, variables: Optional[Dict[str, str]] = None) -> str:
        payload = {"ContentSid": template_id}
        if variables:
            payload["ContentVariables"] = json.dumps(variables)
        return await self._send(to, payload)

    async def send_text(self, to: str, body: str) -> str:
        return await self._send(to, {"Body": body[:MAX_BODY_LENGTH]})

    async def _send(self, to: str, content: Dict[str, str]) -> str:
        recipient = normalize_recipient(to)
        data = {
            "To": f"{self.address_prefix}{recipient}",
            "MessagingServiceSid": self.messaging_service_sid,
            **content,
        }
        if self.status_callback_url:
            data["StatusCallback"] = self.status_callback_url

        try:
            response = await self.http_client.post(self.messages_url, data=data)
        except httpx.TimeoutException as e:
            logger.warning(f"twilio_send_timeout to {recipient}: {e}")
            raise TransportError(f"Timed out sending to {recipient}") from e
        except httpx.RequestError as e:
            logger.warning(f"twilio_send_error to {recipient}: {e}")
            raise TransportError(f"Could not reach transport: {e}") from e

        if 200 <= response.status_code < 300:
            try:
                message_sid = response.json()["sid"]
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"twilio_send_unreadable to {recipient}: {response.status_code} {response.text[:200]!r}")
                raise TransportError(
                    f"Unreadable transport answer: {type(e).__name__}", status_code=response.status_code
                ) from e
            logger.info(f"WhatsApp message queued for {recipient}, sid: {message_sid}")
            return message_sid

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        if not isinstance(error_data, dict):
            error_data = {}
        error_message = error_data.get("message", response.text[:200])
        error_code = error_data.get("code")
        logger.error(f"twilio_send_failed to {recipient}: {response.status_code} - {error_code} {error_message}")
        if response.status_code == 401:
            await self.alerts.send_critical_alert("Twilio authentication failed", {"status": 401, "error": error_message})
        raise TransportError(error_message, status_code=response.status_code, error_code=error_code)

    async def close(self):
        await self.http_client.aclose()


# Globally accessible instance
whatsapp_service = TwilioWhatsAppService(
    account_sid=settings.twilio_account_sid,
    auth_token=settings.twilio_auth_token,
    messaging_service_sid=settings.twilio_messaging_service_sid,
    base_url=settings.twilio_api_base_url,
    address_prefix=settings.whatsapp_address_prefix,
    status_callback_url=settings.status_callback_url,
    timeout=settings.delivery_timeout_seconds,
)
