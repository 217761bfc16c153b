# /regdesk/services/delivery.py

import asyncio
import logging
from typing import Optional

from regdesk.config.settings import settings
from regdesk.errors import TransportError
from regdesk.models.directive import DeliveryChannel, DeliveryResult, ResponseDirective, TemplateDirective
from regdesk.services.whatsapp_service import TwilioWhatsAppService, whatsapp_service
from regdesk.utils.alerting import AlertingService, alerting_service
from regdesk.utils.metrics import delivery_attempts_counter, template_fallback_counter

logger = logging.getLogger(__name__)


class DeliveryAdapter:
    """
    Sends one directive to one recipient.

    A template directive gets one template attempt; if that fails for any
    reason (transport error, rejected template, timeout) the plain-text
    fallback is sent once. Plain-text directives get a single attempt.
    Nothing is retried beyond that. Each directive must be delivered at
    most once per session tick.
    """

    def __init__(self, transport: TwilioWhatsAppService, timeout_seconds: float,
                 alerts: Optional[AlertingService] = None):
        self.transport = transport
        self.timeout_seconds = timeout_seconds
        self.alerts = alerts or alerting_service

    async def _attempt(self, channel: DeliveryChannel, send) -> str:
        try:
            message_id = await asyncio.wait_for(send, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            delivery_attempts_counter.labels(channel=channel.value, status="timeout").inc()
            raise TransportError(f"{channel.value} send timed out after {self.timeout_seconds}s") from e
        except TransportError:
            delivery_attempts_counter.labels(channel=channel.value, status="error").inc()
            raise
        delivery_attempts_counter.labels(channel=channel.value, status="success").inc()
        return message_id

    async def deliver(self, recipient: str, directive: ResponseDirective) -> DeliveryResult:
        errors = []
        if isinstance(directive, TemplateDirective):
            try:
                message_id = await self._attempt(
                    DeliveryChannel.TEMPLATE,
                    self.transport.send_template(recipient, directive.template_id, directive.variables),
                )
                return DeliveryResult(recipient=recipient, delivered=True, channel=DeliveryChannel.TEMPLATE,
                                      message_id=message_id)
            except TransportError as e:
                logger.warning(f"Template {directive.template_id} to {recipient} failed, falling back to plain text: {e}")
                template_fallback_counter.inc()
                errors.append(f"template: {e}")

        try:
            message_id = await self._attempt(
                DeliveryChannel.PLAIN_TEXT,
                self.transport.send_text(recipient, directive.plain_text_fallback),
            )
        except TransportError as e:
            errors.append(f"plain_text: {e}")
            logger.error(f"Delivery to {recipient} failed on every path: {errors}")
            await self.alerts.send_critical_alert("WhatsApp delivery failed", {"recipient": recipient, "errors": errors})
            return DeliveryResult(recipient=recipient, delivered=False, fell_back=bool(errors[:-1]), errors=errors)

        return DeliveryResult(recipient=recipient, delivered=True, channel=DeliveryChannel.PLAIN_TEXT,
                              message_id=message_id, fell_back=bool(errors), errors=errors)


# Globally accessible instance
delivery_adapter = DeliveryAdapter(whatsapp_service, settings.delivery_timeout_seconds)
