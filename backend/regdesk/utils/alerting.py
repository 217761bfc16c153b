# /regdesk/utils/alerting.py

import httpx
import logging
from typing import Optional, Dict, Any
from datetime import datetime

from regdesk.config.settings import settings

# Critical failures (undeliverable replies, exhausted submissions, rejected
# transport credentials) are posted to an external webhook.

logger = logging.getLogger(__name__)

class AlertingService:
    def __init__(self, webhook_url: Optional[str], client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        if client is not None:
            self.client = client
        else:
            self.client = httpx.AsyncClient(timeout=5.0) if webhook_url else None

    async def send_critical_alert(self, error: str, context: Dict[str, Any]):
        if not self.client or not self.webhook_url:
            logger.warning(f"Critical alert (no webhook configured): {error} {context}")
            return
        try:
            alert_data = {
                "severity": "critical", "service": "regdesk-whatsapp-intake",
                "error": error, "context": context, "timestamp": datetime.utcnow().isoformat(),
                "environment": settings.environment
            }
            await self.client.post(self.webhook_url, json=alert_data)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send critical alert: {e}")

    async def cleanup(self):
        if self.client:
            await self.client.aclose()

# Globally accessible instance
alerting_service = AlertingService(settings.alerting_webhook_url)
