# /regdesk/routes/webhooks.py

import structlog
from typing import Dict
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import Response

from regdesk.config.settings import settings
from regdesk.services.conversation_service import conversation_service
from regdesk.utils.dependencies import verify_twilio_signature
from regdesk.utils.metrics import delivery_status_counter, message_counter, response_time_histogram
from regdesk.utils.rate_limiter import limiter

# Twilio webhooks: inbound WhatsApp messages and outbound delivery status
# callbacks. Both are signature-verified before the form is used.

router = APIRouter(
    tags=["Webhooks"]
)

log = structlog.get_logger(__name__)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


@router.post("/whatsapp")
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    form: Dict[str, str] = Depends(verify_twilio_signature),
):
    """
    Acknowledges the message at once with empty TwiML; the reply is sent
    through the Messages API once the conversation step has run.
    """
    with response_time_histogram.labels(endpoint="whatsapp_webhook").time():
        sender = form.get("From")
        message_sid = form.get("MessageSid")
        if not sender:
            message_counter.labels(status="ignored").inc()
            log.warning("Webhook without sender ignored.", message_sid=message_sid)
            return Response(content=EMPTY_TWIML, media_type="application/xml")

        log.info("Inbound WhatsApp message.", sender=sender, message_sid=message_sid,
                 num_media=form.get("NumMedia", "0"))
        background_tasks.add_task(
            conversation_service.handle_message,
            sender,
            form.get("Body", ""),
            message_id=message_sid,
        )
        return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post("/status")
async def handle_status_callback(form: Dict[str, str] = Depends(verify_twilio_signature)):
    """Delivery status callbacks for outbound messages."""
    status = form.get("MessageStatus", "unknown")
    delivery_status_counter.labels(status=status).inc()
    if status in ("failed", "undelivered"):
        log.warning("Outbound message not delivered.", message_sid=form.get("MessageSid"), status=status,
                    error_code=form.get("ErrorCode"), to=form.get("To"))
    else:
        log.info("Outbound message status.", message_sid=form.get("MessageSid"), status=status)
    return {"status": "received"}
