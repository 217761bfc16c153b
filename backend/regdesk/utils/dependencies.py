# /regdesk/utils/dependencies.py

import base64
import hmac
import hashlib
import secrets
import structlog
from typing import Dict
from fastapi import Request, HTTPException

from regdesk.config.settings import settings
from regdesk.utils.metrics import webhook_signature_counter
from regdesk.utils.request_utils import get_remote_address, public_url

log = structlog.get_logger(__name__)

def compute_twilio_signature(auth_token: str, url: str, params: Dict[str, str]) -> str:
    """HMAC-SHA1 over the full URL followed by every POST parameter (name then value) in name order."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()

async def verify_twilio_signature(request: Request) -> Dict[str, str]:
    """Parses the webhook form and checks X-Twilio-Signature. Returns the form fields."""
    form = await request.form()
    params = {key: str(value) for key, value in form.multi_items()}

    if not settings.twilio_validate_signature:
        return params

    signature = request.headers.get("X-Twilio-Signature", "")
    expected = compute_twilio_signature(settings.twilio_auth_token, public_url(request), params)
    if not (signature and hmac.compare_digest(expected, signature)):
        webhook_signature_counter.labels(status="invalid").inc()
        log.error("Invalid Twilio signature.", client_ip=get_remote_address(request), signature=signature[:20])
        raise HTTPException(status_code=403, detail="Invalid signature")
    webhook_signature_counter.labels(status="valid").inc()
    return params

async def verify_api_key(request: Request):
    """Guards introspection and metrics routes when API_KEY is configured."""
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            raise HTTPException(status_code=403, detail="Invalid or missing API key")
