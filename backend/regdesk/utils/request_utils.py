# /regdesk/utils/request_utils.py
from fastapi import Request

from regdesk.config.settings import settings

def get_remote_address(request: Request) -> str:
    """
    Returns the client's IP address. Behind the Twilio-facing proxy the
    first X-Forwarded-For entry is the real client.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"

def public_url(request: Request) -> str:
    """The URL Twilio called, rebuilt from PUBLIC_BASE_URL when the service runs behind a proxy."""
    if not settings.public_base_url:
        return str(request.url)
    url = settings.public_base_url.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url
