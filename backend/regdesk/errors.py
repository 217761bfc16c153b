# /regdesk/errors.py

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

# Exceptions that cross module boundaries. Recoverable conversational errors
# (bad field input, downstream validation failures) are values, not exceptions.

logger = logging.getLogger(__name__)


class RegdeskError(Exception):
    """Base class for all service errors."""


class FlowDefinitionError(RegdeskError):
    """The flow tree is structurally inconsistent. Raised at start-up only."""

    def __init__(self, problems: list):
        self.problems = list(problems)
        super().__init__("Invalid flow definition: " + "; ".join(self.problems))


class UnknownSessionError(RegdeskError):
    def __init__(self, sender_id: str):
        self.sender_id = sender_id
        super().__init__(f"No session found for sender {sender_id}")


class TransportError(RegdeskError):
    """The outbound messaging transport refused or failed a send."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[int] = None):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class SubmissionUnavailableError(RegdeskError):
    """The downstream creation call could not be completed. Eligible for retry."""


class SessionLockError(RegdeskError):
    """The shared per-sender lock could not be acquired in time."""


async def unknown_session_handler(request: Request, exc: UnknownSessionError) -> JSONResponse:
    logger.warning(f"Session lookup failed at {request.url.path}: {exc}")
    return JSONResponse(status_code=404, content={"detail": "Session not found"})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception at {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
