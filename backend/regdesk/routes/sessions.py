# /regdesk/routes/sessions.py

import structlog
from fastapi import APIRouter, Depends

from regdesk.config.settings import settings
from regdesk.flows.engine import flow_engine
from regdesk.models.api import APIResponse, SimulateRequest
from regdesk.models.session import SessionSummary
from regdesk.services.conversation_service import conversation_service
from regdesk.services.session_store import session_store
from regdesk.services.whatsapp_service import normalize_recipient
from regdesk.utils.dependencies import verify_api_key

# Support and debugging access to conversation sessions. Every change goes
# through the store's reset or the engine itself, never a direct node edit.

router = APIRouter(
    prefix="/sessions",
    tags=["Sessions"],
    dependencies=[Depends(verify_api_key)]
)

log = structlog.get_logger(__name__)


@router.get("", response_model=APIResponse)
async def list_sessions():
    sessions = await session_store.list()
    return APIResponse(
        success=True,
        message=f"{len(sessions)} session(s) found.",
        data={"sessions": [SessionSummary.from_session(s).model_dump(mode="json") for s in sessions],
              "total": len(sessions)},
        version=settings.api_version
    )


@router.get("/flow", response_model=APIResponse)
async def describe_flow():
    """Service branches and the fields each one collects."""
    branches = [entry.model_dump(mode="json") for entry in flow_engine.flow.branches()]
    return APIResponse(
        success=True,
        message="Flow definition retrieved.",
        data={"root_id": flow_engine.flow.root_id, "nodes": len(flow_engine.flow), "branches": branches},
        version=settings.api_version
    )


@router.post("/simulate", response_model=APIResponse)
async def simulate_message(request: SimulateRequest):
    """Runs a message through the engine as if it came from ``sender_id``. Nothing is sent unless ``deliver`` is set."""
    log.info("Simulated message.", sender=request.sender_id, deliver=request.deliver)
    outcome = await conversation_service.handle_message(request.sender_id, request.text, deliver=request.deliver)
    data = {
        "outcome": outcome["outcome"],
        "session": outcome["session"].model_dump(mode="json") if outcome["session"] else None,
        "directive": outcome["directive"].model_dump(mode="json") if outcome["directive"] else None,
        "submission": outcome["submission"].model_dump(mode="json") if outcome["submission"] else None,
        "delivery": outcome["delivery"].model_dump(mode="json") if outcome["delivery"] else None,
    }
    return APIResponse(
        success=outcome["outcome"] != "error",
        message="Message processed.",
        data=data,
        version=settings.api_version
    )


@router.get("/{sender_id}", response_model=APIResponse)
async def get_session(sender_id: str):
    session = await session_store.get(normalize_recipient(sender_id))
    return APIResponse(
        success=True,
        message="Session retrieved.",
        data={"session": session.model_dump(mode="json")},
        version=settings.api_version
    )


@router.post("/{sender_id}/reset", response_model=APIResponse)
async def reset_session(sender_id: str):
    sender_id = normalize_recipient(sender_id)
    async with session_store.locked(sender_id):
        session = await session_store.reset(sender_id)
    log.info("Session reset by operator.", sender=sender_id)
    return APIResponse(
        success=True,
        message="Session reset to the main menu.",
        data={"session": session.model_dump(mode="json")},
        version=settings.api_version
    )
