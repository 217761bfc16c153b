# /regdesk/models/session.py

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict
from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    ACTIVE = "active"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


class Session(BaseModel):
    """
    Conversational progress of one sender against the flow tree.

    ``collected_fields`` keeps insertion order, which is the order the
    sender answered the prompts.
    """
    id: str = Field(..., description="Sender identifier (phone number)")
    current_node_id: str = Field(..., description="Node the sender is currently answering")
    service_type: Optional[str] = Field(default=None, description="Service branch once one is entered")
    service_label: Optional[str] = Field(default=None, description="Human-readable name of the branch")
    collected_fields: Dict[str, str] = Field(default_factory=dict, description="Validated field values")
    history: List[str] = Field(default_factory=list, description="Previously visited node ids")
    status: SessionStatus = SessionStatus.ACTIVE
    record_id: Optional[str] = Field(default=None, description="Downstream record id after submission")
    reference_number: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_activity_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def start(cls, sender_id: str, root_id: str, now: Optional[datetime] = None) -> "Session":
        now = now or datetime.utcnow()
        return cls(id=sender_id, current_node_id=root_id, created_at=now, last_activity_at=now)

    def is_idle(self, now: datetime, ttl_seconds: int) -> bool:
        return (now - self.last_activity_at).total_seconds() > ttl_seconds


class SessionSummary(BaseModel):
    """Compact view returned by the session listing."""
    id: str
    current_node_id: str
    status: SessionStatus
    service_type: Optional[str] = None
    fields_collected: int = 0
    last_activity_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummary":
        return cls(
            id=session.id,
            current_node_id=session.current_node_id,
            status=session.status,
            service_type=session.service_type,
            fields_collected=len(session.collected_fields),
            last_activity_at=session.last_activity_at,
        )
