# /regdesk/models/directive.py

from datetime import datetime
from enum import Enum
from typing import Annotated, Optional, List, Dict, Union, Literal
from pydantic import BaseModel, Field, ConfigDict

# What the engine asks the caller to send, what it asks the caller to submit,
# and what came back from both.


class TemplateDirective(BaseModel):
    """Rich template message with a plain-text equivalent for fallback."""
    kind: Literal["template"] = "template"
    template_id: str
    variables: Dict[str, str] = Field(default_factory=dict)
    plain_text_fallback: str

    model_config = ConfigDict(frozen=True)


class PlainTextDirective(BaseModel):
    kind: Literal["plain_text"] = "plain_text"
    text: str

    model_config = ConfigDict(frozen=True)

    @property
    def plain_text_fallback(self) -> str:
        return self.text


ResponseDirective = Annotated[Union[TemplateDirective, PlainTextDirective], Field(discriminator="kind")]


class SubmissionRequest(BaseModel):
    """Emitted when a session passes through a Submit node."""
    sender_id: str
    service_type: str
    service_label: str
    fields: Dict[str, str]
    submit_node_id: str

    model_config = ConfigDict(frozen=True)


class SubmissionErrorKind(str, Enum):
    FIELD_VALIDATION = "field_validation"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"


class SubmissionResult(BaseModel):
    success: bool
    record_id: Optional[str] = None
    reference_number: Optional[str] = None
    error_kind: Optional[SubmissionErrorKind] = None
    error_details: List[str] = Field(default_factory=list)
    attempts: int = 1

    @classmethod
    def ok(cls, record_id: Optional[str] = None, reference_number: Optional[str] = None, attempts: int = 1) -> "SubmissionResult":
        return cls(success=True, record_id=record_id, reference_number=reference_number, attempts=attempts)

    @classmethod
    def failed(cls, kind: SubmissionErrorKind, details: Optional[List[str]] = None, attempts: int = 1) -> "SubmissionResult":
        return cls(success=False, error_kind=kind, error_details=list(details or []), attempts=attempts)


class DeliveryChannel(str, Enum):
    TEMPLATE = "template"
    PLAIN_TEXT = "plain_text"


class DeliveryResult(BaseModel):
    """Outcome of delivering one directive. ``channel`` is the path that succeeded."""
    recipient: str
    delivered: bool
    channel: Optional[DeliveryChannel] = None
    message_id: Optional[str] = None
    fell_back: bool = False
    errors: List[str] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=datetime.utcnow)
