# /regdesk/models/flow.py

from enum import Enum
from typing import Optional, Tuple, Dict
from pydantic import BaseModel, ConfigDict, Field


class NodeKind(str, Enum):
    MENU = "menu"
    INPUT = "input"
    CONFIRM = "confirm"
    SUBMIT = "submit"
    TERMINAL = "terminal"


class MenuOption(BaseModel):
    """One numbered entry of a menu. Options are numbered from 1 in declaration order."""
    label: str
    target: str

    model_config = ConfigDict(frozen=True)


class FlowNode(BaseModel):
    """
    A single immutable node of the flow tree.

    Which attributes matter depends on ``kind``:
    - MENU: ``options``
    - INPUT: ``field_name``, ``field_label``, ``validator``, ``next``
    - CONFIRM: ``next`` (the Submit node)
    - SUBMIT: ``next`` (success Terminal) and ``retry`` (the Confirm node to return to on failure)
    - TERMINAL: nothing; any reply returns to the root menu
    ``service_type`` marks the entry node of a service branch.
    """
    id: str
    kind: NodeKind
    prompt: str = Field(..., description="Plain-text prompt, also used as the template fallback")
    template_id: Optional[str] = Field(default=None, description="Rich template content id")
    template_variables: Dict[str, str] = Field(default_factory=dict)
    options: Tuple[MenuOption, ...] = ()
    field_name: Optional[str] = None
    field_label: Optional[str] = None
    validator: Optional[str] = None
    next: Optional[str] = None
    retry: Optional[str] = None
    service_type: Optional[str] = None
    service_label: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def option_for(self, choice: int) -> Optional[MenuOption]:
        if 1 <= choice <= len(self.options):
            return self.options[choice - 1]
        return None


class FieldSpec(BaseModel):
    """An Input field as it appears on a branch, in traversal order."""
    name: str
    label: str
    node_id: str

    model_config = ConfigDict(frozen=True)


class FlowSpecEntry(BaseModel):
    """Summary of a service branch used by introspection and the summary formatter."""
    service_type: str
    service_label: str
    entry_node_id: str
    fields: Tuple[FieldSpec, ...] = ()

    model_config = ConfigDict(frozen=True)
