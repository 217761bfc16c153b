# /regdesk/flows/engine.py

"""
Pure conversation-flow engine.

``FlowEngine.advance`` interprets one inbound message against the
session's current node and returns the next session state together with
the directive to send back. The engine:
- never mutates the session it is given (it works on a deep copy)
- never performs I/O: submissions are requested, not made
- stores a field value only after its validator accepts it
- always leaves the session on an existing node

``complete_submission`` finishes a Submit tick once the caller has the
gateway's result.
"""

from datetime import datetime
from typing import Callable, Dict, Optional, TypedDict

from regdesk.config import strings
from regdesk.flows.definitions import FLOW, TEMPLATES, FlowDefinition
from regdesk.flows.validator import validate_flow_definition
from regdesk.models.directive import (
    PlainTextDirective,
    ResponseDirective,
    SubmissionErrorKind,
    SubmissionRequest,
    SubmissionResult,
    TemplateDirective,
)
from regdesk.models.flow import FlowNode, MenuOption, NodeKind
from regdesk.models.session import Session, SessionStatus
from regdesk.services.formatters import format_summary
from regdesk.services.validators import VALIDATORS

MENU_KEYWORDS = {"menu", "start"}
RESET_KEYWORDS = {"reset"}
HELP_KEYWORDS = {"help"}
BACK_KEYWORDS = {"back"}
GREETINGS = {"hi", "hello", "hey"}

CONFIRM_WORDS = {"confirm", "yes", "1"}
EDIT_WORDS = {"edit", "2"}
CANCEL_WORDS = {"cancel", "3"}


class Transition(TypedDict):
    """Result of one engine step."""
    session: Session
    directive: ResponseDirective
    outcome: str
    submission: Optional[SubmissionRequest]


def _transition(session: Session, directive: ResponseDirective, outcome: str,
                submission: Optional[SubmissionRequest] = None) -> Transition:
    return {"session": session, "directive": directive, "outcome": outcome, "submission": submission}


class FlowEngine:
    def __init__(self, flow: FlowDefinition, validators: Dict[str, Callable] = VALIDATORS):
        self.flow = validate_flow_definition(flow, validators)
        self.validators = validators

    # ---------------- Session lifecycle ---------------- #

    def new_session(self, sender_id: str, now: Optional[datetime] = None) -> Session:
        return Session.start(sender_id, self.flow.root_id, now)

    def reset(self, session: Session, now: Optional[datetime] = None) -> Session:
        """Root node, no fields, no history, status Active. Only the creation time survives."""
        return Session(
            id=session.id,
            current_node_id=self.flow.root_id,
            created_at=session.created_at,
            last_activity_at=now or datetime.utcnow(),
        )

    # ---------------- Rendering ---------------- #

    def summary(self, session: Session) -> str:
        entry = self.flow.branch_entry(session.current_node_id)
        labels = self.flow.field_labels(entry.id) if entry else {}
        service_label = session.service_label or (entry.service_label if entry else "")
        return format_summary(service_label, session.collected_fields, labels)

    def render(self, session: Session) -> ResponseDirective:
        """The prompt of the session's current node."""
        node = self.flow.nodes[session.current_node_id]
        text = self.summary(session) if node.kind == NodeKind.CONFIRM else node.prompt
        if node.template_id:
            return TemplateDirective(
                template_id=node.template_id,
                variables=dict(node.template_variables),
                plain_text_fallback=text,
            )
        return PlainTextDirective(text=text)

    def _reprompt(self, session: Session, prefix: str) -> PlainTextDirective:
        return PlainTextDirective(text=f"{prefix}\n\n{self.render(session).plain_text_fallback}")

    # ---------------- Transitions ---------------- #

    def advance(self, session: Session, raw_message: Optional[str], now: Optional[datetime] = None) -> Transition:
        now = now or datetime.utcnow()
        current = session.model_copy(deep=True)
        current.last_activity_at = now

        text = (raw_message or "").strip()
        keyword = " ".join(text.lower().split())

        node = self.flow.get(current.current_node_id)
        if node is None:
            restarted = self.reset(current, now)
            return _transition(restarted, self.render(restarted), "recovered")

        if keyword in MENU_KEYWORDS:
            restarted = self.reset(current, now)
            return _transition(restarted, self.render(restarted), "menu")
        if keyword in RESET_KEYWORDS:
            restarted = self.reset(current, now)
            return _transition(restarted, self._reprompt(restarted, strings.RESET_NOTICE), "reset")
        if keyword in HELP_KEYWORDS:
            return _transition(current, self._reprompt(current, strings.HELP_TEXT), "help")
        if keyword in BACK_KEYWORDS:
            return self._on_back(current, node, now)

        if node.kind == NodeKind.MENU:
            return self._on_menu(current, node, keyword, now)
        if node.kind == NodeKind.INPUT:
            return self._on_input(current, node, text)
        if node.kind == NodeKind.CONFIRM:
            return self._on_confirm(current, node, keyword, now)
        if node.kind == NodeKind.SUBMIT:
            return _transition(current, PlainTextDirective(text=strings.SUBMITTING), "submission_requested",
                               self._submission_request(current, node))
        restarted = self.reset(current, now)
        return _transition(restarted, self.render(restarted), "restart")

    def _enter(self, session: Session, target: FlowNode, outcome: str) -> Transition:
        session.current_node_id = target.id
        if target.kind in (NodeKind.CONFIRM, NodeKind.SUBMIT):
            session.status = SessionStatus.AWAITING_CONFIRMATION
        else:
            session.status = SessionStatus.ACTIVE
        if target.kind == NodeKind.CONFIRM:
            session.collected_fields = self._answered_on_path(session)
        return _transition(session, self.render(session), outcome)

    def _answered_on_path(self, session: Session) -> Dict[str, str]:
        """Collected fields whose Input node is in the history, dropping answers left behind by BACK."""
        on_path = set()
        for node_id in session.history:
            node = self.flow.get(node_id)
            if node is not None and node.kind == NodeKind.INPUT:
                on_path.add(node.field_name)
        return {name: value for name, value in session.collected_fields.items() if name in on_path}

    @staticmethod
    def _match_option(node: FlowNode, keyword: str) -> Optional[MenuOption]:
        if keyword.isdigit():
            return node.option_for(int(keyword))
        for option in node.options:
            if option.label.lower() == keyword:
                return option
        return None

    def _on_menu(self, session: Session, node: FlowNode, keyword: str, now: datetime) -> Transition:
        if node.id == self.flow.root_id and keyword in GREETINGS:
            directive = TemplateDirective(template_id=TEMPLATES["WELCOME"], plain_text_fallback=node.prompt)
            return _transition(session, directive, "greeting")

        option = self._match_option(node, keyword)
        if option is None:
            return _transition(session, self._reprompt(session, strings.INVALID_SELECTION), "invalid_selection")

        if option.target == self.flow.root_id:
            restarted = self.reset(session, now)
            return _transition(restarted, self.render(restarted), "menu")

        target = self.flow.nodes[option.target]
        session.history.append(node.id)
        if target.service_type:
            session.collected_fields = {}
            session.service_type = target.service_type
            session.service_label = target.service_label
            session.record_id = None
            session.reference_number = None
        return self._enter(session, target, "selected")

    def _on_input(self, session: Session, node: FlowNode, text: str) -> Transition:
        check = self.validators[node.validator](text)
        if not check["is_valid"]:
            prefix = f"{strings.FIELD_ERROR_PREFIX} {check['message']}"
            return _transition(session, self._reprompt(session, prefix), "invalid_input")

        session.collected_fields[node.field_name] = check["value"]
        session.history.append(node.id)
        return self._enter(session, self.flow.nodes[node.next], "field_accepted")

    def _on_confirm(self, session: Session, node: FlowNode, keyword: str, now: datetime) -> Transition:
        if keyword in CONFIRM_WORDS:
            target = self.flow.nodes[node.next]
            session.history.append(node.id)
            if target.kind != NodeKind.SUBMIT:
                return self._enter(session, target, "confirmed")
            session.current_node_id = target.id
            session.status = SessionStatus.AWAITING_CONFIRMATION
            return _transition(session, PlainTextDirective(text=strings.SUBMITTING), "submission_requested",
                               self._submission_request(session, target))

        if keyword in EDIT_WORDS:
            return self._on_edit(session, node)

        if keyword in CANCEL_WORDS:
            restarted = self.reset(session, now)
            return _transition(restarted, self._reprompt(restarted, strings.CANCELLED), "cancelled")

        return _transition(session, self.render(session), "invalid_selection")

    def _on_edit(self, session: Session, node: FlowNode) -> Transition:
        entry = self.flow.branch_entry(node.id)
        history = list(session.history)
        while history:
            candidate = self.flow.get(history.pop())
            if candidate is None or candidate.kind != NodeKind.INPUT:
                continue
            candidate_entry = self.flow.branch_entry(candidate.id)
            if entry is None or candidate_entry is None or candidate_entry.id != entry.id:
                break
            session.history = history
            transition = self._enter(session, candidate, "edit")
            previous = session.collected_fields.get(candidate.field_name)
            if previous is not None:
                transition["directive"] = PlainTextDirective(
                    text=f"{transition['directive'].plain_text_fallback}\n\n(Current answer: {previous})"
                )
            return transition
        return _transition(session, self.render(session), "invalid_selection")

    def _on_back(self, session: Session, node: FlowNode, now: datetime) -> Transition:
        if node.kind == NodeKind.TERMINAL or session.status == SessionStatus.SUBMITTED:
            restarted = self.reset(session, now)
            return _transition(restarted, self.render(restarted), "restart")
        if not session.history:
            return _transition(session, self.render(session), "back")

        previous_id = session.history.pop()
        previous = self.flow.get(previous_id)
        if previous is None or previous_id == self.flow.root_id:
            restarted = self.reset(session, now)
            return _transition(restarted, self.render(restarted), "back")
        if self.flow.branch_entry(previous_id) is None:
            session.collected_fields = {}
            session.service_type = None
            session.service_label = None
        return self._enter(session, previous, "back")

    def _submission_request(self, session: Session, submit_node: FlowNode) -> SubmissionRequest:
        entry = self.flow.branch_entry(submit_node.id)
        names = [field.name for field in self.flow.branch_fields(entry.id)]
        fields = {name: session.collected_fields[name] for name in names if name in session.collected_fields}
        return SubmissionRequest(
            sender_id=session.id,
            service_type=session.service_type or entry.service_type,
            service_label=session.service_label or entry.service_label,
            fields=fields,
            submit_node_id=submit_node.id,
        )

    # ---------------- Submission outcome ---------------- #

    def complete_submission(self, session: Session, result: SubmissionResult,
                            now: Optional[datetime] = None) -> Transition:
        node = self.flow.get(session.current_node_id)
        if node is None or node.kind != NodeKind.SUBMIT:
            raise ValueError(f"Session {session.id} is not at a Submit node (at '{session.current_node_id}')")

        current = session.model_copy(deep=True)
        current.last_activity_at = now or datetime.utcnow()

        if result.success:
            current.history.append(node.id)
            current.current_node_id = node.next
            current.status = SessionStatus.SUBMITTED
            current.record_id = result.record_id
            current.reference_number = result.reference_number
            lines = [strings.SUBMISSION_SUCCESS.format(service_label=current.service_label)]
            if result.reference_number:
                lines.append(strings.SUBMISSION_REFERENCE.format(reference=result.reference_number))
            lines.append(strings.SUBMISSION_RESTART)
            return _transition(current, PlainTextDirective(text="\n\n".join(lines)), "submitted")

        current.current_node_id = node.retry
        current.status = SessionStatus.AWAITING_CONFIRMATION
        if current.history and current.history[-1] == node.retry:
            current.history.pop()

        if result.error_kind == SubmissionErrorKind.CONFLICT:
            text = strings.SUBMISSION_CONFLICT
        elif result.error_kind == SubmissionErrorKind.UNAVAILABLE:
            text = strings.SUBMISSION_UNAVAILABLE
        else:
            details = "\n".join(f"• {detail}" for detail in result.error_details) or "• The submitted details were rejected."
            text = strings.SUBMISSION_FIELD_ERRORS.format(details=details)
        kind = (result.error_kind or SubmissionErrorKind.FIELD_VALIDATION).value
        return _transition(current, PlainTextDirective(text=text), f"submission_{kind}")


# Globally accessible instance
flow_engine = FlowEngine(FLOW)
