# /regdesk/services/conversation_service.py

import logging
import tenacity
from datetime import datetime
from typing import Optional, Tuple, TypedDict

from regdesk.config import strings
from regdesk.config.settings import settings
from regdesk.errors import SessionLockError
from regdesk.flows.definitions import TEMPLATES
from regdesk.flows.engine import FlowEngine, flow_engine
from regdesk.models.directive import (
    DeliveryResult,
    PlainTextDirective,
    ResponseDirective,
    SubmissionRequest,
    SubmissionResult,
    TemplateDirective,
)
from regdesk.models.session import Session
from regdesk.services.delivery import DeliveryAdapter, delivery_adapter
from regdesk.services.formatters import format_admin_notification
from regdesk.services.session_store import SessionStore, session_store
from regdesk.services.submission_gateway import SubmissionGateway, submission_gateway
from regdesk.services.whatsapp_service import normalize_recipient
from regdesk.utils.alerting import AlertingService, alerting_service
from regdesk.utils.metrics import message_counter, transition_counter

# Handles one inbound message end to end: load the sender's session, run
# the engine, perform the submission it asks for, persist the new state and
# deliver the reply, all under the sender's lock.

logger = logging.getLogger(__name__)


class MessageOutcome(TypedDict):
    sender_id: str
    outcome: str
    duplicate: bool
    session: Optional[Session]
    directive: Optional[ResponseDirective]
    submission: Optional[SubmissionResult]
    delivery: Optional[DeliveryResult]


class ConversationService:
    def __init__(self, store: SessionStore, engine: FlowEngine, gateway: SubmissionGateway,
                 delivery: DeliveryAdapter, alerts: Optional[AlertingService] = None,
                 duplicate_window_seconds: int = 300, operator_number: Optional[str] = None,
                 save_attempts: int = 3):
        self.store = store
        self.engine = engine
        self.gateway = gateway
        self.delivery = delivery
        self.alerts = alerts or alerting_service
        self.duplicate_window_seconds = duplicate_window_seconds
        self.operator_number = operator_number
        self.save_attempts = save_attempts

    async def handle_message(self, sender_id: str, text: Optional[str], message_id: Optional[str] = None,
                             deliver: bool = True) -> MessageOutcome:
        sender_id = normalize_recipient(sender_id)
        try:
            async with self.store.locked(sender_id):
                outcome, submitted = await self._process(sender_id, text, message_id, deliver)
        except SessionLockError as e:
            return await self._apologize(sender_id, "Session lock unavailable", e, deliver)

        submission_result = outcome["submission"]
        if submitted is not None and submission_result is not None and submission_result.success:
            await self._notify_operator(submitted, outcome["session"].reference_number)
        return outcome

    async def _process(self, sender_id: str, text: Optional[str], message_id: Optional[str],
                       deliver: bool) -> Tuple[MessageOutcome, Optional[SubmissionRequest]]:
        """Runs while the sender's lock is held."""
        if message_id and not await self.store.remember_message(message_id, self.duplicate_window_seconds):
            message_counter.labels(status="duplicate").inc()
            logger.info(f"Ignoring duplicate message {message_id} from {sender_id}")
            return self._outcome(sender_id, "duplicate", duplicate=True), None

        submitted: Optional[SubmissionRequest] = None
        submission_result: Optional[SubmissionResult] = None
        try:
            session = await self.store.load(sender_id)
            before = session.current_node_id
            before_node = self.engine.flow.get(before)
            transition = self.engine.advance(session, text)

            if transition["submission"] is not None:
                submitted = transition["submission"]
                submission_result = await self.gateway.submit(submitted)
                transition = self.engine.complete_submission(transition["session"], submission_result)

            new_session = transition["session"]
            transition_counter.labels(
                node_kind=before_node.kind.value if before_node else "unknown",
                outcome=transition["outcome"],
            ).inc()
            logger.info(f"{sender_id}: '{before}' -> '{new_session.current_node_id}' ({transition['outcome']})")

            if submission_result is not None and submission_result.success:
                await self._save_submitted(new_session)
            else:
                await self.store.save(new_session)
            delivery = await self.delivery.deliver(sender_id, transition["directive"]) if deliver else None
        except Exception as e:
            details = {"sender": sender_id, "error": str(e)}
            if submission_result is not None and submission_result.success:
                # the downstream record exists but the session still sits at Confirm
                details["record_id"] = submission_result.record_id
                details["reference_number"] = submission_result.reference_number
            return await self._apologize(sender_id, "Conversation handling failed", e, deliver, details), None

        message_counter.labels(status="processed").inc()
        outcome = self._outcome(
            sender_id,
            transition["outcome"],
            session=new_session,
            directive=transition["directive"],
            submission=submission_result,
            delivery=delivery,
        )
        return outcome, submitted

    async def _save_submitted(self, session: Session) -> None:
        """Persists a just-submitted session, retrying the write: once its record exists the session must leave Confirm."""
        async for attempt in tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.save_attempts),
            wait=tenacity.wait_fixed(0.1),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                await self.store.save(session)

    async def _apologize(self, sender_id: str, title: str, error: Exception, deliver: bool,
                         details: Optional[dict] = None) -> MessageOutcome:
        message_counter.labels(status="error").inc()
        logger.error(f"Failed to handle message from {sender_id}: {error}", exc_info=error)
        await self.alerts.send_critical_alert(title, details or {"sender": sender_id, "error": str(error)})
        apology = TemplateDirective(template_id=TEMPLATES["ERROR_RECOVERY"], plain_text_fallback=strings.GENERIC_ERROR)
        delivery = await self.delivery.deliver(sender_id, apology) if deliver else None
        return self._outcome(sender_id, "error", directive=apology, delivery=delivery)

    async def _notify_operator(self, request: SubmissionRequest, reference_number: Optional[str]):
        if not self.operator_number:
            return
        labels = {}
        entry = self.engine.flow.branch_entry(request.submit_node_id)
        if entry:
            labels = self.engine.flow.field_labels(entry.id)
        text = format_admin_notification(
            request.sender_id, request.service_label, request.fields, labels,
            reference_number=reference_number, submitted_at=datetime.utcnow(),
        )
        result = await self.delivery.deliver(self.operator_number, PlainTextDirective(text=text))
        if not result.delivered:
            logger.warning(f"Operator notification for {request.sender_id} was not delivered")

    @staticmethod
    def _outcome(sender_id: str, outcome: str, duplicate: bool = False, session: Optional[Session] = None,
                 directive=None, submission: Optional[SubmissionResult] = None,
                 delivery: Optional[DeliveryResult] = None) -> MessageOutcome:
        return {
            "sender_id": sender_id,
            "outcome": outcome,
            "duplicate": duplicate,
            "session": session,
            "directive": directive,
            "submission": submission,
            "delivery": delivery,
        }


# Globally accessible instance
conversation_service = ConversationService(
    store=session_store,
    engine=flow_engine,
    gateway=submission_gateway,
    delivery=delivery_adapter,
    duplicate_window_seconds=settings.duplicate_window_seconds,
    operator_number=settings.operator_whatsapp_number,
)
