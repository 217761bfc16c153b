# backend/tests/unit/test_conversation_service.py
import asyncio
from unittest.mock import AsyncMock

import pytest

from regdesk.config import strings
from regdesk.errors import SessionLockError
from regdesk.flows.definitions import TEMPLATES
from regdesk.models.directive import DeliveryResult, SubmissionErrorKind, SubmissionResult
from regdesk.models.session import SessionStatus
from regdesk.services.conversation_service import ConversationService

SENDER = "whatsapp:+263771234567"
NORMALIZED = "+263771234567"
OPERATOR = "+263779999999"


@pytest.fixture
def gateway():
    mock = AsyncMock()
    mock.submit.return_value = SubmissionResult.ok(record_id="66a1", reference_number="QPS123456789")
    return mock


@pytest.fixture
def delivery():
    mock = AsyncMock()
    mock.deliver.side_effect = lambda recipient, directive: DeliveryResult(recipient=recipient, delivered=True)
    return mock


@pytest.fixture
def service(memory_store, engine, gateway, delivery):
    return ConversationService(
        store=memory_store,
        engine=engine,
        gateway=gateway,
        delivery=delivery,
        alerts=AsyncMock(),
        operator_number=OPERATOR,
    )


async def _say(service, *messages):
    outcome = None
    for text in messages:
        outcome = await service.handle_message(SENDER, text)
    return outcome


VENDOR_ANSWERS = ["3", "1", "Tendai Moyo", "tendai@acme.co.zw", "0771234567"]


@pytest.mark.asyncio
async def test_first_message_creates_session_and_replies(service, delivery, memory_store):
    outcome = await service.handle_message(SENDER, "hi", message_id="SM1")

    assert outcome["sender_id"] == NORMALIZED
    assert outcome["outcome"] == "greeting"
    assert outcome["directive"].template_id == TEMPLATES["WELCOME"]
    delivery.deliver.assert_awaited_once_with(NORMALIZED, outcome["directive"])
    assert (await memory_store.get(NORMALIZED)).current_node_id == "root"


@pytest.mark.asyncio
async def test_duplicate_message_is_ignored(service, delivery, memory_store):
    await service.handle_message(SENDER, "1", message_id="SM1")
    outcome = await service.handle_message(SENDER, "1", message_id="SM1")

    assert outcome["duplicate"] is True
    assert outcome["outcome"] == "duplicate"
    assert delivery.deliver.await_count == 1
    assert (await memory_store.get(NORMALIZED)).current_node_id == "company.company_name_1"


@pytest.mark.asyncio
async def test_simulation_does_not_deliver(service, delivery):
    outcome = await service.handle_message(SENDER, "1", deliver=False)
    assert outcome["delivery"] is None
    delivery.deliver.assert_not_called()


@pytest.mark.asyncio
async def test_confirmed_application_is_submitted_and_operator_notified(service, gateway, delivery, memory_store):
    await _say(service, *VENDOR_ANSWERS)
    outcome = await service.handle_message(SENDER, "confirm")

    request = gateway.submit.await_args.args[0]
    assert request.service_type == "vendor_number"
    assert request.fields == {
        "applicant_name": "Tendai Moyo",
        "applicant_email": "tendai@acme.co.zw",
        "applicant_phone": "+263771234567",
    }
    assert outcome["outcome"] == "submitted"
    assert "QPS123456789" in outcome["directive"].text

    stored = await memory_store.get(NORMALIZED)
    assert stored.status == SessionStatus.SUBMITTED
    assert stored.current_node_id == "vendor.done"
    assert stored.reference_number == "QPS123456789"

    recipient, notification = delivery.deliver.await_args_list[-1].args
    assert recipient == OPERATOR
    assert "NEW REGISTRATION ALERT" in notification.text
    assert f"Client: {NORMALIZED}" in notification.text
    assert "Applicant Email: tendai@acme.co.zw" in notification.text


@pytest.mark.asyncio
async def test_rejected_submission_returns_to_confirmation(service, gateway, delivery, memory_store):
    gateway.submit.return_value = SubmissionResult.failed(SubmissionErrorKind.CONFLICT, ["exists"])
    await _say(service, *VENDOR_ANSWERS)
    outcome = await service.handle_message(SENDER, "confirm")

    assert outcome["outcome"] == "submission_conflict"
    stored = await memory_store.get(NORMALIZED)
    assert stored.current_node_id == "vendor.confirm"
    assert stored.collected_fields["applicant_name"] == "Tendai Moyo"
    recipients = [call.args[0] for call in delivery.deliver.await_args_list]
    assert OPERATOR not in recipients


@pytest.mark.asyncio
async def test_failure_sends_apology_and_keeps_previous_state(service, engine, delivery, memory_store, mocker):
    await service.handle_message(SENDER, "1")
    mocker.patch.object(engine, "advance", side_effect=RuntimeError("boom"))

    outcome = await service.handle_message(SENDER, "Acme Holdings")

    assert outcome["outcome"] == "error"
    assert outcome["directive"].template_id == TEMPLATES["ERROR_RECOVERY"]
    assert outcome["directive"].plain_text_fallback == strings.GENERIC_ERROR
    service.alerts.send_critical_alert.assert_awaited_once()
    stored = await memory_store.get(NORMALIZED)
    assert stored.current_node_id == "company.company_name_1"
    assert stored.collected_fields == {}


@pytest.mark.asyncio
async def test_concurrent_messages_from_one_sender_are_serialized(service, memory_store):
    await service.handle_message(SENDER, "6")
    await asyncio.gather(
        service.handle_message(SENDER, "Tendai Moyo", message_id="SM10"),
        service.handle_message(SENDER, "Grace Chapel", message_id="SM11"),
    )
    stored = await memory_store.get(NORMALIZED)
    assert stored.collected_fields == {"applicant_name": "Tendai Moyo", "church_name": "Grace Chapel"}
    assert stored.current_node_id == "college.email"
    assert memory_store.lock_count() == 0


@pytest.mark.asyncio
async def test_session_is_saved_before_the_reply_is_delivered(service, delivery, memory_store):
    await service.handle_message(SENDER, "3")
    stored_at_delivery = []

    async def deliver(recipient, directive):
        stored_at_delivery.append((await memory_store.get(NORMALIZED)).current_node_id)
        return DeliveryResult(recipient=recipient, delivered=True)

    delivery.deliver.side_effect = deliver
    await service.handle_message(SENDER, "1")

    assert stored_at_delivery == ["vendor.applicant_name"]


@pytest.mark.asyncio
async def test_failed_save_after_submission_is_retried_and_not_resubmitted(service, gateway, memory_store, mocker):
    await _say(service, *VENDOR_ANSWERS)
    real_save = memory_store.save
    attempts = []

    async def flaky_save(session):
        attempts.append(session.current_node_id)
        if len(attempts) == 1:
            raise RuntimeError("write failed")
        await real_save(session)

    mocker.patch.object(memory_store, "save", side_effect=flaky_save)

    first = await service.handle_message(SENDER, "confirm")

    assert first["outcome"] == "submitted"
    assert attempts == ["vendor.done", "vendor.done"]
    stored = await memory_store.get(NORMALIZED)
    assert stored.status == SessionStatus.SUBMITTED
    assert stored.current_node_id == "vendor.done"

    again = await service.handle_message(SENDER, "confirm")
    assert again["outcome"] == "restart"
    assert gateway.submit.await_count == 1


@pytest.mark.asyncio
async def test_unsaved_submission_alerts_with_the_created_record(service, gateway, delivery, memory_store, mocker):
    await _say(service, *VENDOR_ANSWERS)
    mocker.patch.object(memory_store, "save", side_effect=RuntimeError("backend down"))

    outcome = await service.handle_message(SENDER, "confirm")

    assert outcome["outcome"] == "error"
    assert memory_store.save.await_count == 3
    title, details = service.alerts.send_critical_alert.await_args.args
    assert title == "Conversation handling failed"
    assert details["record_id"] == "66a1"
    assert details["reference_number"] == "QPS123456789"
    recipients = [call.args[0] for call in delivery.deliver.await_args_list]
    assert OPERATOR not in recipients


@pytest.mark.asyncio
async def test_lock_timeout_sends_apology_without_touching_the_session(service, gateway, delivery, memory_store, mocker):
    mocker.patch.object(memory_store, "locked", side_effect=SessionLockError("timed out"))

    outcome = await service.handle_message(SENDER, "1")

    assert outcome["outcome"] == "error"
    assert outcome["directive"].template_id == TEMPLATES["ERROR_RECOVERY"]
    assert service.alerts.send_critical_alert.await_args.args[0] == "Session lock unavailable"
    delivery.deliver.assert_awaited_once_with(NORMALIZED, outcome["directive"])
    gateway.submit.assert_not_called()
    assert await memory_store.list() == []
