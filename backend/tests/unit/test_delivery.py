# backend/tests/unit/test_delivery.py
import asyncio
from unittest.mock import AsyncMock

import pytest
from pydantic import TypeAdapter

from regdesk.errors import TransportError
from regdesk.models.directive import DeliveryChannel, PlainTextDirective, ResponseDirective, TemplateDirective
from regdesk.services.delivery import DeliveryAdapter

RECIPIENT = "+263771234567"
TEMPLATE = TemplateDirective(template_id="HX123", variables={"1": "Tendai"}, plain_text_fallback="Main menu")


@pytest.fixture
def transport():
    mock = AsyncMock()
    mock.send_template.return_value = "SM-template"
    mock.send_text.return_value = "SM-text"
    return mock


@pytest.fixture
def alerts():
    return AsyncMock()


@pytest.fixture
def adapter(transport, alerts):
    return DeliveryAdapter(transport, timeout_seconds=0.5, alerts=alerts)


@pytest.mark.asyncio
async def test_template_success_sends_nothing_else(adapter, transport):
    result = await adapter.deliver(RECIPIENT, TEMPLATE)

    assert result.delivered is True
    assert result.channel == DeliveryChannel.TEMPLATE
    assert result.message_id == "SM-template"
    assert result.fell_back is False
    transport.send_template.assert_awaited_once_with(RECIPIENT, "HX123", {"1": "Tendai"})
    transport.send_text.assert_not_called()


@pytest.mark.asyncio
async def test_template_failure_falls_back_exactly_once(adapter, transport):
    transport.send_template.side_effect = TransportError("Template not approved", status_code=400, error_code=63016)

    result = await adapter.deliver(RECIPIENT, TEMPLATE)

    assert result.delivered is True
    assert result.channel == DeliveryChannel.PLAIN_TEXT
    assert result.fell_back is True
    assert result.message_id == "SM-text"
    transport.send_template.assert_awaited_once()
    transport.send_text.assert_awaited_once_with(RECIPIENT, "Main menu")


@pytest.mark.asyncio
async def test_template_timeout_falls_back(adapter, transport):
    async def hang(*args, **kwargs):
        await asyncio.sleep(5)

    transport.send_template.side_effect = hang

    result = await adapter.deliver(RECIPIENT, TEMPLATE)

    assert result.delivered is True
    assert result.fell_back is True
    assert "timed out" in result.errors[0]
    transport.send_text.assert_awaited_once()


@pytest.mark.asyncio
async def test_plain_text_gets_single_attempt(adapter, transport, alerts):
    transport.send_text.side_effect = TransportError("Service unavailable", status_code=503)

    result = await adapter.deliver(RECIPIENT, PlainTextDirective(text="Hello"))

    assert result.delivered is False
    assert result.fell_back is False
    transport.send_text.assert_awaited_once_with(RECIPIENT, "Hello")
    transport.send_template.assert_not_called()
    alerts.send_critical_alert.assert_awaited_once()


@pytest.mark.asyncio
async def test_both_paths_failing_reports_undelivered(adapter, transport, alerts):
    transport.send_template.side_effect = TransportError("bad template")
    transport.send_text.side_effect = TransportError("unreachable")

    result = await adapter.deliver(RECIPIENT, TEMPLATE)

    assert result.delivered is False
    assert result.channel is None
    assert result.errors == ["template: bad template", "plain_text: unreachable"]
    assert transport.send_template.await_count == 1
    assert transport.send_text.await_count == 1
    alerts.send_critical_alert.assert_awaited_once()


def test_response_directive_is_chosen_by_kind():
    adapter = TypeAdapter(ResponseDirective)
    template = adapter.validate_python({"kind": "template", "template_id": "HX123", "plain_text_fallback": "Main menu"})
    text = adapter.validate_python({"kind": "plain_text", "text": "Hello"})
    assert isinstance(template, TemplateDirective)
    assert isinstance(text, PlainTextDirective)
    assert adapter.validate_python(TEMPLATE.model_dump()) == TEMPLATE
