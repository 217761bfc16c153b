# backend/tests/conftest.py
import os
import pytest
from collections import deque
from fastapi.testclient import TestClient
from dotenv import load_dotenv
from unittest.mock import AsyncMock

# Load environment variables FIRST, before any regdesk imports, so the
# settings object can be built.
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env.test"))

# Now it's safe to import the application and its components
from regdesk.main import app # noqa: E402
from regdesk.flows.engine import flow_engine # noqa: E402
from regdesk.models.flow import NodeKind # noqa: E402
from regdesk.services.session_store import InMemorySessionStore, session_store # noqa: E402
from regdesk.utils.scheduler import session_sweeper # noqa: E402

# A valid answer for every validator used by the flow.
VALID_ANSWERS = {
    "company_name": "Acme Holdings",
    "text": "General consulting",
    "name": "Tendai Moyo",
    "national_id": "63-123456-a-42",
    "phone": "077 123 4567",
    "email": "Info@Acme.co.zw",
    "address": "12 Samora Machel Ave\nHarare",
    "date": "2015-03-01",
    "yes_no": "yes",
    "account_number": "1234 5678 90",
    "bank_name": "1",
    "account_type": "2",
    "currency": "1000",
    "share_capital": "100",
}


@pytest.fixture
def engine():
    return flow_engine


@pytest.fixture
def memory_store():
    return InMemorySessionStore(flow_engine, ttl_seconds=1800)


@pytest.fixture
def menu_path():
    """Returns the menu choices that lead from the root to a given node."""
    def _path(target_id):
        flow = flow_engine.flow
        queue = deque([(flow.root_id, [])])
        seen = set()
        while queue:
            node_id, choices = queue.popleft()
            if node_id == target_id:
                return choices
            if node_id in seen:
                continue
            seen.add(node_id)
            for number, option in enumerate(flow.nodes[node_id].options, start=1):
                queue.append((option.target, choices + [str(number)]))
        raise AssertionError(f"No menu path to {target_id}")
    return _path


@pytest.fixture
def drive_to_confirm(menu_path):
    """
    Walks a fresh session from the root into ``entry_id`` and answers every
    prompt with a valid value until the branch's Confirm node.
    """
    def _drive(session, entry_id, stop_at=None):
        for choice in menu_path(entry_id):
            session = flow_engine.advance(session, choice)["session"]
        for _ in range(50):
            node = flow_engine.flow.nodes[session.current_node_id]
            if node.kind == NodeKind.CONFIRM or node.id == stop_at:
                return session
            if node.kind == NodeKind.INPUT:
                answer = VALID_ANSWERS[node.validator]
            elif node.kind == NodeKind.MENU:
                answer = "1"
            else:
                raise AssertionError(f"Unexpected node {node.id} while driving {entry_id}")
            session = flow_engine.advance(session, answer)["session"]
        raise AssertionError(f"Did not reach a Confirm node from {entry_id}")
    return _drive


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    Provides a TestClient for API integration tests. The idle-session sweep
    is not started, outbound HTTP clients are not closed on shutdown, and
    the shared in-memory store starts empty.
    """
    mocker.patch.object(session_sweeper, "start")
    mocker.patch.object(session_sweeper, "stop")
    mocker.patch("regdesk.utils.lifecycle.whatsapp_service.close", new_callable=AsyncMock)
    mocker.patch("regdesk.utils.lifecycle.submission_gateway.close", new_callable=AsyncMock)
    mocker.patch("regdesk.utils.lifecycle.alerting_service.cleanup", new_callable=AsyncMock)
    session_store._sessions.clear()
    session_store._seen_messages.clear()

    with TestClient(app) as client:
        yield client
