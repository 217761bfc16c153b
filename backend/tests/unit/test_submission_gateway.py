# backend/tests/unit/test_submission_gateway.py
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from regdesk.models.directive import SubmissionErrorKind, SubmissionRequest
from regdesk.services.submission_gateway import (
    SERVICE_ENDPOINTS,
    SubmissionGateway,
    map_church_registration,
    map_company_deregistration,
    map_company_re_registration,
    map_company_registration,
    map_licence_application,
)
from regdesk.utils.circuit_breaker import CircuitBreaker

BASE_URL = "http://applications.test/api/v1"

CHURCH_REQUEST = SubmissionRequest(
    sender_id="+263771234567",
    service_type="church_registration",
    service_label="Church Registration",
    fields={
        "church_name": "Grace Chapel",
        "founder_name": "Tendai Moyo",
        "founder_id_number": "63-123456-A-42",
        "founder_address": "12 Samora Machel Ave, Harare",
        "founder_phone": "+263771234567",
        "church_objectives": "Worship and outreach",
    },
    submit_node_id="church.submit",
)


def _gateway(handler, alerts=None, breaker=None, max_attempts=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SubmissionGateway(
        BASE_URL,
        max_attempts=max_attempts,
        backoff_seconds=0,
        http_client=client,
        circuit_breaker=breaker or CircuitBreaker("test_applications", failure_threshold=10),
        alerts=alerts or AsyncMock(),
    )


@pytest.mark.asyncio
async def test_success_returns_record_and_reference():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"success": True, "data": {"_id": "66a1", "referenceNumber": "QPS111222333"}})

    result = await _gateway(handler).submit(CHURCH_REQUEST)

    assert result.success is True
    assert result.record_id == "66a1"
    assert result.reference_number == "QPS111222333"
    assert result.attempts == 1
    assert str(seen[0].url) == f"{BASE_URL}/church_reg_apply"
    body = json.loads(seen[0].content)
    assert body["churchName"] == "Grace Chapel"
    assert body["chuchObjective"] == "Worship and outreach"


@pytest.mark.asyncio
async def test_success_without_reference_gets_local_one():
    def handler(request):
        return httpx.Response(201, json={"success": True, "data": {"id": 42}})

    result = await _gateway(handler).submit(CHURCH_REQUEST)

    assert result.record_id == "42"
    assert result.reference_number.startswith("QPS")


@pytest.mark.asyncio
async def test_success_with_unexpected_data_shape_still_succeeds():
    def handler(request):
        return httpx.Response(201, json={"success": True, "data": ["66a1"]})

    result = await _gateway(handler).submit(CHURCH_REQUEST)

    assert result.success is True
    assert result.record_id is None
    assert result.reference_number.startswith("QPS")


@pytest.mark.asyncio
async def test_validation_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={
            "success": False,
            "error": "Validation Error",
            "message": "Invalid input",
            "details": ["founderID is required"],
        })

    result = await _gateway(handler).submit(CHURCH_REQUEST)

    assert result.success is False
    assert result.error_kind == SubmissionErrorKind.FIELD_VALIDATION
    assert result.error_details == ["founderID is required"]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_duplicate_error_is_a_conflict():
    def handler(request):
        return httpx.Response(400, json={"success": False, "error": "Duplicate Error", "message": "Church already registered"})

    result = await _gateway(handler).submit(CHURCH_REQUEST)

    assert result.error_kind == SubmissionErrorKind.CONFLICT
    assert result.error_details == ["Church already registered"]


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_unavailable():
    calls = []
    alerts = AsyncMock()

    def handler(request):
        calls.append(request)
        return httpx.Response(503, json={"success": False, "message": "down"})

    result = await _gateway(handler, alerts=alerts).submit(CHURCH_REQUEST)

    assert result.success is False
    assert result.error_kind == SubmissionErrorKind.UNAVAILABLE
    assert result.attempts == 3
    assert len(calls) == 3
    alerts.send_critical_alert.assert_awaited_once()


@pytest.mark.asyncio
async def test_transient_failure_then_success():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(201, json={"success": True, "data": {"_id": "66a2", "referenceNumber": "QPS1"}})

    result = await _gateway(handler).submit(CHURCH_REQUEST)

    assert result.success is True
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_open_circuit_is_unavailable_without_calling_downstream():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    breaker = CircuitBreaker("test_applications", failure_threshold=1, timeout=60)
    gateway = _gateway(handler, breaker=breaker, max_attempts=1)

    first = await gateway.submit(CHURCH_REQUEST)
    second = await gateway.submit(CHURCH_REQUEST)

    assert first.error_kind == SubmissionErrorKind.UNAVAILABLE
    assert second.error_kind == SubmissionErrorKind.UNAVAILABLE
    assert "OPEN" in second.error_details[0]
    assert len(calls) == 1


def test_every_service_type_has_an_endpoint(engine):
    service_types = {entry.service_type for entry in engine.flow.branches()}
    assert service_types <= set(SERVICE_ENDPOINTS)


def _director(number, name, phone):
    return {
        f"director_{number}_full_name": name,
        f"director_{number}_id_number": f"63-12345{number}-A-42",
        f"director_{number}_nationality": "Zimbabwean",
        f"director_{number}_occupation": "Engineer",
        f"director_{number}_phone": phone,
    }


def test_company_mapping_builds_director_list():
    fields = {
        "company_name_1": "Acme Holdings",
        "company_name_2": "Acme Group",
        "company_name_3": "Acme Trading",
        "business_type": "Retail",
        **_director(1, "Tendai Moyo", "+263771234567"),
        **_director(2, "Rudo Ncube", "+263772222222"),
        "contact_email": "info@acme.co.zw",
        "company_address": "12 Samora Machel Ave, Harare",
    }
    request = SubmissionRequest(
        sender_id="+263771234567",
        service_type="company_registration",
        service_label="Company Registration",
        fields=fields,
        submit_node_id="company.directors_2.submit",
    )
    payload = map_company_registration(request)
    assert payload["directors"] == [
        {
            "fullName": "Tendai Moyo",
            "idNumber": "63-123451-A-42",
            "nationality": "Zimbabwean",
            "occupation": "Engineer",
            "phoneNumber": "+263771234567",
        },
        {
            "fullName": "Rudo Ncube",
            "idNumber": "63-123452-A-42",
            "nationality": "Zimbabwean",
            "occupation": "Engineer",
            "phoneNumber": "+263772222222",
        },
    ]
    assert payload["directorsCount"] == 2
    assert payload["applicantName"] == "Tendai Moyo"
    assert payload["applicantPhone"] == "+263771234567"
    assert payload["whatsappNumber"] == "+263771234567"


def test_licence_mapping_names_the_licence():
    request = SubmissionRequest(
        sender_id="+263771234567",
        service_type="licence_application",
        service_label="Liquor Licence",
        fields={
            "company_name": "Acme Bar",
            "email": "info@acme.co.zw",
            "address": "12 Samora Machel Ave, Harare",
            "contact_person": "Tendai Moyo",
            "phone": "+263771234567",
            "business_type": "Bar",
            "premises_size": "120",
            "target_market": "Young professionals",
        },
        submit_node_id="other.licensing.liquor.submit",
    )
    payload = map_licence_application(request)
    assert payload["licenseType"] == "Liquor Licence"
    assert payload["contactPerson"] == "Tendai Moyo"
    assert payload["premisesSize"] == "120"
    assert SERVICE_ENDPOINTS["licence_application"][0] == "/licence-applications"


@pytest.mark.asyncio
async def test_re_registration_is_posted_to_applications():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"success": True, "data": {"_id": "77b2", "referenceNumber": "QPS999888777"}})

    request = SubmissionRequest(
        sender_id="+263771234567",
        service_type="company_re_registration",
        service_label="Company Re-Registration",
        fields={
            "company_name": "Acme Holdings",
            "registration_number": "1234/2015",
            "business_type": "Private Limited",
            "current_address": "12 Samora Machel Ave, Harare",
            "contact_name": "Tendai Moyo",
            "contact_email": "info@acme.co.zw",
            "contact_phone": "+263771234567",
            "position": "Director",
        },
        submit_node_id="other.re_registration.submit",
    )

    result = await _gateway(handler).submit(request)

    assert result.reference_number == "QPS999888777"
    assert str(seen[0].url) == f"{BASE_URL}/applications"
    body = json.loads(seen[0].content)
    assert body == map_company_re_registration(request)
    assert body["serviceType"] == "Company Re-Registration"
    assert body["companyAddress"] == "12 Samora Machel Ave, Harare"
    assert body["positionInCompany"] == "Director"


@pytest.mark.parametrize("answer, expected", [("None", False), ("n/a", False), ("ZIMRA tax arrears", True)])
def test_deregistration_obligations_flag(answer, expected):
    fields = {name: "x" for name in [
        "company_name", "registration_number", "business_type", "registration_date", "contact_name",
        "contact_email", "contact_phone", "position", "authority_to_act", "deregistration_reason",
    ]}
    fields["outstanding_obligations"] = answer
    request = SubmissionRequest(
        sender_id="+263771234567", service_type="company_deregistration",
        service_label="Company De-Registration", fields=fields, submit_node_id="dereg.submit",
    )
    assert map_company_deregistration(request)["hasOutstandingObligations"] is expected


def test_church_mapping_keeps_downstream_field_names():
    payload = map_church_registration(CHURCH_REQUEST)
    assert payload["founderID"] == "63-123456-A-42"
    assert payload["founderContactNumber"] == "+263771234567"
