# /regdesk/services/submission_gateway.py

import httpx
import logging
import time
import tenacity
from typing import Any, Callable, Dict, Optional, Tuple

from regdesk.config.settings import settings
from regdesk.errors import SubmissionUnavailableError
from regdesk.models.directive import SubmissionErrorKind, SubmissionRequest, SubmissionResult
from regdesk.services.formatters import generate_reference_number
from regdesk.utils.alerting import AlertingService, alerting_service
from regdesk.utils.circuit_breaker import CircuitBreaker, CircuitOpenError
from regdesk.utils.metrics import submission_counter, submission_latency_histogram

logger = logging.getLogger(__name__)

NO_OBLIGATIONS = {"none", "no", "nil", "n/a", "na"}


# ---------------- Field mapping ---------------- #
# Each mapper turns the collected fields of one branch into the record the
# matching creation endpoint expects.

def map_company_registration(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    directors = []
    number = 1
    while f"director_{number}_full_name" in f:
        directors.append({
            "fullName": f[f"director_{number}_full_name"],
            "idNumber": f[f"director_{number}_id_number"],
            "nationality": f[f"director_{number}_nationality"],
            "occupation": f[f"director_{number}_occupation"],
            "phoneNumber": f[f"director_{number}_phone"],
        })
        number += 1
    principal = directors[0]
    return {
        "applicantName": principal["fullName"],
        "applicantEmail": f["contact_email"],
        "applicantPhone": principal["phoneNumber"],
        "serviceType": request.service_label,
        "companyName": f["company_name_1"],
        "companyName2": f["company_name_2"],
        "companyName3": f["company_name_3"],
        "businessType": f["business_type"],
        "directors": directors,
        "directorsCount": len(directors),
        "contactEmail": f["contact_email"],
        "companyAddress": f["company_address"],
        "whatsappNumber": request.sender_id,
    }


def map_company_re_registration(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    return {
        "applicantName": f["contact_name"],
        "applicantEmail": f["contact_email"],
        "applicantPhone": f["contact_phone"],
        "serviceType": request.service_label,
        "companyName": f["company_name"],
        "businessType": f["business_type"],
        "companyAddress": f["current_address"],
        "positionInCompany": f["position"],
        "registrationNumber": f["registration_number"],
        "whatsappNumber": request.sender_id,
    }


def map_licence_application(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    return {
        "licenseType": request.service_label,
        "companyName": f["company_name"],
        "email": f["email"],
        "address": f["address"],
        "contactPerson": f["contact_person"],
        "phoneNumber": f["phone"],
        "businessType": f["business_type"],
        "premisesSize": f["premises_size"],
        "targetMarket": f["target_market"],
        "whatsappNumber": request.sender_id,
    }


def map_company_deregistration(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    outstanding = f["outstanding_obligations"]
    return {
        "applicantName": f["contact_name"],
        "applicantEmail": f["contact_email"],
        "applicantPhone": f["contact_phone"],
        "companyName": f["company_name"],
        "registrationNumber": f["registration_number"],
        "businessType": f["business_type"],
        "registrationDate": f["registration_date"],
        "positionInCompany": f["position"],
        "authorityToAct": f["authority_to_act"],
        "deregistrationReason": f["deregistration_reason"],
        "hasOutstandingObligations": outstanding.strip().lower() not in NO_OBLIGATIONS,
        "outstandingDetails": outstanding,
    }


def map_vendor_number(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    return {
        "applicantName": f["applicant_name"],
        "applicantEmail": f["applicant_email"],
        "applicantPhoneNumber": f["applicant_phone"],
    }


def map_church_registration(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    return {
        "churchName": f["church_name"],
        "founderName": f["founder_name"],
        "founderID": f["founder_id_number"],
        "founderAddress": f["founder_address"],
        "founderContactNumber": f["founder_phone"],
        # downstream schema spells it this way
        "chuchObjective": f["church_objectives"],
    }


def map_praz_registration(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    return {
        "companyEmail": f["company_email"],
        "bankName": f["bank_name"],
        "accountNumber": f["account_number"],
        "accountHolder": f["account_holder"],
        "branchName": f["branch_name"],
        "branchCode": f["branch_code"],
        "accountType": f["account_type"],
    }


def map_college_registration(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    return {
        "applicantName": f["applicant_name"],
        "churchName": f["church_name"],
        "email": f["email"],
        "phoneNumber": f["phone"],
        "whatsappNumber": request.sender_id,
    }


def map_universal(request: SubmissionRequest) -> Dict[str, Any]:
    f = request.fields
    return {
        "companyName": f["company_name"],
        "email": f["email"],
        "contactName": f["contact_name"],
        "phoneNumber": f["phone"],
        "serviceType": request.service_label,
    }


SERVICE_ENDPOINTS: Dict[str, Tuple[str, Callable[[SubmissionRequest], Dict[str, Any]]]] = {
    "company_registration": ("/applications", map_company_registration),
    "company_re_registration": ("/applications", map_company_re_registration),
    "company_deregistration": ("/comp_de_reg_applications", map_company_deregistration),
    "vendor_number": ("/vendor_number", map_vendor_number),
    "church_registration": ("/church_reg_apply", map_church_registration),
    "praz_registration": ("/praz_reg_apply", map_praz_registration),
    "college_registration": ("/college_applications", map_college_registration),
    "licence_application": ("/licence-applications", map_licence_application),
    "universal": ("/universal-applications", map_universal),
}


# ---------------- Outcome classification ---------------- #

def classify_response(response: httpx.Response) -> SubmissionResult:
    """
    Interprets a non-5xx answer of a creation endpoint
    ({success, data | error, message, details?}).
    """
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    if 200 <= response.status_code < 300 and body.get("success", True):
        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
        record_id = data.get("_id") or data.get("id")
        return SubmissionResult.ok(
            record_id=str(record_id) if record_id is not None else None,
            reference_number=data.get("referenceNumber"),
        )

    error = body.get("error")
    message = body.get("message")
    details = body.get("details")
    if not isinstance(details, list) or not details:
        details = [message] if message else []

    if error == "Duplicate Error" or response.status_code == 409:
        return SubmissionResult.failed(SubmissionErrorKind.CONFLICT, [message] if message else [])
    if error == "Validation Error" or response.status_code in (400, 422):
        return SubmissionResult.failed(SubmissionErrorKind.FIELD_VALIDATION, [str(d) for d in details])
    return SubmissionResult.failed(
        SubmissionErrorKind.FIELD_VALIDATION,
        [message or error or f"Request rejected with HTTP {response.status_code}"],
    )


class SubmissionGateway:
    """
    Sends a completed session to its creation endpoint.

    Transport failures, timeouts, 5xx answers and an open circuit are
    retried with exponential backoff up to ``max_attempts`` in total and
    then reported as Unavailable. Validation and conflict answers are
    returned immediately.
    """

    def __init__(self, base_url: str, timeout_seconds: float = 10.0, max_attempts: int = 3,
                 backoff_seconds: float = 1.0, http_client: Optional[httpx.AsyncClient] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 alerts: Optional[AlertingService] = None):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self.circuit_breaker = circuit_breaker or CircuitBreaker("applications_api")
        self.alerts = alerts or alerting_service

    async def _request(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self.http_client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise SubmissionUnavailableError(f"{type(e).__name__}: {e}") from e
        if response.status_code >= 500:
            raise SubmissionUnavailableError(f"Creation endpoint answered HTTP {response.status_code}")
        return response

    async def _post_once(self, url: str, payload: Dict[str, Any]) -> SubmissionResult:
        try:
            response = await self.circuit_breaker.call(self._request, url, payload)
        except CircuitOpenError as e:
            raise SubmissionUnavailableError(str(e)) from e
        return classify_response(response)

    async def submit(self, request: SubmissionRequest) -> SubmissionResult:
        endpoint, mapper = SERVICE_ENDPOINTS[request.service_type]
        url = f"{self.base_url}{endpoint}"
        payload = mapper(request)

        started = time.perf_counter()
        attempts = 0
        try:
            async for attempt in tenacity.AsyncRetrying(
                retry=tenacity.retry_if_exception_type(SubmissionUnavailableError),
                stop=tenacity.stop_after_attempt(self.max_attempts),
                wait=tenacity.wait_exponential(multiplier=self.backoff_seconds, max=10),
                before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self._post_once(url, payload)
        except SubmissionUnavailableError as e:
            submission_counter.labels(service_type=request.service_type, outcome="unavailable").inc()
            logger.error(f"Submission for {request.sender_id} ({request.service_type}) unavailable after {attempts} attempts: {e}")
            await self.alerts.send_critical_alert(
                "Application submission unavailable",
                {"service_type": request.service_type, "sender": request.sender_id, "attempts": attempts, "error": str(e)},
            )
            return SubmissionResult.failed(SubmissionErrorKind.UNAVAILABLE, [str(e)], attempts=attempts)
        finally:
            submission_latency_histogram.labels(service_type=request.service_type).observe(time.perf_counter() - started)

        result.attempts = attempts
        if result.success:
            if not result.reference_number:
                result.reference_number = generate_reference_number()
            submission_counter.labels(service_type=request.service_type, outcome="success").inc()
            logger.info(f"Submitted {request.service_type} for {request.sender_id}: record {result.record_id}, ref {result.reference_number}")
        else:
            submission_counter.labels(service_type=request.service_type, outcome=result.error_kind.value).inc()
            logger.warning(f"Submission for {request.sender_id} ({request.service_type}) rejected: {result.error_kind.value} {result.error_details}")
        return result

    async def close(self):
        await self.http_client.aclose()


# Globally accessible instance
submission_gateway = SubmissionGateway(
    base_url=settings.applications_api_url,
    timeout_seconds=settings.submission_timeout_seconds,
    max_attempts=settings.submission_max_attempts,
    backoff_seconds=settings.submission_retry_backoff_seconds,
)
