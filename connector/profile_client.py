"""Client for the remote FHIR conformance (``$validate``) service.

The booking checks delegate structural/terminology validation of an
Appointment to an external FHIR server. This module wraps that call with an
HTTP session that retries transient failures, a bounded timeout, and
structured errors so the caller can degrade gracefully when the service is
unavailable.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .fhir import appointment_to_fhir
from .resources import Appointment

__all__ = [
    "OfflineProfileValidator",
    "ProfileClientError",
    "ProfileIssue",
    "ProfileServiceError",
    "RemoteProfileClient",
    "parse_operation_outcome",
]


logger = logging.getLogger(__name__)


def _env_number(name: str, default: str, convert: Callable[[str], Any], minimum: float) -> Any:
    """Read a numeric setting, falling back to ``default`` when it is unusable."""

    raw = os.getenv(name, default)
    try:
        value = convert(raw)
    except ValueError:
        logger.error("Invalid %s=%r, using default %s", name, raw, default)
        return convert(default)
    if value < minimum:
        logger.error("Invalid %s=%r (below %s), using default %s", name, raw, minimum, default)
        return convert(default)
    return value


DEFAULT_BASE_URL = os.getenv("PROFILE_VALIDATOR_URL", "https://data.developer.nhs.uk/ccri-fhir/STU3")
DEFAULT_TIMEOUT_SECONDS = _env_number("PROFILE_VALIDATOR_TIMEOUT", "10", float, 0.1)
DEFAULT_MAX_RETRIES = _env_number("PROFILE_VALIDATOR_MAX_RETRIES", "2", int, 0)
DEFAULT_BACKOFF_FACTOR = 0.5

FHIR_JSON = "application/fhir+json"
# $validate answers with an OperationOutcome on success and on rejection.
OUTCOME_STATUSES = (200, 400, 412, 422)


class ProfileClientError(RuntimeError):
    """Base exception for conformance service errors."""


class ProfileServiceError(ProfileClientError):
    """Raised when the conformance service fails or answers unexpectedly."""


@dataclass(frozen=True)
class ProfileIssue:
    """One ``OperationOutcome.issue`` returned by the conformance service."""

    severity: str
    detail: str = ""
    code: Optional[str] = None


class RemoteProfileClient:
    """Validates resources by POSTing them to ``<base_url>/<Type>/$validate``.

    Each thread gets its own ``requests.Session`` so the client can be shared
    by concurrent request handlers.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        if timeout <= 0:
            raise ValueError("timeout must be positive")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self._shared_session = session
        self._local = threading.local()

    def _build_session(self) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=self.max_retries,
            read=self.max_retries,
            connect=self.max_retries,
            status=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET", "POST"),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @property
    def session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._build_session()
            self._local.session = session
        return session

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: Optional[Dict[str, Any]] = None,
        expected_status: Union[int, Tuple[int, ...]] = (200,),
    ) -> Response:
        if isinstance(expected_status, int):
            expected_status = (expected_status,)

        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Accept": FHIR_JSON, "Content-Type": FHIR_JSON}
        try:
            response = self.session.request(
                method=method.upper(),
                url=url,
                json=json_payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Request to conformance service failed: %s", exc)
            raise ProfileServiceError("Failed to reach the conformance service") from exc

        if response.status_code not in expected_status:
            self._log_error_response(response)
            raise ProfileServiceError(
                f"Conformance service responded with unexpected status {response.status_code}"
            )
        return response

    @staticmethod
    def _log_error_response(response: Response) -> None:
        logger.error(
            "Conformance service error response: status=%s body=%s",
            response.status_code,
            response.text[:2048],
        )

    def validate(self, appointment: Appointment) -> List[ProfileIssue]:
        """Return the issues the conformance service reports for ``appointment``."""

        response = self._request(
            "POST",
            "Appointment/$validate",
            json_payload=appointment_to_fhir(appointment),
            expected_status=OUTCOME_STATUSES,
        )
        try:
            outcome = response.json()
        except ValueError as exc:
            logger.error("Conformance service returned invalid JSON: %s", exc)
            raise ProfileServiceError("Conformance service response was not valid JSON") from exc

        issues = parse_operation_outcome(outcome)
        logger.info("Validation complete, returned: %d issues.", len(issues))
        return issues


def parse_operation_outcome(outcome: Any) -> List[ProfileIssue]:
    if not isinstance(outcome, dict) or outcome.get("resourceType") != "OperationOutcome":
        raise ProfileServiceError("Conformance service did not return an OperationOutcome")

    issues: List[ProfileIssue] = []
    for entry in outcome.get("issue") or []:
        if not isinstance(entry, dict):
            continue
        details = entry.get("details")
        detail_text = details.get("text") if isinstance(details, dict) else None
        issues.append(
            ProfileIssue(
                severity=str(entry.get("severity", "")).lower(),
                detail=str(entry.get("diagnostics") or detail_text or ""),
                code=entry.get("code"),
            )
        )
    return issues


class OfflineProfileValidator:
    """Stand-in used when remote validation is switched off."""

    def validate(self, appointment: Appointment) -> List[ProfileIssue]:
        logger.debug("Remote profile validation disabled; skipping")
        return []
