"""Cortex REST API connector implementation."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from cortex_mcp.server.contracts import (
    ActionJob,
    Analyzer,
    Artifact,
    Job,
    JobReport,
    PENDING_JOB_STATUSES,
    JobSearchQuery,
    Responder,
    RunAnalyzerRequest,
    RunResponderRequest,
)
from cortex_mcp.server.cortex_connector import (
    DEFAULT_WAIT_TIMEOUT_S,
    CortexAPIError,
    CortexTimeoutError,
)
from cortex_mcp.shared.settings import CortexSettings

logger = logging.getLogger(__name__)

_STATUS_MESSAGES: dict[int, str] = {
    401: "Invalid API key or unauthorized access",
    403: "Forbidden - insufficient permissions",
    404: "Resource not found",
    429: "Rate limit exceeded",
    500: "Cortex internal server error",
}
_STATUS_REASON_CODES: dict[int, str] = {
    401: "cortex_unauthorized",
    403: "cortex_forbidden",
    404: "cortex_not_found",
    429: "cortex_rate_limited",
    500: "cortex_internal",
}


class CortexAPIConnector:
    def __init__(
        self,
        settings: CortexSettings,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = settings.api_base_url
        self.timeout_s = settings.timeout_s
        self.verify_ssl = settings.verify_ssl
        self.session = session or requests.Session()
        self._headers = {
            "Authorization": f"Bearer {settings.api_key}",
            "Content-Type": "application/json",
        }

    # Analyzers

    def list_analyzers(self) -> list[Analyzer]:
        rows = self._request("GET", "/analyzer")
        return [Analyzer.model_validate(row) for row in _as_list(rows, "/analyzer")]

    def get_analyzer(self, analyzer_id: str) -> Analyzer:
        payload = self._request("GET", f"/analyzer/{_segment(analyzer_id)}")
        return Analyzer.model_validate(payload)

    def run_analyzer(self, analyzer_id: str, request: RunAnalyzerRequest) -> Job:
        payload = self._request(
            "POST",
            f"/analyzer/{_segment(analyzer_id)}/run",
            json=request.to_wire(),
        )
        return Job.model_validate(payload)

    # Jobs

    def get_job(self, job_id: str) -> Job:
        return Job.model_validate(self._request("GET", f"/job/{_segment(job_id)}"))

    def get_job_report(self, job_id: str) -> JobReport:
        payload = self._request("GET", f"/job/{_segment(job_id)}/report")
        return JobReport.model_validate(payload)

    def wait_and_get_report(
        self, job_id: str, timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    ) -> JobReport:
        # Cortex holds the request open for up to atMost; the HTTP deadline
        # must outlast it so the server-side bound expires first.
        payload = self._request(
            "GET",
            f"/job/{_segment(job_id)}/waitreport",
            params={"atMost": f"{timeout_s}second"},
            timeout_s=timeout_s + self.timeout_s,
        )
        report = JobReport.model_validate(payload)
        # Cortex answers 200 with the unfinished job once atMost elapses.
        if report.status in PENDING_JOB_STATUSES:
            raise CortexTimeoutError(timeout_s)
        return report

    def search_jobs(self, query: JobSearchQuery) -> list[Job]:
        rows = self._request("POST", "/job/_search", json=query.to_wire())
        return [Job.model_validate(row) for row in _as_list(rows, "/job/_search")]

    def get_job_artifacts(self, job_id: str) -> list[Artifact]:
        path = f"/job/{_segment(job_id)}/artifacts"
        rows = self._request("GET", path)
        return [Artifact.model_validate(row) for row in _as_list(rows, path)]

    # Responders

    def list_responders(self) -> list[Responder]:
        rows = self._request("GET", "/responder")
        return [Responder.model_validate(row) for row in _as_list(rows, "/responder")]

    def run_responder(self, responder_id: str, request: RunResponderRequest) -> ActionJob:
        payload = self._request(
            "POST",
            f"/responder/{_segment(responder_id)}/run",
            json=request.to_wire(),
        )
        return ActionJob.model_validate(payload)

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        timeout = timeout_s if timeout_s is not None else self.timeout_s
        logger.debug("Cortex request %s %s (timeout=%ss)", method, path, timeout)
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=dict(self._headers),
                json=json,
                params=params,
                timeout=timeout,
                verify=self.verify_ssl,
            )
        except requests.Timeout as exc:
            raise CortexTimeoutError(timeout) from exc
        except requests.ConnectionError as exc:
            raise CortexAPIError(
                f"Cortex API connection failed: {exc}",
                reason_code="cortex_unreachable",
            ) from exc

        if response.status_code >= 400:
            raise _error_for_response(response)
        if not response.content:
            return None
        return response.json()


def _segment(value: str) -> str:
    return quote(value, safe="")


def _as_list(payload: Any, path: str) -> list[Any]:
    if isinstance(payload, list):
        return payload
    raise CortexAPIError(
        f"Cortex API error: expected a JSON array from {path}, got {type(payload).__name__}",
        reason_code="cortex_bad_payload",
    )


def _error_for_response(response: requests.Response) -> CortexAPIError:
    status = response.status_code
    message = _STATUS_MESSAGES.get(status)
    if message is None:
        message = f"HTTP {status}: {response.reason}" if response.reason else f"HTTP {status}"
    body = (response.text or "").strip()
    if body:
        message = f"{message} - {body}"
    return CortexAPIError(
        f"Cortex API error: {message}",
        reason_code=_STATUS_REASON_CODES.get(status, f"cortex_{status}"),
        status_code=status,
    )
