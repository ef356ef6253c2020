"""In-memory Cortex connector for deterministic tests and offline runs."""

from __future__ import annotations

import threading
import time
from typing import Any

from cortex_mcp.server.contracts import (
    ActionJob,
    Analyzer,
    Artifact,
    Job,
    JobReport,
    JobSearchQuery,
    ReportBody,
    ReportSummary,
    Responder,
    RunAnalyzerRequest,
    RunResponderRequest,
    Taxonomy,
)
from cortex_mcp.server.cortex_connector import (
    DEFAULT_WAIT_TIMEOUT_S,
    CortexAPIError,
    CortexTimeoutError,
)


def _not_found() -> CortexAPIError:
    return CortexAPIError(
        "Cortex API error: Resource not found",
        reason_code="cortex_not_found",
        status_code=404,
    )


class InMemoryCortexConnector:
    """Scripted connector: analyzers complete with preset taxonomies unless told to fail."""

    def __init__(
        self,
        analyzers: list[Analyzer] | None = None,
        responders: list[Responder] | None = None,
    ) -> None:
        self.analyzers: dict[str, Analyzer] = {item.id: item for item in analyzers or []}
        self.responders: dict[str, Responder] = {item.id: item for item in responders or []}
        self.jobs: dict[str, JobReport] = {}
        self.artifacts: dict[str, list[Artifact]] = {}
        self.executed_actions: list[ActionJob] = []
        self.calls: list[tuple[str, str]] = []
        self.list_error: Exception | None = None
        self._outcomes: dict[str, dict[str, Any]] = {}
        self._submit_failures: dict[str, Exception] = {}
        self._wait_failures: dict[str, Exception] = {}
        self._wait_delays: dict[str, float] = {}
        self._job_analyzer: dict[str, str] = {}
        self._lock = threading.Lock()
        self._sequence = 0

    # Scripting helpers

    def register_analyzer(
        self,
        analyzer: Analyzer,
        taxonomies: list[dict[str, Any]] | None = None,
        status: str = "Success",
        artifacts: list[dict[str, Any]] | None = None,
    ) -> None:
        self.analyzers[analyzer.id] = analyzer
        self._outcomes[analyzer.id] = {
            "status": status,
            "taxonomies": [Taxonomy.model_validate(row) for row in taxonomies or []],
            "artifacts": [Artifact.model_validate(row) for row in artifacts or []],
        }

    def register_responder(self, responder: Responder) -> None:
        self.responders[responder.id] = responder

    def fail_submission(self, analyzer_id: str, error: Exception) -> None:
        self._submit_failures[analyzer_id] = error

    def fail_completion(self, analyzer_id: str, error: Exception) -> None:
        self._wait_failures[analyzer_id] = error

    def delay_completion(self, analyzer_id: str, seconds: float) -> None:
        self._wait_delays[analyzer_id] = seconds

    def calls_for(self, operation: str) -> list[str]:
        return [target for name, target in self.calls if name == operation]

    # Connector contract

    def list_analyzers(self) -> list[Analyzer]:
        self._record("list_analyzers", "")
        if self.list_error is not None:
            raise self.list_error
        return list(self.analyzers.values())

    def get_analyzer(self, analyzer_id: str) -> Analyzer:
        self._record("get_analyzer", analyzer_id)
        analyzer = self.analyzers.get(analyzer_id)
        if analyzer is None:
            raise _not_found()
        return analyzer

    def run_analyzer(self, analyzer_id: str, request: RunAnalyzerRequest) -> Job:
        self._record("run_analyzer", analyzer_id)
        failure = self._submit_failures.get(analyzer_id)
        if failure is not None:
            raise failure
        analyzer = self.analyzers.get(analyzer_id)
        if analyzer is None:
            raise _not_found()

        with self._lock:
            self._sequence += 1
            job_id = f"job_{self._sequence}"
            created_at = int(time.time() * 1000)
        job = JobReport(
            id=job_id,
            analyzer_id=analyzer.id,
            analyzer_name=analyzer.name,
            status="Waiting",
            data=request.data,
            data_type=request.data_type,
            tlp=request.tlp,
            pap=request.pap,
            message=request.message,
            created_at=created_at,
        )
        with self._lock:
            self.jobs[job_id] = job
            self._job_analyzer[job_id] = analyzer.id
        return Job.model_validate(job.model_dump(exclude={"report"}))

    def get_job(self, job_id: str) -> Job:
        self._record("get_job", job_id)
        report = self._job(job_id)
        return Job.model_validate(report.model_dump(exclude={"report"}))

    def get_job_report(self, job_id: str) -> JobReport:
        self._record("get_job_report", job_id)
        return self._job(job_id)

    def wait_and_get_report(
        self, job_id: str, timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    ) -> JobReport:
        self._record("wait_and_get_report", job_id)
        job = self._job(job_id)
        analyzer_id = self._job_analyzer.get(job_id, "")

        delay = self._wait_delays.get(analyzer_id, 0.0)
        if delay > timeout_s:
            raise CortexTimeoutError(timeout_s)
        if delay:
            time.sleep(delay)

        failure = self._wait_failures.get(analyzer_id)
        if failure is not None:
            raise failure
        return self._complete(job)

    def search_jobs(self, query: JobSearchQuery) -> list[Job]:
        self._record("search_jobs", "")
        filters = _query_filters(query.query or {})
        with self._lock:
            reports = list(self.jobs.values())
        rows = [
            Job.model_validate(report.model_dump(exclude={"report"}))
            for report in reports
            if all(_field_matches(report, field, value) for field, value in filters)
        ]
        if query.sort and query.sort[0] == "-createdAt":
            rows.sort(key=lambda row: row.created_at or 0, reverse=True)
        start, end = _parse_range(query.range)
        return rows[start:end]

    def get_job_artifacts(self, job_id: str) -> list[Artifact]:
        self._record("get_job_artifacts", job_id)
        self._job(job_id)
        return list(self.artifacts.get(job_id, []))

    def list_responders(self) -> list[Responder]:
        self._record("list_responders", "")
        return list(self.responders.values())

    def run_responder(self, responder_id: str, request: RunResponderRequest) -> ActionJob:
        self._record("run_responder", responder_id)
        responder = self.responders.get(responder_id)
        if responder is None:
            raise _not_found()
        with self._lock:
            self._sequence += 1
            action = ActionJob(
                id=f"action_{self._sequence}",
                responder_id=responder.id,
                responder_name=responder.name,
                status="Success",
                object_type=request.object_type,
                object_id=request.object_id,
            )
            self.executed_actions.append(action)
        return action

    def _record(self, operation: str, target: str) -> None:
        with self._lock:
            self.calls.append((operation, target))

    def _job(self, job_id: str) -> JobReport:
        with self._lock:
            report = self.jobs.get(job_id)
        if report is None:
            raise _not_found()
        return report

    def _complete(self, job: JobReport) -> JobReport:
        outcome = self._outcomes.get(job.analyzer_id or "", {})
        taxonomies: list[Taxonomy] = outcome.get("taxonomies", [])
        artifacts: list[Artifact] = outcome.get("artifacts", [])
        status = outcome.get("status", "Success")
        completed = job.model_copy(
            update={
                "status": status,
                "end_date": int(time.time() * 1000),
                "report": ReportBody(
                    summary=ReportSummary(taxonomies=list(taxonomies)),
                    full={},
                    success=status == "Success",
                    artifacts=list(artifacts),
                ),
            }
        )
        with self._lock:
            self.jobs[job.id] = completed
            self.artifacts[job.id] = list(artifacts)
        return completed


def _query_filters(query: dict[str, Any]) -> list[tuple[str, str]]:
    clauses = query.get("_and") if isinstance(query.get("_and"), list) else [query]
    filters: list[tuple[str, str]] = []
    for clause in clauses:
        if not isinstance(clause, dict):
            continue
        field = str(clause.get("_field", "")).strip()
        value = str(clause.get("_value", "")).strip()
        if field and value and value != "*":
            filters.append((field, value))
    return filters


def _field_matches(report: JobReport, field: str, value: str) -> bool:
    wire = report.to_wire()
    return str(wire.get(field, "")) == value


def _parse_range(value: str | None) -> tuple[int, int | None]:
    if not value or value == "all":
        return 0, None
    start, _, end = value.partition("-")
    try:
        return int(start), int(end)
    except ValueError:
        return 0, None
