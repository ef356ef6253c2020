"""Tool and resource facade over a Cortex connector."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from cortex_mcp.server.bulk import NoApplicableAnalyzers, ObservableRequest, run_bulk_analysis
from cortex_mcp.server.contracts import (
    Analyzer,
    AnalyzeObservableArgs,
    Job,
    JobSearchQuery,
    ListJobsArgs,
    RunAnalyzerArgs,
    RunAnalyzerByNameArgs,
    RunAnalyzerRequest,
    RunResponderArgs,
    RunResponderRequest,
    WaitReportArgs,
)
from cortex_mcp.server.cortex_connector import CortexConnector, build_connector_from_env
from cortex_mcp.shared.settings import load_settings

logger = logging.getLogger(__name__)

RECENT_JOBS_LIMIT = 50

T = TypeVar("T")
ToolHandler = Callable[..., Awaitable["ToolResponse"]]


@dataclass(frozen=True)
class ToolResponse:
    text: str
    is_error: bool = False

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            payload["isError"] = True
        return payload


def _json_response(payload: Any) -> ToolResponse:
    return ToolResponse(text=_dumps(payload))


def _dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _iso_from_epoch_ms(value: int | None) -> str | None:
    if not value:
        return None
    moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _job_row(job: Job) -> dict[str, Any]:
    return _drop_none(
        {
            "id": job.id,
            "analyzerName": job.analyzer_name,
            "dataType": job.data_type,
            "data": job.data,
            "status": job.status,
            "startDate": _iso_from_epoch_ms(job.start_date),
            "endDate": _iso_from_epoch_ms(job.end_date),
        }
    )


def _job_search_query(
    data_type: str | None, analyzer_name: str | None, status: str | None, limit: int
) -> JobSearchQuery:
    must = [
        {"_field": field, "_value": value}
        for field, value in (
            ("dataType", data_type),
            ("analyzerName", analyzer_name),
            ("status", status),
        )
        if value
    ]
    query: dict[str, Any] = {"_and": must} if must else {"_field": "status", "_value": "*"}
    return JobSearchQuery(query=query, range=f"0-{limit}", sort=["-createdAt"])


def tool_errors(action: str) -> Callable[[ToolHandler], ToolHandler]:
    """Map any exception raised by a tool handler to an error-flagged response."""

    def decorator(handler: ToolHandler) -> ToolHandler:
        @functools.wraps(handler)
        async def wrapper(*args: Any, **kwargs: Any) -> ToolResponse:
            try:
                return await handler(*args, **kwargs)
            except Exception as exc:
                logger.warning("Error %s: %s", action, exc)
                return ToolResponse(text=f"Error {action}: {exc}", is_error=True)

        return wrapper

    return decorator


class CortexToolService:
    """Thin callable facade mirroring the tools and resources exposed to the agent."""

    def __init__(self, connector: CortexConnector) -> None:
        self.connector = connector

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "CortexToolService":
        settings = load_settings(env)
        return cls(build_connector_from_env(env, settings=settings))

    async def _call(self, operation: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(operation, *args)

    # Analyzers

    @tool_errors("listing analyzers")
    async def list_analyzers(self, data_type: str | None = None) -> ToolResponse:
        analyzers: list[Analyzer] = await self._call(self.connector.list_analyzers)
        if data_type:
            analyzers = [analyzer for analyzer in analyzers if analyzer.supports(data_type)]
        return _json_response([analyzer.summary() for analyzer in analyzers])

    @tool_errors("getting analyzer")
    async def get_analyzer(self, analyzer_id: str) -> ToolResponse:
        analyzer = await self._call(self.connector.get_analyzer, analyzer_id)
        return _json_response(analyzer.to_wire())

    @tool_errors("running analyzer")
    async def run_analyzer(
        self,
        analyzer_id: str,
        data_type: str,
        data: str,
        tlp: int,
        pap: int,
        message: str | None = None,
    ) -> ToolResponse:
        args = RunAnalyzerArgs(
            analyzer_id=analyzer_id,
            data_type=data_type,
            data=data,
            tlp=tlp,
            pap=pap,
            message=message,
        )
        request = RunAnalyzerRequest(
            data=args.data,
            data_type=args.data_type,
            tlp=args.tlp,
            pap=args.pap,
            message=args.message,
        )
        job = await self._call(self.connector.run_analyzer, args.analyzer_id, request)
        return _json_response(
            _drop_none(
                {
                    "jobId": job.id,
                    "status": job.status,
                    "analyzerId": job.analyzer_id,
                    "message": (
                        "Analysis job submitted. Use cortex_get_job or "
                        f'cortex_wait_and_get_report with jobId "{job.id}" to get results.'
                    ),
                }
            )
        )

    @tool_errors("running analyzer by name")
    async def run_analyzer_by_name(
        self,
        analyzer_name: str,
        data_type: str,
        data: str,
        tlp: int = 2,
        pap: int = 2,
    ) -> ToolResponse:
        args = RunAnalyzerByNameArgs(
            analyzer_name=analyzer_name, data_type=data_type, data=data, tlp=tlp, pap=pap
        )
        analyzers = await self._call(self.connector.list_analyzers)
        needle = args.analyzer_name.lower()
        match = next(
            (
                analyzer
                for analyzer in analyzers
                if needle in analyzer.name.lower() and analyzer.supports(args.data_type)
            ),
            None,
        )
        if match is None:
            return ToolResponse(
                text=(
                    f'No analyzer found matching "{args.analyzer_name}" that supports data '
                    f'type "{args.data_type}". Use cortex_list_analyzers to see available '
                    "analyzers."
                ),
                is_error=True,
            )

        request = RunAnalyzerRequest(
            data=args.data, data_type=args.data_type, tlp=args.tlp, pap=args.pap
        )
        job = await self._call(self.connector.run_analyzer, match.id, request)
        return _json_response(
            {
                "jobId": job.id,
                "status": job.status,
                "analyzerUsed": {"id": match.id, "name": match.name},
                "message": (
                    f'Analysis job submitted to "{match.name}". Use '
                    f'cortex_wait_and_get_report with jobId "{job.id}" to get results.'
                ),
            }
        )

    # Jobs

    @tool_errors("getting job")
    async def get_job(self, job_id: str) -> ToolResponse:
        job = await self._call(self.connector.get_job, job_id)
        return _json_response(job.to_wire())

    @tool_errors("getting job report")
    async def get_job_report(self, job_id: str) -> ToolResponse:
        report = await self._call(self.connector.get_job_report, job_id)
        return _json_response(report.to_wire())

    @tool_errors("waiting for report")
    async def wait_and_get_report(self, job_id: str, timeout: int = 300) -> ToolResponse:
        args = WaitReportArgs(job_id=job_id, timeout=timeout)
        report = await self._call(self.connector.wait_and_get_report, args.job_id, args.timeout)
        return _json_response(
            _drop_none(
                {
                    "jobId": report.id,
                    "status": report.status,
                    "analyzerName": report.analyzer_name,
                    "taxonomies": [taxonomy.render() for taxonomy in report.taxonomies],
                    "fullReport": report.report.to_wire() if report.report else None,
                }
            )
        )

    @tool_errors("listing jobs")
    async def list_jobs(
        self,
        data_type: str | None = None,
        analyzer_name: str | None = None,
        limit: int = 50,
        status: str | None = None,
    ) -> ToolResponse:
        args = ListJobsArgs(
            data_type=data_type, analyzer_name=analyzer_name, limit=limit, status=status
        )
        query = _job_search_query(args.data_type, args.analyzer_name, args.status, args.limit)
        jobs = await self._call(self.connector.search_jobs, query)
        return _json_response([_job_row(job) for job in jobs])

    @tool_errors("getting job artifacts")
    async def get_job_artifacts(self, job_id: str) -> ToolResponse:
        artifacts = await self._call(self.connector.get_job_artifacts, job_id)
        return _json_response([artifact.to_wire() for artifact in artifacts])

    # Responders

    @tool_errors("listing responders")
    async def list_responders(self, data_type: str | None = None) -> ToolResponse:
        responders = await self._call(self.connector.list_responders)
        if data_type:
            responders = [responder for responder in responders if responder.supports(data_type)]
        return _json_response([responder.summary() for responder in responders])

    @tool_errors("running responder")
    async def run_responder(
        self,
        responder_id: str,
        object_type: str,
        object_id: str,
        parameters: dict[str, Any] | None = None,
    ) -> ToolResponse:
        args = RunResponderArgs(
            responder_id=responder_id,
            object_type=object_type,
            object_id=object_id,
            parameters=parameters,
        )
        request = RunResponderRequest(
            object_type=args.object_type,
            object_id=args.object_id,
            parameters=args.parameters,
        )
        action = await self._call(self.connector.run_responder, args.responder_id, request)
        return _json_response(
            _drop_none(
                {
                    "actionJobId": action.id,
                    "status": action.status,
                    "responderId": action.responder_id,
                    "responderName": action.responder_name,
                    "message": f'Responder action submitted. Job ID: "{action.id}"',
                }
            )
        )

    # Bulk analysis

    @tool_errors("analyzing observable")
    async def analyze_observable(
        self,
        data_type: str,
        data: str,
        tlp: int = 2,
        pap: int = 2,
        timeout: int = 300,
    ) -> ToolResponse:
        args = AnalyzeObservableArgs(
            data_type=data_type, data=data, tlp=tlp, pap=pap, timeout=timeout
        )
        request = ObservableRequest(
            data_type=args.data_type, data=args.data, tlp=args.tlp, pap=args.pap
        )
        result = await run_bulk_analysis(self.connector, request, timeout_s=args.timeout)
        if isinstance(result, NoApplicableAnalyzers):
            return ToolResponse(text=result.message)
        return _json_response(result.as_dict())

    # Resources

    async def analyzers_resource(self) -> str:
        analyzers = await self._call(self.connector.list_analyzers)
        return _dumps([analyzer.summary() for analyzer in analyzers])

    async def recent_jobs_resource(self) -> str:
        query = _job_search_query(None, None, None, RECENT_JOBS_LIMIT)
        jobs = await self._call(self.connector.search_jobs, query)
        return _dumps([_job_row(job) for job in jobs])
