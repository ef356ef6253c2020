"""Bulk observable analysis: fan out to every applicable analyzer and aggregate.

The workflow runs in four steps:

1. resolve the analyzers whose declared data types contain the observable type;
2. submit the observable to each of them concurrently;
3. wait for every submitted job concurrently, each with its own deadline;
4. fold the settled outcomes into an :class:`AggregateReport`.

Steps 2 and 3 settle every sub-call before returning and record each failure
as data in the slot of the analyzer that produced it. Only the analyzer
lookup in step 1 is allowed to raise.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Sequence, TypeVar, Union

from cortex_mcp.server.contracts import TAXONOMY_LEVELS, Analyzer, JobReport, RunAnalyzerRequest
from cortex_mcp.server.cortex_connector import DEFAULT_WAIT_TIMEOUT_S, CortexConnector

logger = logging.getLogger(__name__)

ERROR_STATUS = "Error"

T = TypeVar("T")


@dataclass(frozen=True)
class ObservableRequest:
    data_type: str
    data: str
    tlp: int = 2
    pap: int = 2

    def to_run_request(self) -> RunAnalyzerRequest:
        return RunAnalyzerRequest(
            data=self.data, data_type=self.data_type, tlp=self.tlp, pap=self.pap
        )


@dataclass(frozen=True)
class Submitted:
    analyzer: str
    job_id: str


@dataclass(frozen=True)
class Rejected:
    analyzer: str
    error: str


@dataclass(frozen=True)
class Completed:
    analyzer: str
    report: JobReport


@dataclass(frozen=True)
class Failed:
    analyzer: str
    error: str


SubmissionOutcome = Union[Submitted, Rejected]
CompletionOutcome = Union[Completed, Failed]


@dataclass(frozen=True)
class AnalyzerResult:
    analyzer: str
    status: str
    taxonomies: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "analyzer": self.analyzer,
            "status": self.status,
            "taxonomies": list(self.taxonomies),
        }


@dataclass(frozen=True)
class AggregateReport:
    observable: ObservableRequest
    analyzers_run: int
    analyzers_failed: int
    summary: dict[str, int]
    results: list[AnalyzerResult]
    submission_errors: list[Rejected]

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "observable": {
                "dataType": self.observable.data_type,
                "data": self.observable.data,
            },
            "analyzersRun": self.analyzers_run,
            "analyzersFailed": self.analyzers_failed,
            "summary": dict(self.summary),
            "results": [result.as_dict() for result in self.results],
        }
        if self.submission_errors:
            payload["submissionErrors"] = [
                {"analyzer": rejected.analyzer, "error": rejected.error}
                for rejected in self.submission_errors
            ]
        return payload


@dataclass(frozen=True)
class NoApplicableAnalyzers:
    data_type: str

    @property
    def message(self) -> str:
        return f'No analyzers found that support data type "{self.data_type}".'


BulkAnalysisResult = Union[AggregateReport, NoApplicableAnalyzers]


def applicable_analyzers(analyzers: Sequence[Analyzer], data_type: str) -> list[Analyzer]:
    """Analyzers declaring ``data_type`` exactly, in directory order."""

    return [analyzer for analyzer in analyzers if analyzer.supports(data_type)]


async def _settle_all(calls: Sequence[Callable[[], T]]) -> list[T | Exception]:
    """Run blocking calls concurrently in worker threads and keep every outcome.

    Each stage gets a pool with one thread per call, so no call queues behind
    another long-polling wait and the shared default executor stays free.
    The result list is index-aligned with ``calls``; a failed call leaves its
    exception in its own slot without disturbing the others.
    """

    if not calls:
        return []
    loop = asyncio.get_running_loop()
    with ThreadPoolExecutor(max_workers=len(calls), thread_name_prefix="cortex-fanout") as pool:
        awaitables: list[Awaitable[T]] = [loop.run_in_executor(pool, call) for call in calls]
        settled = await asyncio.gather(*awaitables, return_exceptions=True)
    for outcome in settled:
        if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
            raise outcome
    return list(settled)


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


async def submit_all(
    connector: CortexConnector,
    analyzers: Sequence[Analyzer],
    request: ObservableRequest,
) -> list[SubmissionOutcome]:
    run_request = request.to_run_request()
    calls = [partial(connector.run_analyzer, analyzer.id, run_request) for analyzer in analyzers]
    settled = await _settle_all(calls)

    outcomes: list[SubmissionOutcome] = []
    for analyzer, outcome in zip(analyzers, settled):
        if isinstance(outcome, Exception):
            logger.warning("Submission to analyzer %s failed: %s", analyzer.name, outcome)
            outcomes.append(Rejected(analyzer=analyzer.name, error=_error_message(outcome)))
        else:
            outcomes.append(Submitted(analyzer=analyzer.name, job_id=outcome.id))
    return outcomes


def partition_submissions(
    outcomes: Sequence[SubmissionOutcome],
) -> tuple[list[Submitted], list[Rejected]]:
    submitted = [outcome for outcome in outcomes if isinstance(outcome, Submitted)]
    rejected = [outcome for outcome in outcomes if isinstance(outcome, Rejected)]
    return submitted, rejected


async def collect_all(
    connector: CortexConnector,
    submitted: Sequence[Submitted],
    timeout_s: int = DEFAULT_WAIT_TIMEOUT_S,
) -> list[CompletionOutcome]:
    calls = [partial(connector.wait_and_get_report, task.job_id, timeout_s) for task in submitted]
    settled = await _settle_all(calls)

    outcomes: list[CompletionOutcome] = []
    for task, outcome in zip(submitted, settled):
        if isinstance(outcome, Exception):
            logger.warning(
                "Waiting for job %s (%s) failed: %s", task.job_id, task.analyzer, outcome
            )
            outcomes.append(Failed(analyzer=task.analyzer, error=_error_message(outcome)))
        else:
            outcomes.append(Completed(analyzer=task.analyzer, report=outcome))
    return outcomes


def aggregate(
    request: ObservableRequest,
    submissions: Sequence[SubmissionOutcome],
    completions: Sequence[CompletionOutcome],
) -> AggregateReport:
    submitted, rejected = partition_submissions(submissions)
    summary = {level: 0 for level in TAXONOMY_LEVELS}
    results: list[AnalyzerResult] = []

    for outcome in completions:
        if isinstance(outcome, Completed):
            taxonomies = outcome.report.taxonomies
            for taxonomy in taxonomies:
                if taxonomy.level in summary:
                    summary[taxonomy.level] += 1
            results.append(
                AnalyzerResult(
                    analyzer=outcome.analyzer,
                    status=outcome.report.status,
                    taxonomies=[taxonomy.render() for taxonomy in taxonomies],
                )
            )
        else:
            results.append(
                AnalyzerResult(
                    analyzer=outcome.analyzer,
                    status=ERROR_STATUS,
                    taxonomies=[f"Error: {outcome.error}"],
                )
            )

    return AggregateReport(
        observable=request,
        analyzers_run=len(submitted),
        analyzers_failed=len(rejected),
        summary=summary,
        results=results,
        submission_errors=rejected,
    )


async def run_bulk_analysis(
    connector: CortexConnector,
    request: ObservableRequest,
    timeout_s: int = DEFAULT_WAIT_TIMEOUT_S,
) -> BulkAnalysisResult:
    """Run every analyzer supporting ``request.data_type`` and aggregate the results.

    Raises whatever the analyzer directory lookup raises; every later failure
    is reported inside the returned :class:`AggregateReport`.
    """

    directory = await asyncio.to_thread(connector.list_analyzers)
    analyzers = applicable_analyzers(directory, request.data_type)
    if not analyzers:
        logger.info("No analyzers support data type %r", request.data_type)
        return NoApplicableAnalyzers(data_type=request.data_type)

    submissions = await submit_all(connector, analyzers, request)
    submitted, rejected = partition_submissions(submissions)
    logger.info(
        "Submitted %s observable to %d analyzer(s), %d rejected",
        request.data_type,
        len(submitted),
        len(rejected),
    )

    completions = await collect_all(connector, submitted, timeout_s)
    return aggregate(request, submissions, completions)
