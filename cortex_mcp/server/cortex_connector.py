"""Cortex connector contract, error taxonomy, and factory helpers."""

from __future__ import annotations

import os
from typing import Protocol

from cortex_mcp.server.contracts import (
    ActionJob,
    Analyzer,
    Artifact,
    Job,
    JobReport,
    JobSearchQuery,
    Responder,
    RunAnalyzerRequest,
    RunResponderRequest,
)
from cortex_mcp.shared.settings import CortexSettings

DEFAULT_WAIT_TIMEOUT_S = 300


class CortexAPIError(RuntimeError):
    def __init__(self, message: str, reason_code: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.status_code = status_code


class CortexTimeoutError(CortexAPIError):
    def __init__(self, timeout_s: float) -> None:
        super().__init__(
            f"Cortex API timeout after {timeout_s:g}s",
            reason_code="cortex_timeout",
        )
        self.timeout_s = timeout_s


class CortexConnector(Protocol):
    """Connector contract for all Cortex integration implementations."""

    def list_analyzers(self) -> list[Analyzer]: ...

    def get_analyzer(self, analyzer_id: str) -> Analyzer: ...

    def run_analyzer(self, analyzer_id: str, request: RunAnalyzerRequest) -> Job: ...

    def get_job(self, job_id: str) -> Job: ...

    def get_job_report(self, job_id: str) -> JobReport: ...

    def wait_and_get_report(
        self, job_id: str, timeout_s: int = DEFAULT_WAIT_TIMEOUT_S
    ) -> JobReport: ...

    def search_jobs(self, query: JobSearchQuery) -> list[Job]: ...

    def get_job_artifacts(self, job_id: str) -> list[Artifact]: ...

    def list_responders(self) -> list[Responder]: ...

    def run_responder(self, responder_id: str, request: RunResponderRequest) -> ActionJob: ...


def build_connector_from_env(
    env: dict[str, str] | None = None,
    settings: CortexSettings | None = None,
) -> CortexConnector:
    env_map = os.environ if env is None else env
    resolved = settings or CortexSettings.from_env(env_map)

    if resolved.connector == "in_memory":
        from cortex_mcp.server.cortex_connector_inmemory import InMemoryCortexConnector

        return InMemoryCortexConnector()

    from cortex_mcp.server.cortex_connector_api import CortexAPIConnector

    return CortexAPIConnector(settings=resolved)


__all__ = [
    "CortexAPIError",
    "CortexConnector",
    "CortexTimeoutError",
    "DEFAULT_WAIT_TIMEOUT_S",
    "build_connector_from_env",
]
