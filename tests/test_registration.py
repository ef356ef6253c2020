from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest
from fastmcp import Client
from fastmcp.exceptions import ToolError

from cortex_mcp.server.app import CortexToolService
from cortex_mcp.server.contracts import Analyzer
from cortex_mcp.server.cortex_connector_inmemory import InMemoryCortexConnector
from cortex_mcp.server.registration import (
    ANALYZERS_RESOURCE_URI,
    RECENT_JOBS_RESOURCE_URI,
    build_mcp_server,
    register_prompts,
    register_resources,
    register_tools,
)

EXPECTED_TOOLS = {
    "cortex_list_analyzers",
    "cortex_get_analyzer",
    "cortex_run_analyzer",
    "cortex_run_analyzer_by_name",
    "cortex_get_job",
    "cortex_get_job_report",
    "cortex_wait_and_get_report",
    "cortex_list_jobs",
    "cortex_get_job_artifacts",
    "cortex_list_responders",
    "cortex_run_responder",
    "cortex_analyze_observable",
}


class FakeMCP:
    """Captures decorated handlers the way FastMCP registers them."""

    def __init__(self) -> None:
        self.tools: dict[str, Callable[..., Any]] = {}
        self.resources: dict[str, Callable[..., Any]] = {}
        self.prompts: dict[str, Callable[..., Any]] = {}
        self.meta: dict[str, dict[str, Any]] = {}

    def tool(self, name: str, description: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.tools[name] = fn
            self.meta[name] = {"description": description}
            return fn

        return decorator

    def resource(self, uri: str, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.resources[uri] = fn
            self.meta[uri] = kwargs
            return fn

        return decorator

    def prompt(self, name: str, description: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.prompts[name] = fn
            return fn

        return decorator


def _service() -> CortexToolService:
    connector = InMemoryCortexConnector()
    connector.register_analyzer(
        Analyzer(id="vt", name="VirusTotal_GetReport_3_0", data_type_list=["ip", "hash"]),
        [{"level": "suspicious", "namespace": "VT", "predicate": "GetReport", "value": "2/70"}],
    )
    return CortexToolService(connector)


@pytest.fixture
def fake() -> FakeMCP:
    mcp = FakeMCP()
    service = _service()
    register_tools(mcp, service)
    register_resources(mcp, service)
    register_prompts(mcp)
    return mcp


def test_every_tool_resource_and_prompt_is_registered(fake: FakeMCP) -> None:
    assert set(fake.tools) == EXPECTED_TOOLS
    assert set(fake.resources) == {ANALYZERS_RESOURCE_URI, RECENT_JOBS_RESOURCE_URI}
    assert fake.meta[ANALYZERS_RESOURCE_URI]["mime_type"] == "application/json"
    assert set(fake.prompts) == {"analyze-observable", "investigate-ioc"}


def test_tool_wrapper_returns_text_on_success(fake: FakeMCP) -> None:
    text = asyncio.run(fake.tools["cortex_analyze_observable"](data_type="ip", data="1.2.3.4"))
    payload = json.loads(text)
    assert payload["summary"]["suspicious"] == 1


def test_tool_wrapper_raises_tool_error_on_failure(fake: FakeMCP) -> None:
    with pytest.raises(ToolError, match="Error getting job: Cortex API error: Resource not found"):
        asyncio.run(fake.tools["cortex_get_job"](job_id="missing"))


def test_resources_read_through_service(fake: FakeMCP) -> None:
    analyzers = json.loads(asyncio.run(fake.resources[ANALYZERS_RESOURCE_URI]()))
    assert analyzers[0]["dataTypes"] == ["ip", "hash"]
    assert json.loads(asyncio.run(fake.resources[RECENT_JOBS_RESOURCE_URI]())) == []


def test_prompts_render_guided_workflows(fake: FakeMCP) -> None:
    analyze = fake.prompts["analyze-observable"](observable="8.8.8.8", context="seen in proxy logs")
    assert "Observable: 8.8.8.8" in analyze
    assert "Context: seen in proxy logs" in analyze
    assert "cortex_analyze_observable" in analyze

    without_context = fake.prompts["analyze-observable"](observable="8.8.8.8")
    assert "Context:" not in without_context

    investigate = fake.prompts["investigate-ioc"](ioc="evil.example", ioc_type="domain")
    assert "IOC: evil.example" in investigate
    assert "Type: domain" in investigate
    assert "cortex_get_job_artifacts" in investigate


def test_fastmcp_server_lists_and_calls_tools() -> None:
    mcp = build_mcp_server(service=_service())

    async def scenario() -> tuple[set[str], str]:
        async with Client(mcp) as client:
            tools = await client.list_tools()
            result = await client.call_tool(
                "cortex_run_analyzer_by_name",
                {"analyzer_name": "virus", "data_type": "hash", "data": "d41d8cd9"},
            )
            return {tool.name for tool in tools}, result.content[0].text

    names, text = asyncio.run(scenario())
    assert names == EXPECTED_TOOLS
    assert json.loads(text)["analyzerUsed"]["id"] == "vt"


def test_fastmcp_analyze_observable_accepts_any_analyzer_data_type() -> None:
    service = _service()
    service.connector.register_analyzer(
        Analyzer(id="yara", name="Yara_2_0", data_type_list=["file"]),
        [{"level": "malicious", "namespace": "Yara", "predicate": "Match", "value": 2}],
    )
    mcp = build_mcp_server(service=service)

    async def scenario() -> str:
        async with Client(mcp) as client:
            result = await client.call_tool(
                "cortex_analyze_observable", {"data_type": "file", "data": "sample.exe"}
            )
            return result.content[0].text

    payload = json.loads(asyncio.run(scenario()))
    assert payload["analyzersRun"] == 1
    assert payload["summary"]["malicious"] == 1
    assert payload["results"][0]["taxonomies"] == ["[malicious] Yara:Match = 2"]
