"""Expose the Cortex tool service as MCP tools, resources and prompts."""

import logging
from typing import Annotated, Any, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from cortex_mcp.server.app import CortexToolService, ToolResponse
from cortex_mcp.server.contracts import ObservableDataType, ResponderObjectType
from cortex_mcp.server.prompts import (
    ANALYZE_OBSERVABLE_PROMPT,
    INVESTIGATE_IOC_PROMPT,
    render_analyze_observable,
    render_investigate_ioc,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "cortex-mcp"
SERVER_INSTRUCTIONS = (
    "Tools for the Cortex observable analysis engine. Use cortex_analyze_observable "
    "to run every applicable analyzer against an observable in one call, or the "
    "individual analyzer, job and responder tools for finer control."
)

ANALYZERS_RESOURCE_URI = "cortex://analyzers"
RECENT_JOBS_RESOURCE_URI = "cortex://jobs/recent"

TLP = Annotated[int, Field(ge=0, le=3, description="Traffic Light Protocol level, 0 to 3")]
PAP = Annotated[int, Field(ge=0, le=3, description="Permissible Actions Protocol level, 0 to 3")]
WaitTimeout = Annotated[
    int, Field(ge=1, le=3600, description="Maximum seconds to wait for each job to complete")
]


def _unwrap(response: ToolResponse) -> str:
    if response.is_error:
        raise ToolError(response.text)
    return response.text


def register_tools(mcp: Any, service: CortexToolService) -> None:
    @mcp.tool(
        name="cortex_list_analyzers",
        description="List available Cortex analyzers, optionally filtered by supported data type.",
    )
    async def cortex_list_analyzers(
        data_type: Annotated[
            Optional[str], Field(description="Only return analyzers supporting this data type")
        ] = None,
    ) -> str:
        return _unwrap(await service.list_analyzers(data_type))

    @mcp.tool(
        name="cortex_get_analyzer",
        description="Get the full definition of a single Cortex analyzer.",
    )
    async def cortex_get_analyzer(
        analyzer_id: Annotated[str, Field(min_length=1, description="Analyzer ID")],
    ) -> str:
        return _unwrap(await service.get_analyzer(analyzer_id))

    @mcp.tool(
        name="cortex_run_analyzer",
        description=(
            "Submit an observable to one Cortex analyzer by ID. Returns the job ID; "
            "use cortex_wait_and_get_report to fetch the result."
        ),
    )
    async def cortex_run_analyzer(
        analyzer_id: Annotated[str, Field(min_length=1, description="Analyzer ID")],
        data_type: Annotated[ObservableDataType, Field(description="Observable data type")],
        data: Annotated[str, Field(min_length=1, description="Observable value")],
        tlp: TLP,
        pap: PAP,
        message: Annotated[Optional[str], Field(description="Optional context message")] = None,
    ) -> str:
        return _unwrap(
            await service.run_analyzer(analyzer_id, data_type, data, tlp, pap, message)
        )

    @mcp.tool(
        name="cortex_run_analyzer_by_name",
        description=(
            "Submit an observable to the first analyzer whose name contains the given text "
            "(case-insensitive) and which supports the data type."
        ),
    )
    async def cortex_run_analyzer_by_name(
        analyzer_name: Annotated[
            str, Field(min_length=1, description="Full or partial analyzer name")
        ],
        data_type: Annotated[ObservableDataType, Field(description="Observable data type")],
        data: Annotated[str, Field(min_length=1, description="Observable value")],
        tlp: TLP = 2,
        pap: PAP = 2,
    ) -> str:
        return _unwrap(
            await service.run_analyzer_by_name(analyzer_name, data_type, data, tlp, pap)
        )

    @mcp.tool(name="cortex_get_job", description="Get the status and details of a Cortex job.")
    async def cortex_get_job(
        job_id: Annotated[str, Field(min_length=1, description="Job ID")],
    ) -> str:
        return _unwrap(await service.get_job(job_id))

    @mcp.tool(
        name="cortex_get_job_report",
        description="Get the report of a Cortex job without waiting for completion.",
    )
    async def cortex_get_job_report(
        job_id: Annotated[str, Field(min_length=1, description="Job ID")],
    ) -> str:
        return _unwrap(await service.get_job_report(job_id))

    @mcp.tool(
        name="cortex_wait_and_get_report",
        description="Wait for a Cortex job to finish and return its taxonomies and full report.",
    )
    async def cortex_wait_and_get_report(
        job_id: Annotated[str, Field(min_length=1, description="Job ID")],
        timeout: WaitTimeout = 300,
    ) -> str:
        return _unwrap(await service.wait_and_get_report(job_id, timeout))

    @mcp.tool(
        name="cortex_list_jobs",
        description="List recent Cortex jobs, newest first, with optional filters.",
    )
    async def cortex_list_jobs(
        data_type: Annotated[Optional[str], Field(description="Filter by data type")] = None,
        analyzer_name: Annotated[
            Optional[str], Field(description="Filter by analyzer name")
        ] = None,
        limit: Annotated[int, Field(ge=1, le=500, description="Maximum jobs to return")] = 50,
        status: Annotated[
            Optional[str],
            Field(description="Filter by status (Waiting, InProgress, Success, Failure, Deleted)"),
        ] = None,
    ) -> str:
        return _unwrap(await service.list_jobs(data_type, analyzer_name, limit, status))

    @mcp.tool(
        name="cortex_get_job_artifacts",
        description="List the artifacts (related observables) extracted by a Cortex job.",
    )
    async def cortex_get_job_artifacts(
        job_id: Annotated[str, Field(min_length=1, description="Job ID")],
    ) -> str:
        return _unwrap(await service.get_job_artifacts(job_id))

    @mcp.tool(
        name="cortex_list_responders",
        description="List available Cortex responders, optionally filtered by data type.",
    )
    async def cortex_list_responders(
        data_type: Annotated[
            Optional[str], Field(description="Only return responders supporting this data type")
        ] = None,
    ) -> str:
        return _unwrap(await service.list_responders(data_type))

    @mcp.tool(
        name="cortex_run_responder",
        description="Run a Cortex responder action against a case, task, artifact or alert.",
    )
    async def cortex_run_responder(
        responder_id: Annotated[str, Field(min_length=1, description="Responder ID")],
        object_type: Annotated[ResponderObjectType, Field(description="Target object type")],
        object_id: Annotated[str, Field(min_length=1, description="Target object ID")],
        parameters: Annotated[
            Optional[dict[str, Any]], Field(description="Optional responder parameters")
        ] = None,
    ) -> str:
        return _unwrap(
            await service.run_responder(responder_id, object_type, object_id, parameters)
        )

    @mcp.tool(
        name="cortex_analyze_observable",
        description=(
            "Run every analyzer that supports the observable's data type, wait for all "
            "of them, and return an aggregated taxonomy summary with per-analyzer results."
        ),
    )
    async def cortex_analyze_observable(
        data_type: Annotated[
            str,
            Field(
                min_length=1,
                description="Observable data type, matched exactly against each analyzer's types",
            ),
        ],
        data: Annotated[str, Field(min_length=1, description="Observable value")],
        tlp: TLP = 2,
        pap: PAP = 2,
        timeout: WaitTimeout = 300,
    ) -> str:
        return _unwrap(await service.analyze_observable(data_type, data, tlp, pap, timeout))


def register_resources(mcp: Any, service: CortexToolService) -> None:
    @mcp.resource(
        ANALYZERS_RESOURCE_URI,
        name="Cortex Analyzers",
        description="All analyzers enabled on the Cortex instance.",
        mime_type="application/json",
    )
    async def analyzers_resource() -> str:
        return await service.analyzers_resource()

    @mcp.resource(
        RECENT_JOBS_RESOURCE_URI,
        name="Recent Cortex Jobs",
        description="The 50 most recent Cortex analysis jobs.",
        mime_type="application/json",
    )
    async def recent_jobs_resource() -> str:
        return await service.recent_jobs_resource()


def register_prompts(mcp: Any) -> None:
    @mcp.prompt(
        name=ANALYZE_OBSERVABLE_PROMPT,
        description=(
            "Analyze an observable with every applicable Cortex analyzer "
            "and summarize the findings."
        ),
    )
    def analyze_observable(
        observable: Annotated[str, Field(description="The observable value to analyze")],
        context: Annotated[
            Optional[str], Field(description="Optional context about where it was seen")
        ] = None,
    ) -> str:
        return render_analyze_observable(observable, context)

    @mcp.prompt(
        name=INVESTIGATE_IOC_PROMPT,
        description="Run a deep multi-analyzer investigation of an indicator of compromise.",
    )
    def investigate_ioc(
        ioc: Annotated[str, Field(description="The indicator of compromise")],
        ioc_type: Annotated[str, Field(description="IOC type such as ip, domain or hash")],
    ) -> str:
        return render_investigate_ioc(ioc, ioc_type)


def build_mcp_server(
    service: CortexToolService | None = None,
    env: dict[str, str] | None = None,
) -> FastMCP:
    resolved = service or CortexToolService.from_env(env)
    mcp = FastMCP(SERVER_NAME, instructions=SERVER_INSTRUCTIONS)
    register_tools(mcp, resolved)
    register_resources(mcp, resolved)
    register_prompts(mcp)
    logger.debug("Registered Cortex tools, resources and prompts on %s", SERVER_NAME)
    return mcp
