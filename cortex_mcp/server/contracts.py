"""Pydantic contracts for Cortex entities and tool arguments."""

from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

ObservableDataType = Literal[
    "ip",
    "domain",
    "url",
    "fqdn",
    "hash",
    "mail",
    "filename",
    "registry",
    "regexp",
    "other",
]
DATA_TYPES: tuple[str, ...] = get_args(ObservableDataType)
ResponderObjectType = Literal["case", "case_task", "case_artifact", "alert"]

TAXONOMY_LEVELS: tuple[str, ...] = ("malicious", "suspicious", "info", "safe")
PENDING_JOB_STATUSES = frozenset({"Waiting", "InProgress"})


class CortexModel(BaseModel):
    """Base for payloads returned by Cortex; unknown fields are kept verbatim."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Analyzer(CortexModel):
    id: str = Field(min_length=1)
    name: str
    version: str = ""
    description: str = ""
    data_type_list: list[str] = Field(default_factory=list, alias="dataTypeList")
    cortex_ids: list[str] | None = Field(default=None, alias="cortexIds")
    rate: int | None = None
    rate_unit: str | None = Field(default=None, alias="rateUnit")
    max_tlp: int | None = Field(default=None, alias="maxTlp")
    max_pap: int | None = Field(default=None, alias="maxPap")
    created_by: str | None = Field(default=None, alias="createdBy")
    created_at: int | None = Field(default=None, alias="createdAt")
    updated_by: str | None = Field(default=None, alias="updatedBy")
    updated_at: int | None = Field(default=None, alias="updatedAt")

    def supports(self, data_type: str) -> bool:
        return data_type in self.data_type_list

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "dataTypes": list(self.data_type_list),
        }


class Responder(Analyzer):
    """Responders share the analyzer descriptor shape."""


class Job(CortexModel):
    id: str = Field(min_length=1)
    analyzer_id: str | None = Field(default=None, alias="analyzerId")
    analyzer_name: str | None = Field(default=None, alias="analyzerName")
    analyzer_definition: str | None = Field(default=None, alias="analyzerDefinition")
    status: str
    data: str | None = None
    data_type: str | None = Field(default=None, alias="dataType")
    tlp: int | None = None
    pap: int | None = None
    message: str | None = None
    start_date: int | None = Field(default=None, alias="startDate")
    end_date: int | None = Field(default=None, alias="endDate")
    created_at: int | None = Field(default=None, alias="createdAt")
    created_by: str | None = Field(default=None, alias="createdBy")
    organization: str | None = None
    parameters: Any = None


class Taxonomy(CortexModel):
    """One analyzer verdict. Analyzers emit scores and counts as bare numbers."""

    level: str
    namespace: str
    predicate: str
    value: str | int | float | bool

    def render(self) -> str:
        return f"[{self.level}] {self.namespace}:{self.predicate} = {self.value}"


class ReportSummary(CortexModel):
    taxonomies: list[Taxonomy] | None = None


class Artifact(CortexModel):
    data_type: str = Field(alias="dataType")
    data: str | None = None
    message: str | None = None
    tlp: int | None = None
    tags: list[str] | None = None
    created_at: int | None = Field(default=None, alias="createdAt")
    created_by: str | None = Field(default=None, alias="createdBy")


class ReportBody(CortexModel):
    summary: ReportSummary | None = None
    full: dict[str, Any] | None = None
    success: bool | None = None
    artifacts: list[Artifact] | None = None


class JobReport(Job):
    report: ReportBody | None = None

    @property
    def taxonomies(self) -> list[Taxonomy]:
        if self.report is None or self.report.summary is None:
            return []
        return list(self.report.summary.taxonomies or [])


class ActionJob(CortexModel):
    id: str = Field(min_length=1)
    responder_id: str = Field(alias="responderId")
    responder_name: str | None = Field(default=None, alias="responderName")
    responder_definition: str | None = Field(default=None, alias="responderDefinition")
    status: str
    object_type: str | None = Field(default=None, alias="objectType")
    object_id: str | None = Field(default=None, alias="objectId")
    start_date: int | None = Field(default=None, alias="startDate")
    end_date: int | None = Field(default=None, alias="endDate")
    operations: Any = None


class RunAnalyzerRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    data: str
    data_type: str = Field(alias="dataType")
    tlp: int = Field(ge=0, le=3)
    pap: int = Field(ge=0, le=3)
    message: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RunResponderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    object_type: str = Field(alias="objectType")
    object_id: str = Field(alias="objectId")
    parameters: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class JobSearchQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: dict[str, Any] | None = None
    range: str | None = None
    sort: list[str] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# Tool argument models. Field bounds are enforced before any network call.


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RunAnalyzerArgs(ToolArgs):
    analyzer_id: str = Field(min_length=1)
    data_type: ObservableDataType
    data: str = Field(min_length=1)
    tlp: int = Field(ge=0, le=3)
    pap: int = Field(ge=0, le=3)
    message: str | None = None


class RunAnalyzerByNameArgs(ToolArgs):
    analyzer_name: str = Field(min_length=1)
    data_type: ObservableDataType
    data: str = Field(min_length=1)
    tlp: int = Field(default=2, ge=0, le=3)
    pap: int = Field(default=2, ge=0, le=3)


class WaitReportArgs(ToolArgs):
    job_id: str = Field(min_length=1)
    timeout: int = Field(default=300, ge=1, le=3600)


class ListJobsArgs(ToolArgs):
    data_type: str | None = None
    analyzer_name: str | None = None
    limit: int = Field(default=50, ge=1, le=500)
    status: str | None = None


class RunResponderArgs(ToolArgs):
    responder_id: str = Field(min_length=1)
    object_type: ResponderObjectType
    object_id: str = Field(min_length=1)
    parameters: dict[str, Any] | None = None


class AnalyzeObservableArgs(ToolArgs):
    data_type: str = Field(min_length=1)
    data: str = Field(min_length=1)
    tlp: int = Field(default=2, ge=0, le=3)
    pap: int = Field(default=2, ge=0, le=3)
    timeout: int = Field(default=300, ge=1, le=3600)
