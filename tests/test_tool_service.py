from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from cortex_mcp.server.app import CortexToolService, ToolResponse
from cortex_mcp.server.contracts import Analyzer, JobSearchQuery, Responder
from cortex_mcp.server.cortex_connector import CortexAPIError
from cortex_mcp.server.cortex_connector_inmemory import InMemoryCortexConnector


def _analyzer(analyzer_id: str, name: str, data_types: list[str]) -> Analyzer:
    return Analyzer(
        id=analyzer_id,
        name=name,
        version="2.1",
        description=f"{name} lookups",
        data_type_list=data_types,
    )


@pytest.fixture
def connector() -> InMemoryCortexConnector:
    connector = InMemoryCortexConnector(
        responders=[
            Responder(id="mail", name="Mailer_1_0", data_type_list=["thehive:case"]),
            Responder(id="block", name="Firewall_Block_1_0", data_type_list=["ip"]),
        ]
    )
    connector.register_analyzer(
        _analyzer("vt", "VirusTotal_GetReport_3_0", ["ip", "hash", "domain"]),
        [{"level": "malicious", "namespace": "VT", "predicate": "GetReport", "value": "5/70"}],
        artifacts=[{"dataType": "domain", "data": "c2.example"}],
    )
    connector.register_analyzer(
        _analyzer("abuse", "AbuseIPDB_1_0", ["ip"]),
        [{"level": "safe", "namespace": "AbuseIPDB", "predicate": "Score", "value": "0"}],
    )
    return connector


@pytest.fixture
def service(connector: InMemoryCortexConnector) -> CortexToolService:
    return CortexToolService(connector)


def _call(coro: Any) -> ToolResponse:
    return asyncio.run(coro)


def _ok(response: ToolResponse) -> Any:
    assert response.is_error is False, response.text
    return json.loads(response.text)


def test_tool_response_envelope() -> None:
    assert ToolResponse("hi").as_dict() == {"content": [{"type": "text", "text": "hi"}]}
    assert ToolResponse("bad", is_error=True).as_dict()["isError"] is True


def test_list_analyzers_summaries_and_filter(service: CortexToolService) -> None:
    everything = _ok(_call(service.list_analyzers()))
    assert [row["id"] for row in everything] == ["vt", "abuse"]
    assert everything[0] == {
        "id": "vt",
        "name": "VirusTotal_GetReport_3_0",
        "version": "2.1",
        "description": "VirusTotal_GetReport_3_0 lookups",
        "dataTypes": ["ip", "hash", "domain"],
    }

    hashes = _ok(_call(service.list_analyzers("hash")))
    assert [row["id"] for row in hashes] == ["vt"]


def test_get_analyzer_and_not_found(service: CortexToolService) -> None:
    analyzer = _ok(_call(service.get_analyzer("abuse")))
    assert analyzer["dataTypeList"] == ["ip"]

    missing = _call(service.get_analyzer("nope"))
    assert missing.is_error is True
    assert missing.text == "Error getting analyzer: Cortex API error: Resource not found"


def test_run_analyzer_returns_job_and_guidance(
    service: CortexToolService, connector: InMemoryCortexConnector
) -> None:
    payload = _ok(_call(service.run_analyzer("vt", "ip", "8.8.8.8", 2, 2, message="triage")))

    assert payload["jobId"] == "job_1"
    assert payload["status"] == "Waiting"
    assert payload["analyzerId"] == "vt"
    assert 'jobId "job_1"' in payload["message"]
    assert connector.jobs["job_1"].message == "triage"


def test_run_analyzer_validates_before_calling_cortex(
    service: CortexToolService, connector: InMemoryCortexConnector
) -> None:
    bad_tlp = _call(service.run_analyzer("vt", "ip", "8.8.8.8", 4, 2))
    bad_type = _call(service.run_analyzer("vt", "ipv4", "8.8.8.8", 2, 2))

    assert bad_tlp.is_error and bad_tlp.text.startswith("Error running analyzer:")
    assert "tlp" in bad_tlp.text
    assert bad_type.is_error and "data_type" in bad_type.text
    assert connector.calls_for("run_analyzer") == []


def test_run_analyzer_by_name_matches_substring_case_insensitively(
    service: CortexToolService, connector: InMemoryCortexConnector
) -> None:
    payload = _ok(_call(service.run_analyzer_by_name("virustotal", "domain", "evil.example")))

    assert payload["analyzerUsed"] == {"id": "vt", "name": "VirusTotal_GetReport_3_0"}
    assert payload["message"].startswith('Analysis job submitted to "VirusTotal_GetReport_3_0".')
    assert connector.calls_for("run_analyzer") == ["vt"]
    job = connector.jobs[payload["jobId"]]
    assert (job.tlp, job.pap) == (2, 2)


def test_run_analyzer_by_name_requires_type_support(
    service: CortexToolService, connector: InMemoryCortexConnector
) -> None:
    response = _call(service.run_analyzer_by_name("abuse", "hash", "d41d8cd9"))

    assert response.is_error is True
    assert response.text == (
        'No analyzer found matching "abuse" that supports data type "hash". '
        "Use cortex_list_analyzers to see available analyzers."
    )
    assert connector.calls_for("run_analyzer") == []


def test_job_lookup_report_and_artifacts(service: CortexToolService) -> None:
    job_id = _ok(_call(service.run_analyzer("vt", "ip", "1.2.3.4", 2, 2)))["jobId"]

    waiting = _ok(_call(service.get_job(job_id)))
    assert waiting["status"] == "Waiting"
    assert waiting["dataType"] == "ip"

    waited = _ok(_call(service.wait_and_get_report(job_id, timeout=60)))
    assert waited["jobId"] == job_id
    assert waited["status"] == "Success"
    assert waited["analyzerName"] == "VirusTotal_GetReport_3_0"
    assert waited["taxonomies"] == ["[malicious] VT:GetReport = 5/70"]
    assert waited["fullReport"]["success"] is True

    report = _ok(_call(service.get_job_report(job_id)))
    assert report["report"]["summary"]["taxonomies"][0]["level"] == "malicious"

    artifacts = _ok(_call(service.get_job_artifacts(job_id)))
    assert artifacts == [{"dataType": "domain", "data": "c2.example"}]


def test_wait_and_get_report_bounds_timeout(service: CortexToolService) -> None:
    response = _call(service.wait_and_get_report("job_1", timeout=3601))
    assert response.is_error is True
    assert response.text.startswith("Error waiting for report:")


def test_list_jobs_builds_filtered_query(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[JobSearchQuery] = []
    connector = InMemoryCortexConnector()
    original = connector.search_jobs

    def search_jobs(query: JobSearchQuery) -> Any:
        captured.append(query)
        return original(query)

    monkeypatch.setattr(connector, "search_jobs", search_jobs)
    service = CortexToolService(connector)

    assert _ok(_call(service.list_jobs())) == []
    _ok(_call(service.list_jobs(data_type="ip", status="Success", limit=5)))

    assert captured[0].to_wire() == {
        "query": {"_field": "status", "_value": "*"},
        "range": "0-50",
        "sort": ["-createdAt"],
    }
    assert captured[1].to_wire() == {
        "query": {
            "_and": [
                {"_field": "dataType", "_value": "ip"},
                {"_field": "status", "_value": "Success"},
            ]
        },
        "range": "0-5",
        "sort": ["-createdAt"],
    }


def test_list_jobs_rows_and_limit_validation(
    service: CortexToolService, connector: InMemoryCortexConnector
) -> None:
    job_id = _ok(_call(service.run_analyzer("abuse", "ip", "9.9.9.9", 1, 1)))["jobId"]
    _call(service.wait_and_get_report(job_id))

    rows = _ok(_call(service.list_jobs(analyzer_name="AbuseIPDB_1_0")))
    assert len(rows) == 1
    assert rows[0]["id"] == job_id
    assert rows[0]["status"] == "Success"
    assert rows[0]["data"] == "9.9.9.9"
    assert rows[0]["endDate"].endswith("Z")

    too_many = _call(service.list_jobs(limit=501))
    assert too_many.is_error is True


def test_responders(service: CortexToolService, connector: InMemoryCortexConnector) -> None:
    ip_responders = _ok(_call(service.list_responders("ip")))
    assert [row["id"] for row in ip_responders] == ["block"]

    action = _ok(
        _call(service.run_responder("mail", "case", "case-42", parameters={"to": "soc@x.test"}))
    )
    assert action["responderId"] == "mail"
    assert action["message"] == f'Responder action submitted. Job ID: "{action["actionJobId"]}"'
    assert connector.executed_actions[0].object_id == "case-42"

    bad_object = _call(service.run_responder("mail", "ticket", "1"))
    assert bad_object.is_error is True


def test_analyze_observable_aggregates(service: CortexToolService) -> None:
    payload = _ok(_call(service.analyze_observable("ip", "203.0.113.7")))

    assert payload["analyzersRun"] == 2
    assert payload["summary"] == {"malicious": 1, "suspicious": 0, "info": 0, "safe": 1}
    assert [row["analyzer"] for row in payload["results"]] == [
        "VirusTotal_GetReport_3_0",
        "AbuseIPDB_1_0",
    ]


def test_analyze_observable_without_analyzers_is_not_an_error(
    service: CortexToolService,
) -> None:
    response = _call(service.analyze_observable("registry", "HKLM\\Software"))
    assert response.is_error is False
    assert response.text == 'No analyzers found that support data type "registry".'


def test_analyze_observable_directory_failure_and_validation(
    service: CortexToolService, connector: InMemoryCortexConnector
) -> None:
    invalid = _call(service.analyze_observable("ip", "1.2.3.4", timeout=0))
    assert invalid.is_error is True
    assert connector.calls_for("list_analyzers") == []

    connector.list_error = CortexAPIError(
        "Cortex API error: Invalid API key or unauthorized access", "cortex_unauthorized", 401
    )
    failed = _call(service.analyze_observable("ip", "1.2.3.4"))
    assert failed.is_error is True
    assert failed.text == (
        "Error analyzing observable: Cortex API error: Invalid API key or unauthorized access"
    )


def test_resources_render_json(service: CortexToolService) -> None:
    analyzers = json.loads(asyncio.run(service.analyzers_resource()))
    assert [row["name"] for row in analyzers] == ["VirusTotal_GetReport_3_0", "AbuseIPDB_1_0"]

    _call(service.run_analyzer("vt", "hash", "abc", 2, 2))
    jobs = json.loads(asyncio.run(service.recent_jobs_resource()))
    assert [row["data"] for row in jobs] == ["abc"]
