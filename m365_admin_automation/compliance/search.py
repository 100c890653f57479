"""
Compliance search + export on the Microsoft Graph eDiscovery (Premium) API.

The search is the primary job: it is created and its estimate operation started.
The export of the search's results is the dependent job. Both are observed through
the case operation resource that each 202 Accepted response points at.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from ..api.client import AdminApiClient
from ..jobs.models import DependentJobSpec, JobSpec, JobStatus

logger = logging.getLogger("m365_admin_automation.compliance")

CASES_ENDPOINT = "security/cases/ediscoveryCases"

DATA_SOURCE_SCOPES = (
    "allTenantMailboxes",
    "allTenantSites",
    "allCaseCustodians",
    "allCaseNoncustodialDataSources",
)
EXPORT_FORMATS = ("pst", "msg", "eml")


class ComplianceApiError(Exception):
    """Raised when the eDiscovery API response lacks what the workflow needs."""
    pass


class ComplianceSearchApi:
    """Search/export capabilities for one eDiscovery case."""

    def __init__(self, graph: AdminApiClient, case_id: str):
        self.graph = graph
        self.case_id = case_id
        self._operations: dict[str, str] = {}  # job id -> operation URL

    @property
    def case_endpoint(self) -> str:
        return f"{CASES_ENDPOINT}/{self.case_id}"

    @classmethod
    async def for_case_name(
        cls, graph: AdminApiClient, display_name: str, create: bool = True
    ) -> "ComplianceSearchApi":
        """Resolve a case by display name, creating it when missing."""
        escaped = display_name.replace("'", "''")
        cases = await graph.get_all_pages(
            CASES_ENDPOINT, params={"$filter": f"displayName eq '{escaped}'"}
        )
        if cases:
            logger.info(f"Using eDiscovery case '{display_name}' ({cases[0]['id']})")
            return cls(graph, cases[0]["id"])
        if not create:
            raise ComplianceApiError(f"eDiscovery case not found: {display_name}")

        created = await graph.post(CASES_ENDPOINT, json_body={"displayName": display_name})
        if not created.get("id"):
            raise ComplianceApiError("Case creation returned no id.")
        logger.info(f"Created eDiscovery case '{display_name}' ({created['id']})")
        return cls(graph, created["id"])

    async def create_job(self, spec: JobSpec) -> str:
        """Create the search and start its estimate. Returns the search id."""
        params = spec.parameters
        body = {
            "displayName": spec.name,
            "description": params.get("description", ""),
            "contentQuery": params.get("content_query", ""),
            "dataSourceScopes": params.get("data_source_scopes", "allTenantMailboxes"),
        }
        search = await self.graph.post(f"{self.case_endpoint}/searches", json_body=body)
        search_id = search.get("id")
        if not search_id:
            raise ComplianceApiError(f"Search '{spec.name}' creation returned no id.")
        logger.info(f"Search '{spec.name}' created ({search_id}); starting estimate...")

        accepted = await self.graph.post(
            f"{self.case_endpoint}/searches/{search_id}/estimateStatistics"
        )
        self._operations[search_id] = accepted.get("_location") or (
            f"{self.case_endpoint}/searches/{search_id}/lastEstimateStatisticsOperation"
        )
        return search_id

    async def create_dependent_job(self, parent_id: str, spec: DependentJobSpec) -> str:
        """Export the search's results. Returns the export operation id."""
        export_format = (spec.export_format or "pst").lower()
        if export_format not in EXPORT_FORMATS:
            raise ComplianceApiError(f"Unsupported export format: {spec.export_format}")
        body = {
            "displayName": spec.name,
            "exportCriteria": spec.parameters.get("export_criteria", "searchHits"),
            "additionalOptions": spec.parameters.get("additional_options", "none"),
            "exportFormat": export_format,
        }
        accepted = await self.graph.post(
            f"{self.case_endpoint}/searches/{parent_id}/exportResult", json_body=body
        )
        location = accepted.get("_location")
        if not location:
            raise ComplianceApiError("Export accepted without an operation location.")
        operation_id = operation_id_from_location(location)
        self._operations[operation_id] = location
        return operation_id

    async def get_status(self, job_id: str) -> JobStatus:
        """Read the job's operation and map its status onto JobStatus."""
        url = self._operations.get(job_id) or f"{self.case_endpoint}/operations/{quote(job_id)}"
        operation = await self.graph.get(url)
        status = JobStatus.parse(operation.get("status"))
        progress = operation.get("percentProgress")
        if progress is not None:
            logger.debug(f"[{job_id}] {progress}% complete")
        return status


def operation_id_from_location(location: str) -> str:
    """Last path segment of an operation URL, tolerating an ('id') key form."""
    tail = location.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    if "('" in tail and tail.endswith("')"):
        tail = tail.split("('", 1)[1][:-2]
    return tail


def build_search_spec(
    name: str,
    content_query: str,
    data_source_scopes: str = "allTenantMailboxes",
    description: str = "",
) -> JobSpec:
    if data_source_scopes not in DATA_SOURCE_SCOPES:
        raise ValueError(f"Unknown data source scope: {data_source_scopes}")
    return JobSpec(
        name=name,
        parameters={
            "content_query": content_query,
            "data_source_scopes": data_source_scopes,
            "description": description,
        },
    )


def build_export_spec(search_name: str, export_format: str = "pst",
                      name: Optional[str] = None) -> DependentJobSpec:
    if export_format.lower() not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format: {export_format}")
    return DependentJobSpec(
        name=name or f"{search_name}_Export",
        export_format=export_format.lower(),
    )
