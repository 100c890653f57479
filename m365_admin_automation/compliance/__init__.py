"""Compliance package — eDiscovery search and export jobs."""

from .search import (
    ComplianceApiError,
    ComplianceSearchApi,
    build_export_spec,
    build_search_spec,
    operation_id_from_location,
)

__all__ = [
    "ComplianceApiError",
    "ComplianceSearchApi",
    "build_export_spec",
    "build_search_spec",
    "operation_id_from_location",
]
