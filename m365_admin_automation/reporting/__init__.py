"""Reporting package — console rendering and file exports."""

from .console import (
    render_batch_summary,
    render_cost_report,
    render_orchestration,
)
from .csv_export import export_app_inventory_csv, export_cost_csv
from .json_export import export_run_summary

__all__ = [
    "render_batch_summary",
    "render_cost_report",
    "render_orchestration",
    "export_app_inventory_csv",
    "export_cost_csv",
    "export_run_summary",
]
