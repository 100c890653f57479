"""Tests for console rendering and file exports."""

from __future__ import annotations

import csv
import json

from m365_admin_automation.costs import NoData, build_cost_report
from m365_admin_automation.jobs import (
    BatchSummary,
    ItemResult,
    Job,
    JobKind,
    JobStatus,
    OrchestrationOutcome,
    PollOutcome,
    StageOutcome,
)
from m365_admin_automation.powerplatform import PowerApp
from m365_admin_automation.reporting import (
    export_app_inventory_csv,
    export_cost_csv,
    export_run_summary,
    render_batch_summary,
    render_cost_report,
    render_orchestration,
)
from m365_admin_automation.reporting.csv_export import unique_path


def test_cost_report_sections_in_order(scenario_records):
    text = render_cost_report(build_cost_report(scenario_records, allowed_groups={"rg1"}))

    positions = [text.index(title) for title in (
        "TOTAL COST", "COST BY RESOURCE GROUP", "COST BY RESOURCE TYPE", "COST BY DAY",
    )]
    assert positions == sorted(positions)
    assert "15.01 USD" in text
    assert "100.0%" in text
    assert "rg2" not in text
    assert "Excluded:      1" in text


def test_no_data_renders_reason():
    text = render_cost_report(NoData())
    assert "No data:" in text
    assert "TOTAL COST" not in text


def test_export_cost_csv_writes_detail_and_summary(tmp_path, scenario_records):
    report = build_cost_report(scenario_records, allowed_groups={"rg1"})

    detail, summary = export_cost_csv(report, tmp_path / "out", "20250101_000000")

    assert detail.name == "cost_detail_20250101_000000.csv"
    with open(detail, encoding="utf-8-sig", newline="") as fh:
        rows = list(csv.reader(fh))
    assert rows[0] == ["date", "resource_group", "resource_type", "cost", "currency"]
    assert rows[1] == ["2025-01-01", "rg1", "vm", "10.004", "USD"]
    assert len(rows) == 3

    with open(summary, encoding="utf-8-sig", newline="") as fh:
        summary_rows = list(csv.DictReader(fh))
    assert summary_rows[0]["dimension"] == "total"
    assert summary_rows[0]["cost"] == "15.01"
    assert [r["dimension"] for r in summary_rows[1:]] == [
        "resource_group", "resource_type", "resource_type", "date",
    ]


def test_unique_path_never_overwrites(tmp_path):
    first = unique_path(tmp_path, "cost_detail", "ts")
    first.write_text("x")
    second = unique_path(tmp_path, "cost_detail", "ts")
    assert second.name == "cost_detail_ts_1.csv"


def test_app_inventory_csv(tmp_path):
    apps = [PowerApp(environment="Default", name="a1", display_name="Expenses",
                     owner="amy@contoso.com", created_time="2024-01-01T00:00:00Z")]

    path = export_app_inventory_csv(apps, tmp_path, "ts")

    with open(path, encoding="utf-8-sig", newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert rows == [{
        "environment": "Default",
        "name": "a1",
        "display_name": "Expenses",
        "owner": "amy@contoso.com",
        "created_time": "2024-01-01T00:00:00Z",
        "last_modified_time": "",
    }]


def _stage(status: JobStatus, kind=JobKind.PRIMARY, polled=True) -> StageOutcome:
    job = Job(job_id="s1", name="Sweep", kind=kind, status=status)
    poll = PollOutcome(job_id="s1", status=status, attempts=2, sleeps=1) if polled else None
    return StageOutcome(job=job, poll=poll, error="" if polled else "timed out")


def test_render_orchestration_shows_skipped_dependent():
    outcome = OrchestrationOutcome(primary=_stage(JobStatus.FAILED))

    text = render_orchestration(outcome)

    assert "❌ Search: Sweep (s1)" in text
    assert "Export: skipped" in text
    assert "Failed stage: primary" in text


def test_render_orchestration_success():
    outcome = OrchestrationOutcome(
        primary=_stage(JobStatus.COMPLETED),
        dependent=_stage(JobStatus.COMPLETED, JobKind.DEPENDENT),
    )
    text = render_orchestration(outcome)
    assert text.count("✅") == 2
    assert "All stages completed." in text


def test_render_batch_summary_counts():
    summary = BatchSummary(results=[
        ItemResult(name="Default", succeeded=True, value=[1, 2]),
        ItemResult(name="Sandbox", succeeded=False, error="AdminApiError: boom"),
    ])
    text = render_batch_summary(summary)
    assert "✅ Default: 2 items" in text
    assert "⚠  Sandbox: AdminApiError: boom" in text
    assert "1 succeeded, 1 failed" in text


def test_run_summary_json(tmp_path):
    path = export_run_summary(
        "compliance-search",
        {"succeeded": True},
        {"request_guard": {"status": "CLEAN"}},
        tmp_path,
        "ts",
    )

    assert path.name == "compliance_search_summary_ts.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["metadata"]["command"] == "compliance-search"
    assert payload["result"] == {"succeeded": True}
    assert payload["audit"]["request_guard"]["status"] == "CLEAN"
