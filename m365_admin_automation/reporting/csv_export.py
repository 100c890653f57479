"""
CSV exporter — cost detail and summary tables, Power Platform app inventory.
"""

from __future__ import annotations

import csv
from pathlib import Path

from ..costs.models import CostReport, round_money
from ..powerplatform.environments import PowerApp


def unique_path(output_dir: Path, stem: str, timestamp: str, suffix: str = ".csv") -> Path:
    """<stem>_<timestamp><suffix>, with a counter appended if that file already exists."""
    path = output_dir / f"{stem}_{timestamp}{suffix}"
    counter = 1
    while path.exists():
        path = output_dir / f"{stem}_{timestamp}_{counter}{suffix}"
        counter += 1
    return path


def export_cost_csv(report: CostReport, output_dir: Path, timestamp: str) -> list[Path]:
    """
    Write the matched cost records and the grouped summaries.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    # --- Detail CSV ---
    detail_path = unique_path(output_dir, "cost_detail", timestamp)
    with open(detail_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow(["date", "resource_group", "resource_type", "cost", "currency"])
        for r in report.records:
            writer.writerow([r.date.isoformat(), r.group_key, r.sub_key, str(r.cost), r.currency])
    created.append(detail_path)

    # --- Summary CSV ---
    summary_path = unique_path(output_dir, "cost_summary", timestamp)
    with open(summary_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=[
            "dimension", "key", "cost", "percentage", "records", "currency",
        ])
        writer.writeheader()
        writer.writerow({
            "dimension": "total",
            "key": "",
            "cost": str(report.display_grand_total),
            "percentage": "100.0",
            "records": report.record_count,
            "currency": report.currency,
        })
        for breakdown in report.breakdowns:
            for g in breakdown.groups:
                writer.writerow({
                    "dimension": breakdown.dimension,
                    "key": g.key,
                    "cost": str(round_money(g.total)),
                    "percentage": str(g.percentage),
                    "records": g.count,
                    "currency": report.currency,
                })
    created.append(summary_path)

    return created


APP_FIELDS = ["environment", "name", "display_name", "owner", "created_time", "last_modified_time"]


def export_app_inventory_csv(apps: list[PowerApp], output_dir: Path, timestamp: str) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = unique_path(output_dir, "powerapps_inventory", timestamp)
    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=APP_FIELDS)
        writer.writeheader()
        for app in apps:
            writer.writerow({f: getattr(app, f) for f in APP_FIELDS})
    return path
