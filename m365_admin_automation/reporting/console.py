"""
Console renderer — text blocks for cost reports, job outcomes and batch summaries.
"""

from __future__ import annotations

from typing import Union

from ..costs.models import Breakdown, CostReport, NoData, round_money
from ..jobs.fanout import BatchSummary
from ..jobs.orchestrator import OrchestrationOutcome, StageOutcome

SECTION_TITLES = {
    "resource_group": "COST BY RESOURCE GROUP",
    "resource_type": "COST BY RESOURCE TYPE",
    "date": "COST BY DAY",
}


def _rule(title: str) -> list[str]:
    return ["", "=" * 70, f" {title}", "=" * 70]


def render_cost_report(report: Union[CostReport, NoData]) -> str:
    """Grand total, then by resource group, by resource type, by day."""
    if isinstance(report, NoData):
        return f"\n  No data: {report.reason}\n"

    cur = report.currency
    lines = _rule("TOTAL COST")
    lines.append(f"  Grand total:   {report.display_grand_total:,.2f} {cur}")
    lines.append(f"  Records:       {report.record_count}")
    if report.excluded_count:
        lines.append(f"  Excluded:      {report.excluded_count} (outside selected resource groups)")

    for breakdown in report.breakdowns:
        lines.extend(_render_breakdown(breakdown, cur))
    lines.append("")
    return "\n".join(lines)


def _render_breakdown(breakdown: Breakdown, currency: str) -> list[str]:
    lines = _rule(SECTION_TITLES.get(breakdown.dimension, breakdown.dimension.upper()))
    lines.append(f"  {'Name':<40s} {'Cost':>14s} {'Share':>7s} {'Rows':>6s}")
    lines.append(f"  {'─'*40} {'─'*14} {'─'*7} {'─'*6}")
    for g in breakdown.groups:
        lines.append(
            f"  {g.key[:40]:<40s} {g.display_total:>14,.2f} {g.percentage:>6}% {g.count:>6d}"
        )
        # Day rows stay compact
        if breakdown.dimension != "date":
            for sub, total in g.top:
                lines.append(f"      · {sub[:36]:<36s} {round_money(total):>14,.2f} {currency}")
    return lines


def render_stage(label: str, stage: StageOutcome) -> str:
    icon = "✅" if stage.succeeded else "❌"
    detail = f"{stage.poll.attempts} checks, {stage.poll.elapsed_seconds:.0f}s" if stage.poll else stage.error
    return f"  {icon} {label}: {stage.job.name} ({stage.job.job_id}) — {stage.job.status.value} [{detail}]"


def render_orchestration(outcome: OrchestrationOutcome) -> str:
    lines = [render_stage("Search", outcome.primary)]
    if outcome.dependent is not None:
        lines.append(render_stage("Export", outcome.dependent))
    elif outcome.dependent_requested:
        lines.append("  ⏭  Export: skipped (search did not complete)")
    if outcome.succeeded:
        lines.append("\n  All stages completed.")
    else:
        lines.append(f"\n  Failed stage: {outcome.failed_stage.value}")
    return "\n".join(lines)


def render_batch_summary(summary: BatchSummary, item_label: str = "environment") -> str:
    lines = []
    for r in summary.results:
        if r.succeeded:
            count = len(r.value) if isinstance(r.value, list) else 1
            lines.append(f"  ✅ {r.name}: {count} items")
        else:
            lines.append(f"  ⚠  {r.name}: {r.error}")
    lines.append(
        f"\n  {len(summary.results)} {item_label}s processed — "
        f"{len(summary.succeeded)} succeeded, {len(summary.failed)} failed"
    )
    return "\n".join(lines)
