"""
Cost report data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
TENTH = Decimal("0.1")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Decimal) -> Decimal:
    return value.quantize(TENTH, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ResultRecord:
    """One cost row: day, resource group, resource type, cost, currency."""
    date: date
    group_key: str
    sub_key: str
    cost: Decimal
    currency: str


@dataclass
class GroupSummary:
    """Aggregate of one group: raw total, share of grand total, members, top sub-keys."""
    key: str
    total: Decimal
    percentage: Decimal
    count: int
    top: list[tuple[str, Decimal]] = field(default_factory=list)

    @property
    def display_total(self) -> Decimal:
        return round_money(self.total)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "total": str(self.display_total),
            "percentage": str(self.percentage),
            "count": self.count,
            "top": [{"key": k, "total": str(round_money(v))} for k, v in self.top],
        }


@dataclass
class Breakdown:
    """Grouped summaries along one dimension."""
    dimension: str
    grand_total: Decimal
    groups: list[GroupSummary] = field(default_factory=list)

    @property
    def display_grand_total(self) -> Decimal:
        return round_money(self.grand_total)


@dataclass(frozen=True)
class NoData:
    """The restriction matched no records; nothing was computed."""
    reason: str = "No cost records to report."


@dataclass
class CostReport:
    """Grand total plus breakdowns by resource group, resource type and day."""
    currency: str
    grand_total: Decimal
    record_count: int
    excluded_count: int
    by_group: Breakdown
    by_type: Breakdown
    by_date: Breakdown
    records: list[ResultRecord] = field(default_factory=list)

    @property
    def display_grand_total(self) -> Decimal:
        return round_money(self.grand_total)

    @property
    def breakdowns(self) -> list[Breakdown]:
        return [self.by_group, self.by_type, self.by_date]

    def to_dict(self) -> dict:
        return {
            "currency": self.currency,
            "grand_total": str(self.display_grand_total),
            "record_count": self.record_count,
            "excluded_count": self.excluded_count,
            "breakdowns": {
                b.dimension: [g.to_dict() for g in b.groups] for b in self.breakdowns
            },
        }


ReportResult = Union[CostReport, NoData]
