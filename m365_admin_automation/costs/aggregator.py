"""
Cost aggregation — groups a flat record list into summaries with shares and top-N.

Grand totals are sums of raw costs; rounding happens only for display
(money half-up to cents, percentages half-up to one decimal). Grouping keeps
first-seen order and every sort is stable, so the same input always yields
the same output.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from ..config import TOP_N_DEFAULT
from .models import (
    Breakdown,
    CostReport,
    GroupSummary,
    NoData,
    ResultRecord,
    round_percent,
)

logger = logging.getLogger("m365_admin_automation.costs")

KeySelector = Callable[[ResultRecord], str]


class Order(str, Enum):
    FIRST_SEEN = "first_seen"
    TOTAL_DESC = "total_desc"
    KEY = "key"


def by_group(record: ResultRecord) -> str:
    return record.group_key


def by_sub_key(record: ResultRecord) -> str:
    return record.sub_key


def by_date(record: ResultRecord) -> str:
    return record.date.isoformat()


def restrict(
    records: Iterable[ResultRecord],
    allowed_groups: Optional[Iterable[str]],
) -> list[ResultRecord]:
    """
    Keep records whose group key is in the allow-set (case-insensitive).
    ``None`` means no restriction; an empty set matches nothing.
    """
    if allowed_groups is None:
        return list(records)
    allowed = {g.lower() for g in allowed_groups}
    return [r for r in records if r.group_key.lower() in allowed]


def aggregate(
    records: Iterable[ResultRecord],
    key: KeySelector = by_group,
    sub_key: KeySelector = by_sub_key,
    allowed_groups: Optional[Iterable[str]] = None,
    order: Order = Order.TOTAL_DESC,
    top_n: int = TOP_N_DEFAULT,
    dimension: str = "group",
) -> Union[Breakdown, NoData]:
    """Group matched records by ``key``; each group ranks its top ``sub_key`` values."""
    records = list(records)
    matched = restrict(records, allowed_groups)
    if not matched:
        return _no_data(records, allowed_groups)

    grand_total = sum((r.cost for r in matched), Decimal("0"))
    buckets: dict[str, list[ResultRecord]] = {}
    for r in matched:
        buckets.setdefault(key(r), []).append(r)

    groups = []
    for group_key, members in buckets.items():
        subtotal = sum((r.cost for r in members), Decimal("0"))
        groups.append(GroupSummary(
            key=group_key,
            total=subtotal,
            percentage=_share(subtotal, grand_total),
            count=len(members),
            top=_top(members, sub_key, top_n),
        ))

    if order == Order.TOTAL_DESC:
        groups.sort(key=lambda g: g.total, reverse=True)
    elif order == Order.KEY:
        groups.sort(key=lambda g: g.key)

    return Breakdown(dimension=dimension, grand_total=grand_total, groups=groups)


def build_cost_report(
    records: Iterable[ResultRecord],
    allowed_groups: Optional[Iterable[str]] = None,
    top_n: int = TOP_N_DEFAULT,
) -> Union[CostReport, NoData]:
    """
    Full report: by resource group and by resource type (largest first),
    then by day (chronological).
    """
    all_records = list(records)
    matched = restrict(all_records, allowed_groups)
    if not matched:
        result = _no_data(all_records, allowed_groups)
        logger.info(result.reason)
        return result

    currencies = list(dict.fromkeys(r.currency for r in matched))
    if len(currencies) > 1:
        logger.warning(
            f"Mixed currencies in cost data ({', '.join(currencies)}); "
            f"totals are summed without conversion."
        )

    by_group_breakdown = aggregate(matched, by_group, by_sub_key, None,
                                   Order.TOTAL_DESC, top_n, "resource_group")
    by_type_breakdown = aggregate(matched, by_sub_key, by_group, None,
                                  Order.TOTAL_DESC, top_n, "resource_type")
    by_date_breakdown = aggregate(matched, by_date, by_sub_key, None,
                                  Order.KEY, top_n, "date")

    return CostReport(
        currency=currencies[0],
        grand_total=by_group_breakdown.grand_total,
        record_count=len(matched),
        excluded_count=len(all_records) - len(matched),
        by_group=by_group_breakdown,
        by_type=by_type_breakdown,
        by_date=by_date_breakdown,
        records=matched,
    )


def _no_data(records: list[ResultRecord], allowed_groups: Optional[Iterable[str]]) -> NoData:
    if not records:
        return NoData("The cost query returned no rows for this period.")
    wanted = ", ".join(sorted(allowed_groups or [])) or "(empty selection)"
    return NoData(f"None of {len(records)} cost records belong to the resource groups: {wanted}.")


def _share(subtotal: Decimal, grand_total: Decimal) -> Decimal:
    if grand_total == 0:
        return Decimal("0.0")
    return round_percent(subtotal / grand_total * 100)


def _top(members: list[ResultRecord], sub_key: KeySelector, n: int) -> list[tuple[str, Decimal]]:
    totals: dict[str, Decimal] = {}
    for r in members:
        k = sub_key(r)
        totals[k] = totals.get(k, Decimal("0")) + r.cost
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return ranked[:n]
