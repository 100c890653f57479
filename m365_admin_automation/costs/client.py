"""
Azure Cost Management query client.
Fetches actual daily cost grouped by resource group and resource type and turns
the column/row payload into ResultRecords.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..api.client import AdminApiClient, next_link
from ..config import COST_MANAGEMENT_API_VERSION
from .models import ResultRecord

logger = logging.getLogger("m365_admin_automation.costs")

COST_COLUMNS = ("cost", "pretaxcost", "costusd", "totalcost")
DATE_COLUMNS = ("usagedate", "date", "billingmonth")
GROUP_COLUMN = "resourcegroupname"
TYPE_COLUMN = "resourcetype"
CURRENCY_COLUMN = "currency"

UNASSIGNED = "(none)"


class CostQueryError(Exception):
    """Raised when a cost query response cannot be interpreted."""
    pass


def subscription_scope(subscription_id: str, resource_group: Optional[str] = None) -> str:
    scope = f"subscriptions/{subscription_id}"
    if resource_group:
        scope += f"/resourceGroups/{resource_group}"
    return scope


def build_query(start: date, end: date) -> dict:
    """ActualCost, daily, summed, grouped by resource group and type."""
    if end < start:
        raise ValueError(f"End date {end} is before start date {start}")
    return {
        "type": "ActualCost",
        "timeframe": "Custom",
        "timePeriod": {
            "from": f"{start.isoformat()}T00:00:00Z",
            "to": f"{end.isoformat()}T23:59:59Z",
        },
        "dataset": {
            "granularity": "Daily",
            "aggregation": {
                "totalCost": {"name": "Cost", "function": "Sum"},
            },
            "grouping": [
                {"type": "Dimension", "name": "ResourceGroupName"},
                {"type": "Dimension", "name": "ResourceType"},
            ],
        },
    }


class CostManagementApi:
    """Cost Management queries against one scope (subscription or resource group)."""

    def __init__(self, arm: AdminApiClient, scope: str):
        self.arm = arm
        self.scope = scope.strip("/")

    @property
    def query_endpoint(self) -> str:
        return (
            f"{self.scope}/providers/Microsoft.CostManagement/query"
            f"?api-version={COST_MANAGEMENT_API_VERSION}"
        )

    async def query_costs(self, start: date, end: date) -> list[ResultRecord]:
        """Run the query, following nextLink, and return records in response order."""
        body = build_query(start, end)
        logger.info(f"Querying cost for {self.scope} from {start} to {end}...")

        records: list[ResultRecord] = []
        url: Optional[str] = self.query_endpoint
        while url:
            data = await self.arm.post(url, json_body=body)
            records.extend(parse_query_result(data))
            url = next_link(data)

        logger.info(f"Fetched {len(records)} cost rows.")
        return records


def parse_query_result(data: dict) -> list[ResultRecord]:
    """Turn a Cost Management {properties: {columns, rows}} payload into records."""
    properties = data.get("properties") or {}
    columns = [str(c.get("name", "")).lower() for c in properties.get("columns", [])]
    rows = properties.get("rows", [])
    if not rows:
        return []

    cost_idx = _find_column(columns, COST_COLUMNS)
    date_idx = _find_column(columns, DATE_COLUMNS)
    if cost_idx is None or date_idx is None:
        raise CostQueryError(f"Cost or date column missing in response columns: {columns}")
    group_idx = _find_column(columns, (GROUP_COLUMN,))
    type_idx = _find_column(columns, (TYPE_COLUMN,))
    currency_idx = _find_column(columns, (CURRENCY_COLUMN,))

    records = []
    for row in rows:
        records.append(ResultRecord(
            date=parse_usage_date(row[date_idx]),
            group_key=_text(row, group_idx),
            sub_key=_text(row, type_idx),
            cost=_decimal(row[cost_idx]),
            currency=_text(row, currency_idx, default=""),
        ))
    return records


def parse_usage_date(value: Any) -> date:
    """UsageDate arrives as 20250101 (number) or an ISO string."""
    text = str(value).strip()
    if text.isdigit() and len(text) == 8:
        return datetime.strptime(text, "%Y%m%d").date()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as e:
        raise CostQueryError(f"Unrecognised usage date: {value!r}") from e


def _find_column(columns: list[str], names: tuple[str, ...]) -> Optional[int]:
    for name in names:
        if name in columns:
            return columns.index(name)
    return None


def _text(row: list, idx: Optional[int], default: str = UNASSIGNED) -> str:
    if idx is None or row[idx] in (None, ""):
        return default
    return str(row[idx])


def _decimal(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise CostQueryError(f"Unrecognised cost value: {value!r}") from e
    if not amount.is_finite():
        raise CostQueryError(f"Cost value is not a finite number: {value!r}")
    return amount
