"""Costs package — Azure cost query, aggregation and report models."""

from .models import Breakdown, CostReport, GroupSummary, NoData, ResultRecord, round_money
from .aggregator import Order, aggregate, build_cost_report, restrict
from .client import CostManagementApi, CostQueryError, subscription_scope

__all__ = [
    "Breakdown",
    "CostReport",
    "GroupSummary",
    "NoData",
    "ResultRecord",
    "round_money",
    "Order",
    "aggregate",
    "build_cost_report",
    "restrict",
    "CostManagementApi",
    "CostQueryError",
    "subscription_scope",
]
