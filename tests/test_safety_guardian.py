"""Tests for the outbound request guard."""

from __future__ import annotations

import re

import pytest

from m365_admin_automation.config import ARM_BASE_URL, GRAPH_BASE_URL
from m365_admin_automation.safety.guardian import GuardViolation, RequestGuard

CASES = f"{GRAPH_BASE_URL}/security/cases/ediscoveryCases"


@pytest.fixture
def guard() -> RequestGuard:
    return RequestGuard()


@pytest.mark.parametrize("url", [
    CASES,
    f"{CASES}/c1/searches",
    f"{CASES}/c1/searches/s1/estimateStatistics",
    f"{CASES}/c1/searches/s1/microsoft.graph.security.exportResult",
    f"{ARM_BASE_URL}/subscriptions/sub/providers/Microsoft.CostManagement/query?api-version=2023-03-01",
])
def test_allow_listed_writes_pass(guard, url):
    assert guard.validate_request("POST", url) is True
    assert guard.writes[-1]["url"] == url


def test_reads_always_pass(guard):
    assert guard.validate_request("get", f"{GRAPH_BASE_URL}/users")
    assert guard.writes == []
    assert guard.checks_performed == 1


def test_delete_is_blocked(guard):
    with pytest.raises(GuardViolation):
        guard.validate_request("DELETE", f"{CASES}/c1")
    assert guard.violations[0]["reason"] == "Destructive HTTP method blocked"


def test_unlisted_write_is_blocked(guard):
    with pytest.raises(GuardViolation):
        guard.validate_request("PATCH", f"{GRAPH_BASE_URL}/users/u1")
    audit = guard.get_audit_record()["request_guard"]
    assert audit["status"] == "VIOLATIONS_DETECTED"
    assert audit["violations_detected"] == 1


@pytest.mark.parametrize("url", [
    f"{GRAPH_BASE_URL}/$batch",
    f"{CASES}/c1/searches/s1/exportReport",
    f"{CASES}/c1/searches/s1/purgeData",
])
def test_batch_and_unused_case_actions_are_blocked(guard, url):
    with pytest.raises(GuardViolation):
        guard.validate_request("POST", url)
    assert guard.writes == []


def test_unknown_method_is_blocked(guard):
    with pytest.raises(GuardViolation):
        guard.validate_request("TRACE", f"{GRAPH_BASE_URL}/users")


def test_custom_allow_list_replaces_defaults():
    guard = RequestGuard(allowed_writes=[("PUT", re.compile(r"/things/\d+$"))])
    assert guard.validate_request("PUT", "https://example.test/things/7")
    with pytest.raises(GuardViolation):
        guard.validate_request("POST", CASES)


def test_clean_audit_record(guard):
    guard.validate_request("GET", f"{GRAPH_BASE_URL}/organization")
    audit = guard.get_audit_record()["request_guard"]
    assert audit["status"] == "CLEAN"
    assert audit["checks_performed"] == 1
