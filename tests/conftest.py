"""Shared fixtures for the automation test suite."""

from __future__ import annotations

import os
from datetime import date
from decimal import Decimal

import pytest

from m365_admin_automation import profiles
from m365_admin_automation.costs.models import ResultRecord


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class StubAuthenticator:
    """Hands out a fixed token per scope without contacting Entra ID."""

    def __init__(self):
        self.scopes: list[str] = []

    async def acquire_token(self, scope: str) -> str:
        self.scopes.append(scope)
        return "test-token"


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """No M365_* variables, no ./.env, and a private profile store."""
    for key in list(os.environ):
        if key.upper().startswith("M365_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    config_dir = tmp_path / "profiles"
    monkeypatch.setattr(profiles, "_CONFIG_DIR", config_dir)
    monkeypatch.setattr(profiles, "_PROFILES_FILE", config_dir / "profiles.json")
    return tmp_path


def record(day: str, group: str, sub: str, cost: str, currency: str = "USD") -> ResultRecord:
    return ResultRecord(
        date=date.fromisoformat(day),
        group_key=group,
        sub_key=sub,
        cost=Decimal(cost),
        currency=currency,
    )


@pytest.fixture
def scenario_records() -> list[ResultRecord]:
    return [
        record("2025-01-01", "rg1", "vm", "10.004"),
        record("2025-01-01", "rg1", "disk", "5.001"),
        record("2025-01-01", "rg2", "vm", "3.00"),
    ]
