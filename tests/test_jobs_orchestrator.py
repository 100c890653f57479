"""Tests for primary/dependent job sequencing."""

from __future__ import annotations

import asyncio

import pytest

from m365_admin_automation.jobs import (
    DependentJobSpec,
    JobKind,
    JobOrchestrator,
    JobPoller,
    JobSpec,
    JobStatus,
    JobSubmissionError,
)


class _FakeRemoteApi:
    """Scripted remote API: per-job status sequences and a call log."""

    def __init__(self, statuses: dict[str, list[str]], fail_create: bool = False,
                 fail_dependent: bool = False):
        self.statuses = {k: list(v) for k, v in statuses.items()}
        self.fail_create = fail_create
        self.fail_dependent = fail_dependent
        self.created: list[str] = []
        self.dependents: list[tuple[str, str]] = []
        self.status_checks: list[str] = []

    async def create_job(self, spec: JobSpec) -> str:
        if self.fail_create:
            raise RuntimeError("case is closed")
        self.created.append(spec.name)
        return "search-1"

    async def create_dependent_job(self, parent_id: str, spec: DependentJobSpec) -> str:
        if self.fail_dependent:
            raise RuntimeError("export quota exceeded")
        self.dependents.append((parent_id, spec.export_format))
        return "export-1"

    async def get_status(self, job_id: str) -> str:
        self.status_checks.append(job_id)
        return self.statuses[job_id].pop(0)


def _orchestrator(api, sleeps, max_attempts=10):
    return JobOrchestrator(api, JobPoller(max_attempts=max_attempts, interval=1, sleep=sleeps))


PRIMARY = JobSpec(name="Mailbox sweep", parameters={"content_query": "invoice"})
EXPORT = DependentJobSpec(name="Mailbox sweep_Export", export_format="pst")


def test_both_stages_succeed_and_dependent_references_primary(sleeps):
    api = _FakeRemoteApi({
        "search-1": ["InProgress", "Completed"],
        "export-1": ["NotStarted", "InProgress", "Completed"],
    })

    outcome = asyncio.run(_orchestrator(api, sleeps).run(PRIMARY, EXPORT))

    assert outcome.succeeded
    assert outcome.failed_stage is None
    assert api.dependents == [("search-1", "pst")]
    assert outcome.dependent.job.parent_id == "search-1"
    assert outcome.dependent.job.kind == JobKind.DEPENDENT
    assert outcome.primary.job.status == JobStatus.COMPLETED
    assert api.status_checks == ["search-1"] * 2 + ["export-1"] * 3


def test_failed_primary_never_submits_dependent(sleeps):
    api = _FakeRemoteApi({"search-1": ["InProgress", "Failed"]})

    outcome = asyncio.run(_orchestrator(api, sleeps).run(PRIMARY, EXPORT))

    assert not outcome.succeeded
    assert outcome.failed_stage == JobKind.PRIMARY
    assert outcome.dependent is None
    assert api.dependents == []
    assert outcome.primary.error


def test_primary_timeout_is_reported_and_dependent_skipped(sleeps):
    api = _FakeRemoteApi({"search-1": ["InProgress"] * 5})

    outcome = asyncio.run(_orchestrator(api, sleeps, max_attempts=3).run(PRIMARY, EXPORT))

    assert outcome.failed_stage == JobKind.PRIMARY
    assert outcome.primary.poll is None
    assert "not terminal after 3 checks" in outcome.primary.error
    assert outcome.primary.job.status == JobStatus.IN_PROGRESS
    assert api.dependents == []


def test_failed_dependent_is_reported(sleeps):
    api = _FakeRemoteApi({"search-1": ["Completed"], "export-1": ["Failed"]})

    outcome = asyncio.run(_orchestrator(api, sleeps).run(PRIMARY, EXPORT))

    assert not outcome.succeeded
    assert outcome.failed_stage == JobKind.DEPENDENT
    assert outcome.primary.succeeded
    assert outcome.to_dict()["failed_stage"] == "dependent"


def test_primary_creation_error_aborts_before_polling(sleeps):
    api = _FakeRemoteApi({}, fail_create=True)

    with pytest.raises(JobSubmissionError) as excinfo:
        asyncio.run(_orchestrator(api, sleeps).run(PRIMARY, EXPORT))

    assert excinfo.value.stage == JobKind.PRIMARY
    assert "case is closed" in str(excinfo.value)
    assert api.status_checks == []


def test_dependent_creation_error_raises_submission_error(sleeps):
    api = _FakeRemoteApi({"search-1": ["Completed"]}, fail_dependent=True)

    with pytest.raises(JobSubmissionError) as excinfo:
        asyncio.run(_orchestrator(api, sleeps).run(PRIMARY, EXPORT))

    assert excinfo.value.stage == JobKind.DEPENDENT


def test_primary_only_run_without_dependent_spec(sleeps):
    api = _FakeRemoteApi({"search-1": ["Completed"]})

    outcome = asyncio.run(_orchestrator(api, sleeps).run(PRIMARY, None))

    assert outcome.succeeded
    assert outcome.dependent is None
    assert not outcome.dependent_requested
    assert api.dependents == []


def test_status_errors_propagate_out_of_the_run(sleeps):
    class _Broken(_FakeRemoteApi):
        async def get_status(self, job_id: str) -> str:
            raise PermissionError("403 Forbidden")

    api = _Broken({})
    with pytest.raises(PermissionError):
        asyncio.run(_orchestrator(api, sleeps).run(PRIMARY, EXPORT))
    assert api.dependents == []
