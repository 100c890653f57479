"""
Job Orchestrator — runs a primary remote job and, if it completes, a dependent one.

    submit primary → poll → submit dependent(parent id) → poll → outcome

A primary that fails or times out ends the run; the dependent job is never
submitted. Nothing is rolled back on partial failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .models import (
    DependentJobSpec,
    Job,
    JobKind,
    JobPollTimeout,
    JobSpec,
    JobStatus,
    JobSubmissionError,
    PollOutcome,
)
from .poller import JobPoller

logger = logging.getLogger("m365_admin_automation.jobs.orchestrator")


class RemoteJobApi(Protocol):
    """Capabilities the orchestrator needs from a remote admin API."""

    async def create_job(self, spec: JobSpec) -> str: ...

    async def get_status(self, job_id: str) -> Any: ...

    async def create_dependent_job(self, parent_id: str, spec: DependentJobSpec) -> str: ...


@dataclass
class StageOutcome:
    """Result of one stage: the job, how polling ended, and any bound error."""
    job: Job
    poll: Optional[PollOutcome] = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.poll is not None and self.poll.succeeded

    def to_dict(self) -> dict:
        return {
            "job": self.job.to_dict(),
            "succeeded": self.succeeded,
            "status_checks": self.poll.attempts if self.poll else None,
            "elapsed_seconds": round(self.poll.elapsed_seconds, 1) if self.poll else None,
            "error": self.error,
        }


@dataclass
class OrchestrationOutcome:
    """Composite outcome of a primary + dependent run."""
    primary: StageOutcome
    dependent: Optional[StageOutcome] = None
    dependent_requested: bool = True

    @property
    def succeeded(self) -> bool:
        if not self.primary.succeeded:
            return False
        if not self.dependent_requested:
            return True
        return self.dependent is not None and self.dependent.succeeded

    @property
    def failed_stage(self) -> Optional[JobKind]:
        if not self.primary.succeeded:
            return JobKind.PRIMARY
        if self.dependent_requested and not (self.dependent and self.dependent.succeeded):
            return JobKind.DEPENDENT
        return None

    def to_dict(self) -> dict:
        stage = self.failed_stage
        return {
            "succeeded": self.succeeded,
            "failed_stage": stage.value if stage else None,
            "primary": self.primary.to_dict(),
            "dependent": self.dependent.to_dict() if self.dependent else None,
        }


class JobOrchestrator:

    def __init__(self, api: RemoteJobApi, poller: JobPoller):
        self.api = api
        self.poller = poller

    async def run(
        self,
        primary_spec: JobSpec,
        dependent_spec: Optional[DependentJobSpec] = None,
    ) -> OrchestrationOutcome:
        """Run both stages in order. Submission errors raise JobSubmissionError."""
        primary = await self.submit(primary_spec)
        primary_stage = await self._await_stage(primary)

        if not primary_stage.succeeded:
            logger.error(
                f"Primary job '{primary.name}' ended {primary.status.value}; "
                f"dependent stage skipped."
            )
            return OrchestrationOutcome(
                primary=primary_stage,
                dependent_requested=dependent_spec is not None,
            )

        if dependent_spec is None:
            return OrchestrationOutcome(primary=primary_stage, dependent_requested=False)

        dependent = await self.submit_dependent(primary, dependent_spec)
        dependent_stage = await self._await_stage(dependent)
        if not dependent_stage.succeeded:
            logger.error(f"Dependent job '{dependent.name}' ended {dependent.status.value}.")
        return OrchestrationOutcome(primary=primary_stage, dependent=dependent_stage)

    async def submit(self, spec: JobSpec) -> Job:
        logger.info(f"Submitting primary job '{spec.name}'...")
        try:
            job_id = await self.api.create_job(spec)
        except Exception as e:
            raise JobSubmissionError(JobKind.PRIMARY, spec.name, e) from e
        logger.info(f"Primary job '{spec.name}' submitted as {job_id}")
        return Job(job_id=job_id, name=spec.name, kind=JobKind.PRIMARY)

    async def submit_dependent(self, parent: Job, spec: DependentJobSpec) -> Job:
        logger.info(f"Submitting dependent job '{spec.name}' for {parent.job_id}...")
        try:
            job_id = await self.api.create_dependent_job(parent.job_id, spec)
        except Exception as e:
            raise JobSubmissionError(JobKind.DEPENDENT, spec.name, e) from e
        logger.info(f"Dependent job '{spec.name}' submitted as {job_id}")
        return Job(job_id=job_id, name=spec.name, kind=JobKind.DEPENDENT, parent_id=parent.job_id)

    async def _await_stage(self, job: Job) -> StageOutcome:
        try:
            outcome = await self.poller.poll(job.job_id, self.api.get_status)
        except JobPollTimeout as e:
            logger.error(str(e))
            job.observe(e.last_status)
            return StageOutcome(job=job, error=str(e))
        job.observe(outcome.status)
        if outcome.status == JobStatus.FAILED:
            return StageOutcome(job=job, poll=outcome, error="Remote job reported Failed")
        return StageOutcome(job=job, poll=outcome)
