"""Jobs package — remote job polling, dependent-job orchestration, and fan-out."""

from .models import (
    DependentJobSpec,
    Job,
    JobError,
    JobKind,
    JobPollTimeout,
    JobSpec,
    JobStatus,
    JobSubmissionError,
    PollOutcome,
    PollResult,
)
from .poller import JobPoller
from .orchestrator import JobOrchestrator, OrchestrationOutcome, RemoteJobApi, StageOutcome
from .fanout import BatchSummary, ItemResult, run_for_each

__all__ = [
    "DependentJobSpec",
    "Job",
    "JobError",
    "JobKind",
    "JobPollTimeout",
    "JobSpec",
    "JobStatus",
    "JobSubmissionError",
    "PollOutcome",
    "PollResult",
    "JobPoller",
    "JobOrchestrator",
    "OrchestrationOutcome",
    "RemoteJobApi",
    "StageOutcome",
    "BatchSummary",
    "ItemResult",
    "run_for_each",
]
