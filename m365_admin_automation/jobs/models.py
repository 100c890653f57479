"""
Job data models — remote job records, status classification, and poll outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    """Observed status of a remote job."""
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @classmethod
    def parse(cls, raw: Any) -> "JobStatus":
        """Map a vendor status value onto the enum. Unrecognised values are UNKNOWN."""
        if isinstance(raw, JobStatus):
            return raw
        if raw is None:
            return cls.UNKNOWN
        key = str(raw).strip().replace(" ", "").replace("_", "").lower()
        return _STATUS_ALIASES.get(key, cls.UNKNOWN)


# Graph caseOperationStatus, compliance search states and ARM provisioning states
_STATUS_ALIASES = {
    "notstarted": JobStatus.NOT_STARTED,
    "starting": JobStatus.NOT_STARTED,
    "queued": JobStatus.NOT_STARTED,
    "inprogress": JobStatus.IN_PROGRESS,
    "running": JobStatus.IN_PROGRESS,
    "accepted": JobStatus.IN_PROGRESS,
    "completed": JobStatus.COMPLETED,
    "succeeded": JobStatus.COMPLETED,
    "partiallysucceeded": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "submissionfailed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
}


class JobKind(str, Enum):
    PRIMARY = "primary"
    DEPENDENT = "dependent"


@dataclass
class JobSpec:
    """What to create for the primary stage."""
    name: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class DependentJobSpec:
    """What to create for the follow-on stage, e.g. an export in a given format."""
    name: str
    export_format: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class Job:
    """
    A remote, asynchronously-completing unit of work.
    Status is observed from the remote system, never decided locally.
    """
    job_id: str
    name: str
    kind: JobKind = JobKind.PRIMARY
    status: JobStatus = JobStatus.NOT_STARTED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    parent_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def observe(self, status: JobStatus):
        self.status = status

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "parent_id": self.parent_id,
        }


@dataclass(frozen=True)
class PollResult:
    """Snapshot of a job's status at one poll tick."""
    job_id: str
    status: JobStatus
    attempt: int
    observed_at: datetime


@dataclass
class PollOutcome:
    """Final result of polling one job to a terminal status."""
    job_id: str
    status: JobStatus
    attempts: int
    sleeps: int
    elapsed_seconds: float = 0.0
    history: list[PollResult] = field(default_factory=list)  # Most recent checks only

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED


# ─── Errors ──────────────────────────────────────────────────────────────────

class JobError(Exception):
    """Base class for job orchestration errors."""
    pass


class JobSubmissionError(JobError):
    """Raised when a remote job cannot be created or started."""
    def __init__(self, stage: JobKind, name: str, cause: Exception):
        self.stage = stage
        self.name = name
        self.cause = cause
        super().__init__(f"Could not submit {stage.value} job '{name}': {cause}")


class JobPollTimeout(JobError):
    """Raised when polling exhausts its attempt or time bound."""
    def __init__(self, job_id: str, attempts: int, last_status: JobStatus, elapsed: float):
        self.job_id = job_id
        self.attempts = attempts
        self.last_status = last_status
        self.elapsed = elapsed
        super().__init__(
            f"Job '{job_id}' not terminal after {attempts} checks "
            f"({elapsed:.0f}s); last status {last_status.value}"
        )
