"""
Job Poller — waits for a remote job to reach a terminal status.

One status check per tick; one sleep after every non-terminal status. Failed
returns immediately. The attempt bound is an explicit constructor argument:
pass ``max_attempts=None`` to poll until the remote side reports a terminal
status. Only the most recent ``history_limit`` checks are kept on the outcome.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from ..config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    BACKOFF_MULTIPLIER,
    MAX_BACKOFF_SECONDS,
    POLL_HISTORY_LIMIT,
    PollingConfig,
)
from .models import JobPollTimeout, JobStatus, PollOutcome, PollResult

logger = logging.getLogger("m365_admin_automation.jobs.poller")

StatusAccessor = Callable[[str], Union[Awaitable[Any], Any]]


class JobPoller:

    def __init__(
        self,
        *,
        max_attempts: Optional[int],
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: Optional[float] = None,
        status_retries: int = 0,
        retry_backoff: float = 5.0,
        retry_on: tuple[type[BaseException], ...] = (httpx.TransportError,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        history_limit: int = POLL_HISTORY_LIMIT,
    ):
        if interval <= 0:
            raise ValueError("Poll interval must be positive.")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1 (or None for no bound).")
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1.")
        self.max_attempts = max_attempts
        self.interval = interval
        self.timeout_seconds = timeout_seconds
        self.status_retries = status_retries
        self.retry_backoff = retry_backoff
        self.retry_on = retry_on
        self._sleep = sleep
        self._clock = clock
        self.history_limit = history_limit

    @classmethod
    def from_config(cls, config: PollingConfig, **kwargs) -> "JobPoller":
        return cls(
            max_attempts=config.max_attempts,
            interval=config.interval_seconds,
            timeout_seconds=config.timeout_seconds,
            status_retries=config.status_retries,
            retry_backoff=config.status_retry_backoff_seconds,
            **kwargs,
        )

    async def poll(self, job_id: str, get_status: StatusAccessor) -> PollOutcome:
        """
        Poll ``get_status(job_id)`` until Completed or Failed.
        Raises JobPollTimeout when the bound is exhausted; accessor errors propagate.
        """
        started = self._clock()
        history: deque[PollResult] = deque(maxlen=self.history_limit)
        attempts = 0
        sleeps = 0

        while True:
            attempts += 1
            status = JobStatus.parse(await self._check(job_id, get_status))
            history.append(PollResult(
                job_id=job_id,
                status=status,
                attempt=attempts,
                observed_at=datetime.now(timezone.utc),
            ))
            elapsed = self._clock() - started
            logger.info(f"[{job_id}] check {attempts}: {status.value} ({elapsed:.0f}s)")

            if status.is_terminal:
                return PollOutcome(
                    job_id=job_id,
                    status=status,
                    attempts=attempts,
                    sleeps=sleeps,
                    elapsed_seconds=elapsed,
                    history=list(history),
                )

            if self.max_attempts is not None and attempts >= self.max_attempts:
                raise JobPollTimeout(job_id, attempts, status, elapsed)
            if self.timeout_seconds is not None and elapsed + self.interval > self.timeout_seconds:
                raise JobPollTimeout(job_id, attempts, status, elapsed)

            await self._sleep(self.interval)
            sleeps += 1

    async def _check(self, job_id: str, get_status: StatusAccessor) -> Any:
        """One status check, with optional bounded retry of transient errors."""
        backoff = self.retry_backoff
        for retry in range(self.status_retries + 1):
            try:
                result = get_status(job_id)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except self.retry_on as e:
                if retry == self.status_retries:
                    raise
                logger.warning(
                    f"[{job_id}] status check failed ({type(e).__name__}: {e}); "
                    f"retry {retry + 1}/{self.status_retries} in {backoff:.1f}s"
                )
                await self._sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
