"""
Polling of long-running recognition jobs.

:class:`PollingScheduler` owns the job state machine::

    SUBMITTED -> RUNNING -> DONE | FAILED
                 RUNNING -> TIMED_OUT   (local wait budget exhausted)

Terminal states are sticky.  ``TIMED_OUT`` only means this process stopped
waiting; the recogniser may still finish the job.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

from .errors import JobTimeoutError, UpstreamRecognitionError, ValidationError
from .models import JobState, OperationStatus, TranscriptionJob

logger = logging.getLogger(__name__)

StatusFetcher = Callable[[str], OperationStatus]


class PollingScheduler:
    def __init__(
        self,
        *,
        interval_seconds: float = 5.0,
        timeout_seconds: float = 540.0,
        backoff: float = 1.0,
        max_interval_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.backoff = max(backoff, 1.0)
        self.max_interval_seconds = max(max_interval_seconds, interval_seconds)
        self._sleep = sleep
        self._clock = clock

    def observe(self, job: TranscriptionJob, status: OperationStatus) -> bool:
        """Apply one status snapshot to ``job``.

        Returns ``True`` once the job is done.

        Raises:
            UpstreamRecognitionError: If the recogniser reported a failure.
        """
        if not status.done:
            job.advance(JobState.RUNNING)
            return False
        if status.failed:
            job.advance(JobState.FAILED)
            logger.warning(
                json.dumps(
                    {
                        "event": "failed",
                        "job_id": job.id,
                        "code": status.error_code,
                        "message": status.error_message,
                    }
                )
            )
            raise UpstreamRecognitionError(
                status.error_message or "Recognition failed", code=status.error_code
            )
        job.advance(JobState.DONE)
        logger.info(json.dumps({"event": "done", "job_id": job.id}))
        return True

    def wait(self, job: TranscriptionJob, fetch_status: StatusFetcher) -> OperationStatus:
        """Block until ``job`` is done, failed or out of time.

        Returns:
            The final status snapshot of a successfully completed job.

        Raises:
            ValidationError: If the job is already in a terminal state.
            UpstreamRecognitionError: If the recogniser reported a failure.
            JobTimeoutError: If the wait budget ran out first.
        """
        if job.state.is_terminal:
            raise ValidationError(f"Job {job.id} is already {job.state.value}")

        started = self._clock()
        delay = self.interval_seconds
        polls = 0
        while True:
            status = fetch_status(job.id)
            polls += 1
            if self.observe(job, status):
                return status

            elapsed = self._clock() - started
            remaining = self.timeout_seconds - elapsed
            logger.info(
                json.dumps(
                    {
                        "event": "poll",
                        "job_id": job.id,
                        "poll": polls,
                        "progress": status.progress_percent,
                        "elapsed": round(elapsed, 1),
                    }
                )
            )
            if remaining <= 0:
                job.advance(JobState.TIMED_OUT)
                logger.warning(json.dumps({"event": "timeout", "job_id": job.id, "polls": polls}))
                raise JobTimeoutError(
                    f"Job {job.id} did not finish within {self.timeout_seconds:g} seconds; "
                    "it may still complete upstream"
                )
            self._sleep(min(delay, remaining))
            delay = min(delay * self.backoff, self.max_interval_seconds)
