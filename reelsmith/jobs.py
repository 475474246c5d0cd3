"""
Generation job registry and cooperative cancellation.

Every run registers a job id and receives a CancellationToken. The abort
endpoint trips the token; the orchestrator and every stage check it at
their suspension points (before a scene starts, before each backend
attempt, during any delay). Remote calls already in flight are not killed;
their results are discarded.

Terminal jobs are swept after a retention window by run_cleanup_loop().
"""

import time
import asyncio
import logging
import threading
from typing import Dict, Optional

from .errors import AbortedError, ValidationError

logger = logging.getLogger(__name__)

JOB_RETENTION_SECONDS = 60 * 60  # 1 hour
CLEANUP_INTERVAL_SECONDS = 10 * 60


class CancellationToken:
    """Cancellation context threaded through a run."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise AbortedError()

    async def wait(self):
        await self._event.wait()

    async def sleep(self, seconds: float):
        """Delay that ends early, with AbortedError, if the token trips."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise AbortedError()


class JobRegistry:
    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: Dict[str, dict] = {}

    def create(self, job_id: str, movie_id: Optional[str] = None) -> CancellationToken:
        """Register a job. A job id that is still running cannot be reused."""
        token = CancellationToken()
        with self._lock:
            existing = self._jobs.get(job_id)
            if existing and existing["status"] == "running":
                raise ValidationError(f"Job {job_id} is already running")
            self._jobs[job_id] = {
                "token": token,
                "start_time": self._clock(),
                "movie_id": movie_id,
                "status": "running",
            }
        logger.info(f"[{job_id}] Job registered")
        return token

    def signal(self, job_id: str) -> Optional[CancellationToken]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job["token"] if job else None

    def abort(self, job_id: str) -> bool:
        """Trip the job's token. False if unknown or no longer running."""
        with self._lock:
            job = self._jobs.get(job_id)
            if not job or job["status"] != "running":
                return False
            job["status"] = "aborted"
            job["aborted_at"] = self._clock()
            token = job["token"]
        token.cancel()
        logger.warning(f"[{job_id}] Job aborted")
        return True

    def complete(self, job_id: str, token: Optional[CancellationToken] = None):
        """Mark a job finished. With a token, only the run that owns it is touched."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job and (token is None or job["token"] is token):
                if job["status"] == "running":
                    job["status"] = "completed"
                job["completed_at"] = self._clock()

    def get_status(self, job_id: str) -> Optional[dict]:
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None
            return {
                "job_id": job_id,
                "status": job["status"],
                "start_time": job["start_time"],
                "movie_id": job["movie_id"],
                "elapsed": self._clock() - job["start_time"],
            }

    def cleanup(self, older_than: float = JOB_RETENTION_SECONDS) -> int:
        """Remove terminal jobs finished more than `older_than` seconds ago."""
        now = self._clock()
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job["status"] != "running"
                and now - (job.get("completed_at") or job.get("aborted_at") or job["start_time"]) > older_than
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info(f"Swept {len(expired)} finished job(s)")
        return len(expired)

    async def run_cleanup_loop(self, interval: float = CLEANUP_INTERVAL_SECONDS):
        while True:
            await asyncio.sleep(interval)
            self.cleanup()
