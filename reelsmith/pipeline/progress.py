"""
Progress Tracker — per-run progress events and failure bookkeeping.
"""

import time
import logging
from typing import Callable, Optional

from .models import FailureRecord, ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)

# Statuses that finalize a scene slot
_FINAL = {ProgressStatus.COMPLETED, ProgressStatus.FAILED, ProgressStatus.ABORTED}


class ProgressTracker:
    def __init__(
        self,
        total_scenes: int,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        job_id: str = "",
        clock=time.monotonic,
    ):
        self.total_scenes = total_scenes
        self.on_progress = on_progress
        self.job_id = job_id
        self._clock = clock
        self.start_time = clock()
        self.completed: set[int] = set()
        self.aborted: set[int] = set()
        self.failed: set[int] = set()
        self.failures: list[FailureRecord] = []
        self.scene_times_ms: list[float] = []

    def _elapsed_ms(self) -> float:
        return (self._clock() - self.start_time) * 1000

    def notify(self, scene: int, status: ProgressStatus, **data) -> ProgressEvent:
        """Record a transition and forward it to the callback, if any."""
        if status == ProgressStatus.COMPLETED:
            self.completed.add(scene)
            if data.get("total_time_ms") is not None:
                self.scene_times_ms.append(data["total_time_ms"])
        elif status == ProgressStatus.ABORTED:
            self.aborted.add(scene)
        elif status == ProgressStatus.FAILED:
            self.failed.add(scene)

        finalized = len(self.completed | self.aborted | self.failed)
        percentage = round(min(finalized, self.total_scenes) / self.total_scenes * 100) if self.total_scenes else 100

        event = ProgressEvent(
            scene=scene,
            total=self.total_scenes,
            percentage=percentage,
            elapsed_ms=self._elapsed_ms(),
            status=status,
            data=data,
        )
        logger.info(f"[{self.job_id}] Scene {scene}/{self.total_scenes}: {status.value} ({percentage}%)")

        if self.on_progress:
            try:
                self.on_progress(event)
            except Exception as e:
                logger.error(f"[{self.job_id}] Progress callback raised: {e}", exc_info=True)
        return event

    def add_failure(self, scene: int, error: str) -> FailureRecord:
        record = FailureRecord(scene=scene, error=error, timestamp=time.time())
        self.failures.append(record)
        return record

    def get_summary(self) -> dict:
        total_time_ms = self._elapsed_ms()
        completed = len(self.completed)
        failed_scenes = sorted(self.failed | {f.scene for f in self.failures})
        return {
            "total": self.total_scenes,
            "completed": completed,
            "failed": len(failed_scenes),
            "aborted": len(self.aborted),
            "failed_scenes": failed_scenes,
            "success_rate": (completed / self.total_scenes) * 100 if self.total_scenes else 0.0,
            "total_time_ms": total_time_ms,
            "avg_scene_time_ms": (
                sum(self.scene_times_ms) / len(self.scene_times_ms) if self.scene_times_ms else 0.0
            ),
        }
