"""
Per-backend circuit breaker.

A backend is excluded from routing once it accumulates `failure_threshold`
consecutive failures, and readmitted automatically `reset_timeout` seconds
after its last failure. A success at any point clears its record. There is
no separate half-open trial call: the first call after the timeout is a normal
attempt.
"""

import time
import threading
import logging
from typing import Callable, Dict

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT = 60  # seconds


class CircuitRecord(BaseModel):
    count: int = 0
    last_failure: float = 0.0


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: Dict[str, CircuitRecord] = {}

    def can_execute(self, model: str) -> bool:
        with self._lock:
            record = self._failures.get(model)
            if record is None:
                return True
            if self._clock() - record.last_failure >= self.reset_timeout:
                del self._failures[model]
                logger.info(f"Circuit for {model} closed after reset timeout")
                return True
            return record.count < self.failure_threshold

    def record_success(self, model: str):
        with self._lock:
            self._failures.pop(model, None)

    def record_failure(self, model: str) -> int:
        """Returns the new consecutive-failure count."""
        with self._lock:
            record = self._failures.setdefault(model, CircuitRecord())
            record.count += 1
            record.last_failure = self._clock()
            count = record.count

        if count == self.failure_threshold:
            logger.warning(f"Circuit for {model} opened after {count} consecutive failures")
        return count

    def get_status(self, model: str) -> str:
        """closed, degraded (failures below threshold) or open."""
        if not self.can_execute(model):
            return "open"
        with self._lock:
            return "degraded" if model in self._failures else "closed"

    def snapshot(self) -> dict:
        with self._lock:
            return {model: record.model_dump() for model, record in self._failures.items()}
