"""
In-memory sliding-window rate limiter.

Used when Redis is unreachable (and in tests). Each key keeps a list of
request timestamps; every configured window is enforced independently and
timestamps are evicted once they fall outside the longest window.

State is process-local: a worker restart forgets all recorded requests.
"""

import time
import threading
from typing import Callable, Dict, List, Sequence, Tuple

# (max_requests, window_seconds, label)
Window = Tuple[int, int, str]


class InMemoryRateLimiter:
    """Thread-safe sliding-window limiter keyed by arbitrary strings."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._request_log: Dict[str, List[float]] = {}

    def check_rate_limit(self, key: str, windows: Sequence[Window]) -> Tuple[bool, int, int, str]:
        """
        Check and record a request for the given key.

        Returns:
            (allowed, remaining, retry_after_seconds, violated_window_label)
            - remaining: requests left in the tightest window after this one
            - retry_after: seconds until the oldest entry of the violated
              window ages out (0 if allowed)
        """
        if not windows:
            return True, 0, 0, ""

        now = self._clock()
        longest = max(w[1] for w in windows)

        with self._lock:
            timestamps = [ts for ts in self._request_log.get(key, []) if now - ts < longest]
            remaining = None

            for max_requests, window_seconds, label in sorted(windows, key=lambda w: w[1]):
                in_window = [ts for ts in timestamps if now - ts < window_seconds]
                if len(in_window) >= max_requests:
                    oldest = in_window[0]
                    retry_after = max(1, window_seconds - int(now - oldest))
                    self._request_log[key] = timestamps
                    return False, 0, retry_after, label
                left = max_requests - len(in_window) - 1
                remaining = left if remaining is None else min(remaining, left)

            timestamps.append(now)
            self._request_log[key] = timestamps
            return True, remaining or 0, 0, ""

    def cleanup_expired(self, max_window_seconds: int = 3600):
        """
        Drop keys whose timestamps have all aged out.
        Call periodically to keep memory bounded.
        """
        now = self._clock()
        with self._lock:
            expired = []
            for key, timestamps in self._request_log.items():
                self._request_log[key] = [ts for ts in timestamps if now - ts < max_window_seconds]
                if not self._request_log[key]:
                    expired.append(key)
            for key in expired:
                del self._request_log[key]

    def reset(self):
        with self._lock:
            self._request_log.clear()
