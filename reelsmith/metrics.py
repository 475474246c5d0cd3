"""
Thread-safe in-memory metrics for the generation worker.

Tracks:
  - Backend latency: per video/text backend call duration samples
  - Outcomes: counters such as scenes.completed, backend.luma/dream-machine.failed
  - Saturation: gauges such as runs.active
  - Recent errors: ring buffer for root-cause analysis

Data is ephemeral (resets on restart); persisted run records in Supabase are
the durable history.
"""

import time
import threading
from typing import Dict, List
from collections import defaultdict

_lock = threading.Lock()

_counters: Dict[str, int] = defaultdict(int)

# ── Latency samples (last 100 per backend) ───────────────────────────────────
_latency_samples: Dict[str, List[float]] = defaultdict(list)
MAX_SAMPLES = 100

_gauges: Dict[str, float] = defaultdict(float)

# ── Error log (last 50) ──────────────────────────────────────────────────────
_recent_errors: List[dict] = []
MAX_ERRORS = 50


def inc_counter(name: str, amount: int = 1):
    with _lock:
        _counters[name] += amount


def record_latency(backend: str, duration_ms: float):
    with _lock:
        samples = _latency_samples[backend]
        samples.append(duration_ms)
        if len(samples) > MAX_SAMPLES:
            _latency_samples[backend] = samples[-MAX_SAMPLES:]


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def add_gauge(name: str, delta: float):
    with _lock:
        _gauges[name] += delta


def record_error(source: str, error_type: str, message: str, job_id: str = ""):
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "source": source,
            "error_type": error_type,
            "message": message[:300],
            "job_id": job_id,
        })
        if len(_recent_errors) > MAX_ERRORS:
            _recent_errors.pop(0)


def get_snapshot() -> dict:
    """Complete metrics snapshot for the /metrics endpoint."""
    now = time.time()

    with _lock:
        latency_stats = {}
        for backend, samples in _latency_samples.items():
            if not samples:
                continue
            sorted_s = sorted(samples)
            n = len(sorted_s)
            latency_stats[backend] = {
                "p50": sorted_s[n // 2],
                "p95": sorted_s[int(n * 0.95)] if n >= 20 else sorted_s[-1],
                "avg": sum(sorted_s) / n,
                "count": n,
            }

        completed = _counters.get("scenes.completed", 0)
        attempted = completed + _counters.get("scenes.failed", 0)
        scene_success_rate = (completed / attempted * 100) if attempted else 0

        error_patterns: Dict[str, int] = defaultdict(int)
        for err in _recent_errors:
            error_patterns[f"{err['source']}:{err['error_type']}"] += 1

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": latency_stats,
            "scene_success_rate": round(scene_success_rate, 2),
            "recent_errors": list(_recent_errors[-10:]),
            "error_patterns": dict(error_patterns),
            "uptime_seconds": now - _gauges.get("start_time", now),
        }


def reset():
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _gauges.clear()
        _recent_errors.clear()
