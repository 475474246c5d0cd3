"""
Video backend registry.

Each backend declares its cost, duration rules and how to build its input
payload. Outputs come back in different shapes (list, object, bare string);
extract_clip_url() normalizes all of them to one clip URL or raises.
"""

import re
import math
import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..budget import VIDEO_COST_PER_SECOND
from ..errors import BackendFailure, RateLimitedError, ReelsmithError, ResponseDecodeError

MIN_DURATION = 4
MAX_DURATION = 30
DEFAULT_FPS = 24
ASPECT_RATIO = "16:9"

DEFAULT_MODEL_CHAIN = [
    "google/veo-3.1-fast",
    "luma/dream-machine",
    "stability-ai/svd",
    "anotherjesse/zeroscope-v2-xl",
]

# Object keys that may carry the clip URL, in lookup order
URL_KEYS = ("video", "url", "output")


@dataclass(frozen=True)
class VideoBackend:
    id: str
    name: str
    cost_per_second: float
    build_input: Callable[[dict], dict]
    min_duration: float = MIN_DURATION
    max_duration: float = MAX_DURATION
    allowed_durations: Optional[tuple] = None
    enabled: bool = True

    def clamp_duration(self, requested: float) -> float:
        """
        Clamp to the supported range; with a discrete set, snap to the
        nearest allowed value (ties go to the smaller one).
        """
        if self.allowed_durations:
            options = sorted(self.allowed_durations)
            return min(options, key=lambda d: (abs(d - requested), d))
        return min(max(requested, self.min_duration), self.max_duration)

    def payload(self, prompt: str, duration: float, fps: int = DEFAULT_FPS,
                aspect_ratio: str = ASPECT_RATIO) -> dict:
        return self.build_input({
            "prompt": prompt,
            "duration": duration,
            "fps": fps,
            "aspect_ratio": aspect_ratio,
        })


def _veo_input(p: dict) -> dict:
    return {
        "prompt": p["prompt"],
        "duration": int(p["duration"]),
        "aspect_ratio": p["aspect_ratio"],
    }


def _luma_input(p: dict) -> dict:
    return {
        "prompt": p["prompt"],
        "duration": p["duration"],
        "style": "realistic",
        "fps": p["fps"],
    }


def _frames_input(p: dict) -> dict:
    return {
        "prompt": p["prompt"],
        "num_frames": math.floor(p["duration"] * p["fps"]),
        "fps": p["fps"],
    }


VIDEO_BACKENDS: dict[str, VideoBackend] = {
    "google/veo-3.1-fast": VideoBackend(
        id="google/veo-3.1-fast",
        name="Google Veo 3.1 Fast",
        cost_per_second=VIDEO_COST_PER_SECOND["google/veo-3.1-fast"],
        build_input=_veo_input,
        max_duration=8,
        allowed_durations=(4, 6, 8),
    ),
    "luma/dream-machine": VideoBackend(
        id="luma/dream-machine",
        name="Luma Dream Machine",
        cost_per_second=VIDEO_COST_PER_SECOND["luma/dream-machine"],
        build_input=_luma_input,
    ),
    "stability-ai/svd": VideoBackend(
        id="stability-ai/svd",
        name="Stable Video Diffusion",
        cost_per_second=VIDEO_COST_PER_SECOND["stability-ai/svd"],
        build_input=_frames_input,
    ),
    "anotherjesse/zeroscope-v2-xl": VideoBackend(
        id="anotherjesse/zeroscope-v2-xl",
        name="Zeroscope v2 XL",
        cost_per_second=VIDEO_COST_PER_SECOND["anotherjesse/zeroscope-v2-xl"],
        build_input=_frames_input,
    ),
}


def get_backend(model_id: str, registry: Optional[dict] = None) -> Optional[VideoBackend]:
    return (registry if registry is not None else VIDEO_BACKENDS).get(model_id)


def enabled_chain(model_chain: Optional[list[str]], registry: Optional[dict] = None) -> list[VideoBackend]:
    """Resolve a chain of ids to enabled backends, preserving order."""
    chain = []
    for model_id in model_chain or DEFAULT_MODEL_CHAIN:
        backend = get_backend(model_id, registry)
        if backend and backend.enabled:
            chain.append(backend)
    return chain


def extract_clip_url(output: Any, model_id: str = "") -> str:
    """
    Normalize a backend output to a single clip URL.

      list   → first element (recursively normalized)
      dict   → first non-empty of video / url / output
      str    → itself
    """
    candidate = output
    if isinstance(candidate, (list, tuple)):
        if not candidate:
            raise ResponseDecodeError(f"Empty output list from {model_id}", model=model_id)
        candidate = candidate[0]
    if isinstance(candidate, dict):
        found = next((candidate[k] for k in URL_KEYS if candidate.get(k)), None)
        if found is None:
            raise ResponseDecodeError(
                f"No clip URL in output from {model_id} (keys: {sorted(candidate)})",
                model=model_id,
            )
        candidate = found[0] if isinstance(found, (list, tuple)) and found else found

    if not isinstance(candidate, str) or not candidate.startswith(("http://", "https://")):
        raise ResponseDecodeError(f"Invalid video URL from {model_id}: {str(candidate)[:100]}", model=model_id)
    return candidate


# ── Failure classification ───────────────────────────────────────────────────

_RETRY_AFTER_PATTERNS = (
    re.compile(r"retry[\s_-]*after\D{0,5}?(\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"available in\s+~?(\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
    re.compile(r"resets? in\s+~?(\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
)
_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate-limit", "ratelimit", "too many requests", "throttled")
_PAYMENT_MARKERS = ("402", "insufficient credit", "payment required", "billing", "out of credit")

DEFAULT_RETRY_AFTER = 10


def parse_retry_after(text: str) -> Optional[int]:
    """Pull a retry-after hint (seconds) out of an error message."""
    for pattern in _RETRY_AFTER_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return math.ceil(float(match.group(1)))
    return None


def classify_failure(exc: BaseException, model_id: str) -> ReelsmithError:
    """
    Map a raw backend exception to a typed error with actionable text.
    Already-typed errors pass through unchanged.
    """
    if isinstance(exc, (BackendFailure, RateLimitedError)):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return BackendFailure(f"Model {model_id} timed out", model=model_id, kind=BackendFailure.TIMEOUT)

    message = str(exc) or type(exc).__name__
    lowered = message.lower()

    if any(marker in lowered for marker in _PAYMENT_MARKERS):
        return BackendFailure(
            f"{model_id}: account is out of credit. Add billing credit at the provider and retry. ({message[:200]})",
            model=model_id,
            kind=BackendFailure.PAYMENT_REQUIRED,
        )
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        retry_after = parse_retry_after(message) or DEFAULT_RETRY_AFTER
        return RateLimitedError(
            f"{model_id}: rate limited by provider, retry after {retry_after}s",
            service=model_id,
            retry_after=retry_after,
        )
    return BackendFailure(f"{model_id}: {message[:300]}", model=model_id, kind=BackendFailure.REMOTE_ERROR)
