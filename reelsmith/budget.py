"""
Budget & Rate Governor.

Tracks cumulative spend against a hard ceiling and enforces per-service
request-rate windows. One governor is shared by every run in the process;
all mutations happen under a lock so worker threads can share it too.

Spend is checked twice:
  - before a run, against an itemized estimate (estimate_cost / within_ceiling)
  - after each paid call, in track(), which raises once the ceiling is crossed.
    External spend cannot be undone, so the estimate is what keeps this rare.
"""

import math
import threading
import logging
from typing import Optional

from pydantic import BaseModel

from .errors import BudgetExceededError
from .fallback_limiter import InMemoryRateLimiter

logger = logging.getLogger(__name__)

# ── Configuration ────────────────────────────────────────────────────────────

MAX_BUDGET = 5.0  # USD

TEXT_COST_PER_1K_TOKENS = {
    "gpt-4o-mini": 0.00015,
    "gpt-4o": 0.0025,
    "gpt-4": 0.03,
}
DEFAULT_TEXT_COST_PER_1K = TEXT_COST_PER_1K_TOKENS["gpt-4o-mini"]
ESTIMATED_TOKENS_PER_SCENE = 500

VIDEO_COST_PER_SECOND = {
    "google/veo-3.1-fast": 0.015,
    "luma/dream-machine": 0.01,
    "stability-ai/svd": 0.008,
    "anotherjesse/zeroscope-v2-xl": 0.007,
}
# Unknown backends are priced like the cheapest one
FALLBACK_COST_MODEL = "anotherjesse/zeroscope-v2-xl"

RATE_LIMITS = {
    "openai": {"requests_per_minute": 60, "requests_per_hour": 5000},
    "replicate": {"requests_per_minute": 10, "requests_per_hour": 500},
}


class CostEstimate(BaseModel):
    video: float
    text: float
    total: float
    scenes: int
    model: str
    text_model: str


class BudgetStatus(BaseModel):
    current: float
    max: float
    remaining: float
    percentage: float


class RateDecision(BaseModel):
    allowed: bool
    reason: str = ""
    retry_after: int = 0
    remaining: int = 0


def _windows(limits: dict) -> list:
    return [
        (limits["requests_per_minute"], 60, "minute"),
        (limits["requests_per_hour"], 3600, "hour"),
    ]


class BudgetGovernor:
    """
    Usage:
        governor = BudgetGovernor()
        estimate = governor.estimate_cost(120, 6, "google/veo-3.1-fast")
        if not governor.within_ceiling(estimate): ...
        decision = governor.check_rate("openai", "api")
        governor.track("openai", 0.0004)
    """

    def __init__(self, max_budget: float = MAX_BUDGET, rate_limiter=None, rate_limits: Optional[dict] = None):
        self.max_budget = max_budget
        self.rate_limits = rate_limits or RATE_LIMITS
        self._limiter = rate_limiter or InMemoryRateLimiter()
        self._lock = threading.Lock()
        self._current_cost = 0.0

    # ── Cost model ───────────────────────────────────────────────────────

    @staticmethod
    def video_cost_per_second(model_name: str) -> float:
        return VIDEO_COST_PER_SECOND.get(model_name, VIDEO_COST_PER_SECOND[FALLBACK_COST_MODEL])

    @staticmethod
    def text_cost(tokens: int, text_model: str) -> float:
        rate = TEXT_COST_PER_1K_TOKENS.get(text_model, DEFAULT_TEXT_COST_PER_1K)
        return (tokens / 1000) * rate

    def estimate_cost(
        self,
        total_duration: float,
        scene_duration: float,
        model_name: str,
        text_model: str = "gpt-4o-mini",
        billed_scene_duration: Optional[float] = None,
    ) -> CostEstimate:
        """
        Itemized projection for a whole run.

        `billed_scene_duration` is what the backend will actually render per
        scene (after clamping); the scene count still follows `scene_duration`.
        """
        scenes = max(1, math.ceil(total_duration / scene_duration))
        per_scene = billed_scene_duration if billed_scene_duration is not None else scene_duration
        video = scenes * per_scene * self.video_cost_per_second(model_name)
        text = self.text_cost(scenes * ESTIMATED_TOKENS_PER_SCENE, text_model)
        return CostEstimate(
            video=video,
            text=text,
            total=video + text,
            scenes=scenes,
            model=model_name,
            text_model=text_model,
        )

    def within_ceiling(self, estimate: CostEstimate) -> bool:
        return estimate.total <= self.max_budget

    # ── Spend tracking ───────────────────────────────────────────────────

    def remaining(self) -> float:
        with self._lock:
            return self.max_budget - self._current_cost

    def track(self, service: str, cost: float) -> float:
        """Add real spend. Raises BudgetExceededError once the ceiling is crossed."""
        with self._lock:
            self._current_cost += cost
            current = self._current_cost

        logger.info(f"Tracked ${cost:.4f} for {service} (total ${current:.4f} / ${self.max_budget})")
        if current > self.max_budget:
            raise BudgetExceededError(
                f"Budget exceeded! Current cost: ${current:.4f}, Max: ${self.max_budget}",
                status=self.get_status().model_dump(),
            )
        return current

    def track_text(self, tokens: int, text_model: str = "gpt-4o-mini") -> float:
        return self.track("openai", self.text_cost(tokens, text_model))

    def track_video(self, duration: float, model_name: str) -> float:
        return self.track("replicate", duration * self.video_cost_per_second(model_name))

    def get_status(self) -> BudgetStatus:
        with self._lock:
            current = self._current_cost
        return BudgetStatus(
            current=current,
            max=self.max_budget,
            remaining=self.max_budget - current,
            percentage=(current / self.max_budget) * 100 if self.max_budget else 100.0,
        )

    # ── Rate limiting ────────────────────────────────────────────────────

    def check_rate(self, service: str, key: str = "default") -> RateDecision:
        """
        Sliding-window check for one call. Allowed calls are recorded;
        denied calls are not.
        """
        limits = self.rate_limits.get(service)
        if not limits:
            return RateDecision(allowed=True)

        allowed, remaining, retry_after, window = self._limiter.check_rate_limit(
            f"{service}:{key}", _windows(limits)
        )
        if allowed:
            return RateDecision(allowed=True, remaining=remaining)

        per = "requests_per_minute" if window == "minute" else "requests_per_hour"
        reason = f"Rate limit exceeded: {limits[per]} requests per {window}"
        logger.warning(f"{service}/{key}: {reason} (retry after {retry_after}s)")
        return RateDecision(allowed=False, reason=reason, retry_after=retry_after)

    def reset(self):
        """Clear spend and rate windows (new billing period or tests)."""
        with self._lock:
            self._current_cost = 0.0
        if hasattr(self._limiter, "reset"):
            self._limiter.reset()
