"""
Video Stage — generate one clip, falling back through the backend chain.

Per backend, in chain order:
  1. skip if its circuit is open
  2. clamp / snap the requested duration to what the backend supports
  3. skip if the remaining budget cannot cover duration × cost_per_second
  4. per attempt: move on if the rate governor denies the call
  5. call it under a wall-clock timeout
  6. normalize the output to a clip URL
  7. success → close circuit, track spend, return
  8. failure → record in the breaker; provider rate limits are retried on the
     same backend after the hinted delay, until the breaker has seen two
     consecutive failures or the retry allowance runs out

The breaker cutoff binds first: with MOVE_ON_AFTER_FAILURES = 2 a backend
gets at most one rate-limit retry, so max_rate_limit_retries only matters
when set to 0 (no retries) or when the cutoff is raised.
"""

import time
import asyncio
import logging
from typing import Optional

from .. import metrics
from ..budget import BudgetGovernor
from ..circuit_breaker import CircuitBreaker
from ..errors import AbortedError, BackendFailure, RateLimitedError
from ..jobs import CancellationToken
from .backends import (
    DEFAULT_FPS,
    ASPECT_RATIO,
    classify_failure,
    enabled_chain,
    extract_clip_url,
)
from .models import VideoResult

logger = logging.getLogger(__name__)

MODEL_TIMEOUT = 5 * 60  # seconds
MAX_RATE_LIMIT_RETRIES = 2
RETRY_PADDING = 1  # seconds added to a provider's retry-after hint
# Stop retrying a backend once the breaker has this many consecutive failures
MOVE_ON_AFTER_FAILURES = 2


class VideoStage:
    def __init__(
        self,
        video_client,
        governor: BudgetGovernor,
        breaker: CircuitBreaker,
        timeout: float = MODEL_TIMEOUT,
        max_rate_limit_retries: int = MAX_RATE_LIMIT_RETRIES,
        registry: Optional[dict] = None,
    ):
        self.video_client = video_client
        self.governor = governor
        self.breaker = breaker
        self.timeout = timeout
        self.max_rate_limit_retries = max_rate_limit_retries
        self.registry = registry

    async def generate(
        self,
        prompt: str,
        duration: float = 8,
        model_chain: Optional[list[str]] = None,
        token: Optional[CancellationToken] = None,
    ) -> VideoResult:
        token = token or CancellationToken()
        backends = enabled_chain(model_chain, self.registry)
        if not backends:
            raise BackendFailure("No enabled video models available", kind=BackendFailure.NO_MODELS)

        errors: list[tuple[str, str]] = []

        for backend in backends:
            token.raise_if_cancelled()

            if not self.breaker.can_execute(backend.id):
                errors.append((backend.id, "Circuit breaker open"))
                continue

            actual_duration = backend.clamp_duration(duration)
            cost = actual_duration * backend.cost_per_second
            remaining = self.governor.remaining()
            if remaining < cost:
                errors.append((backend.id, f"Insufficient budget: ${remaining:.4f} left, needs ${cost:.4f}"))
                continue

            payload = backend.payload(prompt, actual_duration, DEFAULT_FPS, ASPECT_RATIO)
            retries = 0

            while True:
                token.raise_if_cancelled()

                # Every attempt, retries included, goes through the rate window
                decision = self.governor.check_rate("replicate", backend.id)
                if not decision.allowed:
                    errors.append((backend.id, f"{decision.reason} (retry after {decision.retry_after}s)"))
                    break

                started = time.monotonic()
                try:
                    output = await asyncio.wait_for(
                        self.video_client.run(backend.id, payload), timeout=self.timeout
                    )
                    video_url = extract_clip_url(output, backend.id)
                except AbortedError:
                    raise
                except Exception as e:
                    failure = classify_failure(e, backend.id)
                    if isinstance(e, asyncio.TimeoutError):
                        failure = BackendFailure(
                            f"Model {backend.id} timeout after {self.timeout:g}s",
                            model=backend.id,
                            kind=BackendFailure.TIMEOUT,
                        )
                    failure_count = self.breaker.record_failure(backend.id)
                    metrics.inc_counter(f"backend.{backend.id}.failed")
                    metrics.record_error("video_stage", type(failure).__name__, failure.message)
                    logger.warning(f"{backend.id} failed (consecutive={failure_count}): {failure.message}")

                    if (
                        isinstance(failure, RateLimitedError)
                        and retries < self.max_rate_limit_retries
                        and failure_count < MOVE_ON_AFTER_FAILURES
                    ):
                        retries += 1
                        delay = failure.retry_after + RETRY_PADDING
                        logger.info(f"{backend.id} rate limited, retrying in {delay}s (retry {retries})")
                        await token.sleep(delay)
                        continue

                    errors.append((backend.id, failure.message))
                    break

                elapsed_ms = (time.monotonic() - started) * 1000
                metrics.record_latency(backend.id, elapsed_ms)
                metrics.inc_counter(f"backend.{backend.id}.succeeded")
                self.breaker.record_success(backend.id)
                self.governor.track_video(actual_duration, backend.id)
                logger.info(f"{backend.name} produced clip in {elapsed_ms:.0f}ms ({actual_duration}s)")
                return VideoResult(
                    video_url=video_url,
                    model=backend.id,
                    duration=actual_duration,
                    prompt_length=len(prompt),
                )

        details = "\n".join(f"  - {model}: {error}" for model, error in errors)
        raise BackendFailure(
            f"All video generation models failed:\n{details}",
            kind=BackendFailure.EXHAUSTED,
        )
