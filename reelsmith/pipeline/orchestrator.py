"""
MovieGenerationService — Main pipeline orchestrator.

Turns a story premise into an ordered list of scene clips:
  1. Validate the request (nothing external is touched on bad input)
  2. Budget pre-flight: reject runs whose projected cost breaks the ceiling
  3. Register the job and resolve characters
  4. Per scene: Script → Prompt Assembly → Video → Clip Store
     (continuity handed from scene n to n+1 through a ContinuityChain)
  5. Persist one run record and return a RunResult

Scene-level failures never escape create_movie(); they become failed or
aborted SceneResult slots. Only ValidationError and a pre-flight
BudgetExceededError reject the call.
"""

import math
import time
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .. import metrics
from ..budget import BudgetGovernor, CostEstimate
from ..circuit_breaker import CircuitBreaker
from ..config import PipelineConfig
from ..errors import AbortedError, BudgetExceededError, ValidationError
from ..jobs import CancellationToken, JobRegistry
from .backends import DEFAULT_MODEL_CHAIN, get_backend
from .characters import SupabaseCharacterStore, placeholder_character
from .director import OpenAITextClient, SceneDirector
from .models import (
    MAX_TOTAL_DURATION,
    MIN_PREMISE_LENGTH,
    Character,
    CharacterRef,
    ProgressEvent,
    ProgressStatus,
    RunResult,
    RunStatus,
    SceneResult,
    SceneStatus,
    StoryRequest,
)
from .movie_store import SupabaseMovieStore, build_movie_row
from .progress import ProgressTracker
from .prompts import build_video_prompt
from .replicate_client import ReplicateClient
from .scheduler import ContinuityChain, run_scene_tasks
from .storage import SupabaseClipStore
from .video_stage import VideoStage

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_LENGTH = 200


@dataclass
class _Run:
    """State shared by the scene tasks of one create_movie() call."""
    job_id: str
    request: StoryRequest
    premise: str
    characters: list[Character]
    model_chain: list[str]
    total_scenes: int
    token: CancellationToken
    chain: ContinuityChain
    tracker: ProgressTracker
    on_scene_complete: Optional[Callable[[SceneResult], None]] = None


class MovieGenerationService:
    """
    Production-grade pipeline orchestrator.

    Usage:
        service = MovieGenerationService(governor=governor, registry=registry)
        result = await service.create_movie(StoryRequest(...), on_progress=print)

    The governor, breaker and registry are process-wide; pass the same
    instances to every service that shares a budget.
    """

    def __init__(
        self,
        text_client=None,
        video_client=None,
        governor: Optional[BudgetGovernor] = None,
        breaker: Optional[CircuitBreaker] = None,
        registry: Optional[JobRegistry] = None,
        character_store=None,
        clip_store=None,
        movie_store=None,
        config: Optional[PipelineConfig] = None,
        backends: Optional[dict] = None,
    ):
        self.config = config or PipelineConfig()
        self.governor = governor or BudgetGovernor()
        self.breaker = breaker or CircuitBreaker()
        self.registry = registry or JobRegistry()
        self.character_store = character_store or SupabaseCharacterStore()
        self.clip_store = clip_store or SupabaseClipStore(timeout=self.config.upload_timeout)
        self.movie_store = movie_store or SupabaseMovieStore()
        self.director = SceneDirector(text_client or OpenAITextClient(), self.governor, self.config.text_model)
        self.video_stage = VideoStage(
            video_client or ReplicateClient(),
            self.governor,
            self.breaker,
            timeout=self.config.model_timeout,
            max_rate_limit_retries=self.config.max_rate_limit_retries,
            registry=backends,
        )

    # ── Job control ──────────────────────────────────────────────────────

    def get_job_status(self, job_id: str) -> Optional[dict]:
        return self.registry.get_status(job_id)

    def abort(self, job_id: str) -> bool:
        return self.registry.abort(job_id)

    # ── Validation & pre-flight ──────────────────────────────────────────

    @staticmethod
    def validate(request: StoryRequest) -> str:
        """Return the stripped premise or raise ValidationError."""
        premise = (request.story_premise or "").strip()
        if len(premise) < MIN_PREMISE_LENGTH:
            raise ValidationError(f"Story premise must be at least {MIN_PREMISE_LENGTH} characters")
        if not request.character_ids:
            raise ValidationError("At least one character is required")
        if request.total_duration_seconds <= 0 or request.scene_duration <= 0:
            raise ValidationError("Durations must be positive")
        if request.total_duration_seconds > MAX_TOTAL_DURATION:
            raise ValidationError("Maximum duration is 60 minutes")
        return premise

    def estimate(self, request: StoryRequest) -> CostEstimate:
        """Projected run cost, billed at the first backend's clamped clip length."""
        model_id = (request.model_chain or DEFAULT_MODEL_CHAIN)[0]
        backend = get_backend(model_id, self.video_stage.registry)
        billed = backend.clamp_duration(request.scene_duration) if backend else None
        return self.governor.estimate_cost(
            request.total_duration_seconds,
            request.scene_duration,
            model_id,
            self.config.text_model,
            billed_scene_duration=billed,
        )

    def _preflight(self, request: StoryRequest):
        estimate = self.estimate(request)
        remaining = self.governor.remaining()
        if not self.governor.within_ceiling(estimate) or estimate.total > remaining:
            status = self.governor.get_status()
            raise BudgetExceededError(
                f"Estimated cost ${estimate.total:.2f} exceeds remaining budget ${remaining:.2f}",
                estimate=estimate.model_dump(),
                status=status.model_dump(),
            )
        logger.info(f"Budget pre-flight ok: ~${estimate.total:.4f} for {estimate.scenes} scenes")

    async def _resolve_characters(self, character_ids: list[str]) -> list[Character]:
        try:
            characters = await self.character_store.get_characters(character_ids)
        except Exception as e:
            logger.warning(f"Character store failed, using placeholders: {e}")
            characters = []
        return characters or [placeholder_character(cid) for cid in character_ids]

    # ── Main entry point ─────────────────────────────────────────────────

    async def create_movie(
        self,
        request: StoryRequest,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        on_scene_complete: Optional[Callable[[SceneResult], None]] = None,
    ) -> RunResult:
        """
        Run the full pipeline for one story.

        Raises:
            ValidationError: bad input, or a job id that is still running,
                before any external call.
            BudgetExceededError: the pre-flight estimate breaks the budget.
        """
        premise = self.validate(request)
        total_scenes = max(1, math.ceil(request.total_duration_seconds / request.scene_duration))
        model_chain = request.model_chain or DEFAULT_MODEL_CHAIN
        self._preflight(request)

        job_id = request.job_id or str(uuid.uuid4())
        token = self.registry.create(job_id)
        metrics.inc_counter("runs.started")
        metrics.add_gauge("runs.active", 1)
        logger.info(f"[{job_id}] Starting movie: {total_scenes} scenes x {request.scene_duration}s")

        try:
            characters = await self._resolve_characters(request.character_ids)
            run = _Run(
                job_id=job_id,
                request=request,
                premise=premise,
                characters=characters,
                model_chain=model_chain,
                total_scenes=total_scenes,
                token=token,
                chain=ContinuityChain(total_scenes),
                tracker=ProgressTracker(total_scenes, on_progress, job_id=job_id),
                on_scene_complete=on_scene_complete,
            )

            tasks = [self._scene_task(run, n) for n in range(1, total_scenes + 1)]
            results = await run_scene_tasks(
                tasks,
                token=token,
                make_aborted=lambda n: self._aborted_scene(run, n, time.time()),
                make_failed=lambda n, e: self._failed_scene(run, n, time.time(), e),
                max_parallel=self.config.max_parallel_scenes,
                sequential_threshold=self.config.sequential_threshold,
                inter_scene_delay=self.config.inter_scene_delay,
            )
            return await self._finish(run, results)
        finally:
            self.registry.complete(job_id, token)
            metrics.add_gauge("runs.active", -1)

    # ── Scene pipeline ───────────────────────────────────────────────────

    def _scene_task(self, run: _Run, scene: int):
        async def task() -> SceneResult:
            return await self._run_scene(run, scene)
        return task

    async def _run_scene(self, run: _Run, scene: int) -> SceneResult:
        started = time.time()
        token = run.token
        try:
            token.raise_if_cancelled()
            run.tracker.notify(scene, ProgressStatus.SCRIPTING)

            continuity = await run.chain.receive(scene, token)
            script = await self.director.write_scene(
                run.premise,
                run.characters,
                continuity,
                scene,
                run.total_scenes,
                run.request.style_reference,
                token=token,
            )
            run.chain.publish(scene, continuity.advance(scene, script))

            prompt = build_video_prompt(script, run.characters, continuity.previous_scene_end)
            token.raise_if_cancelled()
            run.tracker.notify(scene, ProgressStatus.GENERATING, prompt_length=len(prompt))

            video = await self.video_stage.generate(
                prompt, run.request.scene_duration, run.model_chain, token=token
            )
            # A clip that lands after an abort is discarded
            token.raise_if_cancelled()

            run.tracker.notify(scene, ProgressStatus.SAVING)
            saved_url = await self.clip_store.save(video.video_url)

            ended = time.time()
            result = SceneResult(
                scene=scene,
                status=SceneStatus.COMPLETED,
                success=True,
                script=script.raw,
                summary=script.summary,
                continuity_hook=script.continuity_hook,
                prompt=prompt,
                prompt_preview=f"{prompt[:PROMPT_PREVIEW_LENGTH]}...",
                model=video.model,
                video_url=saved_url,
                duration=video.duration,
                started_at=started,
                ended_at=ended,
                total_time_ms=(ended - started) * 1000,
            )
        except AbortedError:
            return self._aborted_scene(run, scene, started)
        except Exception as e:
            return self._failed_scene(run, scene, started, e)

        metrics.inc_counter("scenes.completed")
        run.tracker.notify(
            scene, ProgressStatus.COMPLETED, model=result.model, total_time_ms=result.total_time_ms
        )
        if run.on_scene_complete:
            try:
                run.on_scene_complete(result)
            except Exception as e:
                logger.error(f"[{run.job_id}] Scene-complete callback raised: {e}", exc_info=True)
        return result

    def _aborted_scene(self, run: _Run, scene: int, started: float) -> SceneResult:
        run.chain.forward(scene)
        metrics.inc_counter("scenes.aborted")
        run.tracker.notify(scene, ProgressStatus.ABORTED)
        ended = time.time()
        return SceneResult(
            scene=scene,
            status=SceneStatus.ABORTED,
            error="Generation aborted",
            started_at=started,
            ended_at=ended,
            total_time_ms=(ended - started) * 1000,
        )

    def _failed_scene(self, run: _Run, scene: int, started: float, error: Exception) -> SceneResult:
        run.chain.forward(scene)
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        logger.error(f"[{run.job_id}] Scene {scene} failed: {message}")
        metrics.inc_counter("scenes.failed")
        metrics.record_error("orchestrator", type(error).__name__, message, job_id=run.job_id)
        run.tracker.add_failure(scene, message)
        run.tracker.notify(scene, ProgressStatus.FAILED, error=message)
        ended = time.time()
        return SceneResult(
            scene=scene,
            status=SceneStatus.FAILED,
            error=message,
            started_at=started,
            ended_at=ended,
            total_time_ms=(ended - started) * 1000,
        )

    # ── Run assembly ─────────────────────────────────────────────────────

    async def _finish(self, run: _Run, results: list[SceneResult]) -> RunResult:
        successful = [r for r in results if r.success]
        failed_count = sum(1 for r in results if r.status == SceneStatus.FAILED)
        aborted_count = sum(1 for r in results if r.status == SceneStatus.ABORTED)
        was_aborted = run.token.cancelled

        if was_aborted:
            status = RunStatus.ABORTED
        elif len(successful) == run.total_scenes:
            status = RunStatus.COMPLETED
        elif successful:
            status = RunStatus.PARTIAL
        else:
            status = RunStatus.FAILED

        summary = run.tracker.get_summary()

        db_record = None
        if successful or was_aborted:
            row = build_movie_row(
                story_premise=run.premise,
                character_ids=run.request.character_ids,
                total_scenes=run.total_scenes,
                total_duration=run.request.total_duration_seconds,
                successful=successful,
                user_id=run.request.user_id,
                job_id=run.job_id,
                status=status.value,
                total_time_ms=summary["total_time_ms"],
                project_name=run.request.project_name,
            )
            try:
                db_record = await self.movie_store.save_run(row)
            except Exception as e:
                logger.error(f"[{run.job_id}] Run record not saved: {e}", exc_info=True)
        else:
            logger.warning(f"[{run.job_id}] No scene succeeded, skipping run record")

        movie_id = str((db_record or {}).get("id") or f"movie_{int(time.time() * 1000)}")
        metrics.inc_counter(f"runs.{status.value}")
        logger.info(
            f"[{run.job_id}] Run {status.value}: {len(successful)}/{run.total_scenes} scenes "
            f"in {summary['total_time_ms'] / 1000:.1f}s"
        )

        return RunResult(
            movie_id=movie_id,
            job_id=run.job_id,
            status=status,
            total_scenes=run.total_scenes,
            successful_scenes=len(successful),
            failed_scenes=failed_count,
            aborted_scenes=aborted_count,
            total_duration=run.request.total_duration_seconds,
            scenes=successful,
            failed=run.tracker.failures,
            all_scenes=results,
            summary=summary,
            characters=[CharacterRef(id=c.id, name=c.name) for c in run.characters],
            generated_at=datetime.now(timezone.utc).isoformat(),
            db_record=db_record,
            project_name=run.request.project_name,
            budget=self.governor.get_status(),
        )
