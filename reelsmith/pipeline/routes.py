"""
FastAPI routes for the movie generation pipeline.

Webhook Endpoints (shared-secret protected):
  POST /webhook/create-video   — Run the full pipeline for one story
  POST /webhook/abort-video    — Trip a running job's cancellation token

Read Endpoints:
  GET  /jobs/{job_id}          — Job registry status
  GET  /budget                 — Spend status + configured rate limits
  GET  /videos                 — Recent movies, newest first
  GET  /videos/{movie_id}      — One stored movie record
"""

import uuid
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..errors import BudgetExceededError, ValidationError
from .models import AbortVideoRequest, CreateVideoRequest, StoryRequest
from .movie_store import SupabaseMovieStore
from .orchestrator import MovieGenerationService

logger = logging.getLogger(__name__)

MIN_USER_NAME_LENGTH = 2

# Process-wide service, replaced by main.py at startup
_service: Optional[MovieGenerationService] = None


def set_service(service: MovieGenerationService):
    global _service
    _service = service


def get_service() -> MovieGenerationService:
    global _service
    if _service is None:
        _service = MovieGenerationService()
    return _service


# ═════════════════════════════════════════════════════════════════════════════
# Webhook Router
# ═════════════════════════════════════════════════════════════════════════════

webhook_router = APIRouter(prefix="/webhook", tags=["webhook"])


@webhook_router.post("/create-video")
async def create_video(request: CreateVideoRequest, service: MovieGenerationService = Depends(get_service)):
    """
    Generate a movie and return the run result with budget before/after.

    Errors:
      - 400: Invalid input or the estimate breaks the budget
      - 500: Unexpected pipeline failure
    """
    user_name = (request.user_name or "").strip()
    if len(user_name) < MIN_USER_NAME_LENGTH:
        raise HTTPException(status_code=400, detail=f"User name must be at least {MIN_USER_NAME_LENGTH} characters")

    job_id = request.job_id or str(uuid.uuid4())
    story = StoryRequest(
        story_premise=request.story_premise,
        character_ids=request.character_ids,
        total_duration_seconds=request.total_duration_seconds,
        scene_duration=request.scene_duration,
        model_chain=request.model_chain,
        style_reference=request.style_reference,
        user_id=user_name,
        project_name=request.project_name,
        job_id=job_id,
    )

    progress_updates = []

    try:
        estimate = None
        if request.scene_duration > 0:
            estimate = service.estimate(story)
        result = await service.create_movie(story, on_progress=progress_updates.append)
    except (ValidationError, BudgetExceededError) as e:
        logger.warning(f"[{job_id}] Rejected: {e.message}")
        raise HTTPException(status_code=400, detail=e.to_dict())
    except Exception as e:
        logger.error(f"[{job_id}] Create video failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    aborted = result.status == "aborted"
    response = {
        "success": not aborted,
        "aborted": aborted,
        "movie": result.model_dump(mode="json"),
        "progress": [p.model_dump(mode="json") for p in progress_updates],
        "budget": {
            "estimated": estimate.model_dump() if estimate else None,
            "final": service.governor.get_status().model_dump(),
        },
        "job_id": job_id,
    }
    if aborted:
        response["message"] = "Generation aborted by user. Partial progress saved."
    return response


@webhook_router.post("/abort-video")
async def abort_video(request: AbortVideoRequest, service: MovieGenerationService = Depends(get_service)):
    if not request.job_id:
        raise HTTPException(status_code=400, detail="Job ID is required")
    if not service.abort(request.job_id):
        raise HTTPException(status_code=404, detail="Job not found or already completed")
    return {"success": True, "message": "Generation aborted successfully", "job_id": request.job_id}


# ═════════════════════════════════════════════════════════════════════════════
# Movie Router — read-only status
# ═════════════════════════════════════════════════════════════════════════════

movie_router = APIRouter(tags=["movies"])


@movie_router.get("/jobs/{job_id}")
async def get_job(job_id: str, service: MovieGenerationService = Depends(get_service)):
    status = service.get_job_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return status


@movie_router.get("/budget")
async def get_budget(service: MovieGenerationService = Depends(get_service)):
    limits = service.governor.rate_limits
    return {
        "success": True,
        "budget": service.governor.get_status().model_dump(),
        "rate_limits": {
            name: {"per_minute": l["requests_per_minute"], "per_hour": l["requests_per_hour"]}
            for name, l in limits.items()
        },
        "circuits": service.breaker.snapshot(),
    }


def get_movie_store(service: MovieGenerationService = Depends(get_service)) -> SupabaseMovieStore:
    return service.movie_store


@movie_router.get("/videos")
async def list_videos(limit: int = 10, user_id: Optional[str] = None, store=Depends(get_movie_store)):
    try:
        videos = await store.list_movies(limit=limit, user_id=user_id)
    except Exception as e:
        logger.error(f"List videos failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, "videos": videos}


@movie_router.get("/videos/{movie_id}")
async def get_video(movie_id: str, store=Depends(get_movie_store)):
    try:
        movie = await store.get_movie(movie_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Get video failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    if not movie:
        raise HTTPException(status_code=404, detail="Video not found")
    return {"success": True, "video": movie}
