"""
Movie Generation Pipeline

Long-form video from a story premise:
  Script Stage (LLM director) → Prompt Assembly → Video Stage (backend chain)
  → Clip Store, one scene at a time or a few in parallel, with continuity
  handed from each scene to the next.
"""

from .orchestrator import MovieGenerationService
from .routes import movie_router, webhook_router
from .models import RunStatus, SceneStatus, StoryRequest

__all__ = [
    "MovieGenerationService",
    "movie_router",
    "webhook_router",
    "RunStatus",
    "SceneStatus",
    "StoryRequest",
]
