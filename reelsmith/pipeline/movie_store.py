"""
Run-record store — one row per finished run in the `movies` table.

All writes go through the Supabase service role. A failed write never fails
the run: save_run() logs and returns None.
"""

import re
import logging
from datetime import datetime, timezone
from typing import Optional

from ..supabase_client import LazySupabase
from .models import SceneResult

logger = logging.getLogger(__name__)

MOVIES_TABLE = "movies"
TITLE_LENGTH = 100
SCRIPT_EXCERPT_LENGTH = 1000
DEFAULT_LIST_LIMIT = 10

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_movie_id(value: str) -> bool:
    return bool(_UUID_RE.match(value or ""))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_movie_row(
    *,
    story_premise: str,
    character_ids: list[str],
    total_scenes: int,
    total_duration: float,
    successful: list[SceneResult],
    user_id: Optional[str] = None,
    job_id: Optional[str] = None,
    status: str = "completed",
    total_time_ms: float = 0,
    project_name: Optional[str] = None,
) -> dict:
    """Row for the movies table. Only successful scenes are stored."""
    models_used = list(dict.fromkeys(s.model for s in successful if s.model))
    return {
        "user_id": user_id,
        "title": story_premise[:TITLE_LENGTH],
        "total_scenes": total_scenes,
        "successful_scenes": len(successful),
        "total_duration": total_duration,
        "story_premise": story_premise,
        "character_ids": character_ids,
        "scenes_data": [
            {
                "scene": s.scene,
                "video_url": s.video_url,
                "script": (s.script or "")[:SCRIPT_EXCERPT_LENGTH],
                "model": s.model,
                "duration": s.duration,
            }
            for s in successful
        ],
        "metadata": {
            "generated_at": _now_iso(),
            "models_used": models_used,
            "success_rate": (len(successful) / total_scenes) * 100 if total_scenes else 0,
            "total_time": total_time_ms,
            "job_id": job_id,
            "status": status,
            "project_name": project_name,
        },
    }


class SupabaseMovieStore:
    def __init__(self, client=None):
        self.client = client if client is not None else LazySupabase()

    async def save_run(self, row: dict) -> Optional[dict]:
        """Insert the run record; returns the stored row or None on failure."""
        try:
            result = self.client.table(MOVIES_TABLE).upsert(row).execute()
        except Exception as e:
            logger.error(f"Failed to save movie record: {e}", exc_info=True)
            return None
        data = result.data or []
        if isinstance(data, list):
            return data[0] if data else None
        return data

    async def get_movie(self, movie_id: str) -> Optional[dict]:
        if not is_movie_id(movie_id):
            raise ValueError("Invalid video ID format. Expected UUID.")
        result = self.client.table(MOVIES_TABLE).select("*").eq("id", movie_id).limit(1).execute()
        rows = result.data or []
        return rows[0] if rows else None

    async def list_movies(self, limit: int = DEFAULT_LIST_LIMIT, user_id: Optional[str] = None) -> list[dict]:
        """Most recent runs first, optionally for one user."""
        query = self.client.table(MOVIES_TABLE).select("*").order("created_at", desc=True).limit(limit)
        if user_id:
            query = query.eq("user_id", user_id)
        return query.execute().data or []
