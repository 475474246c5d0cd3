"""
Clip storage in Supabase Storage.

Backend clip URLs are short-lived, so every generated clip is copied to:
  videos/{uuid}.mp4   in the `videos` bucket

and the bucket's public URL replaces the backend URL. Clips already hosted
on our Supabase project are left where they are.
"""

import logging
from typing import Optional
from urllib.parse import urlparse
from uuid import uuid4

import httpx

from .. import config
from ..supabase_client import LazySupabase

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT = 30  # seconds for the download from the backend
CACHE_CONTROL = "3600"


def _is_own_storage(url: str) -> bool:
    host = urlparse(url).netloc
    if config.SUPABASE_URL and host and host == urlparse(config.SUPABASE_URL).netloc:
        return True
    return "supabase.co" in url


def clip_path() -> str:
    """Storage path for a new clip."""
    return f"videos/{uuid4()}.mp4"


async def download_clip_bytes(url: str, timeout: float = UPLOAD_TIMEOUT) -> bytes:
    """Download a clip from a public URL and return raw bytes."""
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.content


class SupabaseClipStore:
    def __init__(self, client=None, bucket: Optional[str] = None, timeout: float = UPLOAD_TIMEOUT):
        self.client = client if client is not None else LazySupabase()
        self.bucket = bucket or config.VIDEO_BUCKET
        self.timeout = timeout

    async def save(self, video_url: str) -> str:
        """Copy a clip into the bucket and return its public URL."""
        if not video_url:
            raise ValueError("No video URL provided")
        if _is_own_storage(video_url):
            return video_url

        data = await download_clip_bytes(video_url, self.timeout)
        path = clip_path()

        try:
            self.client.storage.from_(self.bucket).upload(
                file=data,
                path=path,
                file_options={
                    "content-type": "video/mp4",
                    "cache-control": CACHE_CONTROL,
                    "x-upsert": "true",
                },
            )
        except Exception as e:
            logger.error(f"Storage upload failed for {path}: {e}")
            raise RuntimeError(f"Storage upload failed: {e}") from e

        public_url = self.client.storage.from_(self.bucket).get_public_url(path)
        logger.info(f"Saved clip to storage: {public_url}")
        return public_url
