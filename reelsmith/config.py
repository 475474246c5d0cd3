"""
Configuration for the reelsmith worker.

Values come from the environment (a local .env is loaded first). Secrets are
validated lazily through get_settings() so that importing the package never
requires a fully configured environment.
"""

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

load_dotenv()

# ── Environment ──────────────────────────────────────────────────────────────

SUPABASE_URL = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")

REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_API_BASE = "https://api.replicate.com/v1"

# Audio is not wired into the pipeline; kept so deployments can share one .env
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")

REDIS_URL = os.getenv("REDIS_URL", "")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

VIDEO_BUCKET = os.getenv("VIDEO_BUCKET", "videos")

WORKER_SHARED_SECRET = os.getenv("WORKER_SHARED_SECRET", "")
PORT = int(os.getenv("PORT", "8080"))


# ── Validated secrets ────────────────────────────────────────────────────────

class Settings(BaseModel):
    supabase_url: str = Field(..., min_length=1)
    supabase_service_role_key: str = Field(..., min_length=1)
    openai_api_key: str = Field(..., min_length=1)
    openai_model: str = "gpt-4o-mini"
    replicate_api_token: str = Field(..., min_length=1)
    elevenlabs_api_key: Optional[str] = None
    google_api_key: Optional[str] = None


REQUIRED_ENV = {
    "SUPABASE_URL": SUPABASE_URL,
    "SUPABASE_SERVICE_ROLE_KEY": SUPABASE_SERVICE_ROLE_KEY,
    "OPENAI_API_KEY": OPENAI_API_KEY,
    "REPLICATE_API_TOKEN": REPLICATE_API_TOKEN,
}

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Validate and return the runtime secrets.

    Raises a RuntimeError listing every missing variable so a misconfigured
    deployment fails with one readable message.
    """
    global _settings
    if _settings is None:
        missing = [name for name, value in REQUIRED_ENV.items() if not value]
        if missing:
            raise RuntimeError(
                "Missing environment variables:\n"
                + "\n".join(f"- {name}" for name in missing)
                + "\n\nTip: create a .env file with the required keys."
            )
        _settings = Settings(
            supabase_url=SUPABASE_URL,
            supabase_service_role_key=SUPABASE_SERVICE_ROLE_KEY,
            openai_api_key=OPENAI_API_KEY,
            openai_model=OPENAI_MODEL,
            replicate_api_token=REPLICATE_API_TOKEN,
            elevenlabs_api_key=ELEVENLABS_API_KEY or None,
            google_api_key=GOOGLE_API_KEY or None,
        )
    return _settings


# ── Pipeline tunables ────────────────────────────────────────────────────────

class PipelineConfig(BaseModel):
    """Runtime knobs for one MovieGenerationService."""

    text_model: str = OPENAI_MODEL
    max_parallel_scenes: int = int(os.getenv("MAX_PARALLEL_SCENES", "2"))
    # Above this many scenes, run one at a time to stay under per-minute limits
    sequential_threshold: int = int(os.getenv("SEQUENTIAL_SCENE_THRESHOLD", "3"))
    inter_scene_delay: float = float(os.getenv("INTER_SCENE_DELAY_SECONDS", "6"))
    model_timeout: float = 5 * 60
    upload_timeout: float = 30
    # Capped in practice by the breaker cutoff in video_stage (one retry per backend)
    max_rate_limit_retries: int = 2
