"""
Pydantic models and enums for the scene generation pipeline.
"""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field

from ..budget import BudgetStatus


MIN_PREMISE_LENGTH = 10
MAX_TOTAL_DURATION = 60 * 60  # 60 minutes
DEFAULT_TOTAL_DURATION = 120
DEFAULT_SCENE_DURATION = 6


# ── Statuses ─────────────────────────────────────────────────────────────────

class SceneStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class ProgressStatus(str, Enum):
    SCRIPTING = "scripting"
    GENERATING = "generating"
    SAVING = "saving"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    ABORTED = "aborted"


# ── Inputs ───────────────────────────────────────────────────────────────────

class StoryRequest(BaseModel):
    """One create_movie() invocation. Semantic checks live in the orchestrator."""
    story_premise: str
    character_ids: list[str] = Field(default_factory=list)
    total_duration_seconds: float = DEFAULT_TOTAL_DURATION
    scene_duration: float = DEFAULT_SCENE_DURATION
    model_chain: Optional[list[str]] = None
    style_reference: Optional[str] = None
    user_id: Optional[str] = None
    project_name: Optional[str] = None
    job_id: Optional[str] = None


class Character(BaseModel):
    id: str
    name: str
    base_prompt: str = "cinematic, realistic character"
    personality: str = "realistic movie character"
    reference_image: Optional[str] = None
    visual_details: Optional[str] = None


# ── Scene pipeline ───────────────────────────────────────────────────────────

class SceneScript(BaseModel):
    raw: str
    visual: str
    dialogue: str = ""
    continuity_hook: str = ""
    summary: str = "Scene continues the story."
    fallback: bool = False


class ContinuityState(BaseModel):
    """Snapshot handed from scene n to scene n+1."""
    story_so_far: str = ""
    previous_scene_end: Optional[str] = None

    def advance(self, scene_number: int, script: SceneScript) -> "ContinuityState":
        return ContinuityState(
            story_so_far=f"{self.story_so_far}\nScene {scene_number}: {script.summary}",
            previous_scene_end=script.continuity_hook or script.summary,
        )


class TextCompletion(BaseModel):
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class VideoResult(BaseModel):
    video_url: str
    model: str
    duration: float
    prompt_length: int


class SceneResult(BaseModel):
    scene: int
    status: SceneStatus
    success: bool = False
    script: Optional[str] = None
    summary: Optional[str] = None
    continuity_hook: Optional[str] = None
    prompt: Optional[str] = None
    prompt_preview: Optional[str] = None
    model: Optional[str] = None
    video_url: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    total_time_ms: Optional[float] = None


class ProgressEvent(BaseModel):
    scene: int
    total: int
    percentage: int
    elapsed_ms: float
    status: ProgressStatus
    data: dict[str, Any] = Field(default_factory=dict)


class FailureRecord(BaseModel):
    scene: int
    error: str
    timestamp: float


class CharacterRef(BaseModel):
    id: str
    name: str


class RunResult(BaseModel):
    movie_id: str
    job_id: str
    status: RunStatus
    total_scenes: int
    successful_scenes: int
    failed_scenes: int
    aborted_scenes: int = 0
    total_duration: float
    scenes: list[SceneResult] = Field(default_factory=list)
    failed: list[FailureRecord] = Field(default_factory=list)
    all_scenes: list[SceneResult] = Field(default_factory=list)
    summary: dict[str, Any] = Field(default_factory=dict)
    characters: list[CharacterRef] = Field(default_factory=list)
    generated_at: str
    db_record: Optional[dict] = None
    project_name: Optional[str] = None
    budget: Optional[BudgetStatus] = None


# ── API Request Models ───────────────────────────────────────────────────────

class CreateVideoRequest(BaseModel):
    user_name: Optional[str] = None
    story_premise: str = ""
    character_ids: list[str] = Field(default_factory=list)
    total_duration_seconds: float = DEFAULT_TOTAL_DURATION
    scene_duration: float = DEFAULT_SCENE_DURATION
    model_chain: Optional[list[str]] = None
    style_reference: Optional[str] = None
    project_name: Optional[str] = None
    job_id: Optional[str] = None


class AbortVideoRequest(BaseModel):
    job_id: str
