"""
Script Stage — the LLM "director".

Asks a chat-completions backend for the next scene script, continuing the
story from the continuity snapshot it is handed. A failing text backend
never stops a run: a deterministic filler script is substituted instead.
Rate-limit denials and budget breaches do fail the scene.
"""

import logging
from typing import Optional

import httpx

from .. import config, metrics
from ..budget import ESTIMATED_TOKENS_PER_SCENE, BudgetGovernor
from ..errors import AbortedError, BudgetExceededError, RateLimitedError
from ..jobs import CancellationToken
from .models import Character, ContinuityState, SceneScript, TextCompletion
from .prompts import (
    DIRECTOR_SYSTEM_PROMPT,
    build_director_prompt,
    filler_script,
    parse_scene_script,
)

logger = logging.getLogger(__name__)

TEMPERATURE = 0.7
MAX_OUTPUT_TOKENS = 1500
TEXT_TIMEOUT = 60  # seconds


class OpenAITextClient:
    """Minimal async client for the OpenAI chat completions REST endpoint."""

    def __init__(self, api_key: Optional[str] = None, api_base: Optional[str] = None):
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.api_base = (api_base or config.OPENAI_API_BASE).rstrip("/")

    async def complete(
        self,
        model: str,
        messages: list[dict],
        temperature: float = TEMPERATURE,
        max_tokens: int = MAX_OUTPUT_TOKENS,
    ) -> TextCompletion:
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY not set")

        async with httpx.AsyncClient(timeout=TEXT_TIMEOUT) as client:
            response = await client.post(
                f"{self.api_base}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": model,
                    "messages": messages,
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                },
            )
            response.raise_for_status()
            result = response.json()

        choices = result.get("choices") or []
        text = ""
        if choices:
            text = (choices[0].get("message") or {}).get("content") or ""
        usage = result.get("usage") or {}
        return TextCompletion(
            text=text,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )


class SceneDirector:
    def __init__(self, text_client, governor: BudgetGovernor, text_model: str = config.OPENAI_MODEL):
        self.text_client = text_client
        self.governor = governor
        self.text_model = text_model

    async def write_scene(
        self,
        story_premise: str,
        characters: list[Character],
        continuity: ContinuityState,
        scene_number: int,
        total_scenes: int,
        style_reference: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> SceneScript:
        """
        Generate and parse the script for one scene.

        Raises:
            RateLimitedError: the text backend's rate window is full.
            BudgetExceededError: the remaining budget cannot cover a scene
                script, or tracking this call crossed the ceiling.
            AbortedError: the run was cancelled.
        """
        if token:
            token.raise_if_cancelled()

        projected = self.governor.text_cost(ESTIMATED_TOKENS_PER_SCENE, self.text_model)
        remaining = self.governor.remaining()
        if remaining < projected:
            raise BudgetExceededError(
                f"Insufficient budget for scene {scene_number} script: "
                f"${remaining:.4f} left, needs ~${projected:.4f}",
                status=self.governor.get_status().model_dump(),
            )

        decision = self.governor.check_rate("openai", "api")
        if not decision.allowed:
            raise RateLimitedError(
                f"Text generation rate limited: {decision.reason}",
                service="openai",
                retry_after=decision.retry_after,
            )

        messages = [
            {"role": "system", "content": DIRECTOR_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_director_prompt(
                    story_premise, characters, continuity,
                    scene_number, total_scenes, style_reference,
                ),
            },
        ]

        try:
            completion = await self.text_client.complete(
                model=self.text_model,
                messages=messages,
                temperature=TEMPERATURE,
                max_tokens=MAX_OUTPUT_TOKENS,
            )
        except (AbortedError, BudgetExceededError, RateLimitedError):
            raise
        except Exception as e:
            logger.warning(f"Scene {scene_number}: text generation failed ({e}), using filler script")
            metrics.inc_counter("director.fallback")
            metrics.record_error("director", type(e).__name__, str(e))
            return parse_scene_script(filler_script(characters), fallback=True)

        self.governor.track_text(completion.total_tokens, self.text_model)
        metrics.inc_counter("director.completed")

        if not completion.text.strip():
            logger.warning(f"Scene {scene_number}: empty script from {self.text_model}, using filler script")
            return parse_scene_script(filler_script(characters), fallback=True)

        return parse_scene_script(completion.text)
