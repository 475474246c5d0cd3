"""
Pytest Configuration and Fixtures

Fakes for the text backend, the video backend and the three stores, plus a
factory that wires them into a MovieGenerationService.
"""

import re
import asyncio

import pytest

from reelsmith import metrics
from reelsmith.budget import BudgetGovernor
from reelsmith.circuit_breaker import CircuitBreaker
from reelsmith.config import PipelineConfig
from reelsmith.fallback_limiter import InMemoryRateLimiter
from reelsmith.jobs import JobRegistry
from reelsmith.pipeline.characters import InMemoryCharacterStore
from reelsmith.pipeline.models import Character, TextCompletion
from reelsmith.pipeline.orchestrator import MovieGenerationService


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def scene_script(n: int) -> str:
    return f"""SCENE_VISUAL:
Wide shot of the harbor at dusk, scene {n}. The camera dollies forward.

DIALOGUE:
Mara: "Hold the line."

CONTINUITY_HOOK:
Mara steps onto the pier in scene {n}.

SCENE_SUMMARY:
Summary of scene {n}."""


class FakeTextClient:
    """Answers with a well-formed script for whichever scene was requested."""

    def __init__(self, fail: bool = False, text=None):
        self.fail = fail
        self.text = text
        self.calls = []

    async def complete(self, model, messages, temperature=0.7, max_tokens=1500):
        self.calls.append({"model": model, "messages": messages})
        if self.fail:
            raise RuntimeError("text backend down")
        match = re.search(r"Write SCENE (\d+) of", messages[-1]["content"])
        n = int(match.group(1)) if match else 0
        text = self.text if self.text is not None else scene_script(n)
        return TextCompletion(text=text, prompt_tokens=300, completion_tokens=200)


class FakeVideoClient:
    """
    Scripted video backend.

    `behaviors` maps a model id to a list of outcomes consumed in order; an
    outcome is an Exception (raised), a callable (awaited with the input) or
    any other value (returned). Once a list is exhausted the default is a
    fresh clip URL.
    """

    def __init__(self, behaviors=None, delay: float = 0):
        self.behaviors = {k: list(v) for k, v in (behaviors or {}).items()}
        self.delay = delay
        self.calls = []

    async def run(self, model_id, input_data):
        self.calls.append((model_id, input_data))
        if self.delay:
            await asyncio.sleep(self.delay)
        queue = self.behaviors.get(model_id)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            if callable(outcome):
                return await outcome(input_data)
            return outcome
        return [f"https://cdn.example.com/{model_id.split('/')[-1]}/{len(self.calls)}.mp4"]


class FakeClipStore:
    def __init__(self):
        self.saved = []

    async def save(self, video_url):
        self.saved.append(video_url)
        return video_url.replace("cdn.example.com", "project.supabase.co/storage")


class FakeMovieStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.rows = []

    async def save_run(self, row):
        if self.fail:
            return None
        self.rows.append(row)
        return {"id": "7f9c2ba4-e88f-4a2c-9d3b-1f0e5c6d7a8b", **row}

    async def get_movie(self, movie_id):
        return None

    async def list_movies(self, limit=10, user_id=None):
        return self.rows[:limit]


class RecordingToken:
    """Stand-in CancellationToken that records sleeps instead of waiting."""

    def __init__(self):
        self.sleeps = []
        self.cancelled = False

    def raise_if_cancelled(self):
        from reelsmith.errors import AbortedError
        if self.cancelled:
            raise AbortedError()

    async def sleep(self, seconds):
        self.sleeps.append(seconds)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor():
    return BudgetGovernor(rate_limiter=InMemoryRateLimiter())


@pytest.fixture
def breaker():
    return CircuitBreaker()


@pytest.fixture
def registry():
    return JobRegistry()


@pytest.fixture
def characters():
    return [
        Character(id="c1a2b3", name="Mara", base_prompt="weathered sailor in a navy coat", personality="stubborn"),
        Character(id="d4e5f6", name="Ilya", personality="quiet mechanic"),
    ]


@pytest.fixture
def pipeline_config():
    return PipelineConfig(inter_scene_delay=0, model_timeout=5)


@pytest.fixture
def make_service(governor, breaker, registry, characters, pipeline_config):
    """Build a service around fakes; override any collaborator by keyword."""

    def _make(**overrides):
        parts = {
            "text_client": FakeTextClient(),
            "video_client": FakeVideoClient(),
            "governor": governor,
            "breaker": breaker,
            "registry": registry,
            "character_store": InMemoryCharacterStore(characters),
            "clip_store": FakeClipStore(),
            "movie_store": FakeMovieStore(),
            "config": pipeline_config,
        }
        parts.update(overrides)
        return MovieGenerationService(**parts)

    return _make
