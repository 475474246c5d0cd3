"""
Tests for MovieGenerationService.create_movie
"""

import asyncio
from dataclasses import replace

import pytest

from reelsmith.budget import BudgetGovernor
from reelsmith.config import PipelineConfig
from reelsmith.errors import BudgetExceededError, ValidationError
from reelsmith.pipeline.backends import VIDEO_BACKENDS
from reelsmith.pipeline.models import ProgressStatus, RunStatus, SceneStatus, StoryRequest

from conftest import FakeMovieStore, FakeTextClient, FakeVideoClient

PREMISE = "Two smugglers race a storm to the last lighthouse on the coast."
LUMA = "luma/dream-machine"


def story(**kwargs):
    fields = {
        "story_premise": PREMISE,
        "character_ids": ["c1a2b3", "d4e5f6"],
        "total_duration_seconds": 30,
        "scene_duration": 6,
    }
    fields.update(kwargs)
    return StoryRequest(**fields)


class TestValidation:

    @pytest.mark.asyncio
    async def test_short_premise_rejected_before_any_call(self, make_service, registry):
        text_client = FakeTextClient()
        service = make_service(text_client=text_client)

        with pytest.raises(ValidationError):
            await service.create_movie(story(story_premise="  Too short  ", job_id="j1"))

        assert text_client.calls == []
        assert registry.get_status("j1") is None

    @pytest.mark.asyncio
    async def test_no_characters(self, make_service):
        with pytest.raises(ValidationError):
            await make_service().create_movie(story(character_ids=[]))

    @pytest.mark.asyncio
    async def test_over_an_hour(self, make_service):
        with pytest.raises(ValidationError) as exc_info:
            await make_service().create_movie(story(total_duration_seconds=3601))
        assert exc_info.value.message == "Maximum duration is 60 minutes"

    @pytest.mark.asyncio
    async def test_estimate_over_ceiling(self, make_service, registry):
        service = make_service(governor=BudgetGovernor(max_budget=0.1))

        with pytest.raises(BudgetExceededError) as exc_info:
            await service.create_movie(story(job_id="j2"))

        assert exc_info.value.estimate["scenes"] == 5
        assert registry.get_status("j2") is None

    @pytest.mark.asyncio
    async def test_estimate_over_remaining(self, make_service, governor):
        governor.track("replicate", 4.9)

        with pytest.raises(BudgetExceededError) as exc_info:
            await make_service().create_movie(story())
        assert exc_info.value.status["remaining"] == pytest.approx(0.1)


class TestCreateMovie:

    @pytest.mark.asyncio
    async def test_full_run(self, make_service, registry):
        movie_store = FakeMovieStore()
        text_client = FakeTextClient()
        service = make_service(movie_store=movie_store, text_client=text_client)
        events, completed = [], []

        result = await service.create_movie(
            story(job_id="job-full"), on_progress=events.append, on_scene_complete=completed.append
        )

        assert result.status == RunStatus.COMPLETED
        assert result.total_scenes == 5
        assert result.successful_scenes == 5
        assert [s.scene for s in result.scenes] == [1, 2, 3, 4, 5]
        assert all("supabase.co" in s.video_url for s in result.scenes)
        assert len(completed) == 5
        assert events[-1].percentage == 100
        assert {e.status for e in events} >= {
            ProgressStatus.SCRIPTING, ProgressStatus.GENERATING, ProgressStatus.SAVING, ProgressStatus.COMPLETED,
        }
        assert result.movie_id == "7f9c2ba4-e88f-4a2c-9d3b-1f0e5c6d7a8b"
        assert [c.name for c in result.characters] == ["Mara", "Ilya"]
        assert result.budget.current > 0

        row = movie_store.rows[0]
        assert row["title"] == PREMISE[:100]
        assert row["successful_scenes"] == 5
        assert len(row["scenes_data"]) == 5
        assert row["metadata"]["job_id"] == "job-full"

        assert registry.get_status("job-full")["status"] == "completed"

    @pytest.mark.asyncio
    async def test_continuity_threads_between_scenes(self, make_service):
        text_client = FakeTextClient()
        service = make_service(text_client=text_client)

        result = await service.create_movie(story(total_duration_seconds=18))

        scene_two_request = next(
            c["messages"][1]["content"] for c in text_client.calls
            if "Write SCENE 2 of 3" in c["messages"][1]["content"]
        )
        assert "PREVIOUS SCENE ENDED WITH: Mara steps onto the pier in scene 1." in scene_two_request
        assert "Scene 1: Summary of scene 1." in scene_two_request
        assert "CONTINUE FROM PREVIOUS SCENE: Mara steps onto the pier in scene 2." in result.all_scenes[2].prompt
        assert "Opening scene of the film." in result.all_scenes[0].prompt

    @pytest.mark.asyncio
    async def test_all_backends_disabled(self, make_service):
        movie_store = FakeMovieStore()
        backends = {k: replace(b, enabled=False) for k, b in VIDEO_BACKENDS.items()}
        service = make_service(movie_store=movie_store, backends=backends)

        result = await service.create_movie(story())

        assert result.status == RunStatus.FAILED
        assert result.successful_scenes == 0
        assert result.failed_scenes == 5
        assert result.db_record is None
        assert movie_store.rows == []
        assert [f.scene for f in result.failed] == [1, 2, 3, 4, 5]
        assert all(f.error == "No enabled video models available" for f in result.failed)
        assert result.movie_id.startswith("movie_")

    @pytest.mark.asyncio
    async def test_partial_run(self, make_service):
        video_client = FakeVideoClient({LUMA: [
            ["https://cdn.example.com/1.mp4"],
            RuntimeError("backend melted"),
            ["https://cdn.example.com/3.mp4"],
        ]})
        service = make_service(
            video_client=video_client,
            config=PipelineConfig(inter_scene_delay=0, sequential_threshold=0),
        )

        result = await service.create_movie(story(total_duration_seconds=18, model_chain=[LUMA]))

        assert result.status == RunStatus.PARTIAL
        assert [s.scene for s in result.scenes] == [1, 3]
        assert result.all_scenes[1].status == SceneStatus.FAILED
        assert "backend melted" in result.failed[0].error
        assert result.db_record["successful_scenes"] == 2

    @pytest.mark.asyncio
    async def test_abort_mid_run(self, make_service, registry):
        movie_store = FakeMovieStore()
        service = make_service(movie_store=movie_store)

        def abort_after_first(scene_result):
            service.abort("job-abort")

        result = await service.create_movie(story(job_id="job-abort"), on_scene_complete=abort_after_first)

        assert result.status == RunStatus.ABORTED
        assert result.successful_scenes == 1
        assert result.aborted_scenes == 4
        assert [s.status for s in result.all_scenes[1:]] == [SceneStatus.ABORTED] * 4
        assert len(movie_store.rows) == 1
        assert registry.get_status("job-abort")["status"] == "aborted"
        assert not service.abort("job-abort")

    @pytest.mark.asyncio
    async def test_text_backend_down_uses_filler(self, make_service):
        result = await make_service(text_client=FakeTextClient(fail=True)).create_movie(story(total_duration_seconds=12))

        assert result.status == RunStatus.COMPLETED
        assert "Mara and Ilya" in result.scenes[0].prompt

    @pytest.mark.asyncio
    async def test_callback_errors_are_ignored(self, make_service):
        def broken(_):
            raise RuntimeError("ui went away")

        result = await make_service().create_movie(
            story(total_duration_seconds=12), on_progress=broken, on_scene_complete=broken
        )
        assert result.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_character_store_failure_uses_placeholders(self, make_service):
        class BrokenStore:
            async def get_characters(self, ids):
                raise ConnectionError("db down")

        result = await make_service(character_store=BrokenStore()).create_movie(story(total_duration_seconds=6))

        assert [c.name for c in result.characters] == ["Character c1a2", "Character d4e5"]
        assert result.successful_scenes == 1

    @pytest.mark.asyncio
    async def test_failed_save_does_not_fail_run(self, make_service):
        result = await make_service(movie_store=FakeMovieStore(fail=True)).create_movie(story(total_duration_seconds=6))

        assert result.status == RunStatus.COMPLETED
        assert result.db_record is None
        assert result.movie_id.startswith("movie_")


class TestJobIds:

    @pytest.mark.asyncio
    async def test_second_run_with_running_job_id_is_rejected(self, make_service, registry):
        service = make_service(video_client=FakeVideoClient(delay=0.05))
        first = asyncio.ensure_future(service.create_movie(story(job_id="dup", total_duration_seconds=6)))
        await asyncio.sleep(0.01)

        with pytest.raises(ValidationError):
            await service.create_movie(story(job_id="dup", total_duration_seconds=6))

        assert registry.get_status("dup")["status"] == "running"
        assert service.abort("dup")
        result = await first
        assert result.status == RunStatus.ABORTED


class TestEstimate:

    def test_billed_at_clamped_duration(self, make_service):
        estimate = make_service().estimate(story(total_duration_seconds=8, scene_duration=2, model_chain=[LUMA]))

        assert estimate.scenes == 4
        assert estimate.video == pytest.approx(4 * 4 * 0.01)

    def test_veo_billed_at_snapped_duration(self, make_service):
        estimate = make_service().estimate(story(total_duration_seconds=30, scene_duration=5))

        assert estimate.scenes == 6
        assert estimate.video == pytest.approx(6 * 4 * 0.015)

    @pytest.mark.asyncio
    async def test_preflight_uses_clamped_duration(self, make_service):
        # 20 scenes billed at 4s on luma is $0.80, at the requested 2s only $0.40
        service = make_service(governor=BudgetGovernor(max_budget=0.6))

        with pytest.raises(BudgetExceededError):
            await service.create_movie(story(total_duration_seconds=40, scene_duration=2, model_chain=[LUMA]))
