"""
Tests for the Concurrency Controller and the continuity chain.
"""

import asyncio

import pytest

from reelsmith.errors import AbortedError
from reelsmith.jobs import CancellationToken
from reelsmith.pipeline.models import ContinuityState, SceneResult, SceneStatus
from reelsmith.pipeline.scheduler import ContinuityChain, run_scene_tasks


def aborted(n):
    return SceneResult(scene=n, status=SceneStatus.ABORTED)


def failed(n, exc):
    return SceneResult(scene=n, status=SceneStatus.FAILED, error=str(exc))


class ConcurrencyRecorder:
    """Scene tasks that record how many ran at once."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.started = []

    def task(self, n, delay=0.01, action=None):
        async def run():
            self.started.append(n)
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                await asyncio.sleep(delay)
                if action:
                    action()
            finally:
                self.active -= 1
            return SceneResult(scene=n, status=SceneStatus.COMPLETED, success=True)
        return run


class TestRunSceneTasks:

    @pytest.mark.asyncio
    async def test_bounded_parallelism_keeps_order(self):
        recorder = ConcurrencyRecorder()
        tasks = [recorder.task(1, 0.03), recorder.task(2, 0.01), recorder.task(3, 0.02)]

        results = await run_scene_tasks(
            tasks, token=CancellationToken(), make_aborted=aborted, make_failed=failed,
            max_parallel=2, sequential_threshold=3,
        )

        assert [r.scene for r in results] == [1, 2, 3]
        assert recorder.peak == 2

    @pytest.mark.asyncio
    async def test_many_scenes_run_sequentially(self):
        recorder = ConcurrencyRecorder()
        tasks = [recorder.task(n) for n in range(1, 5)]

        results = await run_scene_tasks(
            tasks, token=CancellationToken(), make_aborted=aborted, make_failed=failed,
            max_parallel=2, sequential_threshold=3, inter_scene_delay=0,
        )

        assert recorder.peak == 1
        assert recorder.started == [1, 2, 3, 4]
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_cancellation_stops_new_scenes(self):
        token = CancellationToken()
        recorder = ConcurrencyRecorder()
        tasks = [recorder.task(1), recorder.task(2, action=token.cancel), recorder.task(3), recorder.task(4)]

        results = await run_scene_tasks(
            tasks, token=token, make_aborted=aborted, make_failed=failed,
            sequential_threshold=3, inter_scene_delay=0,
        )

        assert recorder.started == [1, 2]
        assert [r.status for r in results] == [
            SceneStatus.COMPLETED, SceneStatus.COMPLETED, SceneStatus.ABORTED, SceneStatus.ABORTED,
        ]

    @pytest.mark.asyncio
    async def test_cancel_during_inter_scene_delay(self):
        token = CancellationToken()
        recorder = ConcurrencyRecorder()
        tasks = [recorder.task(n) for n in range(1, 5)]
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        results = await run_scene_tasks(
            tasks, token=token, make_aborted=aborted, make_failed=failed,
            sequential_threshold=3, inter_scene_delay=10,
        )

        assert recorder.started == [1]
        assert [r.status for r in results][1:] == [SceneStatus.ABORTED] * 3

    @pytest.mark.asyncio
    async def test_task_exception_becomes_failed_slot(self):
        async def explode():
            raise RuntimeError("kaput")

        async def abort():
            raise AbortedError()

        results = await run_scene_tasks(
            [explode, abort], token=CancellationToken(), make_aborted=aborted, make_failed=failed,
        )

        assert results[0].status == SceneStatus.FAILED
        assert results[0].error == "kaput"
        assert results[1].status == SceneStatus.ABORTED


class TestContinuityChain:

    @pytest.mark.asyncio
    async def test_scene_waits_for_predecessor(self):
        chain = ContinuityChain(3)
        first = await chain.receive(1)
        assert first.previous_scene_end is None

        waiter = asyncio.ensure_future(chain.receive(2, CancellationToken()))
        await asyncio.sleep(0)
        assert not waiter.done()

        chain.publish(1, ContinuityState(story_so_far="\nScene 1: x", previous_scene_end="hook 1"))
        received = await waiter
        assert received.previous_scene_end == "hook 1"

    @pytest.mark.asyncio
    async def test_forward_passes_snapshot_through(self):
        chain = ContinuityChain(3)
        chain.publish(1, ContinuityState(previous_scene_end="hook 1"))
        chain.forward(2)

        assert (await chain.receive(3)).previous_scene_end == "hook 1"

    @pytest.mark.asyncio
    async def test_forward_before_predecessor_publishes(self):
        chain = ContinuityChain(3)
        chain.forward(2)
        chain.publish(1, ContinuityState(previous_scene_end="late hook"))
        await asyncio.sleep(0)

        assert (await chain.receive(3)).previous_scene_end == "late hook"

    @pytest.mark.asyncio
    async def test_receive_aborts_on_cancel(self):
        chain = ContinuityChain(2)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        with pytest.raises(AbortedError):
            await chain.receive(2, token)
