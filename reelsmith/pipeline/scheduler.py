"""
Concurrency Controller — runs the per-scene tasks of one movie.

Two modes:
  - sequential: more than `sequential_threshold` scenes (or max_parallel <= 1);
    one scene at a time with `inter_scene_delay` between starts, which keeps
    long runs under the backends' per-minute windows
  - bounded:    up to `max_parallel` scenes in flight

Either way results come back in scene order, and once the token trips no
further scene is started; untried slots are synthesized as aborted.

Continuity between scenes is explicit: scene n awaits the snapshot that
scene n-1 publishes through a ContinuityChain, so parallel scenes still see
their predecessor's story-so-far and ending.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..errors import AbortedError
from ..jobs import CancellationToken
from .models import ContinuityState, SceneResult

logger = logging.getLogger(__name__)

SceneTask = Callable[[], Awaitable[SceneResult]]


class ContinuityChain:
    """One write-once snapshot slot per scene; slot 0 is the opening state."""

    def __init__(self, total_scenes: int, initial: Optional[ContinuityState] = None):
        loop = asyncio.get_running_loop()
        self._snapshots = [loop.create_future() for _ in range(total_scenes + 1)]
        self._snapshots[0].set_result(initial or ContinuityState())

    async def receive(self, scene: int, token: Optional[CancellationToken] = None) -> ContinuityState:
        """Wait for the snapshot scene-1 leaves behind."""
        future = self._snapshots[scene - 1]
        if future.done() or token is None:
            return await asyncio.shield(future)

        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({future, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if future.done():
            return future.result()
        raise AbortedError()

    def publish(self, scene: int, state: ContinuityState):
        future = self._snapshots[scene]
        if not future.done():
            future.set_result(state)

    def forward(self, scene: int):
        """Pass the predecessor's snapshot through a scene that published nothing."""
        if self._snapshots[scene].done():
            return
        source = self._snapshots[scene - 1]
        if source.done():
            self.publish(scene, source.result())
        else:
            source.add_done_callback(lambda _: self.forward(scene))


async def _run_guarded(
    scene: int,
    task: SceneTask,
    make_aborted: Callable[[int], SceneResult],
    make_failed: Callable[[int, Exception], SceneResult],
) -> SceneResult:
    try:
        return await task()
    except AbortedError:
        return make_aborted(scene)
    except Exception as e:
        logger.error(f"Scene {scene} task raised: {e}", exc_info=True)
        return make_failed(scene, e)


async def run_scene_tasks(
    tasks: list[SceneTask],
    *,
    token: CancellationToken,
    make_aborted: Callable[[int], SceneResult],
    make_failed: Callable[[int, Exception], SceneResult],
    max_parallel: int = 2,
    sequential_threshold: int = 3,
    inter_scene_delay: float = 6.0,
) -> list[SceneResult]:
    """Run scene tasks (scene i+1 is tasks[i]) and return their results in order."""
    if len(tasks) > sequential_threshold or max_parallel <= 1:
        logger.info(f"Running {len(tasks)} scenes sequentially ({inter_scene_delay:g}s apart)")
        results: list[SceneResult] = []
        for i, task in enumerate(tasks):
            scene = i + 1
            if token.cancelled:
                results.append(make_aborted(scene))
                continue
            if i > 0:
                try:
                    await token.sleep(inter_scene_delay)
                except AbortedError:
                    results.append(make_aborted(scene))
                    continue
            results.append(await _run_guarded(scene, task, make_aborted, make_failed))
        return results

    logger.info(f"Running {len(tasks)} scenes, {max_parallel} at a time")
    semaphore = asyncio.Semaphore(max_parallel)

    async def run_one(scene: int, task: SceneTask) -> SceneResult:
        async with semaphore:
            if token.cancelled:
                return make_aborted(scene)
            return await _run_guarded(scene, task, make_aborted, make_failed)

    return list(await asyncio.gather(*(run_one(i + 1, task) for i, task in enumerate(tasks))))
