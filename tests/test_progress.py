"""
Tests for the Progress Tracker.
"""

from reelsmith.pipeline.models import ProgressStatus
from reelsmith.pipeline.progress import ProgressTracker

from conftest import FakeClock


class TestProgressTracker:

    def test_percentage_counts_finalized_scenes(self):
        events = []
        tracker = ProgressTracker(3, events.append, clock=FakeClock())

        tracker.notify(1, ProgressStatus.SCRIPTING)
        tracker.notify(1, ProgressStatus.COMPLETED, total_time_ms=1200)
        tracker.notify(2, ProgressStatus.FAILED, error="boom")
        tracker.notify(3, ProgressStatus.ABORTED)

        assert [e.percentage for e in events] == [0, 33, 67, 100]
        assert events[2].data == {"error": "boom"}

    def test_callback_errors_do_not_escape(self):
        def broken(event):
            raise RuntimeError("listener gone")

        event = ProgressTracker(2, broken).notify(1, ProgressStatus.GENERATING)
        assert event.status == ProgressStatus.GENERATING

    def test_summary(self):
        clock = FakeClock()
        tracker = ProgressTracker(4, clock=clock)
        tracker.notify(1, ProgressStatus.COMPLETED, total_time_ms=1000)
        tracker.notify(2, ProgressStatus.COMPLETED, total_time_ms=3000)
        tracker.add_failure(3, "backend melted")
        tracker.notify(3, ProgressStatus.FAILED)
        tracker.notify(4, ProgressStatus.ABORTED)
        clock.advance(5)

        summary = tracker.get_summary()

        assert summary["completed"] == 2
        assert summary["failed"] == 1
        assert summary["aborted"] == 1
        assert summary["failed_scenes"] == [3]
        assert summary["success_rate"] == 50
        assert summary["total_time_ms"] == 5000
        assert summary["avg_scene_time_ms"] == 2000
        assert tracker.failures[0].error == "backend melted"
