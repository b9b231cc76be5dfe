import threading
from unittest.mock import patch

from truckload.migration.tracker import JobStatusTracker
from truckload.models import MigrationStatus


class TestJobStatusTracker:
    """Append-only status ledger guarantees."""

    def test_terminal_reports_always_carry_full_progress(self, store):
        tracker = JobStatusTracker(store)
        tracker.report("j1", "v1", MigrationStatus.FAILED, 0, reason="gone")

        [report] = tracker.reports("j1")
        assert report.status == MigrationStatus.FAILED
        assert report.progress == 100
        assert report.reason == "gone"

    def test_terminal_reported_at_most_once(self, store):
        tracker = JobStatusTracker(store)
        assert tracker.report("j1", "v1", MigrationStatus.COMPLETED, 100)
        assert not tracker.report("j1", "v1", MigrationStatus.COMPLETED, 100)
        assert not tracker.report("j1", "v1", MigrationStatus.FAILED, 100)
        assert len(tracker.reports("j1")) == 1

    def test_progress_after_terminal_is_dropped(self, store):
        tracker = JobStatusTracker(store)
        tracker.report("j1", "v1", MigrationStatus.COMPLETED, 100)
        assert not tracker.report("j1", "v1", MigrationStatus.IN_PROGRESS, 50)
        assert tracker.snapshot("j1")["v1"].status == MigrationStatus.COMPLETED

    def test_progress_never_goes_backwards(self, store):
        tracker = JobStatusTracker(store)
        assert tracker.report("j1", "v1", MigrationStatus.IN_PROGRESS, 50)
        assert not tracker.report("j1", "v1", MigrationStatus.IN_PROGRESS, 10)
        assert tracker.report("j1", "v1", MigrationStatus.IN_PROGRESS, 50)

        progress = [r.progress for r in tracker.reports("j1")]
        assert progress == sorted(progress)

    def test_snapshot_is_latest_per_video(self, store):
        tracker = JobStatusTracker(store)
        tracker.report("j1", "v1", MigrationStatus.IN_PROGRESS, 50)
        tracker.report("j1", "v2", MigrationStatus.SKIPPED, 100)
        tracker.report("j1", "v1", MigrationStatus.COMPLETED, 100)

        snapshot = tracker.snapshot("j1")
        assert list(snapshot) == ["v1", "v2"]
        assert snapshot["v1"].to_public() == {"videoId": "v1", "status": "completed", "progress": 100}
        assert snapshot["v2"].to_public() == {"videoId": "v2", "status": "skipped", "progress": 100}

    def test_jobs_are_tracked_separately(self, store):
        tracker = JobStatusTracker(store)
        tracker.report("j1", "v1", MigrationStatus.COMPLETED, 100)
        assert tracker.report("j2", "v1", MigrationStatus.COMPLETED, 100)
        assert tracker.reports("j3") == []

    def test_concurrent_reports_cannot_interleave(self, store):
        tracker = JobStatusTracker(store)
        original = store.latest_report
        racers = []

        def latest_report(job_id, video_id):
            # Another writer arrives between the progress check and the append
            if not racers:
                racer = threading.Thread(
                    target=tracker.report, args=(job_id, video_id, MigrationStatus.IN_PROGRESS, 60)
                )
                racers.append(racer)
                racer.start()
                racer.join(timeout=0.2)
            return original(job_id, video_id)

        with patch.object(store, "latest_report", side_effect=latest_report):
            tracker.report("j1", "v1", MigrationStatus.IN_PROGRESS, 50)
            racers[0].join()

        assert [r.progress for r in tracker.reports("j1")] == [50, 60]
