"""
Job status ledger consumed by the live migration UI.
"""

import logging
import threading
from typing import Optional

from truckload.models import MigrationStatus
from truckload.store.base import StatusReport, VideoStore

logger = logging.getLogger(__name__)

PROGRESS_IN_FLIGHT = 50
PROGRESS_DONE = 100

# Serializes check-then-append across webhook threads and job tasks
_ledger_lock = threading.Lock()


class JobStatusTracker:
    """
    Append-only progress reports keyed by job id.

    Guarantees per (job, video):
    - a terminal status is recorded at most once, always with progress 100
    - non-terminal progress never goes backwards and never follows a
      terminal report
    """

    def __init__(self, store: VideoStore):
        self.store = store

    def report(
        self,
        job_id: str,
        video_id: str,
        status: MigrationStatus,
        progress: int,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Record a status report.

        Returns:
            True if the report was appended, False if it was dropped
        """
        status = MigrationStatus(status)
        if status.is_terminal:
            progress = PROGRESS_DONE
        progress = max(0, min(int(progress), PROGRESS_DONE))

        with _ledger_lock:
            if not status.is_terminal:
                if self.store.has_terminal_report(job_id, video_id):
                    logger.debug(f"[{job_id}] {video_id} already final; dropping {status.value}")
                    return False
                latest = self.store.latest_report(job_id, video_id)
                if latest is not None and latest.progress > progress:
                    logger.debug(
                        f"[{job_id}] {video_id} progress {progress} < {latest.progress}; dropping"
                    )
                    return False

            appended = self.store.append_report(
                StatusReport(
                    job_id=job_id,
                    video_id=video_id,
                    status=status,
                    progress=progress,
                    reason=reason,
                )
            )
        if appended:
            logger.info(f"[{job_id}] {video_id}: {status.value} ({progress}%)")
        else:
            logger.debug(f"[{job_id}] {video_id} already reported final; ignoring {status.value}")
        return appended

    def reports(self, job_id: str) -> list[StatusReport]:
        """Every report for a job in append order."""
        return self.store.list_reports(job_id)

    def snapshot(self, job_id: str) -> dict[str, StatusReport]:
        """Latest report per video, in first-seen order."""
        latest: dict[str, StatusReport] = {}
        for report in self.store.list_reports(job_id):
            latest[report.video_id] = report
        return latest
