"""
Idempotency guard: decides whether a discovered video still needs migrating.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from truckload.exceptions import AlreadyMigrated
from truckload.models import MigrationStatus, Video
from truckload.store.base import VideoRecord, VideoStore

logger = logging.getLogger(__name__)


@dataclass
class GuardDecision:
    """Outcome of a guard check."""

    migrate: bool
    status: MigrationStatus
    reason: str


class IdempotencyGuard:
    """
    Cross-references candidates against the durable store.

    Runs before any access URL is resolved, once at discovery and again at
    dispatch. Concurrent jobs over overlapping catalogs may still both
    submit the same video; the destination tolerates that.
    """

    def __init__(self, store: VideoStore, platform_id: str, account_marker: Optional[str] = None):
        """
        Args:
            store: Store for the job's environment
            platform_id: Source platform recorded on new records
            account_marker: Source account recorded on new records
        """
        self.store = store
        self.platform_id = platform_id
        self.account_marker = account_marker

    def check(self, video: Video) -> GuardDecision:
        """
        Decide the disposition of a freshly discovered video.

        New videos are recorded as unmigrated. Failed videos are migrated
        again even when an earlier attempt left a destination asset behind.
        Other videos whose record already carries a destination asset are
        skipped: a completed record stays completed, an unmigrated one is
        marked skipped and an in-progress one is left to its webhook.
        """
        record = self.store.get_video(video.source_id)

        if record is None:
            self.store.add_video(
                VideoRecord(
                    uuid=video.source_id,
                    platform=self.platform_id,
                    title=video.title,
                    status=MigrationStatus.UNMIGRATED,
                    location=video.location,
                    account_marker=self.account_marker,
                )
            )
            return GuardDecision(True, MigrationStatus.UNMIGRATED, "discovered")

        if record.status == MigrationStatus.FAILED:
            return GuardDecision(True, record.status, "previous attempt failed")

        if not record.destination_asset_id:
            return GuardDecision(True, record.status, "no destination asset recorded")

        if record.status == MigrationStatus.COMPLETED:
            logger.debug(f"{video.source_id} already migrated as {record.destination_asset_id}")
            return GuardDecision(False, MigrationStatus.COMPLETED, "already migrated")

        if record.status == MigrationStatus.UNMIGRATED:
            self.store.update_video(video.source_id, {"status": MigrationStatus.SKIPPED})
        return GuardDecision(False, MigrationStatus.SKIPPED, "destination asset already recorded")

    def ensure_migratable(self, video: Video) -> None:
        """
        Dispatch-time re-check.

        Raises:
            AlreadyMigrated: the record gained a destination asset since discovery
                and is not failed
        """
        record = self.store.get_video(video.source_id)
        if record is None or record.status == MigrationStatus.FAILED:
            return
        if record.destination_asset_id:
            raise AlreadyMigrated(
                f"{video.source_id} already has destination asset {record.destination_asset_id}"
            )
