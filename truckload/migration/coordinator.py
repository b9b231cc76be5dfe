"""
Per-video migration: resolve the source URL, submit to the destination.

State machine per video:
    Discovered -> URLResolved -> Submitted -> {Completed, Failed, Skipped}

The coordinator owns everything up to Submitted. Completed/Failed after
submission are decided by the webhook correlator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from truckload.config import Settings, get_settings
from truckload.destination.mux import DestinationConfig, MuxDestination
from truckload.exceptions import (
    AlreadyMigrated,
    MigrationError,
    NotFound,
    PayloadTooLarge,
    TransientProviderError,
)
from truckload.migration.guard import IdempotencyGuard
from truckload.migration.tracker import PROGRESS_DONE, PROGRESS_IN_FLIGHT, JobStatusTracker
from truckload.models import CorrelationPayload, Credential, MigrationStatus, Video
from truckload.providers.base import ProviderAdapter
from truckload.store.base import VideoStore

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """What every stage needs to know about the job a video belongs to."""

    job_id: str
    environment: str
    credential: Credential
    destination_config: DestinationConfig = field(default_factory=DestinationConfig)


@dataclass
class MigrationOutcome:
    """Where the coordinator left a video."""

    source_id: str
    status: MigrationStatus
    destination_asset_id: Optional[str] = None
    reason: Optional[str] = None


class MigrationCoordinator:
    """
    Runs the per-video state machine for one job.

    Access URL resolution is capped at the adapter's fetch_video concurrency
    and each variant attempt is bounded by a timeout. Submissions are retried
    with exponential backoff on transient destination errors.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        destination: MuxDestination,
        store: VideoStore,
        tracker: JobStatusTracker,
        guard: IdempotencyGuard,
        settings: Optional[Settings] = None,
        retry_wait: Optional[wait_base] = None,
    ):
        """
        Args:
            adapter: Source adapter for the job
            destination: Destination ingest client
            store: Store for the job's environment
            tracker: Status ledger for the job's environment
            guard: Idempotency guard for the job
            settings: Settings override
            retry_wait: Backoff strategy between submission attempts
        """
        settings = settings or get_settings()
        self.adapter = adapter
        self.destination = destination
        self.store = store
        self.tracker = tracker
        self.guard = guard

        self.resolve_timeout = settings.resolve_timeout_seconds
        self.max_attempts = settings.submit_max_attempts
        self.retry_wait = retry_wait or wait_exponential(
            min=settings.retry_backoff_min, max=settings.retry_backoff_max
        )

        self._fetch_slots = asyncio.Semaphore(adapter.fetch_video_concurrency)
        self._submit_slots = asyncio.Semaphore(settings.max_concurrent_submissions)

    async def migrate(self, job: JobContext, video: Video) -> MigrationOutcome:
        """
        Take one video from Discovered to Submitted.

        Never raises for per-video problems; every failure is finalized in
        the store and the status ledger and returned as an outcome. Store
        calls run in worker threads so a remote store never blocks the loop.
        """
        try:
            return await self._migrate(job, video)
        except Exception as e:
            logger.exception(f"[{job.job_id}] Error migrating {video.source_id}")
            return await asyncio.to_thread(self._fail, job, video, f"Unexpected error: {e}")

    async def _migrate(self, job: JobContext, video: Video) -> MigrationOutcome:
        # Re-check: another job may have migrated it since discovery
        try:
            await asyncio.to_thread(self.guard.ensure_migratable, video)
        except AlreadyMigrated as e:
            await asyncio.to_thread(
                self.tracker.report,
                job.job_id,
                video.source_id,
                MigrationStatus.SKIPPED,
                PROGRESS_DONE,
                reason=str(e),
            )
            return MigrationOutcome(video.source_id, MigrationStatus.SKIPPED, reason=str(e))

        payload = CorrelationPayload(
            job_id=job.job_id,
            source_video_id=video.source_id,
            environment=job.environment,
            title=video.title,
        )
        # Checked before resolving so an uncorrelatable video costs no source calls
        try:
            payload.to_passthrough()
        except PayloadTooLarge as e:
            return await asyncio.to_thread(self._fail, job, video, f"Cannot correlate: {e}")

        # Discovered -> URLResolved
        try:
            resolved = await self._resolve(job, video)
        except NotFound as e:
            return await asyncio.to_thread(self._fail, job, video, f"Source not found: {e}")
        except MigrationError as e:
            return await asyncio.to_thread(self._fail, job, video, f"Could not resolve source: {e}")

        # URLResolved -> Submitted
        try:
            asset_id = await self._submit(resolved.access_url, payload, job.destination_config)
        except MigrationError as e:
            return await asyncio.to_thread(self._fail, job, video, f"Submission failed: {e}")

        await asyncio.to_thread(self._record_submitted, job, video, asset_id)
        return MigrationOutcome(video.source_id, MigrationStatus.IN_PROGRESS, destination_asset_id=asset_id)

    async def _resolve(self, job: JobContext, video: Video) -> Video:
        # Each variant attempt is bounded inside fetch_video
        async with self._fetch_slots:
            return await asyncio.to_thread(
                self.adapter.fetch_video, job.credential, video, self.resolve_timeout
            )

    async def _submit(
        self, access_url: str, payload: CorrelationPayload, config: DestinationConfig
    ) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async with self._submit_slots:
            async for attempt in retrying:
                with attempt:
                    asset_id = await asyncio.to_thread(
                        self.destination.submit, access_url, payload, config
                    )
        return asset_id

    def _record_submitted(self, job: JobContext, video: Video, asset_id: str) -> None:
        self.store.update_video(
            video.source_id,
            {
                "status": MigrationStatus.IN_PROGRESS,
                "destination_asset_id": asset_id,
                "error_message": None,
            },
            unless_status={MigrationStatus.COMPLETED},
        )
        self.tracker.report(
            job.job_id, video.source_id, MigrationStatus.IN_PROGRESS, PROGRESS_IN_FLIGHT
        )

    def _fail(self, job: JobContext, video: Video, reason: str) -> MigrationOutcome:
        logger.warning(f"[{job.job_id}] {video.source_id} failed: {reason}")
        self.store.update_video(
            video.source_id,
            {"status": MigrationStatus.FAILED, "error_message": reason},
            unless_status={MigrationStatus.COMPLETED},
        )
        self.tracker.report(
            job.job_id, video.source_id, MigrationStatus.FAILED, PROGRESS_DONE, reason=reason
        )
        return MigrationOutcome(video.source_id, MigrationStatus.FAILED, reason=reason)
