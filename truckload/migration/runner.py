"""
Job runner for catalog migrations.

Coordinates:
1. Credential validation (nothing is written for a rejected credential)
2. Job record creation in the target environment
3. Paged enumeration of the source catalog
4. Idempotency checks against the durable store
5. Concurrent dispatch of surviving videos to the coordinator
6. Job state updates (cursor, counters, final state)
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from tenacity.wait import wait_base

from truckload.config import Settings, get_settings
from truckload.destination.mux import DestinationConfig, MuxDestination
from truckload.exceptions import MigrationError, NotFound, PaginationError
from truckload.migration.coordinator import JobContext, MigrationCoordinator
from truckload.migration.cursor import CursorEngine
from truckload.migration.guard import IdempotencyGuard
from truckload.migration.tracker import PROGRESS_DONE, JobStatusTracker
from truckload.models import Credential, Cursor, MigrationStatus, Video
from truckload.providers import get_adapter
from truckload.providers.base import ProviderAdapter
from truckload.store import StorePool
from truckload.store.base import JobRecord, VideoStore

logger = logging.getLogger(__name__)


@dataclass
class JobStats:
    """Statistics from one run of a job."""

    job_id: str
    state: str = "running"
    pages: int = 0
    discovered: int = 0
    skipped: int = 0
    dispatched: int = 0
    submitted: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Job: {self.job_id} ({self.state})\n"
            f"Pages fetched: {self.pages}\n"
            f"Discovered: {self.discovered}\n"
            f"Skipped (already migrated): {self.skipped}\n"
            f"Dispatched: {self.dispatched}\n"
            f"Submitted to destination: {self.submitted}\n"
            f"Failed: {self.failed}\n"
            f"Errors: {len(self.errors)}"
        )


class JobRunner:
    """
    Runs migration jobs end to end.

    Usage:
        runner = JobRunner(StorePool())

        # Validate, create and run in one go
        stats = await runner.start("s3", credential, "qa")

        # Create now, run later (e.g. from a background task)
        job = runner.create_job("s3", credential, "qa")
        stats = await runner.run(job, credential)

        # Continue a failed or interrupted job from its saved cursor
        stats = await runner.resume(job_id, credential, "qa")

        # Stop enumerating at the next page boundary
        runner.abandon(job_id, "qa")
    """

    def __init__(
        self,
        stores: StorePool,
        destination: Optional[MuxDestination] = None,
        settings: Optional[Settings] = None,
        adapter_factory: Callable[..., ProviderAdapter] = get_adapter,
        retry_wait: Optional[wait_base] = None,
    ):
        """
        Args:
            stores: Store pool shared with the webhook receiver
            destination: Destination client (created from settings on first use)
            settings: Settings override
            adapter_factory: Builds an adapter from (platform_id, store)
            retry_wait: Backoff between submission attempts
        """
        self.stores = stores
        self.settings = settings or get_settings()
        self._destination = destination
        self.adapter_factory = adapter_factory
        self.retry_wait = retry_wait

    @property
    def destination(self) -> MuxDestination:
        """Lazy-load the destination client."""
        if self._destination is None:
            self._destination = MuxDestination(settings=self.settings)
        return self._destination

    def validate(self, platform_id: str, credential: Credential, environment: str) -> ProviderAdapter:
        """
        Build the adapter for a job and check its credential.

        Raises:
            UnknownPlatform: platform_id is not registered
            InvalidEnvironment: environment is not dev, qa or prod
            InvalidCredential: the source rejected the credential
        """
        store = self.stores.get(environment)
        adapter = self.adapter_factory(platform_id, store)
        adapter.validate_credential(credential)
        return adapter

    def create_job(self, platform_id: str, credential: Credential, environment: str) -> JobRecord:
        """
        Validate the credential and persist a new running job.

        Raises:
            InvalidCredential: before any job record is written
        """
        self.validate(platform_id, credential, environment)
        job = JobRecord(
            job_id=str(uuid.uuid4()),
            platform_id=platform_id,
            environment=environment,
            state="running",
        )
        job = self.stores.get(environment).save_job(job)
        logger.info(f"[{job.job_id}] Created {platform_id} job in {environment}")
        return job

    async def start(
        self,
        platform_id: str,
        credential: Credential,
        environment: str,
        destination_config: Optional[DestinationConfig] = None,
        discover_only: bool = False,
    ) -> JobStats:
        """Validate the credential, create the job and run it to completion."""
        job = await asyncio.to_thread(self.create_job, platform_id, credential, environment)
        return await self.run(job, credential, destination_config, discover_only=discover_only)

    def reopen_job(self, job_id: str, credential: Credential, environment: str) -> JobRecord:
        """
        Validate the credential and put a failed or interrupted job back to running.

        Raises:
            NotFound: no such job in the environment
            MigrationError: the job is completed or abandoned
            InvalidCredential: the source rejected the credential
        """
        store = self.stores.get(environment)
        job = store.get_job(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found in {environment}")
        if job.state in ("completed", "abandoned"):
            raise MigrationError(f"Job {job_id} is {job.state} and cannot be resumed")

        self.validate(job.platform_id, credential, environment)
        store.update_job(job_id, {"state": "running", "error": None})
        job.state = "running"
        job.error = None
        logger.info(f"[{job_id}] Resuming from cursor {job.cursor or '<start>'}")
        return job

    async def resume(
        self,
        job_id: str,
        credential: Credential,
        environment: str,
        destination_config: Optional[DestinationConfig] = None,
        discover_only: bool = False,
    ) -> JobStats:
        """Continue a job from its persisted cursor."""
        job = await asyncio.to_thread(self.reopen_job, job_id, credential, environment)
        return await self.run(job, credential, destination_config, discover_only=discover_only)

    def abandon(self, job_id: str, environment: str) -> bool:
        """
        Mark a job abandoned.

        Enumeration stops at the next page boundary; submissions already in
        flight are not retracted and their webhooks still finalize.
        """
        store = self.stores.get(environment)
        job = store.get_job(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found in {environment}")
        if job.state in ("completed", "failed"):
            logger.info(f"[{job_id}] Already {job.state}; not abandoning")
            return False
        store.update_job(job_id, {"state": "abandoned"})
        logger.info(f"[{job_id}] Abandoned")
        return True

    def _abandoned(self, store: VideoStore, job_id: str) -> bool:
        current = store.get_job(job_id)
        return current is not None and current.state == "abandoned"

    async def run(
        self,
        job: JobRecord,
        credential: Credential,
        destination_config: Optional[DestinationConfig] = None,
        discover_only: bool = False,
    ) -> JobStats:
        """
        Enumerate the source and dispatch every video that still needs migrating.

        Each enumeration pass is drained before the next one starts, so at most
        page_result_cap videos are in flight and the saved cursor never runs
        ahead of dispatched work. Store calls run in worker threads.

        Args:
            job: A persisted running job
            credential: Source credential (already validated)
            destination_config: Destination ingest settings
            discover_only: Record and report candidates without submitting

        Returns:
            JobStats for this run
        """
        stats = JobStats(job_id=job.job_id)
        store = self.stores.get(job.environment)
        adapter = self.adapter_factory(job.platform_id, store)
        tracker = JobStatusTracker(store)
        guard = IdempotencyGuard(store, adapter.platform_id, adapter.account_marker(credential))
        engine = CursorEngine(adapter, credential, max_results=self.settings.page_result_cap)

        context = JobContext(
            job_id=job.job_id,
            environment=job.environment,
            credential=credential,
            destination_config=destination_config or DestinationConfig(),
        )
        coordinator = None
        if not discover_only:
            coordinator = MigrationCoordinator(
                adapter,
                self.destination,
                store,
                tracker,
                guard,
                settings=self.settings,
                retry_wait=self.retry_wait,
            )

        discovered = job.discovered
        cursor = Cursor.deserialize(job.cursor) if job.cursor else None

        try:
            while True:
                if await asyncio.to_thread(self._abandoned, store, job.job_id):
                    logger.info(f"[{job.job_id}] Abandoned; stopping enumeration")
                    stats.state = "abandoned"
                    break

                result = await asyncio.to_thread(engine.collect, cursor)
                stats.pages += result.pages_fetched
                stats.discovered += len(result.videos)

                survivors = await asyncio.to_thread(
                    self._screen, guard, tracker, job.job_id, result.videos, stats
                )
                if coordinator is not None and survivors:
                    stats.dispatched += len(survivors)
                    outcomes = await asyncio.gather(
                        *(coordinator.migrate(context, video) for video in survivors),
                        return_exceptions=True,
                    )
                    self._tally(job.job_id, survivors, outcomes, stats)

                discovered += len(result.videos)
                await asyncio.to_thread(
                    store.update_job,
                    job.job_id,
                    {
                        "cursor": result.cursor.serialize() if result.cursor else None,
                        "discovered": discovered,
                        "dispatched": job.dispatched + stats.dispatched,
                    },
                )

                if result.exhausted:
                    break
                cursor = result.cursor

        except PaginationError as e:
            logger.exception(f"[{job.job_id}] Enumeration failed")
            stats.state = "failed"
            stats.errors.append(str(e))
            await asyncio.to_thread(
                store.update_job,
                job.job_id,
                {"state": "failed", "error": str(e), "cursor": e.last_cursor},
            )
        except Exception as e:
            logger.exception(f"[{job.job_id}] Job crashed")
            await asyncio.to_thread(
                store.update_job, job.job_id, {"state": "failed", "error": str(e)}
            )
            raise
        finally:
            adapter.close()

        if stats.state == "running":
            stats.state = "completed"
            await asyncio.to_thread(
                store.update_job, job.job_id, {"state": "completed", "error": None}
            )

        logger.info(f"[{job.job_id}] Run finished\n{stats}")
        return stats

    def _screen(
        self,
        guard: IdempotencyGuard,
        tracker: JobStatusTracker,
        job_id: str,
        videos: list[Video],
        stats: JobStats,
    ) -> list[Video]:
        """Run the guard over one pass and report skips; returns the videos to dispatch."""
        survivors = []
        for video in videos:
            decision = guard.check(video)
            if decision.migrate:
                survivors.append(video)
                continue
            stats.skipped += 1
            tracker.report(
                job_id,
                video.source_id,
                MigrationStatus.SKIPPED,
                PROGRESS_DONE,
                reason=decision.reason,
            )
        return survivors

    def _tally(
        self,
        job_id: str,
        videos: list[Video],
        outcomes: list,
        stats: JobStats,
    ) -> None:
        """Count one pass's outcomes."""
        for video, outcome in zip(videos, outcomes):
            if isinstance(outcome, BaseException):
                # migrate() finalizes its own failures; this is a cancelled task
                logger.error(f"[{job_id}] {video.source_id} did not finish: {outcome!r}")
                stats.failed += 1
                stats.errors.append(f"{video.source_id}: {outcome!r}")
            elif outcome.status == MigrationStatus.IN_PROGRESS:
                stats.submitted += 1
            elif outcome.status == MigrationStatus.FAILED:
                stats.failed += 1
                stats.errors.append(f"{outcome.source_id}: {outcome.reason}")
            elif outcome.status == MigrationStatus.SKIPPED:
                stats.skipped += 1
