"""
Supabase-backed video store.

Each environment points at its own Supabase project. Expected tables mirror
the SQLite schema: videos, migration_jobs and job_status_reports (with a
unique constraint on job_status_reports.terminal_key).
"""

import logging
from typing import Any, Optional

from supabase import create_client, Client

from truckload.models import MigrationStatus
from truckload.store.base import (
    JOB_UPDATE_FIELDS,
    VIDEO_UPDATE_FIELDS,
    JobRecord,
    StatusReport,
    VideoRecord,
    VideoStore,
    utcnow,
)

logger = logging.getLogger(__name__)


class SupabaseVideoStore(VideoStore):
    """
    Supabase implementation of VideoStore.

    Every operation is one PostgREST request keyed by a primary or unique key.
    """

    VIDEOS = "videos"
    JOBS = "migration_jobs"
    REPORTS = "job_status_reports"

    def __init__(self, supabase_url: str, supabase_key: str, environment: str):
        """
        Initialize the store.

        Args:
            supabase_url: Supabase project URL for this environment
            supabase_key: Supabase service key for this environment
            environment: Environment this store serves
        """
        if not supabase_url or not supabase_key:
            raise ValueError(
                f"Supabase credentials required for '{environment}'. "
                f"Set SUPABASE_URL_{environment.upper()} and SUPABASE_KEY_{environment.upper()} in .env"
            )

        self.environment = environment
        self.url = supabase_url
        self.key = supabase_key
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        """Lazy-load Supabase client."""
        if self._client is None:
            self._client = create_client(self.url, self.key)
        return self._client

    # --- Video records ---

    def get_video(self, uuid: str) -> Optional[VideoRecord]:
        result = self.client.table(self.VIDEOS).select("*").eq("uuid", uuid).execute()
        if result.data:
            return VideoRecord.from_dict(result.data[0])
        return None

    def upsert_video(self, record: VideoRecord) -> VideoRecord:
        record.updated_at = utcnow()
        data = record.to_dict()
        if record.created_at is None:
            data.pop("created_at", None)  # Let the column default apply
        result = self.client.table(self.VIDEOS).upsert(data, on_conflict="uuid").execute()
        if result.data:
            return VideoRecord.from_dict(result.data[0])
        return record

    def add_video(self, record: VideoRecord) -> bool:
        now = utcnow()
        record.created_at = record.created_at or now
        record.updated_at = now
        result = (
            self.client.table(self.VIDEOS)
            .upsert(record.to_dict(), on_conflict="uuid", ignore_duplicates=True)
            .execute()
        )
        return bool(result.data)

    def update_video(
        self,
        uuid: str,
        fields: dict[str, Any],
        unless_status: Optional[set[MigrationStatus]] = None,
    ) -> bool:
        unknown = set(fields) - VIDEO_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update video fields: {sorted(unknown)}")

        data = {k: (MigrationStatus(v).value if k == "status" else v) for k, v in fields.items()}
        data["updated_at"] = utcnow().isoformat()

        query = self.client.table(self.VIDEOS).update(data).eq("uuid", uuid)
        if unless_status:
            query = query.not_.in_("status", [MigrationStatus(s).value for s in unless_status])

        result = query.execute()
        return bool(result.data)

    def scan_videos(
        self,
        status: Optional[MigrationStatus] = None,
        account_marker: Optional[str] = None,
        created_after: Optional[tuple[str, str]] = None,
        limit: int = 100,
    ) -> list[VideoRecord]:
        query = self.client.table(self.VIDEOS).select("*")
        if status is not None:
            query = query.eq("status", MigrationStatus(status).value)
        if account_marker is not None:
            query = query.eq("account_marker", account_marker)
        if created_after is not None:
            created_at, uuid = created_after
            query = query.or_(
                f"created_at.gt.{created_at},and(created_at.eq.{created_at},uuid.gt.{uuid})"
            )

        result = query.order("created_at").order("uuid").limit(limit).execute()
        return [VideoRecord.from_dict(row) for row in result.data] if result.data else []

    # --- Job records ---

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        result = self.client.table(self.JOBS).select("*").eq("job_id", job_id).execute()
        if result.data:
            return JobRecord.from_dict(result.data[0])
        return None

    def save_job(self, job: JobRecord) -> JobRecord:
        now = utcnow()
        job.created_at = job.created_at or now
        job.updated_at = now
        result = self.client.table(self.JOBS).upsert(job.to_dict(), on_conflict="job_id").execute()
        if result.data:
            return JobRecord.from_dict(result.data[0])
        return job

    def update_job(self, job_id: str, fields: dict[str, Any]) -> bool:
        unknown = set(fields) - JOB_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

        data = dict(fields)
        data["updated_at"] = utcnow().isoformat()
        result = self.client.table(self.JOBS).update(data).eq("job_id", job_id).execute()
        return bool(result.data)

    # --- Status ledger ---

    def append_report(self, report: StatusReport) -> bool:
        report.created_at = report.created_at or utcnow()
        data = report.to_dict()
        if report.terminal:
            result = (
                self.client.table(self.REPORTS)
                .upsert(data, on_conflict="terminal_key", ignore_duplicates=True)
                .execute()
            )
        else:
            result = self.client.table(self.REPORTS).insert(data).execute()
        return bool(result.data)

    def list_reports(self, job_id: str) -> list[StatusReport]:
        result = (
            self.client.table(self.REPORTS)
            .select("*")
            .eq("job_id", job_id)
            .order("id")
            .execute()
        )
        return [StatusReport.from_dict(row) for row in result.data] if result.data else []

    def latest_report(self, job_id: str, video_id: str) -> Optional[StatusReport]:
        result = (
            self.client.table(self.REPORTS)
            .select("*")
            .eq("job_id", job_id)
            .eq("video_id", video_id)
            .order("id", desc=True)
            .limit(1)
            .execute()
        )
        if result.data:
            return StatusReport.from_dict(result.data[0])
        return None

    def has_terminal_report(self, job_id: str, video_id: str) -> bool:
        result = (
            self.client.table(self.REPORTS)
            .select("id")
            .eq("terminal_key", f"{job_id}:{video_id}")
            .execute()
        )
        return bool(result.data)

    # --- Lifecycle ---

    def ping(self) -> bool:
        try:
            self.client.table(self.JOBS).select("job_id").limit(1).execute()
            return True
        except Exception as e:
            logger.warning(f"Supabase store for '{self.environment}' unreachable: {e}")
            return False

    def close(self) -> None:
        # PostgREST requests are stateless; dropping the client is enough
        self._client = None
