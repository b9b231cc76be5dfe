"""
Durable store interface and record types.

A store instance is scoped to exactly one environment. All mutations are
single-record keyed updates; nothing here needs a multi-record transaction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from truckload.models import MigrationStatus, TERMINAL_STATUSES

JobState = Literal["running", "completed", "failed", "abandoned"]

# Fields a caller may pass to update_video()
VIDEO_UPDATE_FIELDS = frozenset({
    "title",
    "status",
    "streaming_url",
    "thumbnail_url",
    "playback_url",
    "destination_asset_id",
    "destination_playback_id",
    "error_message",
})

JOB_UPDATE_FIELDS = frozenset({"state", "cursor", "error", "discovered", "dispatched"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        # Handle both Z suffix and +00:00
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None


@dataclass
class VideoRecord:
    """Persisted state of one source video in one environment."""

    uuid: str  # Source platform id
    platform: str
    title: Optional[str] = None
    status: MigrationStatus = MigrationStatus.UNMIGRATED
    location: Optional[str] = None
    account_marker: Optional[str] = None
    streaming_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    playback_url: Optional[str] = None
    destination_asset_id: Optional[str] = None
    destination_playback_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to a row for upsert."""
        data = {
            "uuid": self.uuid,
            "platform": self.platform,
            "title": self.title,
            "status": MigrationStatus(self.status).value,
            "location": self.location,
            "account_marker": self.account_marker,
            "streaming_url": self.streaming_url,
            "thumbnail_url": self.thumbnail_url,
            "playback_url": self.playback_url,
            "destination_asset_id": self.destination_asset_id,
            "destination_playback_id": self.destination_playback_id,
            "error_message": self.error_message,
        }
        if self.created_at:
            data["created_at"] = self.created_at.isoformat()
        if self.updated_at:
            data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "VideoRecord":
        """Create from a store row."""
        return cls(
            uuid=data["uuid"],
            platform=data["platform"],
            title=data.get("title"),
            status=MigrationStatus(data.get("status") or MigrationStatus.UNMIGRATED.value),
            location=data.get("location"),
            account_marker=data.get("account_marker"),
            streaming_url=data.get("streaming_url"),
            thumbnail_url=data.get("thumbnail_url"),
            playback_url=data.get("playback_url"),
            destination_asset_id=data.get("destination_asset_id"),
            destination_playback_id=data.get("destination_playback_id"),
            error_message=data.get("error_message"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class JobRecord:
    """Persisted state of one migration run."""

    job_id: str
    platform_id: str
    environment: str
    state: JobState = "running"
    cursor: Optional[str] = None  # Serialized Cursor, last page fully enumerated
    error: Optional[str] = None
    discovered: int = 0
    dispatched: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = {
            "job_id": self.job_id,
            "platform_id": self.platform_id,
            "environment": self.environment,
            "state": self.state,
            "cursor": self.cursor,
            "error": self.error,
            "discovered": self.discovered,
            "dispatched": self.dispatched,
        }
        if self.created_at:
            data["created_at"] = self.created_at.isoformat()
        if self.updated_at:
            data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "JobRecord":
        return cls(
            job_id=data["job_id"],
            platform_id=data["platform_id"],
            environment=data["environment"],
            state=data.get("state", "running"),
            cursor=data.get("cursor"),
            error=data.get("error"),
            discovered=data.get("discovered") or 0,
            dispatched=data.get("dispatched") or 0,
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )


@dataclass
class StatusReport:
    """One entry of the job status ledger."""

    job_id: str
    video_id: str
    status: MigrationStatus
    progress: int
    reason: Optional[str] = None
    created_at: Optional[datetime] = field(default=None)

    @property
    def terminal(self) -> bool:
        return MigrationStatus(self.status) in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        data = {
            "job_id": self.job_id,
            "video_id": self.video_id,
            "status": MigrationStatus(self.status).value,
            "progress": self.progress,
            "reason": self.reason,
            # Unique per (job, video) for terminal reports, NULL otherwise
            "terminal_key": f"{self.job_id}:{self.video_id}" if self.terminal else None,
        }
        if self.created_at:
            data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StatusReport":
        return cls(
            job_id=data["job_id"],
            video_id=data["video_id"],
            status=MigrationStatus(data["status"]),
            progress=int(data["progress"]),
            reason=data.get("reason"),
            created_at=_parse_datetime(data.get("created_at")),
        )

    def to_public(self) -> dict[str, Any]:
        """Shape consumed by the status UI."""
        return {
            "videoId": self.video_id,
            "status": MigrationStatus(self.status).value,
            "progress": self.progress,
        }


class VideoStore(ABC):
    """
    Durable store for video records, job records and the status ledger.

    Implementations must keep every method a single keyed read or write.
    """

    environment: str

    # --- Video records ---

    @abstractmethod
    def get_video(self, uuid: str) -> Optional[VideoRecord]:
        """Look up a video by source id."""

    @abstractmethod
    def upsert_video(self, record: VideoRecord) -> VideoRecord:
        """Insert or fully replace a video record."""

    @abstractmethod
    def add_video(self, record: VideoRecord) -> bool:
        """Insert a video record unless one exists. Returns True if inserted."""

    @abstractmethod
    def update_video(
        self,
        uuid: str,
        fields: dict[str, Any],
        unless_status: Optional[set[MigrationStatus]] = None,
    ) -> bool:
        """
        Set the given fields on a video record.

        Args:
            uuid: Source id of the record
            fields: Column values to set (see VIDEO_UPDATE_FIELDS)
            unless_status: Leave the record untouched if its status is one of these

        Returns:
            True if a record was updated
        """

    @abstractmethod
    def scan_videos(
        self,
        status: Optional[MigrationStatus] = None,
        account_marker: Optional[str] = None,
        created_after: Optional[tuple[str, str]] = None,
        limit: int = 100,
    ) -> list[VideoRecord]:
        """
        Filtered scan ordered by (created_at, uuid).

        Args:
            status: Only records with this status
            account_marker: Only records for this source account
            created_after: Keyset position (created_at ISO string, uuid) to start after
            limit: Maximum records returned
        """

    # --- Job records ---

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Look up a job."""

    @abstractmethod
    def save_job(self, job: JobRecord) -> JobRecord:
        """Insert or replace a job record."""

    @abstractmethod
    def update_job(self, job_id: str, fields: dict[str, Any]) -> bool:
        """Set the given fields on a job record."""

    # --- Status ledger ---

    @abstractmethod
    def append_report(self, report: StatusReport) -> bool:
        """
        Append a status report.

        Terminal reports are unique per (job, video); a duplicate is ignored
        and False is returned.
        """

    @abstractmethod
    def list_reports(self, job_id: str) -> list[StatusReport]:
        """All reports for a job in append order."""

    @abstractmethod
    def latest_report(self, job_id: str, video_id: str) -> Optional[StatusReport]:
        """Most recent report for one video in a job."""

    @abstractmethod
    def has_terminal_report(self, job_id: str, video_id: str) -> bool:
        """Whether a terminal report exists for one video in a job."""

    # --- Lifecycle ---

    @abstractmethod
    def ping(self) -> bool:
        """Cheap reachability check."""

    @abstractmethod
    def close(self) -> None:
        """Release connections."""
