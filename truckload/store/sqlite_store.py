"""
SQLite-backed video store, one database file per environment.

Used for local runs and tests. A single connection is opened when the store
is created and shared across worker threads behind a lock.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

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


class SQLiteVideoStore(VideoStore):
    """
    SQLite implementation of VideoStore.

    Provides:
    - Keyed CRUD for video and job records
    - Keyset scans ordered by creation time
    - An append-only status ledger with at-most-once terminal reports
    """

    def __init__(self, db_path: Path | str, environment: str):
        """
        Open the store.

        Args:
            db_path: Path to SQLite database file
            environment: Environment this store serves
        """
        self.environment = environment
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            self.db_path, check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row

        self._init_db()
        logger.info(f"Opened SQLite store for '{environment}' at {self.db_path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Serialize access to the shared connection and commit on success."""
        if self._conn is None:
            raise RuntimeError(f"Store for '{self.environment}' is closed")
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS videos (
                    uuid TEXT PRIMARY KEY,
                    platform TEXT NOT NULL,
                    title TEXT,
                    status TEXT NOT NULL DEFAULT 'unmigrated',
                    location TEXT,
                    account_marker TEXT,
                    streaming_url TEXT,
                    thumbnail_url TEXT,
                    playback_url TEXT,
                    destination_asset_id TEXT,
                    destination_playback_id TEXT,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_videos_scan
                ON videos (status, account_marker, created_at, uuid)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS migration_jobs (
                    job_id TEXT PRIMARY KEY,
                    platform_id TEXT NOT NULL,
                    environment TEXT NOT NULL,
                    state TEXT NOT NULL,
                    cursor TEXT,
                    error TEXT,
                    discovered INTEGER NOT NULL DEFAULT 0,
                    dispatched INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_status_reports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    video_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    progress INTEGER NOT NULL,
                    reason TEXT,
                    terminal_key TEXT UNIQUE,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_reports_job_video
                ON job_status_reports (job_id, video_id)
            """)

    # --- Video records ---

    def get_video(self, uuid: str) -> Optional[VideoRecord]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM videos WHERE uuid = ?", (uuid,)).fetchone()
        return VideoRecord.from_dict(dict(row)) if row else None

    def _video_row(self, record: VideoRecord) -> dict:
        now = utcnow()
        record.created_at = record.created_at or now
        record.updated_at = now
        return record.to_dict()

    def upsert_video(self, record: VideoRecord) -> VideoRecord:
        row = self._video_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" * len(row))
        updates = ", ".join(f"{c} = excluded.{c}" for c in row if c not in ("uuid", "created_at"))
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT INTO videos ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT(uuid) DO UPDATE SET {updates}",
                tuple(row.values()),
            )
        return record

    def add_video(self, record: VideoRecord) -> bool:
        row = self._video_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" * len(row))
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO videos ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            return cursor.rowcount > 0

    def update_video(
        self,
        uuid: str,
        fields: dict[str, Any],
        unless_status: Optional[set[MigrationStatus]] = None,
    ) -> bool:
        unknown = set(fields) - VIDEO_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update video fields: {sorted(unknown)}")

        values = {
            k: (MigrationStatus(v).value if k == "status" else v) for k, v in fields.items()
        }
        values["updated_at"] = utcnow().isoformat()

        assignments = ", ".join(f"{k} = ?" for k in values)
        params: list[Any] = list(values.values())
        sql = f"UPDATE videos SET {assignments} WHERE uuid = ?"
        params.append(uuid)

        if unless_status:
            excluded = [MigrationStatus(s).value for s in unless_status]
            sql += f" AND status NOT IN ({', '.join('?' * len(excluded))})"
            params.extend(excluded)

        with self._get_connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount > 0

    def scan_videos(
        self,
        status: Optional[MigrationStatus] = None,
        account_marker: Optional[str] = None,
        created_after: Optional[tuple[str, str]] = None,
        limit: int = 100,
    ) -> list[VideoRecord]:
        clauses = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(MigrationStatus(status).value)
        if account_marker is not None:
            clauses.append("account_marker = ?")
            params.append(account_marker)
        if created_after is not None:
            clauses.append("(created_at > ? OR (created_at = ? AND uuid > ?))")
            params.extend([created_after[0], created_after[0], created_after[1]])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM videos {where} ORDER BY created_at, uuid LIMIT ?",
                params,
            ).fetchall()
        return [VideoRecord.from_dict(dict(row)) for row in rows]

    # --- Job records ---

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM migration_jobs WHERE job_id = ?", (job_id,)
            ).fetchone()
        return JobRecord.from_dict(dict(row)) if row else None

    def save_job(self, job: JobRecord) -> JobRecord:
        now = utcnow()
        job.created_at = job.created_at or now
        job.updated_at = now
        row = job.to_dict()
        columns = ", ".join(row)
        placeholders = ", ".join("?" * len(row))
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO migration_jobs ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
        return job

    def update_job(self, job_id: str, fields: dict[str, Any]) -> bool:
        unknown = set(fields) - JOB_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

        values = dict(fields)
        values["updated_at"] = utcnow().isoformat()
        assignments = ", ".join(f"{k} = ?" for k in values)
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE migration_jobs SET {assignments} WHERE job_id = ?",
                [*values.values(), job_id],
            )
            return cursor.rowcount > 0

    # --- Status ledger ---

    def append_report(self, report: StatusReport) -> bool:
        report.created_at = report.created_at or utcnow()
        row = report.to_dict()
        columns = ", ".join(row)
        placeholders = ", ".join("?" * len(row))
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO job_status_reports ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            return cursor.rowcount > 0

    def list_reports(self, job_id: str) -> list[StatusReport]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM job_status_reports WHERE job_id = ? ORDER BY id",
                (job_id,),
            ).fetchall()
        return [StatusReport.from_dict(dict(row)) for row in rows]

    def latest_report(self, job_id: str, video_id: str) -> Optional[StatusReport]:
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM job_status_reports
                WHERE job_id = ? AND video_id = ?
                ORDER BY id DESC LIMIT 1
                """,
                (job_id, video_id),
            ).fetchone()
        return StatusReport.from_dict(dict(row)) if row else None

    def has_terminal_report(self, job_id: str, video_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM job_status_reports WHERE terminal_key = ?",
                (f"{job_id}:{video_id}",),
            ).fetchone()
        return row is not None

    # --- Lifecycle ---

    def ping(self) -> bool:
        try:
            with self._get_connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except (sqlite3.Error, RuntimeError):
            return False

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info(f"Closed SQLite store for '{self.environment}'")
