"""
Core data types shared across the migration pipeline.

Video, Credential and Cursor are transient values passed between components;
persisted records live in truckload.store.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from truckload.config import ENVIRONMENTS
from truckload.exceptions import (
    CorrelationMismatch,
    InvalidCredential,
    PaginationError,
    PayloadTooLarge,
)

# Mux caps the passthrough field at 255 characters
PASSTHROUGH_MAX_LENGTH = 255


class MigrationStatus(str, Enum):
    UNMIGRATED = "unmigrated"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {MigrationStatus.COMPLETED, MigrationStatus.FAILED, MigrationStatus.SKIPPED}
)


@dataclass
class Credential:
    """Capability bundle for one source platform."""

    public_key: str
    secret_key: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def platform_id(self) -> Optional[str]:
        return self.metadata.get("platformId")

    def require(self, key: str) -> str:
        """Get a metadata value that the adapter cannot work without."""
        value = self.metadata.get(key)
        if not value:
            raise InvalidCredential(f"Credential metadata is missing '{key}'")
        return str(value)


@dataclass
class Video:
    """One source asset under migration."""

    source_id: str
    title: Optional[str] = None
    location: Optional[str] = None  # Container, bucket or account the asset lives in
    access_url: Optional[str] = None  # Transient, never persisted
    migration_status: MigrationStatus = MigrationStatus.UNMIGRATED
    destination_asset_id: Optional[str] = None


@dataclass(frozen=True)
class Cursor:
    """
    Opaque pagination state tagged with the platform that produced it.

    The payload encoding is adapter-defined; only the adapter of the same
    kind may interpret it.
    """

    kind: str
    payload: bytes

    def serialize(self) -> str:
        return f"{self.kind}:{base64.urlsafe_b64encode(self.payload).decode('ascii')}"

    @classmethod
    def deserialize(cls, value: str) -> "Cursor":
        kind, sep, encoded = value.partition(":")
        if not sep or not kind:
            raise PaginationError(f"Malformed cursor: {value!r}")
        try:
            payload = base64.urlsafe_b64decode(encoded.encode("ascii"))
        except (binascii.Error, ValueError) as e:
            raise PaginationError(f"Malformed cursor payload: {e}") from e
        return cls(kind=kind, payload=payload)

    @classmethod
    def from_json(cls, kind: str, data: dict) -> "Cursor":
        return cls(kind=kind, payload=json.dumps(data, sort_keys=True).encode("utf-8"))

    def to_json(self) -> dict:
        try:
            return json.loads(self.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PaginationError(f"Cursor payload is not valid JSON: {e}") from e


@dataclass
class Page:
    """One fetch_page result."""

    videos: list[Video]
    next_cursor: Optional[Cursor]
    exhausted: bool


_PAYLOAD_KEYS = frozenset({"jobId", "sourceVideoId", "environment", "title"})


@dataclass(frozen=True)
class CorrelationPayload:
    """Data round-tripped through the destination's passthrough field."""

    job_id: str
    source_video_id: str
    environment: str
    title: Optional[str] = None

    def _as_wire(self, title: Optional[str]) -> str:
        return json.dumps(
            {
                "jobId": self.job_id,
                "sourceVideoId": self.source_video_id,
                "environment": self.environment,
                "title": title,
            },
            separators=(",", ":"),
        )

    def to_passthrough(self) -> str:
        """Serialize to the passthrough string, shortening the title to fit."""
        wire = self._as_wire(self.title)
        if len(wire) <= PASSTHROUGH_MAX_LENGTH:
            return wire

        title = self.title or ""
        while title and len(wire) > PASSTHROUGH_MAX_LENGTH:
            excess = len(wire) - PASSTHROUGH_MAX_LENGTH
            title = title[:-excess] if excess < len(title) else ""
            wire = self._as_wire(title)
        if len(wire) > PASSTHROUGH_MAX_LENGTH:
            raise PayloadTooLarge(
                f"Correlation payload for {self.source_video_id} exceeds "
                f"{PASSTHROUGH_MAX_LENGTH} characters"
            )
        return wire

    @classmethod
    def from_passthrough(cls, raw: Optional[str]) -> "CorrelationPayload":
        """Parse a passthrough string. Anything but our exact shape is rejected."""
        if not raw:
            raise CorrelationMismatch("Event has no passthrough")
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            raise CorrelationMismatch(f"Passthrough is not JSON: {e}") from e

        if not isinstance(data, dict) or set(data) != _PAYLOAD_KEYS:
            raise CorrelationMismatch("Passthrough does not match the correlation schema")

        for key in ("jobId", "sourceVideoId", "environment"):
            if not isinstance(data[key], str) or not data[key]:
                raise CorrelationMismatch(f"Passthrough field '{key}' must be a non-empty string")
        if data["title"] is not None and not isinstance(data["title"], str):
            raise CorrelationMismatch("Passthrough field 'title' must be a string")
        if data["environment"] not in ENVIRONMENTS:
            raise CorrelationMismatch(f"Unknown environment {data['environment']!r}")

        return cls(
            job_id=data["jobId"],
            source_video_id=data["sourceVideoId"],
            environment=data["environment"],
            title=data["title"],
        )
