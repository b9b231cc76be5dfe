"""
Webhook correlator.

Matches destination lifecycle events back to source videos through the
passthrough payload attached at submission time, then finalizes the video
record and the job status ledger. Works regardless of the job's state, so
videos submitted by an abandoned job still finalize.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from truckload.config import Settings, get_settings
from truckload.exceptions import CorrelationMismatch, InvalidEnvironment
from truckload.migration.tracker import PROGRESS_DONE, PROGRESS_IN_FLIGHT, JobStatusTracker
from truckload.models import CorrelationPayload, MigrationStatus
from truckload.store import StorePool

logger = logging.getLogger(__name__)

ASSET_CREATED = "video.asset.created"
ASSET_READY = "video.asset.ready"
ASSET_ERRORED = "video.asset.errored"


@dataclass
class WebhookOutcome:
    """What the correlator did with one event."""

    ok: bool
    event_type: Optional[str] = None
    job_id: Optional[str] = None
    video_id: Optional[str] = None
    reason: Optional[str] = None


def verify_signature(
    header: Optional[str],
    body: bytes,
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> bool:
    """
    Check a Mux-Signature header.

    The header looks like ``t=<unix ts>,v1=<hex hmac>``; the signed message
    is ``"<ts>.<raw body>"`` keyed with the webhook signing secret.
    """
    if not header:
        return False

    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        return False
    try:
        issued = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - issued) > tolerance_seconds:
        logger.warning(f"Webhook signature timestamp {issued} outside tolerance")
        return False

    message = f"{timestamp}.".encode() + body
    expected = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, sig) for sig in signatures)


class WebhookCorrelator:
    """Applies destination webhook events to the store of the right environment."""

    def __init__(self, stores: StorePool, settings: Optional[Settings] = None):
        self.stores = stores
        self.settings = settings or get_settings()

    def handle(self, event: dict[str, Any]) -> WebhookOutcome:
        """
        Apply one webhook event.

        Never raises for correlation problems: unknown event types and
        missing or malformed passthrough payloads are acknowledged with
        ok=False so the destination stops redelivering them.
        """
        event_type = event.get("type") if isinstance(event, dict) else None
        data = event.get("data") if isinstance(event, dict) else None
        if not isinstance(data, dict):
            data = {}

        if event_type not in (ASSET_CREATED, ASSET_READY, ASSET_ERRORED):
            logger.debug(f"Ignoring webhook event {event_type!r}")
            return WebhookOutcome(ok=False, event_type=event_type, reason="unhandled event type")

        try:
            payload = CorrelationPayload.from_passthrough(data.get("passthrough"))
            store = self.stores.get(payload.environment)
        except (CorrelationMismatch, InvalidEnvironment) as e:
            # Assets created outside a migration carry no passthrough
            logger.warning(f"Dropping {event_type} for asset {data.get('id')}: {e}")
            return WebhookOutcome(ok=False, event_type=event_type, reason=str(e))

        tracker = JobStatusTracker(store)
        outcome = WebhookOutcome(
            ok=True,
            event_type=event_type,
            job_id=payload.job_id,
            video_id=payload.source_video_id,
        )

        if event_type == ASSET_CREATED:
            tracker.report(
                payload.job_id, payload.source_video_id, MigrationStatus.IN_PROGRESS, PROGRESS_IN_FLIGHT
            )
        elif event_type == ASSET_ERRORED:
            outcome.reason = _error_message(data)
            store.update_video(
                payload.source_video_id,
                {
                    "status": MigrationStatus.FAILED,
                    "error_message": outcome.reason,
                },
                unless_status={MigrationStatus.COMPLETED},
            )
            tracker.report(
                payload.job_id,
                payload.source_video_id,
                MigrationStatus.FAILED,
                PROGRESS_DONE,
                reason=outcome.reason,
            )
        else:
            outcome.reason = self._asset_ready(store, tracker, payload, data)

        return outcome

    def _asset_ready(self, store, tracker: JobStatusTracker, payload: CorrelationPayload, data: dict) -> Optional[str]:
        record = store.get_video(payload.source_video_id)
        if record is None:
            logger.warning(
                f"[{payload.job_id}] Asset ready for unknown video {payload.source_video_id} "
                f"in {payload.environment}"
            )
            tracker.report(
                payload.job_id,
                payload.source_video_id,
                MigrationStatus.SKIPPED,
                PROGRESS_DONE,
                reason="video not found",
            )
            return "video not found"

        playback_id = _playback_id(data)
        fields: dict[str, Any] = {
            "status": MigrationStatus.COMPLETED,
            "destination_asset_id": data.get("id"),
            "destination_playback_id": playback_id,
            "error_message": None,
        }
        if playback_id:
            fields["streaming_url"] = self.settings.streaming_url(playback_id)
            fields["thumbnail_url"] = self.settings.thumbnail_url(playback_id)
            fields["playback_url"] = self.settings.playback_url(playback_id)

        store.update_video(payload.source_video_id, fields)
        tracker.report(payload.job_id, payload.source_video_id, MigrationStatus.COMPLETED, PROGRESS_DONE)
        return None


def _playback_id(data: dict) -> Optional[str]:
    playback_ids = data.get("playback_ids") or []
    for entry in playback_ids:
        if isinstance(entry, dict) and entry.get("id"):
            return entry["id"]
    return None


def _error_message(data: dict) -> str:
    errors = data.get("errors") or {}
    messages = errors.get("messages") if isinstance(errors, dict) else None
    if messages:
        return "; ".join(str(m) for m in messages)
    return "Destination reported an ingest error"
