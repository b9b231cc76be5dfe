"""
Migration pipeline package.

Handles enumeration of source catalogs, idempotency checks against the
durable store, submission to the destination, and reconciliation of the
destination's completion webhooks into the job status ledger.
"""

from truckload.migration.coordinator import JobContext, MigrationCoordinator, MigrationOutcome
from truckload.migration.correlator import WebhookCorrelator, WebhookOutcome, verify_signature
from truckload.migration.cursor import CursorEngine, Enumeration
from truckload.migration.guard import GuardDecision, IdempotencyGuard
from truckload.migration.runner import JobRunner, JobStats
from truckload.migration.tracker import JobStatusTracker

__all__ = [
    "CursorEngine",
    "Enumeration",
    "GuardDecision",
    "IdempotencyGuard",
    "JobContext",
    "JobRunner",
    "JobStats",
    "JobStatusTracker",
    "MigrationCoordinator",
    "MigrationOutcome",
    "WebhookCorrelator",
    "WebhookOutcome",
    "verify_signature",
]
