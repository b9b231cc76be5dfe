"""
Exception classes for the migration pipeline.
"""

from typing import Optional


class MigrationError(Exception):
    """Base exception for migration errors."""


class InvalidCredential(MigrationError):
    """Source credential was rejected by the platform. Not retried."""


class NotFound(MigrationError):
    """The video no longer resolves on the source platform."""


class TransientProviderError(MigrationError):
    """Network, rate-limit or upstream failure worth retrying."""


class AlreadyMigrated(MigrationError):
    """Raised by the dispatch-time guard when a video already has a destination asset."""


class CorrelationMismatch(MigrationError):
    """Webhook carried no passthrough, or one that is not ours."""


class UnknownPlatform(MigrationError):
    """No adapter is registered for a platform id."""


class InvalidEnvironment(MigrationError, ValueError):
    """Environment name does not select a configured store."""


class PaginationError(MigrationError):
    """The cursor engine could not advance. Aborts the job."""

    def __init__(self, message: str, last_cursor: Optional[str] = None):
        super().__init__(message)
        self.last_cursor = last_cursor


class PayloadTooLarge(MigrationError, ValueError):
    """Correlation payload cannot fit the destination's passthrough field."""
