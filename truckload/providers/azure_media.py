"""
Azure Media Services source adapter.

Media Services catalogs were imported into the durable store ahead of time,
so enumeration is a filtered scan of un-migrated records for the storage
account instead of a live blob listing. Access URLs are SAS-signed blob URLs.
"""

import logging
import posixpath
from typing import Optional

from truckload.exceptions import InvalidCredential, NotFound, TransientProviderError
from truckload.models import Credential, Cursor, MigrationStatus, Page, Video
from truckload.providers.azure_blob import AzureBlobAdapter, azure_errors
from truckload.providers.base import ProviderAdapter, looks_like_video
from truckload.store.base import VideoStore

logger = logging.getLogger(__name__)


class AzureMediaServicesAdapter(ProviderAdapter):
    """
    Store-backed adapter for Azure Media Services accounts.

    Credential: public_key/secret_key are the service principal client id and
    secret. Metadata must carry tenantId, subscriptionId, environment, and the
    storageAccount/storageKey pair holding the source files.

    Records are expected with account_marker set to the storage account and
    location set to "container/path/to/file.mp4".
    """

    platform_id = "azure-media-services"

    PAGE_SIZE = 100

    def __init__(self, store: Optional[VideoStore] = None, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        if store is None:
            raise ValueError("azure-media-services enumerates from the durable store; pass store=")
        self.store = store
        self._blobs = AzureBlobAdapter(timeout=timeout)

    def _storage_credential(self, credential: Credential) -> Credential:
        return Credential(
            public_key=credential.require("storageAccount"),
            secret_key=credential.require("storageKey"),
        )

    def account_marker(self, credential: Credential) -> Optional[str]:
        return credential.require("storageAccount")

    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        state = self.read_cursor(cursor)
        account = credential.require("storageAccount")
        position = (state["created_at"], state["uuid"]) if state else None

        records = self.store.scan_videos(
            status=MigrationStatus.UNMIGRATED,
            account_marker=account,
            created_after=position,
            limit=self.PAGE_SIZE,
        )

        videos = [
            Video(
                source_id=record.uuid,
                title=record.title or posixpath.basename(record.location or ""),
                location=record.location,
            )
            for record in records
            if record.location and looks_like_video(posixpath.basename(record.location))
        ]

        exhausted = len(records) < self.PAGE_SIZE
        next_cursor = None
        if records and not exhausted:
            last = records[-1]
            next_cursor = self.make_cursor(
                created_at=last.created_at.isoformat() if last.created_at else "",
                uuid=last.uuid,
            )

        logger.info(f"[azure-media-services] {len(records)} records, {len(videos)} candidates")
        return Page(videos=videos, next_cursor=next_cursor, exhausted=exhausted)

    def variants(self, video: Video) -> list[str]:
        if not video.location:
            raise NotFound(f"{video.source_id} has no recorded location")
        return self._blobs.variants(Video(source_id=video.location))

    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        return self._blobs.resolve(self._storage_credential(credential), video, variant)

    def validate_credential(self, credential: Credential) -> None:
        for key in ("tenantId", "subscriptionId", "environment"):
            credential.require(key)
        if not credential.secret_key:
            raise InvalidCredential("Service principal secret is required")

        environment = credential.metadata["environment"]
        if environment != self.store.environment:
            raise InvalidCredential(
                f"Credential is for '{environment}' but the job runs in '{self.store.environment}'"
            )
        if not self.store.ping():
            raise InvalidCredential(f"Cannot connect to the '{environment}' store")

        storage = self._storage_credential(credential)
        service = self._blobs._service(storage)
        try:
            with azure_errors("reading storage account information"):
                service.get_account_information(timeout=int(self.timeout))
        except (NotFound, TransientProviderError) as e:
            raise InvalidCredential(str(e)) from e

