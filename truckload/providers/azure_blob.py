"""
Azure Blob Storage source adapter.

Enumerates containers, then the blobs inside each container, and hands out
read-only SAS URLs for the blobs that look like source videos.
"""

import logging
import posixpath
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, generate_blob_sas

from truckload.exceptions import InvalidCredential, NotFound, TransientProviderError
from truckload.models import Credential, Cursor, Page, Video
from truckload.providers.base import ProviderAdapter, filename_variants, looks_like_video

logger = logging.getLogger(__name__)


@contextmanager
def azure_errors(what: str) -> Iterator[None]:
    """Translate Azure SDK errors into the migration error taxonomy."""
    try:
        yield
    except ClientAuthenticationError as e:
        raise InvalidCredential(f"Azure rejected the credential ({what})") from e
    except ResourceNotFoundError as e:
        raise NotFound(f"{what}: {e.message}") from e
    except HttpResponseError as e:
        if e.status_code in (401, 403):
            raise InvalidCredential(f"Azure rejected the credential ({what})") from e
        raise TransientProviderError(f"{what}: {e.message}") from e
    except AzureError as e:
        raise TransientProviderError(f"{what}: {e}") from e


def split_blob_id(source_id: str) -> tuple[str, str]:
    """Split a "container/blob/name.mp4" source id into container and blob name."""
    container, sep, blob_name = source_id.partition("/")
    if not sep or not blob_name:
        raise NotFound(f"Not a blob id: {source_id!r}")
    return container, blob_name


class AzureBlobAdapter(ProviderAdapter):
    """
    Azure Blob Storage adapter.

    Credential: public_key is the storage account name, secret_key the
    account key. Metadata "container" names the container used to validate
    the credential.

    One fetch_page call covers one page of containers and drains every blob
    in each of them. The cursor is the container continuation token, so a
    crash mid-page restarts that page of containers from the beginning.
    """

    platform_id = "azure"

    CONTAINER_PAGE_SIZE = 25
    BLOB_PAGE_SIZE = 100

    def _service(self, credential: Credential) -> BlobServiceClient:
        account_name = credential.public_key
        return BlobServiceClient(
            account_url=f"https://{account_name}.blob.core.windows.net",
            credential={"account_name": account_name, "account_key": credential.secret_key},
        )

    def _drain_container(self, service: BlobServiceClient, container: str) -> list[Video]:
        """Collect every candidate blob in one container."""
        videos: list[Video] = []
        container_client = service.get_container_client(container)
        with azure_errors(f"listing blobs in {container}"):
            pages = container_client.list_blobs(
                results_per_page=self.BLOB_PAGE_SIZE, timeout=int(self.timeout)
            ).by_page()
            for page in pages:
                for blob in page:
                    if looks_like_video(blob.name):
                        videos.append(
                            Video(
                                source_id=f"{container}/{blob.name}",
                                title=posixpath.basename(blob.name),
                                location=container,
                            )
                        )
        return videos

    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        state = self.read_cursor(cursor)
        service = self._service(credential)

        with azure_errors("listing containers"):
            pages = service.list_containers(
                results_per_page=self.CONTAINER_PAGE_SIZE, timeout=int(self.timeout)
            ).by_page(continuation_token=state.get("containers"))
            containers = [c.name for c in next(pages, [])]
            next_token = pages.continuation_token

        videos: list[Video] = []
        for container in containers:
            videos.extend(self._drain_container(service, container))

        logger.info(
            f"[azure] {len(containers)} containers, {len(videos)} candidate videos"
        )
        return Page(
            videos=videos,
            next_cursor=self.make_cursor(containers=next_token) if next_token else None,
            exhausted=next_token is None,
        )

    def variants(self, video: Video) -> list[str]:
        container, blob_name = split_blob_id(video.source_id)
        return [f"{container}/{name}" for name in filename_variants(blob_name)]

    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        container, blob_name = split_blob_id(variant)
        service = self._service(credential)
        blob_client = service.get_blob_client(container=container, blob=blob_name)

        with azure_errors(f"checking {variant}"):
            if not blob_client.exists(timeout=int(self.timeout)):
                raise NotFound(f"Blob {variant} does not exist")

        return self.sign_blob_url(credential, container, blob_name, blob_client.url)

    def sign_blob_url(
        self, credential: Credential, container: str, blob_name: str, blob_url: str
    ) -> str:
        """Append a read-only SAS token to a blob URL."""
        now = datetime.now(timezone.utc)
        sas_token = generate_blob_sas(
            account_name=credential.public_key,
            container_name=container,
            blob_name=blob_name,
            account_key=credential.secret_key,
            permission=BlobSasPermissions(read=True),
            start=now - timedelta(minutes=5),  # Clock skew
            expiry=now + timedelta(seconds=self.access_url_ttl),
            protocol="https,http",
        )
        return f"{blob_url}?{sas_token}"

    def validate_credential(self, credential: Credential) -> None:
        container = credential.require("container")
        if not credential.secret_key:
            raise InvalidCredential("Azure account key is required")

        service = self._service(credential)
        try:
            with azure_errors(f"checking container {container}"):
                exists = service.get_container_client(container).exists(timeout=int(self.timeout))
        except (NotFound, TransientProviderError) as e:
            raise InvalidCredential(str(e)) from e

        if not exists:
            raise InvalidCredential(f"Container {container} not found")
