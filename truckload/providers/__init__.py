"""
Source platform adapters package.

Provides a pluggable interface for every source platform (object storage and
video APIs) behind one capability set, selected by platform id.
"""

from typing import Callable, Optional

from truckload.exceptions import UnknownPlatform
from truckload.providers.api_video import ApiVideoAdapter
from truckload.providers.azure_blob import AzureBlobAdapter
from truckload.providers.azure_media import AzureMediaServicesAdapter
from truckload.providers.base import ProviderAdapter, filename_variants, looks_like_video
from truckload.providers.cloudflare_stream import CloudflareStreamAdapter
from truckload.providers.mux import MuxSourceAdapter
from truckload.providers.s3 import S3Adapter
from truckload.store.base import VideoStore

_FACTORIES: dict[str, Callable[[Optional[VideoStore]], ProviderAdapter]] = {
    ApiVideoAdapter.platform_id: lambda store: ApiVideoAdapter(),
    AzureBlobAdapter.platform_id: lambda store: AzureBlobAdapter(),
    AzureMediaServicesAdapter.platform_id: lambda store: AzureMediaServicesAdapter(store=store),
    CloudflareStreamAdapter.platform_id: lambda store: CloudflareStreamAdapter(),
    MuxSourceAdapter.platform_id: lambda store: MuxSourceAdapter(),
    S3Adapter.platform_id: lambda store: S3Adapter(),
}

PLATFORM_IDS = tuple(sorted(_FACTORIES))


def get_adapter(platform_id: str, store: Optional[VideoStore] = None) -> ProviderAdapter:
    """
    Build a fresh adapter for a platform.

    Args:
        platform_id: Registered platform id (see PLATFORM_IDS)
        store: The job's store; required by store-backed platforms

    Raises:
        UnknownPlatform: no adapter is registered under platform_id
    """
    factory = _FACTORIES.get(platform_id)
    if factory is None:
        raise UnknownPlatform(f"Invalid platform provided: {platform_id!r}")
    return factory(store)


__all__ = [
    "PLATFORM_IDS",
    "ApiVideoAdapter",
    "AzureBlobAdapter",
    "AzureMediaServicesAdapter",
    "CloudflareStreamAdapter",
    "MuxSourceAdapter",
    "ProviderAdapter",
    "S3Adapter",
    "filename_variants",
    "get_adapter",
    "looks_like_video",
]
