"""
Abstract base class for source platform adapters.

Defines the capability set every provider must implement so the migration
pipeline can enumerate, resolve and validate against any source platform
without knowing which one it is talking to.
"""

import json
import logging
import posixpath
import re
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import replace
from typing import Any, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from truckload.config import get_settings
from truckload.exceptions import (
    InvalidCredential,
    MigrationError,
    NotFound,
    PaginationError,
    TransientProviderError,
)
from truckload.models import Credential, Cursor, Page, Video

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".mp4", ".mov")
_VIDEO_NAME = re.compile(r"\.(mp4|mov)$", re.IGNORECASE)

# Bounded retry for network and rate-limit failures at the adapter boundary
provider_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    retry=retry_if_exception_type(TransientProviderError),
    reraise=True,
)


def looks_like_video(name: Optional[str]) -> bool:
    """
    File-based "is this a source video" filter.

    Only .mp4/.mov names qualify. Names containing an underscore are derived
    artifacts (drafts, renditions) on the source side and are skipped.
    """
    return bool(name) and bool(_VIDEO_NAME.search(name)) and "_" not in name


def filename_variants(name: str) -> list[str]:
    """
    Candidate object names for one video, in the order they are tried.

    The recorded name comes first, then the same stem with each allowed
    extension in lower and upper case.
    """
    stem, _ = posixpath.splitext(name)
    candidates = [name]
    for ext in VIDEO_EXTENSIONS:
        candidates.append(stem + ext)
    for ext in VIDEO_EXTENSIONS:
        candidates.append(stem + ext.upper())
    return list(dict.fromkeys(candidates))


class ProviderAdapter(ABC):
    """
    Abstract base class for source platform adapters.

    Implementations must provide:
    - fetch_page: one step of catalog enumeration
    - resolve: a transient access URL for one name variant of a video
    - validate_credential: a read-only check of the credential
    """

    platform_id: str = ""

    # Simultaneous calls allowed per job
    fetch_video_concurrency: int = 10
    fetch_page_concurrency: int = 1

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Per-request timeout in seconds (defaults to settings)
        """
        settings = get_settings()
        self.timeout = timeout or settings.request_timeout_seconds
        self.access_url_ttl = settings.access_url_ttl_seconds
        self._resolvers: Optional[ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()

    @abstractmethod
    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        """
        Fetch the next batch of candidate videos.

        Args:
            credential: Source platform credential
            cursor: Continuation from the previous page, None to start

        Returns:
            Page of filtered candidates, the next cursor and whether the
            catalog is exhausted
        """
        pass

    @abstractmethod
    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        """
        Produce an access URL for one variant of a video.

        Raises:
            NotFound: this variant does not exist on the source
            TransientProviderError: the source could not be reached
        """
        pass

    @abstractmethod
    def validate_credential(self, credential: Credential) -> None:
        """
        Check the credential without mutating anything on the source.

        Raises:
            InvalidCredential: the credential was rejected
        """
        pass

    def account_marker(self, credential: Credential) -> Optional[str]:
        """Source account recorded on new video records."""
        return credential.public_key

    def variants(self, video: Video) -> list[str]:
        """Identifiers to try when resolving a video. API platforms have exactly one."""
        return [video.source_id]

    def fetch_video(
        self,
        credential: Credential,
        video: Video,
        attempt_timeout: Optional[float] = None,
    ) -> Video:
        """
        Resolve a video's access URL, trying each variant in order.

        Args:
            credential: Source platform credential
            video: Video to resolve
            attempt_timeout: Seconds allowed per variant; a variant that
                times out counts as a transient failure and the next one is tried

        Returns:
            A copy of the video with access_url populated

        Raises:
            NotFound: no variant resolved
            TransientProviderError: no variant resolved and at least one
                attempt failed for a reason other than absence
        """
        transient: Optional[TransientProviderError] = None

        for variant in self.variants(video):
            try:
                url = self._resolve_within(credential, video, variant, attempt_timeout)
            except NotFound:
                logger.debug(f"[{self.platform_id}] {variant} not found")
                continue
            except TransientProviderError as e:
                logger.warning(f"[{self.platform_id}] Could not resolve {variant}: {e}")
                transient = e
                continue

            if variant != video.source_id:
                logger.info(f"[{self.platform_id}] Resolved {video.source_id} as {variant}")
            return replace(video, access_url=url)

        if transient is not None:
            raise TransientProviderError(
                f"{video.source_id} could not be resolved: {transient}"
            ) from transient
        raise NotFound(f"{video.source_id} not found on {self.platform_id}")

    def _resolve_within(
        self,
        credential: Credential,
        video: Video,
        variant: str,
        timeout: Optional[float],
    ) -> str:
        if timeout is None:
            return self.resolve(credential, video, variant)

        # A timed-out attempt keeps its worker until it returns, so the pool
        # size caps how many resolve calls are really running
        future = self._resolver_pool().submit(self.resolve, credential, video, variant)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise TransientProviderError(f"Timed out resolving {variant} after {timeout}s")

    def _resolver_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._resolvers is None:
                self._resolvers = ThreadPoolExecutor(
                    max_workers=self.fetch_video_concurrency,
                    thread_name_prefix=f"{self.platform_id}-resolve",
                )
            return self._resolvers

    def close(self) -> None:
        """Release resolver threads. Attempts still running finish in the background."""
        with self._pool_lock:
            if self._resolvers is not None:
                self._resolvers.shutdown(wait=False)
                self._resolvers = None

    # --- Cursor helpers ---

    def make_cursor(self, **state: Any) -> Cursor:
        return Cursor.from_json(self.platform_id, state)

    def read_cursor(self, cursor: Optional[Cursor]) -> dict:
        if cursor is None:
            return {}
        if cursor.kind != self.platform_id:
            raise PaginationError(
                f"Cursor of kind '{cursor.kind}' cannot be used with {self.platform_id}"
            )
        return cursor.to_json()


class HttpProviderAdapter(ProviderAdapter):
    """
    Base for providers reached over a JSON REST API.

    Maps HTTP outcomes onto the migration error taxonomy and retries
    transient failures.
    """

    BASE_URL = ""

    @abstractmethod
    def _session(self, credential: Credential) -> requests.Session:
        """Build an authenticated session for a credential."""
        pass

    @provider_retry
    def _request(
        self,
        session: requests.Session,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> Optional[dict]:
        """Make an API request and return the decoded body."""
        url = f"{self.BASE_URL}{endpoint}" if endpoint.startswith("/") else endpoint

        try:
            response = session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransientProviderError(f"{method} {url}: {e}") from e

        if response.status_code in (401, 403):
            raise InvalidCredential(f"{self.platform_id} rejected the credential")
        if response.status_code == 404:
            raise NotFound(f"{method} {url} returned 404")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(
                f"API error {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise MigrationError(
                f"Unexpected API error {response.status_code}: {response.text[:200]}"
            )

        if not response.content:
            return None
        try:
            return response.json()
        except (ValueError, json.JSONDecodeError) as e:
            raise TransientProviderError(f"Invalid JSON from {url}: {e}") from e

    def _check_access(self, credential: Credential, endpoint: str, **kwargs: Any) -> Optional[dict]:
        """Read-only request used by validate_credential; any failure is a rejection."""
        try:
            return self._request(self._session(credential), "GET", endpoint, **kwargs)
        except InvalidCredential:
            raise
        except MigrationError as e:
            raise InvalidCredential(f"{self.platform_id} credential check failed: {e}") from e
