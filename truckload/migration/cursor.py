"""
Pagination cursor engine.

Drives an adapter's fetch_page until the source catalog is exhausted. Cursor
tokens are opaque here; the engine only checks that a cursor belongs to the
adapter it is handed to.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from truckload.exceptions import MigrationError, PaginationError
from truckload.models import Credential, Cursor, Page, Video
from truckload.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


@dataclass
class Enumeration:
    """Result of one bounded enumeration pass."""

    videos: list[Video] = field(default_factory=list)
    cursor: Optional[Cursor] = None  # Where the next pass starts; None once exhausted
    exhausted: bool = False
    pages_fetched: int = 0


class CursorEngine:
    """
    Repeatedly calls fetch_page for one adapter and credential.

    Not safe for concurrent use; a job owns one engine and advances it from
    a single task.

    Usage:
        engine = CursorEngine(adapter, credential, max_results=1000)
        result = engine.collect()
        while not result.exhausted:
            result = engine.collect(result.cursor)
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        credential: Credential,
        max_results: Optional[int] = None,
    ):
        """
        Args:
            adapter: Source adapter to drive
            credential: Source credential
            max_results: Stop a collect() pass once this many videos are gathered
        """
        self.adapter = adapter
        self.credential = credential
        self.max_results = max_results

    def _check_kind(self, cursor: Optional[Cursor]) -> None:
        if cursor is not None and cursor.kind != self.adapter.platform_id:
            raise PaginationError(
                f"Cursor from '{cursor.kind}' cannot resume a '{self.adapter.platform_id}' listing",
                last_cursor=cursor.serialize(),
            )

    def pages(self, cursor: Optional[Cursor] = None) -> Iterator[Page]:
        """
        Yield pages in order until the adapter reports exhaustion.

        Raises:
            PaginationError: fetch_page failed or stopped making progress;
                last_cursor is the cursor the failing call was given
        """
        self._check_kind(cursor)
        current = cursor

        while True:
            try:
                page = self.adapter.fetch_page(self.credential, current)
            except PaginationError as e:
                raise PaginationError(str(e), last_cursor=current.serialize() if current else None) from e
            except MigrationError as e:
                raise PaginationError(
                    f"{self.adapter.platform_id} listing failed: {e}",
                    last_cursor=current.serialize() if current else None,
                ) from e

            yield page

            if page.exhausted or page.next_cursor is None:
                return
            self._check_kind(page.next_cursor)
            if page.next_cursor == current:
                raise PaginationError(
                    f"{self.adapter.platform_id} returned the same cursor twice",
                    last_cursor=current.serialize(),
                )
            current = page.next_cursor

    def collect(self, cursor: Optional[Cursor] = None) -> Enumeration:
        """
        Gather videos from consecutive pages.

        Stops when the catalog is exhausted or when max_results videos have
        been gathered; whole pages are always kept, so the returned cursor
        resumes exactly after the last page included.

        Raises:
            PaginationError: with last_cursor set to the cursor this pass started from
        """
        result = Enumeration(cursor=cursor)
        seen: set[str] = set()

        try:
            for page in self.pages(cursor):
                result.pages_fetched += 1
                for video in page.videos:
                    # Two-level listings can surface the same id at a boundary
                    if video.source_id in seen:
                        continue
                    seen.add(video.source_id)
                    result.videos.append(video)

                if page.exhausted or page.next_cursor is None:
                    result.cursor = None
                    result.exhausted = True
                    break

                result.cursor = page.next_cursor
                if self.max_results is not None and len(result.videos) >= self.max_results:
                    logger.info(
                        f"[{self.adapter.platform_id}] Result cap {self.max_results} reached "
                        f"after {result.pages_fetched} pages"
                    )
                    break
        except PaginationError as e:
            raise PaginationError(
                str(e), last_cursor=cursor.serialize() if cursor else None
            ) from e

        logger.info(
            f"[{self.adapter.platform_id}] Enumerated {len(result.videos)} videos "
            f"from {result.pages_fetched} pages (exhausted={result.exhausted})"
        )
        return result
