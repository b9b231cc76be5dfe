"""
Pytest configuration and fixtures.

Every test gets its own data directory, so SQLite stores never leak between
tests, and a settings cache that is cleared before and after.
"""

from typing import Optional

import pytest

from truckload.config import get_settings
from truckload.exceptions import InvalidCredential, NotFound, TransientProviderError
from truckload.models import Credential, Cursor, Page, Video
from truckload.providers.base import ProviderAdapter
from truckload.store import StorePool


class FakeAdapter(ProviderAdapter):
    """In-memory source catalog paged by offset."""

    platform_id = "fake"

    def __init__(
        self,
        catalog: list[str],
        page_size: int = 2,
        missing: tuple[str, ...] = (),
        fail_at_offset: Optional[int] = None,
    ):
        super().__init__()
        self.catalog = list(catalog)
        self.page_size = page_size
        self.missing = set(missing)
        self.fail_at_offset = fail_at_offset
        self.fetch_page_calls = 0
        self.resolved: list[str] = []

    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        state = self.read_cursor(cursor)
        offset = state.get("offset", 0)
        if self.fail_at_offset is not None and offset >= self.fail_at_offset:
            raise TransientProviderError("listing endpoint unavailable")

        self.fetch_page_calls += 1
        items = self.catalog[offset:offset + self.page_size]
        next_offset = offset + len(items)
        exhausted = next_offset >= len(self.catalog)
        return Page(
            videos=[Video(source_id=item, title=f"{item}.mp4", location="bucket") for item in items],
            next_cursor=None if exhausted else self.make_cursor(offset=next_offset),
            exhausted=exhausted,
        )

    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        if video.source_id in self.missing:
            raise NotFound(f"{variant} is gone")
        self.resolved.append(variant)
        return f"https://source.example/{variant}?sig=abc"

    def validate_credential(self, credential: Credential) -> None:
        if credential.secret_key != "secret":
            raise InvalidCredential("bad secret")


class FakeDestination:
    """Records submissions; fails the first `failures` calls transiently."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.submissions: list[tuple] = []

    def submit(self, access_url, payload, config=None) -> str:
        if self.failures:
            self.failures -= 1
            raise TransientProviderError("Mux error 503")
        self.submissions.append((access_url, payload, config))
        return f"asset-{payload.source_video_id}"


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    monkeypatch.setenv("MUX_WEBHOOK_SECRET", "")
    monkeypatch.setenv("ADMIN_API_KEY", "")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def stores(settings):
    pool = StorePool(settings)
    yield pool
    pool.close_all()


@pytest.fixture
def store(stores):
    return stores.get("qa")


@pytest.fixture
def credential():
    return Credential(public_key="account", secret_key="secret", metadata={"platformId": "fake"})
