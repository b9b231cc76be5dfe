"""
Durable store package.

Stores are scoped to one environment and handed out by a StorePool, which
owns their lifecycle: a store is opened the first time a job or webhook needs
its environment and closed when the pool shuts down.
"""

import logging
import threading
from typing import Optional

from truckload.config import ENVIRONMENTS, Settings, get_settings
from truckload.exceptions import InvalidEnvironment
from truckload.store.base import JobRecord, StatusReport, VideoRecord, VideoStore
from truckload.store.sqlite_store import SQLiteVideoStore

logger = logging.getLogger(__name__)


class StorePool:
    """One open VideoStore per environment."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._stores: dict[str, VideoStore] = {}
        self._lock = threading.Lock()

    def _open(self, environment: str) -> VideoStore:
        if self.settings.store_backend == "supabase":
            from truckload.store.supabase_store import SupabaseVideoStore

            url, key = self.settings.supabase_credentials(environment)
            return SupabaseVideoStore(url, key, environment)
        return SQLiteVideoStore(self.settings.sqlite_path(environment), environment)

    def get(self, environment: str) -> VideoStore:
        """Get the store for an environment, opening it if needed."""
        if environment not in ENVIRONMENTS:
            raise InvalidEnvironment(f"Invalid environment: {environment!r}")
        with self._lock:
            store = self._stores.get(environment)
            if store is None:
                store = self._open(environment)
                self._stores[environment] = store
            return store

    def close(self, environment: str) -> None:
        with self._lock:
            store = self._stores.pop(environment, None)
        if store is not None:
            store.close()

    def close_all(self) -> None:
        with self._lock:
            stores = list(self._stores.values())
            self._stores.clear()
        for store in stores:
            store.close()


__all__ = [
    "JobRecord",
    "StatusReport",
    "StorePool",
    "VideoRecord",
    "VideoStore",
]
