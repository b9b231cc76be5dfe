"""
Mux source adapter, for moving assets between Mux environments.
"""

import logging
import threading
from typing import Optional

import requests

from truckload.config import get_settings
from truckload.exceptions import InvalidCredential, NotFound, TransientProviderError
from truckload.models import Credential, Cursor, Page, Video
from truckload.providers.base import HttpProviderAdapter

logger = logging.getLogger(__name__)

# Static MP4 renditions, best first
RENDITIONS = ("highest.mp4", "high.mp4", "medium.mp4", "low.mp4")


class MuxSourceAdapter(HttpProviderAdapter):
    """
    Mux adapter.

    Credential: public_key/secret_key are the access token id and secret.
    Only ready assets with a public playback id are candidates; the access
    URL is the best static MP4 rendition available.
    """

    platform_id = "mux"
    BASE_URL = "https://api.mux.com"

    PAGE_SIZE = 100

    def __init__(self, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        self.stream_base_url = get_settings().stream_base_url
        self._playback_ids: dict[str, str] = {}
        self._lock = threading.Lock()

    def _session(self, credential: Credential) -> requests.Session:
        session = requests.Session()
        session.auth = (credential.public_key, credential.secret_key or "")
        session.headers.update({"Content-Type": "application/json"})
        return session

    @staticmethod
    def _public_playback_id(asset: dict) -> Optional[str]:
        for playback in asset.get("playback_ids") or []:
            if playback.get("policy") == "public":
                return playback.get("id")
        return None

    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        state = self.read_cursor(cursor)
        params = {"limit": self.PAGE_SIZE}
        if state.get("cursor"):
            params["cursor"] = state["cursor"]

        data = self._request(
            self._session(credential), "GET", "/video/v1/assets", params=params
        ) or {}

        videos = []
        for asset in data.get("data", []):
            playback_id = self._public_playback_id(asset)
            if asset.get("status") != "ready" or not playback_id:
                continue
            with self._lock:
                self._playback_ids[asset["id"]] = playback_id
            videos.append(
                Video(source_id=asset["id"], title=(asset.get("meta") or {}).get("title"))
            )

        next_token = data.get("next_cursor")
        return Page(
            videos=videos,
            next_cursor=self.make_cursor(cursor=next_token) if next_token else None,
            exhausted=not next_token,
        )

    def variants(self, video: Video) -> list[str]:
        return list(RENDITIONS)

    def _playback_id(self, credential: Credential, asset_id: str) -> str:
        with self._lock:
            cached = self._playback_ids.get(asset_id)
        if cached:
            return cached

        data = self._request(self._session(credential), "GET", f"/video/v1/assets/{asset_id}") or {}
        playback_id = self._public_playback_id(data.get("data") or {})
        if not playback_id:
            raise NotFound(f"Mux asset {asset_id} has no public playback id")
        with self._lock:
            self._playback_ids[asset_id] = playback_id
        return playback_id

    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        playback_id = self._playback_id(credential, video.source_id)
        url = f"{self.stream_base_url}/{playback_id}/{variant}"
        try:
            response = requests.head(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            raise TransientProviderError(f"HEAD {url}: {e}") from e

        if response.status_code == 200:
            return url
        if response.status_code in (404, 412):
            raise NotFound(f"Rendition {variant} not available for {video.source_id}")
        raise TransientProviderError(f"HEAD {url} returned {response.status_code}")

    def validate_credential(self, credential: Credential) -> None:
        if not credential.public_key or not credential.secret_key:
            raise InvalidCredential("Mux token id and secret are required")
        self._check_access(credential, "/video/v1/assets", params={"limit": 1})
