"""
api.video source adapter.
"""

import logging
from typing import Optional

import requests

from truckload.exceptions import InvalidCredential, NotFound
from truckload.models import Credential, Cursor, Page, Video
from truckload.providers.base import HttpProviderAdapter

logger = logging.getLogger(__name__)


class ApiVideoAdapter(HttpProviderAdapter):
    """
    api.video adapter.

    Credential: the API key in secret_key (public_key is accepted as a
    fallback). Only videos exposing an MP4 asset are candidates.
    """

    platform_id = "api-video"
    BASE_URL = "https://ws.api.video"

    PAGE_SIZE = 25

    def _session(self, credential: Credential) -> requests.Session:
        api_key = credential.secret_key or credential.public_key
        session = requests.Session()
        session.auth = (api_key, "")
        session.headers.update({"Accept": "application/json"})
        return session

    @staticmethod
    def _mp4_url(item: dict) -> Optional[str]:
        return (item.get("assets") or {}).get("mp4")

    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        state = self.read_cursor(cursor)
        page_number = state.get("page", 1)

        data = self._request(
            self._session(credential),
            "GET",
            "/videos",
            params={
                "currentPage": page_number,
                "pageSize": self.PAGE_SIZE,
                "sortBy": "createdAt",
                "sortOrder": "asc",
            },
        ) or {}

        videos = [
            Video(source_id=item["videoId"], title=item.get("title"))
            for item in data.get("data", [])
            if item.get("videoId") and self._mp4_url(item)
        ]

        pagination = data.get("pagination", {})
        pages_total = pagination.get("pagesTotal", 0)
        exhausted = page_number >= pages_total
        return Page(
            videos=videos,
            next_cursor=None if exhausted else self.make_cursor(page=page_number + 1),
            exhausted=exhausted,
        )

    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        item = self._request(self._session(credential), "GET", f"/videos/{variant}") or {}
        url = self._mp4_url(item)
        if not url:
            raise NotFound(f"api.video video {variant} has no MP4 asset")
        return url

    def validate_credential(self, credential: Credential) -> None:
        if not (credential.secret_key or credential.public_key):
            raise InvalidCredential("api.video API key is required")
        self._check_access(credential, "/videos", params={"pageSize": 1})
