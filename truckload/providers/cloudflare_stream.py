"""
Cloudflare Stream source adapter.
"""

import logging
from typing import Optional

import requests

from truckload.exceptions import InvalidCredential, NotFound, PaginationError
from truckload.models import Credential, Cursor, Page, Video
from truckload.providers.base import HttpProviderAdapter

logger = logging.getLogger(__name__)


class CloudflareStreamAdapter(HttpProviderAdapter):
    """
    Cloudflare Stream adapter.

    Credential: secret_key is an API token with Stream read/edit access;
    metadata "accountId" (or public_key) is the Cloudflare account id.

    Listing is ordered by creation time and resumed from the last creation
    timestamp seen; ids already returned at that timestamp are remembered in
    the cursor so a boundary item is not yielded twice.
    """

    platform_id = "cloudflare-stream"
    BASE_URL = "https://api.cloudflare.com/client/v4"

    PAGE_SIZE = 100

    def _session(self, credential: Credential) -> requests.Session:
        session = requests.Session()
        session.headers.update({
            "Authorization": f"Bearer {credential.secret_key}",
            "Content-Type": "application/json",
        })
        return session

    @staticmethod
    def _account_id(credential: Credential) -> str:
        account_id = credential.metadata.get("accountId") or credential.public_key
        if not account_id:
            raise InvalidCredential("Cloudflare account id is required")
        return account_id

    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        state = self.read_cursor(cursor)
        account_id = self._account_id(credential)

        params = {"asc": "true", "status": "ready", "limit": self.PAGE_SIZE}
        if state.get("start"):
            params["start"] = state["start"]

        data = self._request(
            self._session(credential), "GET", f"/accounts/{account_id}/stream", params=params
        ) or {}
        items = data.get("result") or []

        seen = set(state.get("seen", []))
        fresh = [item for item in items if item.get("uid") and item["uid"] not in seen]
        videos = [
            Video(source_id=item["uid"], title=(item.get("meta") or {}).get("name"))
            for item in fresh
            if item.get("readyToStream")
        ]

        if len(items) >= self.PAGE_SIZE and not fresh:
            # A full page of ids already seen: more than PAGE_SIZE videos share
            # one creation timestamp and the listing cannot move past it
            raise PaginationError(
                f"Cloudflare Stream listing is stuck at {state.get('start')}: "
                f"more than {self.PAGE_SIZE} videos share that creation time"
            )

        exhausted = len(items) < self.PAGE_SIZE
        next_cursor = None
        if not exhausted:
            last_created = fresh[-1].get("created")
            boundary = [i["uid"] for i in items if i.get("created") == last_created]
            next_cursor = self.make_cursor(start=last_created, seen=boundary)

        return Page(videos=videos, next_cursor=next_cursor, exhausted=exhausted)

    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        account_id = self._account_id(credential)
        session = self._session(credential)
        endpoint = f"/accounts/{account_id}/stream/{variant}/downloads"

        data = self._request(session, "GET", endpoint) or {}
        default = (data.get("result") or {}).get("default")
        if not default:
            # No MP4 rendition yet; ask Stream to create one
            logger.info(f"[cloudflare-stream] Creating MP4 download for {variant}")
            data = self._request(session, "POST", endpoint) or {}
            default = (data.get("result") or {}).get("default")

        if not default or not default.get("url"):
            raise NotFound(f"Cloudflare Stream video {variant} has no downloadable MP4")
        return default["url"]

    def validate_credential(self, credential: Credential) -> None:
        if not credential.secret_key:
            raise InvalidCredential("Cloudflare API token is required")
        data = self._check_access(credential, "/user/tokens/verify") or {}
        if not data.get("success"):
            raise InvalidCredential("Invalid credentials")
