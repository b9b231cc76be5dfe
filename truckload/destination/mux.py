"""
Mux destination: ingest submission through the Mux Video API.

Submission only starts the ingest. Completion arrives later as a webhook
carrying the passthrough string sent here.
"""

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

import requests

from truckload.config import Settings, get_settings
from truckload.exceptions import MigrationError, TransientProviderError
from truckload.models import CorrelationPayload

logger = logging.getLogger(__name__)


@dataclass
class DestinationConfig:
    """Import settings applied to every asset created by a job."""

    encoding_tier: Literal["baseline", "smart"] = "smart"
    max_resolution_tier: Literal["1080p", "1440p", "2160p"] = "1080p"
    auto_generate_captions: bool = False
    playback_policy: list[str] = field(default_factory=lambda: ["public"])

    def asset_body(self, access_url: str, passthrough: str) -> dict:
        """Build the create-asset request body."""
        video_input: dict = {"url": access_url}
        if self.auto_generate_captions:
            video_input["generated_subtitles"] = [
                {"language_code": "en", "name": "English (generated)"}
            ]
        return {
            "input": [video_input],
            "playback_policy": list(self.playback_policy),
            "encoding_tier": self.encoding_tier,
            "max_resolution_tier": self.max_resolution_tier,
            "passthrough": passthrough,
        }


class MuxDestination:
    """
    Submits ingests to Mux.

    Usage:
        destination = MuxDestination()
        asset_id = destination.submit(access_url, payload, DestinationConfig())
    """

    def __init__(
        self,
        token_id: Optional[str] = None,
        token_secret: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the destination client.

        Args:
            token_id: Mux access token id (or from settings)
            token_secret: Mux access token secret (or from settings)
            settings: Settings override
        """
        settings = settings or get_settings()
        self.token_id = token_id or settings.mux_token_id
        self.token_secret = token_secret or settings.mux_token_secret
        self.base_url = settings.mux_api_url
        self.timeout = settings.request_timeout_seconds

        if not self.token_id or not self.token_secret:
            raise ValueError(
                "Mux credentials required. Set MUX_TOKEN_ID and MUX_TOKEN_SECRET in .env"
            )

        self.session = requests.Session()
        self.session.auth = (self.token_id, self.token_secret)
        self.session.headers.update({"Content-Type": "application/json"})

    def submit(
        self,
        access_url: str,
        payload: CorrelationPayload,
        config: Optional[DestinationConfig] = None,
    ) -> str:
        """
        Create a Mux asset from a source URL.

        Args:
            access_url: Transient URL Mux will pull the source bytes from
            payload: Correlation data echoed back in webhooks
            config: Import settings

        Returns:
            The new Mux asset id

        Raises:
            TransientProviderError: network, auth, rate-limit or server failure
            MigrationError: Mux rejected the request itself
        """
        config = config or DestinationConfig()
        body = config.asset_body(access_url, payload.to_passthrough())
        url = f"{self.base_url}/video/v1/assets"

        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientProviderError(f"Mux request failed: {e}") from e

        if response.status_code in (401, 403, 429) or response.status_code >= 500:
            raise TransientProviderError(
                f"Mux error {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise MigrationError(f"Mux rejected asset ({response.status_code}): {response.text[:200]}")

        asset_id = (response.json().get("data") or {}).get("id")
        if not asset_id:
            raise TransientProviderError("Mux response did not include an asset id")

        logger.info(f"Submitted {payload.source_video_id} to Mux as asset {asset_id}")
        return asset_id
