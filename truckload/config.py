"""
Configuration management using Pydantic Settings.
Loads from environment variables with sensible defaults for development.
"""

from pathlib import Path
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "qa", "prod"]
ENVIRONMENTS: tuple[str, ...] = ("dev", "qa", "prod")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Storage backend: "sqlite" for local, "supabase" for production
    store_backend: Literal["sqlite", "supabase"] = "sqlite"
    data_dir: Path = Path(__file__).parent.parent / "data"

    # Supabase settings, one project per environment
    supabase_url_dev: str = ""
    supabase_key_dev: str = ""
    supabase_url_qa: str = ""
    supabase_key_qa: str = ""
    supabase_url_prod: str = ""
    supabase_key_prod: str = ""

    # Destination (Mux) settings
    mux_token_id: str = ""
    mux_token_secret: str = ""
    mux_api_url: str = "https://api.mux.com"
    mux_webhook_secret: str = ""  # Verify Mux-Signature when set
    mux_webhook_tolerance_seconds: int = 300

    # Playback URL derivation
    stream_base_url: str = "https://stream.mux.com"
    image_base_url: str = "https://image.mux.com"
    player_base_url: str = "https://player.mux.com"

    # Migration tuning
    submit_max_attempts: int = 3
    retry_backoff_min: float = 1.0  # seconds
    retry_backoff_max: float = 30.0  # seconds
    request_timeout_seconds: float = 30.0
    resolve_timeout_seconds: float = 60.0  # Per source variant attempt
    max_concurrent_submissions: int = 10
    page_result_cap: int = 1000  # Results gathered per enumeration pass
    access_url_ttl_seconds: int = 86400  # Signed source URLs live one day

    # Protects job start/abandon when set (X-Admin-Key header)
    admin_api_key: str = ""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    def supabase_credentials(self, environment: str) -> tuple[str, str]:
        """Return (url, key) for the Supabase project backing an environment."""
        url = getattr(self, f"supabase_url_{environment}", "")
        key = getattr(self, f"supabase_key_{environment}", "")
        return url, key

    def sqlite_path(self, environment: str) -> Path:
        """SQLite database file for an environment."""
        return Path(self.data_dir) / f"truckload-{environment}.sqlite"

    def streaming_url(self, playback_id: str) -> str:
        return f"{self.stream_base_url}/{playback_id}.m3u8"

    def thumbnail_url(self, playback_id: str) -> str:
        return f"{self.image_base_url}/{playback_id}/thumbnail.jpg"

    def playback_url(self, playback_id: str) -> str:
        return f"{self.player_base_url}/{playback_id}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
