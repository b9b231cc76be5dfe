"""
Pydantic models for API request/response schemas.

Field names on the wire are camelCase, as sent by the migration UI.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from truckload.destination.mux import DestinationConfig
from truckload.models import Credential


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# === Request Models ===

class CredentialRequest(_WireModel):
    """Source credential as entered in the UI."""
    platform_id: str = Field(..., alias="platformId", description="Source platform id, e.g. 's3'")
    public_key: str = Field(..., alias="publicKey", min_length=1, description="Account name, key id or token")
    secret_key: Optional[str] = Field(None, alias="secretKey", description="Secret half of the credential")
    additional_metadata: dict[str, Any] = Field(
        default_factory=dict,
        alias="additionalMetadata",
        description="Platform-specific fields (bucket, region, container, ...)",
    )

    def to_credential(self) -> Credential:
        metadata = dict(self.additional_metadata)
        metadata.setdefault("platformId", self.platform_id)
        return Credential(public_key=self.public_key, secret_key=self.secret_key, metadata=metadata)


class DestinationSettings(_WireModel):
    """Import settings for assets created on the destination."""
    encoding_tier: Literal["baseline", "smart"] = Field("smart", alias="encodingTier")
    max_resolution_tier: Literal["1080p", "1440p", "2160p"] = Field("1080p", alias="maxResolutionTier")
    auto_generate_captions: bool = Field(False, alias="autoGenerateCaptions")
    playback_policy: Literal["public", "signed"] = Field("public", alias="playbackPolicy")

    def to_config(self) -> DestinationConfig:
        return DestinationConfig(
            encoding_tier=self.encoding_tier,
            max_resolution_tier=self.max_resolution_tier,
            auto_generate_captions=self.auto_generate_captions,
            playback_policy=[self.playback_policy],
        )


class StartJobRequest(CredentialRequest):
    """Request body for starting or resuming a migration job."""
    environment: str = Field(..., description="Target environment: dev, qa or prod")
    destination: DestinationSettings = Field(default_factory=DestinationSettings)
    resume_job_id: Optional[str] = Field(
        None, alias="resumeJobId", description="Continue this job from its saved cursor"
    )
    discover_only: bool = Field(
        False, alias="discoverOnly", description="Record candidates without submitting them"
    )


# === Response Models ===

class CredentialResponse(BaseModel):
    """Response body for credential validation."""
    ok: bool


class JobStartedResponse(_WireModel):
    """Response body when a job is accepted."""
    job_id: str = Field(..., alias="jobId")
    environment: str
    state: str


class VideoStatus(_WireModel):
    """Latest status of one video in a job."""
    video_id: str = Field(..., alias="videoId")
    status: str
    progress: int = Field(..., ge=0, le=100)


class JobStatusResponse(_WireModel):
    """Response body for job status."""
    job_id: str = Field(..., alias="jobId")
    platform_id: str = Field(..., alias="platformId")
    environment: str
    state: str
    error: Optional[str] = None
    discovered: int = 0
    dispatched: int = 0
    videos: list[VideoStatus] = Field(default_factory=list)


class WebhookAck(BaseModel):
    """Webhook acknowledgement; always delivered with HTTP 200."""
    ok: bool


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    store_backend: str
    environments: dict[str, bool] = Field(default_factory=dict)
