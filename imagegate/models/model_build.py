"""Build and publish result models."""

from datetime import datetime

from pydantic import BaseModel, Field

from imagegate.models.common import _utc_now


class BuildResult(BaseModel):
    """Result of a successful image build."""

    image_ref: str = Field(description="Tag the image was built as")
    digest: str = Field(description="Local image digest (sha256:...)")
    duration_seconds: float = Field(default=0.0, ge=0.0)
    exit_status: int = Field(default=0)
    context_path: str = Field(default="")
    built_at: datetime = Field(default_factory=_utc_now)
    attempts: int = Field(default=1, ge=1)


class PublishResult(BaseModel):
    """Result of pushing (and optionally signing) an image."""

    destination: str = Field(description="Registry reference that was pushed")
    digest: str = Field(description="Local digest that passed the gate")
    repo_digest: str | None = Field(
        default=None, description="Manifest digest reported by the registry"
    )
    signed: bool = Field(default=False)
    pushed_at: datetime = Field(default_factory=_utc_now)
