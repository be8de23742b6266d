"""Pydantic v2 schemas for video jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

# size <-> (aspect_ratio, resolution)
SIZE_GEOMETRY: dict[str, tuple[str, str]] = {
    "1280x720": ("16:9", "720p"),
    "720x1280": ("9:16", "720p"),
    "1920x1080": ("16:9", "1080p"),
    "1080x1920": ("9:16", "1080p"),
}
GEOMETRY_SIZE: dict[tuple[str, str], str] = {v: k for k, v in SIZE_GEOMETRY.items()}

DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_RESOLUTION = "720p"


class VideoRequest(BaseModel):
    """Everything a provider needs to start a generation.

    Geometry is normalized on construction: a Sora-style ``size`` fills in
    ``aspect_ratio``/``resolution`` and vice versa, so a request built from
    one provider's job can be replayed against another.
    """

    prompt: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    duration: int = Field(8, gt=0)
    size: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    negative_prompt: Optional[str] = None
    generate_audio: bool = True
    input_reference_path: Optional[str] = None
    last_frame_path: Optional[str] = None
    reference_image_paths: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _normalize_geometry(self) -> "VideoRequest":
        if self.size and self.size in SIZE_GEOMETRY:
            aspect, res = SIZE_GEOMETRY[self.size]
            self.aspect_ratio = self.aspect_ratio or aspect
            self.resolution = self.resolution or res
        self.aspect_ratio = self.aspect_ratio or DEFAULT_ASPECT_RATIO
        self.resolution = self.resolution or DEFAULT_RESOLUTION
        if not self.size:
            # Shapes with no pixel size (e.g. Kling's 1:1) keep size unset.
            self.size = GEOMETRY_SIZE.get((self.aspect_ratio, self.resolution))
        return self


class RemixRequest(BaseModel):
    prompt: str = Field(..., min_length=1)


class ContinueRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    model: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0)


class JobRead(BaseModel):
    """Schema for reading a job; also the notification snapshot."""

    id: str
    owner_id: str
    provider: str
    provider_video_id: str
    prompt: str
    negative_prompt: str | None = None
    model: str
    size: str | None = None
    aspect_ratio: str | None = None
    resolution: str | None = None
    duration: int
    generate_audio: bool
    has_input_reference: bool
    status: str
    progress: int
    error_message: str | None = None
    cost: float
    parent_id: str | None = None
    parent_relation: str | None = None
    file_path: str | None = None
    thumbnail_path: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class CostStats(BaseModel):
    user_total: float = 0.0
    user_count: int = 0
    platform_total: float = 0.0
    platform_count: int = 0


class ModelInfo(BaseModel):
    provider: str
    models: list[str]
    capabilities: dict[str, Any]


class JobCreate(BaseModel):
    """HTTP body for a new job. Local file references are never taken from clients."""

    prompt: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    duration: int = Field(8, gt=0)
    size: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    negative_prompt: Optional[str] = None
    generate_audio: bool = True

    def to_request(self, **paths: Any) -> VideoRequest:
        """Build the internal request; ``paths`` are server-side upload locations."""
        return VideoRequest(**self.model_dump(), **paths)
