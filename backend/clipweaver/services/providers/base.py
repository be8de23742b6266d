"""Uniform provider contract over vendor video-generation back ends.

Every concrete provider follows the same long-running pattern:
  submit → poll (any number of times) → fetch artifact when completed

Adapters own their wire format. The orchestrator only sees the dataclasses
below and the error taxonomy in ``clipweaver.errors``.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from clipweaver.errors import (
    ProviderError,
    TransportError,
    UnsupportedOperation,
    ValidationError,
)
from clipweaver.models.job import JobStatus
from clipweaver.schemas.job import VideoRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static per-provider descriptor. Never persisted."""

    models: tuple[str, ...]
    durations: tuple[int, ...]
    aspect_ratios: tuple[str, ...] = ()
    resolutions: tuple[str, ...] = ()
    sizes: tuple[str, ...] = ()
    max_reference_images: int = 0
    supports_remix: bool = False
    supports_extension: bool = False
    supports_interpolation: bool = False
    supports_multiple_reference_images: bool = False
    supports_audio: bool = False

    @property
    def max_duration(self) -> int:
        return max(self.durations) if self.durations else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "models": list(self.models),
            "durations": list(self.durations),
            "aspect_ratios": list(self.aspect_ratios),
            "resolutions": list(self.resolutions),
            "sizes": list(self.sizes),
            "max_reference_images": self.max_reference_images,
            "max_duration": self.max_duration,
            "supports_remix": self.supports_remix,
            "supports_extension": self.supports_extension,
            "supports_interpolation": self.supports_interpolation,
            "supports_multiple_reference_images": self.supports_multiple_reference_images,
            "supports_audio": self.supports_audio,
        }


@dataclass
class SubmitResult:
    """What a provider reports right after accepting a generation."""

    native_id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    created_at: datetime | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class PollResult:
    status: JobStatus
    progress: int = 0
    error: str | None = None
    metadata: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ArtifactPaths:
    video_path: str
    thumbnail_path: str | None = None


class VideoProvider(ABC):
    """Base class for provider adapters.

    Subclasses set ``name`` and ``capabilities`` and implement the network
    calls. ``remix`` and ``extend`` default to UnsupportedOperation; callers
    check ``capabilities`` before invoking them.
    """

    name: str = "unknown"
    capabilities: ProviderCapabilities

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        media_dir: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.media_dir = media_dir
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    # ---- contract -----------------------------------------------------------

    def get_capabilities(self) -> ProviderCapabilities:
        return self.capabilities

    def validate(self, request: VideoRequest) -> None:
        """Check the request against capabilities before any network call."""
        caps = self.capabilities
        if request.model not in caps.models:
            raise ValidationError(
                f"Model {request.model} is not offered by {self.name}. "
                f"Use: {', '.join(caps.models)}",
                provider=self.name,
            )
        if request.duration not in caps.durations:
            raise ValidationError(
                f"Duration {request.duration} not supported. "
                f"Use: {', '.join(str(d) for d in caps.durations)}",
                provider=self.name,
            )
        if request.reference_image_paths and not caps.supports_multiple_reference_images:
            raise ValidationError(
                f"{self.name} does not accept reference images", provider=self.name
            )
        if len(request.reference_image_paths) > caps.max_reference_images:
            raise ValidationError(
                f"Maximum {caps.max_reference_images} reference images supported",
                provider=self.name,
            )
        if request.last_frame_path and not caps.supports_interpolation:
            raise ValidationError(
                f"{self.name} does not support last-frame interpolation", provider=self.name
            )
        if caps.sizes and request.size not in caps.sizes:
            raise ValidationError(
                f"Size {request.size} not supported. Use: {', '.join(caps.sizes)}",
                provider=self.name,
            )
        if caps.aspect_ratios and request.aspect_ratio not in caps.aspect_ratios:
            raise ValidationError(
                f"Aspect ratio {request.aspect_ratio} not supported. "
                f"Use: {', '.join(caps.aspect_ratios)}",
                provider=self.name,
            )
        if caps.resolutions and request.resolution not in caps.resolutions:
            raise ValidationError(
                f"Resolution {request.resolution} not supported. "
                f"Use: {', '.join(caps.resolutions)}",
                provider=self.name,
            )

    @abstractmethod
    async def submit(self, request: VideoRequest) -> SubmitResult:
        """Start a generation and return the provider's handle."""
        ...

    @abstractmethod
    async def poll(self, native_id: str) -> PollResult:
        """Single read-only status check."""
        ...

    @abstractmethod
    async def fetch_artifact(self, native_id: str, destination_id: str) -> ArtifactPaths:
        """Download the finished media. Re-downloading overwrites the same files."""
        ...

    async def remix(self, native_id: str, prompt: str) -> SubmitResult:
        raise UnsupportedOperation(f"{self.name} does not support remix", provider=self.name)

    async def extend(
        self,
        native_id: str,
        prompt: str,
        duration: int,
        metadata: dict[str, Any] | None,
    ) -> SubmitResult:
        raise UnsupportedOperation(
            f"{self.name} does not support native extension", provider=self.name
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ---- shared HTTP plumbing ----------------------------------------------

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, translating httpx failures into the error taxonomy."""
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{self.name} rejected {method} {exc.request.url.path}: "
                f"{exc.response.status_code} {_error_text(exc.response)}",
                provider=self.name,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"{self.name} unreachable ({type(exc).__name__}): {exc}",
                provider=self.name,
            ) from exc
        return response

    async def _json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.name} returned a non-JSON body", provider=self.name
            ) from exc

    async def _download(self, url: str, filepath: str, **kwargs: Any) -> str:
        """Stream a remote file to disk."""
        os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
        try:
            async with self.client.stream("GET", url, **kwargs) as response:
                response.raise_for_status()
                with open(filepath, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=8192):
                        f.write(chunk)
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"{self.name} download failed: {exc.response.status_code}",
                provider=self.name,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"{self.name} download interrupted: {exc}", provider=self.name
            ) from exc
        return filepath

    def _artifact_path(self, destination_id: str, suffix: str) -> str:
        return os.path.join(self.media_dir, f"{destination_id}{suffix}")


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return str(body)[:200]


def clamp_progress(value: Any) -> int:
    try:
        progress = int(float(value or 0))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, progress))
