"""Google Veo video generation provider.

Supports Veo 3.1 and 3.0 (standard + fast) via the Gemini REST API.

Veo uses the long-running operation pattern:
  POST /models/{model}:predictLongRunning → operation name (our native id)
  GET  /{operation}                       → done / error / generated sample URI

Extension re-submits the generated sample's URI, so the URI is kept in the
provider metadata blob under a versioned schema tag. A blob written by an
older adapter fails the extension up front instead of deep inside the request.
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from clipweaver.errors import ExtensionUnavailable, FrameExtractionError, ProviderError
from clipweaver.models.job import JobStatus
from clipweaver.schemas.job import VideoRequest
from clipweaver.services import frames
from clipweaver.services.providers.base import (
    ArtifactPaths,
    PollResult,
    ProviderCapabilities,
    SubmitResult,
    VideoProvider,
)
from clipweaver.utils.time import utc_now

logger = logging.getLogger(__name__)

METADATA_SCHEMA = "veo.operation/v1"
EXTENSION_MODEL = "veo-3.1-generate-preview"

# Veo reports no granular progress while an operation runs.
_RUNNING_PROGRESS = 50


class VeoProvider(VideoProvider):
    """Veo adapter. Native audio, interpolation, reference images and extension."""

    name = "veo"
    capabilities = ProviderCapabilities(
        models=(
            "veo-3.1-generate-preview",
            "veo-3.1-fast-generate-preview",
            "veo-3-generate-preview",
            "veo-3-fast-generate-preview",
        ),
        durations=(4, 6, 8),
        aspect_ratios=("16:9", "9:16"),
        resolutions=("720p", "1080p"),
        max_reference_images=3,
        supports_remix=False,
        supports_extension=True,
        supports_interpolation=True,
        supports_multiple_reference_images=True,
        supports_audio=True,
    )

    @property
    def _params(self) -> dict[str, str]:
        return {"key": self.api_key}

    async def submit(self, request: VideoRequest) -> SubmitResult:
        instance: dict[str, Any] = {"prompt": request.prompt}
        if request.input_reference_path:
            instance["image"] = _inline_image(request.input_reference_path)
        if request.last_frame_path:
            instance["lastFrame"] = _inline_image(request.last_frame_path)
        if request.reference_image_paths:
            instance["referenceImages"] = [
                {"image": _inline_image(path), "referenceType": "asset"}
                for path in request.reference_image_paths
            ]

        parameters: dict[str, Any] = {
            "sampleCount": 1,
            "aspectRatio": request.aspect_ratio,
            "resolution": request.resolution,
            "durationSeconds": request.duration,
        }
        if request.negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt
        if not request.generate_audio:
            parameters["generateAudio"] = False

        logger.info(
            "Veo create: model=%s aspect=%s resolution=%s duration=%ss refs=%d",
            request.model, request.aspect_ratio, request.resolution,
            request.duration, len(request.reference_image_paths),
        )
        operation = await self._json(
            "POST",
            f"{self.base_url}/models/{request.model}:predictLongRunning",
            json={"instances": [instance], "parameters": parameters},
            params=self._params,
        )
        return self._to_submit_result(operation, request.aspect_ratio)

    async def poll(self, native_id: str) -> PollResult:
        operation = await self._json("GET", f"{self.base_url}/{native_id}", params=self._params)

        if operation.get("error"):
            error = operation["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return PollResult(
                status=JobStatus.FAILED,
                progress=0,
                error=f"Veo generation failed: {message}",
                raw=operation,
            )

        if not operation.get("done"):
            return PollResult(
                status=JobStatus.IN_PROGRESS, progress=_RUNNING_PROGRESS, raw=operation
            )

        video_uri = _generated_video_uri(operation)
        if not video_uri:
            # Done without a sample usually means the safety filter dropped it.
            reason = _filtered_reason(operation) or "no video in completed operation"
            return PollResult(
                status=JobStatus.FAILED,
                progress=0,
                error=f"Veo generation failed: {reason}",
                raw=operation,
            )

        return PollResult(
            status=JobStatus.COMPLETED,
            progress=100,
            metadata={
                "schema": METADATA_SCHEMA,
                "operation": native_id,
                "video_uri": video_uri,
            },
            raw=operation,
        )

    async def fetch_artifact(self, native_id: str, destination_id: str) -> ArtifactPaths:
        operation = await self._json("GET", f"{self.base_url}/{native_id}", params=self._params)
        video_uri = _generated_video_uri(operation) if operation.get("done") else None
        if not video_uri:
            raise ProviderError(
                f"Veo operation {native_id} has no downloadable video", provider=self.name
            )

        # The URI carries its own query (alt=media); add the key to it, not over it.
        download_url = httpx.URL(video_uri).copy_merge_params(self._params)
        video_path = await self._download(
            str(download_url),
            self._artifact_path(destination_id, ".mp4"),
            follow_redirects=True,
        )

        # Veo has no thumbnail endpoint; take a frame from the video instead.
        thumbnail_path: str | None = self._artifact_path(destination_id, "_thumb.webp")
        try:
            await frames.extract_last_frame(video_path, thumbnail_path)
        except FrameExtractionError as exc:
            logger.warning("Veo thumbnail extraction failed for %s: %s", destination_id, exc)
            thumbnail_path = None

        return ArtifactPaths(video_path=video_path, thumbnail_path=thumbnail_path)

    async def extend(
        self,
        native_id: str,
        prompt: str,
        duration: int,
        metadata: dict[str, Any] | None,
    ) -> SubmitResult:
        video_uri = _extension_handle(metadata)
        aspect_ratio = (metadata or {}).get("aspect_ratio")

        parameters: dict[str, Any] = {"sampleCount": 1, "durationSeconds": duration}
        if aspect_ratio:
            # Extensions must keep the source video's aspect ratio.
            parameters["aspectRatio"] = aspect_ratio

        logger.info("Veo extend: source=%s duration=%ss", native_id, duration)
        operation = await self._json(
            "POST",
            f"{self.base_url}/models/{EXTENSION_MODEL}:predictLongRunning",
            json={
                "instances": [{"prompt": prompt, "video": {"uri": video_uri}}],
                "parameters": parameters,
            },
            params=self._params,
        )
        return self._to_submit_result(operation, aspect_ratio)

    def _to_submit_result(self, operation: dict[str, Any], aspect_ratio: str | None) -> SubmitResult:
        name = operation.get("name")
        if not name:
            raise ProviderError(
                f"Veo returned no operation name: {operation}", provider=self.name
            )
        logger.info("Veo operation started: %s", name)
        return SubmitResult(
            native_id=name,
            status=JobStatus.QUEUED,
            progress=0,
            created_at=utc_now(),
            metadata={
                "schema": METADATA_SCHEMA,
                "operation": name,
                "aspect_ratio": aspect_ratio,
            },
        )


def _extension_handle(metadata: dict[str, Any] | None) -> str:
    """Return the generated video URI an extension needs, or fail loudly."""
    if not metadata:
        raise ExtensionUnavailable(
            "No stored Veo operation for this video; it cannot be extended", provider="veo"
        )
    if metadata.get("schema") != METADATA_SCHEMA:
        raise ExtensionUnavailable(
            f"Stored Veo metadata has schema {metadata.get('schema')!r}, "
            f"expected {METADATA_SCHEMA!r}",
            provider="veo",
        )
    video_uri = metadata.get("video_uri")
    if not video_uri:
        raise ExtensionUnavailable(
            "Stored Veo operation has no generated video URI", provider="veo"
        )
    return video_uri


def _generated_video_uri(operation: dict[str, Any]) -> str | None:
    response = operation.get("response") or {}
    samples = (response.get("generateVideoResponse") or {}).get("generatedSamples") or []
    if samples:
        return (samples[0].get("video") or {}).get("uri")
    # SDK-shaped responses
    videos = response.get("generatedVideos") or []
    if videos:
        return (videos[0].get("video") or {}).get("uri")
    return None


def _filtered_reason(operation: dict[str, Any]) -> str | None:
    response = (operation.get("response") or {}).get("generateVideoResponse") or {}
    reasons = response.get("raiMediaFilteredReasons") or []
    return "; ".join(reasons) if reasons else None


def _inline_image(path: str) -> dict[str, str]:
    with open(path, "rb") as f:
        data = base64.b64encode(f.read()).decode("utf-8")
    mime_type = "image/png" if path.lower().endswith(".png") else "image/jpeg"
    return {"bytesBase64Encoded": data, "mimeType": mime_type}
