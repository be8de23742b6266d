"""OpenAI Sora video generation provider.

Supports: sora-2, sora-2-pro via the OpenAI /videos API.

  POST /videos              → create (multipart, optional input_reference)
  GET  /videos/{id}         → status + progress
  GET  /videos/{id}/content → mp4 (``?variant=thumbnail`` → webp)
  POST /videos/{id}/remix   → new video derived from a finished one
"""

from __future__ import annotations

import logging
import os
from typing import Any

from clipweaver.errors import ProviderError, TransportError
from clipweaver.models.job import JobStatus
from clipweaver.schemas.job import VideoRequest
from clipweaver.services.providers.base import (
    ArtifactPaths,
    PollResult,
    ProviderCapabilities,
    SubmitResult,
    VideoProvider,
    clamp_progress,
)
from clipweaver.utils.time import from_epoch

logger = logging.getLogger(__name__)

METADATA_SCHEMA = "sora.video/v1"

_STATUS_MAP = {
    "queued": JobStatus.QUEUED,
    "in_progress": JobStatus.IN_PROGRESS,
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
}


class SoraProvider(VideoProvider):
    """Sora adapter. Remix is native; continuation goes through the last frame."""

    name = "sora"
    capabilities = ProviderCapabilities(
        models=("sora-2", "sora-2-pro"),
        durations=(4, 8, 12),
        sizes=("1280x720", "720x1280", "1920x1080", "1080x1920"),
        max_reference_images=1,
        supports_remix=True,
        supports_extension=False,
    )

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def submit(self, request: VideoRequest) -> SubmitResult:
        data = {
            "model": request.model,
            "prompt": request.prompt,
            "size": request.size,
            "seconds": str(request.duration),
        }

        logger.info(
            "Sora create: model=%s size=%s seconds=%s input_reference=%s",
            request.model, request.size, request.duration, bool(request.input_reference_path),
        )

        if request.input_reference_path:
            with open(request.input_reference_path, "rb") as f:
                image_bytes = f.read()
            files = {
                "input_reference": (
                    os.path.basename(request.input_reference_path),
                    image_bytes,
                    _guess_image_mime(request.input_reference_path),
                )
            }
            body = await self._json(
                "POST", f"{self.base_url}/videos", data=data, files=files, headers=self._headers
            )
        else:
            # The endpoint only takes multipart; send every field as a form part.
            files = {k: (None, v) for k, v in data.items()}
            body = await self._json(
                "POST", f"{self.base_url}/videos", files=files, headers=self._headers
            )

        return self._to_submit_result(body)

    async def poll(self, native_id: str) -> PollResult:
        body = await self._json("GET", f"{self.base_url}/videos/{native_id}", headers=self._headers)
        status = _STATUS_MAP.get(str(body.get("status", "")).lower())
        if status is None:
            logger.warning("Sora unknown status for %s: %s", native_id, body.get("status"))
            status = JobStatus.IN_PROGRESS

        error = None
        if status == JobStatus.FAILED:
            error = (body.get("error") or {}).get("message") or "Video generation failed"

        return PollResult(
            status=status,
            progress=100 if status == JobStatus.COMPLETED else clamp_progress(body.get("progress")),
            error=error,
            metadata={"schema": METADATA_SCHEMA, "video": body},
            raw=body,
        )

    async def fetch_artifact(self, native_id: str, destination_id: str) -> ArtifactPaths:
        video_path = await self._download(
            f"{self.base_url}/videos/{native_id}/content",
            self._artifact_path(destination_id, ".mp4"),
            headers=self._headers,
        )

        thumbnail_path: str | None = None
        try:
            thumbnail_path = await self._download(
                f"{self.base_url}/videos/{native_id}/content",
                self._artifact_path(destination_id, "_thumb.webp"),
                params={"variant": "thumbnail"},
                headers=self._headers,
            )
        except (ProviderError, TransportError, OSError) as exc:
            # Thumbnail is optional; the video alone completes the job.
            logger.warning("Sora thumbnail download failed for %s: %s", native_id, exc)

        return ArtifactPaths(video_path=video_path, thumbnail_path=thumbnail_path)

    async def remix(self, native_id: str, prompt: str) -> SubmitResult:
        logger.info("Sora remix of %s", native_id)
        body = await self._json(
            "POST",
            f"{self.base_url}/videos/{native_id}/remix",
            json={"prompt": prompt},
            headers=self._headers,
        )
        return self._to_submit_result(body)

    def _to_submit_result(self, body: dict[str, Any]) -> SubmitResult:
        native_id = body.get("id")
        if not native_id:
            raise ProviderError(f"Sora returned no video id: {body}", provider=self.name)
        status = _STATUS_MAP.get(str(body.get("status", "queued")).lower(), JobStatus.QUEUED)
        if status == JobStatus.FAILED:
            message = (body.get("error") or {}).get("message") or "rejected at submission"
            raise ProviderError(f"Sora rejected the video: {message}", provider=self.name)
        logger.info("Sora video created: %s (%s)", native_id, status.value)
        return SubmitResult(
            native_id=native_id,
            status=status,
            progress=clamp_progress(body.get("progress")),
            created_at=from_epoch(body.get("created_at")),
            metadata={"schema": METADATA_SCHEMA, "video": body},
        )


def _guess_image_mime(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    return {
        ".png": "image/png",
        ".webp": "image/webp",
    }.get(ext, "image/jpeg")
