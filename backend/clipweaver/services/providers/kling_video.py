"""Kling video generation provider.

Supports:
- kling-v1(STD/PRO), kling-v1-6(PRO), kling-v2-5-turbo(PRO), kling-v2-6(PRO)
- Text-to-video and image-to-video (first + last frame)

Kling only answers a task query on the endpoint that created the task, so the
native id carries it: ``text2video/<task_id>`` or ``image2video/<task_id>``.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any

from clipweaver.errors import FrameExtractionError, ProviderError, TransportError, ValidationError
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
from clipweaver.utils.time import from_epoch

logger = logging.getLogger(__name__)

METADATA_SCHEMA = "kling.task/v1"

# Kling reports no percentage; estimate from the task phase.
_STATUS_MAP = {
    "submitted": (JobStatus.QUEUED, 0),
    "processing": (JobStatus.IN_PROGRESS, 50),
    "succeed": (JobStatus.COMPLETED, 100),
    "failed": (JobStatus.FAILED, 0),
}

_MODEL_RE = re.compile(r"^(.+)\((STD|PRO)\)$", re.IGNORECASE)


def parse_model(model: str) -> tuple[str, str]:
    """"kling-v2-6(PRO)" → ("kling-v2-6", "pro")."""
    match = _MODEL_RE.match(model)
    if not match:
        return model, "std"
    return match.group(1), match.group(2).lower()


class KlingProvider(VideoProvider):
    """Kling adapter. First/last frame interpolation, no remix or extension."""

    name = "kling"
    capabilities = ProviderCapabilities(
        models=(
            "kling-v1(STD)",
            "kling-v1(PRO)",
            "kling-v1-6(PRO)",
            "kling-v2-5-turbo(PRO)",
            "kling-v2-6(PRO)",
        ),
        durations=(5, 10),
        aspect_ratios=("16:9", "9:16", "1:1"),
        max_reference_images=2,
        supports_interpolation=True,
    )

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def validate(self, request: VideoRequest) -> None:
        super().validate(request)
        if request.last_frame_path and not request.input_reference_path:
            raise ValidationError(
                "Kling needs a first frame when a last frame is given", provider=self.name
            )

    async def submit(self, request: VideoRequest) -> SubmitResult:
        model_name, mode = parse_model(request.model)
        body: dict[str, Any] = {
            "model_name": model_name,
            "mode": mode,
            "duration": str(request.duration),
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio,
        }
        if request.negative_prompt:
            body["negative_prompt"] = request.negative_prompt

        endpoint = "text2video"
        if request.input_reference_path:
            endpoint = "image2video"
            body["image"] = _raw_base64(request.input_reference_path)
            if request.last_frame_path:
                body["image_tail"] = _raw_base64(request.last_frame_path)

        logger.info(
            "Kling create: model=%s mode=%s endpoint=%s duration=%ss aspect=%s",
            model_name, mode, endpoint, request.duration, request.aspect_ratio,
        )
        data = await self._json(
            "POST", f"{self.base_url}/videos/{endpoint}", json=body, headers=self._headers
        )
        if data.get("code") != 0:
            raise ProviderError(
                f"Kling task creation failed: {data.get('message', 'unknown error')}",
                provider=self.name,
            )

        task = data.get("data") or {}
        task_id = task.get("task_id")
        if not task_id:
            raise ProviderError("Kling task creation failed: no task_id returned", provider=self.name)

        native_id = f"{endpoint}/{task_id}"
        status, progress = _STATUS_MAP.get(task.get("task_status", "submitted"), (JobStatus.QUEUED, 0))
        logger.info("Kling task created: %s (model=%s)", native_id, request.model)
        return SubmitResult(
            native_id=native_id,
            status=status,
            progress=progress,
            created_at=from_epoch(task.get("created_at")),
            metadata={"schema": METADATA_SCHEMA, "task_id": task_id, "endpoint": endpoint},
        )

    async def poll(self, native_id: str) -> PollResult:
        data = await self._query(native_id)
        task = data.get("data") or {}
        task_status = task.get("task_status")

        mapped = _STATUS_MAP.get(task_status)
        if mapped is None:
            logger.warning("Kling unknown status for %s: %s", native_id, task_status)
            mapped = (JobStatus.IN_PROGRESS, 50)
        status, progress = mapped

        error = None
        if status == JobStatus.FAILED:
            error = f"Kling task failed: {task.get('task_status_msg') or 'unknown'}"
        elif status == JobStatus.COMPLETED and not _video_url(task):
            status, progress = JobStatus.FAILED, 0
            error = "Kling task succeeded but no video URL"

        return PollResult(status=status, progress=progress, error=error, raw=data)

    async def fetch_artifact(self, native_id: str, destination_id: str) -> ArtifactPaths:
        data = await self._query(native_id)
        video_url = _video_url(data.get("data") or {})
        if not video_url:
            raise ProviderError(
                f"Kling task {native_id} has no downloadable video", provider=self.name
            )

        video_path = await self._download(
            video_url, self._artifact_path(destination_id, ".mp4"), follow_redirects=True
        )

        thumbnail_path: str | None = self._artifact_path(destination_id, "_thumb.webp")
        try:
            await frames.extract_last_frame(video_path, thumbnail_path)
        except FrameExtractionError as exc:
            logger.warning("Kling thumbnail extraction failed for %s: %s", destination_id, exc)
            thumbnail_path = None

        return ArtifactPaths(video_path=video_path, thumbnail_path=thumbnail_path)

    async def _query(self, native_id: str) -> dict[str, Any]:
        data = await self._json(
            "GET", f"{self.base_url}/videos/{native_id}", headers=self._headers
        )
        if data.get("code") != 0:
            # Query-side errors are transient on Kling; retry on the next tick.
            raise TransportError(
                f"Kling query error for {native_id}: {data.get('message')}", provider=self.name
            )
        return data


def _video_url(task: dict[str, Any]) -> str | None:
    videos = (task.get("task_result") or {}).get("videos") or []
    return videos[0].get("url") if videos else None


def _raw_base64(path: str) -> str:
    # Kling wants bare base64, no data URL prefix.
    with open(path, "rb") as f:
        return base64.b64encode(f.read()).decode("utf-8")
