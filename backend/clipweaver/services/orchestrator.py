"""Job orchestrator. Drives every provider through one lifecycle.

CreateJob:    resolve → validate → submit → persist (queued) → schedule
Reconcile:    poll → merge status/progress → on completion download artifacts
ForceCheck:   immediate verbose reconcile, re-arming a lost timer
Resume:       re-schedule every job whose stored status is still active

The job store is the only source of truth. Every reconciliation re-reads the
row under the job's lock, so the timer and a ForceCheck can race safely.
Failures found while polling are recorded on the job, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from clipweaver.config import Settings
from clipweaver.errors import (
    ArtifactDownloadFailed,
    Forbidden,
    NotFound,
    ProviderError,
    TransportError,
    UnsupportedOperation,
    ValidationError,
)
from clipweaver.models.job import STATUS_RANK, JobStatus, ParentRelation, VideoJob, new_job_id
from clipweaver.schemas.job import CostStats, JobRead, ModelInfo, VideoRequest
from clipweaver.services import frames
from clipweaver.services.cost import estimate_cost
from clipweaver.services.job_repository import JobRepository
from clipweaver.services.notifications import NotificationSink
from clipweaver.services.provider_registry import ProviderRegistry
from clipweaver.services.providers.base import PollResult, SubmitResult, VideoProvider
from clipweaver.services.scheduler import PollingScheduler, TickOutcome
from clipweaver.utils.time import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

FrameExtractor = Callable[[str, str], Awaitable[str]]
CostEstimator = Callable[..., float]

# Vendor answers worth retrying on the next tick rather than failing the job.
_TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class Orchestrator:
    """Creates jobs, reconciles them against their provider and publishes changes."""

    def __init__(
        self,
        repository: JobRepository,
        registry: ProviderRegistry,
        sink: NotificationSink,
        *,
        poll_interval: float = 5.0,
        backoff_max: float = 60.0,
        provider_timeout: float = 60.0,
        download_timeout: float = 300.0,
        media_dir: str = "media_volume",
        frame_extractor: FrameExtractor | None = None,
        cost_estimator: CostEstimator = estimate_cost,
    ):
        self.repository = repository
        self.registry = registry
        self.sink = sink
        self.provider_timeout = provider_timeout
        self.download_timeout = download_timeout
        self.media_dir = media_dir
        self._extract_frame = frame_extractor or frames.extract_last_frame
        self._estimate_cost = cost_estimator
        self.scheduler = PollingScheduler(
            self.reconcile, interval=poll_interval, backoff_max=backoff_max
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: JobRepository,
        registry: ProviderRegistry,
        sink: NotificationSink,
    ) -> "Orchestrator":
        return cls(
            repository,
            registry,
            sink,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            backoff_max=settings.POLL_BACKOFF_MAX_SECONDS,
            provider_timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            download_timeout=settings.DOWNLOAD_TIMEOUT_SECONDS,
            media_dir=settings.MEDIA_VOLUME,
        )

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    async def create_job(
        self,
        owner_id: str,
        request: VideoRequest,
        *,
        parent_id: str | None = None,
        parent_relation: ParentRelation | None = None,
    ) -> VideoJob:
        """Validate, submit and persist a new job, then start polling it.

        Nothing is persisted when validation or submission fails.
        """
        provider_name = self.registry.resolve(request.model)
        client = self.registry.get_client(provider_name)
        client.validate(request)
        cost = self._cost(request)

        result = await self._bounded(
            client.submit(request), self.provider_timeout, provider_name, "submit"
        )
        return await self._record_submission(
            owner_id, provider_name, request, result, cost,
            parent_id=parent_id, parent_relation=parent_relation,
        )

    async def remix_job(self, owner_id: str, parent_id: str, prompt: str) -> VideoJob:
        """New job derived from a parent through the provider's native remix."""
        parent = await self._load(parent_id, owner_id)
        if not self.registry.capabilities(parent.provider).supports_remix:
            raise UnsupportedOperation(
                f"{parent.provider} does not support remix", provider=parent.provider
            )

        client = self.registry.get_client(parent.provider)
        request = VideoRequest(
            prompt=prompt,
            model=parent.model,
            duration=parent.duration,
            size=parent.size,
            aspect_ratio=parent.aspect_ratio,
            resolution=parent.resolution,
            generate_audio=parent.generate_audio,
        )
        cost = self._cost(request)

        result = await self._bounded(
            client.remix(parent.provider_video_id, prompt),
            self.provider_timeout, parent.provider, "remix",
        )
        return await self._record_submission(
            owner_id, parent.provider, request, result, cost,
            parent_id=parent.id, parent_relation=ParentRelation.REMIX,
        )

    async def continue_job(
        self,
        owner_id: str,
        parent_id: str,
        prompt: str,
        *,
        model: str | None = None,
        duration: int | None = None,
    ) -> VideoJob:
        """Continue a completed video.

        Native extension when the parent's provider has it and the target
        stays on that provider; last-frame continuation otherwise.
        """
        parent = await self._load(parent_id, owner_id)
        if parent.job_status != JobStatus.COMPLETED or not parent.file_path:
            raise ValidationError("Only completed videos with a downloaded file can be continued")

        target_model = model or parent.model
        target_provider = self.registry.resolve(target_model)
        request = VideoRequest(
            prompt=prompt,
            model=target_model,
            duration=duration or parent.duration,
            size=parent.size,
            aspect_ratio=parent.aspect_ratio,
            resolution=parent.resolution,
            generate_audio=parent.generate_audio,
        )

        if (
            target_provider == parent.provider
            and self.registry.capabilities(parent.provider).supports_extension
        ):
            return await self._extend(owner_id, parent, request)
        return await self._continue_from_last_frame(owner_id, parent, request)

    async def _extend(self, owner_id: str, parent: VideoJob, request: VideoRequest) -> VideoJob:
        client = self.registry.get_client(parent.provider)
        client.validate(request)
        cost = self._cost(request)
        logger.info("Extending job %s natively on %s", parent.id, parent.provider)
        result = await self._bounded(
            client.extend(
                parent.provider_video_id, request.prompt, request.duration,
                parent.provider_metadata,
            ),
            self.provider_timeout, parent.provider, "extend",
        )
        return await self._record_submission(
            owner_id, parent.provider, request, result, cost,
            parent_id=parent.id, parent_relation=ParentRelation.EXTENSION,
        )

    async def _continue_from_last_frame(
        self, owner_id: str, parent: VideoJob, request: VideoRequest
    ) -> VideoJob:
        frame_path = os.path.join(self.media_dir, f"{parent.id}_frame_{uuid.uuid4().hex[:8]}.png")
        logger.info("Continuing job %s from its last frame with %s", parent.id, request.model)
        seeded = request.model_copy(update={"input_reference_path": frame_path})
        # Reject an unfit request before paying for the ffmpeg run.
        self.registry.get_client(self.registry.resolve(seeded.model)).validate(seeded)
        try:
            await self._extract_frame(parent.file_path, frame_path)
            return await self.create_job(
                owner_id, seeded,
                parent_id=parent.id, parent_relation=ParentRelation.CONTINUATION,
            )
        finally:
            if os.path.exists(frame_path):
                os.remove(frame_path)

    async def _record_submission(
        self,
        owner_id: str,
        provider_name: str,
        request: VideoRequest,
        result: SubmitResult,
        cost: float,
        *,
        parent_id: str | None,
        parent_relation: ParentRelation | None,
    ) -> VideoJob:
        job = VideoJob(
            id=new_job_id(),
            owner_id=owner_id,
            provider=provider_name,
            provider_video_id=result.native_id,
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            model=request.model,
            size=request.size,
            aspect_ratio=request.aspect_ratio,
            resolution=request.resolution,
            duration=request.duration,
            generate_audio=request.generate_audio,
            has_input_reference=bool(request.input_reference_path),
            reference_image_paths=list(request.reference_image_paths) or None,
            cost=cost,
            status=result.status.value,
            progress=result.progress,
            parent_id=parent_id,
            parent_relation=parent_relation.value if parent_relation else None,
            provider_metadata=result.metadata,
            created_at=result.created_at or utc_now(),
        )
        job = await self.repository.create(job)
        logger.info(
            "Created job %s: %s %s native=%s cost=$%.2f",
            job.id, provider_name, request.model, result.native_id, cost,
        )

        if not job.is_terminal:
            self.scheduler.schedule(job.id)
        await self._notify(job, {"status": job.status, "progress": job.progress})
        return job

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, job_id: str, *, verbose: bool = False) -> TickOutcome:
        """One poll-and-merge step for a job, serialized per job."""
        async with self.scheduler.job_lock(job_id):
            return await self._reconcile_locked(job_id, verbose)

    async def _reconcile_locked(self, job_id: str, verbose: bool) -> TickOutcome:
        job = await self.repository.get(job_id)
        if job is None or self.scheduler.is_cancelled(job_id):
            return TickOutcome.GONE
        if job.is_terminal:
            self.scheduler.discard(job_id)
            return TickOutcome.TERMINAL

        client = self.registry.get_client(job.provider)
        try:
            result = await self._bounded(
                client.poll(job.provider_video_id), self.provider_timeout, job.provider, "poll"
            )
        except TransportError as exc:
            logger.warning("Poll of job %s failed, will retry: %s", job_id, exc)
            return TickOutcome.TRANSPORT_ERROR
        except ProviderError as exc:
            if exc.status_code is None or exc.status_code in _TRANSIENT_STATUS_CODES:
                logger.warning("Poll of job %s rejected, will retry: %s", job_id, exc)
                return TickOutcome.TRANSPORT_ERROR
            result = PollResult(status=JobStatus.FAILED, error=str(exc))

        if verbose:
            logger.info(
                "Force check %s (%s:%s) → %s %s%% error=%s raw=%s",
                job_id, job.provider, job.provider_video_id,
                result.status.value, result.progress, result.error, result.raw,
            )
        else:
            logger.debug(
                "Poll %s → %s %s%%", job_id, result.status.value, result.progress
            )

        updates = _merge(job, result)
        if result.status == JobStatus.COMPLETED and job.job_status != JobStatus.COMPLETED:
            updates.update(await self._materialize(job, client))

        # Deleted while the provider call was in flight.
        if self.scheduler.is_cancelled(job_id):
            return TickOutcome.GONE
        if not updates:
            return TickOutcome.UNCHANGED

        fresh = await self.repository.update(job_id, **updates)
        if fresh is None:
            return TickOutcome.GONE
        # Deleted or shut down while the write was in flight.
        if self.scheduler.is_cancelled(job_id):
            return TickOutcome.GONE

        if "status" in updates:
            if fresh.job_status == JobStatus.FAILED:
                logger.error("Job %s failed: %s", job_id, fresh.error_message)
            else:
                logger.info("Job %s: %s → %s", job_id, job.status, fresh.status)

        await self._notify(fresh, updates)
        if fresh.is_terminal:
            self.scheduler.discard(job_id)
            return TickOutcome.TERMINAL
        return TickOutcome.UPDATED

    async def _materialize(self, job: VideoJob, client: VideoProvider) -> dict[str, Any]:
        """Download the finished media. A failed download fails the job."""
        try:
            paths = await self._bounded(
                client.fetch_artifact(job.provider_video_id, job.id),
                self.download_timeout, job.provider, "download",
            )
        except (ProviderError, OSError) as exc:
            error = ArtifactDownloadFailed(
                f"Failed to download video: {exc}", provider=job.provider
            )
            return {
                "status": JobStatus.FAILED.value,
                "error_message": str(error),
            }

        logger.info("Job %s artifacts saved: %s", job.id, paths.video_path)
        return {
            "status": JobStatus.COMPLETED.value,
            "progress": 100,
            "file_path": paths.video_path,
            "thumbnail_path": paths.thumbnail_path,
            "completed_at": utc_now(),
        }

    async def force_check(self, job_id: str, owner_id: str | None = None) -> VideoJob:
        """Reconcile right now and make sure an active job is still being polled."""
        job = await self._load(job_id, owner_id)
        logger.info(
            "Force check requested for %s (%s:%s, status=%s, progress=%s, scheduled=%s)",
            job.id, job.provider, job.provider_video_id, job.status, job.progress,
            self.scheduler.is_scheduled(job.id),
        )

        outcome = await self.reconcile(job_id, verbose=True)

        job = await self.repository.get(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        if job.is_terminal:
            self.scheduler.discard(job_id)
        elif self.scheduler.schedule(job_id):
            logger.info("Re-armed polling for job %s", job_id)

        logger.info("Force check %s done: %s (%s)", job_id, job.status, outcome.value)
        return job

    async def resume(self) -> list[str]:
        """Schedule every job still queued or in progress. Call once at startup."""
        active = await self.repository.list_active()
        resumed = [job.id for job in active if self.scheduler.schedule(job.id)]
        logger.info("Resumed polling for %d active jobs", len(resumed))
        return resumed

    # ------------------------------------------------------------------
    # Queries and deletion
    # ------------------------------------------------------------------

    async def get_job(self, owner_id: str, job_id: str) -> VideoJob:
        return await self._load(job_id, owner_id)

    async def list_jobs(self, owner_id: str, limit: int = 50, offset: int = 0) -> list[VideoJob]:
        return await self.repository.get_by_owner(owner_id, limit=limit, offset=offset)

    async def cost_stats(self, owner_id: str) -> CostStats:
        return await self.repository.aggregate_cost(owner_id)

    def list_models(self) -> list[ModelInfo]:
        return self.registry.list_models()

    async def delete_job(self, job_id: str, owner_id: str) -> None:
        """Stop polling and drop the record. Downloaded files are kept."""
        await self._load(job_id, owner_id)
        self.scheduler.cancel(job_id)
        async with self.scheduler.job_lock(job_id):
            await self.repository.delete(job_id)
        self.scheduler.forget(job_id)
        logger.info("Deleted job %s", job_id)

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.registry.aclose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, job_id: str, owner_id: str | None) -> VideoJob:
        job = await self.repository.get(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        if owner_id is not None and job.owner_id != owner_id:
            raise Forbidden(f"Not authorized to access job {job_id}")
        return job

    def _cost(self, request: VideoRequest) -> float:
        return self._estimate_cost(
            request.model,
            request.duration,
            size=request.size,
            resolution=request.resolution,
            generate_audio=request.generate_audio,
        )

    async def _bounded(self, call: Awaitable[T], timeout: float, provider: str, action: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"{provider} {action} timed out after {timeout:.0f}s", provider=provider
            ) from exc

    async def _notify(self, job: VideoJob, fields: dict[str, Any]) -> None:
        snapshot = JobRead.model_validate(job).model_dump(mode="json")
        public = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in fields.items()
            if key not in ("provider_metadata", "updated_at")
        }
        await self.sink.publish(job.owner_id, job.id, public, snapshot)


def _merge(job: VideoJob, result: PollResult) -> dict[str, Any]:
    """Fields to write for a poll result. Completion is left to the download step."""
    updates: dict[str, Any] = {}
    current = job.job_status
    reported = result.status

    if reported == JobStatus.FAILED:
        updates["status"] = JobStatus.FAILED.value
        updates["progress"] = max(0, min(100, result.progress))
        updates["error_message"] = result.error or "Video generation failed"
    elif reported != JobStatus.COMPLETED:
        if STATUS_RANK[reported] > STATUS_RANK[current]:
            updates["status"] = reported.value
        elif STATUS_RANK[reported] < STATUS_RANK[current]:
            logger.debug("Ignoring stale status %s for job %s", reported.value, job.id)
        if result.progress > job.progress:
            updates["progress"] = result.progress

    if result.metadata is not None:
        merged = {**(job.provider_metadata or {}), **result.metadata}
        if merged != job.provider_metadata:
            updates["provider_metadata"] = merged
    return updates
