"""Job store: the persistence contract the orchestrator consumes.

Every write is a field-level partial update in its own transaction, and
every read opens a fresh session, so nothing is cached between
reconciliation ticks.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clipweaver.models.job import ACTIVE_STATUSES, JobStatus, VideoJob
from clipweaver.schemas.job import CostStats
from clipweaver.utils.time import utc_now

logger = logging.getLogger(__name__)

# Columns that may never be written through update().
_IMMUTABLE_FIELDS = frozenset({
    "id", "owner_id", "provider", "prompt", "negative_prompt", "model", "size",
    "aspect_ratio", "resolution", "duration", "generate_audio",
    "has_input_reference", "reference_image_paths", "cost", "parent_id",
    "parent_relation", "created_at",
})


class JobRepository:
    """Async CRUD over the ``video_jobs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, job: VideoJob) -> VideoJob:
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)
        logger.debug("Created job %s (%s:%s)", job.id, job.provider, job.provider_video_id)
        return job

    async def update(self, job_id: str, **fields: Any) -> VideoJob | None:
        """Apply a partial update and return the fresh row.

        An empty field set is a no-op that just returns the current row.
        Returns None when the job no longer exists.
        """
        if not fields:
            return await self.get(job_id)
        illegal = _IMMUTABLE_FIELDS.intersection(fields)
        if illegal:
            raise ValueError(f"Cannot update immutable job fields: {sorted(illegal)}")
        fields["updated_at"] = utc_now()

        async with self._session_factory() as session:
            result = await session.execute(
                update(VideoJob).where(VideoJob.id == job_id).values(**fields)
            )
            await session.commit()
            if result.rowcount == 0:
                return None
            return await session.get(VideoJob, job_id, populate_existing=True)

    async def get(self, job_id: str) -> VideoJob | None:
        async with self._session_factory() as session:
            return await session.get(VideoJob, job_id)

    async def get_by_owner(
        self, owner_id: str, limit: int = 50, offset: int = 0
    ) -> list[VideoJob]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoJob)
                .where(VideoJob.owner_id == owner_id)
                .order_by(VideoJob.created_at.desc(), VideoJob.id)
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def get_by_provider_native_id(
        self, provider: str, native_id: str
    ) -> VideoJob | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoJob).where(
                    VideoJob.provider == provider,
                    VideoJob.provider_video_id == native_id,
                )
            )
            return result.scalars().first()

    async def list_active(self) -> list[VideoJob]:
        """All jobs still awaiting a terminal status."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoJob)
                .where(VideoJob.status.in_([s.value for s in ACTIVE_STATUSES]))
                .order_by(VideoJob.created_at)
            )
            return list(result.scalars().all())

    async def delete(self, job_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(VideoJob).where(VideoJob.id == job_id))
            await session.commit()
            return result.rowcount > 0

    async def aggregate_cost(self, owner_id: str | None = None) -> CostStats:
        """Spend over completed jobs, for one owner and for the whole platform."""
        completed = VideoJob.status == JobStatus.COMPLETED.value
        totals = select(func.coalesce(func.sum(VideoJob.cost), 0.0), func.count(VideoJob.id))

        async with self._session_factory() as session:
            platform_total, platform_count = (await session.execute(totals.where(completed))).one()
            user_total, user_count = 0.0, 0
            if owner_id is not None:
                user_total, user_count = (
                    await session.execute(totals.where(completed, VideoJob.owner_id == owner_id))
                ).one()

        return CostStats(
            user_total=round(float(user_total), 2),
            user_count=int(user_count),
            platform_total=round(float(platform_total), 2),
            platform_count=int(platform_count),
        )
