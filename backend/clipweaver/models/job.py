from __future__ import annotations
"""VideoJob ORM model — one local record of a request submitted to a provider."""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from clipweaver.database import Base


class JobStatus(str, enum.Enum):
    """Job lifecycle statuses."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.IN_PROGRESS})

# Ordering used to refuse stale status regressions (in_progress -> queued).
STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.IN_PROGRESS: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


class ParentRelation(str, enum.Enum):
    """How a job was derived from its parent."""

    REMIX = "remix"
    EXTENSION = "extension"
    CONTINUATION = "continuation"


def new_job_id() -> str:
    return uuid.uuid4().hex


class VideoJob(Base):
    """A video generation job and its reconciled provider state."""

    __tablename__ = "video_jobs"
    __table_args__ = (
        UniqueConstraint("provider", "provider_video_id", name="uq_video_jobs_provider_native"),
        Index("ix_video_jobs_owner_created", "owner_id", "created_at"),
        Index("ix_video_jobs_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_job_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Provider identity
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    provider_video_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Request attributes (immutable after creation)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    negative_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    aspect_ratio: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    generate_audio: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_input_reference: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reference_image_paths: Mapped[Optional[list[str]]] = mapped_column(JSON, nullable=True)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.QUEUED.value
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lineage (lookup only, never ownership)
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    parent_relation: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Opaque provider handle, handed back to the same provider for extensions
    provider_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Materialized artifacts
    file_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    thumbnail_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True, server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.job_status.is_terminal

    def __repr__(self) -> str:
        return (
            f"<VideoJob {self.id} {self.provider}:{self.provider_video_id} "
            f"{self.status} {self.progress}%>"
        )
