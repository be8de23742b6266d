"""ORM model package — registers all models with Base.metadata."""

from clipweaver.models.job import (
    ACTIVE_STATUSES,
    STATUS_RANK,
    TERMINAL_STATUSES,
    JobStatus,
    ParentRelation,
    VideoJob,
)

__all__ = [
    "ACTIVE_STATUSES",
    "STATUS_RANK",
    "TERMINAL_STATUSES",
    "JobStatus",
    "ParentRelation",
    "VideoJob",
]
