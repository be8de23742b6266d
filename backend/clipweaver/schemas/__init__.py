"""Pydantic v2 schemas package."""

from clipweaver.schemas.job import (
    ContinueRequest,
    CostStats,
    JobCreate,
    JobRead,
    ModelInfo,
    RemixRequest,
    VideoRequest,
)

__all__ = [
    "ContinueRequest",
    "CostStats",
    "JobCreate",
    "JobRead",
    "ModelInfo",
    "RemixRequest",
    "VideoRequest",
]
