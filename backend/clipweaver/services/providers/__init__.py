"""Video provider implementations.

Each provider module implements the long-running generation pattern:
  submit → poll status → download into the media volume
"""

from clipweaver.services.providers.base import (
    ArtifactPaths,
    PollResult,
    ProviderCapabilities,
    SubmitResult,
    VideoProvider,
)
from clipweaver.services.providers.kling_video import KlingProvider
from clipweaver.services.providers.sora_video import SoraProvider
from clipweaver.services.providers.veo_video import VeoProvider

__all__ = [
    "ArtifactPaths",
    "KlingProvider",
    "PollResult",
    "ProviderCapabilities",
    "SoraProvider",
    "SubmitResult",
    "VeoProvider",
    "VideoProvider",
]
