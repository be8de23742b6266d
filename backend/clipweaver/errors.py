"""Error taxonomy shared by the providers, the orchestrator and the HTTP layer.

Synchronous failures (validation, submission) are raised to the caller.
Failures discovered while polling are never raised; they end up on the job
record as ``status=failed`` plus ``error_message``.
"""

from __future__ import annotations


class ClipWeaverError(Exception):
    """Base class for all orchestrator errors."""

    code = "error"

    def __init__(self, message: str, *, provider: str | None = None):
        self.message = message
        self.provider = provider
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ValidationError(ClipWeaverError):
    """Request does not fit the provider's capabilities. Never persisted."""

    code = "validation_error"


class UnknownModel(ClipWeaverError):
    code = "unknown_model"


class UnsupportedOperation(ClipWeaverError):
    """The provider does not offer the requested capability (remix, extension)."""

    code = "unsupported_operation"


class ExtensionUnavailable(UnsupportedOperation):
    """Native extension was selected but the stored operation handle is unusable."""

    code = "extension_unavailable"


class ProviderError(ClipWeaverError):
    """The vendor rejected the call."""

    code = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, provider=provider)
        self.status_code = status_code


class TransportError(ProviderError):
    """Network failure or timeout talking to the vendor. Retried by polling."""

    code = "transport_error"


class ArtifactDownloadFailed(ClipWeaverError):
    """The vendor reports the video as done but it could not be stored locally."""

    code = "artifact_download_failed"


class FrameExtractionError(ClipWeaverError):
    code = "frame_extraction_failed"


class NotFound(ClipWeaverError):
    code = "not_found"


class Forbidden(ClipWeaverError):
    code = "forbidden"
