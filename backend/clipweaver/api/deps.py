from __future__ import annotations
"""Shared FastAPI dependencies and error mapping."""

import logging

from fastapi import Header, Request
from fastapi.responses import JSONResponse

from clipweaver.errors import (
    ClipWeaverError,
    Forbidden,
    NotFound,
    ProviderError,
    TransportError,
    UnknownModel,
    UnsupportedOperation,
    ValidationError,
)
from clipweaver.services.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

# Most specific first; TransportError is a ProviderError.
_STATUS_BY_ERROR: tuple[tuple[type[ClipWeaverError], int], ...] = (
    (NotFound, 404),
    (Forbidden, 403),
    (ValidationError, 400),
    (UnknownModel, 400),
    (UnsupportedOperation, 400),
    (TransportError, 504),
    (ProviderError, 502),
)


def get_orchestrator(request: Request) -> Orchestrator:
    """The orchestrator built by the application lifespan."""
    return request.app.state.orchestrator


def get_owner_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Caller identity; authentication happens upstream."""
    return x_user_id


def status_for(exc: ClipWeaverError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


async def clipweaver_error_handler(request: Request, exc: ClipWeaverError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "provider": exc.provider},
    )
