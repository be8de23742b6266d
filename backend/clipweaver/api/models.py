"""Model catalogue API — supported models grouped by provider."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from clipweaver.api.deps import get_orchestrator
from clipweaver.schemas.job import ModelInfo
from clipweaver.services.orchestrator import Orchestrator

router = APIRouter()


@router.get("/models", response_model=list[ModelInfo])
async def list_models(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """List every provider's models with its capability descriptor."""
    return orchestrator.list_models()
