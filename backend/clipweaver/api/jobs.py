from __future__ import annotations
"""Video job API endpoints."""

import os
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from fastapi.responses import FileResponse

from clipweaver.api.deps import get_orchestrator, get_owner_id
from clipweaver.errors import NotFound
from clipweaver.schemas.job import (
    ContinueRequest,
    CostStats,
    JobCreate,
    JobRead,
    RemixRequest,
)
from clipweaver.services.orchestrator import Orchestrator
from clipweaver.services.uploads import is_provided, remove_files, save_upload

router = APIRouter()


@router.post("", response_model=JobRead, status_code=201)
async def create_job(
    prompt: str = Form(..., min_length=1),
    model: str = Form(..., min_length=1),
    duration: int = Form(8, gt=0),
    size: Optional[str] = Form(None),
    aspect_ratio: Optional[str] = Form(None),
    resolution: Optional[str] = Form(None),
    negative_prompt: Optional[str] = Form(None),
    generate_audio: bool = Form(True),
    input_reference: Optional[UploadFile] = File(None),
    last_frame: Optional[UploadFile] = File(None),
    reference_images: Optional[list[UploadFile]] = File(None),
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Submit a new generation (multipart form). Progress arrives over the WebSocket.

    Optional image parts: ``input_reference``, ``last_frame`` and repeated
    ``reference_images``. JPEG, PNG or WebP, 10MB each.
    """
    data = JobCreate(
        prompt=prompt,
        model=model,
        duration=duration,
        size=size,
        aspect_ratio=aspect_ratio,
        resolution=resolution,
        negative_prompt=negative_prompt,
        generate_audio=generate_audio,
    )

    saved: list[str] = []
    paths: dict = {}
    try:
        if is_provided(input_reference):
            paths["input_reference_path"] = await save_upload(
                input_reference, orchestrator.media_dir, "input_reference"
            )
            saved.append(paths["input_reference_path"])
        if is_provided(last_frame):
            paths["last_frame_path"] = await save_upload(
                last_frame, orchestrator.media_dir, "last_frame"
            )
            saved.append(paths["last_frame_path"])
        references = [image for image in reference_images or [] if is_provided(image)]
        if references:
            paths["reference_image_paths"] = []
            for image in references:
                path = await save_upload(image, orchestrator.media_dir, "reference_images")
                saved.append(path)
                paths["reference_image_paths"].append(path)

        # Uploads stay on disk once the job exists; its row points at them.
        return await orchestrator.create_job(owner_id, data.to_request(**paths))
    except BaseException:
        remove_files(saved)
        raise


@router.get("", response_model=list[JobRead])
async def list_jobs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """List the caller's jobs, newest first."""
    return await orchestrator.list_jobs(owner_id, limit=limit, offset=offset)


@router.get("/stats/costs", response_model=CostStats)
async def cost_stats(
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.cost_stats(owner_id)


@router.get("/{job_id}", response_model=JobRead)
async def get_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_job(owner_id, job_id)


@router.get("/{job_id}/content")
async def get_content(
    job_id: str,
    variant: Literal["video", "thumbnail"] = Query("video"),
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Serve the downloaded video or its thumbnail to the job's owner."""
    job = await orchestrator.get_job(owner_id, job_id)
    path = job.file_path if variant == "video" else job.thumbnail_path
    if not path or not os.path.isfile(path):
        raise NotFound(f"No {variant} available for job {job_id}")

    media_type = "video/mp4" if variant == "video" else None
    return FileResponse(path, media_type=media_type, filename=os.path.basename(path))


@router.post("/{job_id}/remix", response_model=JobRead, status_code=201)
async def remix_job(
    job_id: str,
    data: RemixRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    return await orchestrator.remix_job(owner_id, job_id, data.prompt)


@router.post("/{job_id}/continue", response_model=JobRead, status_code=201)
async def continue_job(
    job_id: str,
    data: ContinueRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Extend natively where the provider allows it, else seed from the last frame."""
    return await orchestrator.continue_job(
        owner_id, job_id, data.prompt, model=data.model, duration=data.duration
    )


@router.post("/{job_id}/force-check", response_model=JobRead)
async def force_check(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Reconcile immediately; re-arms polling if the timer was lost."""
    return await orchestrator.force_check(job_id, owner_id)


@router.delete("/{job_id}", status_code=204)
async def delete_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Delete the job record. Downloaded files are kept."""
    await orchestrator.delete_job(job_id, owner_id)
    return Response(status_code=204)
