from __future__ import annotations
"""Client image uploads (input reference, last frame, reference images).

Files land under ``<media>/uploads`` with a generated name that keeps the
extension of the accepted content type. Client filenames never reach disk.
"""

import logging
import os
import uuid

from fastapi import UploadFile

from clipweaver.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
CHUNK_SIZE = 1024 * 1024

EXTENSION_BY_TYPE = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def is_provided(upload: UploadFile | None) -> bool:
    """Browsers send an empty part for a file input left blank."""
    return upload is not None and bool(upload.filename)


async def save_upload(upload: UploadFile, media_dir: str, field: str) -> str:
    """Stream one image to disk and return its path.

    Raises ValidationError for a disallowed content type or an oversized file;
    nothing is left on disk in either case.
    """
    ext = EXTENSION_BY_TYPE.get(upload.content_type or "")
    if ext is None:
        raise ValidationError(
            f"{field}: invalid file type {upload.content_type!r}. Only JPEG, PNG, and WebP are allowed."
        )

    upload_dir = os.path.join(media_dir, "uploads")
    os.makedirs(upload_dir, exist_ok=True)
    path = os.path.join(upload_dir, f"{uuid.uuid4().hex}{ext}")

    size = 0
    try:
        with open(path, "wb") as f:
            while chunk := await upload.read(CHUNK_SIZE):
                size += len(chunk)
                if size > MAX_UPLOAD_BYTES:
                    raise ValidationError(
                        f"{field}: file too large. Maximum size: {MAX_UPLOAD_BYTES // (1024 * 1024)}MB"
                    )
                f.write(chunk)
    except BaseException:
        remove_files([path])
        raise

    logger.info("Saved %s upload %r (%d bytes) to %s", field, upload.filename, size, path)
    return path


def remove_files(paths: list[str]) -> None:
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
