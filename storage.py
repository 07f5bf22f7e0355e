"""Local disk storage for uploaded product and profile images."""

import os
import random
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

import config
from errors import NotFoundError, ValidationError
from logging_config import get_logger

logger = get_logger(__name__)

FOLDERS = {"products": "product", "users": "profile"}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png"}
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png"}


def folder_path(folder: str) -> Path:
    if folder not in FOLDERS:
        raise NotFoundError("File not found")
    path = Path(config.UPLOAD_DIR) / folder
    path.mkdir(parents=True, exist_ok=True)
    return path


def save_upload(upload: Optional[UploadFile], folder: str) -> Optional[str]:
    """Validate and store an uploaded image, returning the stored filename."""
    if upload is None or not upload.filename:
        return None
    ext = os.path.splitext(upload.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS or (upload.content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        raise ValidationError("Only jpeg, jpg and png images are allowed")
    data = upload.file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationError("Image must be at most %d bytes" % config.MAX_UPLOAD_BYTES)

    filename = "%s-%d-%d%s" % (FOLDERS[folder], int(time.time() * 1000), random.randint(0, 10**9), ext)
    (folder_path(folder) / filename).write_bytes(data)
    logger.info("asset_saved", folder=folder, filename=filename, size=len(data))
    return filename


def delete_asset(folder: str, filename: Optional[str]) -> bool:
    """Remove a stored image. Returns False when removal failed; a missing file counts as removed."""
    if not filename:
        return True
    try:
        (folder_path(folder) / filename).unlink(missing_ok=True)
    except OSError as exc:
        logger.error("asset_delete_failed", folder=folder, filename=filename, error=str(exc))
        return False
    logger.info("asset_deleted", folder=folder, filename=filename)
    return True


def resolve_asset(folder: str, filename: str) -> Path:
    base = folder_path(folder).resolve()
    path = (base / filename).resolve()
    if path.parent != base or not path.is_file():
        raise NotFoundError("File not found")
    return path


@contextmanager
def discard_on_error(folder: str, filename: Optional[str]):
    """Remove a freshly saved upload if the block that stores its reference fails."""
    try:
        yield
    except Exception:
        delete_asset(folder, filename)
        raise
