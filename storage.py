"""
Product image bucket.

Objects live under STORAGE_DIR/product-images/<user id>/<millis>.<ext>. Reads
are public; uploads and deletes are limited to the caller's own folder.
"""

import logging
import os
import time
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

import config
from auth import get_current_user
from database import require_database
from policies import can_write_object

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storage", tags=["storage"])

BUCKET = "product-images"
ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


def bucket_root() -> Path:
    root = Path(config.STORAGE_DIR) / BUCKET
    root.mkdir(parents=True, exist_ok=True)
    return root.resolve()


def object_path(path: str) -> Path:
    root = bucket_root()
    target = (root / path).resolve()
    if root not in target.parents:
        raise HTTPException(status_code=400, detail="Invalid path")
    return target


def public_url(path: str) -> str:
    return f"{config.PUBLIC_BASE_URL}/api/storage/{BUCKET}/{path}"


@router.post(f"/{BUCKET}", status_code=201, dependencies=[Depends(require_database)])
def upload_product_image(file: UploadFile = File(...), user_id: str = Depends(get_current_user)):
    ext = os.path.splitext(file.filename or "")[1].lstrip(".").lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Unsupported image type")
    content = file.file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(content) > config.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Image too large")

    path = f"{user_id}/{int(time.time() * 1000)}.{ext}"
    if not can_write_object(user_id, path):
        raise HTTPException(status_code=403, detail="Not allowed")
    target = object_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    logger.info("Stored %s (%d bytes)", path, len(content))
    return {"path": path, "public_url": public_url(path)}


@router.get(f"/{BUCKET}/{{path:path}}")
def get_product_image(path: str):
    target = object_path(path)
    if not target.is_file():
        raise HTTPException(status_code=404, detail="Object not found")
    return FileResponse(target)


@router.delete(f"/{BUCKET}/{{path:path}}", dependencies=[Depends(require_database)])
def delete_product_image(path: str, user_id: str = Depends(get_current_user)):
    if not can_write_object(user_id, path):
        raise HTTPException(status_code=403, detail="You can only delete your own images")
    target = object_path(path)
    if not target.is_file():
        raise HTTPException(status_code=404, detail="Object not found")
    target.unlink()
    return {"deleted": True}
