import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

import media
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/upload")
def upload_file(
    file: Optional[UploadFile] = File(None),
    folder: str = Form("products"),
    user=Depends(get_current_user),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No valid file provided")
    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No valid file provided")
    try:
        uploaded = media.upload(content, folder=folder, filename=file.filename)
    except media.MediaError as exc:
        logger.error("Upload by %s failed: %s", user["id"], exc)
        raise HTTPException(status_code=500, detail="Upload failed")
    return uploaded


@router.delete("/api/upload")
def delete_file(public_id: str = "", user=Depends(get_current_user)):
    if not public_id:
        raise HTTPException(status_code=400, detail="public_id is required")
    try:
        media.destroy(public_id)
    except media.MediaError as exc:
        logger.error("Delete of %s failed: %s", public_id, exc)
        raise HTTPException(status_code=500, detail="Delete failed")
    return {"success": True}
