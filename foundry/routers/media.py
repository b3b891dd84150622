from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from foundry.auth.dependencies import AuthContext, require_admin
from foundry.schemas.forms import MediaSasRequest
from foundry.services.media_storage import DEFAULT_CONTENT_TYPE, MediaStorage

router = APIRouter(prefix="/media", tags=["media"])


@router.post("/sas")
def create_upload_url(payload: MediaSasRequest, _auth: AuthContext = Depends(require_admin)):
    filename = (payload.filename or "").strip()
    if not filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="filename is required")
    storage = MediaStorage()
    return storage.presign_upload(filename=filename, content_type=payload.contentType or DEFAULT_CONTENT_TYPE)


@router.get("/list")
def list_media(
    prefix: Optional[str] = None,
    continuationToken: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    _auth: AuthContext = Depends(require_admin),
):
    storage = MediaStorage()
    return storage.list_media(prefix=prefix, continuation_token=continuationToken, limit=limit)
