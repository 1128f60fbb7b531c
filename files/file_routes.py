"""
User file endpoints. Every caller works inside its own `<user_id>/` folder
of the user-files bucket.
"""

import mimetypes
import time
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from loguru import logger

from auth.auth_manager import log_activity
from auth.rbac_dependencies import get_current_principal
from auth.roles import Principal
from core.context import RequestContext, get_request_context
from core.errors import PortalError, ValidationError, to_http_exception
from storage.object_store.buckets import EMPTY_FOLDER_PLACEHOLDER, sanitize_file_name

router = APIRouter(prefix="/api/files", tags=["files"])

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
MAX_FILE_SIZE = 5 * 1024 * 1024


def _own_key(principal: Principal, name: str) -> str:
    if not name or "/" in name or name in (".", ".."):
        raise ValidationError("Invalid file name", field="name")
    return f"{principal.id}/{name}"


def validate_upload(content_type: str, size: int):
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError("Only image files (JPG, PNG, GIF, WebP) are allowed", field="file")
    if size > MAX_FILE_SIZE:
        raise ValidationError("File size must be less than 5MB", field="file")


async def read_upload(upload: UploadFile) -> bytes:
    """Validate and read an upload, never buffering more than MAX_FILE_SIZE + 1 bytes."""
    validate_upload(upload.content_type, upload.size or 0)
    data = await upload.read(MAX_FILE_SIZE + 1)
    validate_upload(upload.content_type, len(data))
    return data


@router.get("")
async def list_files(
    principal: Principal = Depends(get_current_principal),
    ctx: RequestContext = Depends(get_request_context),
):
    """The caller's files, newest first."""
    try:
        objects = ctx.store.list(f"{principal.id}/", limit=100)
    except PortalError as e:
        raise to_http_exception(e)

    files = []
    for obj in objects:
        if obj.name == EMPTY_FOLDER_PLACEHOLDER:
            continue
        files.append({**obj.to_dict(), "url": ctx.store.public_url(obj.key)})

    return {"success": True, "files": files, "count": len(files)}


@router.post("")
async def upload_files(
    files: List[UploadFile] = File(...),
    principal: Principal = Depends(get_current_principal),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Upload one or more images. Each file is checked before anything is
    stored; the stored name is `<millis>_<sanitized upload name>`.
    """
    payloads = []
    try:
        for upload in files:
            data = await read_upload(upload)
            payloads.append((upload, data))

        uploaded = []
        for upload, data in payloads:
            key = _own_key(principal, f"{int(time.time() * 1000)}_{sanitize_file_name(upload.filename or 'file')}")
            stored = ctx.store.upload(key, data, content_type=upload.content_type)
            uploaded.append({**stored.to_dict(), "url": ctx.store.public_url(key)})
            logger.info(f"[FILES] {principal.id} uploaded {stored.name} ({stored.size} bytes)")

    except PortalError as e:
        raise to_http_exception(e)

    log_activity(ctx.session, principal.id, "FILES_UPLOADED",
                 {"files": [u["name"] for u in uploaded]}, ctx.client_ip)

    return {
        "success": True,
        "message": f"Successfully uploaded {len(uploaded)} file(s)",
        "files": uploaded,
    }


@router.get("/{name}")
async def download_file(
    name: str,
    principal: Principal = Depends(get_current_principal),
    ctx: RequestContext = Depends(get_request_context),
):
    """Stream one of the caller's files."""
    try:
        data = ctx.store.download(_own_key(principal, name))
    except PortalError as e:
        raise to_http_exception(e)

    media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return StreamingResponse(
        iter([data]),
        media_type=media_type,
        headers={"Content-Disposition": f'inline; filename="{name}"'},
    )


@router.delete("/{name}")
async def delete_file(
    name: str,
    principal: Principal = Depends(get_current_principal),
    ctx: RequestContext = Depends(get_request_context),
):
    try:
        ctx.store.remove([_own_key(principal, name)])
    except PortalError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"[FILES] Delete failed for {name}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete file")

    log_activity(ctx.session, principal.id, "FILE_DELETED", {"file": name}, ctx.client_ip)
    return {"success": True, "message": "File deleted"}
