"""Photo uploads through signed URLs, and signed file downloads."""

import logging
import mimetypes
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.app.config import get_settings
from relaykit.app.routes.deps import Member, get_current_member, http_error
from relaykit.domain.enums import JobFileKind
from relaykit.domain.errors import RelayKitError
from relaykit.domain.models import JobFile
from relaykit.domain.schemas import SignedUploadRequest, SignedUploadResponse, UploadRecordRequest
from relaykit.infra.database import get_db
from relaykit.infra.storage import InvalidSignedTokenError, LocalStorageProvider, get_storage
from relaykit.services import job_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/uploads", tags=["uploads"])
files_router = APIRouter(prefix="/files", tags=["files"])


@router.post("/signed", response_model=SignedUploadResponse)
async def create_signed_upload(
    data: SignedUploadRequest,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorageProvider = Depends(get_storage),
):
    try:
        await job_service.get_job(db, member.workspace_id, data.job_id)
    except RelayKitError as exc:
        raise http_error(exc)

    # Strip path separators from filename
    safe_name = (data.filename or "photo.jpg").replace("/", "_").replace("\\", "_")
    storage_path = f"{data.job_id}/{uuid.uuid4().hex[:8]}_{safe_name}"
    ttl = get_settings().signed_url_ttl_seconds
    return SignedUploadResponse(
        upload_url=storage.create_signed_url(storage_path, ttl, op="write"),
        storage_path=storage_path,
        expires_in=ttl,
    )


@router.put("/{token}")
async def upload_bytes(
    token: str,
    request: Request,
    storage: LocalStorageProvider = Depends(get_storage),
):
    """Token-authorised raw upload (no bearer token required)."""
    try:
        storage_path = storage.verify(token, op="write")
    except InvalidSignedTokenError as exc:
        raise HTTPException(status_code=403, detail={"error": str(exc)})

    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail={"error": "Empty upload"})
    await storage.write(storage_path, body, request.headers.get("Content-Type"))
    logger.info("Upload stored at %s (%d bytes)", storage_path, len(body))
    return {"storage_path": storage_path, "size": len(body)}


@router.post("/record", status_code=201)
async def record_upload(
    data: UploadRecordRequest,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorageProvider = Depends(get_storage),
):
    try:
        await job_service.get_job(db, member.workspace_id, data.job_id)
    except RelayKitError as exc:
        raise http_error(exc)
    if data.kind not in {k.value for k in JobFileKind}:
        raise HTTPException(status_code=400, detail={"error": "Invalid file kind"})
    if not data.storage_path.startswith(f"{data.job_id}/"):
        raise HTTPException(status_code=400, detail={"error": "Storage path does not belong to job"})
    if not await storage.exists(data.storage_path):
        raise HTTPException(status_code=400, detail={"error": "File has not been uploaded"})

    job_file = JobFile(
        job_id=data.job_id,
        kind=data.kind,
        storage_path=data.storage_path,
        mime_type=data.mime_type or mimetypes.guess_type(data.storage_path)[0],
    )
    db.add(job_file)
    await db.commit()
    await db.refresh(job_file)
    return {
        "id": job_file.id,
        "job_id": job_file.job_id,
        "kind": job_file.kind,
        "storage_path": job_file.storage_path,
        "mime_type": job_file.mime_type,
    }


@files_router.get("/{token}")
async def download_file(token: str, storage: LocalStorageProvider = Depends(get_storage)):
    try:
        storage_path = storage.verify(token, op="read")
    except InvalidSignedTokenError as exc:
        raise HTTPException(status_code=403, detail={"error": str(exc)})
    if not await storage.exists(storage_path):
        raise HTTPException(status_code=404, detail={"error": "File not found"})
    media_type = mimetypes.guess_type(storage_path)[0] or "application/octet-stream"
    return Response(content=await storage.read(storage_path), media_type=media_type)
