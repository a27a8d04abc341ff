"""File upload, download and lifecycle endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.api.deps import Principal, get_current_principal, get_db, get_storage
from app.models.stored_file import StoredFile
from app.schemas.files import (
    FileMetadataUpdate,
    FileTypeStats,
    MoveFileRequest,
    PermissionGrant,
    StorageStatsRead,
    StoredFileRead,
    UploadBatchRead,
    UploadFailureRead,
)
from app.services.file_storage import IncomingFile, build_content_disposition, normalize_tags
from app.services.object_storage import StreamResult
from app.services.storage_context import StorageContext

router = APIRouter(prefix="/files", tags=["files"])


def _split_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return normalize_tags(raw.split(","))


def _read_upload(upload: UploadFile) -> IncomingFile:
    data = upload.file.read()
    return IncomingFile(
        data=data,
        original_name=upload.filename or "",
        content_type=upload.content_type,
        size=upload.size if upload.size is not None else len(data),
    )


def stream_response(stream: StreamResult, record: StoredFile, inline: bool = False):
    headers = {
        "Content-Disposition": build_content_disposition(record.file_name, inline=inline)
    }
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    return StreamingResponse(
        stream.chunks,
        media_type=stream.content_type or record.content_type or "application/octet-stream",
        headers=headers,
    )


@router.post("", response_model=StoredFileRead, status_code=status.HTTP_201_CREATED)
def upload_file(
    file: UploadFile = File(...),
    folder_id: uuid.UUID | None = Form(default=None),
    tags: str | None = Form(default=None),
    description: str | None = Form(default=None),
    is_public: bool = Form(default=False),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    incoming = _read_upload(file)
    return storage.files.upload_file(
        db,
        data=incoming.data,
        size=incoming.size,
        original_name=incoming.original_name,
        content_type=incoming.content_type,
        owner_id=principal.principal_id,
        organization_id=principal.organization_id,
        folder_id=folder_id,
        tags=_split_tags(tags),
        description=description,
        is_public=is_public,
    )


@router.post("/batch", response_model=UploadBatchRead, status_code=status.HTTP_201_CREATED)
def upload_files(
    files: list[UploadFile] = File(...),
    folder_id: uuid.UUID | None = Form(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    result = storage.files.upload_multiple(
        db,
        [_read_upload(upload) for upload in files],
        owner_id=principal.principal_id,
        organization_id=principal.organization_id,
        folder_id=folder_id,
    )
    return UploadBatchRead(
        uploaded=[StoredFileRead.model_validate(record) for record in result.uploaded],
        failures=[
            UploadFailureRead(
                original_name=failure.original_name,
                code=failure.error.code,
                message=failure.error.message,
            )
            for failure in result.failures
        ],
    )


@router.get("/search", response_model=list[StoredFileRead])
def search_files(
    q: str = Query(..., min_length=1),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.search_files(
        db, principal.principal_id, q, organization_id=principal.organization_id, limit=limit
    )


@router.get("/stats", response_model=StorageStatsRead)
def storage_stats(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    stats = storage.files.get_storage_stats(
        db, principal.principal_id, organization_id=principal.organization_id
    )
    return StorageStatsRead(
        total_files=stats.total_files,
        total_size=stats.total_size,
        files_by_type=[FileTypeStats(**entry) for entry in stats.files_by_type],
    )


@router.get("/trash", response_model=list[StoredFileRead])
def list_trash(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.list_trash(db, principal.principal_id)


@router.get("/{file_id}", response_model=StoredFileRead)
def get_file(
    file_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.get_file(db, file_id, principal.principal_id)


@router.get("/{file_id}/download")
def download_file(
    file_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    stream, record = storage.files.download_file(db, file_id, principal.principal_id)
    return stream_response(stream, record)


@router.get("/{file_id}/preview")
def preview_file(
    file_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    stream, record = storage.files.preview_file(db, file_id, principal.principal_id)
    return stream_response(stream, record, inline=True)


@router.get("/{file_id}/presign")
def presign_download(
    file_id: str,
    ttl_seconds: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    url = storage.files.presign_download(
        db, file_id, principal.principal_id, ttl_seconds=ttl_seconds
    )
    return {"url": url, "expires_in": ttl_seconds or storage.files.presign_ttl_seconds}


@router.patch("/{file_id}", response_model=StoredFileRead)
def update_file(
    file_id: str,
    payload: FileMetadataUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.update_metadata(db, file_id, principal.principal_id, payload)


@router.post("/{file_id}/move", response_model=StoredFileRead)
def move_file(
    file_id: str,
    payload: MoveFileRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.folders.move_file(
        db, file_id, payload.target_folder_id, principal.principal_id
    )


@router.delete("/{file_id}", response_model=StoredFileRead)
def delete_file(
    file_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.delete_file(db, file_id, principal.principal_id).record


@router.delete("/{file_id}/permanent")
def permanently_delete_file(
    file_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    purged = storage.files.permanently_delete_file(db, file_id, principal.principal_id)
    return {"id": str(purged.id), "state": purged.state.value}


@router.post("/{file_id}/restore", response_model=StoredFileRead)
def restore_file(
    file_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.restore_file(db, file_id, principal.principal_id)


@router.post("/{file_id}/permissions", response_model=StoredFileRead)
def grant_permission(
    file_id: str,
    payload: PermissionGrant,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.share_permission(
        db, file_id, principal.principal_id, payload.principal_id, payload.role
    )


@router.delete("/{file_id}/permissions", response_model=StoredFileRead)
def revoke_permission(
    file_id: str,
    principal_id: uuid.UUID = Query(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.files.revoke_permission(db, file_id, principal.principal_id, principal_id)
