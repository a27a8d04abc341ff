from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import Principal, get_current_principal, get_db, get_storage
from app.schemas.files import FolderContentsRead, FolderCreate, FolderRead, FolderRename
from app.services.storage_context import StorageContext

router = APIRouter(prefix="/folders", tags=["folders"])


@router.post("", response_model=FolderRead, status_code=status.HTTP_201_CREATED)
def create_folder(
    payload: FolderCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.folders.create_folder(
        db,
        name=payload.name,
        owner_id=principal.principal_id,
        organization_id=principal.organization_id,
        parent_id=payload.parent_id,
        description=payload.description,
        is_public=payload.is_public,
    )


@router.get("/contents", response_model=FolderContentsRead)
def folder_contents(
    folder_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    contents = storage.folders.get_folder_contents(
        db, folder_id, principal.principal_id, organization_id=principal.organization_id
    )
    return FolderContentsRead.model_validate(contents, from_attributes=True)


@router.get("/{folder_id}", response_model=FolderRead)
def get_folder(
    folder_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.folders.get_folder(db, folder_id, principal.principal_id)


@router.patch("/{folder_id}", response_model=FolderRead)
def rename_folder(
    folder_id: str,
    payload: FolderRename,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.folders.rename_folder(db, folder_id, payload.name, principal.principal_id)


@router.delete("/{folder_id}", response_model=FolderRead)
def delete_folder(
    folder_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.folders.delete_folder(db, folder_id, principal.principal_id)
