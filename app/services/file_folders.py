"""Folder management: materialized paths and combined listings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.folder import Folder
from app.models.stored_file import PermissionRole, StoredFile, permission_entry
from app.services.common import commit_or_raise, metadata_read, parse_id, utcnow
from app.services.file_access import require_edit, require_owner, require_view
from app.services.file_storage import FileStorageService
from app.services.storage_errors import FileValidationError, NotFoundError

logger = logging.getLogger(__name__)

MAX_FOLDER_NAME_LENGTH = 255


@dataclass
class FolderContents:
    folders: list[Folder]
    files: list[StoredFile]


def validate_folder_name(name: str | None) -> str:
    candidate = (name or "").strip()
    if not candidate:
        raise FileValidationError("Folder name is required")
    if "/" in candidate:
        raise FileValidationError("Folder name cannot contain '/'")
    if len(candidate) > MAX_FOLDER_NAME_LENGTH:
        raise FileValidationError("Folder name is too long")
    return candidate


def build_path(parent: Folder | None, name: str) -> str:
    if parent is None:
        return f"/{name}"
    return f"{parent.path}/{name}"


class FolderService:
    """Folders group files in metadata only; storage keys never change."""

    def __init__(self, files: FileStorageService) -> None:
        self.files = files

    def _get_active(self, db: Session, folder_id) -> Folder | None:
        folder_uuid = parse_id(folder_id, "Folder")
        with metadata_read("load_folder"):
            folder = db.get(Folder, folder_uuid)
        if folder is None or folder.is_deleted:
            return None
        return folder

    def create_folder(
        self,
        db: Session,
        *,
        name: str,
        owner_id,
        organization_id=None,
        parent_id=None,
        description: str | None = None,
        is_public: bool = False,
    ) -> Folder:
        folder_name = validate_folder_name(name)
        owner_uuid = parse_id(owner_id, "Principal")

        parent = None
        if parent_id is not None:
            try:
                parent = self._get_active(db, parent_id)
            except NotFoundError:
                parent = None
            if parent is None:
                logger.info("folder_parent_missing parent_id=%s treating_as_root", parent_id)

        folder = Folder(
            name=folder_name,
            description=description,
            parent_id=parent.id if parent else None,
            owner_id=owner_uuid,
            organization_id=(
                parse_id(organization_id, "Organization") if organization_id is not None else None
            ),
            path=build_path(parent, folder_name),
            is_public=bool(is_public),
            permissions=[permission_entry(owner_uuid, PermissionRole.owner)],
        )
        db.add(folder)
        commit_or_raise(db, "create_folder")
        db.refresh(folder)
        logger.info("folder_created folder_id=%s path=%s owner=%s", folder.id, folder.path, owner_uuid)
        return folder

    def get_folder(self, db: Session, folder_id, caller_id) -> Folder:
        folder = self._get_active(db, folder_id)
        if folder is None:
            raise NotFoundError("Folder not found")
        require_view(folder, caller_id)
        return folder

    def get_folder_contents(
        self, db: Session, folder_id, caller_id, organization_id=None
    ) -> FolderContents:
        """List the direct children of ``folder_id`` (None for the root)."""
        parent_uuid = parse_id(folder_id, "Folder") if folder_id is not None else None
        org_uuid = (
            parse_id(organization_id, "Organization") if organization_id is not None else None
        )
        owner_uuid = parse_id(caller_id, "Principal") if org_uuid is None else None

        with metadata_read("get_folder_contents"):
            folder_query = db.query(Folder).filter(Folder.is_deleted.is_(False))
            file_query = db.query(StoredFile).filter(StoredFile.is_deleted.is_(False))
            if org_uuid is not None:
                folder_query = folder_query.filter(Folder.organization_id == org_uuid)
                file_query = file_query.filter(StoredFile.organization_id == org_uuid)
            else:
                folder_query = folder_query.filter(Folder.owner_id == owner_uuid)
                file_query = file_query.filter(StoredFile.owner_id == owner_uuid)

            if parent_uuid is None:
                folder_query = folder_query.filter(Folder.parent_id.is_(None))
                file_query = file_query.filter(StoredFile.folder_id.is_(None))
            else:
                folder_query = folder_query.filter(Folder.parent_id == parent_uuid)
                file_query = file_query.filter(StoredFile.folder_id == parent_uuid)

            folders = folder_query.order_by(Folder.name.asc()).all()
            files = file_query.order_by(StoredFile.created_at.desc()).all()
        logger.debug(
            "folder_contents folder_id=%s folders=%s files=%s", folder_id, len(folders), len(files)
        )
        return FolderContents(folders=folders, files=files)

    def move_file(self, db: Session, file_id, target_folder_id, caller_id) -> StoredFile:
        active = self.files.load_active(db, file_id)
        record = active.record
        require_edit(record, caller_id)

        target = None
        if target_folder_id is not None:
            target = self._get_active(db, target_folder_id)
            if target is None:
                raise NotFoundError("Folder not found")

        previous = record.folder_id
        record.folder_id = target.id if target else None
        commit_or_raise(db, "move_file")
        db.refresh(record)
        logger.info(
            "file_moved file_id=%s from=%s to=%s by=%s", record.id, previous, record.folder_id, caller_id
        )
        return record

    def rename_folder(self, db: Session, folder_id, new_name: str, caller_id) -> Folder:
        """Rename a folder and recompute its own path.

        Descendant paths are left untouched.
        """
        folder = self._get_active(db, folder_id)
        if folder is None:
            raise NotFoundError("Folder not found")
        require_edit(folder, caller_id)
        folder_name = validate_folder_name(new_name)

        parent = None
        if folder.parent_id is not None:
            with metadata_read("rename_folder"):
                parent = db.get(Folder, folder.parent_id)
        folder.name = folder_name
        folder.path = build_path(parent, folder_name)
        commit_or_raise(db, "rename_folder")
        db.refresh(folder)
        logger.info("folder_renamed folder_id=%s path=%s by=%s", folder.id, folder.path, caller_id)
        return folder

    def delete_folder(self, db: Session, folder_id, caller_id) -> Folder:
        """Soft-delete the folder row only; children stay visible."""
        folder = self._get_active(db, folder_id)
        if folder is None:
            raise NotFoundError("Folder not found")
        require_owner(folder, caller_id, "delete_folder")
        folder.is_deleted = True
        folder.deleted_at = utcnow()
        folder.deleted_by = parse_id(caller_id, "Principal")
        commit_or_raise(db, "delete_folder")
        logger.info("folder_deleted folder_id=%s by=%s", folder.id, caller_id)
        return folder
