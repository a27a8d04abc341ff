"""Upload, download and lifecycle management for stored files."""

from __future__ import annotations

import logging
import mimetypes
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import String, cast, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.folder import Folder
from app.models.stored_file import FileKind, FileState, PermissionRole, StoredFile, permission_entry
from app.schemas.files import FileMetadataUpdate
from app.services.common import commit_or_raise, metadata_read, parse_id, utcnow
from app.services.file_access import require_edit, require_owner, require_view
from app.services.object_storage import ObjectStore, StreamResult
from app.services.storage_errors import (
    FileValidationError,
    InvalidFileStateError,
    MetadataUnavailableError,
    NotFoundError,
    PartialUploadError,
    ReconciliationRequiredError,
    StorageError,
)
from app.services.storage_keys import (
    classify_content_type,
    compute_checksum,
    generate_key,
    route_bucket,
)

logger = logging.getLogger(__name__)

SAFE_DISPLAY_NAME_RE = re.compile(r"[\x00-\x1f\x7f]+")
DEFAULT_CONTENT_TYPE = "application/octet-stream"
SEARCH_LIMIT = 50


@dataclass(frozen=True)
class ActiveFile:
    """A loaded file that is not in the trash."""

    record: StoredFile
    state: FileState = FileState.active


@dataclass(frozen=True)
class TrashedFile:
    """A loaded file that has been soft-deleted and may be restored or purged."""

    record: StoredFile
    state: FileState = FileState.trashed


@dataclass(frozen=True)
class PurgedFile:
    """What remains known about a file after its object and row are gone."""

    id: Any
    bucket: str
    storage_key: str
    state: FileState = FileState.gone


@dataclass
class IncomingFile:
    """One file of a batch upload, as parsed by the HTTP layer."""

    data: bytes
    original_name: str
    content_type: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class StagedUpload:
    original_name: str
    display_name: str
    content_type: str
    file_kind: FileKind
    size: int
    bucket: str
    storage_key: str
    checksum: str
    data: bytes = field(repr=False)


@dataclass
class UploadFailure:
    original_name: str
    error: StorageError


@dataclass
class UploadBatchResult:
    uploaded: list[StoredFile] = field(default_factory=list)
    failures: list[UploadFailure] = field(default_factory=list)


@dataclass
class StorageStats:
    total_files: int
    total_size: int
    files_by_type: list[dict]


def normalize_tags(tags: list[str] | set[str] | None) -> list[str]:
    if not tags:
        return []
    cleaned = {tag.strip() for tag in tags if tag and tag.strip()}
    return sorted(cleaned)


def _display_name(original_name: str) -> str:
    cleaned = SAFE_DISPLAY_NAME_RE.sub("", original_name or "").strip()
    return cleaned[:255]


def build_content_disposition(filename: str, inline: bool = False) -> str:
    safe = re.sub(r"[^A-Za-z0-9._ -]+", "_", filename).strip().strip(".") or "file"
    disposition = "inline" if inline else "attachment"
    return f'{disposition}; filename="{safe[:255]}"'


class FileStorageService:
    """Orchestrates key routing, the object store and file metadata."""

    def __init__(
        self,
        store: ObjectStore,
        max_size_bytes: int | None = None,
        max_concurrency: int | None = None,
        presign_ttl_seconds: int | None = None,
    ) -> None:
        self.store = store
        self.max_size_bytes = max_size_bytes or settings.upload_max_size_bytes
        self.max_concurrency = max(1, max_concurrency or settings.upload_max_concurrency)
        self.presign_ttl_seconds = presign_ttl_seconds or settings.s3_presign_ttl_seconds

    # -- loading ---------------------------------------------------------

    def _get_record(self, db: Session, file_id) -> StoredFile | None:
        file_uuid = parse_id(file_id, "File")
        try:
            return db.get(StoredFile, file_uuid)
        except SQLAlchemyError as exc:
            raise MetadataUnavailableError("Metadata store unavailable") from exc

    def load_active(self, db: Session, file_id) -> ActiveFile:
        record = self._get_record(db, file_id)
        if record is None or record.is_deleted:
            raise NotFoundError("File not found")
        return ActiveFile(record)

    def load_trashed(self, db: Session, file_id) -> TrashedFile:
        record = self._get_record(db, file_id)
        if record is None:
            raise NotFoundError("File not found")
        if not record.is_deleted:
            raise InvalidFileStateError(
                "File not found in trash", state=record.state.value
            )
        return TrashedFile(record)

    def _require_folder(self, db: Session, folder_id) -> Folder | None:
        if folder_id is None:
            return None
        folder_uuid = parse_id(folder_id, "Folder")
        with metadata_read("load_folder"):
            folder = db.get(Folder, folder_uuid)
        if folder is None or folder.is_deleted:
            raise NotFoundError("Folder not found")
        return folder

    # -- uploads ---------------------------------------------------------

    def stage(
        self,
        *,
        data: bytes,
        size: int | None,
        original_name: str,
        content_type: str | None,
        owner_id,
    ) -> StagedUpload:
        """Validate an upload and compute its key, bucket and checksum."""
        if data is None:
            raise FileValidationError("File content is required")
        display_name = _display_name(original_name)
        if not display_name:
            raise FileValidationError("File name is required")
        declared_size = len(data) if size is None else size
        if declared_size < 0:
            raise FileValidationError("File size cannot be negative")
        if declared_size != len(data):
            raise FileValidationError(
                f"Declared size {declared_size} does not match payload length {len(data)}"
            )
        if declared_size > self.max_size_bytes:
            raise FileValidationError("File exceeds maximum allowed size")

        final_type = (
            content_type
            or mimetypes.guess_type(display_name)[0]
            or DEFAULT_CONTENT_TYPE
        )
        bucket = self.store.buckets.bucket_for(route_bucket(final_type))
        return StagedUpload(
            original_name=display_name,
            display_name=display_name,
            content_type=final_type,
            file_kind=classify_content_type(final_type),
            size=declared_size,
            bucket=bucket,
            storage_key=generate_key(owner_id, display_name),
            checksum=compute_checksum(data),
            data=data,
        )

    def _write_object(self, staged: StagedUpload) -> None:
        self.store.put(
            staged.bucket,
            staged.storage_key,
            staged.data,
            staged.size,
            staged.content_type,
        )

    def _record_upload(
        self,
        db: Session,
        staged: StagedUpload,
        *,
        owner_id,
        organization_id=None,
        folder_id=None,
        tags: list[str] | None = None,
        description: str | None = None,
        is_public: bool = False,
        metadata: dict | None = None,
    ) -> StoredFile:
        owner_uuid = parse_id(owner_id, "Principal")
        record = StoredFile(
            file_name=staged.display_name,
            original_name=staged.original_name,
            content_type=staged.content_type,
            file_kind=staged.file_kind,
            size=staged.size,
            bucket=staged.bucket,
            storage_key=staged.storage_key,
            folder_id=parse_id(folder_id, "Folder") if folder_id is not None else None,
            owner_id=owner_uuid,
            organization_id=(
                parse_id(organization_id, "Organization") if organization_id is not None else None
            ),
            tags=normalize_tags(tags),
            description=description,
            metadata_=dict(metadata or {}),
            is_public=bool(is_public),
            permissions=[permission_entry(owner_uuid, PermissionRole.owner)],
            checksum=staged.checksum,
        )
        try:
            db.add(record)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "file_upload_orphaned bucket=%s key=%s checksum=%s",
                staged.bucket,
                staged.storage_key,
                staged.checksum,
            )
            raise PartialUploadError(
                "Object stored but metadata could not be saved",
                bucket=staged.bucket,
                key=staged.storage_key,
                checksum=staged.checksum,
            ) from exc
        db.refresh(record)
        logger.info(
            "file_upload_success file_id=%s owner=%s bucket=%s key=%s size=%s",
            record.id,
            record.owner_id,
            record.bucket,
            record.storage_key,
            record.size,
        )
        return record

    def upload_file(
        self,
        db: Session,
        *,
        data: bytes,
        size: int | None,
        original_name: str,
        content_type: str | None,
        owner_id,
        organization_id=None,
        folder_id=None,
        tags: list[str] | None = None,
        description: str | None = None,
        is_public: bool = False,
        metadata: dict | None = None,
    ) -> StoredFile:
        """Write the object, then create its metadata row.

        Raises:
            FileValidationError: malformed input, nothing written
            StorageUnavailableError: object write failed, nothing recorded
            PartialUploadError: object written but the row could not be created
        """
        parse_id(owner_id, "Principal")
        self._require_folder(db, folder_id)
        staged = self.stage(
            data=data,
            size=size,
            original_name=original_name,
            content_type=content_type,
            owner_id=owner_id,
        )
        self._write_object(staged)
        return self._record_upload(
            db,
            staged,
            owner_id=owner_id,
            organization_id=organization_id,
            folder_id=folder_id,
            tags=tags,
            description=description,
            is_public=is_public,
            metadata=metadata,
        )

    def upload_multiple(
        self,
        db: Session,
        files: list[IncomingFile],
        *,
        owner_id,
        organization_id=None,
        folder_id=None,
    ) -> UploadBatchResult:
        """Upload a batch; failures are collected, successes are kept."""
        parse_id(owner_id, "Principal")
        self._require_folder(db, folder_id)
        result = UploadBatchResult()

        staged_items: list[StagedUpload] = []
        for item in files:
            try:
                staged_items.append(
                    self.stage(
                        data=item.data,
                        size=item.size,
                        original_name=item.original_name,
                        content_type=item.content_type,
                        owner_id=owner_id,
                    )
                )
            except StorageError as exc:
                result.failures.append(UploadFailure(item.original_name, exc))

        written: list[StagedUpload] = []
        if staged_items:
            workers = min(self.max_concurrency, len(staged_items))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    (staged, executor.submit(self._write_object, staged))
                    for staged in staged_items
                ]
                for staged, future in futures:
                    try:
                        future.result()
                        written.append(staged)
                    except StorageError as exc:
                        result.failures.append(UploadFailure(staged.original_name, exc))

        # The session is not thread-safe, so rows are created here one by one.
        for staged in written:
            try:
                result.uploaded.append(
                    self._record_upload(
                        db,
                        staged,
                        owner_id=owner_id,
                        organization_id=organization_id,
                        folder_id=folder_id,
                    )
                )
            except PartialUploadError as exc:
                result.failures.append(UploadFailure(staged.original_name, exc))

        logger.info(
            "file_batch_upload owner=%s uploaded=%s failed=%s",
            owner_id,
            len(result.uploaded),
            len(result.failures),
        )
        return result

    # -- reads -----------------------------------------------------------

    def get_file(self, db: Session, file_id, caller_id) -> StoredFile:
        active = self.load_active(db, file_id)
        require_view(active.record, caller_id)
        return active.record

    def _touch_download(self, db: Session, record: StoredFile) -> None:
        """Best-effort counter update; never fails the download."""
        try:
            db.execute(
                update(StoredFile)
                .where(StoredFile.id == record.id)
                .values(
                    download_count=StoredFile.download_count + 1,
                    last_accessed_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning("file_download_count_failed file_id=%s", record.id, exc_info=True)

    def open_stream(self, db: Session, record: StoredFile, *, count_download: bool) -> StreamResult:
        stream = self.store.get(record.bucket, record.storage_key)
        if count_download:
            self._touch_download(db, record)
        return stream

    def download_file(self, db: Session, file_id, caller_id) -> tuple[StreamResult, StoredFile]:
        active = self.load_active(db, file_id)
        require_view(active.record, caller_id)
        stream = self.open_stream(db, active.record, count_download=True)
        logger.info("file_downloaded file_id=%s caller=%s", active.record.id, caller_id)
        return stream, active.record

    def preview_file(self, db: Session, file_id, caller_id) -> tuple[StreamResult, StoredFile]:
        active = self.load_active(db, file_id)
        require_view(active.record, caller_id)
        if not active.record.can_preview:
            raise FileValidationError("Preview is not available for this file type")
        return self.open_stream(db, active.record, count_download=False), active.record

    def presign_download(
        self, db: Session, file_id, caller_id, ttl_seconds: int | None = None
    ) -> str:
        active = self.load_active(db, file_id)
        require_view(active.record, caller_id)
        return self.store.presign_get(
            active.record.bucket,
            active.record.storage_key,
            ttl_seconds or self.presign_ttl_seconds,
        )

    # -- lifecycle -------------------------------------------------------

    def delete_file(self, db: Session, file_id, caller_id) -> TrashedFile:
        """Move a file to the trash. The object stays in the store."""
        active = self.load_active(db, file_id)
        record = active.record
        require_owner(record, caller_id, "delete")
        record.is_deleted = True
        record.deleted_at = utcnow()
        record.deleted_by = parse_id(caller_id, "Principal")
        commit_or_raise(db, "soft_delete")
        logger.info("file_soft_deleted file_id=%s by=%s", record.id, caller_id)
        return TrashedFile(record)

    def restore_file(self, db: Session, file_id, caller_id) -> StoredFile:
        trashed = self.load_trashed(db, file_id)
        record = trashed.record
        require_owner(record, caller_id, "restore")
        record.is_deleted = False
        record.deleted_at = None
        record.deleted_by = None
        commit_or_raise(db, "restore")
        db.refresh(record)
        logger.info("file_restored file_id=%s by=%s", record.id, caller_id)
        return record

    def permanently_delete_file(self, db: Session, file_id, caller_id) -> PurgedFile:
        trashed = self.load_trashed(db, file_id)
        require_owner(trashed.record, caller_id, "permanent_delete")
        return self._purge(db, trashed)

    def _purge(self, db: Session, trashed: TrashedFile) -> PurgedFile:
        """Delete the object, then the row. Only trashed files can be purged."""
        record = trashed.record
        purged = PurgedFile(id=record.id, bucket=record.bucket, storage_key=record.storage_key)

        # Raises StorageUnavailableError; the row is kept so the object is not lost track of.
        self.store.delete(record.bucket, record.storage_key)

        try:
            db.delete(record)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "file_purge_needs_reconciliation file_id=%s bucket=%s key=%s",
                purged.id,
                purged.bucket,
                purged.storage_key,
            )
            raise ReconciliationRequiredError(
                "Object deleted but metadata row remains",
                file_id=str(purged.id),
                bucket=purged.bucket,
                key=purged.storage_key,
            ) from exc
        logger.info(
            "file_permanently_deleted file_id=%s bucket=%s key=%s",
            purged.id,
            purged.bucket,
            purged.storage_key,
        )
        return purged

    def list_trash(self, db: Session, caller_id) -> list[StoredFile]:
        owner_uuid = parse_id(caller_id, "Principal")
        with metadata_read("list_trash"):
            return (
                db.query(StoredFile)
                .filter(StoredFile.owner_id == owner_uuid)
                .filter(StoredFile.is_deleted.is_(True))
                .order_by(StoredFile.deleted_at.desc())
                .all()
            )

    # -- metadata --------------------------------------------------------

    def update_metadata(
        self, db: Session, file_id, caller_id, payload: FileMetadataUpdate
    ) -> StoredFile:
        active = self.load_active(db, file_id)
        record = active.record
        require_edit(record, caller_id)

        data = payload.model_dump(exclude_unset=True)
        if "file_name" in data:
            name = _display_name(data["file_name"] or "")
            if not name:
                raise FileValidationError("File name is required")
            record.file_name = name
        if "description" in data:
            record.description = data["description"]
        if data.get("tags") is not None:
            record.tags = normalize_tags(data["tags"])

        commit_or_raise(db, "update_metadata")
        db.refresh(record)
        logger.info("file_metadata_updated file_id=%s by=%s fields=%s", record.id, caller_id, sorted(data))
        return record

    def share_permission(
        self, db: Session, file_id, caller_id, principal_id, role: PermissionRole
    ) -> StoredFile:
        active = self.load_active(db, file_id)
        record = active.record
        require_owner(record, caller_id, "share_permission")
        principal = parse_id(principal_id, "Principal")
        record.permissions = [*record.permissions, permission_entry(principal, role)]
        commit_or_raise(db, "share_permission")
        db.refresh(record)
        logger.info(
            "file_permission_granted file_id=%s principal=%s role=%s", record.id, principal, role.value
        )
        return record

    def revoke_permission(self, db: Session, file_id, caller_id, principal_id) -> StoredFile:
        active = self.load_active(db, file_id)
        record = active.record
        require_owner(record, caller_id, "revoke_permission")
        principal = str(parse_id(principal_id, "Principal"))
        record.permissions = [
            entry for entry in record.permissions if entry.get("principal_id") != principal
        ]
        commit_or_raise(db, "revoke_permission")
        db.refresh(record)
        logger.info("file_permission_revoked file_id=%s principal=%s", record.id, principal)
        return record

    # -- queries ---------------------------------------------------------

    def _scoped_query(self, db: Session, caller_id, organization_id):
        query = db.query(StoredFile).filter(StoredFile.is_deleted.is_(False))
        if organization_id is not None:
            return query.filter(
                StoredFile.organization_id == parse_id(organization_id, "Organization")
            )
        return query.filter(StoredFile.owner_id == parse_id(caller_id, "Principal"))

    def search_files(
        self,
        db: Session,
        caller_id,
        query: str,
        organization_id=None,
        limit: int = SEARCH_LIMIT,
    ) -> list[StoredFile]:
        term = (query or "").strip()
        if not term:
            raise FileValidationError("Search query is required")
        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        with metadata_read("search_files"):
            return (
                self._scoped_query(db, caller_id, organization_id)
                .filter(
                    or_(
                        StoredFile.file_name.ilike(pattern, escape="\\"),
                        StoredFile.description.ilike(pattern, escape="\\"),
                        cast(StoredFile.tags, String).ilike(pattern, escape="\\"),
                    )
                )
                .order_by(StoredFile.created_at.desc())
                .limit(limit)
                .all()
            )

    def get_storage_stats(self, db: Session, caller_id, organization_id=None) -> StorageStats:
        with metadata_read("get_storage_stats"):
            rows = (
                self._scoped_query(db, caller_id, organization_id)
                .with_entities(StoredFile.content_type, StoredFile.size)
                .all()
            )
        by_type: dict[str, dict] = {}
        total_size = 0
        for content_type, size in rows:
            media_type = (content_type or DEFAULT_CONTENT_TYPE).split("/", 1)[0]
            bucket = by_type.setdefault(media_type, {"type": media_type, "count": 0, "size": 0})
            bucket["count"] += 1
            bucket["size"] += size
            total_size += size
        return StorageStats(
            total_files=len(rows),
            total_size=total_size,
            files_by_type=sorted(by_type.values(), key=lambda item: item["type"]),
        )
