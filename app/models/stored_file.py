"""File metadata model for S3-backed object storage."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.config import settings
from app.db import Base


class FileKind(enum.Enum):
    image = "image"
    pdf = "pdf"
    video = "video"
    document = "document"
    text = "text"
    other = "other"


class FileState(enum.Enum):
    active = "active"
    trashed = "trashed"
    gone = "gone"


class PermissionRole(enum.Enum):
    viewer = "viewer"
    editor = "editor"
    owner = "owner"


PREVIEWABLE_KINDS = frozenset({FileKind.image, FileKind.pdf, FileKind.text})
DOCUMENT_KINDS = frozenset({FileKind.pdf, FileKind.document})


def permission_entry(principal_id: uuid.UUID | str, role: PermissionRole) -> dict:
    return {"principal_id": str(principal_id), "role": role.value}


class StoredFile(Base):
    """Metadata record for a binary object held in the object store."""

    __tablename__ = "stored_files"
    __table_args__ = (
        Index("ix_stored_files_owner_active", "owner_id", "is_deleted", "created_at"),
        Index("ix_stored_files_org_active", "organization_id", "is_deleted", "created_at"),
        Index("ix_stored_files_folder_active", "folder_id", "is_deleted"),
        Index("ix_stored_files_expires_at", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_kind: Mapped[FileKind] = mapped_column(
        Enum(FileKind), nullable=False, default=FileKind.other
    )
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    folder_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("file_folders.id")
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(Text)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    permissions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    parent_file_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_accessed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def state(self) -> FileState:
        return FileState.trashed if self.is_deleted else FileState.active

    @property
    def is_image(self) -> bool:
        return self.file_kind == FileKind.image

    @property
    def is_pdf(self) -> bool:
        return self.file_kind == FileKind.pdf

    @property
    def is_video(self) -> bool:
        return self.file_kind == FileKind.video

    @property
    def is_document(self) -> bool:
        return self.file_kind in DOCUMENT_KINDS

    @property
    def is_text(self) -> bool:
        return self.file_kind == FileKind.text

    @property
    def can_preview(self) -> bool:
        return self.file_kind in PREVIEWABLE_KINDS

    @property
    def url(self) -> str:
        return f"{settings.files_url_prefix}/{self.id}"

    @property
    def download_url(self) -> str:
        return f"{self.url}/download"

    @property
    def preview_url(self) -> str | None:
        if not self.can_preview:
            return None
        return f"{self.url}/preview"

    def __repr__(self) -> str:
        return f"<StoredFile {self.id} {self.bucket}/{self.storage_key}>"
