"""Pydantic schemas for stored files, folders and share links."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.share_link import ShareLinkState
from app.models.stored_file import FileKind, PermissionRole


class FileMetadataUpdate(BaseModel):
    """Partial update; only fields that are set are applied."""

    file_name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    tags: list[str] | None = None


class MoveFileRequest(BaseModel):
    target_folder_id: UUID | None = None


class PermissionGrant(BaseModel):
    principal_id: UUID
    role: PermissionRole = PermissionRole.viewer


class PermissionEntryRead(BaseModel):
    principal_id: UUID
    role: PermissionRole


class StoredFileRead(BaseModel):
    id: UUID
    file_name: str
    original_name: str
    content_type: str
    file_kind: FileKind
    size: int
    bucket: str
    storage_key: str
    folder_id: UUID | None
    owner_id: UUID
    organization_id: UUID | None
    tags: list[str]
    description: str | None
    metadata: dict = Field(default_factory=dict, validation_alias="metadata_")
    is_public: bool
    permissions: list[PermissionEntryRead]
    version: int
    checksum: str
    download_count: int
    last_accessed_at: datetime | None
    expires_at: datetime | None
    is_deleted: bool
    deleted_at: datetime | None
    is_image: bool
    is_pdf: bool
    is_video: bool
    is_document: bool
    is_text: bool
    can_preview: bool
    url: str
    download_url: str
    preview_url: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UploadFailureRead(BaseModel):
    original_name: str
    code: str
    message: str


class UploadBatchRead(BaseModel):
    uploaded: list[StoredFileRead]
    failures: list[UploadFailureRead]


class FolderCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: UUID | None = None
    description: str | None = None
    is_public: bool = False


class FolderRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class FolderRead(BaseModel):
    id: UUID
    name: str
    description: str | None
    parent_id: UUID | None
    owner_id: UUID
    organization_id: UUID | None
    path: str
    permissions: list[PermissionEntryRead]
    is_public: bool
    is_deleted: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FolderContentsRead(BaseModel):
    folders: list[FolderRead]
    files: list[StoredFileRead]


class ShareLinkOptions(BaseModel):
    """Constraints for a new share link.

    Range checks happen in the share service so that violations surface as
    ``FileValidationError`` regardless of the entry point.
    """

    expires_in_seconds: int | None = None
    max_downloads: int | None = None
    password: str | None = None
    allowed_emails: list[str] = Field(default_factory=list)
    can_download: bool = True
    can_view: bool = True


class ShareLinkRead(BaseModel):
    id: UUID
    file_id: UUID
    token: str
    created_by: UUID
    expires_at: datetime | None
    max_downloads: int | None
    download_count: int
    requires_password: bool
    allowed_emails: list[str]
    can_view: bool
    can_download: bool
    is_active: bool
    last_accessed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ShareAccessRequest(BaseModel):
    password: str | None = None
    email: str | None = None


class SharedFileRead(BaseModel):
    """Limited view of a file reached through a share token."""

    id: UUID
    file_name: str
    content_type: str
    size: int
    created_at: datetime

    model_config = {"from_attributes": True}


class SharedAccessRead(BaseModel):
    file: SharedFileRead
    can_view: bool
    can_download: bool
    state: ShareLinkState


class FileTypeStats(BaseModel):
    type: str
    count: int
    size: int


class StorageStatsRead(BaseModel):
    total_files: int
    total_size: int
    files_by_type: list[FileTypeStats]
