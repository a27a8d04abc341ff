"""Error taxonomy for the file storage and sharing services.

Every failure that leaves the upload, folder or share services is one of
these classes. Store-native errors (botocore, SQLAlchemy) are translated at
the component boundary and chained with ``raise ... from exc``.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base class for all file storage failures."""

    code = "storage_error"

    def __init__(self, message: str = "", **details) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details


class NotFoundError(StorageError):
    """Record is absent, or soft-deleted where an active record was required."""

    code = "not_found"


class ObjectNotFoundError(NotFoundError):
    """Raised when object is missing from its bucket."""

    code = "object_not_found"


class InvalidFileStateError(NotFoundError):
    """File is not in the lifecycle state the operation requires."""

    code = "invalid_file_state"


class AccessDeniedError(StorageError):
    """Caller does not satisfy the access predicate."""

    code = "access_denied"


class SharePasswordRequiredError(AccessDeniedError):
    """Share link is password protected and no password was supplied."""

    code = "password_required"


class FileValidationError(StorageError, ValueError):
    """Malformed input."""

    code = "validation_failed"


class StorageUnavailableError(StorageError):
    """Object store call failed. Safe to retry at the caller's discretion."""

    code = "storage_unavailable"


class MetadataUnavailableError(StorageUnavailableError):
    """Metadata store call failed."""

    code = "metadata_unavailable"


class PartialUploadError(StorageError):
    """Object was written but its metadata row could not be created."""

    code = "partial_upload"

    def __init__(self, message: str, *, bucket: str, key: str, checksum: str) -> None:
        super().__init__(message, bucket=bucket, key=key, checksum=checksum)
        self.bucket = bucket
        self.key = key
        self.checksum = checksum


class ReconciliationRequiredError(StorageError):
    """Object store and metadata store disagree and need manual repair."""

    code = "needs_reconciliation"

    def __init__(self, message: str, *, file_id: str, bucket: str, key: str) -> None:
        super().__init__(message, file_id=file_id, bucket=bucket, key=key)
        self.file_id = file_id
        self.bucket = bucket
        self.key = key


class LinkUnusableError(StorageError):
    """Share link is expired, exhausted or revoked."""

    code = "link_unusable"

    def __init__(self, message: str, *, state: str) -> None:
        super().__init__(message, state=state)
        self.state = state
