from __future__ import annotations

import hashlib
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from app.models.stored_file import FileKind, FileState, PermissionRole, StoredFile
from app.schemas.files import FileMetadataUpdate
from app.services.file_storage import IncomingFile, build_content_disposition, normalize_tags
from app.services.storage_errors import (
    AccessDeniedError,
    FileValidationError,
    InvalidFileStateError,
    MetadataUnavailableError,
    NotFoundError,
    PartialUploadError,
    ReconciliationRequiredError,
    StorageUnavailableError,
)


def _db_down(*_args, **_kwargs):
    raise OperationalError("COMMIT", {}, Exception("database unavailable"))


def _read(stream) -> bytes:
    return b"".join(stream.chunks)


def test_upload_pdf_routes_to_documents_bucket(upload, s3_client, owner_id):
    data = b"%PDF-1.4 quarterly numbers"
    record = upload(data, name="report.pdf", content_type="application/pdf")

    assert record.bucket == "filevault-documents"
    assert record.file_kind is FileKind.pdf
    assert record.is_pdf and record.is_document
    assert record.can_preview
    assert record.preview_url is not None
    assert record.storage_key.startswith(f"{owner_id}/")
    assert record.storage_key.endswith("-report.pdf")
    assert record.checksum == hashlib.sha256(data).hexdigest()
    assert record.size == len(data)
    assert record.state is FileState.active
    assert record.permissions == [{"principal_id": str(owner_id), "role": "owner"}]
    assert s3_client.stored(record.bucket, record.storage_key) == data


def test_upload_guesses_content_type_from_name(upload):
    image = upload(b"\x89PNG", name="photo.png")
    assert image.content_type == "image/png"
    assert image.bucket == "filevault-images"

    blob = upload(b"\x00\x01", name="blob")
    assert blob.content_type == "application/octet-stream"
    assert blob.file_kind is FileKind.other
    assert blob.bucket == "filevault"
    assert blob.preview_url is None


def test_upload_stores_tags_sorted_and_deduplicated(upload):
    record = upload(tags=["b", " a ", "b", ""], description="Notes")
    assert record.tags == ["a", "b"]
    assert record.description == "Notes"


@pytest.mark.parametrize(
    ("data", "size", "name"),
    [
        (b"abc", 4, "a.txt"),
        (b"abc", 3, "   "),
        (b"x" * (1024 * 1024 + 1), None, "big.bin"),
    ],
)
def test_invalid_upload_writes_nothing(db_session, file_service, s3_client, owner_id, data, size, name):
    with pytest.raises(FileValidationError):
        file_service.upload_file(
            db_session,
            data=data,
            size=size,
            original_name=name,
            content_type=None,
            owner_id=owner_id,
        )
    assert s3_client.objects == {}
    assert db_session.query(StoredFile).count() == 0


def test_object_write_failure_records_nothing(db_session, upload, s3_client):
    s3_client.failures["put_object"] = "InternalError"
    with pytest.raises(StorageUnavailableError):
        upload()
    assert db_session.query(StoredFile).count() == 0


def test_metadata_failure_after_write_reports_partial_upload(
    db_session, upload, s3_client, monkeypatch
):
    monkeypatch.setattr(db_session, "commit", _db_down)
    with pytest.raises(PartialUploadError) as exc:
        upload(b"orphan", name="orphan.txt")
    monkeypatch.undo()

    assert s3_client.stored(exc.value.bucket, exc.value.key) == b"orphan"
    assert exc.value.checksum == hashlib.sha256(b"orphan").hexdigest()
    assert db_session.query(StoredFile).count() == 0


def test_upload_into_missing_folder_is_rejected(upload, s3_client):
    with pytest.raises(NotFoundError):
        upload(folder_id=uuid.uuid4())
    assert s3_client.objects == {}


def test_folder_lookup_failure_is_metadata_unavailable(upload, s3_client, db_session, monkeypatch):
    monkeypatch.setattr(db_session, "get", _db_down)
    with pytest.raises(MetadataUnavailableError):
        upload(folder_id=uuid.uuid4())
    monkeypatch.undo()
    assert s3_client.objects == {}


@pytest.mark.parametrize(
    "call",
    [
        lambda service, db, owner: service.list_trash(db, owner),
        lambda service, db, owner: service.search_files(db, owner, "x"),
        lambda service, db, owner: service.get_storage_stats(db, owner),
    ],
    ids=["list_trash", "search_files", "get_storage_stats"],
)
def test_query_failures_are_metadata_unavailable(
    db_session, file_service, owner_id, monkeypatch, call
):
    monkeypatch.setattr(db_session, "query", _db_down)
    with pytest.raises(MetadataUnavailableError):
        call(file_service, db_session, owner_id)


def test_download_in_flight_survives_soft_delete(db_session, file_service, upload, owner_id):
    data = b"streaming body " * 64
    record = upload(data, name="stream.txt")

    stream, _ = file_service.download_file(db_session, record.id, owner_id)
    file_service.delete_file(db_session, record.id, owner_id)

    assert _read(stream) == data
    with pytest.raises(NotFoundError):
        file_service.download_file(db_session, record.id, owner_id)


def test_download_returns_stored_bytes_and_counts(db_session, file_service, upload, owner_id):
    data = b"line one\nline two\n"
    record = upload(data, name="lines.txt")

    stream, loaded = file_service.download_file(db_session, record.id, owner_id)

    body = _read(stream)
    assert body == data
    assert hashlib.sha256(body).hexdigest() == loaded.checksum
    assert stream.content_length == len(data)
    db_session.refresh(loaded)
    assert loaded.download_count == 1
    assert loaded.last_accessed_at is not None


def test_preview_does_not_count_downloads(db_session, file_service, upload, owner_id):
    record = upload(b"%PDF", name="doc.pdf", content_type="application/pdf")
    stream, loaded = file_service.preview_file(db_session, record.id, owner_id)
    assert _read(stream) == b"%PDF"
    db_session.refresh(loaded)
    assert loaded.download_count == 0


def test_preview_rejects_unpreviewable_kinds(db_session, file_service, upload, owner_id):
    record = upload(b"PK", name="bundle.zip", content_type="application/zip")
    with pytest.raises(FileValidationError):
        file_service.preview_file(db_session, record.id, owner_id)


def test_download_missing_object_is_not_found(db_session, file_service, upload, s3_client, owner_id):
    record = upload()
    s3_client.objects.clear()
    with pytest.raises(NotFoundError):
        file_service.download_file(db_session, record.id, owner_id)


def test_view_access_is_enforced(db_session, file_service, upload, other_id, owner_id):
    private = upload(name="private.txt")
    with pytest.raises(AccessDeniedError):
        file_service.get_file(db_session, private.id, other_id)

    public = upload(name="public.txt", is_public=True)
    assert file_service.get_file(db_session, public.id, other_id).id == public.id

    file_service.share_permission(
        db_session, private.id, owner_id, other_id, PermissionRole.viewer
    )
    stream, _ = file_service.download_file(db_session, private.id, other_id)
    assert _read(stream) == b"hello world"


@pytest.mark.parametrize("file_id", ["not-a-uuid", "", None])
def test_malformed_ids_are_not_found(db_session, file_service, owner_id, file_id):
    with pytest.raises(NotFoundError):
        file_service.get_file(db_session, file_id, owner_id)


def test_soft_delete_then_restore_keeps_content(
    db_session, file_service, upload, s3_client, owner_id
):
    data = b"keep me"
    record = upload(data, name="keep.txt")
    checksum, size = record.checksum, record.size

    trashed = file_service.delete_file(db_session, record.id, owner_id)
    assert trashed.state is FileState.trashed
    assert trashed.record.is_deleted
    assert trashed.record.deleted_by == owner_id
    assert s3_client.stored(record.bucket, record.storage_key) == data

    with pytest.raises(NotFoundError):
        file_service.download_file(db_session, record.id, owner_id)
    assert [item.id for item in file_service.list_trash(db_session, owner_id)] == [record.id]

    restored = file_service.restore_file(db_session, record.id, owner_id)
    assert not restored.is_deleted
    assert restored.deleted_at is None

    stream, loaded = file_service.download_file(db_session, record.id, owner_id)
    assert _read(stream) == data
    assert (loaded.checksum, loaded.size) == (checksum, size)


def test_restore_of_active_file_is_rejected(db_session, file_service, upload, owner_id):
    record = upload()
    with pytest.raises(InvalidFileStateError):
        file_service.restore_file(db_session, record.id, owner_id)


def test_only_owner_can_delete(db_session, file_service, upload, owner_id, other_id):
    record = upload()
    file_service.share_permission(
        db_session, record.id, owner_id, other_id, PermissionRole.editor
    )
    with pytest.raises(AccessDeniedError):
        file_service.delete_file(db_session, record.id, other_id)


def test_permanent_delete_requires_trash_and_owner(
    db_session, file_service, upload, owner_id, other_id
):
    record = upload()
    file_service.share_permission(
        db_session, record.id, owner_id, other_id, PermissionRole.editor
    )

    with pytest.raises(InvalidFileStateError):
        file_service.permanently_delete_file(db_session, record.id, owner_id)

    file_service.delete_file(db_session, record.id, owner_id)
    with pytest.raises(AccessDeniedError):
        file_service.permanently_delete_file(db_session, record.id, other_id)


def test_permanent_delete_removes_object_then_row(
    db_session, file_service, upload, s3_client, owner_id
):
    record = upload()
    file_id, bucket, key = record.id, record.bucket, record.storage_key
    file_service.delete_file(db_session, file_id, owner_id)

    purged = file_service.permanently_delete_file(db_session, file_id, owner_id)

    assert purged.state is FileState.gone
    assert (purged.id, purged.bucket, purged.storage_key) == (file_id, bucket, key)
    assert s3_client.stored(bucket, key) is None
    assert db_session.get(StoredFile, file_id) is None
    with pytest.raises(NotFoundError):
        file_service.restore_file(db_session, file_id, owner_id)


def test_permanent_delete_keeps_row_when_store_fails(
    db_session, file_service, upload, s3_client, owner_id
):
    record = upload()
    file_service.delete_file(db_session, record.id, owner_id)
    s3_client.failures["delete_object"] = "InternalError"

    with pytest.raises(StorageUnavailableError):
        file_service.permanently_delete_file(db_session, record.id, owner_id)

    assert db_session.get(StoredFile, record.id).is_deleted
    assert s3_client.stored(record.bucket, record.storage_key) is not None


def test_row_delete_failure_requires_reconciliation(
    db_session, file_service, upload, s3_client, owner_id, monkeypatch
):
    record = upload()
    file_id, bucket, key = record.id, record.bucket, record.storage_key
    file_service.delete_file(db_session, file_id, owner_id)

    monkeypatch.setattr(db_session, "commit", _db_down)
    with pytest.raises(ReconciliationRequiredError) as exc:
        file_service.permanently_delete_file(db_session, file_id, owner_id)
    monkeypatch.undo()

    assert exc.value.file_id == str(file_id)
    assert s3_client.stored(bucket, key) is None
    assert db_session.get(StoredFile, file_id) is not None


def test_update_metadata_is_partial(db_session, file_service, upload, owner_id, other_id):
    record = upload(tags=["keep"], description="original")

    updated = file_service.update_metadata(
        db_session, record.id, owner_id, FileMetadataUpdate(file_name="renamed.txt")
    )
    assert updated.file_name == "renamed.txt"
    assert updated.original_name == "notes.txt"
    assert updated.tags == ["keep"]
    assert updated.description == "original"

    updated = file_service.update_metadata(
        db_session, record.id, owner_id, FileMetadataUpdate(tags=["z", "a"], description=None)
    )
    assert updated.tags == ["a", "z"]
    assert updated.description is None

    with pytest.raises(AccessDeniedError):
        file_service.update_metadata(
            db_session, record.id, other_id, FileMetadataUpdate(description="nope")
        )


@pytest.mark.parametrize("name", ["   ", None])
def test_update_metadata_rejects_blank_name(db_session, file_service, upload, owner_id, name):
    record = upload()
    with pytest.raises(FileValidationError):
        file_service.update_metadata(
            db_session, record.id, owner_id, FileMetadataUpdate(file_name=name)
        )
    db_session.refresh(record)
    assert record.file_name == "notes.txt"


def test_revoke_permission_removes_every_entry(
    db_session, file_service, upload, owner_id, other_id
):
    record = upload()
    file_service.share_permission(db_session, record.id, owner_id, other_id, PermissionRole.viewer)
    file_service.share_permission(db_session, record.id, owner_id, other_id, PermissionRole.editor)

    updated = file_service.revoke_permission(db_session, record.id, owner_id, other_id)

    assert [entry["principal_id"] for entry in updated.permissions] == [str(owner_id)]
    with pytest.raises(AccessDeniedError):
        file_service.get_file(db_session, record.id, other_id)


def test_presign_download_uses_configured_ttl(
    db_session, file_service, upload, s3_client, owner_id
):
    record = upload()
    url = file_service.presign_download(db_session, record.id, owner_id)
    assert record.storage_key in url
    assert "X-Amz-Expires=600" in url
    assert ("generate_presigned_url", {"operation": "get_object"}) in s3_client.calls


def test_search_matches_name_description_and_tags(db_session, file_service, upload, owner_id):
    upload(name="budget-2024.xlsx")
    upload(name="notes.txt", description="Budget review")
    upload(name="plain.txt", tags=["budget"])
    upload(name="other.txt")
    upload(name="100%_done.txt")

    names = {record.file_name for record in file_service.search_files(db_session, owner_id, "budget")}
    assert names == {"budget-2024.xlsx", "notes.txt", "plain.txt"}

    escaped = file_service.search_files(db_session, owner_id, "%_")
    assert [record.file_name for record in escaped] == ["100%_done.txt"]

    with pytest.raises(FileValidationError):
        file_service.search_files(db_session, owner_id, "  ")


def test_search_excludes_other_owners_and_trash(
    db_session, file_service, upload, owner_id, other_id
):
    mine = upload(name="report-a.txt")
    upload(name="report-b.txt", owner_id=other_id)
    trashed = upload(name="report-c.txt")
    file_service.delete_file(db_session, trashed.id, owner_id)

    results = file_service.search_files(db_session, owner_id, "report")
    assert [record.id for record in results] == [mine.id]


def test_search_in_organization_scope(db_session, file_service, upload, owner_id, other_id):
    org_id = uuid.uuid4()
    upload(name="shared-a.txt", organization_id=org_id)
    upload(name="shared-b.txt", owner_id=other_id, organization_id=org_id)
    upload(name="shared-c.txt")

    results = file_service.search_files(db_session, owner_id, "shared", organization_id=org_id)
    assert {record.file_name for record in results} == {"shared-a.txt", "shared-b.txt"}


def test_storage_stats_group_by_media_type(db_session, file_service, upload, owner_id):
    upload(b"12345", name="a.txt")
    upload(b"123", name="b.txt")
    upload(b"\x89PNG", name="c.png")

    stats = file_service.get_storage_stats(db_session, owner_id)

    assert stats.total_files == 3
    assert stats.total_size == 12
    assert stats.files_by_type == [
        {"type": "image", "count": 1, "size": 4},
        {"type": "text", "count": 2, "size": 8},
    ]


def test_upload_multiple_collects_failures(db_session, file_service, s3_client, owner_id):
    batch = [
        IncomingFile(data=b"one", original_name="one.txt"),
        IncomingFile(data=b"x" * (1024 * 1024 + 1), original_name="huge.bin"),
        IncomingFile(data=b"three", original_name="three.png", content_type="image/png"),
    ]

    result = file_service.upload_multiple(db_session, batch, owner_id=owner_id)

    assert sorted(record.file_name for record in result.uploaded) == ["one.txt", "three.png"]
    assert [failure.original_name for failure in result.failures] == ["huge.bin"]
    assert isinstance(result.failures[0].error, FileValidationError)
    assert len(s3_client.objects) == 2


def test_upload_multiple_reports_store_failures(db_session, file_service, s3_client, owner_id):
    s3_client.failures["put_object"] = "SlowDown"
    batch = [IncomingFile(data=b"a", original_name="a.txt"), IncomingFile(data=b"b", original_name="b.txt")]

    result = file_service.upload_multiple(db_session, batch, owner_id=owner_id)

    assert result.uploaded == []
    assert {failure.original_name for failure in result.failures} == {"a.txt", "b.txt"}
    assert db_session.query(StoredFile).count() == 0


def test_helpers():
    assert normalize_tags(None) == []
    assert build_content_disposition('evil"\r\nname.txt') == 'attachment; filename="evil_name.txt"'
    assert build_content_disposition("photo.png", inline=True).startswith("inline;")
