import uuid

import pytest
from sqlalchemy.exc import OperationalError

from app.models.folder import Folder
from app.models.stored_file import PermissionRole
from app.services.file_folders import build_path, validate_folder_name
from app.services.storage_errors import (
    AccessDeniedError,
    FileValidationError,
    MetadataUnavailableError,
    NotFoundError,
)


@pytest.fixture()
def make_folder(db_session, folder_service, owner_id):
    def _make(name: str, parent=None, **kwargs):
        kwargs.setdefault("owner_id", owner_id)
        return folder_service.create_folder(
            db_session,
            name=name,
            parent_id=parent.id if parent is not None else None,
            **kwargs,
        )

    return _make


def test_paths_follow_parent(make_folder):
    projects = make_folder("Projects")
    q1 = make_folder("Q1", parent=projects)

    assert projects.path == "/Projects"
    assert projects.parent_id is None
    assert q1.path == "/Projects/Q1"
    assert q1.path == projects.path + "/" + q1.name
    assert q1.parent_id == projects.id


def test_missing_parent_creates_root_folder(db_session, folder_service, owner_id):
    folder = folder_service.create_folder(
        db_session, name="Orphan", owner_id=owner_id, parent_id=uuid.uuid4()
    )
    assert folder.parent_id is None
    assert folder.path == "/Orphan"


@pytest.mark.parametrize("name", ["", "   ", "a/b", "x" * 256])
def test_invalid_folder_names(name):
    with pytest.raises(FileValidationError):
        validate_folder_name(name)


def test_build_path_root_and_child():
    parent = Folder(name="Docs", path="/Docs")
    assert build_path(None, "Docs") == "/Docs"
    assert build_path(parent, "2024") == "/Docs/2024"


def test_rename_does_not_cascade_to_children(db_session, folder_service, make_folder, owner_id):
    projects = make_folder("Projects")
    q1 = make_folder("Q1", parent=projects)

    renamed = folder_service.rename_folder(db_session, projects.id, "Work", owner_id)

    assert renamed.path == "/Work"
    db_session.refresh(q1)
    # Descendant paths are recomputed only when each folder is renamed itself.
    assert q1.path == "/Projects/Q1"


def test_rename_child_uses_current_parent_path(db_session, folder_service, make_folder, owner_id):
    projects = make_folder("Projects")
    q1 = make_folder("Q1", parent=projects)
    folder_service.rename_folder(db_session, projects.id, "Work", owner_id)

    renamed = folder_service.rename_folder(db_session, q1.id, "Quarter1", owner_id)

    assert renamed.path == "/Work/Quarter1"


def test_rename_parent_lookup_failure_is_metadata_unavailable(
    db_session, folder_service, make_folder, owner_id, monkeypatch
):
    projects = make_folder("Projects")
    q1 = make_folder("Q1", parent=projects)
    real_get = db_session.get

    def _get(entity, ident, *args, **kwargs):
        if ident == projects.id:
            raise OperationalError("SELECT", {}, Exception("database unavailable"))
        return real_get(entity, ident, *args, **kwargs)

    monkeypatch.setattr(db_session, "get", _get)
    with pytest.raises(MetadataUnavailableError):
        folder_service.rename_folder(db_session, q1.id, "Quarter1", owner_id)
    monkeypatch.undo()

    db_session.refresh(q1)
    assert q1.path == "/Projects/Q1"


def test_folder_contents_failure_is_metadata_unavailable(
    db_session, folder_service, owner_id, monkeypatch
):
    def _query(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("database unavailable"))

    monkeypatch.setattr(db_session, "query", _query)
    with pytest.raises(MetadataUnavailableError):
        folder_service.get_folder_contents(db_session, None, owner_id)


def test_rename_requires_edit_access(db_session, folder_service, make_folder, other_id):
    folder = make_folder("Private")
    with pytest.raises(AccessDeniedError):
        folder_service.rename_folder(db_session, folder.id, "Mine", other_id)


def test_delete_folder_is_not_cascading(
    db_session, folder_service, make_folder, upload, owner_id, other_id
):
    parent = make_folder("Parent")
    child = make_folder("Child", parent=parent)
    record = upload(folder_id=parent.id)

    with pytest.raises(AccessDeniedError):
        folder_service.delete_folder(db_session, parent.id, other_id)

    deleted = folder_service.delete_folder(db_session, parent.id, owner_id)
    assert deleted.is_deleted
    assert deleted.deleted_by == owner_id

    with pytest.raises(NotFoundError):
        folder_service.get_folder(db_session, parent.id, owner_id)
    assert folder_service.get_folder(db_session, child.id, owner_id).id == child.id
    db_session.refresh(record)
    assert not record.is_deleted
    assert record.folder_id == parent.id


def test_folder_contents_lists_direct_children(
    db_session, folder_service, file_service, make_folder, upload, owner_id, other_id
):
    docs = make_folder("Docs")
    nested = make_folder("Nested", parent=docs)
    make_folder("Archive")
    in_docs = upload(name="in-docs.txt", folder_id=docs.id)
    at_root = upload(name="root.txt")
    trashed = upload(name="trashed.txt", folder_id=docs.id)
    file_service.delete_file(db_session, trashed.id, owner_id)
    upload(name="someone-else.txt", owner_id=other_id)

    contents = folder_service.get_folder_contents(db_session, docs.id, owner_id)
    assert [folder.id for folder in contents.folders] == [nested.id]
    assert [record.id for record in contents.files] == [in_docs.id]

    root = folder_service.get_folder_contents(db_session, None, owner_id)
    assert [folder.name for folder in root.folders] == ["Archive", "Docs"]
    assert [record.id for record in root.files] == [at_root.id]


def test_folder_contents_in_organization_scope(
    db_session, folder_service, make_folder, upload, owner_id, other_id
):
    org_id = uuid.uuid4()
    make_folder("Team", organization_id=org_id)
    make_folder("Team-2", owner_id=other_id, organization_id=org_id)
    make_folder("Personal")

    contents = folder_service.get_folder_contents(
        db_session, None, owner_id, organization_id=org_id
    )
    assert [folder.name for folder in contents.folders] == ["Team", "Team-2"]


def test_move_file_between_folders(
    db_session, folder_service, make_folder, upload, owner_id, s3_client
):
    source = make_folder("Source")
    target = make_folder("Target")
    record = upload(folder_id=source.id)
    key = record.storage_key

    moved = folder_service.move_file(db_session, record.id, target.id, owner_id)
    assert moved.folder_id == target.id
    assert moved.storage_key == key

    to_root = folder_service.move_file(db_session, record.id, None, owner_id)
    assert to_root.folder_id is None
    assert s3_client.stored(record.bucket, key) == b"hello world"


def test_move_requires_edit_and_existing_target(
    db_session, folder_service, file_service, make_folder, upload, owner_id, other_id
):
    target = make_folder("Target")
    record = upload()

    file_service.share_permission(db_session, record.id, owner_id, other_id, PermissionRole.viewer)
    with pytest.raises(AccessDeniedError):
        folder_service.move_file(db_session, record.id, target.id, other_id)

    file_service.share_permission(db_session, record.id, owner_id, other_id, PermissionRole.editor)
    assert folder_service.move_file(db_session, record.id, target.id, other_id).folder_id == target.id

    with pytest.raises(NotFoundError):
        folder_service.move_file(db_session, record.id, uuid.uuid4(), owner_id)

    folder_service.delete_folder(db_session, target.id, owner_id)
    with pytest.raises(NotFoundError):
        folder_service.move_file(db_session, record.id, target.id, owner_id)
