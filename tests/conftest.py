import os
import sqlite3
import uuid

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from tests.mocks import FakeS3Client

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))


# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


setattr(sqltypes.Uuid, "bind_processor", _sqlite_uuid_bind_processor)
setattr(sqltypes.Uuid, "result_processor", _sqlite_uuid_result_processor)

import app.models  # noqa: E402,F401  registers every table on Base.metadata
from app.services.file_folders import FolderService  # noqa: E402
from app.services.file_shares import ShareService  # noqa: E402
from app.services.file_storage import FileStorageService  # noqa: E402
from app.services.object_storage import BucketRegistry, S3ObjectStore  # noqa: E402
from app.services.storage_context import StorageContext  # noqa: E402

TEST_BUCKET = "filevault"


def _enable_foreign_keys(engine):
    @event.listens_for(engine, "connect")
    def _pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture()
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (recommended)
        engine = create_engine(database_url)
    else:
        # Services commit and roll back on their own, so each test gets
        # a fresh in-memory database instead of an outer transaction.
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        _enable_foreign_keys(engine)

    Base.metadata.create_all(engine)
    yield engine
    if database_url:
        Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def s3_client():
    return FakeS3Client()


@pytest.fixture()
def object_store(s3_client):
    return S3ObjectStore(
        BucketRegistry(default_bucket=TEST_BUCKET),
        "http://minio:9000",
        "access",
        "secret",
        "us-east-1",
        client=s3_client,
    )


@pytest.fixture()
def file_service(object_store):
    return FileStorageService(
        object_store, max_size_bytes=1024 * 1024, max_concurrency=4, presign_ttl_seconds=600
    )


@pytest.fixture()
def folder_service(file_service):
    return FolderService(file_service)


@pytest.fixture()
def share_service(file_service):
    return ShareService(file_service, token_bytes=16)


@pytest.fixture()
def storage(object_store, file_service, folder_service, share_service):
    return StorageContext(
        store=object_store,
        files=file_service,
        folders=folder_service,
        shares=share_service,
    )


@pytest.fixture()
def owner_id():
    return uuid.uuid4()


@pytest.fixture()
def other_id():
    return uuid.uuid4()


@pytest.fixture()
def upload(db_session, file_service, owner_id):
    """Upload bytes as ``owner_id`` unless another owner is given."""

    def _upload(data: bytes = b"hello world", name: str = "notes.txt", content_type=None, **kwargs):
        kwargs.setdefault("owner_id", owner_id)
        return file_service.upload_file(
            db_session,
            data=data,
            size=len(data),
            original_name=name,
            content_type=content_type,
            **kwargs,
        )

    return _upload
