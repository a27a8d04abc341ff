"""create file storage, folder and share link tables

Revision ID: 3c5e7a9b1d20
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c5e7a9b1d20"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

file_kind = sa.Enum("image", "pdf", "video", "document", "text", "other", name="filekind")


def upgrade() -> None:
    op.create_table(
        "file_folders",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("parent_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("path", sa.String(length=2048), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["parent_id"], ["file_folders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_file_folders_owner_parent",
        "file_folders",
        ["owner_id", "parent_id", "is_deleted"],
        unique=False,
    )
    op.create_index(
        "ix_file_folders_org_parent",
        "file_folders",
        ["organization_id", "parent_id", "is_deleted"],
        unique=False,
    )
    op.create_index("ix_file_folders_path", "file_folders", ["path"], unique=False)

    op.create_table(
        "stored_files",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=255), nullable=False),
        sa.Column("file_kind", file_kind, nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("bucket", sa.String(length=255), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("folder_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("parent_file_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("download_count", sa.Integer(), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["folder_id"], ["file_folders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("storage_key"),
    )
    op.create_index(
        "ix_stored_files_owner_active",
        "stored_files",
        ["owner_id", "is_deleted", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_stored_files_org_active",
        "stored_files",
        ["organization_id", "is_deleted", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_stored_files_folder_active",
        "stored_files",
        ["folder_id", "is_deleted"],
        unique=False,
    )
    op.create_index("ix_stored_files_expires_at", "stored_files", ["expires_at"], unique=False)

    op.create_table(
        "file_share_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_downloads", sa.Integer(), nullable=True),
        sa.Column("download_count", sa.Integer(), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("allowed_emails", sa.JSON(), nullable=False),
        sa.Column("can_view", sa.Boolean(), nullable=False),
        sa.Column("can_download", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index(
        "ix_file_share_links_file_active",
        "file_share_links",
        ["file_id", "is_active", "created_at"],
        unique=False,
    )

    op.create_table(
        "file_share_access_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("share_link_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("user_agent", sa.String(length=512), nullable=False),
        sa.Column("accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["share_link_id"], ["file_share_links.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_file_share_access_logs_share_link_id",
        "file_share_access_logs",
        ["share_link_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_file_share_access_logs_share_link_id", table_name="file_share_access_logs")
    op.drop_table("file_share_access_logs")
    op.drop_index("ix_file_share_links_file_active", table_name="file_share_links")
    op.drop_table("file_share_links")
    op.drop_index("ix_stored_files_expires_at", table_name="stored_files")
    op.drop_index("ix_stored_files_folder_active", table_name="stored_files")
    op.drop_index("ix_stored_files_org_active", table_name="stored_files")
    op.drop_index("ix_stored_files_owner_active", table_name="stored_files")
    op.drop_table("stored_files")
    op.drop_index("ix_file_folders_path", table_name="file_folders")
    op.drop_index("ix_file_folders_org_parent", table_name="file_folders")
    op.drop_index("ix_file_folders_owner_parent", table_name="file_folders")
    op.drop_table("file_folders")
    file_kind.drop(op.get_bind(), checkfirst=True)
