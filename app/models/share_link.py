"""Share links issued for stored files, plus their access log."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class ShareLinkState(enum.Enum):
    active = "active"
    expired = "expired"
    exhausted = "exhausted"
    revoked = "revoked"


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class ShareLink(Base):
    """Bearer token granting constrained access to a single file.

    Only ``revoked`` is stored (``is_active``); ``expired`` and ``exhausted``
    are derived from the expiry and the download counter. Rows are never
    deleted so the access log survives revocation.
    """

    __tablename__ = "file_share_links"
    __table_args__ = (
        Index("ix_file_share_links_file_active", "file_id", "is_active", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # No foreign key: links outlive a permanently deleted file.
    file_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    max_downloads: Mapped[int | None] = mapped_column(Integer)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))
    allowed_emails: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    can_view: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    can_download: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_accessed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    access_log: Mapped[list["ShareAccessLog"]] = relationship(
        back_populates="share_link",
        order_by="ShareAccessLog.accessed_at",
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now or datetime.now(UTC)
        return current >= _as_utc(self.expires_at)

    @property
    def has_reached_max_downloads(self) -> bool:
        if self.max_downloads is None:
            return False
        return self.download_count >= self.max_downloads

    @property
    def requires_password(self) -> bool:
        return bool(self.password_hash)

    def state(self, now: datetime | None = None) -> ShareLinkState:
        if not self.is_active:
            return ShareLinkState.revoked
        if self.is_expired(now):
            return ShareLinkState.expired
        if self.has_reached_max_downloads:
            return ShareLinkState.exhausted
        return ShareLinkState.active

    def is_usable(self, now: datetime | None = None) -> bool:
        return self.state(now) == ShareLinkState.active

    def __repr__(self) -> str:
        return f"<ShareLink {self.id} file={self.file_id} active={self.is_active}>"


class ShareAccessLog(Base):
    """One successful resolution of a share link."""

    __tablename__ = "file_share_access_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    share_link_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("file_share_links.id"), nullable=False, index=True
    )
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="unknown")
    accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    share_link: Mapped[ShareLink] = relationship(back_populates="access_log")
