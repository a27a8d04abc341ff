"""Share links: issue, resolve, revoke and list."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import cast

from passlib.context import CryptContext
from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.share_link import ShareAccessLog, ShareLink, ShareLinkState
from app.models.stored_file import StoredFile
from app.schemas.files import ShareLinkOptions
from app.services.common import commit_or_raise, metadata_read, parse_id, utcnow
from app.services.file_access import require_view
from app.services.file_storage import FileStorageService
from app.services.object_storage import StreamResult
from app.services.storage_errors import (
    AccessDeniedError,
    FileValidationError,
    LinkUnusableError,
    MetadataUnavailableError,
    NotFoundError,
    SharePasswordRequiredError,
)

logger = logging.getLogger(__name__)

PASSWORD_CONTEXT = CryptContext(
    schemes=["pbkdf2_sha256", "bcrypt"],
    default="pbkdf2_sha256",
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return cast(str, PASSWORD_CONTEXT.hash(password))


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return cast(bool, PASSWORD_CONTEXT.verify(password, password_hash))


def _normalize_emails(emails: list[str] | None) -> list[str]:
    seen: list[str] = []
    for email in emails or []:
        candidate = (email or "").strip().lower()
        if candidate and candidate not in seen:
            seen.append(candidate)
    return seen


@dataclass
class ResolvedShare:
    file: StoredFile
    share_link: ShareLink


class ShareService:
    """Issues and resolves bearer tokens for single files."""

    def __init__(self, files: FileStorageService, token_bytes: int | None = None) -> None:
        self.files = files
        self.token_bytes = token_bytes or settings.share_token_bytes

    def share_file(
        self, db: Session, file_id, caller_id, options: ShareLinkOptions | None = None
    ) -> ShareLink:
        opts = options or ShareLinkOptions()
        if opts.max_downloads is not None and opts.max_downloads < 1:
            raise FileValidationError("max_downloads must be a positive integer")
        if opts.expires_in_seconds is not None and opts.expires_in_seconds < 0:
            raise FileValidationError("expires_in_seconds cannot be negative")
        if opts.password is not None and not opts.password:
            raise FileValidationError("Password cannot be empty")

        active = self.files.load_active(db, file_id)
        require_view(active.record, caller_id)

        now = utcnow()
        link = ShareLink(
            file_id=active.record.id,
            token=secrets.token_urlsafe(self.token_bytes),
            created_by=parse_id(caller_id, "Principal"),
            expires_at=(
                now + timedelta(seconds=opts.expires_in_seconds)
                if opts.expires_in_seconds is not None
                else None
            ),
            max_downloads=opts.max_downloads,
            password_hash=hash_password(opts.password) if opts.password else None,
            allowed_emails=_normalize_emails(opts.allowed_emails),
            can_view=opts.can_view,
            can_download=opts.can_download,
        )
        db.add(link)
        commit_or_raise(db, "share_file")
        db.refresh(link)
        logger.info(
            "share_link_created link_id=%s file_id=%s by=%s expires_at=%s max_downloads=%s",
            link.id,
            link.file_id,
            caller_id,
            link.expires_at,
            link.max_downloads,
        )
        return link

    def _load_link(self, db: Session, token: str) -> ShareLink:
        if not token:
            raise NotFoundError("Share link not found")
        try:
            link = db.query(ShareLink).filter(ShareLink.token == token).first()
        except SQLAlchemyError as exc:
            raise MetadataUnavailableError("Metadata store unavailable") from exc
        if link is None:
            raise NotFoundError("Share link not found")
        return link

    @staticmethod
    def _require_usable(link: ShareLink, now: datetime) -> None:
        state = link.state(now)
        if state != ShareLinkState.active:
            raise LinkUnusableError(f"Share link is {state.value}", state=state.value)

    @staticmethod
    def _check_credentials(link: ShareLink, password: str | None, email: str | None) -> None:
        if link.password_hash:
            if not password:
                raise SharePasswordRequiredError("Password required")
            if not verify_password(password, link.password_hash):
                logger.warning("share_link_bad_password link_id=%s", link.id)
                raise AccessDeniedError("Invalid password")
        if link.allowed_emails:
            candidate = (email or "").strip().lower()
            if not candidate or candidate not in link.allowed_emails:
                logger.warning("share_link_email_rejected link_id=%s", link.id)
                raise AccessDeniedError("Email not authorized")

    def _load_target(self, db: Session, link: ShareLink) -> StoredFile:
        try:
            record = db.get(StoredFile, link.file_id)
        except SQLAlchemyError as exc:
            raise MetadataUnavailableError("Metadata store unavailable") from exc
        if record is None or record.is_deleted:
            raise NotFoundError("Shared file is no longer available")
        return record

    def inspect_share_token(
        self,
        db: Session,
        token: str,
        password: str | None = None,
        email: str | None = None,
    ) -> ResolvedShare:
        """Run every resolution check without consuming a download."""
        link = self._load_link(db, token)
        self._require_usable(link, utcnow())
        self._check_credentials(link, password, email)
        record = self._load_target(db, link)
        return ResolvedShare(file=record, share_link=link)

    def _consume(
        self,
        db: Session,
        link: ShareLink,
        ip_address: str | None,
        user_agent: str | None,
    ) -> None:
        """Count one use of the link in a single conditional UPDATE.

        The usability predicate is part of the WHERE clause, so concurrent
        callers can never push ``download_count`` past ``max_downloads``.
        """
        now = utcnow()
        stmt = (
            update(ShareLink)
            .where(ShareLink.id == link.id)
            .where(ShareLink.is_active.is_(True))
            .where(
                or_(
                    ShareLink.max_downloads.is_(None),
                    ShareLink.download_count < ShareLink.max_downloads,
                )
            )
            .where(or_(ShareLink.expires_at.is_(None), ShareLink.expires_at > now))
            .values(download_count=ShareLink.download_count + 1, last_accessed_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.execute(stmt)
            if result.rowcount != 1:
                db.rollback()
                db.refresh(link)
                state = link.state(now)
                if state == ShareLinkState.active:
                    state = ShareLinkState.exhausted
                logger.info("share_link_rejected link_id=%s state=%s", link.id, state.value)
                raise LinkUnusableError(f"Share link is {state.value}", state=state.value)
            db.add(
                ShareAccessLog(
                    share_link_id=link.id,
                    ip_address=(ip_address or "unknown")[:64],
                    user_agent=(user_agent or "unknown")[:512],
                    accessed_at=now,
                )
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise MetadataUnavailableError("Metadata store unavailable") from exc
        db.refresh(link)

    def access_shared_file(
        self,
        db: Session,
        token: str,
        password: str | None = None,
        email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ResolvedShare:
        """Open the landing view of a link; logs the visit, leaves the quota alone."""
        resolved = self.inspect_share_token(db, token, password=password, email=email)
        link = resolved.share_link
        if not link.can_view:
            raise AccessDeniedError("Viewing not allowed for this share link")
        now = utcnow()
        link.last_accessed_at = now
        db.add(
            ShareAccessLog(
                share_link_id=link.id,
                ip_address=(ip_address or "unknown")[:64],
                user_agent=(user_agent or "unknown")[:512],
                accessed_at=now,
            )
        )
        commit_or_raise(db, "access_shared_file")
        db.refresh(link)
        logger.info("share_link_accessed link_id=%s file_id=%s", link.id, resolved.file.id)
        return resolved

    def resolve_share_token(
        self,
        db: Session,
        token: str,
        password: str | None = None,
        email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ResolvedShare:
        resolved = self.inspect_share_token(db, token, password=password, email=email)
        self._consume(db, resolved.share_link, ip_address, user_agent)
        logger.info(
            "share_link_resolved link_id=%s file_id=%s count=%s",
            resolved.share_link.id,
            resolved.file.id,
            resolved.share_link.download_count,
        )
        return resolved

    def download_shared_file(
        self,
        db: Session,
        token: str,
        password: str | None = None,
        email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[StreamResult, ResolvedShare]:
        resolved = self.inspect_share_token(db, token, password=password, email=email)
        if not resolved.share_link.can_download:
            raise AccessDeniedError("Download not allowed for this share link")
        self._consume(db, resolved.share_link, ip_address, user_agent)
        stream = self.files.open_stream(db, resolved.file, count_download=True)
        logger.info(
            "share_link_download link_id=%s file_id=%s count=%s",
            resolved.share_link.id,
            resolved.file.id,
            resolved.share_link.download_count,
        )
        return stream, resolved

    def revoke_share_link(self, db: Session, link_id, caller_id) -> ShareLink:
        try:
            link = db.get(ShareLink, parse_id(link_id, "Share link"))
        except SQLAlchemyError as exc:
            raise MetadataUnavailableError("Metadata store unavailable") from exc
        if link is None:
            raise NotFoundError("Share link not found")
        if str(link.created_by) != str(caller_id):
            logger.warning("share_link_revoke_denied link_id=%s caller=%s", link.id, caller_id)
            raise AccessDeniedError("Only the creator can revoke this share link")
        if link.is_active:
            link.is_active = False
            commit_or_raise(db, "revoke_share_link")
            db.refresh(link)
            logger.info("share_link_revoked link_id=%s by=%s", link.id, caller_id)
        return link

    def list_share_links(self, db: Session, file_id, caller_id) -> list[ShareLink]:
        active = self.files.load_active(db, file_id)
        require_view(active.record, caller_id)
        with metadata_read("list_share_links"):
            return (
                db.query(ShareLink)
                .filter(ShareLink.file_id == active.record.id)
                .filter(ShareLink.is_active.is_(True))
                .order_by(ShareLink.created_at.desc())
                .all()
            )
