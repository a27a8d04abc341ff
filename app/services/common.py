"""Common helper functions for the storage service layer.

This module provides reusable utilities for:
- UUID handling
- UTC timestamps
- Committing a session and running queries with store errors translated
  to the storage taxonomy
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from app.services.storage_errors import MetadataUnavailableError, NotFoundError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def parse_id(value, label: str = "Record") -> uuid.UUID:
    """Parse an identifier supplied by a caller.

    Malformed identifiers cannot match any record, so they are reported the
    same way as missing ones.

    Raises:
        NotFoundError: if ``value`` is empty or not a UUID
    """
    if value is None or value == "":
        raise NotFoundError(f"{label} not found")
    try:
        return coerce_uuid(value)
    except (TypeError, ValueError, AttributeError) as exc:
        raise NotFoundError(f"{label} not found") from exc


def utcnow() -> datetime:
    return datetime.now(UTC)


def commit_or_raise(db: Session, action: str) -> None:
    """Commit the session, rolling back and raising on failure.

    Args:
        db: Database session
        action: Short label used in the log line and error details

    Raises:
        MetadataUnavailableError: if the commit fails
    """
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("metadata_commit_failed action=%s error=%s", action, type(exc).__name__)
        raise MetadataUnavailableError(
            "Metadata store unavailable", action=action
        ) from exc


@contextmanager
def metadata_read(action: str):
    """Translate store failures raised inside the block.

    Raises:
        MetadataUnavailableError: if a query in the block fails
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("metadata_read_failed action=%s error=%s", action, type(exc).__name__)
        raise MetadataUnavailableError(
            "Metadata store unavailable", action=action
        ) from exc
