from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request

from app.db import get_db
from app.services.storage_context import StorageContext


@dataclass(frozen=True)
class Principal:
    principal_id: uuid.UUID
    organization_id: uuid.UUID | None = None


def _parse_header(value: str | None, label: str) -> uuid.UUID | None:
    if value is None or not value.strip():
        return None
    try:
        return uuid.UUID(value.strip())
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid {label}") from exc


def get_current_principal(
    x_principal_id: str | None = Header(default=None),
    x_organization_id: str | None = Header(default=None),
) -> Principal:
    """Identity is resolved upstream and forwarded in request headers."""
    principal_id = _parse_header(x_principal_id, "principal")
    if principal_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Principal(
        principal_id=principal_id,
        organization_id=_parse_header(x_organization_id, "organization"),
    )


def get_storage(request: Request) -> StorageContext:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(status_code=503, detail="Storage is not configured")
    return storage


__all__ = [
    "Principal",
    "get_current_principal",
    "get_db",
    "get_storage",
]
