"""Access predicates for files and folders.

All checks operate on an already-loaded record and never touch the database
or the object store.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from app.models.stored_file import PermissionRole
from app.services.storage_errors import AccessDeniedError

logger = logging.getLogger(__name__)

EDIT_ROLES = frozenset({PermissionRole.editor, PermissionRole.owner})


class Shareable(Protocol):
    id: uuid.UUID
    owner_id: uuid.UUID
    is_public: bool
    permissions: list


def _same_principal(left, right) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def permission_role(record: Shareable, principal_id) -> PermissionRole | None:
    """Role granted to ``principal_id``; the last matching entry wins."""
    role = None
    for entry in record.permissions or []:
        if _same_principal(entry.get("principal_id"), principal_id):
            try:
                role = PermissionRole(entry.get("role"))
            except ValueError:
                continue
    return role


def is_owner(record: Shareable, principal_id) -> bool:
    return _same_principal(record.owner_id, principal_id)


def can_view(record: Shareable, principal_id) -> bool:
    if record.is_public:
        return True
    if is_owner(record, principal_id):
        return True
    return permission_role(record, principal_id) is not None


def can_edit(record: Shareable, principal_id) -> bool:
    if is_owner(record, principal_id):
        return True
    return permission_role(record, principal_id) in EDIT_ROLES


def _deny(record: Shareable, principal_id, action: str) -> AccessDeniedError:
    logger.warning(
        "file_access_denied record=%s caller=%s action=%s",
        record.id,
        principal_id,
        action,
    )
    return AccessDeniedError("Access denied", action=action)


def require_view(record: Shareable, principal_id) -> None:
    if not can_view(record, principal_id):
        raise _deny(record, principal_id, "view")


def require_edit(record: Shareable, principal_id) -> None:
    if not can_edit(record, principal_id):
        raise _deny(record, principal_id, "edit")


def require_owner(record: Shareable, principal_id, action: str = "delete") -> None:
    if not is_owner(record, principal_id):
        raise _deny(record, principal_id, action)
