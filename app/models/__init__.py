from app.models.folder import Folder  # noqa: F401
from app.models.share_link import ShareAccessLog, ShareLink, ShareLinkState  # noqa: F401
from app.models.stored_file import (  # noqa: F401
    FileKind,
    FileState,
    PermissionRole,
    StoredFile,
)
