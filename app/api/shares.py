"""Share link endpoints. Token routes need no principal."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.api.deps import Principal, get_current_principal, get_db, get_storage
from app.api.files import stream_response
from app.schemas.files import (
    ShareAccessRequest,
    SharedAccessRead,
    SharedFileRead,
    ShareLinkOptions,
    ShareLinkRead,
)
from app.services.storage_context import StorageContext

router = APIRouter(tags=["shares"])


def _client_details(request: Request) -> tuple[str | None, str | None]:
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.post(
    "/files/{file_id}/shares",
    response_model=ShareLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def create_share_link(
    file_id: str,
    payload: ShareLinkOptions,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.shares.share_file(db, file_id, principal.principal_id, payload)


@router.get("/files/{file_id}/shares", response_model=list[ShareLinkRead])
def list_share_links(
    file_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.shares.list_share_links(db, file_id, principal.principal_id)


@router.delete("/shares/{link_id}", response_model=ShareLinkRead)
def revoke_share_link(
    link_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: StorageContext = Depends(get_storage),
):
    return storage.shares.revoke_share_link(db, link_id, principal.principal_id)


@router.post("/shares/{token}/access", response_model=SharedAccessRead)
def access_shared_file(
    token: str,
    request: Request,
    payload: ShareAccessRequest | None = None,
    db: Session = Depends(get_db),
    storage: StorageContext = Depends(get_storage),
):
    credentials = payload or ShareAccessRequest()
    ip_address, user_agent = _client_details(request)
    resolved = storage.shares.access_shared_file(
        db,
        token,
        password=credentials.password,
        email=credentials.email,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    link = resolved.share_link
    return SharedAccessRead(
        file=SharedFileRead.model_validate(resolved.file),
        can_view=link.can_view,
        can_download=link.can_download,
        state=link.state(),
    )


@router.post("/shares/{token}/download")
def download_shared_file(
    token: str,
    request: Request,
    payload: ShareAccessRequest | None = None,
    db: Session = Depends(get_db),
    storage: StorageContext = Depends(get_storage),
):
    credentials = payload or ShareAccessRequest()
    ip_address, user_agent = _client_details(request)
    stream, resolved = storage.shares.download_shared_file(
        db,
        token,
        password=credentials.password,
        email=credentials.email,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return stream_response(stream, resolved.file)
