from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from relgraph.api.v1.deps import get_db
from relgraph.api.v1.schemas import (
    ConnectionCreateRequest,
    ConnectionCreateResponse,
    ConnectionOut,
    SyncItemErrorOut,
    SyncRequest,
    SyncResponse,
)
from relgraph.services.sync.connections import create_connection, delete_connection, get_connection_or_404
from relgraph.services.sync.coordinator import run_sync

router = APIRouter(prefix="/connections", tags=["connections"])


@router.post("", response_model=ConnectionCreateResponse)
def connect(payload: ConnectionCreateRequest, db: Session = Depends(get_db)) -> ConnectionCreateResponse:
    connection, created = create_connection(
        db,
        provider=payload.provider,
        owner_user_id=payload.owner_user_id,
        credentials_ref=payload.credentials_ref,
        webhook_enabled=payload.webhook_enabled,
        webhook_secret=payload.webhook_secret,
    )
    return ConnectionCreateResponse(connection=ConnectionOut.model_validate(connection), created=created)


@router.get("/{connection_id}", response_model=ConnectionOut)
def get_connection(connection_id: str, db: Session = Depends(get_db)) -> ConnectionOut:
    return ConnectionOut.model_validate(get_connection_or_404(db, connection_id))


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
def disconnect(connection_id: str, db: Session = Depends(get_db)) -> None:
    delete_connection(db, connection_id)


@router.post("/{connection_id}/sync", response_model=SyncResponse)
def sync_connection(
    connection_id: str,
    payload: SyncRequest | None = None,
    db: Session = Depends(get_db),
) -> SyncResponse:
    payload = payload or SyncRequest()
    result = run_sync(db, connection_id, max_items=payload.max_items, from_date=payload.from_date)
    return SyncResponse(
        connection_id=result.connection_id,
        state=result.state,
        fetched=result.fetched,
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        retried=result.retried,
        errors=[
            SyncItemErrorOut(
                external_id=error.external_id,
                label=error.label,
                kind=error.kind,
                message=error.message,
                retryable=error.retryable,
            )
            for error in result.errors
        ],
        cursor_before=result.cursor_before,
        cursor_after=result.cursor_after,
        error=result.error,
    )
