from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from relgraph.api.v1.deps import get_db
from relgraph.api.v1.schemas import WebhookConnectionResultOut, WebhookResponse
from relgraph.core.config import get_settings
from relgraph.services.sync.webhooks import handle_webhook, signature_header_for

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _signature(request: Request, provider: str) -> str | None:
    return request.headers.get(signature_header_for(provider)) or request.headers.get(
        get_settings().webhook_signature_header
    )


async def _handle(request: Request, provider: str, connection_id: str | None, db: Session) -> WebhookResponse:
    raw_body = await request.body()
    result = await run_in_threadpool(
        handle_webhook,
        db,
        provider,
        raw_body,
        _signature(request, provider),
        connection_id=connection_id,
    )
    return WebhookResponse(
        status=result.status,
        reason=result.reason,
        results=[
            WebhookConnectionResultOut(
                connection_id=item.connection_id,
                success=item.success,
                outcome=item.outcome,
                error=item.error,
                error_kind=item.error_kind,
            )
            for item in result.results
        ],
    )


@router.post("/{provider}", response_model=WebhookResponse)
async def receive_webhook(provider: str, request: Request, db: Session = Depends(get_db)) -> WebhookResponse:
    return await _handle(request, provider, None, db)


@router.post("/{provider}/{connection_id}", response_model=WebhookResponse)
async def receive_connection_webhook(
    provider: str,
    connection_id: str,
    request: Request,
    db: Session = Depends(get_db),
) -> WebhookResponse:
    return await _handle(request, provider, connection_id, db)
