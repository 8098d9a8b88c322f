from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from relgraph.core.config import get_settings
from relgraph.core.errors import NotFoundError, SignatureError, ValidationError
from relgraph.core.security import verify_webhook_signature
from relgraph.db.pg.models import Connection
from relgraph.integrations.registry import SUPPORTED_PROVIDERS, client_for_connection
from relgraph.services.sync.coordinator import item_error, process_item, schedule_strength_refresh
from relgraph.services.sync.failures import record_failure, resolve_failure
from relgraph.services.sync.linking import resolve_owner
from relgraph.services.sync.types import ProviderClient, WebhookConnectionResult, WebhookResult

logger = logging.getLogger(__name__)

WEBHOOK_EVENT_TYPES: dict[str, frozenset[str]] = {
    "fireflies": frozenset({"transcription_complete"}),
    "gmail": frozenset({"message_received", "message_added"}),
}

SIGNATURE_HEADERS: dict[str, str] = {
    "fireflies": "x-fireflies-signature",
}


def signature_header_for(provider: str) -> str:
    return SIGNATURE_HEADERS.get(provider, get_settings().webhook_signature_header)


@dataclass(frozen=True)
class WebhookPayload:
    event_type: str
    external_item_id: str
    provider_user_id: str | None = None


def parse_webhook_payload(raw_body: bytes) -> WebhookPayload:
    try:
        body = json.loads(raw_body.decode("utf-8") or "null")
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("Invalid JSON payload") from exc
    if not isinstance(body, dict):
        raise ValidationError("Webhook payload must be a JSON object")
    event_type = str(body.get("event_type") or "").strip()
    if not event_type:
        raise ValidationError("event_type is required")
    external_item_id = str(body.get("external_item_id") or body.get("transcript_id") or body.get("message_id") or "")
    provider_user_id = body.get("provider_user_id") or body.get("user_id")
    return WebhookPayload(
        event_type=event_type,
        external_item_id=external_item_id.strip(),
        provider_user_id=str(provider_user_id).strip() if provider_user_id else None,
    )


def route_connections(
    db: Session,
    provider: str,
    payload: WebhookPayload,
    connection_id: str | None = None,
) -> tuple[list[Connection], str | None]:
    """Connections a webhook applies to, plus the reason when there are none.

    Precedence: connection id in the URL, then the payload's provider user id,
    then (only when enabled in settings) every webhook-enabled connection.
    """
    if connection_id:
        connection = db.get(Connection, connection_id)
        if connection is None or connection.provider != provider:
            raise NotFoundError("Connection not found", details={"connection_id": connection_id})
        if not connection.webhook_enabled:
            return [], "webhook_disabled"
        return [connection], None

    if payload.provider_user_id:
        connections = db.scalars(
            select(Connection)
            .where(
                Connection.provider == provider,
                Connection.provider_user_id == payload.provider_user_id,
                Connection.webhook_enabled.is_(True),
            )
            .order_by(Connection.created_at.asc())
        ).all()
        return list(connections), None if connections else "unknown_provider_user"

    if not get_settings().webhook_allow_broadcast:
        return [], "ambiguous_routing"
    connections = db.scalars(
        select(Connection)
        .where(Connection.provider == provider, Connection.webhook_enabled.is_(True))
        .order_by(Connection.created_at.asc())
    ).all()
    return list(connections), None if connections else "no_webhook_connections"


def _process_for_connection(
    db: Session,
    connection: Connection,
    payload: WebhookPayload,
    client_factory: Callable[[Connection], ProviderClient],
    owns_client: bool,
) -> tuple[WebhookConnectionResult, set[str]]:
    label = payload.external_item_id
    client: ProviderClient | None = None
    try:
        client = client_factory(connection)
        item = client.get_item(payload.external_item_id)
        if item is None:
            return (
                WebhookConnectionResult(connection.id, success=False, error="Item not found", error_kind="not_found"),
                set(),
            )
        label = item.label
        owner = resolve_owner(db, connection)
        outcome, touched = process_item(db, connection=connection, item=item, owner=owner)
    except Exception as exc:
        db.rollback()
        error = item_error(payload.external_item_id, label, exc)
        logger.warning(
            "webhook_item_failed",
            extra={"connection_id": connection.id, "external_id": payload.external_item_id, "kind": error.kind},
        )
        if error.retryable:
            record_failure(
                db,
                connection_id=connection.id,
                external_id=payload.external_item_id,
                label=label,
                error_kind=error.kind,
                error_message=error.message,
            )
        return WebhookConnectionResult(connection.id, success=False, error=error.message, error_kind=error.kind), set()
    finally:
        if owns_client and client is not None:
            client.close()
    resolve_failure(db, connection.id, payload.external_item_id)
    return WebhookConnectionResult(connection.id, success=True, outcome=outcome), touched


def handle_webhook(
    db: Session,
    provider: str,
    raw_body: bytes,
    signature_header: str | None,
    *,
    connection_id: str | None = None,
    client_factory: Callable[[Connection], ProviderClient] | None = None,
) -> WebhookResult:
    """Verify and process one pushed item; bypasses the cursor entirely."""
    if provider not in SUPPORTED_PROVIDERS:
        raise NotFoundError(f"Unknown webhook provider: {provider}")
    payload = parse_webhook_payload(raw_body)
    if payload.event_type not in WEBHOOK_EVENT_TYPES.get(provider, frozenset()):
        return WebhookResult(status="ignored", reason="unknown event type")
    if not payload.external_item_id:
        raise ValidationError("external_item_id is required")

    connections, reason = route_connections(db, provider, payload, connection_id)
    if not connections:
        logger.info("webhook_no_connection", extra={"provider": provider, "reason": reason})
        return WebhookResult(status="no_connection", reason=reason)

    factory = client_factory or client_for_connection
    result = WebhookResult(status="processed")
    touched: set[str] = set()
    for connection in connections:
        try:
            verify_webhook_signature(connection.webhook_secret, raw_body, signature_header)
        except SignatureError as exc:
            logger.warning(
                "webhook_signature_rejected",
                extra={"connection_id": connection.id, "provider": provider},
            )
            result.results.append(
                WebhookConnectionResult(connection.id, success=False, error=exc.message, error_kind=exc.error_code)
            )
            continue
        connection_result, connection_touched = _process_for_connection(
            db, connection, payload, factory, owns_client=client_factory is None
        )
        result.results.append(connection_result)
        touched |= connection_touched

    schedule_strength_refresh(touched)
    return result
