"""Per-connection incremental sync.

A run moves through ``idle -> fetching -> processing -> committed | partial_failure``;
connection-level failures end in ``aborted`` and caller cancellation in
``cancelled``, neither of which touches the cursor. Items are processed
independently: a failing item is recorded in the retry ledger and the run goes
on. The cursor only ever moves forward, to the newest item that was processed
successfully, through a single conditional UPDATE so concurrent runs converge.
"""

from __future__ import annotations

import logging
import threading
from contextlib import closing
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from relgraph.core.config import get_settings
from relgraph.core.errors import NotFoundError, RelGraphError, UpstreamProviderError, ValidationError
from relgraph.db.pg.models import Connection, Person, utcnow
from relgraph.integrations.registry import client_for_connection
from relgraph.services.scoring.relationship_strength import as_utc
from relgraph.services.sync.failures import open_failures, record_failure, resolve_failure
from relgraph.services.sync.linking import item_direction, link_item, participants_json, resolve_owner
from relgraph.services.sync.store_raw import upsert_interaction, upsert_raw_event
from relgraph.services.sync.types import ItemOutcome, ProviderClient, ProviderItem, SyncItemError, SyncRunResult
from relgraph.workers.queue import enqueue_job

logger = logging.getLogger(__name__)


def get_connection(db: Session, connection_id: str) -> Connection:
    connection = db.get(Connection, connection_id)
    if connection is None:
        raise NotFoundError("Connection not found", details={"connection_id": connection_id})
    return connection


def bounded_max_items(max_items: int | None) -> int:
    settings = get_settings()
    if max_items is None:
        return settings.sync_default_max_items
    if max_items < 1 or max_items > settings.sync_max_items_limit:
        raise ValidationError(
            "max_items out of range",
            details={"max_items": max_items, "limit": settings.sync_max_items_limit},
        )
    return max_items


def owner_emails_for(connection: Connection) -> set[str]:
    return {email for email in [(connection.account_email or "").strip().lower()] if email}


def validate_item(item: ProviderItem) -> None:
    if not item.external_id or not str(item.external_id).strip():
        raise ValidationError("Provider item has no external id")
    if item.payload.get("malformed"):
        raise ValidationError("Malformed provider payload", details={"external_id": item.external_id})
    if not isinstance(item.occurred_at, datetime):
        raise ValidationError("Provider item has no timestamp", details={"external_id": item.external_id})


def process_item(
    db: Session,
    *,
    connection: Connection,
    item: ProviderItem,
    owner: Person | None,
) -> tuple[ItemOutcome, set[str]]:
    """Idempotent write path shared by batch sync and webhooks."""
    validate_item(item)
    owner_emails = owner_emails_for(connection)
    upsert_raw_event(
        db,
        source_system=connection.provider,
        event_type=f"{connection.provider}.{item.item_type}",
        external_id=item.external_id,
        payload_json=item.payload,
    )
    interaction, outcome = upsert_interaction(
        db,
        source_system=connection.provider,
        external_id=item.external_id,
        timestamp=as_utc(item.occurred_at),
        connection_id=connection.id,
        interaction_payload={
            "type": item.item_type,
            "direction": item_direction(item, owner_emails),
            "subject": item.subject,
            "thread_id": item.thread_id,
            "participants_json": participants_json(item),
        },
    )
    touched = link_item(
        db,
        connection=connection,
        item=item,
        interaction=interaction,
        owner=owner,
        owner_emails=owner_emails,
    )
    if interaction.status != "processed":
        interaction.status = "processed"
        interaction.processing_error = None
        db.commit()
    return outcome, touched


def item_error(item_id: str, label: str, exc: Exception) -> SyncItemError:
    if isinstance(exc, UpstreamProviderError):
        return SyncItemError(item_id, label, exc.kind, exc.message, retryable=exc.retryable)
    if isinstance(exc, RelGraphError):
        return SyncItemError(item_id, label, exc.error_code, exc.message)
    return SyncItemError(item_id, label, "internal_error", str(exc) or exc.__class__.__name__, retryable=True)


def _fail_item(db: Session, connection: Connection, result: SyncRunResult, item_id: str, label: str, exc: Exception) -> None:
    db.rollback()
    error = item_error(item_id, label, exc)
    result.errors.append(error)
    logger.warning(
        "sync_item_failed",
        extra={"connection_id": connection.id, "external_id": item_id, "kind": error.kind, "error": error.message},
    )
    record_failure(
        db,
        connection_id=connection.id,
        external_id=item_id,
        label=label,
        error_kind=error.kind,
        error_message=error.message,
    )


def _abort(db: Session, connection: Connection, result: SyncRunResult, exc: RelGraphError) -> SyncRunResult:
    db.rollback()
    connection.status = "error"
    connection.last_error = exc.message
    connection.updated_at = utcnow()
    db.commit()
    result.state = "aborted"
    result.error = exc.message
    logger.warning(
        "sync_run_aborted",
        extra={"connection_id": connection.id, "error": exc.message, "error_code": exc.error_code},
    )
    return result


def schedule_strength_refresh(person_ids: set[str]) -> None:
    """Queue a strength refresh per touched contact; queue failures never fail the sync."""
    for person_id in sorted(person_ids):
        try:
            enqueue_job("refresh_relationship_strength", person_id)
        except Exception:
            logger.exception("strength_refresh_enqueue_failed", extra={"person_id": person_id})


def advance_cursor(db: Session, connection_id: str, candidate: datetime) -> datetime | None:
    """Move the cursor to ``candidate`` only if that is forward; returns the stored cursor."""
    candidate = as_utc(candidate)
    db.execute(
        update(Connection)
        .where(
            Connection.id == connection_id,
            or_(Connection.sync_cursor.is_(None), Connection.sync_cursor < candidate),
        )
        .values(sync_cursor=candidate)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    connection = db.get(Connection, connection_id)
    db.refresh(connection)
    return as_utc(connection.sync_cursor) if connection.sync_cursor else None


def _retry_failed_items(
    db: Session,
    connection: Connection,
    client: ProviderClient,
    owner: Person | None,
    result: SyncRunResult,
    limit: int,
) -> None:
    for failure in open_failures(db, connection.id, limit):
        external_id, label = failure.external_id, failure.label
        try:
            item = client.get_item(external_id)
            if item is None:
                resolve_failure(db, connection.id, external_id)
                result.skipped += 1
                continue
            outcome, touched = process_item(db, connection=connection, item=item, owner=owner)
        except Exception as exc:
            _fail_item(db, connection, result, external_id, label, exc)
            continue
        resolve_failure(db, connection.id, external_id)
        result.record(outcome)
        result.retried += 1
        result.touched_person_ids |= touched


def run_sync(
    db: Session,
    connection_id: str,
    *,
    max_items: int | None = None,
    from_date: datetime | None = None,
    client: ProviderClient | None = None,
    cancel_event: threading.Event | None = None,
    schedule_refresh: bool = True,
) -> SyncRunResult:
    connection = get_connection(db, connection_id)
    batch_size = bounded_max_items(max_items)
    result = SyncRunResult(connection_id=connection.id)
    result.cursor_before = as_utc(connection.sync_cursor) if connection.sync_cursor else None
    result.cursor_after = result.cursor_before

    result.state = "fetching"
    if client is not None:
        return _sync_with_client(db, connection, client, result, batch_size, from_date, cancel_event, schedule_refresh)
    try:
        owned_client = client_for_connection(connection)
    except RelGraphError as exc:
        return _abort(db, connection, result, exc)
    with closing(owned_client):
        return _sync_with_client(
            db, connection, owned_client, result, batch_size, from_date, cancel_event, schedule_refresh
        )


def _sync_with_client(
    db: Session,
    connection: Connection,
    client: ProviderClient,
    result: SyncRunResult,
    batch_size: int,
    from_date: datetime | None,
    cancel_event: threading.Event | None,
    schedule_refresh: bool,
) -> SyncRunResult:
    connection_id = connection.id
    try:
        identity = client.verify_credential()
    except RelGraphError as exc:
        return _abort(db, connection, result, exc)
    if not connection.provider_user_id:
        connection.provider_user_id = identity.provider_user_id
    if not connection.account_email and identity.email:
        connection.account_email = identity.email.strip().lower()
    db.commit()

    try:
        owner = resolve_owner(db, connection)
    except RelGraphError as exc:
        return _abort(db, connection, result, exc)

    _retry_failed_items(db, connection, client, owner, result, batch_size)

    since = as_utc(from_date) if from_date else result.cursor_before
    try:
        items = client.list_items_since(None if from_date else result.cursor_before, batch_size, from_date=since)
    except RelGraphError as exc:
        return _abort(db, connection, result, exc)
    items = sorted(items, key=lambda item: (as_utc(item.occurred_at), item.external_id))[:batch_size]
    result.fetched = len(items)

    result.state = "processing"
    newest_success: datetime | None = None
    for item in items:
        if cancel_event is not None and cancel_event.is_set():
            result.state = "cancelled"
            logger.info("sync_run_cancelled", extra={"connection_id": connection.id, "processed": result.succeeded})
            return result
        try:
            outcome, touched = process_item(db, connection=connection, item=item, owner=owner)
        except Exception as exc:
            _fail_item(db, connection, result, str(item.external_id), item.label, exc)
            continue
        resolve_failure(db, connection.id, item.external_id)
        result.record(outcome)
        result.touched_person_ids |= touched
        occurred_at = as_utc(item.occurred_at)
        if newest_success is None or occurred_at > newest_success:
            newest_success = occurred_at

    connection = get_connection(db, connection_id)
    connection.last_sync_at = utcnow()
    connection.status = "active"
    connection.last_error = f"{len(result.errors)} item(s) failed" if result.errors else None
    connection.updated_at = utcnow()
    db.commit()
    if newest_success is not None:
        result.cursor_after = advance_cursor(db, connection.id, newest_success)

    result.state = "partial_failure" if result.errors else "committed"
    if schedule_refresh:
        schedule_strength_refresh(result.touched_person_ids)
    logger.info(
        "sync_run_completed",
        extra={
            "connection_id": connection.id,
            "state": result.state,
            "fetched": result.fetched,
            "created_count": result.created,
            "updated": result.updated,
            "skipped": result.skipped,
            "errors": len(result.errors),
        },
    )
    return result
