from __future__ import annotations

import logging
from contextlib import closing

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.core.errors import NotFoundError, ValidationError
from relgraph.db.pg.models import Connection, SyncFailure, utcnow
from relgraph.integrations.registry import SUPPORTED_PROVIDERS, build_provider_client
from relgraph.services.sync.types import ProviderClient

logger = logging.getLogger(__name__)


def get_connection_by_owner(db: Session, provider: str, owner_user_id: str) -> Connection | None:
    return db.scalar(
        select(Connection).where(Connection.provider == provider, Connection.owner_user_id == owner_user_id)
    )


def create_connection(
    db: Session,
    *,
    provider: str,
    owner_user_id: str,
    credentials_ref: str,
    webhook_enabled: bool = False,
    webhook_secret: str | None = None,
    client: ProviderClient | None = None,
) -> tuple[Connection, bool]:
    """Verify the credential with the provider, then persist one connection per (provider, owner)."""
    provider = (provider or "").strip().lower()
    owner_user_id = (owner_user_id or "").strip()
    if provider not in SUPPORTED_PROVIDERS:
        raise ValidationError(f"Unsupported provider: {provider}", details={"supported": list(SUPPORTED_PROVIDERS)})
    if not owner_user_id:
        raise ValidationError("owner_user_id is required")

    if client is not None:
        identity = client.verify_credential()
    else:
        with closing(build_provider_client(provider, credentials_ref)) as owned_client:
            identity = owned_client.verify_credential()
    account_email = identity.email.strip().lower() if identity.email else None

    created = False
    connection = get_connection_by_owner(db, provider, owner_user_id)
    if connection is None:
        connection = Connection(provider=provider, owner_user_id=owner_user_id, credentials_ref=credentials_ref)
        db.add(connection)
        try:
            db.flush()
            created = True
        except IntegrityError:
            db.rollback()
            connection = get_connection_by_owner(db, provider, owner_user_id)
            if connection is None:
                raise

    connection.credentials_ref = credentials_ref
    connection.provider_user_id = identity.provider_user_id
    connection.account_email = account_email
    connection.webhook_enabled = webhook_enabled
    connection.webhook_secret = webhook_secret or None
    connection.status = "active"
    connection.last_error = None
    connection.updated_at = utcnow()
    db.commit()
    db.refresh(connection)
    logger.info(
        "connection_saved",
        extra={"connection_id": connection.id, "provider": provider, "is_new": created},
    )
    return connection, created


def get_connection_or_404(db: Session, connection_id: str) -> Connection:
    connection = db.get(Connection, connection_id)
    if connection is None:
        raise NotFoundError("Connection not found", details={"connection_id": connection_id})
    return connection


def delete_connection(db: Session, connection_id: str) -> None:
    connection = get_connection_or_404(db, connection_id)
    for failure in db.scalars(select(SyncFailure).where(SyncFailure.connection_id == connection_id)).all():
        db.delete(failure)
    db.delete(connection)
    db.commit()
    logger.info("connection_deleted", extra={"connection_id": connection_id})
