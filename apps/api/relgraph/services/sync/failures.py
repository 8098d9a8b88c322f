from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.db.pg.models import SyncFailure, utcnow


def open_failures(db: Session, connection_id: str, limit: int) -> list[SyncFailure]:
    return list(
        db.scalars(
            select(SyncFailure)
            .where(SyncFailure.connection_id == connection_id, SyncFailure.resolved_at.is_(None))
            .order_by(SyncFailure.first_failed_at.asc())
            .limit(limit)
        ).all()
    )


def record_failure(
    db: Session,
    *,
    connection_id: str,
    external_id: str,
    label: str,
    error_kind: str,
    error_message: str,
) -> SyncFailure:
    stmt = select(SyncFailure).where(
        SyncFailure.connection_id == connection_id,
        SyncFailure.external_id == external_id,
    )
    now = utcnow()
    failure = db.scalar(stmt)
    if failure is None:
        failure = SyncFailure(
            connection_id=connection_id,
            external_id=external_id,
            label=label[:500],
            error_kind=error_kind,
            error_message=error_message,
            attempts=1,
            first_failed_at=now,
            last_failed_at=now,
        )
        db.add(failure)
        try:
            db.commit()
            return failure
        except IntegrityError:
            db.rollback()
            failure = db.scalar(stmt)
            if failure is None:
                raise
    else:
        failure.attempts += 1
    failure.label = label[:500]
    failure.error_kind = error_kind
    failure.error_message = error_message
    failure.last_failed_at = now
    failure.resolved_at = None
    db.commit()
    return failure


def resolve_failure(db: Session, connection_id: str, external_id: str) -> bool:
    failure = db.scalar(
        select(SyncFailure).where(
            SyncFailure.connection_id == connection_id,
            SyncFailure.external_id == external_id,
            SyncFailure.resolved_at.is_(None),
        )
    )
    if failure is None:
        return False
    failure.resolved_at = utcnow()
    db.commit()
    return True
