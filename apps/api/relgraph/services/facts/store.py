from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.core.errors import ConflictError, ValidationError
from relgraph.db.pg.models import Fact, utcnow
from relgraph.services.graph.types import EntityRef

logger = logging.getLogger(__name__)

_MAX_WRITE_ATTEMPTS = 3


def _validate(fact_type: str, key: str, value: str, confidence: float) -> None:
    if not fact_type or not fact_type.strip():
        raise ValidationError("fact_type is required")
    if not key or not key.strip():
        raise ValidationError("key is required")
    if value is None or not str(value).strip():
        raise ValidationError("value is required", details={"key": key})
    if not 0.0 <= float(confidence) <= 1.0:
        raise ValidationError("confidence must be within [0, 1]", details={"confidence": confidence})


def _current_stmt(entity: EntityRef, fact_type: str, key: str):
    return select(Fact).where(
        Fact.entity_kind == entity.kind.value,
        Fact.entity_id == entity.id,
        Fact.fact_type == fact_type,
        Fact.key == key,
        Fact.valid_until.is_(None),
    )


def get_current_fact(db: Session, entity: EntityRef, fact_type: str, key: str) -> Fact | None:
    return db.scalar(_current_stmt(entity, fact_type, key))


def _write_current(
    db: Session,
    *,
    entity: EntityRef,
    fact_type: str,
    key: str,
    value: str,
    source_type: str,
    source_id: str | None,
    confidence: float,
) -> Fact:
    current = db.scalar(_current_stmt(entity, fact_type, key))
    if current is not None and current.value == value:
        if confidence > current.confidence:
            current.confidence = confidence
            current.source_type = source_type
            current.source_id = source_id
        return current

    now = utcnow()
    if current is not None:
        current.valid_until = now
        # The partial unique index only admits one open row per key.
        db.flush()

    fact = Fact(
        entity_kind=entity.kind.value,
        entity_id=entity.id,
        fact_type=fact_type,
        key=key,
        value=value,
        source_type=source_type,
        source_id=source_id,
        confidence=confidence,
        valid_from=now,
        created_at=now,
    )
    db.add(fact)
    db.flush()
    if current is not None:
        current.replaced_by_id = fact.id
    return fact


def set_current_fact(
    db: Session,
    *,
    entity: EntityRef,
    fact_type: str,
    key: str,
    value: str,
    source_type: str,
    source_id: str | None = None,
    confidence: float = 1.0,
    commit: bool = True,
) -> Fact:
    """Close the open fact for (entity, fact_type, key) and open ``value`` in its place.

    Writing the value that is already current is a no-op apart from keeping the
    higher confidence. With ``commit=False`` the caller owns the transaction and a
    concurrent writer surfaces as ``ConflictError``.
    """
    value = str(value).strip() if value is not None else value
    _validate(fact_type, key, value, confidence)

    if not commit:
        try:
            return _write_current(
                db,
                entity=entity,
                fact_type=fact_type,
                key=key,
                value=value,
                source_type=source_type,
                source_id=source_id,
                confidence=float(confidence),
            )
        except IntegrityError as exc:
            raise ConflictError(
                "Concurrent write to current fact",
                details={"entity_id": entity.id, "fact_type": fact_type, "key": key},
            ) from exc

    for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
        try:
            fact = _write_current(
                db,
                entity=entity,
                fact_type=fact_type,
                key=key,
                value=value,
                source_type=source_type,
                source_id=source_id,
                confidence=float(confidence),
            )
            db.commit()
            db.refresh(fact)
            return fact
        except IntegrityError:
            db.rollback()
            logger.warning(
                "fact_write_conflict_retrying",
                extra={"entity_id": entity.id, "fact_type": fact_type, "key": key, "attempt": attempt},
            )
    raise ConflictError(
        "Could not write current fact after concurrent updates",
        details={"entity_id": entity.id, "fact_type": fact_type, "key": key},
    )


def get_current_facts(db: Session, entity: EntityRef, fact_type: str | None = None) -> list[Fact]:
    stmt = select(Fact).where(
        Fact.entity_kind == entity.kind.value,
        Fact.entity_id == entity.id,
        Fact.valid_until.is_(None),
    )
    if fact_type:
        stmt = stmt.where(Fact.fact_type == fact_type)
    return list(db.scalars(stmt.order_by(Fact.fact_type.asc(), Fact.key.asc())).all())


def get_fact_history(
    db: Session,
    entity: EntityRef,
    fact_type: str | None = None,
    key: str | None = None,
) -> list[Fact]:
    stmt = select(Fact).where(Fact.entity_kind == entity.kind.value, Fact.entity_id == entity.id)
    if fact_type:
        stmt = stmt.where(Fact.fact_type == fact_type)
    if key:
        stmt = stmt.where(Fact.key == key)
    stmt = stmt.order_by(
        Fact.valid_from.desc(),
        Fact.valid_until.is_(None).desc(),
        Fact.created_at.desc(),
    )
    return list(db.scalars(stmt).all())


def reassign_facts(db: Session, old: EntityRef, new: EntityRef) -> dict[str, int]:
    """Move ``old``'s facts onto ``new`` without committing.

    Where both carry a current fact for the same key, the one on ``new`` stays
    current and the moved copy is closed.
    """
    moved = 0
    closed = 0
    now = utcnow()
    facts = db.scalars(select(Fact).where(Fact.entity_kind == old.kind.value, Fact.entity_id == old.id)).all()
    for fact in facts:
        if fact.valid_until is None:
            survivor = db.scalar(_current_stmt(new, fact.fact_type, fact.key))
            if survivor is not None:
                fact.valid_until = now
                fact.replaced_by_id = survivor.id
                closed += 1
        fact.entity_kind = new.kind.value
        fact.entity_id = new.id
        db.flush()
        moved += 1
    return {"moved": moved, "closed": closed}
