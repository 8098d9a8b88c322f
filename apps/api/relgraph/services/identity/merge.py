from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from relgraph.core.errors import NotFoundError, ValidationError
from relgraph.db.pg.models import InteractionParticipant, Organization, Person, RelationshipStrengthSnapshot, utcnow
from relgraph.services.facts.store import reassign_facts
from relgraph.services.graph.relationships import reassign_endpoint
from relgraph.services.graph.types import EntityRef
from relgraph.services.identity.resolver import FILLABLE_PERSON_FIELDS, fill_missing_person_fields
from relgraph.services.normalization.similarity import similarity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateCandidate:
    entity_id: str
    name: str
    score: float
    email: str | None = None
    domain: str | None = None


def find_duplicate_people(
    db: Session,
    name: str,
    *,
    threshold: float = 0.85,
    exclude_id: str | None = None,
    limit: int = 20,
) -> list[DuplicateCandidate]:
    if not name or not name.strip():
        raise ValidationError("name is required")
    candidates: list[DuplicateCandidate] = []
    for person in db.scalars(select(Person).where(Person.deleted_at.is_(None))).all():
        if person.id == exclude_id:
            continue
        score = similarity(name, person.full_name)
        if score >= threshold:
            candidates.append(DuplicateCandidate(person.id, person.full_name, round(score, 4), email=person.email))
    candidates.sort(key=lambda item: (-item.score, item.name, item.entity_id))
    return candidates[:limit]


def find_duplicate_organizations(
    db: Session,
    name: str,
    *,
    threshold: float = 0.80,
    exclude_id: str | None = None,
    limit: int = 20,
) -> list[DuplicateCandidate]:
    if not name or not name.strip():
        raise ValidationError("name is required")
    candidates: list[DuplicateCandidate] = []
    for org in db.scalars(select(Organization)).all():
        if org.id == exclude_id:
            continue
        score = similarity(name, org.name)
        if score >= threshold:
            candidates.append(DuplicateCandidate(org.id, org.name, round(score, 4), domain=org.domain))
    candidates.sort(key=lambda item: (-item.score, item.name, item.entity_id))
    return candidates[:limit]


def _live_person(db: Session, person_id: str) -> Person:
    person = db.get(Person, person_id)
    if person is None or person.deleted_at is not None:
        raise NotFoundError("Person not found", details={"person_id": person_id})
    return person


def _reassign_participants(db: Session, duplicate_id: str, primary_id: str) -> int:
    rows = db.scalars(select(InteractionParticipant).where(InteractionParticipant.person_id == duplicate_id)).all()
    moved = 0
    for row in rows:
        clash = db.scalar(
            select(InteractionParticipant.id).where(
                InteractionParticipant.interaction_id == row.interaction_id,
                InteractionParticipant.person_id == primary_id,
                InteractionParticipant.role == row.role,
            )
        )
        if clash is not None:
            db.delete(row)
        else:
            row.person_id = primary_id
            moved += 1
        db.flush()
    return moved


def merge_people(db: Session, primary_id: str, duplicate_id: str, *, source_type: str = "user_merge") -> Person:
    """Fold ``duplicate`` into ``primary`` in one transaction and soft-delete the duplicate."""
    if primary_id == duplicate_id:
        raise ValidationError("Cannot merge a person into itself")
    primary = _live_person(db, primary_id)
    duplicate = _live_person(db, duplicate_id)

    try:
        now = utcnow()
        duplicate_email = duplicate.email
        duplicate.deleted_at = now
        duplicate.merged_into_id = primary.id
        duplicate.updated_at = now
        db.flush()

        fill_missing_person_fields(
            db,
            primary,
            {name: getattr(duplicate, name) for name in FILLABLE_PERSON_FIELDS},
            source_type=source_type,
            source_id=duplicate.id,
        )
        if not primary.email and duplicate_email:
            primary.email = duplicate_email
        if duplicate.is_internal:
            primary.is_internal = True
        primary.updated_at = now
        db.flush()

        old_ref, new_ref = EntityRef.person(duplicate.id), EntityRef.person(primary.id)
        fact_counts = reassign_facts(db, old_ref, new_ref)
        edge_counts = reassign_endpoint(db, old_ref, new_ref)
        participants_moved = _reassign_participants(db, duplicate.id, primary.id)
        db.execute(delete(RelationshipStrengthSnapshot).where(RelationshipStrengthSnapshot.person_id == duplicate.id))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(primary)
    logger.info(
        "people_merged",
        extra={
            "primary_id": primary.id,
            "duplicate_id": duplicate_id,
            "facts_moved": fact_counts["moved"],
            "edges_moved": edge_counts["moved"],
            "edges_deactivated": edge_counts["deactivated"],
            "participants_moved": participants_moved,
        },
    )
    return primary
