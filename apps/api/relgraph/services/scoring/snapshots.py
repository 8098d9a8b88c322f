from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.core.config import get_settings
from relgraph.core.errors import NotFoundError
from relgraph.db.pg.models import (
    Interaction,
    InteractionParticipant,
    Person,
    Relationship,
    RelationshipStrengthSnapshot,
    utcnow,
)
from relgraph.services.graph.types import NodeKind, RelationshipType
from relgraph.services.scoring.relationship_strength import (
    InteractionSignal,
    StrengthParams,
    StrengthResult,
    as_utc,
    compute_relationship_strength,
    recommendation_for,
)
from relgraph.services.scoring.summary import summarize_relationship

logger = logging.getLogger(__name__)


@dataclass
class StrengthReport:
    person_id: str
    strength: float | None
    cached: bool
    recency: float | None = None
    frequency: float | None = None
    engagement: float | None = None
    reciprocity: float | None = None
    trend: str | None = None
    interaction_count: int = 0
    last_interaction_at: datetime | None = None
    ai_summary: str | None = None
    ai_recommendation: str | None = None
    calculated_at: datetime | None = None


def _live_person(db: Session, person_id: str) -> Person:
    person = db.get(Person, person_id)
    if person is None or person.deleted_at is not None:
        raise NotFoundError("Person not found", details={"person_id": person_id})
    return person


def linked_interactions(db: Session, person_id: str) -> list[Interaction]:
    return list(
        db.scalars(
            select(Interaction)
            .where(
                Interaction.interaction_id.in_(
                    select(InteractionParticipant.interaction_id).where(InteractionParticipant.person_id == person_id)
                )
            )
            .order_by(Interaction.timestamp.desc())
        ).all()
    )


def _signals(interactions: list[Interaction]) -> list[InteractionSignal]:
    return [
        InteractionSignal(
            timestamp=as_utc(item.timestamp),
            direction=item.direction,
            thread_id=item.thread_id or item.external_id,
            type=item.type,
        )
        for item in interactions
    ]


def compute_live_strength(db: Session, person_id: str, *, now: datetime | None = None) -> StrengthResult | None:
    interactions = linked_interactions(db, person_id)
    return compute_relationship_strength(
        _signals(interactions),
        now=now,
        params=StrengthParams.from_settings(get_settings()),
    )


def _report_from_snapshot(snapshot: RelationshipStrengthSnapshot) -> StrengthReport:
    return StrengthReport(
        person_id=snapshot.person_id,
        strength=snapshot.strength,
        cached=True,
        recency=snapshot.recency_score,
        frequency=snapshot.frequency_score,
        engagement=snapshot.engagement_score,
        reciprocity=snapshot.reciprocity_score,
        trend=snapshot.trend,
        interaction_count=snapshot.interaction_count,
        last_interaction_at=as_utc(snapshot.last_interaction_at) if snapshot.last_interaction_at else None,
        ai_summary=snapshot.ai_summary,
        ai_recommendation=snapshot.ai_recommendation,
        calculated_at=as_utc(snapshot.calculated_at),
    )


def _report_from_result(person_id: str, result: StrengthResult, *, cached: bool) -> StrengthReport:
    return StrengthReport(
        person_id=person_id,
        strength=result.strength,
        cached=cached,
        recency=result.factors.recency,
        frequency=result.factors.frequency,
        engagement=result.factors.engagement,
        reciprocity=result.factors.reciprocity,
        trend=result.trend,
        interaction_count=result.interaction_count,
        last_interaction_at=result.last_interaction_at,
        ai_recommendation=recommendation_for(result.strength, result.trend, result.factors.reciprocity),
    )


def _apply(snapshot: RelationshipStrengthSnapshot, result: StrengthResult, ai_summary: str | None) -> None:
    snapshot.strength = result.strength
    snapshot.recency_score = result.factors.recency
    snapshot.frequency_score = result.factors.frequency
    snapshot.engagement_score = result.factors.engagement
    snapshot.reciprocity_score = result.factors.reciprocity
    snapshot.trend = result.trend
    snapshot.interaction_count = result.interaction_count
    snapshot.last_interaction_at = result.last_interaction_at
    snapshot.ai_summary = ai_summary
    snapshot.ai_recommendation = recommendation_for(result.strength, result.trend, result.factors.reciprocity)
    snapshot.calculated_at = utcnow()


def persist_strength_snapshot(
    db: Session,
    person_id: str,
    result: StrengthResult,
    *,
    ai_summary: str | None = None,
) -> RelationshipStrengthSnapshot:
    """Upsert the cached snapshot; concurrent writers settle on whichever commits last."""
    snapshot = db.get(RelationshipStrengthSnapshot, person_id)
    if snapshot is None:
        snapshot = RelationshipStrengthSnapshot(person_id=person_id)
        _apply(snapshot, result, ai_summary)
        db.add(snapshot)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            snapshot = db.get(RelationshipStrengthSnapshot, person_id)
            if snapshot is None:
                raise
            _apply(snapshot, result, ai_summary)
            db.commit()
    else:
        _apply(snapshot, result, ai_summary)
        db.commit()
    db.refresh(snapshot)
    return snapshot


def _write_edge_strength(db: Session, person_id: str, strength: float) -> int:
    edges = db.scalars(
        select(Relationship).where(
            Relationship.relationship_type == RelationshipType.COMMUNICATES_WITH.value,
            Relationship.target_kind == NodeKind.PERSON.value,
            Relationship.target_id == person_id,
            Relationship.is_active.is_(True),
        )
    ).all()
    for edge in edges:
        edge.strength = strength
        edge.updated_at = utcnow()
    if edges:
        db.commit()
    return len(edges)


def refresh_relationship_strength(
    db: Session,
    person_id: str,
    *,
    now: datetime | None = None,
) -> StrengthReport:
    """Recompute from interactions and overwrite the snapshot. No data leaves any snapshot untouched."""
    person = _live_person(db, person_id)
    interactions = linked_interactions(db, person_id)
    result = compute_relationship_strength(
        _signals(interactions),
        now=now,
        params=StrengthParams.from_settings(get_settings()),
    )
    if result is None:
        return StrengthReport(person_id=person_id, strength=None, cached=False)

    ai_summary = summarize_relationship(person, result, interactions)
    snapshot = persist_strength_snapshot(db, person_id, result, ai_summary=ai_summary)
    _write_edge_strength(db, person_id, result.strength)
    report = _report_from_snapshot(snapshot)
    report.cached = False
    return report


def get_relationship_strength(db: Session, person_id: str) -> StrengthReport:
    """Snapshot first (``cached=True``); otherwise a live computation (``cached=False``)."""
    _live_person(db, person_id)
    snapshot = db.get(RelationshipStrengthSnapshot, person_id)
    if snapshot is not None:
        return _report_from_snapshot(snapshot)

    result = compute_live_strength(db, person_id)
    if result is None:
        return StrengthReport(person_id=person_id, strength=None, cached=False)
    report = _report_from_result(person_id, result, cached=False)
    try:
        stored = persist_strength_snapshot(db, person_id, result)
        report.calculated_at = as_utc(stored.calculated_at)
    except Exception:
        db.rollback()
        logger.exception("strength_snapshot_persist_failed", extra={"person_id": person_id})
    return report


def refresh_all_relationship_strengths(db: Session) -> dict[str, int]:
    person_ids = db.scalars(
        select(InteractionParticipant.person_id)
        .join(Person, Person.id == InteractionParticipant.person_id)
        .where(Person.deleted_at.is_(None))
        .distinct()
    ).all()
    updated = 0
    skipped = 0
    errors = 0
    for person_id in person_ids:
        try:
            report = refresh_relationship_strength(db, person_id)
        except Exception:
            db.rollback()
            errors += 1
            logger.exception("strength_refresh_failed", extra={"person_id": person_id})
            continue
        if report.strength is None:
            skipped += 1
        else:
            updated += 1
    logger.info("strength_refresh_all_completed", extra={"updated": updated, "skipped": skipped, "errors": errors})
    return {"updated": updated, "skipped": skipped, "errors": errors}
