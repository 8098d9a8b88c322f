from __future__ import annotations

import logging
from typing import Any, Literal

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.core.errors import NotFoundError, ValidationError
from relgraph.db.pg.models import Organization, Person, Relationship, utcnow
from relgraph.services.graph.types import (
    EntityRef,
    NodeKind,
    RelationshipType,
    build_properties,
    merge_properties,
    parse_node_kind,
    parse_relationship_type,
    validate_endpoints,
)

logger = logging.getLogger(__name__)

Direction = Literal["out", "in", "both"]


def ensure_entity(db: Session, ref: EntityRef) -> None:
    if ref.kind == NodeKind.PERSON:
        person = db.get(Person, ref.id)
        found = person is not None and person.deleted_at is None
    else:
        found = db.get(Organization, ref.id) is not None
    if not found:
        raise NotFoundError(f"{ref.kind.value.capitalize()} not found", details={"entity_id": ref.id})


def _check_unit_interval(name: str, value: float | None) -> None:
    if value is None:
        return
    if not 0.0 <= float(value) <= 1.0:
        raise ValidationError(f"{name} must be within [0, 1]", details={name: value})


def _active_edge_stmt(source: EntityRef, target: EntityRef, relationship_type: RelationshipType):
    return select(Relationship).where(
        Relationship.source_kind == source.kind.value,
        Relationship.source_id == source.id,
        Relationship.target_kind == target.kind.value,
        Relationship.target_id == target.id,
        Relationship.relationship_type == relationship_type.value,
        Relationship.is_active.is_(True),
    )


def get_active_relationship(
    db: Session,
    source: EntityRef,
    target: EntityRef,
    relationship_type: str | RelationshipType,
) -> Relationship | None:
    return db.scalar(_active_edge_stmt(source, target, parse_relationship_type(relationship_type)))


def _refine(
    edge: Relationship,
    rel_type: RelationshipType,
    properties: dict[str, Any] | None,
    strength: float | None,
    confidence: float | None,
    external_ref: str | None,
) -> None:
    if properties:
        edge.properties_json = merge_properties(rel_type, edge.properties_json, properties)
    if strength is not None:
        edge.strength = float(strength)
    if confidence is not None:
        edge.confidence = float(confidence)
    if external_ref and not edge.external_ref:
        edge.external_ref = external_ref
    edge.updated_at = utcnow()


def upsert_relationship(
    db: Session,
    *,
    source: EntityRef,
    target: EntityRef,
    relationship_type: str | RelationshipType,
    properties: dict[str, Any] | None = None,
    strength: float | None = None,
    confidence: float | None = None,
    source_of_truth: str = "manual",
    external_ref: str | None = None,
) -> tuple[Relationship, bool]:
    """Refine the active edge for (source, target, type) in place, or open a new one."""
    rel_type = parse_relationship_type(relationship_type)
    validate_endpoints(rel_type, source, target)
    ensure_entity(db, source)
    ensure_entity(db, target)
    _check_unit_interval("strength", strength)
    _check_unit_interval("confidence", confidence)

    existing = db.scalar(_active_edge_stmt(source, target, rel_type))
    if existing is not None:
        _refine(existing, rel_type, properties, strength, confidence, external_ref)
        db.commit()
        db.refresh(existing)
        return existing, False

    now = utcnow()
    edge = Relationship(
        source_kind=source.kind.value,
        source_id=source.id,
        target_kind=target.kind.value,
        target_id=target.id,
        relationship_type=rel_type.value,
        properties_json=build_properties(rel_type, properties).model_dump(mode="json", exclude_none=True),
        strength=0.5 if strength is None else float(strength),
        confidence=1.0 if confidence is None else float(confidence),
        source_of_truth=source_of_truth,
        external_ref=external_ref,
        is_active=True,
        valid_from=now,
        created_at=now,
        updated_at=now,
    )
    db.add(edge)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = db.scalar(_active_edge_stmt(source, target, rel_type))
        if winner is None:
            raise
        logger.info(
            "relationship_create_race_resolved",
            extra={"relationship_id": winner.id, "relationship_type": rel_type.value},
        )
        _refine(winner, rel_type, properties, strength, confidence, external_ref)
        db.commit()
        db.refresh(winner)
        return winner, False
    db.refresh(edge)
    return edge, True


def deactivate_relationship(db: Session, edge_id: str, *, commit: bool = True) -> Relationship:
    edge = db.get(Relationship, edge_id)
    if edge is None:
        raise NotFoundError("Relationship not found", details={"relationship_id": edge_id})
    if edge.is_active:
        now = utcnow()
        edge.is_active = False
        edge.valid_until = now
        edge.updated_at = now
        if commit:
            db.commit()
            db.refresh(edge)
    return edge


def query_relationships(
    db: Session,
    *,
    node: EntityRef | None = None,
    direction: Direction = "both",
    node_kind: str | None = None,
    relationship_type: str | RelationshipType | None = None,
    min_strength: float | None = None,
    include_inactive: bool = False,
    limit: int = 100,
) -> list[Relationship]:
    """Edges touching ``node`` (or any node of ``node_kind``), strongest and most recent first."""
    stmt = select(Relationship)
    if node is not None:
        outgoing = and_(Relationship.source_kind == node.kind.value, Relationship.source_id == node.id)
        incoming = and_(Relationship.target_kind == node.kind.value, Relationship.target_id == node.id)
        if direction == "out":
            stmt = stmt.where(outgoing)
        elif direction == "in":
            stmt = stmt.where(incoming)
        else:
            stmt = stmt.where(or_(outgoing, incoming))
    elif node_kind:
        kind = parse_node_kind(node_kind).value
        stmt = stmt.where(or_(Relationship.source_kind == kind, Relationship.target_kind == kind))
    if relationship_type is not None:
        stmt = stmt.where(Relationship.relationship_type == parse_relationship_type(relationship_type).value)
    if min_strength is not None:
        stmt = stmt.where(Relationship.strength >= min_strength)
    if not include_inactive:
        stmt = stmt.where(Relationship.is_active.is_(True))
    stmt = stmt.order_by(
        Relationship.strength.desc(),
        Relationship.updated_at.desc(),
        Relationship.id.asc(),
    ).limit(max(1, min(limit, 1000)))
    return list(db.scalars(stmt).all())


def reassign_endpoint(db: Session, old: EntityRef, new: EntityRef) -> dict[str, int]:
    """Point every edge touching ``old`` at ``new`` without committing.

    An active edge that would collide with an active edge already on ``new`` is
    deactivated instead of moved; edges that would become self-loops are deactivated too.
    """
    moved = 0
    deactivated = 0
    edges = db.scalars(
        select(Relationship).where(
            or_(
                and_(Relationship.source_kind == old.kind.value, Relationship.source_id == old.id),
                and_(Relationship.target_kind == old.kind.value, Relationship.target_id == old.id),
            )
        )
    ).all()
    for edge in edges:
        source = EntityRef.parse(edge.source_kind, edge.source_id)
        target = EntityRef.parse(edge.target_kind, edge.target_id)
        source = new if source == old else source
        target = new if target == old else target
        if edge.is_active:
            collision = None
            if source != target:
                collision = db.scalar(
                    _active_edge_stmt(source, target, RelationshipType(edge.relationship_type)).where(
                        Relationship.id != edge.id
                    )
                )
            if source == target or collision is not None:
                deactivate_relationship(db, edge.id, commit=False)
                deactivated += 1
                continue
        edge.source_kind, edge.source_id = source.kind.value, source.id
        edge.target_kind, edge.target_id = target.kind.value, target.id
        edge.updated_at = utcnow()
        db.flush()
        moved += 1
    return {"moved": moved, "deactivated": deactivated}
