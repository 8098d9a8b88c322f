from __future__ import annotations

import pytest
from sqlalchemy import func, select

from relgraph.core.errors import NotFoundError, ValidationError
from relgraph.db.pg.base import Base
from relgraph.db.pg.models import Relationship
from relgraph.main import app
from relgraph.services.graph.relationships import deactivate_relationship, query_relationships, upsert_relationship
from relgraph.services.graph.types import EntityRef
from relgraph.services.identity.resolver import PersonInput, resolve_or_create_organization, resolve_or_create_person

database = app.state.database


def reset_db() -> None:
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)


def _people_and_org(db):  # noqa: ANN001
    jane = resolve_or_create_person(db, PersonInput(first_name="Jane", email="jane@acme.com")).person
    bob = resolve_or_create_person(db, PersonInput(first_name="Bob", email="bob@acme.com")).person
    acme = resolve_or_create_organization(db, "Acme", "acme.com").organization
    return EntityRef.person(jane.id), EntityRef.person(bob.id), EntityRef.organization(acme.id)


def _active_edges(db, source: EntityRef, target: EntityRef, rel_type: str) -> int:  # noqa: ANN001
    return db.scalar(
        select(func.count())
        .select_from(Relationship)
        .where(
            Relationship.source_id == source.id,
            Relationship.target_id == target.id,
            Relationship.relationship_type == rel_type,
            Relationship.is_active.is_(True),
        )
    )


def test_repeated_upserts_refine_a_single_active_edge() -> None:
    reset_db()
    db = database.session()
    try:
        jane, _, acme = _people_and_org(db)
        first, created = upsert_relationship(
            db, source=jane, target=acme, relationship_type="works_at", properties={"role": "Engineer"}
        )
        second, created_again = upsert_relationship(
            db,
            source=jane,
            target=acme,
            relationship_type="WORKS_AT",
            properties={"department": "R&D", "badge_color": "blue"},
            strength=0.8,
        )

        assert created is True
        assert created_again is False
        assert second.id == first.id
        assert second.strength == 0.8
        assert second.properties_json["role"] == "Engineer"
        assert second.properties_json["department"] == "R&D"
        assert second.properties_json["extra"] == {"badge_color": "blue"}
        assert _active_edges(db, jane, acme, "WORKS_AT") == 1
    finally:
        db.close()


def test_deactivated_edge_is_kept_and_a_new_one_can_open() -> None:
    reset_db()
    db = database.session()
    try:
        jane, bob, _ = _people_and_org(db)
        edge, _ = upsert_relationship(db, source=jane, target=bob, relationship_type="KNOWS")
        deactivate_relationship(db, edge.id)
        reopened, created = upsert_relationship(db, source=jane, target=bob, relationship_type="KNOWS")

        assert created is True
        assert reopened.id != edge.id
        assert _active_edges(db, jane, bob, "KNOWS") == 1
        history = query_relationships(db, node=jane, relationship_type="KNOWS", include_inactive=True)
        assert {item.id for item in history} == {edge.id, reopened.id}
    finally:
        db.close()


def test_endpoint_and_value_validation() -> None:
    reset_db()
    db = database.session()
    try:
        jane, bob, acme = _people_and_org(db)
        with pytest.raises(ValidationError):
            upsert_relationship(db, source=acme, target=jane, relationship_type="WORKS_AT")
        with pytest.raises(ValidationError):
            upsert_relationship(db, source=jane, target=jane, relationship_type="KNOWS")
        with pytest.raises(ValidationError):
            upsert_relationship(db, source=jane, target=bob, relationship_type="KNOWS", strength=1.2)
        with pytest.raises(ValidationError):
            upsert_relationship(db, source=jane, target=bob, relationship_type="FRIENDS_WITH")
        with pytest.raises(ValidationError):
            upsert_relationship(
                db, source=jane, target=bob, relationship_type="COMMUNICATES_WITH", properties={"interaction_count": -1}
            )
        with pytest.raises(NotFoundError):
            upsert_relationship(db, source=jane, target=EntityRef.person("missing"), relationship_type="KNOWS")
    finally:
        db.close()


def test_query_orders_by_strength_and_filters_direction() -> None:
    reset_db()
    db = database.session()
    try:
        jane, bob, acme = _people_and_org(db)
        upsert_relationship(db, source=jane, target=acme, relationship_type="WORKS_AT", strength=0.3)
        upsert_relationship(db, source=jane, target=bob, relationship_type="KNOWS", strength=0.9)
        upsert_relationship(db, source=bob, target=jane, relationship_type="INTRODUCED_BY", strength=0.5)

        both = query_relationships(db, node=jane)
        outgoing = query_relationships(db, node=jane, direction="out")
        strong = query_relationships(db, node=jane, min_strength=0.5)

        assert [edge.strength for edge in both] == [0.9, 0.5, 0.3]
        assert {edge.relationship_type for edge in outgoing} == {"WORKS_AT", "KNOWS"}
        assert len(strong) == 2
    finally:
        db.close()
