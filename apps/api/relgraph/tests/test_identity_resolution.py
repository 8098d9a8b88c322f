from __future__ import annotations

import pytest
from sqlalchemy import func, select

from relgraph.core.errors import ConflictError, NotFoundError, ValidationError
from relgraph.db.pg.base import Base
from relgraph.db.pg.models import Fact, Organization, Person
from relgraph.main import app
from relgraph.services.facts.store import get_current_fact
from relgraph.services.graph.relationships import get_active_relationship, upsert_relationship
from relgraph.services.graph.types import EntityRef, RelationshipType
from relgraph.services.identity.merge import find_duplicate_organizations, find_duplicate_people, merge_people
from relgraph.services.identity.resolver import PersonInput, resolve_or_create_organization, resolve_or_create_person

database = app.state.database


def reset_db() -> None:
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)


def test_resolving_same_email_twice_returns_one_person() -> None:
    reset_db()
    db = database.session()
    try:
        first = resolve_or_create_person(db, PersonInput(first_name="Jane", last_name="Doe", email="Jane@Acme.com"))
        second = resolve_or_create_person(db, PersonInput(first_name="Janet", email="  jane@acme.COM "))

        assert first.is_new is True
        assert second.is_new is False
        assert second.person.id == first.person.id
        assert second.person.first_name == "Jane"
        assert db.scalar(select(func.count()).select_from(Person).where(Person.email == "jane@acme.com")) == 1
    finally:
        db.close()


def test_second_resolution_fills_only_missing_fields_with_provenance() -> None:
    reset_db()
    db = database.session()
    try:
        created = resolve_or_create_person(db, PersonInput(first_name="Jane", email="jane@acme.com", city="Boston"))
        updated = resolve_or_create_person(
            db,
            PersonInput(first_name="Jane", last_name="Doe", email="jane@acme.com", city="Paris", country="US"),
            source_type="gmail",
            source_id="msg-1",
        )

        assert updated.was_updated is True
        assert updated.updated_fields == ["country", "last_name"]
        assert updated.person.city == "Boston"
        assert updated.person.full_name == "Jane Doe"
        fact = get_current_fact(db, EntityRef.person(created.person.id), "profile", "country")
        assert fact is not None and fact.source_type == "gmail" and fact.source_id == "msg-1"
    finally:
        db.close()


def test_person_validation_errors() -> None:
    reset_db()
    db = database.session()
    try:
        with pytest.raises(ValidationError):
            resolve_or_create_person(db, PersonInput(first_name="  "))
        with pytest.raises(ValidationError):
            resolve_or_create_person(db, PersonInput(first_name="Jane", email="jane-at-acme"))
        with pytest.raises(ValidationError):
            resolve_or_create_person(db, PersonInput(first_name="Jane", privacy_tier="secret"))
    finally:
        db.close()


def test_people_without_email_are_not_deduplicated() -> None:
    reset_db()
    db = database.session()
    try:
        a = resolve_or_create_person(db, PersonInput(first_name="Sam"))
        b = resolve_or_create_person(db, PersonInput(first_name="Sam"))
        assert a.person.id != b.person.id
    finally:
        db.close()


def test_organization_resolution_by_canonical_key_and_domain() -> None:
    reset_db()
    db = database.session()
    try:
        created = resolve_or_create_organization(db, "Acme Labs, Inc.")
        by_key = resolve_or_create_organization(db, "ACME LABS", "https://www.acme.com")
        by_domain = resolve_or_create_organization(db, "Totally Different", "acme.com")

        assert created.is_new is True
        assert by_key.organization.id == created.organization.id
        assert by_key.matched_by == "canonical_key"
        assert by_key.was_updated is True
        assert by_key.organization.domain == "acme.com"
        assert by_domain.organization.id == created.organization.id
        assert by_domain.matched_by == "domain"
        assert db.scalar(select(func.count()).select_from(Organization)) == 1
    finally:
        db.close()


def test_strict_organization_creation_raises_conflict() -> None:
    reset_db()
    db = database.session()
    try:
        resolve_or_create_organization(db, "Globex Corporation")
        with pytest.raises(ConflictError):
            resolve_or_create_organization(db, "Globex", strict=True)
        with pytest.raises(ValidationError):
            resolve_or_create_organization(db, "Globex", organization_type="unicorn")
    finally:
        db.close()


def test_duplicate_candidates_by_name_similarity() -> None:
    reset_db()
    db = database.session()
    try:
        resolve_or_create_person(db, PersonInput(first_name="John", last_name="Smith"))
        resolve_or_create_person(db, PersonInput(first_name="Alice", last_name="Jones"))
        resolve_or_create_organization(db, "Initech")

        people = find_duplicate_people(db, "Jon Smith")
        organizations = find_duplicate_organizations(db, "Initech Inc")

        assert [candidate.name for candidate in people] == ["John Smith"]
        assert people[0].score == 0.9
        assert [candidate.name for candidate in organizations] == []
        assert [c.name for c in find_duplicate_organizations(db, "Inittech")] == ["Initech"]
    finally:
        db.close()


def test_merge_people_moves_facts_edges_and_soft_deletes_duplicate() -> None:
    reset_db()
    db = database.session()
    try:
        primary = resolve_or_create_person(db, PersonInput(first_name="John", last_name="Smith", city="Boston")).person
        duplicate = resolve_or_create_person(
            db, PersonInput(first_name="Jon", last_name="Smith", email="jon@acme.com", city="Paris", phone="555")
        ).person
        org = resolve_or_create_organization(db, "Acme", "acme.com").organization
        upsert_relationship(
            db,
            source=EntityRef.person(duplicate.id),
            target=EntityRef.organization(org.id),
            relationship_type="WORKS_AT",
            properties={"role": "CTO"},
        )

        merged = merge_people(db, primary.id, duplicate.id)

        assert merged.email == "jon@acme.com"
        assert merged.city == "Boston"
        assert merged.phone == "555"
        gone = db.get(Person, duplicate.id)
        assert gone.deleted_at is not None
        assert gone.merged_into_id == primary.id
        edge = get_active_relationship(
            db, EntityRef.person(primary.id), EntityRef.organization(org.id), RelationshipType.WORKS_AT
        )
        assert edge is not None and edge.properties_json["role"] == "CTO"
        current_city = get_current_fact(db, EntityRef.person(primary.id), "profile", "city")
        assert current_city is not None and current_city.value == "Boston"
        leftover = db.scalar(
            select(func.count())
            .select_from(Fact)
            .where(Fact.entity_id == duplicate.id)
        )
        assert leftover == 0
        with pytest.raises(NotFoundError):
            merge_people(db, primary.id, duplicate.id)
    finally:
        db.close()
