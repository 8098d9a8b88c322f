from __future__ import annotations

import pytest

from relgraph.core.errors import NotFoundError
from relgraph.db.pg.base import Base
from relgraph.main import app
from relgraph.services.enrichment.provider import EnrichmentRecord, enrich_person, record_from_payload
from relgraph.services.facts.store import get_current_fact
from relgraph.services.graph.relationships import get_active_relationship, upsert_relationship
from relgraph.services.graph.types import EntityRef, RelationshipType
from relgraph.services.identity.resolver import (
    PersonInput,
    resolve_or_create_organization,
    resolve_or_create_person,
)

database = app.state.database


def reset_db() -> None:
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)


class StubProvider:
    def __init__(self, record: EnrichmentRecord | None) -> None:
        self.record = record
        self.calls: list[tuple[str, str | None]] = []

    def lookup(self, name: str, organization_hint: str | None = None) -> EnrichmentRecord | None:
        self.calls.append((name, organization_hint))
        return self.record


def _employee(db):  # noqa: ANN001, ANN202
    person = resolve_or_create_person(
        db, PersonInput(first_name="Dana", last_name="Scully", email="dana@globex.com", city="Boston")
    ).person
    org = resolve_or_create_organization(db, "Globex", "globex.com").organization
    upsert_relationship(
        db,
        source=EntityRef.person(person.id),
        target=EntityRef.organization(org.id),
        relationship_type=RelationshipType.WORKS_AT,
    )
    return person, org


def test_enrichment_fills_only_missing_fields_with_lower_confidence() -> None:
    reset_db()
    db = database.session()
    try:
        person, org = _employee(db)
        provider = StubProvider(
            EnrichmentRecord(
                profile_url="https://www.linkedin.com/in/dscully",
                title="VP Research",
                city="Washington",
                country="US",
                handle="dscully",
            )
        )

        outcome = enrich_person(db, person.id, provider)

        assert provider.calls == [("Dana Scully", "Globex")]
        assert outcome.enriched is True
        assert outcome.filled_fields == ["country", "linkedin_url", "twitter_handle"]
        assert outcome.role_updated is True
        db.refresh(person)
        assert person.city == "Boston"
        assert person.twitter_handle == "@dscully"
        fact = get_current_fact(db, EntityRef.person(person.id), "profile", "country")
        assert fact.source_type == "web_enrichment"
        assert fact.confidence == 0.6
        edge = get_active_relationship(
            db, EntityRef.person(person.id), EntityRef.organization(org.id), RelationshipType.WORKS_AT
        )
        assert edge.properties_json["role"] == "VP Research"
    finally:
        db.close()


def test_existing_role_is_not_overwritten() -> None:
    reset_db()
    db = database.session()
    try:
        person, org = _employee(db)
        upsert_relationship(
            db,
            source=EntityRef.person(person.id),
            target=EntityRef.organization(org.id),
            relationship_type=RelationshipType.WORKS_AT,
            properties={"role": "Agent"},
        )

        outcome = enrich_person(db, person.id, StubProvider(EnrichmentRecord(title="VP Research")))

        assert outcome.role_updated is False
        assert outcome.enriched is False
    finally:
        db.close()


def test_enrichment_degrades_when_disabled_or_empty() -> None:
    reset_db()
    db = database.session()
    try:
        person, _ = _employee(db)

        assert enrich_person(db, person.id).reason == "enrichment_disabled"
        assert enrich_person(db, person.id, StubProvider(None)).reason == "no_result"
        with pytest.raises(NotFoundError):
            enrich_person(db, "missing-person", StubProvider(None))
    finally:
        db.close()


def test_record_from_payload_drops_placeholder_values() -> None:
    assert record_from_payload({"title": "unknown", "city": "null"}) is None
    record = record_from_payload({"profileUrl": " https://x.com/dana ", "country": "UK", "title": None})
    assert record == EnrichmentRecord(profile_url="https://x.com/dana", country="UK")
