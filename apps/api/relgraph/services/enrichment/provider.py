from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.orm import Session

from relgraph.core.config import get_settings
from relgraph.core.errors import NotFoundError
from relgraph.db.pg.models import Organization, Person
from relgraph.services.graph.relationships import query_relationships, upsert_relationship
from relgraph.services.graph.types import EntityRef, RelationshipType
from relgraph.services.identity.resolver import fill_missing_person_fields
from relgraph.services.llm.json_reply import complete_json, openai_api_key
from relgraph.services.prompts.registry import render_prompt

logger = logging.getLogger(__name__)

ENRICHMENT_CONFIDENCE = 0.6


@dataclass(frozen=True)
class EnrichmentRecord:
    profile_url: str | None = None
    title: str | None = None
    city: str | None = None
    country: str | None = None
    handle: str | None = None


@dataclass
class EnrichmentOutcome:
    person_id: str
    enriched: bool
    filled_fields: list[str] = field(default_factory=list)
    role_updated: bool = False
    reason: str | None = None


class WebEnrichmentProvider(Protocol):
    def lookup(self, name: str, organization_hint: str | None = None) -> EnrichmentRecord | None: ...


def _text(value) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "none", "unknown", "n/a"}:
        return None
    return text


def record_from_payload(payload: dict | None) -> EnrichmentRecord | None:
    if not payload:
        return None
    record = EnrichmentRecord(
        profile_url=_text(payload.get("profile_url") or payload.get("profileUrl")),
        title=_text(payload.get("title")),
        city=_text(payload.get("city")),
        country=_text(payload.get("country")),
        handle=_text(payload.get("handle")),
    )
    if record == EnrichmentRecord():
        return None
    return record


class OpenAIWebEnrichmentProvider:
    """Asks a chat model for public profile details; any failure reads as "nothing found"."""

    def __init__(self, *, model: str, api_key: str) -> None:
        self.model = model
        self.api_key = api_key

    @classmethod
    def from_settings(cls) -> OpenAIWebEnrichmentProvider | None:
        settings = get_settings()
        api_key = openai_api_key()
        if not settings.enrichment_enabled or not api_key:
            return None
        return cls(model=settings.llm_model, api_key=api_key)

    def lookup(self, name: str, organization_hint: str | None = None) -> EnrichmentRecord | None:
        try:
            payload = complete_json(
                model=self.model,
                api_key=self.api_key,
                system_prompt=render_prompt("person_enrichment_system"),
                user_prompt=render_prompt(
                    "person_enrichment_user",
                    name=name,
                    organization=organization_hint or "unknown",
                ),
            )
        except Exception:
            logger.exception("enrichment_lookup_failed", extra={"model": self.model})
            return None
        return record_from_payload(payload)


def _person_fields(record: EnrichmentRecord) -> dict[str, str | None]:
    values: dict[str, str | None] = {"city": record.city, "country": record.country}
    if record.profile_url and "linkedin.com" in record.profile_url.lower():
        values["linkedin_url"] = record.profile_url
    if record.handle:
        values["twitter_handle"] = record.handle if record.handle.startswith("@") else f"@{record.handle}"
    return values


def enrich_person(
    db: Session,
    person_id: str,
    provider: WebEnrichmentProvider | None = None,
) -> EnrichmentOutcome:
    person = db.get(Person, person_id)
    if person is None or person.deleted_at is not None:
        raise NotFoundError("Person not found", details={"person_id": person_id})

    provider = provider or OpenAIWebEnrichmentProvider.from_settings()
    if provider is None:
        return EnrichmentOutcome(person_id=person_id, enriched=False, reason="enrichment_disabled")

    employment = query_relationships(
        db,
        node=EntityRef.person(person.id),
        direction="out",
        relationship_type=RelationshipType.WORKS_AT,
        limit=1,
    )
    organization = db.get(Organization, employment[0].target_id) if employment else None

    try:
        record = provider.lookup(person.full_name, organization.name if organization else None)
    except Exception:
        logger.exception("enrichment_provider_failed", extra={"person_id": person_id})
        record = None
    if record is None:
        return EnrichmentOutcome(person_id=person_id, enriched=False, reason="no_result")

    filled = fill_missing_person_fields(
        db,
        person,
        _person_fields(record),
        source_type="web_enrichment",
        confidence=ENRICHMENT_CONFIDENCE,
    )
    db.commit()

    role_updated = False
    if record.title and organization is not None:
        current_role = (employment[0].properties_json or {}).get("role")
        if not current_role:
            upsert_relationship(
                db,
                source=EntityRef.person(person.id),
                target=EntityRef.organization(organization.id),
                relationship_type=RelationshipType.WORKS_AT,
                properties={"role": record.title},
                source_of_truth="web_enrichment",
            )
            role_updated = True

    logger.info(
        "person_enriched",
        extra={"person_id": person_id, "filled": ",".join(filled), "role_updated": role_updated},
    )
    return EnrichmentOutcome(
        person_id=person_id,
        enriched=bool(filled) or role_updated,
        filled_fields=filled,
        role_updated=role_updated,
    )
