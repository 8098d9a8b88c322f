from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.core.errors import ConflictError, ValidationError
from relgraph.db.pg.models import Organization, Person, utcnow
from relgraph.services.facts.store import set_current_fact
from relgraph.services.graph.types import EntityRef
from relgraph.services.normalization.keys import extract_domain, normalize_email, organization_canonical_key

logger = logging.getLogger(__name__)

PRIVACY_TIERS = ("PUBLIC", "INTERNAL", "SENSITIVE", "HIGHLY_SENSITIVE")
ORGANIZATION_TYPES = ("PORTFOLIO", "PROSPECT", "CLIENT", "LP", "FUND", "SERVICE_PROVIDER", "OTHER")

# Person attributes that may be filled from a later source, never overwritten.
FILLABLE_PERSON_FIELDS = (
    "first_name",
    "last_name",
    "linkedin_url",
    "twitter_handle",
    "phone",
    "city",
    "country",
)


@dataclass
class PersonInput:
    first_name: str
    last_name: str = ""
    email: str | None = None
    linkedin_url: str | None = None
    twitter_handle: str | None = None
    phone: str | None = None
    city: str | None = None
    country: str | None = None
    privacy_tier: str | None = None
    is_internal: bool = False


@dataclass
class PersonResolution:
    person: Person
    is_new: bool
    was_updated: bool = False
    updated_fields: list[str] = field(default_factory=list)


@dataclass
class OrganizationResolution:
    organization: Organization
    is_new: bool
    was_updated: bool = False
    matched_by: str | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _full_name(first_name: str, last_name: str) -> str:
    return f"{first_name} {last_name}".strip()


def get_live_person_by_email(db: Session, email: str | None) -> Person | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.scalar(select(Person).where(Person.email == normalized, Person.deleted_at.is_(None)))


def _record_provenance(
    db: Session,
    person: Person,
    fields: dict[str, str],
    *,
    source_type: str,
    source_id: str | None,
    confidence: float,
) -> None:
    entity = EntityRef.person(person.id)
    for name, value in fields.items():
        set_current_fact(
            db,
            entity=entity,
            fact_type="profile",
            key=name,
            value=value,
            source_type=source_type,
            source_id=source_id,
            confidence=confidence,
            commit=False,
        )


def fill_missing_person_fields(
    db: Session,
    person: Person,
    values: dict[str, str | None],
    *,
    source_type: str,
    source_id: str | None = None,
    confidence: float = 1.0,
) -> list[str]:
    """Copy ``values`` onto ``person`` only where the stored field is null or empty; no commit."""
    filled: dict[str, str] = {}
    for name in FILLABLE_PERSON_FIELDS:
        incoming = _clean(values.get(name))
        if incoming is None:
            continue
        if _clean(getattr(person, name)) is None:
            setattr(person, name, incoming)
            filled[name] = incoming
    if not filled:
        return []
    if "first_name" in filled or "last_name" in filled:
        person.full_name = _full_name(person.first_name, person.last_name or "")
    person.updated_at = utcnow()
    db.flush()
    _record_provenance(db, person, filled, source_type=source_type, source_id=source_id, confidence=confidence)
    return sorted(filled)


def _person_values(data: PersonInput) -> dict[str, str | None]:
    return {name: getattr(data, name) for name in FILLABLE_PERSON_FIELDS}


def _merge_into_existing(
    db: Session,
    person: Person,
    data: PersonInput,
    *,
    source_type: str,
    source_id: str | None,
) -> PersonResolution:
    updated = fill_missing_person_fields(db, person, _person_values(data), source_type=source_type, source_id=source_id)
    if data.is_internal and not person.is_internal:
        person.is_internal = True
        updated.append("is_internal")
    db.commit()
    db.refresh(person)
    return PersonResolution(person=person, is_new=False, was_updated=bool(updated), updated_fields=updated)


def resolve_or_create_person(
    db: Session,
    data: PersonInput,
    *,
    dedupe_by_email: bool = True,
    source_type: str = "manual",
    source_id: str | None = None,
) -> PersonResolution:
    first_name = _clean(data.first_name)
    if not first_name:
        raise ValidationError("first_name is required")
    email = normalize_email(data.email)
    if _clean(data.email) and email is None:
        raise ValidationError("email is malformed", details={"email": data.email})
    privacy_tier = (data.privacy_tier or "INTERNAL").upper()
    if privacy_tier not in PRIVACY_TIERS:
        raise ValidationError(f"Unknown privacy tier: {data.privacy_tier}")

    if dedupe_by_email and email:
        existing = get_live_person_by_email(db, email)
        if existing is not None:
            return _merge_into_existing(db, existing, data, source_type=source_type, source_id=source_id)

    last_name = _clean(data.last_name) or ""
    now = utcnow()
    person = Person(
        first_name=first_name,
        last_name=last_name,
        full_name=_full_name(first_name, last_name),
        email=email,
        linkedin_url=_clean(data.linkedin_url),
        twitter_handle=_clean(data.twitter_handle),
        phone=_clean(data.phone),
        city=_clean(data.city),
        country=_clean(data.country),
        privacy_tier=privacy_tier,
        is_internal=data.is_internal,
        created_at=now,
        updated_at=now,
    )
    db.add(person)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        winner = get_live_person_by_email(db, email)
        if winner is None:
            raise
        logger.info("person_create_race_resolved", extra={"person_id": winner.id})
        return _merge_into_existing(db, winner, data, source_type=source_type, source_id=source_id)

    provided = {name: _clean(value) for name, value in _person_values(data).items() if _clean(value)}
    if email:
        provided["email"] = email
    _record_provenance(db, person, provided, source_type=source_type, source_id=source_id, confidence=1.0)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = get_live_person_by_email(db, email)
        if winner is None:
            raise
        return _merge_into_existing(db, winner, data, source_type=source_type, source_id=source_id)
    db.refresh(person)
    logger.info("person_created", extra={"person_id": person.id, "source_type": source_type})
    return PersonResolution(person=person, is_new=True)


def find_organization(db: Session, name: str | None, domain: str | None = None) -> tuple[Organization | None, str | None]:
    """Look up by domain first, then canonical key, then case-insensitive exact name."""
    normalized_domain = extract_domain(domain) if domain else None
    if normalized_domain:
        found = db.scalar(select(Organization).where(Organization.domain == normalized_domain))
        if found is not None:
            return found, "domain"
    clean_name = _clean(name)
    if not clean_name:
        return None, None
    key = organization_canonical_key(clean_name)
    if key:
        found = db.scalar(select(Organization).where(Organization.canonical_key == key))
        if found is not None:
            return found, "canonical_key"
    found = db.scalar(
        select(Organization).where(func.lower(Organization.name) == clean_name.lower()).order_by(Organization.created_at)
    )
    if found is not None:
        return found, "name"
    return None, None


def _fill_organization(
    db: Session,
    organization: Organization,
    *,
    domain: str | None,
    industry: str | None,
) -> bool:
    changed = False
    if domain and not organization.domain:
        taken = db.scalar(select(Organization.id).where(Organization.domain == domain, Organization.id != organization.id))
        if taken is None:
            organization.domain = domain
            changed = True
    if industry and not _clean(organization.industry):
        organization.industry = industry
        changed = True
    if changed:
        organization.updated_at = utcnow()
    return changed


def resolve_or_create_organization(
    db: Session,
    name: str,
    domain: str | None = None,
    *,
    organization_type: str | None = None,
    industry: str | None = None,
    strict: bool = False,
) -> OrganizationResolution:
    clean_name = _clean(name)
    if not clean_name:
        raise ValidationError("name is required")
    normalized_domain = None
    if _clean(domain):
        normalized_domain = extract_domain(domain)
        if normalized_domain is None:
            raise ValidationError("domain is malformed", details={"domain": domain})
    key = organization_canonical_key(clean_name)
    if not key:
        raise ValidationError("name has no usable characters", details={"name": name})
    org_type = (organization_type or "PROSPECT").upper()
    if org_type not in ORGANIZATION_TYPES:
        raise ValidationError(f"Unknown organization type: {organization_type}")

    existing, matched_by = find_organization(db, clean_name, normalized_domain)
    if existing is not None:
        if strict:
            raise ConflictError(
                "Organization already exists",
                details={"organization_id": existing.id, "matched_by": matched_by},
            )
        changed = _fill_organization(db, existing, domain=normalized_domain, industry=_clean(industry))
        if changed:
            db.commit()
            db.refresh(existing)
        return OrganizationResolution(existing, is_new=False, was_updated=changed, matched_by=matched_by)

    now = utcnow()
    organization = Organization(
        name=clean_name,
        canonical_key=key,
        domain=normalized_domain,
        organization_type=org_type,
        industry=_clean(industry),
        created_at=now,
        updated_at=now,
    )
    db.add(organization)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner, matched_by = find_organization(db, clean_name, normalized_domain)
        if winner is None:
            raise
        if strict:
            raise ConflictError(
                "Organization already exists",
                details={"organization_id": winner.id, "matched_by": matched_by},
            )
        logger.info("organization_create_race_resolved", extra={"organization_id": winner.id})
        return OrganizationResolution(winner, is_new=False, matched_by=matched_by)
    db.refresh(organization)
    logger.info("organization_created", extra={"organization_id": organization.id, "canonical_key": key})
    return OrganizationResolution(organization, is_new=True)
