from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.core.config import get_settings
from relgraph.db.pg.models import Connection, Interaction, InteractionParticipant, Organization, Person
from relgraph.services.graph.relationships import get_active_relationship, upsert_relationship
from relgraph.services.graph.types import EntityRef, RelationshipType
from relgraph.services.identity.internal_users import is_owner_side
from relgraph.services.identity.resolver import (
    PersonInput,
    find_organization,
    resolve_or_create_organization,
    resolve_or_create_person,
)
from relgraph.services.matching.domains import sender_domain
from relgraph.services.normalization.keys import name_from_email, normalize_email, split_display_name
from relgraph.services.sync.types import ItemParticipant, ProviderItem

logger = logging.getLogger(__name__)

EMPLOYMENT_EDGE_CONFIDENCE = 0.6


def participants_json(item: ProviderItem) -> dict[str, list[dict[str, str | None]]]:
    grouped: dict[str, list[dict[str, str | None]]] = {"from": [], "to": [], "cc": [], "attendees": []}
    for participant in item.participants:
        bucket = "attendees" if participant.role in {"attendee", "owner"} else participant.role
        grouped[bucket].append({"email": participant.email, "name": participant.name})
    return grouped


def item_direction(item: ProviderItem, owner_emails: set[str]) -> str:
    if item.item_type == "meeting":
        return "na"
    senders = [p.email for p in item.participants if p.role == "from"]
    if any(is_owner_side(email, owner_emails) for email in senders):
        return "out"
    return "in"


def person_input_for(participant: ItemParticipant) -> PersonInput:
    first_name, last_name = split_display_name(participant.name)
    if not first_name or "@" in first_name:
        first_name, last_name = name_from_email(participant.email)
    return PersonInput(first_name=first_name, last_name=last_name, email=participant.email)


def resolve_owner(db: Session, connection: Connection) -> Person | None:
    email = normalize_email(connection.account_email)
    if not email:
        return None
    first_name, last_name = name_from_email(email)
    resolution = resolve_or_create_person(
        db,
        PersonInput(first_name=first_name, last_name=last_name, email=email, is_internal=True),
        source_type=f"{connection.provider}_sync",
        source_id=connection.id,
    )
    return resolution.person


def _link_participant(db: Session, interaction: Interaction, person: Person, role: str, email: str | None) -> None:
    exists = db.scalar(
        select(InteractionParticipant.id).where(
            InteractionParticipant.interaction_id == interaction.interaction_id,
            InteractionParticipant.person_id == person.id,
            InteractionParticipant.role == role,
        )
    )
    if exists is not None:
        return
    db.add(
        InteractionParticipant(
            interaction_id=interaction.interaction_id,
            person_id=person.id,
            role=role,
            email_address=email,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()


def _organization_for(db: Session, email: str | None) -> Organization | None:
    domain = sender_domain(email)
    if domain is None:
        return None
    organization, _ = find_organization(db, None, domain)
    if organization is not None or not get_settings().sync_create_organizations:
        return organization
    label = domain.split(".", 1)[0]
    return resolve_or_create_organization(db, label.capitalize(), domain).organization


def _communication_stats(db: Session, person_id: str):
    return db.execute(
        select(func.count(func.distinct(Interaction.interaction_id)), func.max(Interaction.timestamp))
        .join(InteractionParticipant, InteractionParticipant.interaction_id == Interaction.interaction_id)
        .where(InteractionParticipant.person_id == person_id)
    ).one()


def link_item(
    db: Session,
    *,
    connection: Connection,
    item: ProviderItem,
    interaction: Interaction,
    owner: Person | None,
    owner_emails: set[str],
) -> set[str]:
    """Resolve each external participant, link it to the interaction and maintain graph edges.

    Returns the ids of the contacts touched by this item.
    """
    source_of_truth = connection.provider
    touched: set[str] = set()
    for participant in item.participants:
        email = normalize_email(participant.email)
        if email is None or participant.role == "owner" or is_owner_side(email, owner_emails):
            continue
        person = resolve_or_create_person(
            db,
            person_input_for(participant),
            source_type=source_of_truth,
            source_id=item.external_id,
        ).person
        _link_participant(db, interaction, person, participant.role, email)
        touched.add(person.id)

        organization = _organization_for(db, email)
        if organization is not None:
            upsert_relationship(
                db,
                source=EntityRef.person(person.id),
                target=EntityRef.organization(organization.id),
                relationship_type=RelationshipType.WORKS_AT,
                confidence=EMPLOYMENT_EDGE_CONFIDENCE,
                source_of_truth=source_of_truth,
            )

    if owner is not None:
        _link_participant(db, interaction, owner, "owner", owner.email)
        for person_id in sorted(touched):
            if person_id == owner.id:
                continue
            count, last_at = _communication_stats(db, person_id)
            existing = get_active_relationship(
                db, EntityRef.person(owner.id), EntityRef.person(person_id), RelationshipType.COMMUNICATES_WITH
            )
            channels = set((existing.properties_json or {}).get("channels") or []) if existing else set()
            channels.add("meeting" if item.item_type == "meeting" else "email")
            upsert_relationship(
                db,
                source=EntityRef.person(owner.id),
                target=EntityRef.person(person_id),
                relationship_type=RelationshipType.COMMUNICATES_WITH,
                properties={
                    "channels": sorted(channels),
                    "interaction_count": int(count or 0),
                    "last_interaction_at": last_at,
                },
                source_of_truth=source_of_truth,
                external_ref=connection.id,
            )
    return touched
