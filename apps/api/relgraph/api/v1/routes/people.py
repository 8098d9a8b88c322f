from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from relgraph.api.v1.deps import get_db
from relgraph.api.v1.schemas import (
    DuplicateCandidateOut,
    DuplicateListResponse,
    EnrichmentResponse,
    MergePeopleRequest,
    PersonOut,
    PersonResolveRequest,
    PersonResolveResponse,
    StrengthResponse,
)
from relgraph.services.enrichment.provider import enrich_person
from relgraph.services.identity.merge import find_duplicate_people, merge_people
from relgraph.services.identity.resolver import PersonInput, resolve_or_create_person
from relgraph.services.scoring.snapshots import get_relationship_strength, refresh_relationship_strength

router = APIRouter(prefix="/people", tags=["people"])


@router.post("/resolve", response_model=PersonResolveResponse)
def resolve_person(payload: PersonResolveRequest, db: Session = Depends(get_db)) -> PersonResolveResponse:
    data = PersonInput(
        **payload.model_dump(exclude={"dedupe_by_email", "source_type", "source_id"}),
    )
    resolution = resolve_or_create_person(
        db,
        data,
        dedupe_by_email=payload.dedupe_by_email,
        source_type=payload.source_type,
        source_id=payload.source_id,
    )
    return PersonResolveResponse(
        person=PersonOut.model_validate(resolution.person),
        is_new=resolution.is_new,
        was_updated=resolution.was_updated,
        updated_fields=resolution.updated_fields,
    )


@router.get("/duplicates", response_model=DuplicateListResponse)
def get_duplicate_people(
    name: str,
    threshold: float = Query(default=0.85, ge=0.0, le=1.0),
    db: Session = Depends(get_db),
) -> DuplicateListResponse:
    candidates = find_duplicate_people(db, name, threshold=threshold)
    return DuplicateListResponse(items=[DuplicateCandidateOut(**asdict(item)) for item in candidates])


@router.post("/merge", response_model=PersonOut)
def merge_person(payload: MergePeopleRequest, db: Session = Depends(get_db)) -> PersonOut:
    person = merge_people(db, payload.primary_id, payload.duplicate_id)
    return PersonOut.model_validate(person)


@router.get("/{person_id}/strength", response_model=StrengthResponse)
def get_person_strength(person_id: str, db: Session = Depends(get_db)) -> StrengthResponse:
    return StrengthResponse(**asdict(get_relationship_strength(db, person_id)))


@router.post("/{person_id}/strength/refresh", response_model=StrengthResponse)
def refresh_person_strength(person_id: str, db: Session = Depends(get_db)) -> StrengthResponse:
    return StrengthResponse(**asdict(refresh_relationship_strength(db, person_id)))


@router.post("/{person_id}/enrich", response_model=EnrichmentResponse)
def enrich(person_id: str, db: Session = Depends(get_db)) -> EnrichmentResponse:
    return EnrichmentResponse(**asdict(enrich_person(db, person_id)))
