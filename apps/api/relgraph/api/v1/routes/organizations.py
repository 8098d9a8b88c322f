from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from relgraph.api.v1.deps import get_db
from relgraph.api.v1.schemas import (
    DomainCandidateOut,
    DomainCandidatesResponse,
    DomainMatchRequest,
    DuplicateCandidateOut,
    DuplicateListResponse,
    OrganizationOut,
    OrganizationResolveRequest,
    OrganizationResolveResponse,
)
from relgraph.services.identity.merge import find_duplicate_organizations
from relgraph.services.identity.resolver import resolve_or_create_organization
from relgraph.services.matching.apply import apply_domain_matches, load_sender_corpus
from relgraph.services.matching.domains import auto_applicable, find_domain_candidates

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.post("/resolve", response_model=OrganizationResolveResponse)
def resolve_organization(
    payload: OrganizationResolveRequest,
    db: Session = Depends(get_db),
) -> OrganizationResolveResponse:
    resolution = resolve_or_create_organization(
        db,
        payload.name,
        payload.domain,
        organization_type=payload.organization_type,
        industry=payload.industry,
        strict=payload.strict,
    )
    return OrganizationResolveResponse(
        organization=OrganizationOut.model_validate(resolution.organization),
        is_new=resolution.is_new,
        was_updated=resolution.was_updated,
        matched_by=resolution.matched_by,
    )


@router.get("/duplicates", response_model=DuplicateListResponse)
def get_duplicate_organizations(
    name: str,
    threshold: float = Query(default=0.80, ge=0.0, le=1.0),
    db: Session = Depends(get_db),
) -> DuplicateListResponse:
    candidates = find_duplicate_organizations(db, name, threshold=threshold)
    return DuplicateListResponse(items=[DuplicateCandidateOut(**asdict(item)) for item in candidates])


@router.get("/domain-candidates", response_model=DomainCandidatesResponse)
def get_domain_candidates(name: str = Query(min_length=1), db: Session = Depends(get_db)) -> DomainCandidatesResponse:
    candidates = find_domain_candidates(name, load_sender_corpus(db))
    best = auto_applicable(candidates)
    return DomainCandidatesResponse(
        name=name,
        candidates=[DomainCandidateOut(**asdict(item)) for item in candidates],
        auto_applicable=DomainCandidateOut(**asdict(best)) if best else None,
    )


@router.post("/domain-matches")
def run_domain_matches(payload: DomainMatchRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    return apply_domain_matches(db, dry_run=payload.dry_run, limit=payload.limit)
