from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from relgraph.api.v1.deps import get_db
from relgraph.api.v1.schemas import (
    RelationshipListResponse,
    RelationshipOut,
    RelationshipWriteRequest,
    RelationshipWriteResponse,
)
from relgraph.services.graph.relationships import deactivate_relationship, query_relationships, upsert_relationship
from relgraph.services.graph.types import EntityRef

router = APIRouter(prefix="/relationships", tags=["relationships"])


@router.post("", response_model=RelationshipWriteResponse)
def write_relationship(payload: RelationshipWriteRequest, db: Session = Depends(get_db)) -> RelationshipWriteResponse:
    edge, created = upsert_relationship(
        db,
        source=EntityRef.parse(payload.source_kind, payload.source_id),
        target=EntityRef.parse(payload.target_kind, payload.target_id),
        relationship_type=payload.relationship_type,
        properties=payload.properties,
        strength=payload.strength,
        confidence=payload.confidence,
        source_of_truth=payload.source_of_truth,
        external_ref=payload.external_ref,
    )
    return RelationshipWriteResponse(relationship=RelationshipOut.model_validate(edge), created=created)


@router.get("", response_model=RelationshipListResponse)
def list_relationships(
    node_kind: str | None = None,
    node_id: str | None = None,
    direction: Literal["out", "in", "both"] = "both",
    relationship_type: str | None = None,
    min_strength: float | None = Query(default=None, ge=0.0, le=1.0),
    include_inactive: bool = False,
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
) -> RelationshipListResponse:
    node = EntityRef.parse(node_kind, node_id) if node_kind and node_id else None
    edges = query_relationships(
        db,
        node=node,
        direction=direction,
        node_kind=node_kind if node is None else None,
        relationship_type=relationship_type,
        min_strength=min_strength,
        include_inactive=include_inactive,
        limit=limit,
    )
    return RelationshipListResponse(relationships=[RelationshipOut.model_validate(edge) for edge in edges])


@router.post("/{relationship_id}/deactivate", response_model=RelationshipOut)
def deactivate(relationship_id: str, db: Session = Depends(get_db)) -> RelationshipOut:
    return RelationshipOut.model_validate(deactivate_relationship(db, relationship_id))
