from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from relgraph.api.v1.deps import get_db
from relgraph.api.v1.schemas import FactListResponse, FactOut, FactWriteRequest, FactWriteResponse
from relgraph.services.facts.conflicts import record_fact
from relgraph.services.facts.store import get_current_facts, get_fact_history
from relgraph.services.graph.relationships import ensure_entity
from relgraph.services.graph.types import EntityRef

router = APIRouter(prefix="/facts", tags=["facts"])


@router.post("", response_model=FactWriteResponse)
def write_fact(payload: FactWriteRequest, db: Session = Depends(get_db)) -> FactWriteResponse:
    entity = EntityRef.parse(payload.entity_kind, payload.entity_id)
    ensure_entity(db, entity)
    outcome = record_fact(
        db,
        entity=entity,
        fact_type=payload.fact_type,
        key=payload.key,
        value=payload.value,
        source_type=payload.source_type,
        source_id=payload.source_id,
        confidence=payload.confidence,
        strategy=payload.strategy,
    )
    return FactWriteResponse(
        action=outcome.action,
        strategy=outcome.strategy,
        fact=FactOut.model_validate(outcome.fact) if outcome.fact is not None else None,
        task_id=outcome.task_id,
    )


@router.get("/{entity_kind}/{entity_id}", response_model=FactListResponse)
def current_facts(
    entity_kind: str,
    entity_id: str,
    fact_type: str | None = None,
    db: Session = Depends(get_db),
) -> FactListResponse:
    facts = get_current_facts(db, EntityRef.parse(entity_kind, entity_id), fact_type)
    return FactListResponse(facts=[FactOut.model_validate(fact) for fact in facts])


@router.get("/{entity_kind}/{entity_id}/history", response_model=FactListResponse)
def fact_history(
    entity_kind: str,
    entity_id: str,
    fact_type: str | None = None,
    key: str | None = None,
    db: Session = Depends(get_db),
) -> FactListResponse:
    facts = get_fact_history(db, EntityRef.parse(entity_kind, entity_id), fact_type, key)
    return FactListResponse(facts=[FactOut.model_validate(fact) for fact in facts])
