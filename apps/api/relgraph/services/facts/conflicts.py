"""Strategy-driven fact writes.

A new value for a key that already has a different current value is settled by
the strategy registered for the key (falling back to the fact type, then to
``highest_confidence``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from sqlalchemy.orm import Session

from relgraph.core.errors import ValidationError
from relgraph.db.pg.models import Fact
from relgraph.services.facts.store import get_current_fact, set_current_fact
from relgraph.services.graph.types import EntityRef
from relgraph.services.resolution.tasks import create_fact_conflict_task

logger = logging.getLogger(__name__)

Strategy = Literal["latest_wins", "highest_confidence", "merge", "user_confirm"]
RecordAction = Literal["created", "unchanged", "superseded", "kept_existing", "merged", "manual_review"]

DEFAULT_STRATEGY: Strategy = "highest_confidence"

CONFLICT_STRATEGIES: dict[str, Strategy] = {
    "email": "user_confirm",
    "phone": "user_confirm",
    "linkedin_url": "user_confirm",
    "mrr": "latest_wins",
    "arr": "latest_wins",
    "burn_rate": "latest_wins",
    "runway": "latest_wins",
    "team_size": "latest_wins",
    "valuation": "latest_wins",
    "notes": "merge",
    "description": "merge",
    "valuation_cap": "user_confirm",
    "ownership": "user_confirm",
    "investment_amount": "user_confirm",
}


@dataclass(frozen=True)
class FactRecordOutcome:
    action: RecordAction
    strategy: Strategy
    fact: Fact | None
    task_id: str | None = None


def strategy_for(fact_type: str, key: str) -> Strategy:
    return CONFLICT_STRATEGIES.get(key.lower()) or CONFLICT_STRATEGIES.get(fact_type.lower()) or DEFAULT_STRATEGY


def _attributed(source_type: str, value: str) -> str:
    return f"[{source_type}]: {value}"


def record_fact(
    db: Session,
    *,
    entity: EntityRef,
    fact_type: str,
    key: str,
    value: str,
    source_type: str,
    source_id: str | None = None,
    confidence: float = 1.0,
    strategy: Strategy | None = None,
) -> FactRecordOutcome:
    chosen = strategy or strategy_for(fact_type, key)
    if chosen not in {"latest_wins", "highest_confidence", "merge", "user_confirm"}:
        raise ValidationError(f"Unknown conflict strategy: {chosen}")

    value = str(value).strip()
    current = get_current_fact(db, entity, fact_type, key)
    if current is None or current.value == value:
        fact = set_current_fact(
            db,
            entity=entity,
            fact_type=fact_type,
            key=key,
            value=value,
            source_type=source_type,
            source_id=source_id,
            confidence=confidence,
        )
        return FactRecordOutcome("created" if current is None else "unchanged", chosen, fact)

    if chosen == "highest_confidence" and confidence <= current.confidence:
        logger.info(
            "fact_conflict_kept_existing",
            extra={"entity_id": entity.id, "key": key, "existing_confidence": current.confidence},
        )
        return FactRecordOutcome("kept_existing", chosen, current)

    if chosen == "user_confirm":
        task = create_fact_conflict_task(
            db,
            entity=entity,
            current_fact=current,
            proposed={
                "fact_type": fact_type,
                "key": key,
                "value": value,
                "source_type": source_type,
                "source_id": source_id,
                "confidence": confidence,
            },
        )
        return FactRecordOutcome("manual_review", chosen, current, task_id=task.task_id)

    if chosen == "merge":
        existing = current.value if current.source_type == "merged" else _attributed(current.source_type, current.value)
        fact = set_current_fact(
            db,
            entity=entity,
            fact_type=fact_type,
            key=key,
            value=f"{existing}\n\n{_attributed(source_type, value)}",
            source_type="merged",
            source_id=None,
            confidence=1.0,
        )
        return FactRecordOutcome("merged", chosen, fact)

    fact = set_current_fact(
        db,
        entity=entity,
        fact_type=fact_type,
        key=key,
        value=value,
        source_type=source_type,
        source_id=source_id,
        confidence=confidence,
    )
    return FactRecordOutcome("superseded", chosen, fact)
