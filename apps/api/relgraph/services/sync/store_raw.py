from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relgraph.db.pg.models import Interaction, RawEvent
from relgraph.services.sync.types import ItemOutcome


def json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    return str(value)


def _raw_event_stmt(source_system: str, external_id: str):
    return select(RawEvent).where(RawEvent.source_system == source_system, RawEvent.external_id == external_id)


def upsert_raw_event(
    db: Session,
    *,
    source_system: str,
    event_type: str,
    external_id: str,
    payload_json: dict,
) -> tuple[RawEvent, bool]:
    existing = db.scalar(_raw_event_stmt(source_system, external_id))
    if existing:
        return existing, False

    event = RawEvent(
        source_system=source_system,
        event_type=event_type,
        external_id=external_id,
        payload_json=json_safe(payload_json),
    )
    db.add(event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = db.scalar(_raw_event_stmt(source_system, external_id))
        if winner is None:
            raise
        return winner, False
    db.refresh(event)
    return event, True


def _interaction_stmt(source_system: str, external_id: str):
    return select(Interaction).where(
        Interaction.source_system == source_system,
        Interaction.external_id == external_id,
    )


def _apply_changes(interaction: Interaction, interaction_payload: dict) -> bool:
    changed = False
    for field in ("subject", "direction", "participants_json"):
        incoming = interaction_payload.get(field)
        if incoming is not None and getattr(interaction, field) != incoming:
            setattr(interaction, field, incoming)
            changed = True
    return changed


def upsert_interaction(
    db: Session,
    *,
    source_system: str,
    external_id: str,
    timestamp: datetime,
    interaction_payload: dict,
    connection_id: str | None = None,
) -> tuple[Interaction, ItemOutcome]:
    """Keyed by (source_system, external_id): replays are ``skipped`` unless content changed."""
    existing = db.scalar(_interaction_stmt(source_system, external_id))
    if existing:
        if _apply_changes(existing, interaction_payload):
            db.commit()
            db.refresh(existing)
            return existing, "updated"
        return existing, "skipped"

    interaction = Interaction(
        source_system=source_system,
        external_id=external_id,
        connection_id=connection_id,
        type=interaction_payload["type"],
        timestamp=timestamp,
        direction=interaction_payload.get("direction", "na"),
        subject=interaction_payload.get("subject"),
        thread_id=interaction_payload.get("thread_id") or external_id,
        participants_json=interaction_payload["participants_json"],
        status="new",
    )
    db.add(interaction)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = db.scalar(_interaction_stmt(source_system, external_id))
        if winner is None:
            raise
        return winner, "skipped"
    db.refresh(interaction)
    return interaction, "created"
