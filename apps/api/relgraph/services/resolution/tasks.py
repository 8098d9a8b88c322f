from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from relgraph.core.errors import NotFoundError, ValidationError
from relgraph.db.pg.models import Fact, ResolutionTask
from relgraph.services.facts.store import set_current_fact
from relgraph.services.graph.types import EntityRef


def create_fact_conflict_task(
    db: Session,
    *,
    entity: EntityRef,
    current_fact: Fact | None,
    proposed: dict[str, Any],
) -> ResolutionTask:
    """Open a review task for a proposed value, reusing an open task for the same proposal."""
    open_tasks = db.scalars(
        select(ResolutionTask).where(
            ResolutionTask.task_type == "fact_conflict",
            ResolutionTask.status == "open",
            ResolutionTask.entity_kind == entity.kind.value,
            ResolutionTask.entity_id == entity.id,
        )
    ).all()
    for task in open_tasks:
        payload = task.payload_json or {}
        if (
            payload.get("fact_type") == proposed.get("fact_type")
            and payload.get("key") == proposed.get("key")
            and payload.get("value") == proposed.get("value")
        ):
            return task

    payload = dict(proposed)
    if current_fact is not None:
        payload["current_value"] = current_fact.value
        payload["current_source_type"] = current_fact.source_type
        payload["reason"] = (
            f"Conflicting {proposed.get('key')} values: existing \"{current_fact.value}\" "
            f"(from {current_fact.source_type}), new \"{proposed.get('value')}\" (from {proposed.get('source_type')})"
        )
    task = ResolutionTask(
        entity_kind=entity.kind.value,
        entity_id=entity.id,
        task_type="fact_conflict",
        current_fact_id=current_fact.id if current_fact is not None else None,
        payload_json=payload,
        status="open",
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def list_resolution_tasks(db: Session, status: str = "open") -> list[ResolutionTask]:
    return list(
        db.scalars(
            select(ResolutionTask).where(ResolutionTask.status == status).order_by(ResolutionTask.created_at.desc())
        ).all()
    )


def resolve_resolution_task(
    db: Session,
    task_id: str,
    action: str,
    edited_value: str | None,
    audit_update: dict,
) -> ResolutionTask:
    task = db.get(ResolutionTask, task_id)
    if task is None:
        raise NotFoundError("Resolution task not found", details={"task_id": task_id})
    if task.status != "open":
        raise ValidationError("Resolution task is already closed", details={"status": task.status})

    payload = dict(task.payload_json or {})
    entity = EntityRef.parse(task.entity_kind, task.entity_id)
    if action in {"accept_proposed", "edit_and_accept"}:
        value = edited_value if (action == "edit_and_accept" and edited_value) else payload.get("value")
        fact = set_current_fact(
            db,
            entity=entity,
            fact_type=str(payload.get("fact_type")),
            key=str(payload.get("key")),
            value=str(value),
            source_type="user_confirm",
            source_id=task.task_id,
            confidence=1.0,
        )
        payload["accepted_fact_id"] = fact.id
        task.status = "resolved"
    elif action == "reject_proposed":
        task.status = "dismissed"
    else:
        raise ValidationError(f"Unknown resolution action: {action}")

    payload.setdefault("audit_log", []).append(audit_update)
    task.payload_json = payload
    db.commit()
    db.refresh(task)
    return task
