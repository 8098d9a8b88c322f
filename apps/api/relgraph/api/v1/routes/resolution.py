from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from relgraph.api.v1.deps import get_db
from relgraph.api.v1.schemas import (
    ResolutionTaskItem,
    ResolutionTaskListResponse,
    ResolveTaskRequest,
    ResolveTaskResponse,
)
from relgraph.db.pg.models import ResolutionTask
from relgraph.services.resolution.tasks import list_resolution_tasks, resolve_resolution_task

router = APIRouter(prefix="/resolution", tags=["resolution"])


def _task_item(task: ResolutionTask) -> ResolutionTaskItem:
    return ResolutionTaskItem(
        task_id=task.task_id,
        entity_kind=task.entity_kind,
        entity_id=task.entity_id,
        task_type=task.task_type,
        current_fact_id=task.current_fact_id,
        payload_json=task.payload_json or {},
        status=task.status,
    )


@router.get("/tasks", response_model=ResolutionTaskListResponse)
def get_resolution_tasks(status: str = "open", db: Session = Depends(get_db)) -> ResolutionTaskListResponse:
    return ResolutionTaskListResponse(tasks=[_task_item(task) for task in list_resolution_tasks(db, status=status)])


@router.post("/tasks/{task_id}/resolve", response_model=ResolveTaskResponse)
def resolve_task(task_id: str, payload: ResolveTaskRequest, db: Session = Depends(get_db)) -> ResolveTaskResponse:
    audit_update = {
        "action": payload.action,
        "edited_value": payload.edited_value,
        "resolved_at": datetime.now(timezone.utc).isoformat(),
    }
    task = resolve_resolution_task(
        db,
        task_id=task_id,
        action=payload.action,
        edited_value=payload.edited_value,
        audit_update=audit_update,
    )
    return ResolveTaskResponse(task_id=task.task_id, status=task.status)
