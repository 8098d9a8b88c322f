"""rq job entry points. Each job opens its own session from the worker's Database."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from relgraph.core.config import get_settings
from relgraph.core.errors import NotFoundError
from relgraph.db.pg.session import Database
from relgraph.services.matching.apply import apply_domain_matches as _apply_domain_matches
from relgraph.services.scoring.snapshots import (
    refresh_all_relationship_strengths as _refresh_all,
    refresh_relationship_strength as _refresh_one,
)

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def worker_database() -> Database:
    return Database.from_settings(get_settings())


def refresh_relationship_strength(person_id: str) -> dict[str, Any]:
    with worker_database().session_scope() as db:
        try:
            report = _refresh_one(db, person_id)
        except NotFoundError:
            logger.info("strength_refresh_person_missing", extra={"person_id": person_id})
            return {"person_id": person_id, "status": "missing"}
    return {"person_id": person_id, "status": "ok", "strength": report.strength}


def refresh_all_relationship_strengths() -> dict[str, int]:
    with worker_database().session_scope() as db:
        return _refresh_all(db)


def run_connection_sync(connection_id: str, max_items: int | None = None) -> dict[str, Any]:
    from relgraph.services.sync.coordinator import run_sync

    with worker_database().session_scope() as db:
        result = run_sync(db, connection_id, max_items=max_items)
    return {
        "connection_id": connection_id,
        "state": result.state,
        "created": result.created,
        "updated": result.updated,
        "skipped": result.skipped,
        "errors": len(result.errors),
    }


def apply_domain_matches(dry_run: bool = True) -> dict[str, Any]:
    with worker_database().session_scope() as db:
        return _apply_domain_matches(db, dry_run=dry_run)
