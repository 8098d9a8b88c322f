from __future__ import annotations

import pytest
from sqlalchemy import func, select

from relgraph.core.errors import ValidationError
from relgraph.db.pg.base import Base
from relgraph.db.pg.models import Fact, ResolutionTask
from relgraph.main import app
from relgraph.services.facts.conflicts import record_fact, strategy_for
from relgraph.services.facts.store import get_current_fact, get_fact_history, set_current_fact
from relgraph.services.graph.types import EntityRef
from relgraph.services.identity.resolver import resolve_or_create_organization
from relgraph.services.resolution.tasks import list_resolution_tasks, resolve_resolution_task

database = app.state.database


def reset_db() -> None:
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)


def _org(db) -> EntityRef:  # noqa: ANN001
    return EntityRef.organization(resolve_or_create_organization(db, "Acme").organization.id)


def _current_count(db, entity: EntityRef, key: str) -> int:  # noqa: ANN001
    return db.scalar(
        select(func.count())
        .select_from(Fact)
        .where(Fact.entity_id == entity.id, Fact.key == key, Fact.valid_until.is_(None))
    )


def test_new_value_supersedes_and_keeps_history() -> None:
    reset_db()
    db = database.session()
    try:
        org = _org(db)
        first = set_current_fact(db, entity=org, fact_type="metric", key="mrr", value="10000", source_type="manual")
        second = set_current_fact(db, entity=org, fact_type="metric", key="mrr", value="12000", source_type="manual")

        assert _current_count(db, org, "mrr") == 1
        db.refresh(first)
        assert first.valid_until is not None
        assert first.replaced_by_id == second.id
        assert get_current_fact(db, org, "metric", "mrr").value == "12000"
        assert [fact.value for fact in get_fact_history(db, org, "metric", "mrr")] == ["12000", "10000"]
    finally:
        db.close()


def test_rewriting_current_value_is_a_noop_that_keeps_higher_confidence() -> None:
    reset_db()
    db = database.session()
    try:
        org = _org(db)
        first = set_current_fact(
            db, entity=org, fact_type="profile", key="hq", value="Boston", source_type="web", confidence=0.4
        )
        again = set_current_fact(
            db, entity=org, fact_type="profile", key="hq", value="Boston", source_type="manual", confidence=0.9
        )

        assert again.id == first.id
        assert again.confidence == 0.9
        assert len(get_fact_history(db, org, "profile", "hq")) == 1
    finally:
        db.close()


def test_fact_validation() -> None:
    reset_db()
    db = database.session()
    try:
        org = _org(db)
        with pytest.raises(ValidationError):
            set_current_fact(db, entity=org, fact_type="metric", key="mrr", value="1", source_type="x", confidence=1.5)
        with pytest.raises(ValidationError):
            set_current_fact(db, entity=org, fact_type="", key="mrr", value="1", source_type="x")
    finally:
        db.close()


def test_strategy_lookup() -> None:
    assert strategy_for("contact", "email") == "user_confirm"
    assert strategy_for("metric", "mrr") == "latest_wins"
    assert strategy_for("profile", "notes") == "merge"
    assert strategy_for("profile", "hq") == "highest_confidence"


def test_highest_confidence_keeps_stronger_existing_value() -> None:
    reset_db()
    db = database.session()
    try:
        org = _org(db)
        record_fact(db, entity=org, fact_type="profile", key="hq", value="Boston", source_type="crm", confidence=0.8)
        weaker = record_fact(db, entity=org, fact_type="profile", key="hq", value="NYC", source_type="web", confidence=0.5)
        stronger = record_fact(db, entity=org, fact_type="profile", key="hq", value="Austin", source_type="filing", confidence=0.95)

        assert weaker.action == "kept_existing"
        assert stronger.action == "superseded"
        assert get_current_fact(db, org, "profile", "hq").value == "Austin"
    finally:
        db.close()


def test_merge_strategy_concatenates_with_attribution() -> None:
    reset_db()
    db = database.session()
    try:
        org = _org(db)
        record_fact(db, entity=org, fact_type="profile", key="notes", value="Met at summit", source_type="manual")
        outcome = record_fact(db, entity=org, fact_type="profile", key="notes", value="Raising seed", source_type="gmail")

        assert outcome.action == "merged"
        assert outcome.fact.value == "[manual]: Met at summit\n\n[gmail]: Raising seed"
        assert outcome.fact.source_type == "merged"
    finally:
        db.close()


def test_user_confirm_opens_one_task_and_accepting_supersedes() -> None:
    reset_db()
    db = database.session()
    try:
        org = _org(db)
        record_fact(db, entity=org, fact_type="contact", key="email", value="hi@acme.com", source_type="manual")
        first = record_fact(db, entity=org, fact_type="contact", key="email", value="ceo@acme.com", source_type="gmail")
        repeat = record_fact(db, entity=org, fact_type="contact", key="email", value="ceo@acme.com", source_type="gmail")

        assert first.action == "manual_review"
        assert repeat.task_id == first.task_id
        assert get_current_fact(db, org, "contact", "email").value == "hi@acme.com"
        assert [task.task_id for task in list_resolution_tasks(db)] == [first.task_id]

        task = resolve_resolution_task(db, first.task_id, "accept_proposed", None, {"action": "accept_proposed"})

        assert task.status == "resolved"
        current = get_current_fact(db, org, "contact", "email")
        assert current.value == "ceo@acme.com"
        assert current.source_type == "user_confirm"
        assert _current_count(db, org, "email") == 1
        with pytest.raises(ValidationError):
            resolve_resolution_task(db, first.task_id, "reject_proposed", None, {})
    finally:
        db.close()


def test_rejecting_task_leaves_current_value() -> None:
    reset_db()
    db = database.session()
    try:
        org = _org(db)
        record_fact(db, entity=org, fact_type="contact", key="phone", value="111", source_type="manual")
        outcome = record_fact(db, entity=org, fact_type="contact", key="phone", value="222", source_type="gmail")

        task = resolve_resolution_task(db, outcome.task_id, "reject_proposed", None, {"action": "reject_proposed"})

        assert task.status == "dismissed"
        assert get_current_fact(db, org, "contact", "phone").value == "111"
        assert db.scalar(select(func.count()).select_from(ResolutionTask).where(ResolutionTask.status == "open")) == 0
    finally:
        db.close()
