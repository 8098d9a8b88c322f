from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from relgraph.core.errors import UpstreamProviderError, ValidationError
from relgraph.db.pg.base import Base
from relgraph.db.pg.models import Connection, Interaction, Person, Relationship, SyncFailure
from relgraph.main import app
from relgraph.services.scoring.relationship_strength import as_utc
from relgraph.services.sync import coordinator
from relgraph.services.sync.connections import create_connection
from relgraph.services.sync.types import ItemParticipant, ProviderIdentity, ProviderItem

database = app.state.database

BASE_TIME = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)
OWNER_EMAIL = "owner@relgraph.dev"


def reset_db() -> None:
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)


def _email_item(index: int, **overrides) -> ProviderItem:  # noqa: ANN003
    contact = f"contact{index % 5}@acme.com"
    outgoing = index % 2 == 0
    participants = [
        ItemParticipant(OWNER_EMAIL if outgoing else contact, "Owner" if outgoing else f"Contact {index % 5}", "from"),
        ItemParticipant(contact if outgoing else OWNER_EMAIL, None, "to"),
    ]
    values = {
        "external_id": f"item-{index}",
        "occurred_at": BASE_TIME + timedelta(minutes=index),
        "item_type": "email",
        "participants": participants,
        "subject": f"Thread {index % 3}",
        "thread_id": f"thread-{index % 3}",
        "payload": {"snippet": f"message {index}"},
    }
    values.update(overrides)
    return ProviderItem(**values)


class FakeProviderClient:
    provider = "gmail"

    def __init__(self, items: list[ProviderItem] | None = None, *, fail_credential: bool = False) -> None:
        self.items = {item.external_id: item for item in items or []}
        self.fail_credential = fail_credential
        self.list_calls: list[tuple] = []
        self.closed = False

    def verify_credential(self) -> ProviderIdentity:
        if self.fail_credential:
            raise UpstreamProviderError("token revoked", provider=self.provider, kind="auth", status=401)
        return ProviderIdentity(provider_user_id="gmail-user-1", email=OWNER_EMAIL)

    def list_items_since(self, cursor, max_items, from_date=None):  # noqa: ANN001
        self.list_calls.append((cursor, max_items, from_date))
        since = from_date or cursor
        ordered = sorted(self.items.values(), key=lambda item: item.occurred_at)
        return [item for item in ordered if since is None or item.occurred_at > since][:max_items]

    def get_item(self, external_id: str) -> ProviderItem | None:
        return self.items.get(external_id)

    def close(self) -> None:
        self.closed = True


def _connect(db, client: FakeProviderClient) -> Connection:  # noqa: ANN001
    connection, _ = create_connection(
        db,
        provider="gmail",
        owner_user_id="user-1",
        credentials_ref="literal-token",
        client=client,
    )
    return connection


def _fail_once(monkeypatch, external_id: str) -> list[str]:  # noqa: ANN001
    failures: list[str] = []
    original = coordinator.link_item

    def _flaky(db, *, item, **kwargs):  # noqa: ANN001, ANN003
        if item.external_id == external_id and not failures:
            failures.append(item.external_id)
            raise UpstreamProviderError("connection reset", provider="gmail", kind="network")
        return original(db, item=item, **kwargs)

    monkeypatch.setattr(coordinator, "link_item", _flaky)
    return failures


def test_partial_failure_advances_cursor_to_latest_success_and_retries_later(monkeypatch) -> None:
    reset_db()
    db = database.session()
    try:
        client = FakeProviderClient([_email_item(i) for i in range(1, 51)])
        connection = _connect(db, client)
        failures = _fail_once(monkeypatch, "item-30")

        result = coordinator.run_sync(db, connection.id, max_items=50, client=client, schedule_refresh=False)

        assert failures == ["item-30"]
        assert result.state == "partial_failure"
        assert result.fetched == 50
        assert result.succeeded == 49
        assert [(error.external_id, error.kind, error.retryable) for error in result.errors] == [
            ("item-30", "network", True)
        ]
        assert result.cursor_before is None
        assert result.cursor_after == BASE_TIME + timedelta(minutes=50)
        db.refresh(connection)
        assert as_utc(connection.sync_cursor) == BASE_TIME + timedelta(minutes=50)
        ledger = db.scalar(select(SyncFailure).where(SyncFailure.external_id == "item-30"))
        assert ledger is not None and ledger.resolved_at is None

        rerun = coordinator.run_sync(db, connection.id, max_items=50, client=client, schedule_refresh=False)

        assert rerun.state == "committed"
        assert rerun.retried == 1
        assert rerun.fetched == 0
        assert rerun.cursor_after == result.cursor_after
        db.refresh(ledger)
        assert ledger.resolved_at is not None
        assert db.scalar(select(func.count()).select_from(Interaction)) == 50
    finally:
        db.close()


def test_replaying_items_is_idempotent() -> None:
    reset_db()
    db = database.session()
    try:
        client = FakeProviderClient([_email_item(i) for i in range(1, 6)])
        connection = _connect(db, client)

        first = coordinator.run_sync(db, connection.id, client=client, schedule_refresh=False)
        replay = coordinator.run_sync(
            db,
            connection.id,
            client=client,
            from_date=BASE_TIME - timedelta(days=1),
            schedule_refresh=False,
        )

        assert first.created == 5
        assert replay.created == 0
        assert replay.skipped == 5
        assert db.scalar(select(func.count()).select_from(Interaction)) == 5
        contacts = db.scalar(select(func.count()).select_from(Person).where(Person.is_internal.is_(False)))
        assert contacts == 5
        owner = db.scalar(select(Person).where(Person.email == OWNER_EMAIL))
        assert owner is not None and owner.is_internal is True
        edges = db.scalars(
            select(Relationship).where(
                Relationship.source_id == owner.id,
                Relationship.relationship_type == "COMMUNICATES_WITH",
                Relationship.is_active.is_(True),
            )
        ).all()
        assert len(edges) == 5
        assert all(edge.properties_json["channels"] == ["email"] for edge in edges)
        assert all(edge.external_ref == connection.id for edge in edges)
        assert client.closed is False
    finally:
        db.close()


def test_cursor_never_moves_backwards() -> None:
    reset_db()
    db = database.session()
    try:
        client = FakeProviderClient([_email_item(i) for i in range(1, 4)])
        connection = _connect(db, client)
        coordinator.run_sync(db, connection.id, client=client, schedule_refresh=False)

        stored = coordinator.advance_cursor(db, connection.id, BASE_TIME)

        assert stored == BASE_TIME + timedelta(minutes=3)
    finally:
        db.close()


def test_malformed_item_is_reported_and_does_not_abort() -> None:
    reset_db()
    db = database.session()
    try:
        items = [_email_item(1), _email_item(2, payload={"malformed": True}), _email_item(3)]
        client = FakeProviderClient(items)
        connection = _connect(db, client)

        result = coordinator.run_sync(db, connection.id, client=client, schedule_refresh=False)

        assert result.state == "partial_failure"
        assert result.created == 2
        assert [error.kind for error in result.errors] == ["validation_error"]
        assert result.errors[0].label == "Thread 2 (item-2)"
    finally:
        db.close()


def test_credential_failure_aborts_without_touching_cursor() -> None:
    reset_db()
    db = database.session()
    try:
        good = FakeProviderClient([_email_item(1)])
        connection = _connect(db, good)
        coordinator.run_sync(db, connection.id, client=good, schedule_refresh=False)
        cursor = connection.sync_cursor

        result = coordinator.run_sync(
            db, connection.id, client=FakeProviderClient(fail_credential=True), schedule_refresh=False
        )

        assert result.state == "aborted"
        assert result.error == "token revoked"
        db.refresh(connection)
        assert connection.status == "error"
        assert connection.sync_cursor == cursor
    finally:
        db.close()


def test_cancelled_run_does_not_commit_cursor() -> None:
    reset_db()
    db = database.session()
    try:
        client = FakeProviderClient([_email_item(i) for i in range(1, 4)])
        connection = _connect(db, client)
        cancel = threading.Event()
        cancel.set()

        result = coordinator.run_sync(db, connection.id, client=client, cancel_event=cancel, schedule_refresh=False)

        assert result.state == "cancelled"
        db.refresh(connection)
        assert connection.sync_cursor is None
    finally:
        db.close()


def test_max_items_bounds_are_validated() -> None:
    reset_db()
    db = database.session()
    try:
        client = FakeProviderClient()
        connection = _connect(db, client)
        with pytest.raises(ValidationError):
            coordinator.run_sync(db, connection.id, max_items=0, client=client)
        with pytest.raises(ValidationError):
            coordinator.run_sync(db, connection.id, max_items=100000, client=client)
    finally:
        db.close()


def test_touched_contacts_get_strength_refresh_jobs(monkeypatch) -> None:
    reset_db()
    db = database.session()
    try:
        queued: list[tuple] = []
        monkeypatch.setattr(coordinator, "enqueue_job", lambda name, *args: queued.append((name, *args)))
        client = FakeProviderClient([_email_item(1), _email_item(2)])
        connection = _connect(db, client)

        result = coordinator.run_sync(db, connection.id, client=client)

        assert sorted(queued) == sorted(("refresh_relationship_strength", pid) for pid in result.touched_person_ids)
        assert len(queued) == 2
    finally:
        db.close()
