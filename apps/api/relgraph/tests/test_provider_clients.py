from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import func, select

from relgraph.core.errors import UpstreamProviderError, ValidationError
from relgraph.db.pg.base import Base
from relgraph.db.pg.models import Connection, Interaction
from relgraph.integrations.fireflies_client import FirefliesClient, transcript_to_item
from relgraph.integrations.gmail_client import GmailClient, message_to_item
from relgraph.integrations.registry import build_provider_client, resolve_credentials
from relgraph.main import app
from relgraph.services.scoring.relationship_strength import as_utc
from relgraph.services.sync import coordinator
from relgraph.services.sync.connections import create_connection

database = app.state.database

BASE_MS = 1767225600000


def _gmail_message(message_id: str, millis: int, sender: str = "Jane Roe <jane@acme.com>") -> dict:
    return {
        "id": message_id,
        "threadId": f"t-{message_id}",
        "internalDate": str(millis),
        "snippet": "hello",
        "payload": {
            "headers": [
                {"name": "From", "value": sender},
                {"name": "To", "value": "Owner <owner@relgraph.dev>, bob@globex.com"},
                {"name": "Subject", "value": "Intro"},
            ]
        },
    }


def test_message_to_item_extracts_participants_and_time() -> None:
    item = message_to_item(_gmail_message("m1", 1767225600000))

    assert item.external_id == "m1"
    assert item.occurred_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert item.subject == "Intro"
    assert item.thread_id == "t-m1"
    assert [(p.email, p.name, p.role) for p in item.participants] == [
        ("jane@acme.com", "Jane Roe", "from"),
        ("owner@relgraph.dev", "Owner", "to"),
        ("bob@globex.com", None, "to"),
    ]


def test_message_without_sender_is_rejected() -> None:
    message = _gmail_message("m2", 1767225600000)
    message["payload"]["headers"] = [{"name": "To", "value": "owner@relgraph.dev"}]
    with pytest.raises(ValueError):
        message_to_item(message)


def test_transcript_to_item_deduplicates_attendees() -> None:
    item = transcript_to_item(
        {
            "id": "tr-1",
            "title": "Pipeline review",
            "date": 1767225600000,
            "organizer_email": "Owner@relgraph.dev",
            "meeting_attendees": [
                {"email": "owner@relgraph.dev", "name": "Owner"},
                {"email": "dana@globex.com", "displayName": "Dana Scully"},
            ],
            "participants": ["dana@globex.com", "fox@globex.com", "not-an-email"],
        }
    )

    assert item.item_type == "meeting"
    assert item.thread_id == "tr-1"
    assert item.occurred_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert [(p.email, p.role) for p in item.participants] == [
        ("owner@relgraph.dev", "owner"),
        ("dana@globex.com", "attendee"),
        ("fox@globex.com", "attendee"),
    ]


@pytest.mark.parametrize(
    ("status", "kind", "retryable"),
    [(401, "auth", False), (429, "rate_limit", True), (503, "server", True), (400, "bad_response", False)],
)
def test_gmail_http_errors_map_to_error_kinds(status: int, kind: str, retryable: bool) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(status, text="nope"))
    client = GmailClient("token", transport=transport)

    with pytest.raises(UpstreamProviderError) as exc_info:
        client.verify_credential()

    assert exc_info.value.kind == kind
    assert exc_info.value.status == status
    assert exc_info.value.retryable is retryable


def test_network_failure_is_retryable() -> None:
    def _raise(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = GmailClient("token", transport=httpx.MockTransport(_raise))
    with pytest.raises(UpstreamProviderError) as exc_info:
        client.verify_credential()
    assert exc_info.value.kind == "network"
    assert exc_info.value.retryable is True


def test_gmail_lists_oldest_first_and_flags_malformed_messages() -> None:
    messages = {
        "m3": _gmail_message("m3", 1767225900000),
        "m2": {"id": "m2", "payload": {"headers": []}},
        "m1": _gmail_message("m1", 1767225600000),
    }
    seen_queries: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/users/me/messages"):
            seen_queries.append(request.url.params.get("q"))
            return httpx.Response(200, json={"messages": [{"id": "m3"}, {"id": "m2"}, {"id": "m1"}]})
        message_id = path.rsplit("/", 1)[-1]
        return httpx.Response(200, json=messages[message_id])

    client = GmailClient("token", transport=httpx.MockTransport(handler))
    cursor = datetime(2025, 12, 31, tzinfo=timezone.utc)

    items = client.list_items_since(cursor, 10)

    assert seen_queries == [f"after:{int(cursor.timestamp()) - 1}"]
    assert [item.external_id for item in items] == ["m2", "m1", "m3"]
    assert items[0].payload["malformed"] is True


def test_gmail_get_item_returns_none_on_404() -> None:
    client = GmailClient("token", transport=httpx.MockTransport(lambda request: httpx.Response(404, json={})))
    assert client.get_item("gone") is None


def test_fireflies_graphql_auth_error_and_identity() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if "Bearer bad" == request.headers["Authorization"]:
            return httpx.Response(200, json={"errors": [{"message": "Invalid API key"}]})
        assert "user" in body["query"]
        return httpx.Response(200, json={"data": {"user": {"user_id": "ff-1", "email": "owner@relgraph.dev"}}})

    transport = httpx.MockTransport(handler)
    identity = FirefliesClient("good", transport=transport).verify_credential()
    assert (identity.provider_user_id, identity.email) == ("ff-1", "owner@relgraph.dev")

    with pytest.raises(UpstreamProviderError) as exc_info:
        FirefliesClient("bad", transport=transport).verify_credential()
    assert exc_info.value.kind == "auth"


def test_fireflies_list_respects_max_items() -> None:
    transcripts = [
        {"id": f"tr-{i}", "title": f"Call {i}", "date": f"2026-01-0{i}T10:00:00Z", "participants": []}
        for i in (3, 1, 2)
    ]
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": {"transcripts": transcripts}}))

    items = FirefliesClient("key", transport=transport).list_items_since(None, 2)

    assert [item.external_id for item in items] == ["tr-1", "tr-2"]


def test_credential_references(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("GMAIL_TOKEN_TEST", "secret-token")
    assert resolve_credentials("env:GMAIL_TOKEN_TEST") == "secret-token"
    assert resolve_credentials("raw-token") == "raw-token"
    monkeypatch.delenv("GMAIL_TOKEN_TEST")
    with pytest.raises(ValidationError):
        resolve_credentials("env:GMAIL_TOKEN_TEST")
    with pytest.raises(ValidationError):
        build_provider_client("slack", "token")


class GmailMailbox:
    """Newest-first paged listing with Gmail's exclusive, second-granular ``after:`` filter."""

    def __init__(self, messages: list[dict]) -> None:
        self.messages = {message["id"]: message for message in messages}
        self.list_requests = 0
        self.fetched: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/users/me/profile"):
            return httpx.Response(200, json={"emailAddress": "owner@relgraph.dev"})
        if path.endswith("/users/me/messages"):
            self.list_requests += 1
            return httpx.Response(200, json=self._page(request.url.params))
        message_id = path.rsplit("/", 1)[-1]
        self.fetched.append(message_id)
        return httpx.Response(200, json=self.messages[message_id])

    def _page(self, params: httpx.QueryParams) -> dict:
        query = params.get("q") or ""
        after = int(query.split(":", 1)[1]) if query.startswith("after:") else None
        listed = [m for m in self.messages.values() if after is None or int(m["internalDate"]) // 1000 > after]
        listed.sort(key=lambda m: int(m["internalDate"]), reverse=True)
        start = int(params.get("pageToken") or 0)
        size = int(params["maxResults"])
        body: dict = {"messages": [{"id": m["id"]} for m in listed[start : start + size]]}
        if start + size < len(listed):
            body["nextPageToken"] = str(start + size)
        return body

    def client(self) -> GmailClient:
        return GmailClient("token", transport=httpx.MockTransport(self.handler))


def test_gmail_backlog_larger_than_one_listing_window_starts_at_oldest() -> None:
    mailbox = GmailMailbox([_gmail_message(f"m{i:05d}", BASE_MS + i * 1000) for i in range(1200)])
    cursor = datetime(2025, 12, 31, tzinfo=timezone.utc)

    items = mailbox.client().list_items_since(cursor, 10)

    assert [item.external_id for item in items] == [f"m{i:05d}" for i in range(10)]
    assert mailbox.list_requests == 3
    assert len(mailbox.fetched) == 10


def test_gmail_relists_messages_at_the_cursor_second() -> None:
    cursor_ms = BASE_MS + 60_000
    mailbox = GmailMailbox(
        [
            _gmail_message("m-old", cursor_ms - 5000),
            _gmail_message("m-tied", cursor_ms),
            _gmail_message("m-new", cursor_ms + 1000),
        ]
    )
    cursor = datetime.fromtimestamp(cursor_ms / 1000, tz=timezone.utc)

    items = mailbox.client().list_items_since(cursor, 10)

    assert [item.external_id for item in items] == ["m-tied", "m-new"]


def test_fireflies_backlog_spanning_pages_starts_at_oldest() -> None:
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    transcripts = [
        {"id": f"tr-{i:03d}", "title": f"Call {i}", "date": (base + timedelta(minutes=i)).isoformat(), "participants": []}
        for i in range(120)
    ]
    newest_first = sorted(transcripts, key=lambda t: t["date"], reverse=True)
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        variables = json.loads(request.content)["variables"]
        requests.append(variables)
        page = newest_first[variables["skip"] : variables["skip"] + variables["limit"]]
        return httpx.Response(200, json={"data": {"transcripts": page}})

    items = FirefliesClient("key", transport=httpx.MockTransport(handler)).list_items_since(None, 5)

    assert [item.external_id for item in items] == [f"tr-{i:03d}" for i in range(5)]
    assert [v["skip"] for v in requests] == [0, 50, 100]


def test_clients_close_their_http_pool_on_exit() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))

    with GmailClient("token", transport=transport) as gmail:
        assert gmail._client.is_closed is False
    with FirefliesClient("key", transport=transport) as fireflies:
        assert fireflies._client.is_closed is False

    assert gmail._client.is_closed is True
    assert fireflies._client.is_closed is True


def test_gmail_sync_with_tied_timestamps_loses_no_messages(monkeypatch) -> None:  # noqa: ANN001
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    mailbox = GmailMailbox(
        [
            _gmail_message("m1", BASE_MS),
            _gmail_message("m2", BASE_MS + 60_000),
            _gmail_message("m3", BASE_MS + 60_000),
            _gmail_message("m4", BASE_MS + 120_000),
            _gmail_message("m5", BASE_MS + 180_000),
        ]
    )
    built: list[GmailClient] = []

    def _client_for(connection: Connection) -> GmailClient:
        built.append(mailbox.client())
        return built[-1]

    monkeypatch.setattr(coordinator, "client_for_connection", _client_for)
    db = database.session()
    try:
        with mailbox.client() as setup_client:
            connection, _ = create_connection(
                db, provider="gmail", owner_user_id="user-1", credentials_ref="token", client=setup_client
            )

        runs = [coordinator.run_sync(db, connection.id, max_items=3, schedule_refresh=False) for _ in range(3)]

        assert [(run.state, run.created, run.skipped) for run in runs] == [
            ("committed", 3, 0),
            ("committed", 1, 2),
            ("committed", 1, 1),
        ]
        assert db.scalar(select(func.count()).select_from(Interaction)) == 5
        db.refresh(connection)
        assert as_utc(connection.sync_cursor) == datetime.fromtimestamp((BASE_MS + 180_000) / 1000, tz=timezone.utc)
        assert len(built) == 3
        assert all(client._client.is_closed for client in built)
    finally:
        db.close()
