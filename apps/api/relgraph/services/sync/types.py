from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

ParticipantRole = Literal["from", "to", "cc", "attendee", "owner"]
ItemType = Literal["email", "meeting"]
SyncState = Literal["idle", "fetching", "processing", "committed", "partial_failure", "aborted", "cancelled"]
ItemOutcome = Literal["created", "updated", "skipped"]


@dataclass(frozen=True)
class ItemParticipant:
    email: str | None
    name: str | None = None
    role: ParticipantRole = "attendee"


@dataclass
class ProviderItem:
    """One provider record (e-mail message or call transcript) keyed by its immutable external id."""

    external_id: str
    occurred_at: datetime
    item_type: ItemType
    participants: list[ItemParticipant] = field(default_factory=list)
    subject: str | None = None
    thread_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        if self.subject:
            return f"{self.subject} ({self.external_id})"
        return self.external_id


@dataclass(frozen=True)
class ProviderIdentity:
    provider_user_id: str
    email: str | None = None
    display_name: str | None = None


class ProviderClient(Protocol):
    provider: str

    def verify_credential(self) -> ProviderIdentity: ...

    def list_items_since(
        self,
        cursor: datetime | None,
        max_items: int,
        from_date: datetime | None = None,
    ) -> list[ProviderItem]: ...

    def get_item(self, external_id: str) -> ProviderItem | None: ...

    def close(self) -> None: ...


@dataclass
class SyncItemError:
    external_id: str
    label: str
    kind: str
    message: str
    retryable: bool = False


@dataclass
class SyncRunResult:
    connection_id: str
    state: SyncState = "idle"
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    retried: int = 0
    errors: list[SyncItemError] = field(default_factory=list)
    cursor_before: datetime | None = None
    cursor_after: datetime | None = None
    error: str | None = None
    touched_person_ids: set[str] = field(default_factory=set)

    def record(self, outcome: ItemOutcome) -> None:
        if outcome == "created":
            self.created += 1
        elif outcome == "updated":
            self.updated += 1
        else:
            self.skipped += 1

    @property
    def succeeded(self) -> int:
        return self.created + self.updated + self.skipped


@dataclass
class WebhookConnectionResult:
    connection_id: str
    success: bool
    outcome: ItemOutcome | None = None
    error: str | None = None
    error_kind: str | None = None


@dataclass
class WebhookResult:
    status: Literal["processed", "ignored", "no_connection"]
    results: list[WebhookConnectionResult] = field(default_factory=list)
    reason: str | None = None
