from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

NodeKindName = Literal["person", "organization"]
Provider = Literal["fireflies", "gmail"]


class PersonResolveRequest(BaseModel):
    first_name: str
    last_name: str = ""
    email: str | None = None
    linkedin_url: str | None = None
    twitter_handle: str | None = None
    phone: str | None = None
    city: str | None = None
    country: str | None = None
    privacy_tier: str | None = None
    is_internal: bool = False
    dedupe_by_email: bool = True
    source_type: str = "manual"
    source_id: str | None = None


class PersonOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    full_name: str
    email: str | None = None
    linkedin_url: str | None = None
    twitter_handle: str | None = None
    phone: str | None = None
    city: str | None = None
    country: str | None = None
    privacy_tier: str
    is_internal: bool
    created_at: datetime
    updated_at: datetime


class PersonResolveResponse(BaseModel):
    person: PersonOut
    is_new: bool
    was_updated: bool
    updated_fields: list[str] = Field(default_factory=list)


class OrganizationResolveRequest(BaseModel):
    name: str
    domain: str | None = None
    organization_type: str | None = None
    industry: str | None = None
    strict: bool = False


class OrganizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    canonical_key: str
    domain: str | None = None
    organization_type: str
    industry: str | None = None
    created_at: datetime
    updated_at: datetime


class OrganizationResolveResponse(BaseModel):
    organization: OrganizationOut
    is_new: bool
    was_updated: bool
    matched_by: str | None = None


class DuplicateCandidateOut(BaseModel):
    entity_id: str
    name: str
    score: float
    email: str | None = None
    domain: str | None = None


class DuplicateListResponse(BaseModel):
    items: list[DuplicateCandidateOut]


class MergePeopleRequest(BaseModel):
    primary_id: str
    duplicate_id: str


class StrengthResponse(BaseModel):
    person_id: str
    strength: float | None = None
    cached: bool
    recency: float | None = None
    frequency: float | None = None
    engagement: float | None = None
    reciprocity: float | None = None
    trend: str | None = None
    interaction_count: int = 0
    last_interaction_at: datetime | None = None
    ai_summary: str | None = None
    ai_recommendation: str | None = None
    calculated_at: datetime | None = None


class EnrichmentResponse(BaseModel):
    person_id: str
    enriched: bool
    filled_fields: list[str] = Field(default_factory=list)
    role_updated: bool = False
    reason: str | None = None


class DomainCandidateOut(BaseModel):
    domain: str
    score: float
    match_type: str
    email: str
    from_name: str | None = None


class DomainCandidatesResponse(BaseModel):
    name: str
    candidates: list[DomainCandidateOut]
    auto_applicable: DomainCandidateOut | None = None


class DomainMatchRequest(BaseModel):
    dry_run: bool = True
    limit: int | None = Field(default=None, ge=1, le=10000)


class FactWriteRequest(BaseModel):
    entity_kind: NodeKindName
    entity_id: str
    fact_type: str
    key: str
    value: str
    source_type: str = "manual"
    source_id: str | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    strategy: Literal["latest_wins", "highest_confidence", "merge", "user_confirm"] | None = None


class FactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    entity_kind: str
    entity_id: str
    fact_type: str
    key: str
    value: str
    source_type: str
    source_id: str | None = None
    confidence: float
    valid_from: datetime
    valid_until: datetime | None = None
    replaced_by_id: str | None = None


class FactWriteResponse(BaseModel):
    action: str
    strategy: str
    fact: FactOut | None = None
    task_id: str | None = None


class FactListResponse(BaseModel):
    facts: list[FactOut]


class RelationshipWriteRequest(BaseModel):
    source_kind: NodeKindName
    source_id: str
    target_kind: NodeKindName
    target_id: str
    relationship_type: str
    properties: dict[str, Any] = Field(default_factory=dict)
    strength: float | None = None
    confidence: float | None = None
    source_of_truth: str = "manual"
    external_ref: str | None = None


class RelationshipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    source_kind: str
    source_id: str
    target_kind: str
    target_id: str
    relationship_type: str
    properties_json: dict[str, Any] = Field(default_factory=dict)
    strength: float
    confidence: float
    source_of_truth: str
    external_ref: str | None = None
    is_active: bool
    valid_from: datetime
    valid_until: datetime | None = None


class RelationshipWriteResponse(BaseModel):
    relationship: RelationshipOut
    created: bool


class RelationshipListResponse(BaseModel):
    relationships: list[RelationshipOut]


class ConnectionCreateRequest(BaseModel):
    provider: Provider
    owner_user_id: str
    credentials_ref: str
    webhook_enabled: bool = False
    webhook_secret: str | None = None


class ConnectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    owner_user_id: str
    account_email: str | None = None
    provider_user_id: str | None = None
    sync_cursor: datetime | None = None
    last_sync_at: datetime | None = None
    webhook_enabled: bool
    status: str
    last_error: str | None = None


class ConnectionCreateResponse(BaseModel):
    connection: ConnectionOut
    created: bool


class SyncRequest(BaseModel):
    max_items: int | None = None
    from_date: datetime | None = None


class SyncItemErrorOut(BaseModel):
    external_id: str
    label: str
    kind: str
    message: str
    retryable: bool = False


class SyncResponse(BaseModel):
    connection_id: str
    state: str
    fetched: int
    created: int
    updated: int
    skipped: int
    retried: int
    errors: list[SyncItemErrorOut] = Field(default_factory=list)
    cursor_before: datetime | None = None
    cursor_after: datetime | None = None
    error: str | None = None


class WebhookConnectionResultOut(BaseModel):
    connection_id: str
    success: bool
    outcome: str | None = None
    error: str | None = None
    error_kind: str | None = None


class WebhookResponse(BaseModel):
    status: str
    reason: str | None = None
    results: list[WebhookConnectionResultOut] = Field(default_factory=list)


class ResolutionTaskItem(BaseModel):
    task_id: str
    entity_kind: str
    entity_id: str
    task_type: str
    current_fact_id: str | None = None
    payload_json: dict[str, Any]
    status: str


class ResolutionTaskListResponse(BaseModel):
    tasks: list[ResolutionTaskItem]


class ResolveTaskRequest(BaseModel):
    action: Literal["accept_proposed", "reject_proposed", "edit_and_accept"]
    edited_value: str | None = None


class ResolveTaskResponse(BaseModel):
    task_id: str
    status: str
