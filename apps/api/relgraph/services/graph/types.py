"""Node references and per-type relationship property schemas.

Edges point at entities by ``(kind, id)`` only. Known relationship types carry a
pydantic schema for their properties; keys outside the schema land in ``extra``
so provider-specific attributes survive until they are promoted to fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from relgraph.core.errors import ValidationError


class NodeKind(str, Enum):
    PERSON = "person"
    ORGANIZATION = "organization"


def parse_node_kind(value: str | NodeKind) -> NodeKind:
    if isinstance(value, NodeKind):
        return value
    try:
        return NodeKind(value.strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown entity kind: {value}") from exc


@dataclass(frozen=True)
class EntityRef:
    kind: NodeKind
    id: str

    @classmethod
    def person(cls, entity_id: str) -> EntityRef:
        return cls(NodeKind.PERSON, entity_id)

    @classmethod
    def organization(cls, entity_id: str) -> EntityRef:
        return cls(NodeKind.ORGANIZATION, entity_id)

    @classmethod
    def parse(cls, kind: str, entity_id: str) -> EntityRef:
        node_kind = parse_node_kind(kind)
        if not entity_id:
            raise ValidationError("Entity id is required")
        return cls(node_kind, entity_id)


class RelationshipType(str, Enum):
    WORKS_AT = "WORKS_AT"
    FOUNDED = "FOUNDED"
    WORKED_WITH = "WORKED_WITH"
    KNOWS = "KNOWS"
    INVESTED_IN = "INVESTED_IN"
    INTRODUCED_BY = "INTRODUCED_BY"
    COMMUNICATES_WITH = "COMMUNICATES_WITH"


class _EdgeProperties(BaseModel):
    model_config = ConfigDict(extra="forbid")

    extra: dict[str, Any] = Field(default_factory=dict)


class WorksAtProperties(_EdgeProperties):
    role: str | None = None
    department: str | None = None
    is_current: bool = True
    start_date: date | None = None
    end_date: date | None = None


class FoundedProperties(_EdgeProperties):
    role: str | None = None
    year: int | None = None


class WorkedWithProperties(_EdgeProperties):
    context: str | None = None
    organization_id: str | None = None


class KnowsProperties(_EdgeProperties):
    context: str | None = None
    how_met: str | None = None


class InvestedInProperties(_EdgeProperties):
    round: str | None = None
    amount: float | None = Field(default=None, ge=0.0)
    currency: str | None = None
    invested_at: date | None = None


class IntroducedByProperties(_EdgeProperties):
    introduced_at: date | None = None
    context: str | None = None


class CommunicatesWithProperties(_EdgeProperties):
    channels: list[str] = Field(default_factory=list)
    interaction_count: int = Field(default=0, ge=0)
    last_interaction_at: datetime | None = None


PROPERTY_SCHEMAS: dict[RelationshipType, type[_EdgeProperties]] = {
    RelationshipType.WORKS_AT: WorksAtProperties,
    RelationshipType.FOUNDED: FoundedProperties,
    RelationshipType.WORKED_WITH: WorkedWithProperties,
    RelationshipType.KNOWS: KnowsProperties,
    RelationshipType.INVESTED_IN: InvestedInProperties,
    RelationshipType.INTRODUCED_BY: IntroducedByProperties,
    RelationshipType.COMMUNICATES_WITH: CommunicatesWithProperties,
}

_PERSON = frozenset({NodeKind.PERSON})
_ORG = frozenset({NodeKind.ORGANIZATION})
_ANY = frozenset(NodeKind)

# (allowed source kinds, allowed target kinds)
ENDPOINT_KINDS: dict[RelationshipType, tuple[frozenset[NodeKind], frozenset[NodeKind]]] = {
    RelationshipType.WORKS_AT: (_PERSON, _ORG),
    RelationshipType.FOUNDED: (_PERSON, _ORG),
    RelationshipType.WORKED_WITH: (_PERSON, _PERSON),
    RelationshipType.KNOWS: (_PERSON, _PERSON),
    RelationshipType.INVESTED_IN: (_ANY, _ORG),
    RelationshipType.INTRODUCED_BY: (_PERSON, _PERSON),
    RelationshipType.COMMUNICATES_WITH: (_PERSON, _PERSON),
}


def parse_relationship_type(value: str | RelationshipType) -> RelationshipType:
    if isinstance(value, RelationshipType):
        return value
    try:
        return RelationshipType(value.strip().upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown relationship type: {value}") from exc


def validate_endpoints(relationship_type: RelationshipType, source: EntityRef, target: EntityRef) -> None:
    source_kinds, target_kinds = ENDPOINT_KINDS[relationship_type]
    if source.kind not in source_kinds or target.kind not in target_kinds:
        raise ValidationError(
            f"{relationship_type.value} does not connect {source.kind.value} to {target.kind.value}",
            details={"source_kind": source.kind.value, "target_kind": target.kind.value},
        )
    if source == target:
        raise ValidationError("Relationship endpoints must differ")


def build_properties(relationship_type: RelationshipType, raw: dict[str, Any] | None) -> _EdgeProperties:
    schema = PROPERTY_SCHEMAS[relationship_type]
    known: dict[str, Any] = {}
    extra: dict[str, Any] = dict((raw or {}).get("extra") or {})
    for key, value in (raw or {}).items():
        if key == "extra":
            continue
        if key in schema.model_fields:
            known[key] = value
        else:
            extra[key] = value
    try:
        return schema(**known, extra=extra)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid properties for {relationship_type.value}",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def merge_properties(
    relationship_type: RelationshipType,
    existing: dict[str, Any] | None,
    update: dict[str, Any] | None,
) -> dict[str, Any]:
    """Overlay ``update`` on ``existing``; ``None`` values in the update never erase a stored value."""
    current = build_properties(relationship_type, existing).model_dump(mode="json", exclude_none=True)
    incoming = build_properties(relationship_type, update).model_dump(mode="json", exclude_unset=True, exclude_none=True)
    merged_extra = {**current.pop("extra", {}), **incoming.pop("extra", {})}
    current.update(incoming)
    current["extra"] = merged_extra
    return build_properties(relationship_type, current).model_dump(mode="json", exclude_none=True)
