from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from relgraph.core.errors import UpstreamProviderError
from relgraph.integrations.http_errors import request_json
from relgraph.services.sync.types import ItemParticipant, ProviderIdentity, ProviderItem

PAGE_SIZE = 50

_USER_QUERY = """
query {
  user { user_id email name }
}
"""

_TRANSCRIPT_FIELDS = """
  id
  title
  date
  duration
  transcript_url
  organizer_email
  participants
  meeting_attendees { email name displayName }
  summary { overview action_items keywords }
"""

_TRANSCRIPTS_QUERY = (
    "query Transcripts($limit: Int, $skip: Int, $fromDate: DateTime) {\n"
    "  transcripts(limit: $limit, skip: $skip, fromDate: $fromDate) {" + _TRANSCRIPT_FIELDS + "}\n}"
)

_TRANSCRIPT_QUERY = (
    "query Transcript($id: String!) {\n  transcript(id: $id) {" + _TRANSCRIPT_FIELDS + "}\n}"
)


def _parse_date(value: Any) -> datetime:
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unparseable transcript date: {value!r}")


def transcript_to_item(transcript: dict[str, Any]) -> ProviderItem:
    external_id = str(transcript.get("id") or "").strip()
    if not external_id:
        raise ValueError("Transcript is missing an id")
    participants: list[ItemParticipant] = []
    seen: set[str] = set()
    organizer = str(transcript.get("organizer_email") or "").strip().lower()
    if organizer:
        participants.append(ItemParticipant(email=organizer, role="owner"))
        seen.add(organizer)
    for attendee in transcript.get("meeting_attendees") or []:
        email = str(attendee.get("email") or "").strip().lower()
        if not email or email in seen:
            continue
        seen.add(email)
        name = attendee.get("displayName") or attendee.get("name")
        participants.append(ItemParticipant(email=email, name=name, role="attendee"))
    for raw in transcript.get("participants") or []:
        email = str(raw or "").strip().lower()
        if "@" in email and email not in seen:
            seen.add(email)
            participants.append(ItemParticipant(email=email, role="attendee"))
    return ProviderItem(
        external_id=external_id,
        occurred_at=_parse_date(transcript.get("date")),
        item_type="meeting",
        participants=participants,
        subject=transcript.get("title"),
        thread_id=external_id,
        payload=transcript,
    )


class FirefliesClient:
    provider = "fireflies"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.fireflies.ai/graphql",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        )
        self._base_url = base_url

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> FirefliesClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _query(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        body = request_json(
            self._client,
            self.provider,
            "POST",
            self._base_url,
            json={"query": query, "variables": variables or {}},
        )
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            message = str(errors[0].get("message") or "GraphQL error")
            kind = "auth" if "auth" in message.lower() or "api key" in message.lower() else "bad_response"
            raise UpstreamProviderError(f"Fireflies GraphQL error: {message}", provider=self.provider, kind=kind)
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise UpstreamProviderError("No data returned from Fireflies API", provider=self.provider, kind="bad_response")
        return data

    def verify_credential(self) -> ProviderIdentity:
        user = self._query(_USER_QUERY).get("user") or {}
        user_id = str(user.get("user_id") or "").strip()
        if not user_id:
            raise UpstreamProviderError("Fireflies did not return a user", provider=self.provider, kind="auth")
        return ProviderIdentity(provider_user_id=user_id, email=user.get("email"), display_name=user.get("name"))

    def list_items_since(
        self,
        cursor: datetime | None,
        max_items: int,
        from_date: datetime | None = None,
    ) -> list[ProviderItem]:
        since = max(filter(None, [cursor, from_date]), default=None)
        # Pages come newest first, so every page after the cursor is read before the oldest are taken.
        transcripts: list[dict[str, Any]] = []
        skip = 0
        while True:
            variables: dict[str, Any] = {"limit": PAGE_SIZE, "skip": skip}
            if since is not None:
                variables["fromDate"] = since.isoformat()
            batch = self._query(_TRANSCRIPTS_QUERY, variables).get("transcripts") or []
            transcripts.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            skip += PAGE_SIZE

        items: list[ProviderItem] = []
        for transcript in transcripts:
            try:
                items.append(transcript_to_item(transcript))
            except ValueError:
                items.append(
                    ProviderItem(
                        external_id=str(transcript.get("id") or "unknown"),
                        occurred_at=since or datetime.now(timezone.utc),
                        item_type="meeting",
                        subject=transcript.get("title"),
                        payload={"malformed": True, **transcript},
                    )
                )
        items.sort(key=lambda item: (item.occurred_at, item.external_id))
        return items[:max_items]

    def get_item(self, external_id: str) -> ProviderItem | None:
        transcript = self._query(_TRANSCRIPT_QUERY, {"id": external_id}).get("transcript")
        if not transcript:
            return None
        return transcript_to_item(transcript)
