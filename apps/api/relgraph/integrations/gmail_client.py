from __future__ import annotations

from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any

import httpx

from relgraph.core.errors import UpstreamProviderError
from relgraph.integrations.http_errors import request_json
from relgraph.services.sync.types import ItemParticipant, ProviderIdentity, ProviderItem

PAGE_SIZE = 500
METADATA_HEADERS = ("From", "To", "Cc", "Subject", "Date")


def _headers(message: dict[str, Any]) -> dict[str, str]:
    headers = (message.get("payload") or {}).get("headers") or []
    return {str(h.get("name") or "").lower(): str(h.get("value") or "") for h in headers}


def _occurred_at(message: dict[str, Any], headers: dict[str, str]) -> datetime:
    internal_date = message.get("internalDate")
    if internal_date:
        return datetime.fromtimestamp(int(internal_date) / 1000.0, tz=timezone.utc)
    if headers.get("date"):
        parsed = parsedate_to_datetime(headers["date"])
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError("Message has no date")


def message_to_item(message: dict[str, Any]) -> ProviderItem:
    external_id = str(message.get("id") or "").strip()
    if not external_id:
        raise ValueError("Message is missing an id")
    headers = _headers(message)
    participants: list[ItemParticipant] = []
    for role in ("from", "to", "cc"):
        for name, address in getaddresses([headers.get(role, "")]):
            address = address.strip().lower()
            if "@" not in address:
                continue
            participants.append(ItemParticipant(email=address, name=name.strip() or None, role=role))
    if not any(p.role == "from" for p in participants):
        raise ValueError("Message has no sender")
    return ProviderItem(
        external_id=external_id,
        occurred_at=_occurred_at(message, headers),
        item_type="email",
        participants=participants,
        subject=headers.get("subject") or None,
        thread_id=message.get("threadId"),
        payload={
            "id": external_id,
            "threadId": message.get("threadId"),
            "labelIds": message.get("labelIds") or [],
            "snippet": message.get("snippet"),
            "headers": headers,
        },
    )


class GmailClient:
    provider = "gmail"

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = "https://gmail.googleapis.com/gmail/v1",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GmailClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _get(self, path: str, params: Any = None) -> dict[str, Any]:
        body = request_json(self._client, self.provider, "GET", path, params=params)
        if not isinstance(body, dict):
            raise UpstreamProviderError("Unexpected Gmail response", provider=self.provider, kind="bad_response")
        return body

    def verify_credential(self) -> ProviderIdentity:
        profile = self._get("/users/me/profile")
        email = str(profile.get("emailAddress") or "").strip().lower()
        if not email:
            raise UpstreamProviderError("Gmail profile has no address", provider=self.provider, kind="auth")
        return ProviderIdentity(provider_user_id=email, email=email)

    def _fetch_message(self, message_id: str) -> dict[str, Any]:
        params = [("format", "metadata")] + [("metadataHeaders", header) for header in METADATA_HEADERS]
        return self._get(f"/users/me/messages/{message_id}", params=params)

    def list_items_since(
        self,
        cursor: datetime | None,
        max_items: int,
        from_date: datetime | None = None,
    ) -> list[ProviderItem]:
        since = max(filter(None, [cursor, from_date]), default=None)
        params: dict[str, Any] = {"maxResults": PAGE_SIZE}
        if since is not None:
            # Gmail's after: filter is second-granular and exclusive; step back one second.
            params["q"] = f"after:{int(since.timestamp()) - 1}"

        # Listing is newest first and must be exhausted to find the oldest ids after the cursor.
        message_ids: list[str] = []
        while True:
            body = self._get("/users/me/messages", params=params)
            message_ids.extend(str(m["id"]) for m in body.get("messages") or [] if m.get("id"))
            page_token = body.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        oldest_first = list(reversed(message_ids))[:max_items]
        items: list[ProviderItem] = []
        for message_id in oldest_first:
            message = self._fetch_message(message_id)
            try:
                items.append(message_to_item(message))
            except ValueError:
                items.append(
                    ProviderItem(
                        external_id=message_id,
                        occurred_at=since or datetime.now(timezone.utc),
                        item_type="email",
                        payload={"malformed": True, "id": message_id},
                    )
                )
        items.sort(key=lambda item: (item.occurred_at, item.external_id))
        return items

    def get_item(self, external_id: str) -> ProviderItem | None:
        try:
            message = self._fetch_message(external_id)
        except UpstreamProviderError as exc:
            if exc.status == 404:
                return None
            raise
        return message_to_item(message)
