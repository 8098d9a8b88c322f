from __future__ import annotations

from collections.abc import Iterable
from functools import lru_cache

from relgraph.core.config import get_settings
from relgraph.services.normalization.keys import normalize_email


def _split_setting(raw: str) -> list[str]:
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


@lru_cache(maxsize=1)
def internal_email_domains() -> frozenset[str]:
    return frozenset(_split_setting(get_settings().internal_email_domains))


@lru_cache(maxsize=1)
def internal_user_emails() -> frozenset[str]:
    values = (normalize_email(part) for part in _split_setting(get_settings().internal_user_emails))
    return frozenset(v for v in values if v)


def clear_internal_identity_cache() -> None:
    internal_email_domains.cache_clear()
    internal_user_emails.cache_clear()


def is_internal_email(email: str | None) -> bool:
    normalized = normalize_email(email)
    if not normalized:
        return False
    if normalized in internal_user_emails():
        return True
    domain = normalized.rsplit("@", 1)[-1]
    return domain in internal_email_domains()


def is_owner_side(email: str | None, owner_emails: Iterable[str | None] = ()) -> bool:
    """True for the connection owner's own addresses and any configured internal identity."""
    normalized = normalize_email(email)
    if not normalized:
        return False
    owners = {value for value in (normalize_email(item) for item in owner_emails) if value}
    return normalized in owners or is_internal_email(normalized)
