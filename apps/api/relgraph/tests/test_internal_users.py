from __future__ import annotations

from types import SimpleNamespace

from relgraph.services.identity import internal_users


def test_is_internal_email_matches_domain_and_explicit_email(monkeypatch) -> None:
    monkeypatch.setattr(
        internal_users,
        "get_settings",
        lambda: SimpleNamespace(
            internal_email_domains="relgraph.dev,corp.example",
            internal_user_emails="founder@gmail.com,Partner@Fund-Example.com",
        ),
    )
    internal_users.clear_internal_identity_cache()
    try:
        assert internal_users.is_internal_email("person@relgraph.dev") is True
        assert internal_users.is_internal_email("founder@gmail.com") is True
        assert internal_users.is_internal_email("PARTNER@FUND-EXAMPLE.COM") is True
        assert internal_users.is_internal_email("external@example.com") is False
        assert internal_users.is_internal_email("not-an-email") is False
    finally:
        internal_users.clear_internal_identity_cache()


def test_owner_side_includes_connection_owner_addresses() -> None:
    internal_users.clear_internal_identity_cache()
    assert internal_users.is_owner_side("Me@Example.com", ["me@example.com"]) is True
    assert internal_users.is_owner_side("you@example.com", ["me@example.com"]) is False
    assert internal_users.is_owner_side(None, ["me@example.com"]) is False
