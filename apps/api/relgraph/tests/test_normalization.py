from __future__ import annotations

from relgraph.services.normalization.keys import (
    extract_domain,
    name_from_email,
    normalize_email,
    normalize_name,
    organization_canonical_key,
    split_display_name,
)
from relgraph.services.normalization.similarity import is_same_organization, is_same_person, similarity


def test_normalize_email_lowercases_and_rejects_malformed() -> None:
    assert normalize_email("  Jane.Doe@Acme.COM ") == "jane.doe@acme.com"
    assert normalize_email("not-an-email") is None
    assert normalize_email(None) is None


def test_normalize_name_folds_accents_and_punctuation() -> None:
    assert normalize_name("  Sarah-Jane  O'Brien ") == "sarahjane obrien"
    assert normalize_name("José Müller") == "jose muller"


def test_organization_canonical_key_drops_legal_suffixes() -> None:
    assert organization_canonical_key("Acme Labs, Inc.") == "acme_labs"
    assert organization_canonical_key("Acme Corporation") == "acme"
    assert organization_canonical_key("ACME LLC") == "acme"
    assert organization_canonical_key("Company") == "company"


def test_extract_domain_accepts_urls_emails_and_bare_domains() -> None:
    assert extract_domain("https://www.Acme.com/about") == "acme.com"
    assert extract_domain("jane@acme.com") == "acme.com"
    assert extract_domain("acme.io:8080") == "acme.io"
    assert extract_domain("localhost") is None
    assert extract_domain("") is None


def test_display_name_and_email_fallbacks() -> None:
    assert split_display_name('"Jane Q Doe"') == ("Jane", "Q Doe")
    assert split_display_name(None) == ("", "")
    assert name_from_email("jane.doe+crm@acme.com") == ("Jane", "Doe")


def test_similarity_is_bounded_and_symmetric() -> None:
    assert similarity("Jon Smith", "John Smith") == 0.9
    assert similarity("John Smith", "Jon Smith") == 0.9
    assert similarity("Acme", "Acme") == 1.0
    assert similarity("", "") == 0.0
    assert 0.0 <= similarity("Acme", "Globex") <= 1.0
    assert is_same_person("Jon Smith", "John Smith") is True
    assert is_same_organization("Acme Labs", "Globex Corp") is False
