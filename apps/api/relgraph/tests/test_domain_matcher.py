from __future__ import annotations

from relgraph.services.matching.blocklist import is_blocked_domain
from relgraph.services.matching.domains import SenderRecord, auto_applicable, find_domain_candidates


def test_exact_domain_label_scores_one_and_auto_applies() -> None:
    corpus = [SenderRecord("jane@acme.com", "Jane Doe")]

    candidates = find_domain_candidates("Acme Labs", corpus)

    assert len(candidates) == 1
    assert candidates[0].domain == "acme.com"
    assert candidates[0].score == 1.0
    assert candidates[0].match_type == "exact_domain_match"
    assert auto_applicable(candidates) == candidates[0]


def test_display_name_prefix_match_is_not_auto_applied() -> None:
    corpus = [SenderRecord("hello@novahq.io", "Nova Team")]

    candidates = find_domain_candidates("Nova Partners", corpus)

    assert [(c.domain, c.score, c.match_type) for c in candidates] == [
        ("novahq.io", 0.85, "from_name_starts_with_org")
    ]
    assert auto_applicable(candidates) is None


def test_generic_and_bulk_mail_domains_are_never_candidates() -> None:
    corpus = [
        SenderRecord("acme.team@gmail.com", "Acme Labs"),
        SenderRecord("news@mail.acme.com", "Acme Labs"),
        SenderRecord("ops@calendly.com", "Acme Labs via Calendly"),
    ]

    assert find_domain_candidates("Acme Labs", corpus) == []
    assert is_blocked_domain("gmail.com") is True
    assert is_blocked_domain("acme.com") is False


def test_best_score_per_domain_and_deterministic_order() -> None:
    corpus = [
        SenderRecord("a@globexcorp.com", None),
        SenderRecord("b@globex.com", "Someone Else"),
        SenderRecord("c@globexcorp.com", "Globex Sales"),
    ]

    candidates = find_domain_candidates("Globex", corpus)

    assert [c.domain for c in candidates] == ["globex.com", "globexcorp.com"]
    assert candidates[0].score == 1.0
    assert candidates[1].score == 0.95
    assert len({c.domain for c in candidates}) == len(candidates)


def test_short_or_empty_names_produce_no_candidates() -> None:
    corpus = [SenderRecord("x@ab.com", "AB")]
    assert find_domain_candidates("AB", corpus) == []
    assert find_domain_candidates("", corpus) == []


def test_display_name_containing_org_name() -> None:
    corpus = [SenderRecord("jane@irs-mail.net", "Jane @ Initrode Systems")]

    candidates = find_domain_candidates("Initrode Systems", corpus)

    assert [(c.domain, c.score, c.match_type) for c in candidates] == [
        ("irs-mail.net", 0.9, "from_name_contains_org")
    ]
    assert candidates[0].from_name == "Jane @ Initrode Systems"


def test_three_letter_name_never_scores_as_exact_match() -> None:
    corpus = [SenderRecord("press@ibm.com", None)]

    candidates = find_domain_candidates("IBM", corpus)

    assert [(c.domain, c.score, c.match_type) for c in candidates] == [("ibm.com", 0.9, "high_similarity")]
