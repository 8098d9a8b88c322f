"""Organization-name to e-mail-domain matching over observed senders.

Rules, strongest first (a candidate takes the first rule it satisfies):

* ``exact_domain_match`` 1.0: the domain's first label is the org's primary word
  or its whole normalized name, only when the primary word has 4+ chars. Shorter
  names such as "IBM" can still reach ``high_similarity``.
* ``domain_contains_name`` 0.95: the first label contains a primary word of 5+ chars.
* ``from_name_contains_org`` 0.9: the display name contains the org name, or a
  primary word of 5+ chars.
* ``from_name_starts_with_org`` 0.85: the display name's first token is a primary
  word of 4+ chars.
* ``high_similarity``: label similarity at or above the threshold, scaled by 0.9.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from relgraph.core.config import get_settings
from relgraph.services.matching.blocklist import is_blocked_domain
from relgraph.services.normalization.keys import fold_accents
from relgraph.services.normalization.similarity import levenshtein_distance

_DOMAIN_RE = re.compile(r"@([a-z0-9.-]+\.[a-z]{2,})$")
_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

NAME_SUFFIXES = frozenset({"inc", "llc", "labs", "co", "corp", "corporation", "ltd", "limited", "company"})
_LABEL_SUFFIXES = ("inc", "llc", "corp", "labs", "io", "ai", "co")


@dataclass(frozen=True)
class SenderRecord:
    from_email: str | None
    from_name: str | None = None


@dataclass(frozen=True)
class DomainCandidate:
    domain: str
    score: float
    match_type: str
    email: str
    from_name: str | None = None


def sender_domain(email: str | None, blocked: frozenset[str] | None = None) -> str | None:
    match = _DOMAIN_RE.search((email or "").strip().lower())
    if not match:
        return None
    domain = match.group(1)
    if is_blocked_domain(domain, blocked):
        return None
    return domain


def name_tokens(org_name: str) -> list[str]:
    lowered = fold_accents(org_name.strip().lower())
    return [token for token in _TOKEN_SPLIT_RE.split(lowered) if token and token not in NAME_SUFFIXES]


def primary_word(tokens: list[str]) -> str:
    significant = [token for token in tokens if len(token) >= 3]
    for token in significant:
        if len(token) >= 4:
            return token
    return significant[0] if significant else ""


def _strip_label_suffixes(value: str) -> str:
    stripped = _NON_ALNUM_RE.sub("", value.lower())
    for suffix in _LABEL_SUFFIXES:
        if stripped.endswith(suffix) and len(stripped) > len(suffix):
            stripped = stripped[: -len(suffix)]
    return stripped


def label_similarity(org_name: str, label: str) -> float:
    """Prefix/containment aware similarity between an org name and a domain label."""
    a = _strip_label_suffixes(fold_accents(org_name))
    b = _strip_label_suffixes(label)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.9
    a_prefix, b_prefix = a[:6], b[:6]
    if (len(a_prefix) >= 4 and a_prefix in b) or (len(b_prefix) >= 4 and b_prefix in a):
        return 0.8
    return 1.0 - levenshtein_distance(a, b) / max(len(a), len(b))


def _score(
    org_name: str,
    tokens: list[str],
    primary: str,
    domain: str,
    from_name: str | None,
    similarity_threshold: float,
) -> tuple[float, str] | None:
    label = domain.split(".", 1)[0]
    normalized_org = "".join(tokens)
    if len(primary) >= 4 and label in (normalized_org, primary):
        return 1.0, "exact_domain_match"
    if len(primary) >= 5 and primary in label:
        return 0.95, "domain_contains_name"
    if from_name:
        display = fold_accents(from_name.strip().lower())
        if org_name.strip().lower() in display or (len(primary) >= 5 and primary in display):
            return 0.9, "from_name_contains_org"
        display_tokens = display.split()
        if display_tokens and len(primary) >= 4 and display_tokens[0] == primary:
            return 0.85, "from_name_starts_with_org"
    similarity = label_similarity(org_name, label)
    if similarity >= similarity_threshold:
        return round(similarity * 0.9, 4), "high_similarity"
    return None


def find_domain_candidates(
    org_name: str,
    corpus: Iterable[SenderRecord],
    *,
    similarity_threshold: float | None = None,
    blocked: frozenset[str] | None = None,
) -> list[DomainCandidate]:
    """Ranked domain candidates for ``org_name``: best score per domain, score desc then domain asc."""
    threshold = get_settings().domain_similarity_threshold if similarity_threshold is None else similarity_threshold
    tokens = name_tokens(org_name or "")
    primary = primary_word(tokens)
    if len(primary) < 3:
        return []

    best: dict[str, DomainCandidate] = {}
    for record in corpus:
        domain = sender_domain(record.from_email, blocked)
        if domain is None:
            continue
        scored = _score(org_name, tokens, primary, domain, record.from_name, threshold)
        if scored is None:
            continue
        score, match_type = scored
        current = best.get(domain)
        if current is None or score > current.score:
            best[domain] = DomainCandidate(
                domain=domain,
                score=score,
                match_type=match_type,
                email=(record.from_email or "").strip().lower(),
                from_name=record.from_name,
            )
    return sorted(best.values(), key=lambda candidate: (-candidate.score, candidate.domain))


def auto_applicable(candidates: list[DomainCandidate], threshold: float | None = None) -> DomainCandidate | None:
    """The top candidate when it clears the auto-apply bar; lower scores need a human."""
    cutoff = get_settings().domain_auto_apply_threshold if threshold is None else threshold
    if candidates and candidates[0].score >= cutoff:
        return candidates[0]
    return None
