from __future__ import annotations

import re
import unicodedata

_LEGAL_SUFFIX_RE = re.compile(r"\b(inc|llc|ltd|corp|corporation|limited|company|co)\b\.?")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_NON_ALNUM_SPACE_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")


def normalize_email(value: str | None) -> str | None:
    normalized = (value or "").strip().lower()
    if not normalized or "@" not in normalized:
        return None
    return normalized


def fold_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(value: str | None) -> str:
    """Lower-case, accent-free, punctuation-free form used for fuzzy comparisons.

    ``"  Sarah-Jane  O'Brien "`` becomes ``"sarahjane obrien"``.
    """
    folded = fold_accents((value or "").strip().lower())
    stripped = _NON_ALNUM_SPACE_RE.sub("", folded)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def organization_canonical_key(name: str) -> str:
    """Dedup key for an organization name: legal suffixes dropped, separators collapsed to ``_``."""
    lowered = fold_accents(name.strip().lower())
    without_suffix = _LEGAL_SUFFIX_RE.sub(" ", lowered)
    key = _NON_ALNUM_RE.sub("_", without_suffix).strip("_")
    if not key:
        # A name made only of suffixes ("Company") still needs a stable key.
        key = _NON_ALNUM_RE.sub("_", lowered).strip("_")
    return key


def person_name_key(first_name: str, last_name: str = "") -> str:
    return normalize_name(f"{first_name} {last_name}").replace(" ", "_")


def extract_domain(value: str | None) -> str | None:
    """Domain from a URL, bare domain or e-mail address, without scheme, path, port or ``www.``."""
    domain = (value or "").strip().lower()
    if not domain:
        return None
    if "@" in domain:
        domain = domain.rsplit("@", 1)[-1]
    domain = _SCHEME_RE.sub("", domain)
    domain = domain.split("/", 1)[0].split(":", 1)[0].strip(".")
    if domain.startswith("www."):
        domain = domain[4:]
    if "." not in domain or not re.fullmatch(r"[a-z0-9.-]+", domain):
        return None
    return domain


def split_display_name(display_name: str | None) -> tuple[str, str]:
    parts = (display_name or "").strip().strip('"').split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def name_from_email(email: str | None) -> tuple[str, str]:
    """Best-effort first/last name from an address local part (``jane.doe@x.com`` -> Jane, Doe)."""
    normalized = normalize_email(email)
    if not normalized:
        return "", ""
    local = normalized.split("@", 1)[0].split("+", 1)[0]
    tokens = [token for token in re.split(r"[._\-]+", local) if token and not token.isdigit()]
    if not tokens:
        return local, ""
    return tokens[0].capitalize(), " ".join(token.capitalize() for token in tokens[1:])
