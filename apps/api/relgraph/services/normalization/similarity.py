from __future__ import annotations

from relgraph.services.normalization.keys import normalize_name


def levenshtein_distance(left: str, right: str) -> int:
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j - 1] + cost, current[j - 1] + 1, previous[j] + 1))
        previous = current
    return previous[-1]


def similarity(left: str | None, right: str | None) -> float:
    """Edit-distance similarity of the normalized names, in [0, 1]."""
    a = normalize_name(left)
    b = normalize_name(right)
    if a == b:
        return 1.0 if a else 0.0
    if not a or not b:
        return 0.0
    distance = levenshtein_distance(a, b)
    return 1.0 - distance / max(len(a), len(b))


def is_same_person(left: str, right: str, threshold: float = 0.85) -> bool:
    return similarity(left, right) >= threshold


def is_same_organization(left: str, right: str, threshold: float = 0.80) -> bool:
    return similarity(left, right) >= threshold
