"""Relationship strength from communication history.

Four factors in [0, 1] are combined with fixed weights:

* recency: exponential decay on days since the latest interaction.
* frequency: interactions inside the trailing window, log-saturating.
* engagement: share of threads with back-and-forth (both directions, or a meeting).
* reciprocity: min/max of inbound vs outbound counts.

Trend compares the score over the most recent window against the window before it.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from relgraph.core.config import Settings

Trend = Literal["strengthening", "stable", "weakening"]

WEIGHTS = {
    "recency": 0.35,
    "frequency": 0.25,
    "engagement": 0.20,
    "reciprocity": 0.20,
}


@dataclass(frozen=True)
class InteractionSignal:
    timestamp: datetime
    direction: str = "na"
    thread_id: str | None = None
    type: str = "email"


@dataclass(frozen=True)
class StrengthParams:
    half_life_days: float = 30.0
    frequency_window_days: int = 90
    frequency_saturation: int = 30
    trend_window_days: int = 45
    trend_tolerance: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> StrengthParams:
        return cls(
            half_life_days=settings.strength_recency_half_life_days,
            frequency_window_days=settings.strength_frequency_window_days,
            frequency_saturation=settings.strength_frequency_saturation,
            trend_window_days=settings.strength_trend_window_days,
            trend_tolerance=settings.strength_trend_tolerance,
        )


@dataclass(frozen=True)
class StrengthFactors:
    recency: float
    frequency: float
    engagement: float
    reciprocity: float


@dataclass(frozen=True)
class StrengthResult:
    strength: float
    factors: StrengthFactors
    trend: Trend
    interaction_count: int
    last_interaction_at: datetime


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def recency_score(last_interaction_at: datetime, now: datetime, half_life_days: float) -> float:
    elapsed_days = max((now - as_utc(last_interaction_at)).total_seconds() / 86400.0, 0.0)
    return _clamp(0.5 ** (elapsed_days / half_life_days))


def frequency_score(count: int, saturation: float) -> float:
    if count <= 0:
        return 0.0
    return _clamp(math.log1p(count) / math.log1p(max(saturation, 1.0)))


def engagement_score(signals: list[InteractionSignal]) -> float:
    threads: dict[str, set[str]] = defaultdict(set)
    for index, signal in enumerate(signals):
        key = signal.thread_id or f"single:{index}"
        threads[key].add("meeting" if signal.type == "meeting" else signal.direction)
    if not threads:
        return 0.0
    mutual = sum(1 for kinds in threads.values() if "meeting" in kinds or {"in", "out"} <= kinds)
    return _clamp(mutual / len(threads))


def reciprocity_score(inbound: int, outbound: int) -> float:
    if inbound == 0 and outbound == 0:
        # Meetings and notes carry no direction; treat the balance as unknown.
        return 0.5
    return _clamp(min(inbound, outbound) / max(inbound, outbound))


def combine(factors: StrengthFactors) -> float:
    total = (
        factors.recency * WEIGHTS["recency"]
        + factors.frequency * WEIGHTS["frequency"]
        + factors.engagement * WEIGHTS["engagement"]
        + factors.reciprocity * WEIGHTS["reciprocity"]
    )
    return round(_clamp(total), 4)


def compute_factors(
    signals: list[InteractionSignal],
    now: datetime,
    params: StrengthParams,
    *,
    window_days: int | None = None,
) -> StrengthFactors | None:
    if not signals:
        return None
    window = window_days or params.frequency_window_days
    window_start = now - timedelta(days=window)
    in_window = [s for s in signals if window_start < as_utc(s.timestamp) <= now]
    saturation = params.frequency_saturation * (window / params.frequency_window_days)
    last = max(as_utc(s.timestamp) for s in signals)
    inbound = sum(1 for s in signals if s.direction == "in")
    outbound = sum(1 for s in signals if s.direction == "out")
    return StrengthFactors(
        recency=round(recency_score(last, now, params.half_life_days), 4),
        frequency=round(frequency_score(len(in_window), saturation), 4),
        engagement=round(engagement_score(signals), 4),
        reciprocity=round(reciprocity_score(inbound, outbound), 4),
    )


def classify_trend(recent: float | None, previous: float | None, tolerance: float) -> Trend:
    if recent is None and previous is None:
        return "stable"
    if previous is None:
        return "strengthening"
    if recent is None:
        return "weakening"
    diff = recent - previous
    if diff > tolerance:
        return "strengthening"
    if diff < -tolerance:
        return "weakening"
    return "stable"


def compute_trend(signals: list[InteractionSignal], now: datetime, params: StrengthParams) -> Trend:
    window = timedelta(days=params.trend_window_days)
    boundary = now - window
    recent = [s for s in signals if boundary < as_utc(s.timestamp) <= now]
    previous = [s for s in signals if boundary - window < as_utc(s.timestamp) <= boundary]

    recent_factors = compute_factors(recent, now, params, window_days=params.trend_window_days)
    previous_factors = compute_factors(previous, boundary, params, window_days=params.trend_window_days)
    return classify_trend(
        combine(recent_factors) if recent_factors else None,
        combine(previous_factors) if previous_factors else None,
        params.trend_tolerance,
    )


def compute_relationship_strength(
    signals: list[InteractionSignal],
    *,
    now: datetime | None = None,
    params: StrengthParams | None = None,
) -> StrengthResult | None:
    """``None`` when the person has no linked communication."""
    if not signals:
        return None
    params = params or StrengthParams()
    now = as_utc(now or datetime.now(timezone.utc))
    factors = compute_factors(signals, now, params)
    return StrengthResult(
        strength=combine(factors),
        factors=factors,
        trend=compute_trend(signals, now, params),
        interaction_count=len(signals),
        last_interaction_at=max(as_utc(s.timestamp) for s in signals),
    )


def recommendation_for(strength: float, trend: Trend, reciprocity: float) -> str | None:
    if trend == "weakening" and strength < 0.5:
        return "Relationship may need attention. Consider reaching out soon."
    if strength >= 0.8:
        return "Strong relationship. Continue regular engagement."
    if reciprocity < 0.4:
        return "Communication is one-sided. Try to balance the exchange."
    return None
