from __future__ import annotations

import json
import logging

from relgraph.core.config import get_settings
from relgraph.db.pg.models import Interaction, Person
from relgraph.services.llm.json_reply import complete_json, openai_api_key
from relgraph.services.prompts import render_prompt
from relgraph.services.scoring.relationship_strength import StrengthResult

logger = logging.getLogger(__name__)


def _build_context(person: Person, result: StrengthResult, interactions: list[Interaction], limit: int = 12) -> dict:
    return {
        "person": person.full_name,
        "strength": result.strength,
        "trend": result.trend,
        "factors": {
            "recency": result.factors.recency,
            "frequency": result.factors.frequency,
            "engagement": result.factors.engagement,
            "reciprocity": result.factors.reciprocity,
        },
        "interaction_count": result.interaction_count,
        "recent_interactions": [
            {
                "type": item.type,
                "direction": item.direction,
                "timestamp": item.timestamp.isoformat(),
                "subject": (item.subject or "")[:160],
            }
            for item in interactions[:limit]
        ],
    }


def _summarize_with_openai(*, model: str, api_key: str, context: dict) -> str | None:
    payload = complete_json(
        model=model,
        api_key=api_key,
        system_prompt=render_prompt("relationship_summary_system"),
        user_prompt=render_prompt("relationship_summary_user", context_json=json.dumps(context, ensure_ascii=True)),
    )
    summary = payload.get("summary")
    if isinstance(summary, str) and summary.strip():
        return summary.strip()
    return None


def summarize_relationship(person: Person, result: StrengthResult, interactions: list[Interaction]) -> str | None:
    """Optional AI summary; every failure degrades to ``None``."""
    settings = get_settings()
    if not settings.strength_ai_summary_enabled:
        return None
    api_key = openai_api_key()
    if not api_key:
        logger.warning("strength_summary_missing_api_key", extra={"person_id": person.id})
        return None
    try:
        return _summarize_with_openai(
            model=settings.llm_model,
            api_key=api_key,
            context=_build_context(person, result, interactions),
        )
    except Exception:
        logger.exception("strength_summary_failed", extra={"person_id": person.id})
        return None
