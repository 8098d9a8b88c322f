from __future__ import annotations

import json
import os
from typing import Any

from relgraph.core.config import get_settings


def extract_json_object(text: str) -> dict[str, Any] | None:
    raw = (text or "").strip()
    if not raw:
        return None

    candidates = [raw]
    start = raw.find("{")
    end = raw.rfind("}")
    if start >= 0 and end > start:
        candidates.append(raw[start : end + 1])

    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(payload, dict):
            return payload
    return None


def openai_api_key() -> str | None:
    """The OpenAI key when the configured provider is OpenAI and a key is present."""
    if get_settings().llm_provider.strip().lower() != "openai":
        return None
    return os.getenv("OPENAI_API_KEY", "").strip() or None


def complete_json(*, model: str, api_key: str, system_prompt: str, user_prompt: str) -> dict[str, Any]:
    from openai import OpenAI

    client = OpenAI(api_key=api_key, timeout=get_settings().provider_timeout_seconds)
    response = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        temperature=0.0,
        response_format={"type": "json_object"},
    )
    content = (response.choices[0].message.content or "").strip()
    return extract_json_object(content) or {}
