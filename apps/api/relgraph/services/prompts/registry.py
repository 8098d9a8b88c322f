from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptDefinition:
    key: str
    description: str
    used_by: str
    template: str


_PROMPTS: dict[str, PromptDefinition] = {
    "relationship_summary_system": PromptDefinition(
        key="relationship_summary_system",
        description=(
            "System instructions for a short relationship summary shown next to strength scores. "
            "Forces strict JSON output so the caller can degrade cleanly on malformed replies."
        ),
        used_by="relgraph/services/scoring/summary.py::_summarize_with_openai",
        template=(
            "You summarize a professional relationship from interaction metadata only. "
            "Do not invent facts that are not present in the context. "
            "Return strict JSON with a single key summary holding two sentences at most."
        ),
    ),
    "relationship_summary_user": PromptDefinition(
        key="relationship_summary_user",
        description="User prompt carrying strength factors and recent interaction metadata for one person.",
        used_by="relgraph/services/scoring/summary.py::_summarize_with_openai",
        template="Summarize the relationship described by this JSON context.\n\n{context_json}",
    ),
    "person_enrichment_system": PromptDefinition(
        key="person_enrichment_system",
        description=(
            "System instructions for public-profile enrichment of a person. "
            "Requires JSON with optional profile_url, title, city, country and handle keys."
        ),
        used_by="relgraph/services/enrichment/provider.py::OpenAIWebEnrichmentProvider",
        template=(
            "You look up publicly known professional profile details. "
            "Return strict JSON with keys profile_url, title, city, country, handle. "
            "Use null for anything you are not confident about. Never guess contact details."
        ),
    ),
    "person_enrichment_user": PromptDefinition(
        key="person_enrichment_user",
        description="User prompt naming the person and an optional organization hint.",
        used_by="relgraph/services/enrichment/provider.py::OpenAIWebEnrichmentProvider",
        template="Person: {name}\nOrganization hint: {organization}",
    ),
}


def get_prompt_definitions() -> list[PromptDefinition]:
    return list(_PROMPTS.values())


def render_prompt(key: str, **variables: str) -> str:
    prompt = _PROMPTS.get(key)
    if prompt is None:
        raise KeyError(f"Unknown prompt key: {key}")

    try:
        return prompt.template.format(**variables)
    except KeyError as exc:
        missing_key = str(exc).strip("'")
        raise ValueError(f"Missing variable '{missing_key}' for prompt '{key}'") from exc
