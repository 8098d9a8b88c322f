from __future__ import annotations

from relgraph.services.prompts.registry import PromptDefinition, get_prompt_definitions, render_prompt

__all__ = [
    "PromptDefinition",
    "render_prompt",
    "get_prompt_definitions",
]
