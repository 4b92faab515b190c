"""Prompt template loader for judge prompts.

Loads Markdown prompt templates from the prompts/ directory and renders
them with Jinja2 variable substitution. Used by the LiteLLM evaluator
to build the scoring and discussion prompts for each judge.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import BaseLoader, Environment

_PROMPTS_DIR = Path(__file__).parent


def render_prompt(template_name: str, **variables: object) -> str:
    """Load a prompt template and render it with Jinja2 variables.

    Args:
        template_name: Name of the template file (without .md extension).
        **variables: Template variables (agent, content, criteria,
                     own_score, peer_scores, ...).

    Returns:
        The rendered prompt string.

    Raises:
        FileNotFoundError: If the template file does not exist.
    """
    path = _PROMPTS_DIR / f"{template_name}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")

    template_text = path.read_text(encoding="utf-8")

    # Default Undefined renders as empty, so optional {% if %} blocks are skipped
    env = Environment(loader=BaseLoader(), keep_trailing_newline=True)
    return env.from_string(template_text).render(**variables)
