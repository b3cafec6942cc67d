from __future__ import annotations

from typing import List, Optional

from .normalize import sanitize_idea_for_prompt


FRAMEWORKS = {
    "business": (
        "# Business Analysis Framework\n\n"
        "You are analyzing an idea for business viability. Produce a structured markdown research document "
        "with these sections: 1. Problem Analysis, 2. Market Assessment (TAM/SAM/SOM, competitors, "
        "differentiators), 3. Use Cases & Personas, 4. Technical Feasibility (MVP scope, major risks), "
        "5. Verdict with a recommendation of STRONG YES | CONDITIONAL YES | PIVOT | PASS, two to three "
        "paragraphs of reasoning and the first three steps if pursuing. Be honest and direct."
    ),
    "exploration": (
        "# Exploration Framework\n\n"
        "You are exploring an idea with divergent thinking. Produce a markdown document with: Core Insight "
        "Deconstruction, five to ten Directions to Explore (each with description, why it could work, risks "
        "and a first step), Unexpected Connections, and Questions Worth Answering."
    ),
}


def build_system_prompt(mode: str) -> str:
    return FRAMEWORKS.get(mode, FRAMEWORKS["business"])


def _frontmatter(idea: str, mode: str, model: str, date_prefix: str, job_id: str, is_update: bool) -> str:
    escaped = idea.replace('"', '\\"').replace("\n", "\\n")
    return "\n".join([
        "---",
        f'idea: "{escaped}"',
        f"mode: {mode}",
        f"model: {model}",
        f"date: {date_prefix}",
        f"job_id: {job_id}",
        f"is_update: {'true' if is_update else 'false'}",
        "---",
    ])


def build_user_prompt(
    idea: str,
    mode: str,
    model: str,
    date_prefix: str,
    job_id: str,
    context: Optional[str] = None,
    existing_content: Optional[str] = None,
    previous_research: Optional[str] = None,
    existing_research_list: Optional[List[str]] = None,
) -> str:
    parts = [
        _frontmatter(idea, mode, model, date_prefix, job_id, is_update=bool(existing_content)),
        f"## Idea\n\n{sanitize_idea_for_prompt(idea)}",
    ]
    if context:
        parts.append(f"## Additional Context\n\n{context}")
    if existing_research_list:
        listing = "\n".join(f"- {name}" for name in existing_research_list)
        parts.append(
            "## Related Research\n\nThe following research documents already exist in this repository. "
            f"Consider referencing or building upon any relevant prior work:\n\n{listing}"
        )
    if existing_content:
        parts.append(
            "## Existing Research\n\nThis is an update to existing research. Review and build upon the "
            f"following:\n\n{existing_content}"
        )
        parts.append(
            "## Instructions\n\nAdd a new section to this research document with updated analysis. Prefix the "
            f'new section with "## Update - {date_prefix}" and include any new insights, changed '
            "circumstances, or refined thinking."
        )
    elif previous_research:
        parts.append(
            "## Previous Research\n\nThis exploration continues from earlier work on a related idea. Use it "
            f"as a starting point rather than repeating it:\n\n{previous_research}"
        )
    return "\n\n".join(parts)
