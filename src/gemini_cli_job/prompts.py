"""Prompt assembly for templated jobs."""

from __future__ import annotations

NO_PROMPT_CONTENT_ERROR = "No prompt content provided (template or custom prompt required)"

OUTPUT_CONTRACT = """\
## Response Format

IMPORTANT: respond with exactly one JSON object and nothing else:
{
  "jobResult": "<the complete report as a single string>",
  "jobMemory": {"<key>": "<value to remember for the next run>"}
}

- "jobResult" is required and must be a non-empty string.
- "jobMemory" is optional. Include only keys you want to add or change;
  keys you omit keep their stored values.
- Do not wrap the object in markdown fences or add commentary around it.
"""


def build_job_prompt(
    template_content: str,
    memory_section: str,
    custom_prompt: str | None,
) -> str:
    """Join template context, memory, custom instructions and the output contract."""

    template = template_content.strip()
    custom = (custom_prompt or "").strip()
    if not template and not custom:
        raise ValueError(NO_PROMPT_CONTENT_ERROR)

    sections = [template, memory_section.strip(), custom, OUTPUT_CONTRACT.strip()]
    return "\n\n".join(section for section in sections if section)
