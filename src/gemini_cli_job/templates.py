"""Markdown templates that provide the context part of job prompts."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

CUSTOM_ENTRY = "custom"
CUSTOM_ENTRY_TEXT = "Generate a report based on the following custom requirements:"
TEMPLATES_DIR_NAME = "templates"

_ABOUT = """\
# About

This file should contain information about your organization, team members, and project context.

## Team Members

| Name | GitLab User ID | Email Address |
|------|---------------|---------------|
| Team Member 1 | user1 | user1@company.com |
| Team Member 2 | user2 | user2@company.com |

## Projects

List your main projects and their details here.
"""

_RELEASE_NOTES_RULES = """\
# Release Notes Rules

## Guidelines for Release Notes Generation

- Focus on user-facing changes
- Include new features, bug fixes, and improvements
- Organize by category (Features, Bug Fixes, Improvements)
- Use clear, non-technical language
- Include links to relevant tickets or pull requests
"""

_WEEKLY_UPDATE_RULES = """\
# Weekly Update Rules

## Guidelines for Weekly Updates

- Summarize completed work from the past week
- Highlight key achievements and milestones
- List any blockers or challenges
- Mention upcoming priorities for next week
- Include metrics where relevant
"""

_DAILY_STANDUP_RULES = """\
# Daily Standup Rules

## Guidelines for Daily Standup Summaries

- What was accomplished yesterday
- What is planned for today
- Any blockers or dependencies
- Keep it concise and focused
- Highlight cross-team collaboration
"""

_PRODUCTS = """\
# Products

List your products, services, and key information here.

## Product 1
- Description
- Key features
- Current version

## Product 2
- Description
- Key features
- Current version
"""

_WORKFLOWS = """\
# Workflows

Document your team's workflows, processes, and standard procedures.

## Development Workflow
1. Create feature branch
2. Implement changes
3. Create merge request
4. Code review
5. Merge to main

## Release Process
1. Prepare release notes
2. Tag release
3. Deploy to staging
4. Test and validate
5. Deploy to production
"""

DEFAULT_TEMPLATES: dict[str, str] = {
    "about.md": _ABOUT,
    "release-notes-rules.md": _RELEASE_NOTES_RULES,
    "weekly-update-rules.md": _WEEKLY_UPDATE_RULES,
    "daily-standup-rules.md": _DAILY_STANDUP_RULES,
    "products.md": _PRODUCTS,
    "workflows.md": _WORKFLOWS,
}


class TemplateNotFoundError(FileNotFoundError):
    """A context file listed in a job config does not exist."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Context file not found: {path}")
        self.path = path


class TemplateStore:
    """Resolves and reads context files relative to the config directory."""

    def __init__(self, config_dir: Path) -> None:
        self.config_dir = config_dir

    @property
    def templates_dir(self) -> Path:
        return self.config_dir / TEMPLATES_DIR_NAME

    def resolve(self, entry: str) -> Path:
        path = Path(entry).expanduser()
        return path if path.is_absolute() else self.config_dir / path

    def load(self, context_files: tuple[str, ...] | list[str]) -> str:
        """Concatenate the listed files under `=== name ===` headers."""

        parts: list[str] = []
        for entry in context_files:
            if entry == CUSTOM_ENTRY:
                parts.append(CUSTOM_ENTRY_TEXT)
                continue
            path = self.resolve(entry)
            if not path.is_file():
                raise TemplateNotFoundError(path)
            parts.append(f"\n=== {path.name} ===\n{path.read_text('utf-8')}")
            logger.debug("Loaded context file: %s", path)
        return "\n\n".join(parts).strip()

    def list_templates(self) -> list[Path]:
        if not self.templates_dir.is_dir():
            return []
        return sorted(path for path in self.templates_dir.glob("*.md") if path.is_file())

    def write_defaults(self, *, overwrite: bool = False) -> list[Path]:
        """Write the default templates; existing files are kept unless `overwrite`."""

        self.templates_dir.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for name, content in DEFAULT_TEMPLATES.items():
            path = self.templates_dir / name
            if path.exists() and not overwrite:
                logger.debug("Template already exists: %s", path)
                continue
            path.write_text(content, "utf-8")
            written.append(path)
        return written
