"""Skill catalogue: reusable named capabilities a workflow node can reference.

Skills live on disk as one directory per skill containing a SKILL.md file
with YAML frontmatter:

    ---
    name: pdf-extractor
    description: Extract text and tables from PDF files
    ---
    # PDF Extractor
    ...

Two roots are scanned:
  personal — ~/.claude/skills/<skill>/SKILL.md
  project  — <workspace>/.claude/skills/<skill>/SKILL.md

The refinement pipeline only consumes the catalogue; it never writes to it.
Skills are optional enhancements: unreadable or malformed files are logged
and skipped, never fatal.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

logger = logging.getLogger("workflow_copilot.agent.skills")

SkillScope = Literal["personal", "project"]
SkillStatus = Literal["valid", "missing", "unresolved"]

SKILL_FILENAME = "SKILL.md"

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)


# ---------------------------------------------------------------------------
# Catalogue types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SkillReference:
    """A catalogue entry.

    name:              Skill name from frontmatter (lookup key together with scope).
    description:       What the skill does; used for relevance scoring and prompts.
    scope:             "personal" or "project".
    skill_path:        Absolute path of the SKILL.md file, None when unresolved.
    validation_status: "valid" | "missing" | "unresolved".
    """

    name: str
    description: str
    scope: SkillScope
    skill_path: str | None = None
    validation_status: SkillStatus = "valid"

    def prompt_entry(self) -> dict[str, str]:
        """The subset of fields shown to the completion tool (no filesystem paths)."""
        return {"name": self.name, "description": self.description, "scope": self.scope}


@dataclass
class SkillCatalogue:
    personal: list[SkillReference] = field(default_factory=list)
    project: list[SkillReference] = field(default_factory=list)

    @property
    def entries(self) -> list[SkillReference]:
        """Catalogue order: personal skills first, then project skills."""
        return [*self.personal, *self.project]

    def __len__(self) -> int:
        return len(self.personal) + len(self.project)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def parse_frontmatter(content: str) -> dict[str, Any]:
    """Return the YAML frontmatter of a markdown document as a dict.

    Returns {} when there is no frontmatter block or it is not a mapping.
    Raises yaml.YAMLError on malformed YAML.
    """
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}
    data = yaml.safe_load(match.group(1))
    return data if isinstance(data, dict) else {}


def load_skill_file(path: Path, scope: SkillScope) -> SkillReference | None:
    """Parse one SKILL.md into a SkillReference.

    Returns None (with a warning) when the file cannot be read, the YAML is
    malformed, or name/description are missing.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Failed to read skill file %s: %s", path, e)
        return None

    try:
        meta = parse_frontmatter(content)
    except yaml.YAMLError as e:
        logger.warning("Malformed frontmatter in %s: %s", path, e)
        return None

    name = str(meta.get("name") or "").strip()
    description = str(meta.get("description") or "").strip()
    if not name or not description:
        logger.warning("Skill file %s is missing name or description; skipped", path)
        return None

    return SkillReference(
        name=name,
        description=description,
        scope=scope,
        skill_path=str(path.resolve()),
        validation_status="valid",
    )


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


def scan_skill_dir(root: Path | None, scope: SkillScope) -> list[SkillReference]:
    """Scan <root>/*/SKILL.md. Missing root → []. Sorted by directory name."""
    if root is None or not root.is_dir():
        logger.debug("Skill directory not found (%s): %s", scope, root)
        return []

    skills: list[SkillReference] = []
    for skill_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        skill_file = skill_dir / SKILL_FILENAME
        if not skill_file.is_file():
            continue
        skill = load_skill_file(skill_file, scope)
        if skill is not None:
            skills.append(skill)
    return skills


async def scan_skills(personal_dir: Path | None, project_dir: Path | None) -> SkillCatalogue:
    """Scan personal and project skill roots off the event loop."""
    personal, project = await asyncio.gather(
        asyncio.to_thread(scan_skill_dir, personal_dir, "personal"),
        asyncio.to_thread(scan_skill_dir, project_dir, "project"),
    )
    logger.info("Scanned skills: %d personal, %d project", len(personal), len(project))
    return SkillCatalogue(personal=personal, project=project)
