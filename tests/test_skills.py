"""Skill catalogue scanner + relevance filter tests.

Tests:
- SKILL.md frontmatter parsing (name/description), malformed files skipped
- scan_skills() over personal + project roots, missing roots → empty
- relevance: keyword scoring, exact-name bonus, ordering, max_results cap,
  project-over-personal tie-break for same-name skills
"""

from __future__ import annotations

from pathlib import Path

import pytest

from workflow_copilot.agent.relevance import extract_keywords, filter_skills_by_relevance
from workflow_copilot.agent.skills import (
    SkillCatalogue,
    SkillReference,
    load_skill_file,
    parse_frontmatter,
    scan_skills,
)


def _write_skill(root: Path, dirname: str, body: str) -> Path:
    skill_dir = root / dirname
    skill_dir.mkdir(parents=True)
    path = skill_dir / "SKILL.md"
    path.write_text(body, encoding="utf-8")
    return path


def _skill(name: str, description: str, scope: str = "personal") -> SkillReference:
    return SkillReference(name=name, description=description, scope=scope, skill_path=f"/skills/{name}/SKILL.md")


# ---------------------------------------------------------------------------
# Frontmatter + file loading
# ---------------------------------------------------------------------------


class TestFrontmatter:

    def test_parses_mapping(self):
        meta = parse_frontmatter("---\nname: pdf-extractor\ndescription: Extract PDFs\n---\n# Body\n")
        assert meta == {"name": "pdf-extractor", "description": "Extract PDFs"}

    def test_no_frontmatter_returns_empty(self):
        assert parse_frontmatter("# Just markdown\n") == {}

    def test_non_mapping_frontmatter_returns_empty(self):
        assert parse_frontmatter("---\n- a\n- b\n---\n") == {}

    def test_load_valid_file(self, tmp_path):
        path = _write_skill(tmp_path, "pdf", "---\nname: pdf-extractor\ndescription: Extract PDFs\n---\n")
        skill = load_skill_file(path, "project")
        assert skill.name == "pdf-extractor"
        assert skill.scope == "project"
        assert skill.skill_path == str(path.resolve())
        assert skill.validation_status == "valid"

    def test_missing_description_skipped(self, tmp_path):
        path = _write_skill(tmp_path, "bad", "---\nname: only-name\n---\n")
        assert load_skill_file(path, "personal") is None

    def test_malformed_yaml_skipped(self, tmp_path):
        path = _write_skill(tmp_path, "bad", "---\nname: [unclosed\ndescription: x\n---\n")
        assert load_skill_file(path, "personal") is None

    def test_prompt_entry_hides_path(self):
        entry = _skill("a", "b").prompt_entry()
        assert entry == {"name": "a", "description": "b", "scope": "personal"}


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class TestScanSkills:

    @pytest.mark.asyncio
    async def test_scans_both_roots(self, tmp_path):
        personal = tmp_path / "personal"
        project = tmp_path / "project"
        _write_skill(personal, "b-skill", "---\nname: b\ndescription: second\n---\n")
        _write_skill(personal, "a-skill", "---\nname: a\ndescription: first\n---\n")
        _write_skill(project, "c-skill", "---\nname: c\ndescription: third\n---\n")

        catalogue = await scan_skills(personal, project)

        assert [s.name for s in catalogue.personal] == ["a", "b"]
        assert [s.name for s in catalogue.project] == ["c"]
        assert [s.name for s in catalogue.entries] == ["a", "b", "c"]
        assert len(catalogue) == 3

    @pytest.mark.asyncio
    async def test_missing_roots_yield_empty_catalogue(self, tmp_path):
        catalogue = await scan_skills(tmp_path / "nope", None)
        assert catalogue.entries == []

    @pytest.mark.asyncio
    async def test_directories_without_skill_file_ignored(self, tmp_path):
        (tmp_path / "empty-dir").mkdir()
        _write_skill(tmp_path, "real", "---\nname: real\ndescription: yes\n---\n")
        catalogue = await scan_skills(tmp_path, None)
        assert [s.name for s in catalogue.personal] == ["real"]


# ---------------------------------------------------------------------------
# Relevance filter
# ---------------------------------------------------------------------------


class TestRelevance:

    def test_extract_keywords_drops_stopwords_and_short_tokens(self):
        assert extract_keywords("Extract the tables from a PDF, ok?") == {"extract", "tables", "pdf"}

    def test_scores_and_orders_matches(self):
        skills = [
            _skill("slack-notifier", "Post messages to Slack channels"),
            _skill("invoice-parser", "Parse invoice documents"),
            _skill("pdf-extractor", "Extract text and tables from PDF files"),
        ]
        ranked = filter_skills_by_relevance("Extract tables from the invoice PDF", skills)

        assert [r.skill.name for r in ranked] == ["pdf-extractor", "invoice-parser"]
        assert ranked[0].score == pytest.approx(1.0)
        assert ranked[1].score == pytest.approx(0.5)
        assert ranked[0].matched_keywords == ("extract", "pdf", "tables")

    def test_exact_name_mention_gets_bonus(self):
        skills = [_skill("pdf-extractor", "Extract text and tables from PDF files")]
        ranked = filter_skills_by_relevance("run pdf-extractor now", skills)
        assert ranked[0].score == pytest.approx(1.5)

    def test_no_keywords_returns_nothing(self):
        assert filter_skills_by_relevance("please do it", [_skill("x-tool", "does things")]) == []

    def test_max_results_cap(self):
        skills = [_skill(f"pdf-tool-{i}", "pdf helper") for i in range(25)]
        ranked = filter_skills_by_relevance("pdf", skills)
        assert len(ranked) == 20
        assert [r.skill.name for r in ranked[:3]] == ["pdf-tool-0", "pdf-tool-1", "pdf-tool-2"]

    def test_min_score_filters(self):
        skills = [_skill("invoice-parser", "Parse invoice documents")]
        assert filter_skills_by_relevance("invoice pdf", skills, min_score=1.0) == []

    def test_same_name_project_scope_first(self):
        catalogue = SkillCatalogue(
            personal=[_skill("pdf-tool", "pdf helper", "personal")],
            project=[_skill("pdf-tool", "pdf helper", "project")],
        )
        ranked = filter_skills_by_relevance("pdf", catalogue.entries)
        assert [r.skill.scope for r in ranked] == ["project", "personal"]

    def test_deterministic(self):
        skills = [_skill(f"csv-{i}", "csv data import") for i in range(5)]
        first = filter_skills_by_relevance("import csv data", skills)
        second = filter_skills_by_relevance("import csv data", skills)
        assert first == second
