"""Skill reference resolver tests."""

from __future__ import annotations

from workflow_copilot.agent.resolver import count_skill_nodes, resolve_skill_references
from workflow_copilot.agent.skills import SkillReference

CATALOGUE = [
    SkillReference(name="pdf-tool", description="pdf", scope="personal", skill_path="/home/u/.claude/skills/pdf/SKILL.md"),
    SkillReference(name="pdf-tool", description="pdf", scope="project", skill_path="/ws/.claude/skills/pdf/SKILL.md"),
]


def _skill_node(node_id: str, **data) -> dict:
    return {"id": node_id, "type": "skill", "data": data}


class TestResolveSkillReferences:

    def test_match_by_name_and_scope(self):
        workflow = {"id": "wf", "nodes": [_skill_node("s1", name="pdf-tool", scope="project")]}
        resolved = resolve_skill_references(workflow, CATALOGUE)
        data = resolved["nodes"][0]["data"]
        assert data["skillPath"] == "/ws/.claude/skills/pdf/SKILL.md"
        assert data["validationStatus"] == "valid"

    def test_unknown_skill_marked_missing_and_path_removed(self):
        workflow = {"nodes": [_skill_node("s1", name="ghost", scope="project", skillPath="/made/up")]}
        data = resolve_skill_references(workflow, CATALOGUE)["nodes"][0]["data"]
        assert data["validationStatus"] == "missing"
        assert "skillPath" not in data

    def test_scope_mismatch_is_missing(self):
        workflow = {"nodes": [_skill_node("s1", name="pdf-tool", scope="team")]}
        data = resolve_skill_references(workflow, CATALOGUE)["nodes"][0]["data"]
        assert data["validationStatus"] == "missing"

    def test_nameless_skill_unresolved(self):
        workflow = {"nodes": [_skill_node("s1", scope="project")]}
        data = resolve_skill_references(workflow, CATALOGUE)["nodes"][0]["data"]
        assert data["validationStatus"] == "unresolved"

    def test_malformed_skill_data_unresolved(self):
        workflow = {"nodes": [
            {"id": "s1", "type": "skill", "data": "pdf-tool"},
            {"id": "s2", "type": "skill", "data": ["pdf-tool"]},
            _skill_node("s3", name=["pdf-tool"], scope="project"),
            _skill_node("s4", name="pdf-tool", scope={"kind": "project"}),
        ]}
        nodes = resolve_skill_references(workflow, CATALOGUE)["nodes"]
        assert [n["data"]["validationStatus"] for n in nodes] == ["unresolved"] * 4
        assert nodes[2]["data"]["name"] == ["pdf-tool"]

    def test_model_supplied_path_replaced(self):
        workflow = {"nodes": [_skill_node("s1", name="pdf-tool", scope="personal", skillPath="/evil")]}
        data = resolve_skill_references(workflow, CATALOGUE)["nodes"][0]["data"]
        assert data["skillPath"] == "/home/u/.claude/skills/pdf/SKILL.md"

    def test_non_skill_nodes_pass_through_unchanged(self):
        prompt_node = {"id": "p1", "type": "prompt", "data": {"prompt": "hi"}}
        workflow = {"id": "wf", "nodes": [prompt_node], "connections": []}
        resolved = resolve_skill_references(workflow, CATALOGUE)
        assert resolved["nodes"][0] is prompt_node
        assert resolved["connections"] == []

    def test_input_not_mutated(self):
        node = _skill_node("s1", name="pdf-tool", scope="project")
        workflow = {"nodes": [node]}
        resolve_skill_references(workflow, CATALOGUE)
        assert "validationStatus" not in node["data"]

    def test_count_skill_nodes(self):
        workflow = {"nodes": [_skill_node("a"), {"id": "b", "type": "prompt"}, _skill_node("c")]}
        assert count_skill_nodes(workflow) == 2
