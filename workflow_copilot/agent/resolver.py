"""Skill reference resolver.

The completion tool only knows skill names and scopes (it is told never to
write skillPath). After parsing, every skill node is matched against the
catalogue by exact (name, scope):

  found      → data.skillPath = catalogue path, data.validationStatus = "valid"
  not found  → data.skillPath removed,          data.validationStatus = "missing"
  no name    → data.skillPath removed,          data.validationStatus = "unresolved"
  (a non-string name or scope, or non-object data, counts as no name)

Non-skill nodes are passed through as the very same objects. A missing skill
degrades one node's status; it never fails the request.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from workflow_copilot.agent.modes import SKILL_NODE_TYPE
from workflow_copilot.agent.skills import SkillReference

logger = logging.getLogger("workflow_copilot.agent.resolver")


def _index_catalogue(catalogue: Iterable[SkillReference]) -> dict[tuple[str, str], SkillReference]:
    index: dict[tuple[str, str], SkillReference] = {}
    for skill in catalogue:
        # First entry wins for duplicate (name, scope) pairs.
        index.setdefault((skill.name, skill.scope), skill)
    return index


def resolve_skill_node(node: dict[str, Any], index: dict[tuple[str, str], SkillReference]) -> dict[str, Any]:
    """Return a copy of a skill node with skillPath/validationStatus stamped."""
    raw_data = node.get("data")
    data = dict(raw_data) if isinstance(raw_data, dict) else {}
    name = data.get("name")
    scope = data.get("scope")

    data.pop("skillPath", None)
    if not isinstance(name, str) or not name or not isinstance(scope, (str, type(None))):
        data["validationStatus"] = "unresolved"
    else:
        match = index.get((name, scope))
        if match is not None and match.skill_path:
            data["skillPath"] = match.skill_path
            data["validationStatus"] = "valid"
        else:
            data["validationStatus"] = "missing"

    return {**node, "data": data}


def resolve_skill_references(
    workflow: dict[str, Any],
    catalogue: Iterable[SkillReference],
    skill_node_type: str = SKILL_NODE_TYPE,
) -> dict[str, Any]:
    """Rewrite skill nodes of a workflow (or nodes/connections fragment).

    Returns a new top-level dict; the input is not mutated.
    """
    index = _index_catalogue(catalogue)
    nodes = workflow.get("nodes") or []

    resolved_nodes: list[Any] = []
    missing: list[str] = []
    for node in nodes:
        if not isinstance(node, dict) or node.get("type") != skill_node_type:
            resolved_nodes.append(node)
            continue
        resolved = resolve_skill_node(node, index)
        if resolved["data"]["validationStatus"] != "valid":
            missing.append(str(node.get("id")))
        resolved_nodes.append(resolved)

    if missing:
        logger.warning("Unresolved skill references on nodes: %s", ", ".join(missing))

    return {**workflow, "nodes": resolved_nodes}


def count_skill_nodes(workflow: dict[str, Any], skill_node_type: str = SKILL_NODE_TYPE) -> int:
    return sum(
        1 for node in workflow.get("nodes") or []
        if isinstance(node, dict) and node.get("type") == skill_node_type
    )
