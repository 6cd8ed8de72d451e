"""Semantic validation for AI-generated workflows.

validate_workflow() is the default validator the orchestrator runs after
skill resolution in workflow mode. Any callable with the same signature can
be injected instead.

Checks performed:
- nodes / connections are lists
- every node has an id and a known type; ids are unique
- node count ≤ MAX_WORKFLOW_NODES
- exactly one start node, at least one end node
- every connection has from/to that reference existing nodes
- skill nodes declare exactly one output port
- name, when present, is a non-empty string of at most 100 characters
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

from workflow_copilot.agent.modes import ALL_NODE_TYPES, END_NODE_TYPE, SKILL_NODE_TYPE, START_NODE_TYPE

MAX_WORKFLOW_NODES = 50
MAX_NAME_LENGTH = 100


@dataclass
class ValidationIssue:
    code: str
    message: str
    field: str | None = None


@dataclass
class ValidationReport:
    valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.errors]


WorkflowValidator = Callable[[dict[str, Any]], ValidationReport]


def check_graph_references(nodes: list[Any], connections: list[Any]) -> list[ValidationIssue]:
    """Duplicate node ids and connections whose from/to is missing or unknown.

    Shared by the workflow validator and the nested-flow structure check.
    Non-object nodes are ignored here; non-object connections are reported.
    """
    errors: list[ValidationIssue] = []
    node_ids = [str(node["id"]) for node in nodes if isinstance(node, dict) and node.get("id")]

    duplicates = sorted(node_id for node_id, count in Counter(node_ids).items() if count > 1)
    for node_id in duplicates:
        errors.append(ValidationIssue("DUPLICATE_NODE_ID", f"Duplicate node id '{node_id}'", "nodes"))

    known_ids = set(node_ids)
    for i, conn in enumerate(connections):
        if not isinstance(conn, dict):
            errors.append(ValidationIssue(
                "INVALID_CONNECTION", f"connections[{i}] must be an object", f"connections[{i}]",
            ))
            continue
        for end in ("from", "to"):
            ref = conn.get(end)
            if not ref:
                errors.append(ValidationIssue(
                    "MISSING_CONNECTION_ENDPOINT",
                    f"connections[{i}]: '{end}' is required",
                    f"connections[{i}].{end}",
                ))
            elif str(ref) not in known_ids:
                errors.append(ValidationIssue(
                    "UNKNOWN_CONNECTION_NODE",
                    f"connections[{i}]: '{end}' references unknown node '{ref}'",
                    f"connections[{i}].{end}",
                ))
    return errors


def validate_workflow(workflow: dict[str, Any]) -> ValidationReport:
    errors: list[ValidationIssue] = []

    name = workflow.get("name")
    if name is not None and (not isinstance(name, str) or not name.strip()):
        errors.append(ValidationIssue("INVALID_NAME", "Workflow name must be a non-empty string", "name"))
    elif isinstance(name, str) and len(name) > MAX_NAME_LENGTH:
        errors.append(ValidationIssue(
            "INVALID_NAME", f"Workflow name exceeds {MAX_NAME_LENGTH} characters", "name",
        ))

    nodes = workflow.get("nodes")
    connections = workflow.get("connections")
    if not isinstance(nodes, list):
        errors.append(ValidationIssue("INVALID_NODES", "nodes must be an array", "nodes"))
        nodes = []
    if not isinstance(connections, list):
        errors.append(ValidationIssue("INVALID_CONNECTIONS", "connections must be an array", "connections"))
        connections = []

    if len(nodes) > MAX_WORKFLOW_NODES:
        errors.append(ValidationIssue(
            "TOO_MANY_NODES",
            f"Workflow has {len(nodes)} nodes (maximum {MAX_WORKFLOW_NODES})",
            "nodes",
        ))

    type_counts: Counter[str] = Counter()
    for i, node in enumerate(nodes):
        if not isinstance(node, dict):
            errors.append(ValidationIssue("INVALID_NODE", f"nodes[{i}] must be an object", f"nodes[{i}]"))
            continue
        node_id = node.get("id")
        node_type = node.get("type")
        if not node_id:
            errors.append(ValidationIssue("MISSING_NODE_ID", f"nodes[{i}]: id is required", f"nodes[{i}].id"))
        if node_type not in ALL_NODE_TYPES:
            errors.append(ValidationIssue(
                "UNKNOWN_NODE_TYPE",
                f"Node '{node_id}': unknown type {node_type!r}",
                f"nodes[{i}].type",
            ))
        else:
            type_counts[node_type] += 1

        if node_type == SKILL_NODE_TYPE:
            data = node.get("data") or {}
            ports = data.get("outputPorts", 1) if isinstance(data, dict) else None
            if ports != 1:
                errors.append(ValidationIssue(
                    "INVALID_SKILL_PORTS",
                    f"Skill node '{node_id}' must have exactly 1 output port (got {ports!r})",
                    f"nodes[{i}].data.outputPorts",
                ))

    if type_counts[START_NODE_TYPE] != 1:
        errors.append(ValidationIssue(
            "START_NODE_COUNT",
            f"Workflow must have exactly one start node (found {type_counts[START_NODE_TYPE]})",
            "nodes",
        ))
    if type_counts[END_NODE_TYPE] < 1:
        errors.append(ValidationIssue("MISSING_END_NODE", "Workflow must have at least one end node", "nodes"))

    errors.extend(check_graph_references(nodes, connections))

    return ValidationReport(valid=not errors, errors=errors)
