"""Structural diff between the accepted workflow and a proposed one.

compute_workflow_diff() is pure. The summary gates acceptance: the caller
shows it to the user before the proposal replaces the live graph, and treats
total_changes == 0 ("nothing actually differs") differently from a real
change set.

Identity rules:
  nodes        — by id; "modified" = same id, different data payload
                 (compared as sorted-key JSON, i.e. by content)
  connections  — by (source id, source port, target id, target port);
                 a missing port equals an empty-string port

Baseline connections may be given in workflow shape
({"from", "to", "fromPort", "toPort"}) or canvas-edge shape
({"source", "target", "sourceHandle", "targetHandle"}).
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from workflow_copilot.agent.modes import END_NODE_TYPE, START_NODE_TYPE

ConnectionKey = tuple[str, str, str, str]


@dataclass(frozen=True)
class NodeChange:
    id: str
    name: str
    type: str


@dataclass(frozen=True)
class NameChange:
    from_name: str
    to_name: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.from_name, "to": self.to_name}


@dataclass
class WorkflowDiffSummary:
    name_change: NameChange | None = None
    added_nodes: list[NodeChange] = field(default_factory=list)
    removed_nodes: list[NodeChange] = field(default_factory=list)
    modified_nodes: list[NodeChange] = field(default_factory=list)
    added_connections: int = 0
    removed_connections: int = 0
    total_changes: int = 0
    is_new_workflow: bool = False

    @property
    def has_changes(self) -> bool:
        return self.total_changes > 0

    def to_dict(self) -> dict[str, Any]:
        """camelCase form consumed by the editor UI."""
        return {
            "nameChange": self.name_change.to_dict() if self.name_change else None,
            "addedNodes": [asdict(n) for n in self.added_nodes],
            "removedNodes": [asdict(n) for n in self.removed_nodes],
            "modifiedNodes": [asdict(n) for n in self.modified_nodes],
            "addedConnections": self.added_connections,
            "removedConnections": self.removed_connections,
            "totalChanges": self.total_changes,
            "isNewWorkflow": self.is_new_workflow,
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def node_display_name(node: dict[str, Any]) -> str:
    data = node.get("data") or {}
    description = data.get("description") if isinstance(data, dict) else None
    return description or str(node.get("id", ""))


def _payload_fingerprint(node: dict[str, Any]) -> str:
    return json.dumps(node.get("data"), sort_keys=True, default=str)


def connection_key(conn: dict[str, Any]) -> ConnectionKey:
    """Composite identity of a connection, tolerant of workflow or canvas-edge shape."""
    source = conn.get("from", conn.get("source"))
    target = conn.get("to", conn.get("target"))
    source_port = conn.get("fromPort", conn.get("sourceHandle"))
    target_port = conn.get("toPort", conn.get("targetHandle"))
    return (
        str(source or ""),
        str(source_port or ""),
        str(target or ""),
        str(target_port or ""),
    )


def is_blank_canvas(nodes: list[dict[str, Any]], connections: list[dict[str, Any]]) -> bool:
    """True when the baseline is nothing but a start/end pair (or less) with no connections."""
    return (
        len(nodes) <= 2
        and all(n.get("type") in (START_NODE_TYPE, END_NODE_TYPE) for n in nodes)
        and len(connections) == 0
    )


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------


def compute_workflow_diff(
    baseline_nodes: Iterable[dict[str, Any]],
    baseline_connections: Iterable[dict[str, Any]],
    baseline_name: str,
    proposed: dict[str, Any],
) -> WorkflowDiffSummary:
    current_nodes = list(baseline_nodes)
    current_connections = list(baseline_connections)
    proposed_nodes = list(proposed.get("nodes") or [])
    proposed_connections = list(proposed.get("connections") or [])

    proposed_name = proposed.get("name", baseline_name)
    name_change = (
        NameChange(from_name=baseline_name, to_name=proposed_name)
        if proposed_name != baseline_name
        else None
    )

    current_by_id = {str(n.get("id")): n for n in current_nodes}
    proposed_by_id = {str(n.get("id")): n for n in proposed_nodes}

    added_nodes = [
        NodeChange(id=node_id, name=node_display_name(node), type=str(node.get("type") or "unknown"))
        for node_id, node in proposed_by_id.items()
        if node_id not in current_by_id
    ]
    removed_nodes = [
        NodeChange(id=node_id, name=node_display_name(node), type=str(node.get("type") or "unknown"))
        for node_id, node in current_by_id.items()
        if node_id not in proposed_by_id
    ]
    modified_nodes = [
        NodeChange(id=node_id, name=node_display_name(node), type=str(node.get("type") or "unknown"))
        for node_id, node in proposed_by_id.items()
        if node_id in current_by_id
        and _payload_fingerprint(current_by_id[node_id]) != _payload_fingerprint(node)
    ]

    current_keys = {connection_key(c) for c in current_connections}
    proposed_keys = {connection_key(c) for c in proposed_connections}
    added_connections = len(proposed_keys - current_keys)
    removed_connections = len(current_keys - proposed_keys)

    total_changes = (
        (1 if name_change else 0)
        + len(added_nodes)
        + len(removed_nodes)
        + len(modified_nodes)
        + added_connections
        + removed_connections
    )

    return WorkflowDiffSummary(
        name_change=name_change,
        added_nodes=added_nodes,
        removed_nodes=removed_nodes,
        modified_nodes=modified_nodes,
        added_connections=added_connections,
        removed_connections=removed_connections,
        total_changes=total_changes,
        is_new_workflow=is_blank_canvas(current_nodes, current_connections),
    )
