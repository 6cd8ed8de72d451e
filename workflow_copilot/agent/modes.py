"""Mode descriptors — what differs between whole-workflow and nested-flow refinement.

The orchestrator runs one pipeline; a RefinementMode tells it which
top-level fields the model output must carry, which node types are banned,
how many nodes are allowed and whether the semantic validator runs.
The prompt builder reads the same descriptor to render mode-specific rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Node type tags used across the workflow vocabulary.
START_NODE_TYPE = "start"
END_NODE_TYPE = "end"
SKILL_NODE_TYPE = "skill"

ALL_NODE_TYPES: tuple[str, ...] = (
    "start",
    "end",
    "prompt",
    "subAgent",
    "askUserQuestion",
    "branch",
    "ifElse",
    "switch",
    "skill",
    "mcp",
    "subAgentFlow",
)

NESTED_FLOW_PROHIBITED_NODE_TYPES: frozenset[str] = frozenset({"subAgent", "subAgentFlow", "askUserQuestion"})
NESTED_FLOW_MAX_NODES = 30


@dataclass(frozen=True)
class RefinementMode:
    """Static description of one refinement target shape.

    name:                  "workflow" | "nestedFlow" (used in logs and prompts)
    required_fields:       top-level keys the parsed output must contain
    prohibited_node_types: node types rejected with PROHIBITED_NODE_TYPE
    max_nodes:             node cap (VALIDATION_ERROR above it), None = uncapped here
    require_start_end:     enforce exactly one start node and at least one end node
    check_references:      reject duplicate node ids and connections to unknown nodes
    run_semantic_validator: run the injected validator after skill resolution
    """

    name: str
    required_fields: tuple[str, ...]
    prohibited_node_types: frozenset[str] = field(default_factory=frozenset)
    max_nodes: int | None = None
    require_start_end: bool = False
    check_references: bool = False
    run_semantic_validator: bool = False

    @property
    def allowed_node_types(self) -> tuple[str, ...]:
        return tuple(t for t in ALL_NODE_TYPES if t not in self.prohibited_node_types)

    @property
    def is_nested(self) -> bool:
        return self.name == NESTED_FLOW_MODE_NAME


WORKFLOW_MODE_NAME = "workflow"
NESTED_FLOW_MODE_NAME = "nestedFlow"

WORKFLOW_MODE = RefinementMode(
    name=WORKFLOW_MODE_NAME,
    required_fields=("id", "nodes", "connections"),
    run_semantic_validator=True,
)

NESTED_FLOW_MODE = RefinementMode(
    name=NESTED_FLOW_MODE_NAME,
    required_fields=("nodes", "connections"),
    prohibited_node_types=NESTED_FLOW_PROHIBITED_NODE_TYPES,
    max_nodes=NESTED_FLOW_MAX_NODES,
    require_start_end=True,
    check_references=True,
)
