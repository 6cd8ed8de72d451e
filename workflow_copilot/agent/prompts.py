"""Prompt builder for refinement requests.

build_refinement_prompt() is a pure function: identical inputs produce a
byte-identical prompt. Workflow state and schema are serialized with sorted
keys for that reason.

Prompt layout (both modes):
  1. role line + task
  2. nested-flow constraints        (nestedFlow mode only)
  3. current state JSON
  4. conversation history           (last PROMPT_HISTORY_WINDOW messages)
  5. the user's request
  6. refinement / positioning / skill-node / branching guidelines
  7. available skills + usage rules (only when skills were selected)
  8. schema JSON
  9. output format contract         (relied on by output_parser)
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from workflow_copilot.agent.modes import RefinementMode
from workflow_copilot.agent.relevance import SkillRelevanceScore
from workflow_copilot.agent.state import PROMPT_HISTORY_WINDOW, ConversationHistory

_ROLE = "You are an expert workflow designer for a visual AI agent workflow editor."

_WORKFLOW_TASK = "**Task**: Refine the existing workflow based on the user's feedback."
_NESTED_TASK = "**Task**: Refine a Sub-Agent Flow based on the user's feedback."

_NESTED_CONSTRAINTS = """\
**IMPORTANT - Sub-Agent Flow Constraints**:
Sub-Agent Flows have strict constraints that MUST be followed:
1. **Prohibited Node Types**: You MUST NOT use the following node types:
{prohibited}
2. **Allowed Node Types**: {allowed}
3. **Maximum Nodes**: {max_nodes} nodes maximum
4. **Must have exactly one Start node and at least one End node**
"""

_PROHIBITED_REASONS = {
    "subAgent": "sequential execution only inside a sub-agent",
    "subAgentFlow": "no nesting allowed",
    "askUserQuestion": "user interaction not supported in sub-agent context",
}

_REFINEMENT_GUIDELINES = """\
**Refinement Guidelines**:
1. Preserve existing nodes unless explicitly requested to remove
2. Add new nodes ONLY if user asks for new functionality
3. Modify node properties (labels, descriptions, prompts) based on feedback
4. Maintain workflow connectivity and validity
5. Respect node IDs - do not regenerate IDs for unchanged nodes
6. Update only what the user requested - minimize unnecessary changes"""

_POSITIONING_GUIDELINES = """\
**Node Positioning Guidelines**:
1. Horizontal spacing between regular nodes: Use 300px (e.g., x: 350, 650, 950, 1250, 1550)
2. Spacing after Start node: Use 250px (e.g., Start at x: 100, next at x: 350)
3. Spacing before End node: Use 350px (e.g., previous at x: 1550, End at x: 1900)
4. Vertical spacing: Use 150px between nodes on different branches
5. When adding new nodes, calculate positions based on existing node positions and connections
6. Preserve existing node positions unless repositioning is explicitly requested
7. For branch nodes: offset vertically by 150px from the main path (e.g., y: 300 for main, y: 150/450 for branches)"""

_SKILL_NODE_CONSTRAINTS = """\
**Skill Node Constraints**:
- Skill nodes MUST have exactly 1 output port (outputPorts: 1)
- If branching is needed after Skill execution, add an ifElse or switch node after the Skill node
- Never modify Skill node's outputPorts field"""

_BRANCHING_GUIDELINES = """\
**Branching Node Selection**:
- Use ifElse node for 2-way conditional branching (true/false)
- Use switch node for 3+ way branching or multiple conditions
- Each branch output should connect to exactly one downstream node - never create serial connections from different branch outputs"""

_SKILL_USAGE_RULES = """\
**Instructions for Using Skills**:
- Use a Skill node when the user's description matches a Skill's documented purpose
- Copy the name, description, and scope exactly from the Available Skills list above
- Set validationStatus to "valid" and outputPorts to 1
- Do NOT include skillPath in your response (the system will resolve it automatically)
- If both personal and project Skills match, prefer the project Skill"""

_OUTPUT_FORMAT_WORKFLOW = """\
**Output Format**: Respond in exactly one of two ways:
- If the request is ambiguous and you need more information, reply with a short clarifying question in plain prose and no JSON.
- Otherwise output ONLY one valid JSON object matching the Workflow interface (with "id", "name", "version", "nodes" and "connections"). Do not include markdown code blocks or explanations."""

_OUTPUT_FORMAT_NESTED = """\
**Output Format**: Respond in exactly one of two ways:
- If the request is ambiguous and you need more information, reply with a short clarifying question in plain prose and no JSON.
- Otherwise output ONLY one valid JSON object with "nodes" and "connections" arrays. Do not include markdown code blocks or explanations. Example:
{
  "nodes": [...],
  "connections": [...]
}"""


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False, default=str)


def format_history(history: ConversationHistory | None, window: int = PROMPT_HISTORY_WINDOW) -> str:
    recent = history.recent(window) if history is not None else []
    if not recent:
        return "**Conversation History**: (This is the first message)\n"
    lines = "\n".join(f"[{msg.sender.upper()}]: {msg.content}" for msg in recent)
    return f"**Conversation History** (last {len(recent)} messages):\n{lines}\n"


def format_skills(filtered_skills: Sequence[SkillRelevanceScore]) -> str:
    if not filtered_skills:
        return ""
    entries = [scored.skill.prompt_entry() for scored in filtered_skills]
    return (
        "**Available Skills** (use when user description matches their purpose):\n"
        f"{json.dumps(entries, indent=2, ensure_ascii=False)}\n\n"
        f"{_SKILL_USAGE_RULES}\n"
    )


def format_nested_constraints(mode: RefinementMode) -> str:
    prohibited = "\n".join(
        f"   - {node_type} ({_PROHIBITED_REASONS.get(node_type, 'not allowed in this flow')})"
        for node_type in sorted(mode.prohibited_node_types)
    )
    allowed = ", ".join(mode.allowed_node_types)
    return _NESTED_CONSTRAINTS.format(
        prohibited=prohibited,
        allowed=allowed,
        max_nodes=mode.max_nodes,
    )


def build_refinement_prompt(
    current_state: dict[str, Any],
    history: ConversationHistory | None,
    user_message: str,
    schema: dict[str, Any],
    filtered_skills: Sequence[SkillRelevanceScore],
    mode: RefinementMode,
) -> str:
    """Render the complete prompt for one refinement attempt.

    current_state:   the workflow (workflow mode) or {"nodes", "connections"} fragment
    history:         conversation so far, excluding user_message
    filtered_skills: output of filter_skills_by_relevance(); [] disables the skills section
    """
    sections: list[str] = [_ROLE, ""]

    if mode.is_nested:
        sections += [_NESTED_TASK, "", format_nested_constraints(mode)]
        state_label = "**Current Sub-Agent Flow**:"
        extra_rule = (
            "7. **NEVER add "
            + ", ".join(sorted(mode.prohibited_node_types))
            + " nodes**"
        )
        output_format = _OUTPUT_FORMAT_NESTED
    else:
        sections += [_WORKFLOW_TASK, ""]
        state_label = "**Current Workflow**:"
        extra_rule = None
        output_format = _OUTPUT_FORMAT_WORKFLOW

    sections += [
        state_label,
        _to_json(current_state),
        "",
        format_history(history),
        "**User's Refinement Request**:",
        user_message,
        "",
        _REFINEMENT_GUIDELINES + (f"\n{extra_rule}" if extra_rule else ""),
        "",
        _POSITIONING_GUIDELINES,
        "",
        _SKILL_NODE_CONSTRAINTS,
        "",
        _BRANCHING_GUIDELINES,
        "",
    ]

    skills_section = format_skills(filtered_skills)
    if skills_section:
        sections += [skills_section]

    sections += [
        "**Workflow Schema** (reference for valid node types and structure):",
        _to_json(schema),
        "",
        output_format,
    ]
    return "\n".join(sections)
