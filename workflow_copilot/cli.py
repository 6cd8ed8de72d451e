"""Interactive CLI for the workflow co-pilot.

Runs refinement round-trips directly in the terminal — no HTTP server needed.

Usage:
    workflow-copilot chat workflow.json
    workflow-copilot chat workflow.json --nested-flow flow-1 --output out.json
    workflow-copilot refine workflow.json "Add an ifElse after the prompt"
    workflow-copilot diff before.json after.json

Nested flows live in the workflow file under "subAgentFlows": a list of
objects with "id", "nodes" and "connections".
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser
from pathlib import Path
from typing import Any
from uuid import uuid4

from workflow_copilot.agent import (
    ConversationHistory,
    RefinementClarification,
    RefinementError,
    RefinementOrchestrator,
    RefinementResult,
    WorkflowDiffSummary,
    compute_workflow_diff,
)

NESTED_FLOWS_KEY = "subAgentFlows"


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def _load_json(path: Path) -> dict[str, Any]:
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return data


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def find_nested_flow(workflow: dict[str, Any], nested_flow_id: str) -> dict[str, Any]:
    for flow in workflow.get(NESTED_FLOWS_KEY) or []:
        if isinstance(flow, dict) and flow.get("id") == nested_flow_id:
            return flow
    raise KeyError(f"Nested flow '{nested_flow_id}' not found in workflow")


def apply_proposal(
    workflow: dict[str, Any],
    proposal: dict[str, Any],
    nested_flow_id: str | None = None,
) -> dict[str, Any]:
    """Return the workflow with an accepted proposal swapped in."""
    if nested_flow_id is None:
        return proposal
    flows = []
    for flow in workflow.get(NESTED_FLOWS_KEY) or []:
        if isinstance(flow, dict) and flow.get("id") == nested_flow_id:
            flow = {**flow, "nodes": proposal["nodes"], "connections": proposal["connections"]}
        flows.append(flow)
    return {**workflow, NESTED_FLOWS_KEY: flows}


def format_diff(summary: WorkflowDiffSummary) -> str:
    if not summary.has_changes:
        return "No changes: the proposal is identical to the current workflow."

    lines = ["New workflow:" if summary.is_new_workflow else "Proposed changes:"]
    if summary.name_change:
        lines.append(f"  ~ name: {summary.name_change.from_name!r} -> {summary.name_change.to_name!r}")
    for node in summary.added_nodes:
        lines.append(f"  + {node.type} {node.name} ({node.id})")
    for node in summary.removed_nodes:
        lines.append(f"  - {node.type} {node.name} ({node.id})")
    for node in summary.modified_nodes:
        lines.append(f"  ~ {node.type} {node.name} ({node.id})")
    if summary.added_connections or summary.removed_connections:
        lines.append(
            f"  connections: +{summary.added_connections} / -{summary.removed_connections}"
        )
    lines.append(f"  total: {summary.total_changes} change(s)")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Orchestrator wiring
# ---------------------------------------------------------------------------


def create_orchestrator_from_env() -> tuple[RefinementOrchestrator, bool]:
    """Build an orchestrator from WORKFLOW_COPILOT_* settings.

    Returns (orchestrator, use_skills default).
    """
    from dotenv import load_dotenv

    from workflow_copilot.api import build_orchestrator
    from workflow_copilot.config import CopilotSettings

    load_dotenv()
    settings = CopilotSettings()
    logging.getLogger("workflow_copilot").setLevel(settings.log_level)
    return build_orchestrator(settings), settings.use_skills


async def _refine_once(
    orchestrator: RefinementOrchestrator,
    workflow: dict[str, Any],
    history: ConversationHistory,
    message: str,
    use_skills: bool,
    nested_flow_id: str | None,
    correlation_id: str,
) -> RefinementResult:
    if nested_flow_id is None:
        return await orchestrator.refine_workflow(
            workflow, history, message, use_skills=use_skills, correlation_id=correlation_id,
        )
    return await orchestrator.refine_nested_flow(
        find_nested_flow(workflow, nested_flow_id),
        history,
        message,
        use_skills=use_skills,
        correlation_id=correlation_id,
    )


def _baseline(workflow: dict[str, Any], nested_flow_id: str | None) -> tuple[list, list, str]:
    if nested_flow_id is None:
        return workflow.get("nodes") or [], workflow.get("connections") or [], str(workflow.get("name") or "")
    flow = find_nested_flow(workflow, nested_flow_id)
    return flow.get("nodes") or [], flow.get("connections") or [], ""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run_chat(path: Path, output: Path | None, nested_flow_id: str | None) -> None:
    """Interactive refinement loop over one workflow file."""
    orchestrator, use_skills = create_orchestrator_from_env()
    workflow = _load_json(path)
    history = ConversationHistory()
    target = output or path

    print(f"\nWorkflow: {workflow.get('name') or path.name}")
    if nested_flow_id:
        print(f"Nested flow: {nested_flow_id}")
    print("Commands: /clear  /retry  /quit")
    print("-" * 60)

    correlation_id: str | None = None
    last_message: str | None = None
    try:
        while True:
            message = _prompt("\nYou: ")
            if not message:
                continue
            if message == "/quit":
                break
            if message == "/clear":
                history.clear()
                print("Conversation cleared.")
                continue
            if message == "/retry":
                if last_message is None:
                    print("Nothing to retry yet.")
                    continue
                message = last_message

            last_message = message

            correlation_id = str(uuid4())
            print("Refining...")
            result = await _refine_once(
                orchestrator, workflow, history, message, use_skills, nested_flow_id, correlation_id,
            )
            correlation_id = None

            if isinstance(result, RefinementClarification):
                print(f"\nAssistant: {result.message}")
            elif isinstance(result, RefinementError):
                print(f"\nError [{result.code.value}]: {result.message}")
                if result.details:
                    print(f"  {result.details}")
            else:
                nodes, connections, name = _baseline(workflow, nested_flow_id)
                summary = compute_workflow_diff(nodes, connections, name, result.workflow)
                print("\n" + format_diff(summary))
                if summary.has_changes and _prompt("Accept? [y/N] ").lower() in ("y", "yes"):
                    workflow = apply_proposal(workflow, result.workflow, nested_flow_id)
                    _write_json(target, workflow)
                    print(f"Saved to {target}")

            if history.needs_reset_warning:
                print(f"\n(Long conversation: {history.current_iteration} rounds. Consider /clear.)")

    except KeyboardInterrupt:
        if correlation_id is not None:
            await orchestrator.cancel(correlation_id)
        print("\n\nInterrupted.")


async def _run_refine(path: Path, message: str, nested_flow_id: str | None) -> int:
    orchestrator, use_skills = create_orchestrator_from_env()
    workflow = _load_json(path)
    result = await _refine_once(
        orchestrator, workflow, ConversationHistory(), message, use_skills, nested_flow_id, str(uuid4()),
    )
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 1 if isinstance(result, RefinementError) else 0


def _run_diff(base_path: Path, proposed_path: Path) -> None:
    base = _load_json(base_path)
    proposed = _load_json(proposed_path)
    summary = compute_workflow_diff(
        base.get("nodes") or [], base.get("connections") or [], str(base.get("name") or ""), proposed,
    )
    print(format_diff(summary))


def _prompt(label: str) -> str:
    """Read a line from stdin, stripping whitespace. Exits on EOF."""
    try:
        return input(label).strip()
    except EOFError:
        print("\n(EOF received — exiting)")
        sys.exit(0)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    parser = ArgumentParser(
        prog="workflow-copilot",
        description="Workflow co-pilot — conversational workflow refinement in the terminal",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    chat_p = sub.add_parser("chat", help="Refine a workflow file interactively")
    chat_p.add_argument("workflow", type=Path, help="Path to the workflow JSON file")
    chat_p.add_argument("--output", type=Path, default=None, help="Write accepted changes here instead")
    chat_p.add_argument("--nested-flow", default=None, metavar="ID", help="Refine this nested flow")

    refine_p = sub.add_parser("refine", help="Run one refinement and print the result JSON")
    refine_p.add_argument("workflow", type=Path, help="Path to the workflow JSON file")
    refine_p.add_argument("message", help="The refinement request")
    refine_p.add_argument("--nested-flow", default=None, metavar="ID", help="Refine this nested flow")

    diff_p = sub.add_parser("diff", help="Summarize the changes between two workflow files")
    diff_p.add_argument("base", type=Path)
    diff_p.add_argument("proposed", type=Path)

    args = parser.parse_args()

    if args.command == "chat":
        asyncio.run(_run_chat(args.workflow, args.output, args.nested_flow))
    elif args.command == "refine":
        sys.exit(asyncio.run(_run_refine(args.workflow, args.message, args.nested_flow)))
    elif args.command == "diff":
        _run_diff(args.base, args.proposed)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
