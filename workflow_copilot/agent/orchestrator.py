"""Refinement orchestrator — one pipeline, parameterized by RefinementMode.

Stages (each timed by StageTimer; durations land on every result):

  loading_context → prompting → executing → classifying
      ├─ clarification → record round-trip → RefinementClarification
      └─ workflow JSON → validating → resolving (skills on) → semantic_validation
                         (workflow mode) → record round-trip → RefinementSuccess

Every failure is returned as RefinementError; nothing raises to the caller
except asyncio.CancelledError. History is only mutated on success or
clarification, never on error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Literal, Union

from workflow_copilot.agent.metrics import StageTimer
from workflow_copilot.agent.modes import (
    END_NODE_TYPE,
    NESTED_FLOW_MODE,
    START_NODE_TYPE,
    WORKFLOW_MODE,
    RefinementMode,
)
from workflow_copilot.agent.output_parser import (
    PREVIEW_CHARS,
    Clarification,
    OutputClassifier,
    ParseFailure,
    missing_required_fields,
)
from workflow_copilot.agent.prompts import build_refinement_prompt
from workflow_copilot.agent.relevance import filter_skills_by_relevance
from workflow_copilot.agent.resolver import count_skill_nodes, resolve_skill_references
from workflow_copilot.agent.schema import SchemaLoadResult, load_workflow_schema
from workflow_copilot.agent.skills import SkillCatalogue, scan_skills
from workflow_copilot.agent.state import ConversationHistory
from workflow_copilot.agent.validator import ValidationReport, check_graph_references, validate_workflow
from workflow_copilot.errors import ErrorCode, user_message
from workflow_copilot.runner import CancelResult, ProcessRunner

logger = logging.getLogger("workflow_copilot.agent.orchestrator")

DEFAULT_REFINEMENT_TIMEOUT_MS = 90_000

SchemaLoader = Callable[[Path | None], Awaitable[SchemaLoadResult]]
SkillScanner = Callable[[Path | None, Path | None], Awaitable[SkillCatalogue]]
Validator = Callable[[dict[str, Any]], ValidationReport]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class RefinementSuccess:
    workflow: dict[str, Any]
    elapsed_ms: int = 0
    stage_durations_ms: dict[str, float] = field(default_factory=dict)
    kind: Literal["success"] = "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.kind,
            "workflow": self.workflow,
            "elapsedMs": self.elapsed_ms,
            "stageDurationsMs": self.stage_durations_ms,
        }


@dataclass
class RefinementClarification:
    message: str
    elapsed_ms: int = 0
    stage_durations_ms: dict[str, float] = field(default_factory=dict)
    kind: Literal["clarification"] = "clarification"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.kind,
            "message": self.message,
            "elapsedMs": self.elapsed_ms,
            "stageDurationsMs": self.stage_durations_ms,
        }


@dataclass
class RefinementError:
    code: ErrorCode
    message: str
    details: str | None = None
    elapsed_ms: int = 0
    stage_durations_ms: dict[str, float] = field(default_factory=dict)
    kind: Literal["error"] = "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.kind,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "elapsedMs": self.elapsed_ms,
            "stageDurationsMs": self.stage_durations_ms,
        }


RefinementResult = Union[RefinementSuccess, RefinementClarification, RefinementError]
# Same shape; .workflow holds a {"nodes", "connections"} fragment on success.
NestedFlowRefinementResult = RefinementResult


def _error(code: ErrorCode, details: str | None = None, message: str | None = None) -> RefinementError:
    return RefinementError(code=code, message=message or user_message(code), details=details)


def summarize_proposal(mode: RefinementMode, value: dict[str, Any]) -> str:
    """Assistant-side history entry for an accepted proposal."""
    target = "nested flow" if mode.is_nested else "workflow"
    return (
        f"Updated the {target} ({len(value.get('nodes') or [])} nodes, "
        f"{len(value.get('connections') or [])} connections)"
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class RefinementOrchestrator:
    """Drives one refinement request through every stage.

    Collaborators are injectable; the defaults read the bundled schema, scan
    skills from disk and run the built-in semantic validator.
    """

    def __init__(
        self,
        runner: ProcessRunner | None = None,
        schema_loader: SchemaLoader = load_workflow_schema,
        skill_scanner: SkillScanner = scan_skills,
        validator: Validator = validate_workflow,
        schema_path: Path | None = None,
        personal_skills_dir: Path | None = None,
        project_skills_dir: Path | None = None,
        classifier: OutputClassifier | None = None,
        default_timeout_ms: int = DEFAULT_REFINEMENT_TIMEOUT_MS,
    ) -> None:
        self.runner = runner if runner is not None else ProcessRunner()
        self._schema_loader = schema_loader
        self._skill_scanner = skill_scanner
        self._validator = validator
        self._schema_path = schema_path
        self._personal_skills_dir = personal_skills_dir
        self._project_skills_dir = project_skills_dir
        self.classifier = classifier if classifier is not None else OutputClassifier()
        self.default_timeout_ms = default_timeout_ms

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def refine_workflow(
        self,
        workflow: dict[str, Any],
        history: ConversationHistory,
        message: str,
        use_skills: bool = True,
        timeout_ms: int | None = None,
        correlation_id: str | None = None,
    ) -> RefinementResult:
        return await self._refine(WORKFLOW_MODE, workflow, history, message, use_skills, timeout_ms, correlation_id)

    async def refine_nested_flow(
        self,
        fragment: dict[str, Any],
        history: ConversationHistory,
        message: str,
        use_skills: bool = True,
        timeout_ms: int | None = None,
        correlation_id: str | None = None,
    ) -> NestedFlowRefinementResult:
        current = {"nodes": fragment.get("nodes") or [], "connections": fragment.get("connections") or []}
        return await self._refine(NESTED_FLOW_MODE, current, history, message, use_skills, timeout_ms, correlation_id)

    async def cancel(self, correlation_id: str) -> CancelResult:
        return await self.runner.cancel(correlation_id)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _refine(
        self,
        mode: RefinementMode,
        current_state: dict[str, Any],
        history: ConversationHistory,
        message: str,
        use_skills: bool,
        timeout_ms: int | None,
        correlation_id: str | None,
    ) -> RefinementResult:
        started_at = time.monotonic()
        stages: dict[str, float] = {}
        timeout = timeout_ms if timeout_ms is not None else self.default_timeout_ms

        logger.info(
            "Starting %s refinement: message %d chars, history %d messages, iteration %d, "
            "use_skills=%s, timeout %d ms, correlation_id=%s",
            mode.name, len(message), len(history.messages), history.current_iteration,
            use_skills, timeout, correlation_id,
        )

        try:
            result = await self._run_pipeline(
                mode, current_state, history, message, use_skills, timeout, correlation_id, stages,
            )
        except Exception as e:
            logger.exception("Unexpected error during %s refinement (correlation_id=%s)", mode.name, correlation_id)
            result = _error(ErrorCode.UNKNOWN_ERROR, details=str(e))

        result.elapsed_ms = int((time.monotonic() - started_at) * 1000)
        result.stage_durations_ms = stages

        if isinstance(result, RefinementError):
            log = logger.info if result.code == ErrorCode.CANCELLED else logger.error
            log(
                "%s refinement failed: %s (%s) in %d ms, correlation_id=%s",
                mode.name, result.code.value, result.details, result.elapsed_ms, correlation_id,
            )
        else:
            logger.info(
                "%s refinement finished with %s in %d ms, correlation_id=%s",
                mode.name, result.kind, result.elapsed_ms, correlation_id,
            )
        return result

    async def _load_context(self, use_skills: bool) -> tuple[SchemaLoadResult, SkillCatalogue]:
        if not use_skills:
            return await self._schema_loader(self._schema_path), SkillCatalogue()

        schema_result, catalogue = await asyncio.gather(
            self._schema_loader(self._schema_path),
            self._skill_scanner(self._personal_skills_dir, self._project_skills_dir),
        )
        return schema_result, catalogue

    async def _run_pipeline(
        self,
        mode: RefinementMode,
        current_state: dict[str, Any],
        history: ConversationHistory,
        message: str,
        use_skills: bool,
        timeout_ms: int,
        correlation_id: str | None,
        stages: dict[str, float],
    ) -> RefinementResult:
        async with StageTimer("loading_context", stages):
            schema_result, catalogue = await self._load_context(use_skills)
        if not schema_result.success or schema_result.schema is None:
            return _error(
                ErrorCode.UNKNOWN_ERROR,
                details=schema_result.error,
                message="Failed to load workflow schema",
            )
        logger.info("Context loaded: %d skills available", len(catalogue))

        async with StageTimer("prompting", stages):
            filtered = filter_skills_by_relevance(message, catalogue.entries) if use_skills else []
            prompt = build_refinement_prompt(
                current_state, history, message, schema_result.schema, filtered, mode,
            )
        logger.info("Prompt built: %d chars, %d relevant skills", len(prompt), len(filtered))

        async with StageTimer("executing", stages):
            execution = await self.runner.run(prompt, timeout_ms, correlation_id)
        if not execution.success:
            if execution.error is None:
                return _error(ErrorCode.UNKNOWN_ERROR, message="Unknown error occurred during CLI execution")
            return _error(execution.error.code, details=execution.error.details, message=execution.error.message)
        if not execution.output:
            return _error(
                ErrorCode.UNKNOWN_ERROR,
                details="Completion tool produced no output",
                message="Unknown error occurred during CLI execution",
            )

        async with StageTimer("classifying", stages):
            classified = self.classifier.classify(execution.output)

        if isinstance(classified, Clarification):
            logger.info("Completion tool asked for clarification: %s", classified.text[:PREVIEW_CHARS])
            history.record_round_trip(message, classified.text)
            return RefinementClarification(message=classified.text)

        if isinstance(classified, ParseFailure):
            logger.error("Failed to parse completion tool output: %r", classified.preview)
            return _error(ErrorCode.PARSE_ERROR, details=classified.reason)

        proposal = classified.value
        async with StageTimer("validating", stages):
            failure = self._check_structure(mode, proposal)
        if failure is not None:
            return failure

        if use_skills:
            async with StageTimer("resolving", stages):
                proposal = resolve_skill_references(proposal, catalogue.entries)
            logger.info("Skill references resolved on %d skill nodes", count_skill_nodes(proposal))

        if mode.run_semantic_validator:
            async with StageTimer("semantic_validation", stages):
                report = self._validator(proposal)
            if not report.valid:
                return _error(
                    ErrorCode.VALIDATION_ERROR,
                    details="; ".join(issue.message for issue in report.errors),
                )

        if mode.is_nested:
            proposal = {"nodes": proposal["nodes"], "connections": proposal["connections"]}

        history.record_round_trip(message, summarize_proposal(mode, proposal))
        return RefinementSuccess(workflow=proposal)

    # ------------------------------------------------------------------
    # Mode-specific structural checks
    # ------------------------------------------------------------------

    def _check_structure(self, mode: RefinementMode, proposal: Any) -> RefinementError | None:
        missing = missing_required_fields(proposal, mode.required_fields)
        if missing:
            return _error(
                ErrorCode.PARSE_ERROR,
                details=f"Missing required fields: {', '.join(missing)}",
                message="Refinement failed - AI output does not match the expected format",
            )

        nodes = proposal["nodes"]
        if not isinstance(nodes, list) or not isinstance(proposal["connections"], list):
            return _error(
                ErrorCode.PARSE_ERROR,
                details="nodes and connections must be arrays",
                message="Refinement failed - AI output does not match the expected format",
            )

        malformed = [f"nodes[{i}]" for i, node in enumerate(nodes) if not isinstance(node, dict)]
        malformed += [
            f"connections[{i}]" for i, conn in enumerate(proposal["connections"]) if not isinstance(conn, dict)
        ]
        if malformed:
            return _error(
                ErrorCode.PARSE_ERROR,
                details=f"Entries must be objects: {', '.join(malformed)}",
                message="Refinement failed - AI output does not match the expected format",
            )

        if mode.prohibited_node_types:
            offenders = [
                f"{node.get('type')} ({node.get('id')})"
                for node in nodes
                if isinstance(node, dict) and node.get("type") in mode.prohibited_node_types
            ]
            if offenders:
                return _error(
                    ErrorCode.PROHIBITED_NODE_TYPE,
                    details=f"Prohibited nodes found: {', '.join(offenders)}",
                    message=(
                        "Nested flow cannot contain "
                        + ", ".join(sorted(mode.prohibited_node_types))
                        + " nodes"
                    ),
                )

        if mode.max_nodes is not None and len(nodes) > mode.max_nodes:
            return _error(
                ErrorCode.VALIDATION_ERROR,
                details=f"Current count: {len(nodes)}",
                message=f"Nested flow cannot exceed {mode.max_nodes} nodes",
            )

        if mode.require_start_end:
            types = [node.get("type") for node in nodes if isinstance(node, dict)]
            starts = types.count(START_NODE_TYPE)
            ends = types.count(END_NODE_TYPE)
            if starts != 1 or ends < 1:
                return _error(
                    ErrorCode.VALIDATION_ERROR,
                    details=f"Expected exactly one start node and at least one end node (found {starts} start, {ends} end)",
                )

        if mode.check_references:
            issues = check_graph_references(nodes, proposal["connections"])
            if issues:
                return _error(
                    ErrorCode.VALIDATION_ERROR,
                    details="; ".join(issue.message for issue in issues),
                )
        return None
