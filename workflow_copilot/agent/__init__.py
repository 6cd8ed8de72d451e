"""Workflow refinement agent.

Entry points:
    RefinementOrchestrator(runner, ...)   → refine_workflow / refine_nested_flow / cancel
    compute_workflow_diff(nodes, connections, name, proposed) → WorkflowDiffSummary

Pipeline pieces (each usable on its own):
    scan_skills / filter_skills_by_relevance — skill catalogue + relevance ranking
    build_refinement_prompt                  — prompt text for one attempt
    OutputClassifier / classify_output       — clarification vs workflow JSON
    resolve_skill_references                 — stamp skillPath / validationStatus
    validate_workflow                        — default semantic validator
    ConversationHistory / ConversationStore  — per-target conversation state
"""

from workflow_copilot.agent.diff import NameChange, NodeChange, WorkflowDiffSummary, compute_workflow_diff
from workflow_copilot.agent.modes import NESTED_FLOW_MODE, WORKFLOW_MODE, RefinementMode
from workflow_copilot.agent.orchestrator import (
    NestedFlowRefinementResult,
    RefinementClarification,
    RefinementError,
    RefinementOrchestrator,
    RefinementResult,
    RefinementSuccess,
)
from workflow_copilot.agent.output_parser import (
    Clarification,
    OutputClassifier,
    ParseFailure,
    WorkflowJson,
    classify_output,
)
from workflow_copilot.agent.prompts import build_refinement_prompt
from workflow_copilot.agent.relevance import SkillRelevanceScore, filter_skills_by_relevance
from workflow_copilot.agent.resolver import resolve_skill_references
from workflow_copilot.agent.schema import SchemaLoadResult, load_workflow_schema
from workflow_copilot.agent.skills import SkillCatalogue, SkillReference, scan_skills
from workflow_copilot.agent.state import (
    ConversationHistory,
    ConversationMessage,
    ConversationStore,
    RefinementTarget,
)
from workflow_copilot.agent.validator import (
    ValidationIssue,
    ValidationReport,
    check_graph_references,
    validate_workflow,
)

__all__ = [
    "Clarification",
    "ConversationHistory",
    "ConversationMessage",
    "ConversationStore",
    "NESTED_FLOW_MODE",
    "NameChange",
    "NestedFlowRefinementResult",
    "NodeChange",
    "OutputClassifier",
    "ParseFailure",
    "RefinementClarification",
    "RefinementError",
    "RefinementMode",
    "RefinementOrchestrator",
    "RefinementResult",
    "RefinementSuccess",
    "RefinementTarget",
    "SchemaLoadResult",
    "SkillCatalogue",
    "SkillReference",
    "SkillRelevanceScore",
    "ValidationIssue",
    "ValidationReport",
    "WORKFLOW_MODE",
    "WorkflowDiffSummary",
    "WorkflowJson",
    "build_refinement_prompt",
    "check_graph_references",
    "classify_output",
    "compute_workflow_diff",
    "filter_skills_by_relevance",
    "load_workflow_schema",
    "resolve_skill_references",
    "scan_skills",
    "validate_workflow",
]
