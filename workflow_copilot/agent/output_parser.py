"""Classify and parse raw completion tool output.

The tool answers in free text. It is supposed to return either a clarifying
question (prose) or exactly one JSON object, but in practice it sometimes
wraps the JSON in ```json fences or adds prose around it.

Classification policy:
  1. Strip ```json fenced blocks, then test the remaining prose against the
     clarification patterns (case-insensitive). Any match → clarification,
     even if a valid JSON workflow follows.
  2. Otherwise extract JSON: the whole trimmed output if it parses, else the
     first ```json fenced block. Other fences (```bash etc.) are never
     treated as JSON. Unparsable JSON → ParseFailure (never raises).

The pattern list is injectable (OutputClassifier(patterns=...)) so the
heuristic can be tuned without touching the orchestrator.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Pattern, Sequence, Union

DEFAULT_CLARIFICATION_PATTERNS: tuple[Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"I need to understand",
        r"could you (please\s+)?(clarify|specify|tell me more)",
        r"ambiguous",
        r"unclear",
        r"could mean",
        r"which (one|approach|option|method)",
        r"would you like me to",
        r"please (clarify|specify)",
        r"not sure (what|which|how)",
        r"can you provide more (details|information)",
    )
)

_JSON_FENCE_BLOCK_RE = re.compile(r"```json[\s\S]*?```", re.IGNORECASE)
_JSON_FENCE_CONTENT_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_RAW_JSON_RE = re.compile(r"\n\s*\{[\s\S]*\}\s*\Z")

PREVIEW_CHARS = 200


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class Clarification:
    text: str
    kind: Literal["clarification"] = "clarification"


@dataclass
class WorkflowJson:
    value: Any
    kind: Literal["workflow_json"] = "workflow_json"


@dataclass
class ParseFailure:
    reason: str
    preview: str = ""
    kind: Literal["parse_failure"] = "parse_failure"


ClassifiedOutput = Union[Clarification, WorkflowJson, ParseFailure]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_json_fences(text: str) -> str:
    """Remove every ```json ... ``` block."""
    return _JSON_FENCE_BLOCK_RE.sub("", text)


def extract_clarification_text(output: str) -> str:
    """The prose part of a clarification: fenced JSON and a trailing raw JSON object removed."""
    cleaned = strip_json_fences(output)
    cleaned = _TRAILING_RAW_JSON_RE.sub("", cleaned)
    return cleaned.strip()


def parse_json_output(output: str) -> tuple[Any, str | None]:
    """Extract and parse JSON. Returns (value, None) on success, (None, reason) on failure."""
    try:
        value = json.loads(output.strip())
    except json.JSONDecodeError as e:
        match = _JSON_FENCE_CONTENT_RE.search(output)
        if match is None:
            return None, f"Failed to parse JSON from completion tool output: {e.msg} (line {e.lineno})"
        try:
            value = json.loads(match.group(1))
        except json.JSONDecodeError as fenced_error:
            return None, (
                "Failed to parse JSON from completion tool output: "
                f"{fenced_error.msg} (line {fenced_error.lineno})"
            )
    if value is None:
        return None, "Completion tool output parsed to null"
    return value, None


def missing_required_fields(value: Any, required_fields: Iterable[str]) -> list[str]:
    """Top-level fields absent, null or blank strings in value. Non-objects are missing everything."""
    required = list(required_fields)
    if not isinstance(value, dict):
        return required
    return [name for name in required if _is_blank(value.get(name))]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


@dataclass
class OutputClassifier:
    """Best-effort clarification-vs-workflow classifier over raw tool output."""

    patterns: Sequence[Pattern[str]] = field(default_factory=lambda: DEFAULT_CLARIFICATION_PATTERNS)

    def is_clarification(self, output: str) -> bool:
        prose = strip_json_fences(output)
        return any(pattern.search(prose) for pattern in self.patterns)

    def classify(self, output: str) -> ClassifiedOutput:
        if self.is_clarification(output):
            return Clarification(text=extract_clarification_text(output))

        value, reason = parse_json_output(output)
        if reason is not None:
            return ParseFailure(reason=reason, preview=output[:PREVIEW_CHARS])
        return WorkflowJson(value=value)


def classify_output(output: str, patterns: Sequence[Pattern[str]] | None = None) -> ClassifiedOutput:
    """Module-level convenience wrapper around OutputClassifier.classify()."""
    classifier = OutputClassifier(patterns=patterns) if patterns is not None else OutputClassifier()
    return classifier.classify(output)
