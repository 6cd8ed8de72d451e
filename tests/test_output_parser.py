"""Output classifier/parser tests.

Tests:
- clarification detection (case-insensitive), prose extraction
- fenced / bare JSON extraction, parse failures never raise
- mixed clarification + JSON → clarification
- injectable pattern list
- required-field check
"""

from __future__ import annotations

import json
import re

from workflow_copilot.agent.output_parser import (
    Clarification,
    OutputClassifier,
    ParseFailure,
    WorkflowJson,
    classify_output,
    extract_clarification_text,
    missing_required_fields,
    parse_json_output,
)

WORKFLOW_JSON = '{"id": "wf-1", "nodes": [], "connections": []}'


class TestClarification:

    def test_clarifying_question(self):
        result = classify_output("Could you clarify which node you mean?")
        assert isinstance(result, Clarification)
        assert result.kind == "clarification"
        assert result.text == "Could you clarify which node you mean?"

    def test_case_insensitive(self):
        assert isinstance(classify_output("THIS REQUEST IS AMBIGUOUS."), Clarification)

    def test_mixed_response_prefers_clarification(self):
        output = f"Which option do you prefer?\n```json\n{WORKFLOW_JSON}\n```"
        result = classify_output(output)
        assert isinstance(result, Clarification)
        assert result.text == "Which option do you prefer?"

    def test_trailing_raw_json_removed_from_text(self):
        text = extract_clarification_text(f"Would you like me to add a branch?\n{WORKFLOW_JSON}")
        assert text == "Would you like me to add a branch?"

    def test_pattern_inside_json_fence_ignored(self):
        output = '```json\n{"id": "x", "nodes": [{"data": {"prompt": "ambiguous"}}], "connections": []}\n```'
        assert isinstance(classify_output(output), WorkflowJson)

    def test_custom_patterns(self):
        classifier = OutputClassifier(patterns=[re.compile(r"\?$")])
        assert isinstance(classifier.classify("Add it where?"), Clarification)
        assert isinstance(classifier.classify("Could you clarify"), ParseFailure)


class TestJsonExtraction:

    def test_fenced_json(self):
        result = classify_output(f"```json\n{WORKFLOW_JSON}\n```")
        assert isinstance(result, WorkflowJson)
        assert result.value == {"id": "wf-1", "nodes": [], "connections": []}

    def test_bare_json(self):
        result = classify_output(f"  {WORKFLOW_JSON}  ")
        assert isinstance(result, WorkflowJson)
        assert result.value["id"] == "wf-1"

    def test_bare_json_with_code_fence_in_string(self):
        workflow = {
            "id": "wf-1",
            "nodes": [{"id": "p1", "type": "prompt", "data": {"prompt": "Run:\n```bash\nls -la\n```"}}],
            "connections": [],
        }
        result = classify_output(json.dumps(workflow))
        assert isinstance(result, WorkflowJson)
        assert result.value == workflow

    def test_json_fence_after_prose(self):
        value, reason = parse_json_output(f"Here it is:\n```json\n{WORKFLOW_JSON}\n```\nDone.")
        assert reason is None
        assert value["id"] == "wf-1"

    def test_non_json_fence_is_not_extracted(self):
        value, reason = parse_json_output(f"```\n{WORKFLOW_JSON}\n```")
        assert value is None
        assert "Failed to parse JSON" in reason

    def test_invalid_json_is_parse_failure(self):
        result = classify_output("Here is your workflow: {not json")
        assert isinstance(result, ParseFailure)
        assert result.kind == "parse_failure"
        assert "Failed to parse JSON" in result.reason
        assert result.preview.startswith("Here is your workflow")

    def test_null_is_failure(self):
        value, reason = parse_json_output("null")
        assert value is None
        assert reason is not None


class TestRequiredFields:

    def test_all_present(self):
        assert missing_required_fields({"id": 1, "nodes": [], "connections": []}, ("id", "nodes", "connections")) == []

    def test_missing_and_null(self):
        assert missing_required_fields({"nodes": None}, ("nodes", "connections")) == ["nodes", "connections"]

    def test_non_object(self):
        assert missing_required_fields([1, 2], ("nodes",)) == ["nodes"]

    def test_blank_string_counts_as_missing(self):
        value = {"id": "", "nodes": [], "connections": []}
        assert missing_required_fields(value, ("id", "nodes", "connections")) == ["id"]
        assert missing_required_fields({**value, "id": "   "}, ("id",)) == ["id"]
