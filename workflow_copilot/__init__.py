"""Workflow co-pilot: conversational refinement of visual automation workflows.

A user edits a workflow graph by chatting with an external AI completion tool
that runs as a local subprocess. The package builds the prompt, runs the tool,
classifies its answer (clarification vs. workflow JSON), resolves skill
references, validates the result and summarizes what changed before the user
commits it.

Entry points:
    RefinementOrchestrator   — use-case layer (workflow_copilot.agent)
    workflow-copilot         — interactive terminal client (cli.py)
    workflow-copilot-api     — FastAPI service (api.py)
"""

__version__ = "0.1.0"
