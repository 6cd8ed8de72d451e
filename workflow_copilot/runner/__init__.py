"""Completion tool subprocess layer — launcher detection, runner, live-process registry."""

from workflow_copilot.runner.cli_path import clear_cli_path_cache, find_cli_launcher
from workflow_copilot.runner.process_runner import (
    AttemptState,
    CancelResult,
    ExecutionError,
    ExecutionResult,
    ProcessRegistry,
    ProcessRunner,
)

__all__ = [
    "AttemptState",
    "CancelResult",
    "ExecutionError",
    "ExecutionResult",
    "ProcessRegistry",
    "ProcessRunner",
    "clear_cli_path_cache",
    "find_cli_launcher",
]
