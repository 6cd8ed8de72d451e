"""Public error taxonomy shared by the runner, the orchestrator and the API.

Every pipeline stage returns one of these codes inside a typed result rather
than raising. USER_MESSAGES holds the default text shown to the user for each
code; stages may substitute a more specific message.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Failure kinds a refinement can end with."""

    COMMAND_NOT_FOUND = "COMMAND_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROHIBITED_NODE_TYPE = "PROHIBITED_NODE_TYPE"
    CANCELLED = "CANCELLED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.COMMAND_NOT_FOUND: (
        "Cannot start the AI completion tool - please ensure it is installed "
        "(npm install -g @anthropic-ai/claude-code) and on your PATH"
    ),
    ErrorCode.TIMEOUT: (
        "AI refinement timed out. Try simplifying your request or increase the timeout."
    ),
    ErrorCode.PARSE_ERROR: "Failed to parse AI response. Please try again or rephrase your request",
    ErrorCode.VALIDATION_ERROR: "Refined workflow failed validation - please try again",
    ErrorCode.PROHIBITED_NODE_TYPE: "The nested flow contains node types that are not allowed there",
    ErrorCode.CANCELLED: "Refinement cancelled",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}


def user_message(code: ErrorCode) -> str:
    return USER_MESSAGES[code]
