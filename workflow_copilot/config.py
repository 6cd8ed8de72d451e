"""Configuration for the workflow co-pilot.

CopilotSettings reads environment variables (or a .env file) automatically —
just instantiate: CopilotSettings()

Environment variables:
  WORKFLOW_COPILOT_CLI                  — explicit launcher command, e.g. "claude" or
                                          "npx claude". Unset = auto-detect.
  WORKFLOW_COPILOT_TIMEOUT_MS           — default refinement timeout (default: 90000)
  WORKFLOW_COPILOT_USE_SKILLS           — inject skills into prompts (default: true)
  WORKFLOW_COPILOT_SCHEMA_PATH          — schema document path (default: bundled schema)
  WORKFLOW_COPILOT_WORKSPACE            — subprocess cwd + project skill root
  WORKFLOW_COPILOT_PERSONAL_SKILLS_DIR  — personal skills (default: ~/.claude/skills)
  WORKFLOW_COPILOT_LOG_LEVEL            — logging level (default: WARNING)
"""

from __future__ import annotations

import shlex
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from workflow_copilot.agent.schema import default_schema_path

# Bounds for the refinement timeout (milliseconds)
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 600_000
DEFAULT_TIMEOUT_MS = 90_000


class CopilotSettings(BaseSettings):
    """Settings for the refinement pipeline and its entry points."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    cli_command: str | None = Field(default=None, validation_alias="WORKFLOW_COPILOT_CLI")
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, validation_alias="WORKFLOW_COPILOT_TIMEOUT_MS")
    use_skills: bool = Field(default=True, validation_alias="WORKFLOW_COPILOT_USE_SKILLS")
    schema_path: Path | None = Field(default=None, validation_alias="WORKFLOW_COPILOT_SCHEMA_PATH")
    workspace_root: Path | None = Field(default=None, validation_alias="WORKFLOW_COPILOT_WORKSPACE")
    personal_skills_dir: Path = Field(
        default_factory=lambda: Path.home() / ".claude" / "skills",
        validation_alias="WORKFLOW_COPILOT_PERSONAL_SKILLS_DIR",
    )
    log_level: str = Field(default="WARNING", validation_alias="WORKFLOW_COPILOT_LOG_LEVEL")

    @field_validator("cli_command", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: object) -> str | None:
        """Treat an empty WORKFLOW_COPILOT_CLI as unset (auto-detect)."""
        if not v:
            return None
        return str(v).strip() or None

    @field_validator("timeout_ms")
    @classmethod
    def clamp_timeout(cls, v: int) -> int:
        return max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, v))

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_level(cls, v: object) -> str:
        return str(v).upper()

    @classmethod
    def from_env(cls) -> CopilotSettings:
        return cls()

    @property
    def launcher(self) -> list[str] | None:
        """Explicit launcher split into argv tokens, or None to auto-detect."""
        if not self.cli_command:
            return None
        return shlex.split(self.cli_command)

    @property
    def resolved_schema_path(self) -> Path:
        return self.schema_path or default_schema_path()

    @property
    def resolved_workspace(self) -> Path:
        return self.workspace_root or Path.cwd()

    @property
    def project_skills_dir(self) -> Path:
        return self.resolved_workspace / ".claude" / "skills"
