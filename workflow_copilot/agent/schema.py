"""Workflow schema document loader.

The schema is a JSON document describing node types, their data payloads and
the connection shape. It is pasted verbatim into every refinement prompt so
the completion tool knows the vocabulary it may use.

load_workflow_schema() never raises for I/O or JSON problems — failures come
back as SchemaLoadResult(success=False, error=...) and the orchestrator maps
them to UNKNOWN_ERROR.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger("workflow_copilot.agent.schema")

# The schema ships inside the package: workflow_copilot/resources/workflow_schema.json
_RESOURCES_DIR = Path(__file__).parent.parent / "resources"
DEFAULT_SCHEMA_FILENAME = "workflow_schema.json"


@dataclass
class SchemaLoadResult:
    success: bool
    schema: dict[str, Any] | None = None
    error: str | None = None


def default_schema_path() -> Path:
    return _RESOURCES_DIR / DEFAULT_SCHEMA_FILENAME


def _read_schema(path: Path) -> SchemaLoadResult:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        return SchemaLoadResult(success=False, error=f"Cannot read schema {path}: {e}")

    try:
        schema = json.loads(raw)
    except json.JSONDecodeError as e:
        return SchemaLoadResult(success=False, error=f"Invalid JSON in schema {path}: {e}")

    if not isinstance(schema, dict):
        return SchemaLoadResult(
            success=False,
            error=f"Schema {path} must be a JSON object, got {type(schema).__name__}",
        )
    return SchemaLoadResult(success=True, schema=schema)


async def load_workflow_schema(path: Path | str | None = None) -> SchemaLoadResult:
    """Load and parse the schema document off the event loop."""
    schema_path = Path(path) if path is not None else default_schema_path()
    result = await asyncio.to_thread(_read_schema, schema_path)
    if result.success:
        logger.debug("Loaded workflow schema from %s", schema_path)
    else:
        logger.error("Failed to load workflow schema: %s", result.error)
    return result
