"""FastAPI service for the workflow co-pilot.

Wraps the RefinementOrchestrator in an HTTP API consumed by the editor UI.

  POST /workflows/{workflow_id}/refine
       Runs one refinement round-trip against the server-side conversation
       for that workflow. Returns status success | clarification | error.
       On success the body also carries the diff summary against the
       submitted workflow, so the UI can gate acceptance.

  POST /workflows/{workflow_id}/nested-flows/{nested_flow_id}/refine
       Same, for a nested flow fragment (reduced node vocabulary, node cap).

  POST /refinements/{correlation_id}/cancel
       Cancels an in-flight refinement. Harmless no-op once it has finished.

Refinement outcomes, errors included, are HTTP 200. Malformed bodies are 422,
a bad API key is 401 and the refine endpoints are rate limited (429).
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from workflow_copilot import __version__
from workflow_copilot.agent import (
    ConversationHistory,
    ConversationStore,
    RefinementOrchestrator,
    RefinementResult,
    RefinementSuccess,
    RefinementTarget,
    compute_workflow_diff,
)
from workflow_copilot.config import MAX_TIMEOUT_MS, MIN_TIMEOUT_MS, CopilotSettings
from workflow_copilot.runner import ProcessRunner

logger = logging.getLogger("workflow_copilot.api")

# ---------------------------------------------------------------------------
# API key authentication (optional — enabled when COPILOT_API_KEY is set)
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def _verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> None:
    """Verify Bearer token matches COPILOT_API_KEY env var.

    If COPILOT_API_KEY is not set, all requests are allowed (open dev mode).
    """
    api_key = os.getenv("COPILOT_API_KEY")
    if not api_key:
        return
    if not credentials or credentials.credentials != api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


# ---------------------------------------------------------------------------
# Lifespan: build the orchestrator once at startup
# ---------------------------------------------------------------------------


def build_orchestrator(settings: CopilotSettings) -> RefinementOrchestrator:
    runner = ProcessRunner(launcher=settings.launcher, cwd=settings.workspace_root)
    return RefinementOrchestrator(
        runner=runner,
        schema_path=settings.resolved_schema_path,
        personal_skills_dir=settings.personal_skills_dir,
        project_skills_dir=settings.project_skills_dir,
        default_timeout_ms=settings.timeout_ms,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: create the orchestrator and conversation store on startup."""
    load_dotenv()
    settings = CopilotSettings()

    logger.info(
        "Starting workflow co-pilot | launcher: %s | workspace: %s | skills: %s",
        settings.cli_command or "(auto-detect)",
        settings.resolved_workspace,
        settings.use_skills,
    )

    app.state.settings = settings
    app.state.orchestrator = build_orchestrator(settings)
    app.state.conversations = ConversationStore()

    yield

    active = app.state.orchestrator.runner.registry.correlation_ids
    for correlation_id in active:
        await app.state.orchestrator.cancel(correlation_id)
    logger.info("Shutting down workflow co-pilot (%d in-flight refinements cancelled)", len(active))


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

_rate_limit = os.getenv("RATE_LIMIT_REFINEMENTS_PER_MIN", "20")
limiter = Limiter(key_func=get_remote_address, default_limits=[f"{_rate_limit}/minute"])

app = FastAPI(
    title="Workflow Co-pilot API",
    description=(
        "Conversational refinement of visual workflows. Each request runs one "
        "round-trip through the external completion tool and returns either a "
        "proposed workflow, a clarifying question, or a typed error."
    ),
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.environ.get("CORS_ORIGINS", "http://localhost:3001,http://localhost:3000").split(",")
    if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class _RefineOptions(BaseModel):
    message: str = Field(..., min_length=1, description="The user's refinement request.")
    use_skills: bool | None = Field(
        None,
        description="Inject relevant skills into the prompt. Defaults to WORKFLOW_COPILOT_USE_SKILLS.",
    )
    timeout_ms: int | None = Field(
        None,
        ge=MIN_TIMEOUT_MS,
        le=MAX_TIMEOUT_MS,
        description="Refinement timeout. Defaults to WORKFLOW_COPILOT_TIMEOUT_MS.",
    )
    correlation_id: str | None = Field(
        None,
        description="Token for cancelling this request. Generated when omitted.",
    )


class RefineWorkflowRequest(_RefineOptions):
    """Request body for POST /workflows/{workflow_id}/refine."""

    workflow: dict[str, Any] = Field(..., description="The current (accepted) workflow.")


class RefineNestedFlowRequest(_RefineOptions):
    """Request body for POST /workflows/{workflow_id}/nested-flows/{nested_flow_id}/refine."""

    nodes: list[dict[str, Any]] = Field(default_factory=list)
    connections: list[dict[str, Any]] = Field(default_factory=list)


class DiffRequest(BaseModel):
    """Request body for POST /diff."""

    baseline_nodes: list[dict[str, Any]] = Field(default_factory=list)
    baseline_connections: list[dict[str, Any]] = Field(default_factory=list)
    baseline_name: str = ""
    proposed: dict[str, Any]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> RefinementOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Refinement service is not initialised.")
    return orchestrator


def _get_conversations(request: Request) -> ConversationStore:
    store = getattr(request.app.state, "conversations", None)
    if store is None:
        store = ConversationStore()
        request.app.state.conversations = store
    return store


def _default_use_skills(request: Request) -> bool:
    settings: CopilotSettings | None = getattr(request.app.state, "settings", None)
    return settings.use_skills if settings is not None else True


def _conversation_payload(history: ConversationHistory) -> dict[str, Any]:
    return {**history.to_dict(), "needsResetWarning": history.needs_reset_warning}


def _refinement_payload(
    result: RefinementResult,
    correlation_id: str,
    history: ConversationHistory,
    baseline_nodes: list[dict[str, Any]],
    baseline_connections: list[dict[str, Any]],
    baseline_name: str,
) -> dict[str, Any]:
    payload = {
        **result.to_dict(),
        "correlationId": correlation_id,
        "conversation": _conversation_payload(history),
    }
    if isinstance(result, RefinementSuccess):
        payload["diff"] = compute_workflow_diff(
            baseline_nodes, baseline_connections, baseline_name, result.workflow,
        ).to_dict()
    return payload


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health", tags=["system"], dependencies=[Depends(_verify_api_key)])
async def health(request: Request) -> dict:
    """Health check. Reports how many refinements are in flight."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return {
        "api": "ok",
        "version": __version__,
        "active_refinements": len(orchestrator.runner.registry) if orchestrator is not None else 0,
    }


@app.post("/workflows/{workflow_id}/refine", tags=["refinement"], dependencies=[Depends(_verify_api_key)])
@limiter.limit(f"{os.getenv('RATE_LIMIT_REFINEMENTS_PER_MIN', '20')}/minute")
async def refine_workflow(workflow_id: str, body: RefineWorkflowRequest, request: Request) -> dict:
    """Run one refinement round-trip for a whole workflow."""
    orchestrator = _get_orchestrator(request)
    history = _get_conversations(request).get_or_create(RefinementTarget(workflow_id))
    correlation_id = body.correlation_id or str(uuid4())
    use_skills = body.use_skills if body.use_skills is not None else _default_use_skills(request)

    logger.info("Refining workflow %s: %r (correlation_id=%s)", workflow_id, body.message[:80], correlation_id)

    result = await orchestrator.refine_workflow(
        body.workflow,
        history,
        body.message,
        use_skills=use_skills,
        timeout_ms=body.timeout_ms,
        correlation_id=correlation_id,
    )
    return _refinement_payload(
        result,
        correlation_id,
        history,
        body.workflow.get("nodes") or [],
        body.workflow.get("connections") or [],
        str(body.workflow.get("name") or ""),
    )


@app.post(
    "/workflows/{workflow_id}/nested-flows/{nested_flow_id}/refine",
    tags=["refinement"],
    dependencies=[Depends(_verify_api_key)],
)
@limiter.limit(f"{os.getenv('RATE_LIMIT_REFINEMENTS_PER_MIN', '20')}/minute")
async def refine_nested_flow(
    workflow_id: str,
    nested_flow_id: str,
    body: RefineNestedFlowRequest,
    request: Request,
) -> dict:
    """Run one refinement round-trip for a nested flow inside a workflow."""
    orchestrator = _get_orchestrator(request)
    history = _get_conversations(request).get_or_create(RefinementTarget(workflow_id, nested_flow_id))
    correlation_id = body.correlation_id or str(uuid4())
    use_skills = body.use_skills if body.use_skills is not None else _default_use_skills(request)

    logger.info(
        "Refining nested flow %s/%s: %r (correlation_id=%s)",
        workflow_id, nested_flow_id, body.message[:80], correlation_id,
    )

    result = await orchestrator.refine_nested_flow(
        {"nodes": body.nodes, "connections": body.connections},
        history,
        body.message,
        use_skills=use_skills,
        timeout_ms=body.timeout_ms,
        correlation_id=correlation_id,
    )
    return _refinement_payload(result, correlation_id, history, body.nodes, body.connections, "")


@app.post("/refinements/{correlation_id}/cancel", tags=["refinement"], dependencies=[Depends(_verify_api_key)])
async def cancel_refinement(correlation_id: str, request: Request) -> dict:
    """Cancel an in-flight refinement. Returns cancelled=false when nothing was running."""
    result = await _get_orchestrator(request).cancel(correlation_id)
    return {"correlationId": correlation_id, "cancelled": result.cancelled, "elapsedMs": result.elapsed_ms}


@app.get("/workflows/{workflow_id}/conversation", tags=["conversation"], dependencies=[Depends(_verify_api_key)])
async def get_conversation(workflow_id: str, request: Request, nested_flow_id: str | None = None) -> dict:
    """Return the conversation for a workflow (or one of its nested flows)."""
    target = RefinementTarget(workflow_id, nested_flow_id)
    history = _get_conversations(request).get(target) or ConversationHistory()
    return _conversation_payload(history)


@app.delete("/workflows/{workflow_id}/conversation", tags=["conversation"], dependencies=[Depends(_verify_api_key)])
async def clear_conversation(workflow_id: str, request: Request, nested_flow_id: str | None = None) -> dict:
    """Reset a conversation to empty (iteration counter back to 0)."""
    target = RefinementTarget(workflow_id, nested_flow_id)
    history = _get_conversations(request).clear(target)
    return {"cleared": True, "target": str(target), "conversation": _conversation_payload(history)}


@app.post("/diff", tags=["diff"], dependencies=[Depends(_verify_api_key)])
async def diff_workflows(body: DiffRequest) -> dict:
    """Structural diff between a baseline graph and a proposed workflow."""
    summary = compute_workflow_diff(
        body.baseline_nodes, body.baseline_connections, body.baseline_name, body.proposed,
    )
    return {**summary.to_dict(), "hasChanges": summary.has_changes}


# ---------------------------------------------------------------------------
# Entry point (for uvicorn programmatic launch)
# ---------------------------------------------------------------------------


def serve(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Launch the FastAPI server via uvicorn."""
    import uvicorn

    load_dotenv()
    logging.basicConfig(level=CopilotSettings().log_level)
    uvicorn.run(
        "workflow_copilot.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    serve()
