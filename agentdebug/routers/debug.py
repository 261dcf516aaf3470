"""Debug API: session loading, analysis, diagrams and trajectory queries."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, Optional, Sequence

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from agentdebug.diagrams import (
    render_diagram,
    render_hierarchy_detailed,
    render_hierarchy_mermaid,
    render_hierarchy_text,
)
from agentdebug.errors import FormatError
from agentdebug.failures import classify
from agentdebug.filters import self_analysis_filter
from agentdebug.models import Session, SubAgent
from agentdebug.parsers import load_session_file, normalize_any, normalize_live
from agentdebug.store import session_store
from agentdebug.trajectories import trajectory_context

logger = logging.getLogger("agentdebug.debug")

debug_router = APIRouter(prefix="/api/debug", tags=["debug"])

HierarchyFormat = Literal["json", "text", "mermaid", "detailed"]


class LoadSessionRequest(BaseModel):
    content: Optional[str] = None
    path: Optional[str] = None
    filename: Optional[str] = None
    sourceId: Optional[str] = None


class LiveEntriesRequest(BaseModel):
    entries: list[Any] = Field(default_factory=list)
    sourceId: Optional[str] = None
    excludeSelf: bool = True


class TrajectoriesRequest(BaseModel):
    trajectories: dict[str, Any] = Field(default_factory=dict)


def _format_error(exc: FormatError) -> HTTPException:
    return HTTPException(status_code=422, detail=exc.to_dict())


def _current_session() -> Session:
    session = session_store.current()
    if session is None:
        raise HTTPException(status_code=404, detail="No session loaded")
    return session


def _session_summary(session: Session) -> dict[str, Any]:
    return {
        "sessionId": session.sessionId,
        "source": session.source.value,
        "sourceFile": session.sourceFile,
        "turns": len(session.turns),
        "skippedRecords": session.skippedRecords,
        "issues": [issue.model_dump() for issue in session.issues],
    }


def _render_hierarchy(
    roots: Sequence[SubAgent],
    format: str,
    title: Optional[str],
    show_model: bool,
    show_metrics: bool,
) -> dict[str, Any]:
    if format == "json":
        return {"format": format, "roots": [root.model_dump(mode="json") for root in roots]}
    if format == "text":
        content = render_hierarchy_text(roots, title=title, show_model=show_model, show_metrics=show_metrics)
    elif format == "mermaid":
        content = render_hierarchy_mermaid(roots, title=title, show_model=show_model)
    elif format == "detailed":
        content = render_hierarchy_detailed(roots, title=title, show_model=show_model, show_metrics=show_metrics)
    else:
        raise HTTPException(status_code=400, detail=f"Unknown hierarchy format: {format}")
    return {"format": format, "content": content}


# ── Session endpoints ───────────────────────────────────────────────

@debug_router.get("/session")
async def get_session():
    """Return the published session (a loaded file wins over the live one)."""
    session = _current_session()
    return {"loaded": session_store.is_loaded, "session": session.model_dump(mode="json")}


@debug_router.post("/session/load")
async def load_session(body: LoadSessionRequest):
    """Normalize a session file or inline content and publish it."""
    if not body.content and not body.path:
        raise HTTPException(status_code=400, detail="Either content or path is required")
    try:
        if body.path:
            path = Path(body.path).expanduser()
            if not path.is_file():
                raise HTTPException(status_code=404, detail=f"File not found: {body.path}")
            session = load_session_file(path, source_id=body.sourceId)
        else:
            session = normalize_any(body.content, filename=body.filename, source_id=body.sourceId)
    except FormatError as exc:
        raise _format_error(exc) from exc

    session = session_store.load(session, source_file=body.path or body.filename)
    return {"status": "ok", **_session_summary(session)}


@debug_router.delete("/session/loaded")
async def clear_loaded_session():
    """Drop the loaded file session and fall back to the live one."""
    session_store.clear_loaded()
    return {"status": "ok", "hasLive": session_store.live is not None}


@debug_router.post("/live")
async def publish_live_entries(body: LiveEntriesRequest):
    """Normalize live log entries and publish them as the live session."""
    exclude = self_analysis_filter() if body.excludeSelf else None
    try:
        session = normalize_live(body.entries, source_id=body.sourceId, exclude=exclude)
    except FormatError as exc:
        raise _format_error(exc) from exc
    session_store.publish_live(session)
    return {"status": "ok", **_session_summary(session)}


@debug_router.get("/metrics")
async def get_metrics():
    session = _current_session()
    return session.metrics.model_dump()


@debug_router.get("/failures")
async def get_failures(scope: Optional[str] = Query(None, description="Restrict to one session id")):
    """Failures of the published session, optionally scoped to one sub-agent."""
    session = _current_session()
    failures = classify(session, session_scope=scope)
    return {"count": len(failures), "items": [f.model_dump(mode="json") for f in failures]}


@debug_router.get("/diagrams/{kind}")
async def get_diagram(kind: str, detailed: bool = Query(False)):
    session = _current_session()
    try:
        mermaid = render_diagram(session, kind, detailed=detailed)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"kind": kind, "detailed": detailed, "mermaid": mermaid}


@debug_router.get("/hierarchy")
async def get_session_hierarchy(
    format: HierarchyFormat = Query("json"),
    showModel: bool = Query(False),
    showMetrics: bool = Query(False),
):
    session = _current_session()
    return _render_hierarchy(session.subAgents, format, None, showModel, showMetrics)


# ── Trajectory endpoints ────────────────────────────────────────────

@debug_router.get("/trajectories")
async def list_trajectories():
    ids = trajectory_context.session_ids()
    return {"count": len(ids), "items": ids}


@debug_router.post("/trajectories")
async def load_trajectories(body: TrajectoriesRequest):
    """Replace the loaded trajectory set."""
    try:
        trajectory_context.load(body.trajectories)
    except FormatError as exc:
        raise _format_error(exc) from exc
    return {"status": "ok", "count": len(trajectory_context)}


@debug_router.post("/trajectories/add")
async def add_trajectory(body: dict[str, Any]):
    try:
        parsed = trajectory_context.add(body)
    except FormatError as exc:
        raise _format_error(exc) from exc
    return {"status": "ok", "sessionId": parsed.session_id, "count": len(trajectory_context)}


@debug_router.delete("/trajectories/{session_id}")
async def remove_trajectory(session_id: str):
    if not trajectory_context.remove(session_id):
        raise HTTPException(status_code=404, detail=f"Trajectory {session_id} not found")
    return {"status": "ok", "count": len(trajectory_context)}


@debug_router.get("/trajectories/hierarchy")
async def get_trajectory_hierarchy(
    format: HierarchyFormat = Query("json"),
    showModel: bool = Query(False),
    showMetrics: bool = Query(False),
):
    roots = trajectory_context.build_hierarchy()
    payload = _render_hierarchy(roots, format, "Trajectory Hierarchy", showModel, showMetrics)
    payload["issues"] = [issue.model_dump() for issue in trajectory_context.issues]
    return payload


@debug_router.get("/trajectories/failures")
async def get_trajectory_failures(sessionId: Optional[str] = Query(None)):
    failures = trajectory_context.find_failures(session_id=sessionId)
    return {"count": len(failures), "items": [f.model_dump(mode="json") for f in failures]}


@debug_router.get("/trajectories/tool-calls")
async def get_trajectory_tool_calls(
    sessionId: Optional[str] = Query(None),
    toolName: Optional[str] = Query(None),
    failedOnly: bool = Query(False),
):
    calls = trajectory_context.get_tool_calls(session_id=sessionId, tool_name=toolName, failed_only=failedOnly)
    return {"count": len(calls), "items": [c.model_dump(mode="json") for c in calls]}
