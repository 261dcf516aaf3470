"""Staging structures and helpers shared by the format adapters.

Adapters collect everything into mutable drafts first and only build the
frozen canonical models once, at the end of a parse. The drafts are thrown
away afterwards, so a published Session is never touched again.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from agentdebug import config
from agentdebug.errors import PARTIAL_DATA
from agentdebug.failures import matches_failure_heuristic
from agentdebug.hierarchy import HierarchyBuilder
from agentdebug.metrics import calculate_metrics
from agentdebug.models import (
    DataIssue,
    ItemStatus,
    Request,
    Session,
    SessionContext,
    SourceKind,
    SubAgentRecord,
    SubAgentRef,
    ThinkingBlock,
    ToolCall,
    TranscriptEvent,
    Turn,
)

logger = logging.getLogger("agentdebug.parsers")

SPAWN_TOOL_NAMES = frozenset({"runSubagent"})
SUBAGENT_REQUEST_NAME = "tool/runSubagent"


def coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def truncate(text: Optional[str], limit: int) -> Optional[str]:
    if text is None:
        return None
    return text[:limit]


def json_preview(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(value)


def load_json(content: Any) -> Any:
    """Decode JSON text; objects that are already decoded pass through."""
    if isinstance(content, (bytes, bytearray)):
        content = bytes(content).decode("utf-8", errors="replace")
    if isinstance(content, str):
        return json.loads(content)
    return content


def parse_args(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return {"input": value}
        return decoded if isinstance(decoded, dict) else {"input": decoded}
    return {}


def tool_status(error: Optional[str], result: Optional[str], failed: bool = False) -> ItemStatus:
    """A tool call fails when it errored or its result reads like a failure."""
    if failed or error or matches_failure_heuristic(result):
        return ItemStatus.FAILURE
    return ItemStatus.SUCCESS


def is_spawn_tool(name: Optional[str]) -> bool:
    return (name or "") in SPAWN_TOOL_NAMES


def spawn_description(args: Any) -> str:
    description = as_dict(args).get("description")
    if isinstance(description, str) and description.strip():
        return description.strip()[: config.SUBAGENT_NAME_LENGTH]
    return "subagent"


def text_of(value: Any) -> Optional[str]:
    """Join a string-or-list message payload into one string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(str(part) for part in value)
    return str(value)


class IssueLog:
    """Tracks records skipped during a parse."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.issues: list[DataIssue] = []
        self.skipped = 0

    def skip(self, detail: str, location: Optional[str] = None) -> None:
        self.skipped += 1
        self.issues.append(DataIssue(kind=PARTIAL_DATA, detail=detail, location=location))
        logger.debug("%s: skipped record at %s (%s)", self.source, location, detail)


@dataclass
class TurnDraft:
    id: str
    prompt: str = ""
    response: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    requests: list[Request] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    duration_ms: Optional[int] = None
    failed: bool = False

    def freeze(self, index: int) -> Turn:
        failed = self.failed or any(tc.status == ItemStatus.FAILURE for tc in self.tool_calls)
        return Turn(
            id=self.id,
            index=index,
            prompt=self.prompt,
            response=self.response,
            toolCalls=list(self.tool_calls),
            requests=list(self.requests),
            status=ItemStatus.FAILURE if failed else ItemStatus.SUCCESS,
            timestamp=self.timestamp,
            durationMs=self.duration_ms,
        )


@dataclass
class SubAgentDraft:
    session_id: str
    name: str = "subagent"
    model_name: Optional[str] = None
    parent_session_id: Optional[str] = None
    parent_tool_call_id: Optional[str] = None
    child_refs: list[SubAgentRef] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    requests: list[Request] = field(default_factory=list)
    internal_turns: int = 0
    step_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    duration_ms: Optional[int] = None
    summary: Optional[str] = None
    has_failures: bool = False

    def freeze(self) -> SubAgentRecord:
        return SubAgentRecord(
            sessionId=self.session_id,
            name=self.name,
            modelName=self.model_name,
            parentSessionId=self.parent_session_id,
            parentToolCallId=self.parent_tool_call_id,
            childRefs=list(self.child_refs),
            toolCalls=list(self.tool_calls),
            requests=list(self.requests),
            internalTurns=self.internal_turns,
            stepCount=self.step_count,
            promptTokens=self.prompt_tokens or None,
            completionTokens=self.completion_tokens or None,
            durationMs=self.duration_ms,
            summary=self.summary,
            hasFailures=self.has_failures,
        )


def build_session(
    *,
    session_id: str,
    source: SourceKind,
    turns: Iterable[TurnDraft],
    subagents: Iterable[SubAgentRecord] = (),
    issues: Optional[IssueLog] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    model: Optional[str] = None,
    source_file: Optional[str] = None,
    thinking: Iterable[ThinkingBlock] = (),
    transcript_events: Iterable[TranscriptEvent] = (),
    session_context: Optional[SessionContext] = None,
) -> Session:
    """Freeze drafts into a Session; flat lists are derived from the turns."""
    frozen_turns = [draft.freeze(index) for index, draft in enumerate(turns)]
    tool_calls = [tc for turn in frozen_turns for tc in turn.toolCalls]
    requests = [req for turn in frozen_turns for req in turn.requests]

    builder = HierarchyBuilder(root_session_id=session_id)
    forest = builder.build(subagents)

    timestamps = [t.timestamp for t in frozen_turns if t.timestamp is not None]
    if start_time is None and timestamps:
        start_time = min(timestamps)
    if end_time is None and timestamps:
        end_time = max(timestamps)

    all_issues = list(issues.issues) if issues else []
    all_issues.extend(builder.issues)

    return Session(
        sessionId=session_id,
        source=source,
        turns=frozen_turns,
        toolCalls=tool_calls,
        requests=requests,
        subAgents=forest,
        metrics=calculate_metrics(frozen_turns, tool_calls, requests, forest),
        startTime=start_time,
        endTime=end_time,
        model=model,
        sourceFile=source_file,
        thinking=list(thinking),
        transcriptEvents=list(transcript_events),
        sessionContext=session_context,
        skippedRecords=issues.skipped if issues else 0,
        issues=all_issues,
    )
