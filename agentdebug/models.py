"""Pydantic models for the canonical debug session shape."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ItemStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    IN_PROGRESS = "in-progress"


class SourceKind(str, Enum):
    LIVE = "live"
    REPLAY = "replay"
    TRAJECTORY = "trajectory"
    TRANSCRIPT = "transcript"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Session building blocks ─────────────────────────────────────────

class ToolCall(_Frozen):
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: Optional[str] = None
    fullResult: Optional[str] = None
    error: Optional[str] = None
    status: ItemStatus = ItemStatus.SUCCESS
    durationMs: Optional[int] = None
    timestamp: Optional[datetime] = None
    subAgentSessionId: Optional[str] = None
    thinking: Optional[str] = None
    turnId: str = ""


class Request(_Frozen):
    id: str
    name: str = "request"
    model: Optional[str] = None
    promptTokens: Optional[int] = None
    completionTokens: Optional[int] = None
    durationMs: Optional[int] = None
    timestamp: Optional[datetime] = None
    status: ItemStatus = ItemStatus.SUCCESS
    error: Optional[str] = None
    responseType: Optional[str] = None
    turnId: str = ""
    isConversationRequest: Optional[bool] = None


class Turn(_Frozen):
    id: str
    index: int
    prompt: str = ""
    response: Optional[str] = None
    toolCalls: list[ToolCall] = Field(default_factory=list)
    requests: list[Request] = Field(default_factory=list)
    status: ItemStatus = ItemStatus.SUCCESS
    timestamp: Optional[datetime] = None
    durationMs: Optional[int] = None


# ── Sub-agent hierarchy ─────────────────────────────────────────────

class SubAgentRef(_Frozen):
    """Parent-declared reference to a nested execution."""
    sessionId: str
    parentToolCallId: Optional[str] = None


class SubAgentRecord(_Frozen):
    """Flat, unlinked sub-agent as collected by an adapter."""
    sessionId: str
    name: str = "subagent"
    modelName: Optional[str] = None
    parentSessionId: Optional[str] = None
    parentToolCallId: Optional[str] = None
    childRefs: list[SubAgentRef] = Field(default_factory=list)
    toolCalls: list[ToolCall] = Field(default_factory=list)
    requests: list[Request] = Field(default_factory=list)
    internalTurns: int = 0
    stepCount: int = 0
    promptTokens: Optional[int] = None
    completionTokens: Optional[int] = None
    durationMs: Optional[int] = None
    summary: Optional[str] = None
    hasFailures: bool = False


class SubAgent(_Frozen):
    sessionId: str
    name: str = "subagent"
    modelName: Optional[str] = None
    parentToolCallId: Optional[str] = None
    parentSessionId: Optional[str] = None
    children: list[SubAgent] = Field(default_factory=list)
    depth: int = 0
    toolCalls: list[ToolCall] = Field(default_factory=list)
    requests: list[Request] = Field(default_factory=list)
    internalTurns: int = 0
    stepCount: int = 0
    promptTokens: Optional[int] = None
    completionTokens: Optional[int] = None
    durationMs: Optional[int] = None
    summary: Optional[str] = None
    toolCallCount: int = 0
    totalToolCallCount: int = 0
    hasFailures: bool = False


# ── Session aggregate ───────────────────────────────────────────────

class SessionMetrics(_Frozen):
    totalTurns: int = 0
    totalToolCalls: int = 0
    totalRequests: int = 0
    totalSubAgents: int = 0
    maxSubAgentDepth: int = 0
    totalDurationMs: Optional[int] = None
    totalPromptTokens: Optional[int] = None
    totalCompletionTokens: Optional[int] = None
    failedToolCalls: int = 0
    failedRequests: int = 0
    toolCallsByName: dict[str, int] = Field(default_factory=dict)
    errorTypes: dict[str, int] = Field(default_factory=dict)


class ThinkingBlock(_Frozen):
    id: str
    text: str
    turnId: str = ""


class TranscriptEvent(_Frozen):
    id: str = ""
    type: str
    timestamp: Optional[datetime] = None
    parentId: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class SessionContext(_Frozen):
    cwd: Optional[str] = None
    agentVersion: Optional[str] = None
    hostVersion: Optional[str] = None


class DataIssue(_Frozen):
    kind: str  # "partial_data" | "reference_gap"
    detail: str = ""
    location: Optional[str] = None


class Session(_Frozen):
    sessionId: str
    source: SourceKind
    turns: list[Turn] = Field(default_factory=list)
    toolCalls: list[ToolCall] = Field(default_factory=list)
    requests: list[Request] = Field(default_factory=list)
    subAgents: list[SubAgent] = Field(default_factory=list)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    model: Optional[str] = None
    sourceFile: Optional[str] = None
    thinking: list[ThinkingBlock] = Field(default_factory=list)
    transcriptEvents: list[TranscriptEvent] = Field(default_factory=list)
    sessionContext: Optional[SessionContext] = None
    skippedRecords: int = 0
    issues: list[DataIssue] = Field(default_factory=list)


# ── Analysis results ────────────────────────────────────────────────

class Failure(_Frozen):
    sessionId: str
    agentName: str = ""
    turnId: Optional[str] = None
    stepId: Optional[int] = None
    toolCallId: Optional[str] = None
    toolName: Optional[str] = None
    errorType: str = "unknown_error"
    message: str = ""
    timestamp: Optional[datetime] = None
    parentChain: list[str] = Field(default_factory=list)


class TrajectoryToolCall(_Frozen):
    sessionId: str
    agentName: str = ""
    stepId: int = 0
    timestamp: Optional[datetime] = None
    toolCallId: str
    toolName: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: Optional[str] = None
    error: Optional[str] = None
    failed: bool = False
    durationMs: Optional[int] = None
    subAgentSessionId: Optional[str] = None


class ToolRun(_Frozen):
    name: str
    toolCalls: list[ToolCall] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.toolCalls)

    @property
    def hasFailure(self) -> bool:
        return any(tc.status == ItemStatus.FAILURE for tc in self.toolCalls)


class TurnGroup(_Frozen):
    startIndex: int
    turns: list[Turn] = Field(default_factory=list)
    subAgentName: Optional[str] = None
    collapsed: bool = False
    isParallel: bool = False

    @property
    def isSubAgent(self) -> bool:
        return self.subAgentName is not None

    @property
    def count(self) -> int:
        return len(self.turns)

    @property
    def toolCount(self) -> int:
        return sum(len(turn.toolCalls) for turn in self.turns)


SubAgent.model_rebuild()
