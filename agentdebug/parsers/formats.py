"""Pydantic schemas for the raw source formats.

These mirror the shapes the external producers write. They are validated
one record at a time so a single malformed record can be skipped without
rejecting the rest of the file.
"""
from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Timestamp = Union[str, int, float, None]


class _Raw(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


# ── Live request log ────────────────────────────────────────────────

class LiveToken(_Raw):
    id: Optional[str] = None
    label: Optional[str] = None
    subAgentName: Optional[str] = None
    subAgentInvocationId: Optional[str] = None

    def key(self) -> tuple[Optional[str], ...]:
        if self.id:
            return ("id", self.id)
        return ("token", self.label, self.subAgentName, self.subAgentInvocationId)


class LiveUsage(_Raw):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class LiveRequestResult(_Raw):
    value: Any = None
    reason: Optional[str] = None


class LiveThinking(_Raw):
    text: Any = None


class LiveToolResponse(_Raw):
    content: list[Any] = Field(default_factory=list)


class LiveToolCallEntry(_Raw):
    kind: str = "toolCall"
    id: str
    name: str
    args: Any = None
    response: Optional[LiveToolResponse] = None
    time: Timestamp = None
    toolMetadata: Optional[dict[str, Any]] = None
    thinking: Optional[LiveThinking] = None
    token: Optional[LiveToken] = None


class LiveRequestEntry(_Raw):
    kind: str = "request"
    id: str
    debugName: str = "request"
    type: str = "ChatMLSuccess"
    startTime: Timestamp = None
    endTime: Timestamp = None
    model: Optional[str] = None
    usage: Optional[LiveUsage] = None
    isConversationRequest: Optional[bool] = None
    result: Optional[LiveRequestResult] = None
    token: Optional[LiveToken] = None


# ── Replay export ───────────────────────────────────────────────────

class ReplayUsage(_Raw):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class ReplayMetadata(_Raw):
    model: Optional[str] = None
    usage: Optional[ReplayUsage] = None
    duration: Optional[float] = None
    startTime: Timestamp = None
    endTime: Timestamp = None


class ReplayLogEntry(_Raw):
    id: str
    kind: str
    name: Optional[str] = None
    tool: Optional[str] = None
    type: Optional[str] = None
    args: Any = None
    response: Any = None
    error: Optional[str] = None
    timestamp: Timestamp = None
    time: Timestamp = None
    metadata: Optional[ReplayMetadata] = None
    thinking: Optional[LiveThinking] = None


class ReplayPrompt(_Raw):
    promptId: Optional[str] = None
    prompt: str = ""
    logs: list[Any] = Field(default_factory=list)


# ── Trajectory (ATIF) ───────────────────────────────────────────────

class TrajectoryAgent(_Raw):
    name: str = "agent"
    version: Optional[str] = None
    model_name: Optional[str] = None


class TrajectoryToolCallRaw(_Raw):
    tool_call_id: str
    function_name: str
    arguments: Any = None


class TrajectoryRef(_Raw):
    session_id: str
    trajectory_path: Optional[str] = None


class TrajectoryResult(_Raw):
    source_call_id: Optional[str] = None
    content: Optional[str] = None
    subagent_trajectory_ref: Optional[list[TrajectoryRef]] = None


class TrajectoryObservation(_Raw):
    results: Optional[list[TrajectoryResult]] = None


class TrajectoryStepMetrics(_Raw):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    duration_ms: Optional[float] = None


class TrajectoryStep(_Raw):
    step_id: int = 0
    timestamp: Timestamp = None
    source: str = "agent"
    message: Any = None
    reasoning_content: Optional[str] = None
    model_name: Optional[str] = None
    tool_calls: Optional[list[TrajectoryToolCallRaw]] = None
    observation: Optional[TrajectoryObservation] = None
    metrics: Optional[TrajectoryStepMetrics] = None


class TrajectoryFinalMetrics(_Raw):
    total_prompt_tokens: Optional[int] = None
    total_completion_tokens: Optional[int] = None
    total_steps: Optional[int] = None


class TrajectoryHeader(_Raw):
    schema_version: Optional[str] = None
    session_id: str
    agent: TrajectoryAgent = Field(default_factory=TrajectoryAgent)
    steps: list[Any] = Field(default_factory=list)
    final_metrics: Optional[TrajectoryFinalMetrics] = None


# ── Transcript (JSONL) ──────────────────────────────────────────────

TRANSCRIPT_EVENT_TYPES = (
    "session.start",
    "user.message",
    "assistant.turn_start",
    "assistant.message",
    "tool.execution_start",
    "tool.execution_complete",
    "assistant.turn_end",
)


class TranscriptEntry(_Raw):
    type: str
    id: str = ""
    timestamp: Timestamp = None
    parentId: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)
