"""Normalize an ATIF trajectory (and the trajectories it references)."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from agentdebug import config
from agentdebug.date_utils import duration_ms, earliest, latest, parse_timestamp
from agentdebug.errors import FormatError
from agentdebug.models import (
    Request,
    Session,
    SourceKind,
    SubAgentRecord,
    SubAgentRef,
    ThinkingBlock,
    ToolCall,
)
from agentdebug.parsers.common import (
    IssueLog,
    SubAgentDraft,
    TurnDraft,
    build_session,
    coerce_int,
    load_json,
    parse_args,
    tool_status,
)
from agentdebug.parsers.formats import TrajectoryHeader, TrajectoryResult, TrajectoryStep

logger = logging.getLogger("agentdebug.parsers.trajectory")


@dataclass
class ParsedTrajectory:
    header: TrajectoryHeader
    steps: list[TrajectoryStep]

    @property
    def session_id(self) -> str:
        return self.header.session_id

    @property
    def model(self) -> Optional[str]:
        if self.header.agent.model_name:
            return self.header.agent.model_name
        return next((s.model_name for s in self.steps if s.model_name), None)


def message_text(message: Any) -> Optional[str]:
    """Flatten a step message (plain text or a list of content parts)."""
    if message is None:
        return None
    if isinstance(message, str):
        return message
    if isinstance(message, list):
        parts = []
        for part in message:
            if isinstance(part, dict):
                text = part.get("text")
                if text:
                    parts.append(str(text))
            elif part is not None:
                parts.append(str(part))
        return "\n".join(parts) if parts else None
    return str(message)


def parse_trajectory(source: Any, issues: Optional[IssueLog] = None) -> ParsedTrajectory:
    """Validate the trajectory header; invalid steps are skipped one by one."""
    try:
        decoded = load_json(source)
    except json.JSONDecodeError as exc:
        raise FormatError("trajectory", f"invalid JSON: {exc.msg}", source) from exc
    if not isinstance(decoded, dict):
        raise FormatError("trajectory", "expected a trajectory object", source)
    try:
        header = TrajectoryHeader.model_validate(decoded)
    except ValidationError as exc:
        raise FormatError("trajectory", f"invalid trajectory header ({exc.error_count()} errors)", source) from exc

    steps: list[TrajectoryStep] = []
    for index, raw_step in enumerate(header.steps):
        try:
            steps.append(TrajectoryStep.model_validate(raw_step))
        except ValidationError as exc:
            if issues is not None:
                issues.skip(f"invalid step ({exc.error_count()} errors)", f"{header.session_id}.steps[{index}]")
    return ParsedTrajectory(header=header, steps=steps)


def results_by_call(step: TrajectoryStep) -> dict[str, TrajectoryResult]:
    results: dict[str, TrajectoryResult] = {}
    if step.observation and step.observation.results:
        for result in step.observation.results:
            if result.source_call_id and result.source_call_id not in results:
                results[result.source_call_id] = result
    return results


def step_refs(step: TrajectoryStep) -> list[SubAgentRef]:
    refs: list[SubAgentRef] = []
    if step.observation and step.observation.results:
        for result in step.observation.results:
            for ref in result.subagent_trajectory_ref or []:
                refs.append(SubAgentRef(sessionId=ref.session_id, parentToolCallId=result.source_call_id))
    return refs


def _step_tool_calls(step: TrajectoryStep, turn_id: str) -> list[ToolCall]:
    results = results_by_call(step)
    timestamp = parse_timestamp(step.timestamp)
    step_duration = coerce_int(step.metrics.duration_ms) if step.metrics else None
    tool_calls = []
    for raw in step.tool_calls or []:
        result = results.get(raw.tool_call_id)
        content = result.content if result else None
        refs = result.subagent_trajectory_ref if result else None
        tool_calls.append(
            ToolCall(
                id=raw.tool_call_id,
                name=raw.function_name,
                args=parse_args(raw.arguments),
                result=content[: config.RESULT_PREVIEW_LENGTH] if content is not None else None,
                fullResult=content,
                status=tool_status(None, content),
                durationMs=step_duration,
                timestamp=timestamp,
                subAgentSessionId=refs[0].session_id if refs else None,
                thinking=step.reasoning_content,
                turnId=turn_id,
            )
        )
    return tool_calls


def _step_request(step: TrajectoryStep, turn_id: str, default_model: Optional[str]) -> Optional[Request]:
    metrics = step.metrics
    if metrics is None:
        return None
    return Request(
        id=f"step-{step.step_id}",
        name="step",
        model=step.model_name or default_model,
        promptTokens=metrics.prompt_tokens,
        completionTokens=metrics.completion_tokens,
        durationMs=coerce_int(metrics.duration_ms),
        timestamp=parse_timestamp(step.timestamp),
        turnId=turn_id,
    )


def trajectory_record(
    trajectory: ParsedTrajectory,
    parent_session_id: Optional[str] = None,
    parent_tool_call_id: Optional[str] = None,
) -> SubAgentRecord:
    """Collapse a whole trajectory into one flat sub-agent record."""
    draft = SubAgentDraft(
        session_id=trajectory.session_id,
        name=trajectory.header.agent.name,
        model_name=trajectory.model,
        parent_session_id=parent_session_id,
        parent_tool_call_id=parent_tool_call_id,
        step_count=len(trajectory.steps),
    )
    durations: list[int] = []
    for step in trajectory.steps:
        turn_id = f"step-{step.step_id}"
        draft.tool_calls.extend(_step_tool_calls(step, turn_id))
        request = _step_request(step, turn_id, trajectory.model)
        if request is not None:
            draft.requests.append(request)
            draft.prompt_tokens += request.promptTokens or 0
            draft.completion_tokens += request.completionTokens or 0
            if request.durationMs is not None:
                durations.append(request.durationMs)
        draft.child_refs.extend(step_refs(step))
        if step.source == "agent":
            draft.internal_turns += 1
            text = message_text(step.message)
            if text:
                draft.summary = text[: config.RESULT_PREVIEW_LENGTH]

    final = trajectory.header.final_metrics
    if final is not None:
        draft.prompt_tokens = final.total_prompt_tokens or draft.prompt_tokens
        draft.completion_tokens = final.total_completion_tokens or draft.completion_tokens

    if durations:
        draft.duration_ms = sum(durations)
    else:
        stamps = [parse_timestamp(s.timestamp) for s in trajectory.steps]
        draft.duration_ms = duration_ms(earliest(stamps), latest(stamps))
    return draft.freeze()


def _related_records(
    root: ParsedTrajectory,
    related: Mapping[str, Any],
    issues: IssueLog,
    root_id: str,
) -> list[SubAgentRecord]:
    """Follow references breadth-first; unknown ids become leaf records."""
    records: list[SubAgentRecord] = []
    seen: set[str] = {root.session_id, root_id}
    pending: list[tuple[SubAgentRef, str]] = [
        (ref, root_id) for step in root.steps for ref in step_refs(step)
    ]
    while pending:
        ref, parent_id = pending.pop(0)
        if ref.sessionId in seen:
            continue
        seen.add(ref.sessionId)
        raw = related.get(ref.sessionId)
        if raw is None:
            records.append(
                SubAgentRecord(
                    sessionId=ref.sessionId,
                    name="subagent",
                    parentSessionId=parent_id,
                    parentToolCallId=ref.parentToolCallId,
                )
            )
            continue
        try:
            nested = raw if isinstance(raw, ParsedTrajectory) else parse_trajectory(raw, issues)
        except FormatError as exc:
            issues.skip(f"referenced trajectory unreadable: {exc.message}", ref.sessionId)
            continue
        records.append(trajectory_record(nested, parent_id, ref.parentToolCallId))
        pending.extend((child, nested.session_id) for step in nested.steps for child in step_refs(step))
    return records


def normalize_trajectory(
    source: Any,
    source_id: Optional[str] = None,
    source_file: Optional[str] = None,
    related: Optional[Mapping[str, Any]] = None,
) -> Session:
    """Build a Session from one trajectory.

    A user step opens a Turn and the agent steps that follow accumulate into
    it. Referenced sub-agent trajectories found in ``related`` are folded in
    as nested sub-agents.
    """
    issues = IssueLog("trajectory")
    trajectory = parse_trajectory(source, issues)
    session_id = source_id or trajectory.session_id

    turns: list[TurnDraft] = []
    thinking: list[ThinkingBlock] = []
    current: Optional[TurnDraft] = None
    stamps: list[list] = []

    for step in trajectory.steps:
        if step.source == "system":
            continue
        timestamp = parse_timestamp(step.timestamp)
        if step.source == "user" or current is None:
            current = TurnDraft(id=f"turn-{len(turns)}")
            turns.append(current)
            stamps.append([])
            if step.source == "user":
                current.prompt = message_text(step.message) or ""
                stamps[-1].append(timestamp)
                continue
        stamps[-1].append(timestamp)

        current.tool_calls.extend(_step_tool_calls(step, current.id))
        request = _step_request(step, current.id, trajectory.model)
        if request is not None:
            current.requests.append(request)
        text = message_text(step.message)
        if text:
            current.response = text
        if step.reasoning_content:
            thinking.append(
                ThinkingBlock(id=f"step-{step.step_id}", text=step.reasoning_content, turnId=current.id)
            )

    for draft, turn_stamps in zip(turns, stamps):
        draft.timestamp = earliest(turn_stamps)
        draft.duration_ms = duration_ms(draft.timestamp, latest(turn_stamps))

    records = _related_records(trajectory, related or {}, issues, session_id)
    logger.debug("Trajectory %s references %d sub-agent sessions", session_id, len(records))

    all_stamps = [parse_timestamp(s.timestamp) for s in trajectory.steps]
    return build_session(
        session_id=session_id,
        source=SourceKind.TRAJECTORY,
        turns=turns,
        subagents=records,
        issues=issues,
        start_time=earliest(all_stamps),
        end_time=latest(all_stamps),
        model=trajectory.model,
        source_file=source_file,
        thinking=thinking,
    )
