"""Normalize an exported chat replay into a Session."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from agentdebug import config
from agentdebug.date_utils import duration_ms, earliest, latest, parse_timestamp
from agentdebug.errors import FormatError
from agentdebug.models import ItemStatus, Request, Session, SourceKind, ToolCall
from agentdebug.parsers.common import (
    SUBAGENT_REQUEST_NAME,
    IssueLog,
    SubAgentDraft,
    TurnDraft,
    as_dict,
    build_session,
    coerce_int,
    is_spawn_tool,
    json_preview,
    load_json,
    parse_args,
    spawn_description,
    text_of,
    tool_status,
)
from agentdebug.parsers.formats import ReplayLogEntry, ReplayPrompt

logger = logging.getLogger("agentdebug.parsers.replay")


@dataclass
class _Spawn:
    draft: SubAgentDraft
    prompt_index: int
    position: int
    explicit_duration: Optional[int] = None
    starts: list[Optional[datetime]] = field(default_factory=list)
    ends: list[Optional[datetime]] = field(default_factory=list)


@dataclass
class _Internal:
    prompt_index: int
    position: int
    request: Request
    start: Optional[datetime]
    end: Optional[datetime]


def _entry_time(entry: ReplayLogEntry) -> Optional[datetime]:
    meta_start = entry.metadata.startTime if entry.metadata else None
    for candidate in (entry.timestamp, entry.time, meta_start):
        parsed = parse_timestamp(candidate)
        if parsed is not None:
            return parsed
    return None


def _entry_end(entry: ReplayLogEntry) -> Optional[datetime]:
    return parse_timestamp(entry.metadata.endTime) if entry.metadata else None


def _convert_tool_call(entry: ReplayLogEntry, turn_id: str, sub_agent_id: Optional[str]) -> ToolCall:
    response = entry.response
    error: Optional[str] = None
    failed = False
    if isinstance(response, dict) and response.get("type") == "failure":
        failed = True
        error = response.get("reason") or None
    if entry.error:
        failed = True
        error = entry.error
    full = json_preview(response) if response is not None else None
    return ToolCall(
        id=entry.id,
        name=entry.tool or entry.name or "unknown",
        args=parse_args(entry.args),
        result=full[: config.RESULT_PREVIEW_LENGTH] if full is not None else None,
        fullResult=full,
        error=error,
        status=tool_status(error, full, failed),
        durationMs=coerce_int(entry.metadata.duration) if entry.metadata else None,
        timestamp=parse_timestamp(entry.time) or parse_timestamp(entry.timestamp),
        subAgentSessionId=sub_agent_id,
        thinking=text_of(entry.thinking.text) if entry.thinking else None,
        turnId=turn_id,
    )


def _convert_request(entry: ReplayLogEntry, turn_id: str) -> Request:
    status = ItemStatus.SUCCESS
    error: Optional[str] = None
    response = as_dict(entry.response)
    if entry.type == "ChatMLFailure":
        status = ItemStatus.FAILURE
        error = response.get("reason") or "Request failed"
    elif entry.type == "ChatMLCancelation":
        status = ItemStatus.CANCELLED
    metadata = entry.metadata
    usage = metadata.usage if metadata else None
    return Request(
        id=entry.id,
        name=entry.name or "request",
        model=metadata.model if metadata else None,
        promptTokens=usage.prompt_tokens if usage else None,
        completionTokens=usage.completion_tokens if usage else None,
        durationMs=coerce_int(metadata.duration) if metadata else None,
        timestamp=parse_timestamp(metadata.startTime) if metadata else None,
        status=status,
        error=error,
        responseType=entry.type,
        turnId=turn_id,
    )


def _convert_internal(entry: ReplayLogEntry) -> Request:
    response = as_dict(entry.response)
    response_type = response.get("type")
    failed = bool(entry.error) or response_type in ("failure", "error")
    metadata = entry.metadata
    usage = metadata.usage if metadata else None
    return Request(
        id=entry.id,
        name="subagent-internal",
        model=metadata.model if metadata else None,
        promptTokens=usage.prompt_tokens if usage else None,
        completionTokens=usage.completion_tokens if usage else None,
        durationMs=coerce_int(metadata.duration) if metadata else None,
        timestamp=parse_timestamp(metadata.startTime) if metadata else None,
        status=ItemStatus.FAILURE if failed else ItemStatus.SUCCESS,
        error=entry.error or (response.get("reason") if failed else None),
        responseType=response_type,
        turnId="subagent",
    )


def _decode(source: Any) -> list[Any]:
    try:
        decoded = load_json(source)
    except json.JSONDecodeError as exc:
        raise FormatError("replay", f"invalid JSON: {exc.msg}", source) from exc
    if not isinstance(decoded, dict) or not isinstance(decoded.get("prompts"), list):
        raise FormatError("replay", "expected an object with a 'prompts' list", source)
    return decoded["prompts"]


def normalize_replay(
    source: Any,
    source_id: Optional[str] = None,
    source_file: Optional[str] = None,
) -> Session:
    """Build a Session from a replay export: one prompt record per Turn.

    Requests logged as ``tool/runSubagent`` ran inside a spawned sub-agent;
    they never become Turn items and are folded into the sub-agent instead.
    """
    session_id = source_id or "replay"
    issues = IssueLog("replay")
    raw_prompts = _decode(source)

    turns: list[TurnDraft] = []
    spawns: list[_Spawn] = []
    internals: list[_Internal] = []

    for index, raw_prompt in enumerate(raw_prompts):
        try:
            prompt = ReplayPrompt.model_validate(raw_prompt)
        except ValidationError as exc:
            issues.skip(f"invalid prompt record ({exc.error_count()} errors)", f"prompts[{index}]")
            continue

        turn_id = prompt.promptId or f"turn-{index}"
        draft = TurnDraft(id=turn_id, prompt=prompt.prompt)
        starts: list[Optional[datetime]] = []
        ends: list[Optional[datetime]] = []

        for position, raw_log in enumerate(prompt.logs):
            location = f"prompts[{index}].logs[{position}]"
            try:
                entry = ReplayLogEntry.model_validate(raw_log)
            except ValidationError as exc:
                issues.skip(f"invalid log entry ({exc.error_count()} errors)", location)
                continue

            if entry.name == SUBAGENT_REQUEST_NAME:
                internals.append(
                    _Internal(
                        prompt_index=index,
                        position=position,
                        request=_convert_internal(entry),
                        start=parse_timestamp(entry.metadata.startTime) if entry.metadata else None,
                        end=_entry_end(entry),
                    )
                )
                continue

            starts.append(_entry_time(entry))
            ends.append(_entry_end(entry))

            if entry.kind == "toolCall":
                sub_agent_id: Optional[str] = None
                if is_spawn_tool(entry.tool) or is_spawn_tool(entry.name):
                    sub_agent_id = f"{session_id}-subagent-{len(spawns)}"
                tool_call = _convert_tool_call(entry, turn_id, sub_agent_id)
                draft.tool_calls.append(tool_call)
                if sub_agent_id:
                    spawns.append(
                        _Spawn(
                            draft=SubAgentDraft(
                                session_id=sub_agent_id,
                                name=spawn_description(tool_call.args),
                                parent_session_id=session_id,
                                parent_tool_call_id=tool_call.id,
                            ),
                            prompt_index=index,
                            position=position,
                            explicit_duration=tool_call.durationMs,
                        )
                    )
            elif entry.kind == "request":
                request = _convert_request(entry, turn_id)
                draft.requests.append(request)
                if entry.type == "ChatMLSuccess":
                    message = as_dict(entry.response).get("message")
                    if message:
                        draft.response = text_of(message)
                if request.status == ItemStatus.FAILURE:
                    draft.failed = True
            elif entry.kind == "error":
                draft.failed = True
            else:
                issues.skip(f"unknown log kind {entry.kind!r}", location)

        draft.timestamp = earliest(starts)
        draft.duration_ms = duration_ms(draft.timestamp, latest([*starts, *ends]))
        turns.append(draft)

    synthetic: Optional[_Spawn] = None
    for internal in internals:
        owner = _owning_spawn(spawns, internal)
        if owner is None:
            if synthetic is None:
                logger.debug("Internal sub-agent requests without a spawn call; inferring a sub-agent")
                synthetic = _Spawn(
                    draft=SubAgentDraft(
                        session_id=f"{session_id}-subagent-inferred",
                        name="subagent",
                        parent_session_id=session_id,
                    ),
                    prompt_index=internal.prompt_index,
                    position=internal.position,
                )
            owner = synthetic
        request = internal.request
        owner.draft.requests.append(request)
        owner.draft.internal_turns += 1
        owner.draft.prompt_tokens += request.promptTokens or 0
        owner.draft.completion_tokens += request.completionTokens or 0
        if request.model and not owner.draft.model_name:
            owner.draft.model_name = request.model
        if request.status == ItemStatus.FAILURE:
            owner.draft.has_failures = True
        owner.starts.append(internal.start)
        owner.ends.append(internal.end)

    records = []
    for spawn in [*spawns, *([synthetic] if synthetic else [])]:
        spawn.draft.duration_ms = spawn.explicit_duration
        if spawn.draft.duration_ms is None:
            spawn.draft.duration_ms = duration_ms(earliest(spawn.starts), latest([*spawn.starts, *spawn.ends]))
        records.append(spawn.draft.freeze())

    return build_session(
        session_id=session_id,
        source=SourceKind.REPLAY,
        turns=turns,
        subagents=records,
        issues=issues,
        source_file=source_file,
    )


def _owning_spawn(spawns: list[_Spawn], internal: _Internal) -> Optional[_Spawn]:
    """Most recent spawn before the request in its prompt, else the prompt's
    first spawn, else the most recent spawn of an earlier prompt."""
    same_prompt = [s for s in spawns if s.prompt_index == internal.prompt_index]
    preceding = [s for s in same_prompt if s.position < internal.position]
    if preceding:
        return preceding[-1]
    if same_prompt:
        return same_prompt[0]
    earlier = [s for s in spawns if s.prompt_index < internal.prompt_index]
    return earlier[-1] if earlier else None
