"""Normalize an in-memory live request log into a Session."""
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
from agentdebug.filters import ExclusionFilter
from agentdebug.models import ItemStatus, Request, Session, SourceKind, ToolCall
from agentdebug.parsers.common import (
    IssueLog,
    SubAgentDraft,
    TurnDraft,
    build_session,
    json_preview,
    load_json,
    parse_args,
    text_of,
    tool_status,
)
from agentdebug.parsers.formats import LiveRequestEntry, LiveToken, LiveToolCallEntry

logger = logging.getLogger("agentdebug.parsers.live")

_SUCCESS = "ChatMLSuccess"
_FAILURE = "ChatMLFailure"
_CANCELLED = "ChatMLCancelation"
_MARKDOWN = "MarkdownContentRequest"


@dataclass
class _LiveGroup:
    token: Optional[LiveToken]
    tool_entries: list[LiveToolCallEntry] = field(default_factory=list)
    request_entries: list[LiveRequestEntry] = field(default_factory=list)


def _coerce_entries(source: Any) -> list[Any]:
    try:
        decoded = load_json(source)
    except json.JSONDecodeError as exc:
        raise FormatError("live", f"invalid JSON: {exc.msg}", source) from exc
    if isinstance(decoded, dict) and isinstance(decoded.get("entries"), list):
        return decoded["entries"]
    if isinstance(decoded, (list, tuple)):
        return list(decoded)
    raise FormatError("live", "expected a list of log entries", source)


def _tool_result(entry: LiveToolCallEntry) -> tuple[Optional[str], Optional[str], bool]:
    """Return (full result, error, failed) from a tool response."""
    if entry.response is None:
        return None, None, False
    error: Optional[str] = None
    failed = False
    texts: list[str] = []
    for part in entry.response.content:
        if isinstance(part, str):
            texts.append(part)
            continue
        if isinstance(part, dict):
            if part.get("type") == "error" and not failed:
                failed = True
                error = str(part.get("message") or "Tool error")
            if "value" in part:
                texts.append(str(part["value"]))
                continue
        texts.append(json_preview(part))
    full = "\n".join(texts)[: config.RESULT_FULL_LENGTH] if texts else None
    return full, error, failed


def _convert_tool_call(entry: LiveToolCallEntry, turn_id: str) -> ToolCall:
    full, error, failed = _tool_result(entry)
    metadata = entry.toolMetadata or {}
    sub_agent_id = metadata.get("subAgentInvocationId")
    return ToolCall(
        id=entry.id,
        name=entry.name,
        args=parse_args(entry.args),
        result=full[: config.RESULT_PREVIEW_LENGTH] if full is not None else None,
        fullResult=full,
        error=error,
        status=tool_status(error, full, failed),
        timestamp=parse_timestamp(entry.time),
        subAgentSessionId=str(sub_agent_id) if sub_agent_id else None,
        thinking=text_of(entry.thinking.text) if entry.thinking else None,
        turnId=turn_id,
    )


def _convert_request(entry: LiveRequestEntry, turn_id: str) -> Request:
    status = ItemStatus.SUCCESS
    error: Optional[str] = None
    if entry.type == _FAILURE:
        status = ItemStatus.FAILURE
        error = (entry.result.reason if entry.result else None) or "Request failed"
    elif entry.type == _CANCELLED:
        status = ItemStatus.CANCELLED

    if entry.type == _MARKDOWN:
        return Request(
            id=entry.id,
            name=entry.debugName,
            status=status,
            error=error,
            responseType=entry.type,
            turnId=turn_id,
        )

    start = parse_timestamp(entry.startTime)
    end = parse_timestamp(entry.endTime)
    usage = entry.usage if entry.type == _SUCCESS else None
    return Request(
        id=entry.id,
        name=entry.debugName,
        model=entry.model,
        promptTokens=usage.prompt_tokens if usage else None,
        completionTokens=usage.completion_tokens if usage else None,
        durationMs=duration_ms(start, end),
        timestamp=start,
        status=status,
        error=error,
        responseType=entry.type,
        turnId=turn_id,
        isConversationRequest=entry.isConversationRequest,
    )


def _request_window(entries: list[LiveRequestEntry]) -> tuple[Optional[datetime], Optional[datetime]]:
    timed = [e for e in entries if e.type != _MARKDOWN]
    start = earliest(parse_timestamp(e.startTime) for e in timed)
    end = latest(parse_timestamp(e.endTime) for e in timed)
    return start, end


def _response_text(entries: list[LiveRequestEntry]) -> Optional[str]:
    response: Optional[str] = None
    for entry in entries:
        if entry.type == _SUCCESS and entry.isConversationRequest and entry.result and entry.result.value:
            response = text_of(entry.result.value)
    return response


def normalize_live(
    source: Any,
    source_id: Optional[str] = None,
    exclude: Optional[ExclusionFilter] = None,
    source_file: Optional[str] = None,
) -> Session:
    """Build a Session from flat live log entries grouped by correlation token.

    Pass 1 turns each token group into a Turn and registers every sub-agent
    spawned by a tool call. Pass 2 folds the token groups that belong to a
    registered sub-agent back into that sub-agent's aggregates.
    """
    session_id = source_id or "live"
    issues = IssueLog("live")
    raw_entries = _coerce_entries(source)

    groups: dict[tuple, _LiveGroup] = {}
    for position, raw in enumerate(raw_entries):
        if not isinstance(raw, dict):
            issues.skip("entry is not an object", f"entries[{position}]")
            continue
        kind = raw.get("kind")
        try:
            if kind == "toolCall":
                parsed: Any = LiveToolCallEntry.model_validate(raw)
            elif kind == "request":
                parsed = LiveRequestEntry.model_validate(raw)
            else:
                issues.skip(f"unknown entry kind {kind!r}", f"entries[{position}]")
                continue
        except ValidationError as exc:
            issues.skip(f"invalid {kind} entry ({exc.error_count()} errors)", f"entries[{position}]")
            continue

        token = parsed.token
        if exclude is not None and token is not None and exclude.excludes_token(token.subAgentName):
            continue
        key = token.key() if token is not None else ("none",)
        group = groups.get(key)
        if group is None:
            group = groups[key] = _LiveGroup(token=token)
        if isinstance(parsed, LiveToolCallEntry):
            group.tool_entries.append(parsed)
        else:
            group.request_entries.append(parsed)

    # Pass 1: turns and the sub-agent registry.
    turns: list[TurnDraft] = []
    registry: dict[str, SubAgentDraft] = {}
    for group in groups.values():
        token = group.token
        if not group.tool_entries and (token is None or not token.label):
            logger.debug("Dropping %d unlabelled infrastructure requests", len(group.request_entries))
            continue

        turn_id = token.id if token is not None and token.id else f"turn-{len(turns)}"
        prompt = (token.label if token is not None else None) or "Unknown prompt"
        tool_calls = [_convert_tool_call(e, turn_id) for e in group.tool_entries]
        requests = [_convert_request(e, turn_id) for e in group.request_entries]

        if exclude is not None:
            if exclude.excludes_turn(tool_calls, prompt):
                logger.debug("Excluded self-analysis turn %s", turn_id)
                continue
            requests = [r for r in requests if not exclude.excludes_request(r)]

        for entry, tool_call in zip(group.tool_entries, tool_calls):
            metadata = entry.toolMetadata or {}
            invocation_id = tool_call.subAgentSessionId
            if not invocation_id or invocation_id in registry:
                continue
            parent_id = token.subAgentInvocationId if token is not None and token.subAgentInvocationId else session_id
            registry[invocation_id] = SubAgentDraft(
                session_id=invocation_id,
                name=str(metadata.get("subAgentName") or "subagent"),
                parent_session_id=parent_id,
                parent_tool_call_id=tool_call.id,
            )

        start, end = _request_window(group.request_entries)
        turns.append(
            TurnDraft(
                id=turn_id,
                prompt=prompt,
                response=_response_text(group.request_entries),
                tool_calls=tool_calls,
                requests=requests,
                timestamp=start,
                duration_ms=duration_ms(start, end),
                failed=any(r.status == ItemStatus.FAILURE for r in requests),
            )
        )

    # Pass 2: fold sub-agent token groups into their registry entries.
    windows: dict[str, list[Optional[datetime]]] = {}
    for group in groups.values():
        token = group.token
        if token is None or not token.subAgentInvocationId:
            continue
        draft = registry.get(token.subAgentInvocationId)
        if draft is None:
            continue
        turn_id = token.id or token.label or "subagent"
        tool_calls = [_convert_tool_call(e, turn_id) for e in group.tool_entries]
        requests = [_convert_request(e, turn_id) for e in group.request_entries]
        draft.tool_calls.extend(tool_calls)
        draft.requests.extend(requests)
        draft.internal_turns += 1
        for entry in group.request_entries:
            if entry.type == _SUCCESS and entry.usage:
                draft.prompt_tokens += entry.usage.prompt_tokens or 0
                draft.completion_tokens += entry.usage.completion_tokens or 0
            if entry.model and not draft.model_name:
                draft.model_name = entry.model
        if any(tc.status == ItemStatus.FAILURE for tc in tool_calls):
            draft.has_failures = True
        start, end = _request_window(group.request_entries)
        windows.setdefault(draft.session_id, []).extend([start, end])

    records = []
    for draft in registry.values():
        window = windows.get(draft.session_id, [])
        draft.duration_ms = duration_ms(earliest(window), latest(window))
        record = draft.freeze()
        if exclude is not None and exclude.excludes_subagent(record):
            continue
        records.append(record)

    session = build_session(
        session_id=session_id,
        source=SourceKind.LIVE,
        turns=turns,
        subagents=records,
        issues=issues,
        source_file=source_file,
    )
    logger.debug(
        "Normalized live session %s: %d turns, %d tool calls, %d sub-agents",
        session_id,
        session.metrics.totalTurns,
        session.metrics.totalToolCalls,
        session.metrics.totalSubAgents,
    )
    return session
