"""Normalize a JSONL session transcript into a Session."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from agentdebug import config
from agentdebug.date_utils import duration_ms, earliest, latest, parse_timestamp
from agentdebug.errors import FormatError
from agentdebug.models import (
    ItemStatus,
    Session,
    SessionContext,
    SourceKind,
    SubAgentRecord,
    ThinkingBlock,
    ToolCall,
    TranscriptEvent,
)
from agentdebug.parsers.common import (
    IssueLog,
    TurnDraft,
    as_dict,
    build_session,
    is_spawn_tool,
    parse_args,
    spawn_description,
    text_of,
    tool_status,
)
from agentdebug.parsers.formats import TranscriptEntry

logger = logging.getLogger("agentdebug.parsers.transcript")


@dataclass
class _PendingTool:
    name: str
    args: dict[str, Any]
    started: Optional[datetime]
    turn: Optional[TurnDraft]


def _lines(source: Any) -> list[Any]:
    if isinstance(source, (bytes, bytearray)):
        source = bytes(source).decode("utf-8", errors="replace")
    if isinstance(source, str):
        return source.splitlines()
    if isinstance(source, Iterable):
        return list(source)
    raise FormatError("transcript", "expected JSONL text or an iterable of lines", source)


def _tool_error(data: dict[str, Any]) -> Optional[str]:
    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "Tool execution failed")
    if error:
        return str(error)
    return "Tool execution failed"


class _TranscriptBuilder:
    """Replays transcript events in order, closing a Turn on each user message."""

    def __init__(self, source_id: Optional[str]) -> None:
        self.source_id = source_id
        self.session_id = "transcript"
        self.context: Optional[SessionContext] = None
        self.turns: list[TurnDraft] = []
        self.turn_stamps: dict[int, list[Optional[datetime]]] = {}
        self.current: Optional[TurnDraft] = None
        self.thinking: list[tuple[TurnDraft, str, str]] = []
        self.events: list[TranscriptEvent] = []
        self.pending: dict[str, _PendingTool] = {}
        self.spawns: list[tuple[TurnDraft, int]] = []

    def _open_turn(self, prompt: str, timestamp: Optional[datetime]) -> TurnDraft:
        draft = TurnDraft(id=f"turn-{len(self.turns)}", prompt=prompt, timestamp=timestamp)
        self.turns.append(draft)
        self.turn_stamps[id(draft)] = []
        self.current = draft
        return draft

    def _ensure_turn(self, timestamp: Optional[datetime]) -> TurnDraft:
        if self.current is None:
            return self._open_turn("", timestamp)
        return self.current

    def _add_tool_call(self, draft: TurnDraft, tool_call: ToolCall) -> None:
        draft.tool_calls.append(tool_call)
        if is_spawn_tool(tool_call.name) and tool_call.status != ItemStatus.IN_PROGRESS:
            self.spawns.append((draft, len(draft.tool_calls) - 1))

    def feed(self, entry: TranscriptEntry) -> None:
        timestamp = parse_timestamp(entry.timestamp)
        self.events.append(
            TranscriptEvent(
                id=entry.id,
                type=entry.type,
                timestamp=timestamp,
                parentId=entry.parentId or None,
                data=entry.data,
            )
        )
        data = entry.data
        owner: Optional[TurnDraft] = None

        if entry.type == "session.start":
            if data.get("sessionId"):
                self.session_id = str(data["sessionId"])
            self.context = SessionContext(
                cwd=as_dict(data.get("context")).get("cwd"),
                agentVersion=data.get("copilotVersion"),
                hostVersion=data.get("vscodeVersion"),
            )
        elif entry.type == "user.message":
            self._open_turn(text_of(data.get("content")) or "", timestamp)
        elif entry.type == "assistant.turn_start":
            draft = self._ensure_turn(timestamp)
            if data.get("turnId"):
                draft.id = str(data["turnId"])
        elif entry.type == "assistant.message":
            draft = self._ensure_turn(timestamp)
            content = text_of(data.get("content"))
            if content:
                draft.response = content
            reasoning = text_of(data.get("reasoningText"))
            if reasoning:
                self.thinking.append((draft, str(data.get("messageId") or entry.id), reasoning))
        elif entry.type == "tool.execution_start":
            call_id = str(data.get("toolCallId") or entry.id)
            self.pending[call_id] = _PendingTool(
                name=str(data.get("toolName") or "unknown"),
                args=parse_args(data.get("arguments")),
                started=timestamp,
                turn=self._ensure_turn(timestamp),
            )
        elif entry.type == "tool.execution_complete":
            owner = self._complete_tool(data, timestamp)

        owner = owner or self.current
        if owner is not None:
            self.turn_stamps[id(owner)].append(timestamp)

    def _complete_tool(self, data: dict[str, Any], timestamp: Optional[datetime]) -> TurnDraft:
        call_id = str(data.get("toolCallId") or "")
        start = self.pending.pop(call_id, None)
        # Completions can arrive after the next user message.
        draft = start.turn if start and start.turn else self._ensure_turn(timestamp)
        content = text_of(as_dict(data.get("result")).get("content"))
        failed = data.get("success") is False
        error = _tool_error(data) if failed else None
        tool_call = ToolCall(
            id=call_id or f"tool-{len(draft.tool_calls)}",
            name=start.name if start else "unknown",
            args=start.args if start else {},
            result=content[: config.RESULT_PREVIEW_LENGTH] if content is not None else None,
            fullResult=content,
            error=error,
            status=tool_status(error, content, failed),
            durationMs=duration_ms(start.started, timestamp) if start else None,
            timestamp=start.started if start else timestamp,
            turnId=draft.id,
        )
        self._add_tool_call(draft, tool_call)
        return draft

    def finish(self, issues: IssueLog, source_file: Optional[str] = None) -> Session:
        session_id = self.source_id or self.session_id

        # Tools that started but never completed are still running.
        for call_id, start in self.pending.items():
            draft = start.turn or self._ensure_turn(start.started)
            self._add_tool_call(
                draft,
                ToolCall(
                    id=call_id,
                    name=start.name,
                    args=start.args,
                    status=ItemStatus.IN_PROGRESS,
                    timestamp=start.started,
                    turnId=draft.id,
                ),
            )

        # Turn ids may have been assigned after tool calls were recorded.
        for draft in self.turns:
            draft.tool_calls = [
                tc if tc.turnId == draft.id else tc.model_copy(update={"turnId": draft.id})
                for tc in draft.tool_calls
            ]
        thinking = [ThinkingBlock(id=block_id, text=text, turnId=draft.id) for draft, block_id, text in self.thinking]

        records: list[SubAgentRecord] = []
        for number, (draft, position) in enumerate(self.spawns):
            tool_call = draft.tool_calls[position]
            sub_id = f"{session_id}-subagent-{number}"
            draft.tool_calls[position] = tool_call.model_copy(update={"subAgentSessionId": sub_id})
            records.append(
                SubAgentRecord(
                    sessionId=sub_id,
                    name=spawn_description(tool_call.args),
                    parentSessionId=session_id,
                    parentToolCallId=tool_call.id,
                    durationMs=tool_call.durationMs,
                    summary=tool_call.result,
                    hasFailures=tool_call.status == ItemStatus.FAILURE,
                )
            )

        for draft in self.turns:
            stamps = self.turn_stamps[id(draft)]
            draft.timestamp = draft.timestamp or earliest(stamps)
            draft.duration_ms = duration_ms(draft.timestamp, latest(stamps))

        event_stamps = [e.timestamp for e in self.events]
        return build_session(
            session_id=session_id,
            source=SourceKind.TRANSCRIPT,
            turns=self.turns,
            subagents=records,
            issues=issues,
            start_time=earliest(event_stamps),
            end_time=latest(event_stamps),
            source_file=source_file,
            thinking=thinking,
            transcript_events=self.events,
            session_context=self.context,
        )


def normalize_transcript(
    source: Any,
    source_id: Optional[str] = None,
    source_file: Optional[str] = None,
) -> Session:
    """Build a Session from transcript events, one JSON object per line.

    Malformed lines are skipped; only a transcript where every non-blank line
    is unreadable raises FormatError.
    """
    issues = IssueLog("transcript")
    builder = _TranscriptBuilder(source_id)
    non_blank = 0
    parsed = 0

    for number, line in enumerate(_lines(source), start=1):
        if isinstance(line, (bytes, bytearray)):
            line = bytes(line).decode("utf-8", errors="replace")
        if isinstance(line, str):
            if not line.strip():
                continue
            non_blank += 1
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as exc:
                issues.skip(f"invalid JSON: {exc.msg}", f"line {number}")
                continue
        else:
            non_blank += 1
            raw = line
        try:
            entry = TranscriptEntry.model_validate(raw)
        except ValidationError as exc:
            issues.skip(f"invalid event ({exc.error_count()} errors)", f"line {number}")
            continue
        parsed += 1
        builder.feed(entry)

    if non_blank and not parsed:
        raise FormatError("transcript", "no line parsed as a transcript event", source)

    session = builder.finish(issues, source_file)
    logger.debug("Normalized transcript %s: %d events", session.sessionId, len(session.transcriptEvents))
    return session
