"""Shared sample inputs and canonical sessions for the test modules."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from agentdebug.metrics import calculate_metrics
from agentdebug.models import ItemStatus, Session, SourceKind, SubAgent, ToolCall, Turn

BASE_TIME = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


# ── Canonical sessions built directly ───────────────────────────────

def make_turn(
    index: int,
    prompt: str,
    tools: Sequence[Any] = (),
    timestamp: Optional[datetime] = None,
    duration_ms: Optional[int] = None,
    response: Optional[str] = None,
) -> Turn:
    """``tools`` items are tool names or ``(name, args)`` / ``(name, args, status)`` tuples."""
    tool_calls = []
    for position, item in enumerate(tools):
        if isinstance(item, str):
            item = (item,)
        name = item[0]
        args = item[1] if len(item) > 1 else {}
        status = item[2] if len(item) > 2 else ItemStatus.SUCCESS
        tool_calls.append(
            ToolCall(
                id=f"tc-{index}-{position}",
                name=name,
                args=args,
                status=status,
                error="boom" if status == ItemStatus.FAILURE else None,
                turnId=f"turn-{index}",
            )
        )
    failed = any(tc.status == ItemStatus.FAILURE for tc in tool_calls)
    return Turn(
        id=f"turn-{index}",
        index=index,
        prompt=prompt,
        response=response,
        toolCalls=tool_calls,
        status=ItemStatus.FAILURE if failed else ItemStatus.SUCCESS,
        timestamp=timestamp,
        durationMs=duration_ms,
    )


def make_session(
    turns: Sequence[Turn],
    session_id: str = "test-session-id",
    sub_agents: Sequence[SubAgent] = (),
) -> Session:
    tool_calls = [tc for turn in turns for tc in turn.toolCalls]
    return Session(
        sessionId=session_id,
        source=SourceKind.LIVE,
        turns=list(turns),
        toolCalls=tool_calls,
        requests=[],
        subAgents=list(sub_agents),
        metrics=calculate_metrics(turns, tool_calls, [], sub_agents),
    )


def session_with_subagents() -> Session:
    """Four turns mixing main-agent and sub-agent prompts."""
    return make_session(
        [
            make_turn(0, "You are Oracle-subagent. Research task 1", ["read_file"]),
            make_turn(1, "You are Oracle-subagent. Research task 2", ["grep_search"]),
            make_turn(2, "Main agent: implement feature", ["create_file"]),
            make_turn(3, "You are Sisyphus-subagent. Fix bugs", ["replace_string_in_file"]),
        ]
    )


def session_with_many_subagents() -> Session:
    """Eighteen turns; thirteen consecutive Oracle turns open the session."""
    turns = [
        make_turn(i, f"You are Oracle-subagent. Research task {i + 1}", ["read_file", "grep_search"])
        for i in range(13)
    ]
    turns.append(make_turn(13, "Main agent: implement feature", ["create_file"]))
    turns.append(make_turn(14, "approve"))
    turns.append(make_turn(15, "You are Sisyphus-subagent. Fix bugs", ["replace_string_in_file"]))
    turns.append(make_turn(16, "approve"))
    turns.append(make_turn(17, "You are Code-Review-subagent. Review PR", ["read_file"]))
    return make_session(turns)


def session_without_subagents() -> Session:
    return make_session(
        [
            make_turn(0, "Implement the feature", ["create_file"]),
            make_turn(1, "approve"),
            make_turn(2, "Fix the bug", ["replace_string_in_file"]),
        ]
    )


def session_with_parallel_subagents() -> Session:
    """Thirteen Oracle turns starting 2s apart and each running 5s."""
    turns = [make_turn(0, "Plan the task", ["read_file"])]
    for i in range(13):
        turns.append(
            make_turn(
                i + 1,
                f"You are Oracle-subagent. Research task {i + 1}",
                ["read_file", "grep_search"],
                timestamp=BASE_TIME + timedelta(seconds=2 * i),
                duration_ms=5000,
            )
        )
    turns.append(make_turn(14, "Implement based on research", ["create_file"]))
    turns.append(make_turn(15, "approve"))
    turns.append(make_turn(16, "final review", ["read_file"]))
    turns.append(make_turn(17, "approve"))
    return make_session(turns)


def session_with_parallel_spawn_calls() -> Session:
    """One turn issuing three untimed runSubagent calls."""
    return make_session(
        [
            make_turn(
                0,
                "Implement the feature",
                [
                    "read_file",
                    ("runSubagent", {"description": "Research docs"}),
                    ("runSubagent", {"description": "Check tests"}),
                    ("runSubagent", {"description": "Review patterns"}),
                ],
            ),
            make_turn(1, "approve"),
        ]
    )


def sub_agent(
    session_id: str,
    name: str,
    children: Sequence[SubAgent] = (),
    depth: int = 0,
    tools: int = 0,
    has_failures: bool = False,
    model: Optional[str] = None,
) -> SubAgent:
    tool_calls = [ToolCall(id=f"{session_id}-tc-{i}", name="read_file") for i in range(tools)]
    return SubAgent(
        sessionId=session_id,
        name=name,
        modelName=model,
        children=list(children),
        depth=depth,
        toolCalls=tool_calls,
        toolCallCount=tools,
        totalToolCallCount=tools + sum(c.totalToolCallCount for c in children),
        stepCount=tools,
        hasFailures=has_failures or any(c.hasFailures for c in children),
        promptTokens=100 if model else None,
    )


# ── Raw live log ────────────────────────────────────────────────────

MAIN_TOKEN = {"id": "tok-main", "label": "Fix the bug"}
SUB_TOKEN = {
    "id": "tok-sub",
    "label": "Explore code",
    "subAgentName": "Explorer",
    "subAgentInvocationId": "sub-1",
}


def live_entries() -> list[Any]:
    """A main turn that spawns one sub-agent, plus noise the adapter drops."""
    return [
        {
            "kind": "request",
            "id": "req-1",
            "debugName": "panel/editAgent",
            "type": "ChatMLSuccess",
            "startTime": "2024-01-01T10:00:00Z",
            "endTime": "2024-01-01T10:00:04Z",
            "model": "gpt-4o",
            "usage": {"prompt_tokens": 100, "completion_tokens": 20},
            "isConversationRequest": True,
            "result": {"value": "Done fixing"},
            "token": MAIN_TOKEN,
        },
        {
            "kind": "toolCall",
            "id": "tc-spawn",
            "name": "runSubagent",
            "args": json.dumps({"description": "Explore code"}),
            "time": "2024-01-01T10:00:01Z",
            "response": {"content": ["Found the file"]},
            "toolMetadata": {"subAgentInvocationId": "sub-1", "subAgentName": "Explorer"},
            "token": MAIN_TOKEN,
        },
        {
            "kind": "toolCall",
            "id": "tc-edit",
            "name": "replace_string_in_file",
            "args": {"filePath": "/src/app.py"},
            "time": "2024-01-01T10:00:03Z",
            "response": {"content": [{"type": "error", "message": "File not found"}]},
            "token": MAIN_TOKEN,
        },
        {
            "kind": "toolCall",
            "id": "tc-read",
            "name": "read_file",
            "args": {"filePath": "/src/app.py"},
            "time": "2024-01-01T10:00:02Z",
            "response": {"content": [{"value": "def main(): pass"}]},
            "token": SUB_TOKEN,
        },
        {
            "kind": "request",
            "id": "req-2",
            "debugName": "subagent/explore",
            "type": "ChatMLSuccess",
            "startTime": "2024-01-01T10:00:01Z",
            "endTime": "2024-01-01T10:00:03Z",
            "model": "gpt-4o-mini",
            "usage": {"prompt_tokens": 50, "completion_tokens": 10},
            "token": SUB_TOKEN,
        },
        # Unlabelled infrastructure request without tool calls.
        {
            "kind": "request",
            "id": "req-infra",
            "debugName": "title",
            "type": "ChatMLSuccess",
            "startTime": "2024-01-01T09:59:59Z",
            "endTime": "2024-01-01T10:00:00Z",
        },
        {"kind": "toolCall", "name": "missing_id"},
        "not an entry",
    ]


def self_analysis_entries() -> list[Any]:
    """Entries produced by the debug tooling inspecting its own host."""
    return [
        {
            "kind": "toolCall",
            "id": "tc-debug",
            "name": "debug_get_session",
            "args": {},
            "time": "2024-01-01T10:05:00Z",
            "token": {"id": "tok-debug", "label": "Analyze the last session"},
        },
        {
            "kind": "toolCall",
            "id": "tc-panel",
            "name": "read_file",
            "args": {},
            "time": "2024-01-01T10:05:01Z",
            "token": {"id": "tok-panel", "label": "panel", "subAgentName": "debug"},
        },
        {
            "kind": "toolCall",
            "id": "tc-prompt",
            "name": "read_file",
            "args": {},
            "time": "2024-01-01T10:05:02Z",
            "token": {"id": "tok-prompt", "label": "Follow debug.prompt.md instructions"},
        },
    ]


# ── Raw replay export ───────────────────────────────────────────────

def replay_export() -> dict[str, Any]:
    return {
        "exportedAt": "2024-01-01T11:00:00Z",
        "prompts": [
            {
                "promptId": "p1",
                "prompt": "Refactor the parser",
                "logs": [
                    {
                        "id": "r1",
                        "kind": "request",
                        "name": "panel/editAgent",
                        "type": "ChatMLSuccess",
                        "response": {"message": "Refactored"},
                        "metadata": {
                            "model": "gpt-4o",
                            "usage": {"prompt_tokens": 200, "completion_tokens": 40},
                            "duration": 1500,
                            "startTime": "2024-01-01T10:00:00Z",
                            "endTime": "2024-01-01T10:00:01.500Z",
                        },
                    },
                    {
                        "id": "t1",
                        "kind": "toolCall",
                        "tool": "runSubagent",
                        "args": json.dumps({"description": "Research"}),
                        "response": ["Summary ok"],
                        "time": "2024-01-01T10:00:02Z",
                        "metadata": {"duration": 3000},
                    },
                    {
                        "id": "i1",
                        "kind": "request",
                        "name": "tool/runSubagent",
                        "type": "ChatMLSuccess",
                        "response": {"type": "success"},
                        "metadata": {
                            "model": "gpt-4o-mini",
                            "usage": {"prompt_tokens": 30, "completion_tokens": 5},
                            "startTime": "2024-01-01T10:00:02.500Z",
                            "endTime": "2024-01-01T10:00:04Z",
                        },
                    },
                    {
                        "id": "t2",
                        "kind": "toolCall",
                        "tool": "read_file",
                        "args": {"filePath": "/src/a.py"},
                        "response": "contents",
                        "time": "2024-01-01T10:00:05Z",
                    },
                ],
            },
            {
                "promptId": "p2",
                "prompt": "Run tests",
                "logs": [
                    {
                        "id": "t3",
                        "kind": "toolCall",
                        "tool": "run_in_terminal",
                        "args": {"command": "pytest"},
                        "response": {"type": "failure", "reason": "exit code 1"},
                        "time": "2024-01-01T10:01:00Z",
                    },
                    {
                        "id": "r2",
                        "kind": "request",
                        "name": "panel/editAgent",
                        "type": "ChatMLFailure",
                        "response": {"reason": "Rate limited by API"},
                        "metadata": {"startTime": "2024-01-01T10:01:01Z"},
                    },
                    {"id": "no-kind"},
                ],
            },
            "not a prompt",
        ],
    }


# ── Raw trajectories ────────────────────────────────────────────────

def root_trajectory() -> dict[str, Any]:
    return {
        "schema_version": "ATIF-v1.4",
        "session_id": "root-1",
        "agent": {"name": "planner", "model_name": "gpt-4o"},
        "steps": [
            {"step_id": 1, "timestamp": "2024-01-01T10:00:00Z", "source": "system", "message": "You plan work"},
            {"step_id": 2, "timestamp": "2024-01-01T10:00:01Z", "source": "user", "message": "Build the feature"},
            {
                "step_id": 3,
                "timestamp": "2024-01-01T10:00:02Z",
                "source": "agent",
                "message": "Delegating research",
                "reasoning_content": "Need research first",
                "tool_calls": [
                    {
                        "tool_call_id": "call-1",
                        "function_name": "runSubagent",
                        "arguments": {"description": "Research"},
                    }
                ],
                "observation": {
                    "results": [
                        {
                            "source_call_id": "call-1",
                            "content": "Research done",
                            "subagent_trajectory_ref": [{"session_id": "child-1"}],
                        }
                    ]
                },
                "metrics": {"prompt_tokens": 120, "completion_tokens": 30, "duration_ms": 1500},
            },
            {
                "step_id": 4,
                "timestamp": "2024-01-01T10:00:05Z",
                "source": "agent",
                "message": [{"type": "text", "text": "All done"}],
                "tool_calls": [
                    {
                        "tool_call_id": "call-2",
                        "function_name": "run_in_terminal",
                        "arguments": json.dumps({"command": "make"}),
                    }
                ],
                "observation": {
                    "results": [{"source_call_id": "call-2", "content": "Build failed: missing target"}]
                },
            },
        ],
        "final_metrics": {"total_prompt_tokens": 300, "total_completion_tokens": 60, "total_steps": 4},
    }


def child_trajectory() -> dict[str, Any]:
    return {
        "session_id": "child-1",
        "agent": {"name": "researcher", "model_name": "gpt-4o-mini"},
        "steps": [
            {"step_id": 1, "timestamp": "2024-01-01T10:00:02.100Z", "source": "user", "message": "Research"},
            {
                "step_id": 2,
                "timestamp": "2024-01-01T10:00:03Z",
                "source": "agent",
                "message": "Reading docs",
                "tool_calls": [
                    {"tool_call_id": "c-1", "function_name": "read_file", "arguments": {"filePath": "README.md"}}
                ],
                "observation": {
                    "results": [
                        {"source_call_id": "c-1", "content": "# Readme"},
                        {"source_call_id": "c-9", "content": "Exception: timeout"},
                    ]
                },
                "metrics": {"prompt_tokens": 40, "completion_tokens": 8, "duration_ms": 900},
            },
            {
                "step_id": 3,
                "timestamp": "2024-01-01T10:00:04Z",
                "source": "agent",
                "message": "Spawning",
                "tool_calls": [{"tool_call_id": "c-2", "function_name": "runSubagent", "arguments": {}}],
                "observation": {
                    "results": [
                        {
                            "source_call_id": "c-2",
                            "content": "ok",
                            "subagent_trajectory_ref": [{"session_id": "grandchild-404"}],
                        }
                    ]
                },
            },
        ],
    }


# ── Raw JSONL transcript ────────────────────────────────────────────

def transcript_events() -> list[dict[str, Any]]:
    return [
        {
            "type": "session.start",
            "id": "e1",
            "timestamp": "2024-01-01T10:00:00Z",
            "data": {
                "sessionId": "tx-1",
                "copilotVersion": "1.2.3",
                "vscodeVersion": "1.90.0",
                "context": {"cwd": "/work"},
            },
        },
        {"type": "user.message", "id": "e2", "timestamp": "2024-01-01T10:00:01Z", "data": {"content": "Add logging"}},
        {"type": "assistant.turn_start", "id": "e3", "timestamp": "2024-01-01T10:00:01.500Z", "data": {"turnId": "0"}},
        {
            "type": "assistant.message",
            "id": "e4",
            "timestamp": "2024-01-01T10:00:02Z",
            "data": {"messageId": "m1", "content": "Adding logging now", "reasoningText": "Check the logger"},
        },
        {
            "type": "tool.execution_start",
            "id": "e5",
            "timestamp": "2024-01-01T10:00:02Z",
            "data": {"toolCallId": "tool-a", "toolName": "read_file", "arguments": {"filePath": "app.py"}},
        },
        {
            "type": "tool.execution_complete",
            "id": "e6",
            "timestamp": "2024-01-01T10:00:03Z",
            "data": {"toolCallId": "tool-a", "success": True, "result": {"content": "import os"}},
        },
        {
            "type": "tool.execution_start",
            "id": "e7",
            "timestamp": "2024-01-01T10:00:03Z",
            "data": {
                "toolCallId": "tool-b",
                "toolName": "runSubagent",
                "arguments": json.dumps({"description": "Find callers"}),
            },
        },
        {
            "type": "tool.execution_complete",
            "id": "e8",
            "timestamp": "2024-01-01T10:00:06Z",
            "data": {"toolCallId": "tool-b", "success": True, "result": {"content": "3 callers"}},
        },
        {"type": "user.message", "id": "e9", "timestamp": "2024-01-01T10:01:00Z", "data": {"content": "Run the tests"}},
        {
            "type": "tool.execution_start",
            "id": "e10",
            "timestamp": "2024-01-01T10:01:01Z",
            "data": {"toolCallId": "tool-c", "toolName": "run_in_terminal", "arguments": {"command": "pytest"}},
        },
        {
            "type": "tool.execution_complete",
            "id": "e11",
            "timestamp": "2024-01-01T10:01:04Z",
            "data": {"toolCallId": "tool-c", "success": False, "error": {"message": "exit status 2"}},
        },
        {
            "type": "tool.execution_start",
            "id": "e12",
            "timestamp": "2024-01-01T10:01:05Z",
            "data": {"toolCallId": "tool-d", "toolName": "read_file", "arguments": {}},
        },
    ]


def transcript_text(extra_lines: Sequence[str] = ("{not json",)) -> str:
    """JSONL text with ``extra_lines`` inserted after the first user turn."""
    events = transcript_events()
    lines = [json.dumps(event) for event in events[:8]]
    lines.extend(extra_lines)
    lines.extend(json.dumps(event) for event in events[8:])
    return "\n".join(lines) + "\n"
