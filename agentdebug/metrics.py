"""Aggregate metrics over a normalized session."""
from __future__ import annotations

from collections import Counter
from typing import Sequence

from agentdebug.failures import classify_failure_type, request_message, tool_call_message
from agentdebug.hierarchy import iter_nodes
from agentdebug.models import ItemStatus, Request, SessionMetrics, SubAgent, ToolCall, Turn


def count_subagents(nodes: Sequence[SubAgent]) -> int:
    return sum(1 for _ in iter_nodes(nodes))


def nesting_levels(nodes: Sequence[SubAgent]) -> int:
    """Number of sub-agent levels; a flat list of sub-agents is one level."""
    deepest = 0
    stack = [(node, 1) for node in nodes]
    while stack:
        node, level = stack.pop()
        deepest = max(deepest, level)
        stack.extend((child, level + 1) for child in node.children)
    return deepest


def calculate_metrics(
    turns: Sequence[Turn],
    tool_calls: Sequence[ToolCall],
    requests: Sequence[Request],
    sub_agents: Sequence[SubAgent],
) -> SessionMetrics:
    by_name: Counter[str] = Counter()
    error_types: Counter[str] = Counter()
    failed_tool_calls = 0
    failed_requests = 0
    prompt_tokens = 0
    completion_tokens = 0

    for tc in tool_calls:
        by_name[tc.name] += 1
        if tc.status == ItemStatus.FAILURE:
            failed_tool_calls += 1
            error_types[classify_failure_type(tool_call_message(tc), tool_call_resolves=True)] += 1

    for req in requests:
        if req.status == ItemStatus.FAILURE:
            failed_requests += 1
            error_types[classify_failure_type(request_message(req), tool_call_resolves=False)] += 1
        prompt_tokens += req.promptTokens or 0
        completion_tokens += req.completionTokens or 0

    durations = [t.durationMs for t in turns if t.durationMs is not None]

    return SessionMetrics(
        totalTurns=len(turns),
        totalToolCalls=len(tool_calls),
        totalRequests=len(requests),
        totalSubAgents=count_subagents(sub_agents),
        maxSubAgentDepth=nesting_levels(sub_agents),
        totalDurationMs=sum(durations) if durations else None,
        totalPromptTokens=prompt_tokens or None,
        totalCompletionTokens=completion_tokens or None,
        failedToolCalls=failed_tool_calls,
        failedRequests=failed_requests,
        toolCallsByName=dict(sorted(by_name.items())),
        errorTypes=dict(sorted(error_types.items())),
    )
