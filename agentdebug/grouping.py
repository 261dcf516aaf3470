"""Run grouping and overlap detection over turns and tool calls.

Renderers use these to collapse long homogeneous stretches into summary nodes
and to flag work that ran concurrently. Overlap is decided conservatively:
without a start timestamp on both sides nothing is reported as parallel.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from itertools import combinations
from typing import Callable, Hashable, Iterable, Optional, Sequence, TypeVar, Union

from agentdebug import config
from agentdebug.models import ToolCall, ToolRun, Turn, TurnGroup
from agentdebug.parsers.common import is_spawn_tool

T = TypeVar("T")

_SUBAGENT_PROMPT = re.compile(r"\bYou are\s+(\w+)[\w-]*?-subagent\b", re.IGNORECASE)


def group_runs(items: Iterable[T], key: Callable[[T], Hashable]) -> list[list[T]]:
    """Split items into maximal runs of consecutive equal keys."""
    runs: list[list[T]] = []
    last_key: object = object()
    for item in items:
        item_key = key(item)
        if runs and item_key == last_key:
            runs[-1].append(item)
        else:
            runs.append([item])
        last_key = item_key
    return runs


def group_tool_calls(tool_calls: Sequence[ToolCall]) -> list[ToolRun]:
    return [ToolRun(name=run[0].name, toolCalls=run) for run in group_runs(tool_calls, lambda tc: tc.name)]


def subagent_name_for_turn(turn: Union[Turn, str, None]) -> Optional[str]:
    """Name of the sub-agent a turn was issued to, taken from its prompt.

    ``"You are Code-Review-subagent. ..."`` yields ``"Code"``.
    """
    prompt = turn.prompt if isinstance(turn, Turn) else turn
    if not prompt:
        return None
    match = _SUBAGENT_PROMPT.search(prompt)
    return match.group(1) if match else None


def is_subagent_turn(turn: Union[Turn, str, None]) -> bool:
    return subagent_name_for_turn(turn) is not None


def _intervals_overlap(
    start_a: Optional[datetime],
    duration_a: Optional[int],
    start_b: Optional[datetime],
    duration_b: Optional[int],
    default_duration_ms: Optional[int],
) -> bool:
    if start_a is None or start_b is None:
        return False
    fallback = config.DEFAULT_OVERLAP_DURATION_MS if default_duration_ms is None else default_duration_ms
    end_a = start_a + timedelta(milliseconds=duration_a if duration_a is not None else fallback)
    end_b = start_b + timedelta(milliseconds=duration_b if duration_b is not None else fallback)
    return start_a <= end_b and start_b <= end_a


def turns_overlap(a: Turn, b: Turn, default_duration_ms: Optional[int] = None) -> bool:
    return _intervals_overlap(a.timestamp, a.durationMs, b.timestamp, b.durationMs, default_duration_ms)


def tool_calls_overlap(a: ToolCall, b: ToolCall, default_duration_ms: Optional[int] = None) -> bool:
    return _intervals_overlap(a.timestamp, a.durationMs, b.timestamp, b.durationMs, default_duration_ms)


def is_parallel_group(turns: Sequence[Turn], default_duration_ms: Optional[int] = None) -> bool:
    return any(turns_overlap(a, b, default_duration_ms) for a, b in combinations(turns, 2))


def group_turns(turns: Sequence[Turn], threshold: Optional[int] = None) -> list[TurnGroup]:
    """Collapse consecutive turns issued to the same sub-agent.

    At or below ``threshold`` turns every turn stays its own group. Main-agent
    turns never collapse.
    """
    limit = config.TURN_GROUPING_THRESHOLD if threshold is None else threshold
    if len(turns) <= limit:
        return [
            TurnGroup(startIndex=i, turns=[turn], subAgentName=subagent_name_for_turn(turn))
            for i, turn in enumerate(turns)
        ]

    def _key(indexed: tuple[int, Turn]) -> Hashable:
        index, turn = indexed
        name = subagent_name_for_turn(turn)
        return ("subagent", name) if name else ("main", index)

    groups: list[TurnGroup] = []
    for run in group_runs(enumerate(turns), _key):
        members = [turn for _, turn in run]
        collapsed = len(members) > 1
        groups.append(
            TurnGroup(
                startIndex=run[0][0],
                turns=members,
                subAgentName=subagent_name_for_turn(members[0]),
                collapsed=collapsed,
                isParallel=collapsed and is_parallel_group(members),
            )
        )
    return groups


def is_spawn_call(tool_call: ToolCall) -> bool:
    return is_spawn_tool(tool_call.name) or bool(tool_call.subAgentSessionId)


def parallel_spawns(turn: Turn) -> list[ToolCall]:
    """Spawn calls of a turn that may have run concurrently.

    Two or more spawns count as parallel unless every one is timed and no
    pair overlaps.
    """
    spawns = [tc for tc in turn.toolCalls if is_spawn_call(tc)]
    if len(spawns) < 2:
        return []
    if all(tc.timestamp is not None for tc in spawns) and not any(
        tool_calls_overlap(a, b) for a, b in combinations(spawns, 2)
    ):
        return []
    return spawns
