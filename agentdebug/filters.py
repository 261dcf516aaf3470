"""Exclusion predicates applied to live sessions.

The analysis tooling runs inside the same agent host it inspects, so its own
prompts and tool calls show up in the live log. Callers pass one of these
filters to the live adapter to keep that self-referential noise out of the
results. Adapters never apply a filter on their own.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from agentdebug import config
from agentdebug.models import Request, SubAgentRecord, ToolCall

_SEARCH_TOOL_NAMES = ("tool_search_tool_regex [server]",)


def _args_text(args: Any) -> str:
    if isinstance(args, str):
        return args
    try:
        return json.dumps(args, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(args)


class ExclusionFilter:
    """Caller-supplied predicate set for dropping an agent's own activity."""

    def __init__(
        self,
        agent_names: Iterable[str] = (),
        tool_prefixes: Iterable[str] = (),
        tool_names: Iterable[str] = (),
        prompt_markers: Iterable[str] = (),
        search_tool_names: Iterable[str] = (),
        search_keyword: str = "",
        request_prefixes: Iterable[str] = (),
    ) -> None:
        self.agent_names = {name for name in agent_names if name}
        self.tool_prefixes = tuple(p for p in tool_prefixes if p)
        self.tool_names = {name for name in tool_names if name}
        self.prompt_markers = tuple(m for m in prompt_markers if m)
        self.search_tool_names = {name for name in search_tool_names if name}
        self.search_keyword = search_keyword.lower()
        self.request_prefixes = tuple(p for p in request_prefixes if p)

    def excludes_token(self, sub_agent_name: Optional[str]) -> bool:
        return bool(sub_agent_name) and sub_agent_name in self.agent_names

    def excludes_tool_call(self, tool_call: ToolCall) -> bool:
        name = tool_call.name or ""
        if name in self.tool_names or name.startswith(self.tool_prefixes):
            return True
        if name in self.search_tool_names and self.search_keyword:
            return self.search_keyword in _args_text(tool_call.args).lower()
        return False

    def excludes_request(self, request: Request) -> bool:
        return bool(self.request_prefixes) and (request.name or "").startswith(self.request_prefixes)

    def excludes_turn(self, tool_calls: Iterable[ToolCall], prompt: str) -> bool:
        if any(marker in (prompt or "") for marker in self.prompt_markers):
            return True
        return any(self.excludes_tool_call(tc) for tc in tool_calls)

    def excludes_subagent(self, record: SubAgentRecord) -> bool:
        return record.name in self.agent_names


def self_analysis_filter() -> ExclusionFilter:
    """Filter that hides the debug tooling's own turns from a live session."""
    prefixes = tuple(config.EXCLUDED_TOOL_PREFIXES)
    return ExclusionFilter(
        agent_names=config.EXCLUDED_AGENT_NAMES,
        tool_prefixes=prefixes,
        tool_names=("debug_subagent",),
        prompt_markers=config.EXCLUDED_PROMPT_MARKERS,
        search_tool_names=_SEARCH_TOOL_NAMES,
        search_keyword="debug",
        request_prefixes=("debug",),
    )
