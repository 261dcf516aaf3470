"""Control-flow and data-flow flowcharts."""
from __future__ import annotations

import re
from typing import Any, Optional

from agentdebug import config
from agentdebug.diagrams.common import (
    PARALLEL_MARK,
    class_def_lines,
    escape_label,
    node_id,
    preview,
    status_class,
)
from agentdebug.grouping import group_tool_calls, group_turns, is_subagent_turn, parallel_spawns
from agentdebug.hierarchy import find_node
from agentdebug.models import Session, ToolCall, Turn, TurnGroup

_PATH_SPLIT = re.compile(r"[/\\]")


class _ControlFlow:
    """Accumulates flowchart lines while walking the turns in order."""

    def __init__(self, session: Session, simplify: bool) -> None:
        self.session = session
        self.simplify = simplify
        self.lines: list[str] = []
        self.last: Optional[str] = None
        self.tool_index = 0
        self.fork_index = 0

    def _link(self, target: str) -> None:
        if self.last:
            self.lines.append(f"    {self.last} --> {target}")
        self.last = target

    def _subagent_branch(self, tool_node: str, tool_call: ToolCall, suffix: str = "") -> None:
        if not tool_call.subAgentSessionId:
            return
        sub = find_node(self.session.subAgents, tool_call.subAgentSessionId)
        if sub is None:
            return
        sub_node = f"S{tool_node[1:]}{suffix}"
        self.lines.append(
            f'    {sub_node}(["SubAgent: {escape_label(sub.name)}<br/>{len(sub.toolCalls)} tools"]):::subagent'
        )
        self.lines.append(f"    {tool_node} -.-> {sub_node}")
        self.lines.append(f"    {sub_node} -.-> {tool_node}")

    def collapsed_group(self, group: TurnGroup) -> None:
        label = f"{escape_label(group.subAgentName)}<br/>{group.count} turns, {group.toolCount} tools"
        if group.isParallel:
            label = f"{PARALLEL_MARK} {label}"
        style = ":::parallel" if group.isParallel else ":::subagent"
        group_node = node_id("G", group.startIndex)
        self.lines.append(f'    {group_node}[["{label}"]]{style}')
        self._link(group_node)

    def turn(self, turn: Turn) -> None:
        user_node = node_id("U", turn.index)
        style = ":::subagent" if is_subagent_turn(turn) else ""
        self.lines.append(f'    {user_node}[/"User: {preview(turn.prompt, 40)}..."/]{style}')
        self._link(user_node)

        if self.simplify:
            self._simplified_tools(turn)
        else:
            self._individual_tools(turn)

        if turn.response:
            response_node = node_id("A", turn.index)
            self.lines.append(
                f'    {response_node}["Agent: {preview(turn.response, 30)}..."]{status_class(turn.status)}'
            )
            self._link(response_node)

    def _simplified_tools(self, turn: Turn) -> None:
        for run in group_tool_calls(turn.toolCalls):
            self.tool_index += 1
            tool_node = node_id("T", self.tool_index)
            name = escape_label(run.name)
            label = f"{run.count}× {name}" if run.count > 1 else name
            self.lines.append(f'    {tool_node}["{label}"]{":::error" if run.hasFailure else ""}')
            self._link(tool_node)
            spawned = [tc for tc in run.toolCalls if tc.subAgentSessionId]
            for position, tool_call in enumerate(spawned):
                self._subagent_branch(tool_node, tool_call, f"_{position}" if position else "")

    def _tool_node(self, tool_call: ToolCall) -> str:
        self.tool_index += 1
        tool_node = node_id("T", self.tool_index)
        self.lines.append(f'    {tool_node}["{escape_label(tool_call.name)}"]{status_class(tool_call.status)}')
        return tool_node

    def _individual_tools(self, turn: Turn) -> None:
        spawns = parallel_spawns(turn)
        spawn_ids = {tc.id for tc in spawns}
        forked = False
        for tool_call in turn.toolCalls:
            if tool_call.id in spawn_ids:
                if not forked:
                    self._fork(spawns)
                    forked = True
                continue
            tool_node = self._tool_node(tool_call)
            self._link(tool_node)
            self._subagent_branch(tool_node, tool_call)

    def _fork(self, spawns: list[ToolCall]) -> None:
        self.fork_index += 1
        fork_node = f"Fork{self.fork_index}"
        join_node = f"Join{self.fork_index}"
        self.lines.append(f'    {fork_node}{{{{"{PARALLEL_MARK} Parallel SubAgents"}}}}:::parallel')
        self._link(fork_node)
        for tool_call in spawns:
            tool_node = self._tool_node(tool_call)
            self.lines.append(f"    {fork_node} --> {tool_node}")
            self._subagent_branch(tool_node, tool_call)
            self.lines.append(f"    {tool_node} --> {join_node}")
        self.lines.append(f'    {join_node}{{{{"Join"}}}}:::parallel')
        self.last = join_node


def render_control_flow(
    session: Session,
    detailed: bool = False,
    tool_threshold: Optional[int] = None,
    turn_threshold: Optional[int] = None,
) -> str:
    """Flowchart of prompts, tool calls and responses in turn order.

    Outside detailed mode, long sessions are simplified: runs of the same
    tool collapse into one counted node, and consecutive turns handed to the
    same sub-agent collapse into one group node.
    """
    tool_limit = config.TOOL_SIMPLIFY_THRESHOLD if tool_threshold is None else tool_threshold
    simplify = not detailed and len(session.toolCalls) > tool_limit

    chart = _ControlFlow(session, simplify)
    chart.lines.append("flowchart TD")
    chart.lines.extend(class_def_lines("error", "cancelled", "inprogress", "subagent", "parallel"))
    chart.lines.append("")

    if detailed:
        groups = group_turns(session.turns, threshold=len(session.turns))
    else:
        groups = group_turns(session.turns, turn_threshold)
    for group in groups:
        if group.collapsed:
            chart.collapsed_group(group)
        else:
            chart.turn(group.turns[0])
    return "\n".join(chart.lines)


def _arg(args: dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = args.get(key)
        if value:
            return str(value)
    return None


def render_data_flow(session: Session) -> str:
    """Flowchart of what the agent read, searched, modified and ran."""
    lines = ["flowchart LR"]
    lines.append("    classDef file fill:#e7f5ff,stroke:#339af0")
    lines.append("    classDef search fill:#fff3bf,stroke:#fab005")
    lines.append("    classDef edit fill:#d3f9d8,stroke:#40c057")
    lines.append("    classDef terminal fill:#ffe8cc,stroke:#fd7e14")
    lines.append("")

    reads: dict[str, None] = {}
    edits: dict[str, None] = {}
    searches: list[str] = []
    commands: list[str] = []

    for tool_call in session.toolCalls:
        name = tool_call.name
        args = tool_call.args or {}
        if "read_file" in name or "readFile" in name:
            path = _arg(args, "filePath", "path", "file")
            if path:
                reads.setdefault(path)
        elif "edit" in name or "write" in name or "create_file" in name:
            path = _arg(args, "filePath", "path", "file")
            if path:
                edits.setdefault(path)
        elif "search" in name or "grep" in name:
            query = _arg(args, "query", "pattern", "term")
            if query:
                searches.append(query[:20])
        elif "terminal" in name or "run" in name:
            command = _arg(args, "command", "cmd")
            if command:
                commands.append(command[:20])

    index = 0
    if reads:
        lines.append('    subgraph Reads["📖 Files Read"]')
        for path in reads:
            index += 1
            file_name = _PATH_SPLIT.split(path)[-1] or path
            lines.append(f'        R{index}["{escape_label(file_name)}"]:::file')
        lines.append("    end")

    if searches:
        lines.append('    subgraph Searches["🔍 Searches"]')
        for query in searches[:10]:
            index += 1
            lines.append(f'        S{index}["{escape_label(query)}"]:::search')
        if len(searches) > 10:
            lines.append(f'        Smore["+{len(searches) - 10} more"]:::search')
        lines.append("    end")

    lines.append('    Agent(("Agent"))')
    if reads:
        lines.append("    Reads --> Agent")
    if searches:
        lines.append("    Searches --> Agent")

    if edits:
        lines.append('    subgraph Edits["✏️ Files Modified"]')
        for path in edits:
            index += 1
            file_name = _PATH_SPLIT.split(path)[-1] or path
            lines.append(f'        E{index}["{escape_label(file_name)}"]:::edit')
        lines.append("    end")
        lines.append("    Agent --> Edits")

    if commands:
        lines.append('    subgraph Terminal["⚡ Commands"]')
        for command in commands[:5]:
            index += 1
            lines.append(f'        C{index}["{escape_label(command)}"]:::terminal')
        if len(commands) > 5:
            lines.append(f'        Cmore["+{len(commands) - 5} more"]:::terminal')
        lines.append("    end")
        lines.append("    Agent --> Terminal")

    return "\n".join(lines)
