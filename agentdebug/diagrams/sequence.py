"""Sequence diagram of the user, agent, tool and sub-agent exchanges."""
from __future__ import annotations

from typing import Optional

from agentdebug import config
from agentdebug.diagrams.common import FAILURE_MARK, PARALLEL_MARK, escape_label, preview
from agentdebug.grouping import group_turns, is_subagent_turn
from agentdebug.hierarchy import find_node
from agentdebug.models import ItemStatus, Session, TurnGroup


def _subagent_group(lines: list[str], group: TurnGroup) -> None:
    name = escape_label(group.subAgentName)
    lines.append(f"    A->>S: runSubagent (invoke {name})")
    if group.isParallel:
        lines.append(f"    Note over S: {PARALLEL_MARK} parallel")
    lines.append(f"    S-->>A: {name} completed {group.count} turns, {group.toolCount} tools")
    lines.append("")


def render_sequence(session: Session, detailed: bool = False, turn_threshold: Optional[int] = None) -> str:
    lines = ["sequenceDiagram"]
    lines.append("    participant U as User")
    lines.append("    participant A as Agent")
    lines.append("    participant T as Tools")
    if session.subAgents or any(is_subagent_turn(turn) for turn in session.turns):
        lines.append("    participant S as SubAgents")
    lines.append("")

    max_tools = config.SEQUENCE_TOOL_LIMIT
    shown = 0

    for group in group_turns(session.turns, turn_threshold):
        if group.isSubAgent:
            _subagent_group(lines, group)
            continue

        turn = group.turns[0]
        lines.append(f"    U->>A: {preview(turn.prompt, 30)}...")

        for position, tool_call in enumerate(turn.toolCalls):
            if not detailed and shown >= max_tools:
                lines.append(f"    Note over T: +{len(turn.toolCalls) - position} more tools...")
                break
            marker = f" {FAILURE_MARK}" if tool_call.status == ItemStatus.FAILURE else ""
            lines.append(f"    A->>T: {escape_label(tool_call.name)}{marker}")
            if tool_call.subAgentSessionId:
                sub = find_node(session.subAgents, tool_call.subAgentSessionId)
                if sub is not None:
                    lines.append(f"    T->>S: invoke {escape_label(sub.name)}")
                    lines.append(f"    S-->>T: {len(sub.toolCalls)} tools executed")
            lines.append("    T-->>A: result")
            shown += 1

        if turn.response:
            marker = f" {FAILURE_MARK}" if turn.status == ItemStatus.FAILURE else ""
            lines.append(f"    A->>U: {preview(turn.response, 25)}...{marker}")
        lines.append("")

    return "\n".join(lines)
