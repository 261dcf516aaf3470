"""Gantt timeline of tool calls, one section per turn."""
from __future__ import annotations

from agentdebug import config
from agentdebug.date_utils import to_epoch_ms
from agentdebug.diagrams.common import escape_label
from agentdebug.models import ItemStatus, Session

EMPTY_TIMELINE = 'flowchart TD\n    Empty["No turns recorded"]'


def render_timeline(session: Session) -> str:
    if not session.turns:
        return EMPTY_TIMELINE

    lines = ["gantt"]
    lines.append("    title Session Timeline")
    lines.append("    dateFormat X")
    lines.append("    axisFormat %s")
    lines.append("")

    limit = config.TIMELINE_TOOL_LIMIT
    # Offsets are seconds relative to the session start.
    session_start = to_epoch_ms(session.startTime) or to_epoch_ms(session.turns[0].timestamp) or 0

    for turn_index, turn in enumerate(session.turns):
        lines.append(f"    section Turn {turn_index + 1}")
        turn_start = to_epoch_ms(turn.timestamp) or session_start + turn_index * 10_000
        relative = max(0, (turn_start - session_start) // 1000)

        for offset, tool_call in enumerate(turn.toolCalls[:limit]):
            duration = max(1, (tool_call.durationMs or 1000) // 1000)
            crit = "crit, " if tool_call.status == ItemStatus.FAILURE else ""
            lines.append(f"    {escape_label(tool_call.name)} :{crit}{relative + offset}, {duration}s")

        if len(turn.toolCalls) > limit:
            lines.append(f"    +{len(turn.toolCalls) - limit} more tools :{relative + limit}, 1s")

    return "\n".join(lines)
