"""Mermaid renderers for normalized sessions."""
from __future__ import annotations

from typing import Callable

from agentdebug.models import Session

from .common import escape_label
from .flowchart import render_control_flow, render_data_flow
from .sequence import render_sequence
from .timeline import render_timeline
from .tree import (
    render_hierarchy_detailed,
    render_hierarchy_mermaid,
    render_hierarchy_text,
    render_subagent_tree,
)

DIAGRAM_KINDS: dict[str, Callable[[Session, bool], str]] = {
    "control-flow": lambda session, detailed: render_control_flow(session, detailed=detailed),
    "data-flow": lambda session, detailed: render_data_flow(session),
    "sequence": lambda session, detailed: render_sequence(session, detailed=detailed),
    "timeline": lambda session, detailed: render_timeline(session),
    "tree": lambda session, detailed: render_subagent_tree(session),
}

_ALIASES = {
    "flowchart": "control-flow",
    "controlflow": "control-flow",
    "dataflow": "data-flow",
    "gantt": "timeline",
    "subagent-tree": "tree",
    "hierarchy": "tree",
}


def render_diagram(session: Session, kind: str, detailed: bool = False) -> str:
    """Render ``session`` with the renderer registered for ``kind``."""
    key = (kind or "").strip().lower()
    key = _ALIASES.get(key, key)
    renderer = DIAGRAM_KINDS.get(key)
    if renderer is None:
        raise ValueError(f"Unknown diagram kind: {kind}")
    return renderer(session, detailed)


__all__ = [
    "DIAGRAM_KINDS",
    "escape_label",
    "render_control_flow",
    "render_data_flow",
    "render_diagram",
    "render_hierarchy_detailed",
    "render_hierarchy_mermaid",
    "render_hierarchy_text",
    "render_sequence",
    "render_subagent_tree",
    "render_timeline",
]
