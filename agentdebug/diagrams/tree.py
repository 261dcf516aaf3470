"""Sub-agent tree diagram and the hierarchy text, mermaid and detailed views."""
from __future__ import annotations

import re
from typing import Iterator, Optional, Sequence

from agentdebug.diagrams.common import escape_label
from agentdebug.models import Session, SubAgent

_NON_WORD = re.compile(r"\W")


def _preorder(roots: Sequence[SubAgent]) -> Iterator[tuple[SubAgent, int, Optional[SubAgent]]]:
    """Yield ``(node, depth, parent)`` depth-first without recursion."""
    stack: list[tuple[SubAgent, int, Optional[SubAgent]]] = [(root, 0, None) for root in reversed(roots)]
    while stack:
        node, depth, parent = stack.pop()
        yield node, depth, parent
        stack.extend((child, depth + 1, node) for child in reversed(node.children))


def render_subagent_tree(session: Session) -> str:
    if not session.subAgents:
        return 'flowchart TD\n    Root["Main Agent<br/>No sub-agents invoked"]'

    lines = ["flowchart TD"]
    lines.append("    classDef subagent fill:#b2f2bb,stroke:#40c057")
    lines.append("")
    lines.append(f'    Root["Main Agent<br/>{session.metrics.totalToolCalls} tool calls"]')

    # Keyed by object identity: names and even session ids may repeat.
    tree_ids: dict[int, str] = {}
    for node, _depth, parent in _preorder(session.subAgents):
        tree_id = f"S{len(tree_ids)}_{_NON_WORD.sub('', node.name)}"
        tree_ids[id(node)] = tree_id
        label = f"{escape_label(node.name)}<br/>{len(node.toolCalls)} tools"
        if node.children:
            label += f"<br/>{len(node.children)} nested"
        lines.append(f'    {tree_id}(["{label}"]):::subagent')
        parent_id = tree_ids[id(parent)] if parent is not None else "Root"
        lines.append(f"    {parent_id} --> {tree_id}")
    return "\n".join(lines)


def _header(lines: list[str], title: str, subtitle: Optional[str]) -> None:
    lines.append(f"## {title}\n")
    if subtitle:
        lines.append(f"> {subtitle}\n")


def render_hierarchy_text(
    roots: Sequence[SubAgent],
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
    show_model: bool = False,
    show_metrics: bool = False,
) -> str:
    """Markdown tree with an OK/FAILED marker per agent."""
    lines: list[str] = []
    _header(lines, title or "Agent Hierarchy Tree", subtitle)

    for node, depth, _parent in _preorder(roots):
        indent = "    " * depth
        status = "FAILED" if node.hasFailures else "OK"
        tools = f" [{node.toolCallCount} tools]" if node.toolCallCount > 0 else ""
        children = f" ({len(node.children)} sub-agents)" if node.children else ""
        model = f" - {node.modelName}" if show_model and node.modelName else ""
        lines.append(f"{indent}{status} **{node.name}**{model}{tools}{children}")
        lines.append(f"{indent}   Session: `{node.sessionId[:16]}...`")
        if show_metrics:
            tokens = []
            if node.promptTokens:
                tokens.append(f"{node.promptTokens} prompt")
            if node.completionTokens:
                tokens.append(f"{node.completionTokens} completion")
            if tokens:
                lines.append(f"{indent}   Tokens: {', '.join(tokens)}")
    return "\n".join(lines)


def render_hierarchy_mermaid(
    roots: Sequence[SubAgent],
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
    show_model: bool = False,
) -> str:
    lines: list[str] = []
    _header(lines, title or "Agent Hierarchy", subtitle)
    lines.append("```mermaid")
    lines.append("graph TD")
    lines.append("")
    lines.append("    classDef failed fill:#ffcccc,stroke:#cc0000")
    lines.append("    classDef success fill:#ccffcc,stroke:#00cc00")
    lines.append("")

    ids: dict[str, str] = {}

    def _node_id(session_id: str) -> str:
        if session_id not in ids:
            ids[session_id] = f"H{len(ids)}_{_NON_WORD.sub('', session_id[:8])}"
        return ids[session_id]

    for node, _depth, parent in _preorder(roots):
        if parent is not None:
            lines.append(f"    {_node_id(parent.sessionId)} --> {_node_id(node.sessionId)}")
        style = ":::failed" if node.hasFailures else ":::success"
        model = f"<br/>{escape_label(node.modelName)}" if show_model and node.modelName else ""
        label = f"{escape_label(node.name)}{model}<br/>{node.toolCallCount} tools, {node.stepCount} steps"
        lines.append(f'    {_node_id(node.sessionId)}["{label}"]{style}')
    lines.append("```")
    return "\n".join(lines)


def render_hierarchy_detailed(
    roots: Sequence[SubAgent],
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
    show_model: bool = False,
    show_metrics: bool = False,
) -> str:
    lines: list[str] = []
    _header(lines, title or "Detailed Agent Hierarchy", subtitle)

    for node, depth, _parent in _preorder(roots):
        prefix = "  " * depth
        lines.append(f"{prefix}### {node.name}")
        lines.append(f"{prefix}- **Session ID:** `{node.sessionId}`")
        if show_model and node.modelName:
            lines.append(f"{prefix}- **Model:** {node.modelName}")
        lines.append(f"{prefix}- **Steps:** {node.stepCount}")
        lines.append(f"{prefix}- **Tool Calls:** {node.toolCallCount}")
        lines.append(f"{prefix}- **Status:** {'Has Failures' if node.hasFailures else 'OK'}")
        lines.append(f"{prefix}- **Sub-agents:** {len(node.children)}")
        if show_metrics:
            lines.append(f"{prefix}- **Tokens:**")
            if node.promptTokens:
                lines.append(f"{prefix}  - Prompt: {node.promptTokens}")
            if node.completionTokens:
                lines.append(f"{prefix}  - Completion: {node.completionTokens}")
        lines.append("")
    return "\n".join(lines)
