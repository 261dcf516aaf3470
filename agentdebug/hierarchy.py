"""Reconstruct the sub-agent invocation forest from flat records.

Records reference each other loosely: a parent may list the sessions it
spawned (``childRefs``) and a child may name its parent
(``parentSessionId``). Both feed one child -> parent index. The forest is then
materialized depth-first from the roots with a visited set, so a node is
placed at most once and a reference cycle simply truncates the branch.
"""
from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional, Sequence

from agentdebug.errors import REFERENCE_GAP
from agentdebug.failures import matches_failure_heuristic, tool_call_message
from agentdebug.models import DataIssue, ItemStatus, SubAgent, SubAgentRecord

logger = logging.getLogger("agentdebug.hierarchy")


def _record_has_failures(record: SubAgentRecord) -> bool:
    if record.hasFailures:
        return True
    for tc in record.toolCalls:
        if tc.status == ItemStatus.FAILURE or matches_failure_heuristic(tool_call_message(tc)):
            return True
    return False


class HierarchyBuilder:
    """Two-pass forest builder; ``issues`` lists the reference gaps found."""

    def __init__(self, root_session_id: Optional[str] = None) -> None:
        self.root_session_id = root_session_id
        self.issues: list[DataIssue] = []

    def _gap(self, detail: str, location: str) -> None:
        logger.debug("Reference gap at %s: %s", location, detail)
        self.issues.append(DataIssue(kind=REFERENCE_GAP, detail=detail, location=location))

    def build(self, records: Iterable[SubAgentRecord]) -> list[SubAgent]:
        self.issues = []
        by_id: dict[str, SubAgentRecord] = {}
        order: list[str] = []
        for record in records:
            if record.sessionId in by_id:
                logger.debug("Duplicate sub-agent record %s ignored", record.sessionId)
                continue
            by_id[record.sessionId] = record
            order.append(record.sessionId)

        # Pass 1: child -> (parent, tool call) index plus ordered child lists.
        parent_of: dict[str, tuple[str, Optional[str]]] = {}
        children_of: dict[str, list[str]] = {}

        def _link(child_id: str, parent_id: str, tool_call_id: Optional[str]) -> None:
            if child_id in parent_of or child_id == parent_id:
                return
            parent_of[child_id] = (parent_id, tool_call_id)
            children_of.setdefault(parent_id, []).append(child_id)

        for session_id in order:
            for ref in by_id[session_id].childRefs:
                _link(ref.sessionId, session_id, ref.parentToolCallId)
        for session_id in order:
            record = by_id[session_id]
            parent_id = record.parentSessionId
            if parent_id and parent_id != self.root_session_id:
                _link(session_id, parent_id, record.parentToolCallId)

        roots: list[str] = []
        for session_id in order:
            parent = parent_of.get(session_id)
            if parent is None:
                roots.append(session_id)
            elif parent[0] not in by_id:
                self._gap(f"parent {parent[0]} not present", session_id)
                roots.append(session_id)

        # Pass 2: materialize top-down, aggregate bottom-up. An explicit stack
        # keeps arbitrarily deep delegation chains off the interpreter stack.
        visited: set[str] = set()
        placed_under: dict[str, Optional[str]] = {}
        built: dict[str, SubAgent] = {}

        def _materialize(start_id: str) -> Optional[SubAgent]:
            stack: list[tuple[str, int, Optional[str], bool]] = [(start_id, 0, None, False)]
            while stack:
                session_id, depth, parent_id, expanded = stack.pop()
                record = by_id.get(session_id)
                if not expanded:
                    if record is None:
                        self._gap(f"referenced session {session_id} not present", parent_id or "root")
                        continue
                    if session_id in visited:
                        logger.debug("Cycle truncated at %s", session_id)
                        continue
                    visited.add(session_id)
                    placed_under[session_id] = parent_id
                    stack.append((session_id, depth, parent_id, True))
                    for child_id in reversed(children_of.get(session_id, [])):
                        stack.append((child_id, depth + 1, session_id, False))
                    continue

                children = [
                    built[child_id]
                    for child_id in children_of.get(session_id, [])
                    if child_id in built and placed_under.get(child_id) == session_id
                ]
                own_tools = len(record.toolCalls)
                parent_info = parent_of.get(session_id)
                built[session_id] = SubAgent(
                    sessionId=record.sessionId,
                    name=record.name,
                    modelName=record.modelName,
                    parentToolCallId=record.parentToolCallId or (parent_info[1] if parent_info else None),
                    parentSessionId=parent_id or record.parentSessionId,
                    children=children,
                    depth=depth,
                    toolCalls=list(record.toolCalls),
                    requests=list(record.requests),
                    internalTurns=record.internalTurns,
                    stepCount=record.stepCount,
                    promptTokens=record.promptTokens,
                    completionTokens=record.completionTokens,
                    durationMs=record.durationMs,
                    summary=record.summary,
                    toolCallCount=own_tools,
                    totalToolCallCount=own_tools + sum(c.totalToolCallCount for c in children),
                    hasFailures=_record_has_failures(record) or any(c.hasFailures for c in children),
                )
            return built.get(start_id)

        forest: list[SubAgent] = []
        for session_id in roots:
            node = _materialize(session_id)
            if node is not None:
                forest.append(node)

        # Records only reachable through a pure cycle have no root; promote
        # the first of them so every record still appears once.
        for session_id in order:
            if session_id in visited:
                continue
            self._gap("reference cycle without a root", session_id)
            node = _materialize(session_id)
            if node is not None:
                forest.append(node)

        return forest


def build_hierarchy(
    records: Iterable[SubAgentRecord],
    root_session_id: Optional[str] = None,
) -> list[SubAgent]:
    return HierarchyBuilder(root_session_id).build(records)


def iter_nodes(nodes: Sequence[SubAgent]) -> Iterator[SubAgent]:
    """Pre-order walk of a forest without recursion."""
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def iter_with_chains(
    nodes: Sequence[SubAgent],
    prefix: Sequence[str] = (),
) -> Iterator[tuple[SubAgent, list[str]]]:
    """Pre-order walk yielding each node with its root -> node session id chain."""
    stack = [(node, list(prefix)) for node in reversed(nodes)]
    while stack:
        node, parents = stack.pop()
        chain = [*parents, node.sessionId]
        yield node, chain
        stack.extend((child, chain) for child in reversed(node.children))


def find_node(nodes: Sequence[SubAgent], session_id: str) -> Optional[SubAgent]:
    for node in iter_nodes(nodes):
        if node.sessionId == session_id:
            return node
    return None


def ancestor_chains(nodes: Sequence[SubAgent], prefix: Sequence[str] = ()) -> dict[str, list[str]]:
    """Map each session id to its root -> node chain of session ids."""
    return {node.sessionId: chain for node, chain in iter_with_chains(nodes, prefix)}
