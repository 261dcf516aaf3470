"""Failure detection and taxonomy for normalized sessions."""
from __future__ import annotations

import logging
from typing import Iterator, Optional

from agentdebug import config
from agentdebug.models import Failure, ItemStatus, Request, Session, SubAgent, ToolCall

logger = logging.getLogger("agentdebug.failures")

FAILURE_MARKERS = ("error", "failed", "exception")

TOOL_ERROR = "tool_error"
API_ERROR = "api_error"
VALIDATION_ERROR = "validation_error"
UNKNOWN_ERROR = "unknown_error"

# Ordered, first match wins. The tool_error rule is decided by the caller
# (whether the owning tool call resolves), the rest by keywords.
_KEYWORD_RULES: list[tuple[str, tuple[str, ...]]] = [
    (API_ERROR, ("api", "request")),
    (VALIDATION_ERROR, ("validation", "invalid")),
]


def matches_failure_heuristic(text: Optional[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in FAILURE_MARKERS)


def classify_failure_type(text: Optional[str], tool_call_resolves: bool) -> str:
    if tool_call_resolves:
        return TOOL_ERROR
    lowered = (text or "").lower()
    for error_type, keywords in _KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return error_type
    return UNKNOWN_ERROR


def tool_call_message(tool_call: ToolCall) -> str:
    return tool_call.error or tool_call.fullResult or tool_call.result or ""


def request_message(request: Request) -> str:
    return request.error or request.responseType or "Request failed"


def _walk(nodes: list[SubAgent], chain: list[str]) -> Iterator[tuple[SubAgent, list[str]]]:
    stack = [(node, chain) for node in reversed(nodes)]
    while stack:
        node, parents = stack.pop()
        node_chain = [*parents, node.sessionId]
        yield node, node_chain
        stack.extend((child, node_chain) for child in reversed(node.children))


def _failure_for_tool_call(
    tool_call: ToolCall,
    owner_id: str,
    owner_name: str,
    chain: list[str],
) -> Failure:
    message = tool_call_message(tool_call)
    return Failure(
        sessionId=owner_id,
        agentName=owner_name,
        turnId=tool_call.turnId or None,
        toolCallId=tool_call.id,
        toolName=tool_call.name,
        errorType=classify_failure_type(message, tool_call_resolves=True),
        message=message[: config.FAILURE_MESSAGE_LENGTH],
        timestamp=tool_call.timestamp,
        parentChain=list(chain),
    )


def _failure_for_request(
    request: Request,
    owner_id: str,
    owner_name: str,
    chain: list[str],
) -> Failure:
    message = request_message(request)
    return Failure(
        sessionId=owner_id,
        agentName=owner_name,
        turnId=request.turnId or None,
        errorType=classify_failure_type(message, tool_call_resolves=False),
        message=message[: config.FAILURE_MESSAGE_LENGTH],
        timestamp=request.timestamp,
        parentChain=list(chain),
    )


def classify(session: Session, session_scope: Optional[str] = None) -> list[Failure]:
    """Collect failed tool calls and requests with their owning agent chain.

    Items folded into a sub-agent are attributed to that sub-agent even when
    they also appear in the main turn list; each item is reported once.
    """
    root_chain = [session.sessionId]
    owners: dict[str, tuple[str, str, list[str]]] = {}
    nodes = list(_walk(session.subAgents, root_chain))
    for node, chain in nodes:
        for tc in node.toolCalls:
            owners.setdefault(f"tool:{tc.id}", (node.sessionId, node.name, chain))
        for req in node.requests:
            owners.setdefault(f"request:{req.id}", (node.sessionId, node.name, chain))

    main_owner = (session.sessionId, "main", root_chain)
    failures: list[Failure] = []
    seen: set[str] = set()

    def _emit_tool(tc: ToolCall, fallback: tuple[str, str, list[str]]) -> None:
        key = f"tool:{tc.id}"
        if key in seen or tc.status != ItemStatus.FAILURE:
            return
        seen.add(key)
        owner_id, owner_name, chain = owners.get(key, fallback)
        failures.append(_failure_for_tool_call(tc, owner_id, owner_name, chain))

    def _emit_request(req: Request, fallback: tuple[str, str, list[str]]) -> None:
        key = f"request:{req.id}"
        if key in seen or req.status != ItemStatus.FAILURE:
            return
        seen.add(key)
        owner_id, owner_name, chain = owners.get(key, fallback)
        failures.append(_failure_for_request(req, owner_id, owner_name, chain))

    for turn in session.turns:
        for tc in turn.toolCalls:
            _emit_tool(tc, main_owner)
        for req in turn.requests:
            _emit_request(req, main_owner)

    for node, chain in nodes:
        owner = (node.sessionId, node.name, chain)
        for tc in node.toolCalls:
            _emit_tool(tc, owner)
        for req in node.requests:
            _emit_request(req, owner)

    if session_scope:
        failures = [f for f in failures if f.sessionId == session_scope]
    logger.debug("Classified %d failures in session %s", len(failures), session.sessionId)
    return failures
