"""Context over a set of loaded trajectories.

Holds raw trajectories by session id and answers cross-trajectory queries:
the invocation hierarchy, classified failures and a flat tool-call listing.
Writers build a new mapping and swap it in, so a reader iterating the
previous mapping is never disturbed.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional

from agentdebug import config
from agentdebug.date_utils import parse_timestamp
from agentdebug.failures import classify_failure_type, matches_failure_heuristic
from agentdebug.hierarchy import HierarchyBuilder, ancestor_chains, iter_nodes
from agentdebug.models import DataIssue, Failure, SubAgent, TrajectoryToolCall
from agentdebug.parsers.common import coerce_int, parse_args
from agentdebug.parsers.trajectory import (
    ParsedTrajectory,
    parse_trajectory,
    results_by_call,
    trajectory_record,
)

logger = logging.getLogger("agentdebug.trajectories")


class TrajectoryContext:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._trajectories: dict[str, ParsedTrajectory] = {}
        self.issues: list[DataIssue] = []

    @staticmethod
    def _parse(raw: Any) -> ParsedTrajectory:
        return raw if isinstance(raw, ParsedTrajectory) else parse_trajectory(raw)

    def load(self, trajectories: Mapping[str, Any]) -> None:
        """Replace every loaded trajectory with ``trajectories``."""
        parsed: dict[str, ParsedTrajectory] = {}
        for raw in trajectories.values():
            trajectory = self._parse(raw)
            parsed[trajectory.session_id] = trajectory
        with self._lock:
            self._trajectories = parsed
        logger.info("Loaded %d trajectories", len(parsed))

    def add(self, trajectory: Any) -> ParsedTrajectory:
        parsed = self._parse(trajectory)
        with self._lock:
            updated = dict(self._trajectories)
            updated[parsed.session_id] = parsed
            self._trajectories = updated
        return parsed

    def remove(self, session_id: str) -> bool:
        with self._lock:
            if session_id not in self._trajectories:
                return False
            updated = dict(self._trajectories)
            del updated[session_id]
            self._trajectories = updated
        return True

    def clear(self) -> None:
        with self._lock:
            self._trajectories = {}

    def get(self, session_id: str) -> Optional[ParsedTrajectory]:
        return self._trajectories.get(session_id)

    def session_ids(self) -> list[str]:
        return list(self._trajectories)

    def __len__(self) -> int:
        return len(self._trajectories)

    def build_hierarchy(self) -> list[SubAgent]:
        trajectories = self._trajectories
        builder = HierarchyBuilder()
        forest = builder.build(trajectory_record(t) for t in trajectories.values())
        self.issues = builder.issues
        return forest

    def find_failures(self, session_id: Optional[str] = None) -> list[Failure]:
        """Observation results that read like failures, in hierarchy order."""
        trajectories = self._trajectories
        forest = self.build_hierarchy()
        chains = ancestor_chains(forest)
        failures: list[Failure] = []

        for node in iter_nodes(forest):
            if session_id and node.sessionId != session_id:
                continue
            trajectory = trajectories.get(node.sessionId)
            if trajectory is None:
                continue
            for step in trajectory.steps:
                if not step.observation or not step.observation.results:
                    continue
                calls = {tc.tool_call_id: tc for tc in step.tool_calls or []}
                for result in step.observation.results:
                    content = result.content
                    if not matches_failure_heuristic(content):
                        continue
                    tool_call = calls.get(result.source_call_id or "")
                    failures.append(
                        Failure(
                            sessionId=node.sessionId,
                            agentName=trajectory.header.agent.name,
                            turnId=f"step-{step.step_id}",
                            stepId=step.step_id,
                            toolCallId=result.source_call_id,
                            toolName=tool_call.function_name if tool_call else None,
                            errorType=classify_failure_type(content, tool_call_resolves=tool_call is not None),
                            message=(content or "")[: config.FAILURE_MESSAGE_LENGTH],
                            timestamp=parse_timestamp(step.timestamp),
                            parentChain=chains.get(node.sessionId, [node.sessionId]),
                        )
                    )
        return failures

    def get_tool_calls(
        self,
        session_id: Optional[str] = None,
        tool_name: Optional[str] = None,
        failed_only: bool = False,
    ) -> list[TrajectoryToolCall]:
        needle = (tool_name or "").lower()
        calls: list[TrajectoryToolCall] = []
        for sess_id, trajectory in self._trajectories.items():
            if session_id and sess_id != session_id:
                continue
            for step in trajectory.steps:
                results = results_by_call(step)
                for raw in step.tool_calls or []:
                    if needle and needle not in raw.function_name.lower():
                        continue
                    result = results.get(raw.tool_call_id)
                    content = result.content if result else None
                    failed = matches_failure_heuristic(content)
                    if failed_only and not failed:
                        continue
                    refs = result.subagent_trajectory_ref if result else None
                    calls.append(
                        TrajectoryToolCall(
                            sessionId=sess_id,
                            agentName=trajectory.header.agent.name,
                            stepId=step.step_id,
                            timestamp=parse_timestamp(step.timestamp),
                            toolCallId=raw.tool_call_id,
                            toolName=raw.function_name,
                            arguments=parse_args(raw.arguments),
                            result=content,
                            error=content if failed else None,
                            failed=failed,
                            durationMs=coerce_int(step.metrics.duration_ms) if step.metrics else None,
                            subAgentSessionId=refs[0].session_id if refs else None,
                        )
                    )
        return calls


# Singleton instance
trajectory_context = TrajectoryContext()
