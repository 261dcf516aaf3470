"""Source-kind detection and dispatch to the matching format adapter."""
from __future__ import annotations

import json
import logging
import time
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Optional

from agentdebug.errors import FormatError
from agentdebug.models import ItemStatus, Session, SourceKind
from agentdebug.observability import (
    record_format_error,
    record_normalization,
    record_tokens,
    record_tool_result,
    start_span,
)
from agentdebug.parsers.live import normalize_live
from agentdebug.parsers.replay import normalize_replay
from agentdebug.parsers.trajectory import normalize_trajectory
from agentdebug.parsers.transcript import normalize_transcript

logger = logging.getLogger("agentdebug.parsers.registry")

_SUFFIX_KINDS: list[tuple[str, SourceKind]] = [
    (".chatreplay.json", SourceKind.REPLAY),
    (".trajectory.json", SourceKind.TRAJECTORY),
    (".atif.json", SourceKind.TRAJECTORY),
    (".jsonl", SourceKind.TRANSCRIPT),
]

_ADAPTERS: dict[SourceKind, Callable[..., Session]] = {
    SourceKind.LIVE: normalize_live,
    SourceKind.REPLAY: normalize_replay,
    SourceKind.TRAJECTORY: normalize_trajectory,
    SourceKind.TRANSCRIPT: normalize_transcript,
}


def _kind_from_filename(filename: Optional[str]) -> Optional[SourceKind]:
    if not filename:
        return None
    lowered = filename.lower()
    for suffix, kind in _SUFFIX_KINDS:
        if lowered.endswith(suffix):
            return kind
    return None


def _kind_from_shape(decoded: Any) -> Optional[SourceKind]:
    if isinstance(decoded, dict):
        if isinstance(decoded.get("prompts"), list):
            return SourceKind.REPLAY
        if isinstance(decoded.get("steps"), list) and "session_id" in decoded:
            return SourceKind.TRAJECTORY
        if isinstance(decoded.get("entries"), list):
            return SourceKind.LIVE
        if "type" in decoded and "data" in decoded:
            return SourceKind.TRANSCRIPT
        return None
    if isinstance(decoded, list):
        return SourceKind.LIVE
    return None


def detect_source_kind(content: Any, filename: Optional[str] = None) -> SourceKind:
    """Pick the adapter by file name suffix, else by the shape of the content."""
    by_name = _kind_from_filename(filename)
    if by_name is not None:
        return by_name

    if isinstance(content, (bytes, bytearray)):
        content = bytes(content).decode("utf-8", errors="replace")
    if not isinstance(content, str):
        kind = _kind_from_shape(content)
        if kind is None:
            raise FormatError("unknown", "unrecognized session shape", content)
        return kind

    try:
        decoded = json.loads(content)
    except json.JSONDecodeError:
        lines = [line for line in content.splitlines() if line.strip()]
        if len(lines) > 1:
            return SourceKind.TRANSCRIPT
        raise FormatError("unknown", "content is neither JSON nor JSONL", content) from None

    kind = _kind_from_shape(decoded)
    if kind is None:
        raise FormatError("unknown", "unrecognized session shape", content)
    return kind


def _record_session(session: Session) -> None:
    outcomes: Counter[tuple[str, str]] = Counter()
    durations: Counter[str] = Counter()
    for tc in session.toolCalls:
        status = tc.status.value if isinstance(tc.status, ItemStatus) else str(tc.status)
        outcomes[(tc.name, status)] += 1
        durations[tc.name] += tc.durationMs or 0
    for (tool, status), count in outcomes.items():
        record_tool_result(tool, status, count=count, duration_ms=float(durations[tool]) / max(1, count))
    if session.metrics.totalPromptTokens or session.metrics.totalCompletionTokens:
        record_tokens(
            model=session.model or "unknown",
            token_input=session.metrics.totalPromptTokens or 0,
            token_output=session.metrics.totalCompletionTokens or 0,
        )


def normalize_any(
    content: Any,
    filename: Optional[str] = None,
    source_id: Optional[str] = None,
    **options: Any,
) -> Session:
    """Detect the source kind and run the matching adapter.

    Extra keyword options (``exclude`` for live logs, ``related`` for
    trajectories) are passed through to the adapter.
    """
    try:
        kind = detect_source_kind(content, filename)
    except FormatError:
        record_format_error("unknown")
        raise
    adapter = _ADAPTERS[kind]
    started = time.perf_counter()
    with start_span("agentdebug.normalize", {"source": kind.value, "filename": filename}):
        try:
            session = adapter(content, source_id=source_id, source_file=filename, **options)
        except FormatError:
            record_format_error(kind.value)
            record_normalization(kind.value, "format_error", (time.perf_counter() - started) * 1000)
            logger.warning("Rejected %s input %s as unparseable", kind.value, filename or "<memory>")
            raise
    result = "partial" if session.skippedRecords else "ok"
    record_normalization(kind.value, result, (time.perf_counter() - started) * 1000)
    _record_session(session)
    if session.skippedRecords:
        logger.info(
            "Normalized %s session %s with %d skipped records",
            kind.value,
            session.sessionId,
            session.skippedRecords,
        )
    return session


def load_session_file(path: Path, source_id: Optional[str] = None, **options: Any) -> Session:
    """Read a session file from disk and normalize it."""
    content = path.read_text(encoding="utf-8", errors="replace")
    return normalize_any(content, filename=str(path), source_id=source_id, **options)
