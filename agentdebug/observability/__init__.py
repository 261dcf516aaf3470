"""Observability helpers."""

from agentdebug.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_normalization,
    record_format_error,
    record_tool_result,
    record_tokens,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_normalization",
    "record_format_error",
    "record_tool_result",
    "record_tokens",
]
