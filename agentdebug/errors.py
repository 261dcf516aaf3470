"""Error taxonomy for session normalization."""
from __future__ import annotations

from typing import Any

from agentdebug import config

PARTIAL_DATA = "partial_data"
REFERENCE_GAP = "reference_gap"


def preview_of(content: Any, limit: int | None = None) -> str:
    """Bounded, single-line preview of offending input."""
    max_len = config.FORMAT_ERROR_PREVIEW_LENGTH if limit is None else limit
    if isinstance(content, (bytes, bytearray)):
        text = bytes(content[: max_len * 4]).decode("utf-8", errors="replace")
    else:
        text = content if isinstance(content, str) else repr(content)
    text = " ".join(text[: max_len * 4].split())
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text


class FormatError(ValueError):
    """Raw input does not parse as its declared format at all."""

    def __init__(self, kind: str, message: str, content: Any = None) -> None:
        self.kind = kind
        self.message = message
        self.preview = preview_of(content) if content is not None else ""
        super().__init__(f"{kind}: {message}")

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message, "preview": self.preview}
