"""Label escaping and styling shared by the mermaid renderers."""
from __future__ import annotations

from typing import Optional

from agentdebug import config
from agentdebug.models import ItemStatus

_REPLACEMENTS = {
    '"': "'",
    "[": "(",
    "{": "(",
    "]": ")",
    "}": ")",
    "|": "/",
    "\\": "/",
    ":": "-",
    ";": ",",
    "<": "‹",
    ">": "›",
    "&": "+",
    "`": "'",
}

_TRANSLATION: dict[int, Optional[str]] = {ord(char): repl for char, repl in _REPLACEMENTS.items()}
_TRANSLATION[ord("#")] = None
_TRANSLATION.update({code: " " for code in range(32)})
_TRANSLATION[ord("\r")] = None
_TRANSLATION[127] = " "

CLASS_DEFS = {
    "error": "fill:#ff6b6b,stroke:#c92a2a,color:#fff",
    "cancelled": "fill:#ffd43b,stroke:#fab005,color:#000",
    "inprogress": "fill:#74c0fc,stroke:#339af0,color:#000",
    "subagent": "fill:#b2f2bb,stroke:#40c057,color:#000",
    "parallel": "fill:#e599f7,stroke:#ae3ec9,color:#000",
}

PARALLEL_MARK = "⚡"
FAILURE_MARK = "❌"


def escape_label(text: Optional[str], limit: Optional[int] = None) -> str:
    """Make arbitrary text safe inside a mermaid label, then truncate it."""
    max_len = config.MAX_LABEL_LENGTH if limit is None else limit
    return (text or "").translate(_TRANSLATION)[:max_len]


def preview(text: Optional[str], length: int) -> str:
    return escape_label((text or "")[:length])


def node_id(prefix: str, index: int) -> str:
    return f"{prefix}{index}"


def status_class(status: ItemStatus) -> str:
    if status == ItemStatus.FAILURE:
        return ":::error"
    if status == ItemStatus.CANCELLED:
        return ":::cancelled"
    if status == ItemStatus.IN_PROGRESS:
        return ":::inprogress"
    return ""


def class_def_lines(*names: str) -> list[str]:
    return [f"    classDef {name} {CLASS_DEFS[name]}" for name in names]
