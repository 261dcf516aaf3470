"""Format adapters that normalize raw agent logs into a Session."""

from .live import normalize_live
from .replay import normalize_replay
from .trajectory import normalize_trajectory
from .transcript import normalize_transcript
from .registry import detect_source_kind, load_session_file, normalize_any

__all__ = [
    "normalize_live",
    "normalize_replay",
    "normalize_trajectory",
    "normalize_transcript",
    "detect_source_kind",
    "load_session_file",
    "normalize_any",
]
