"""agentdebug configuration."""
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


# Diagram rendering
MAX_LABEL_LENGTH = _env_int("AGENTDEBUG_MAX_LABEL_LENGTH", 50)
TOOL_SIMPLIFY_THRESHOLD = _env_int("AGENTDEBUG_TOOL_SIMPLIFY_THRESHOLD", 50)
TURN_GROUPING_THRESHOLD = _env_int("AGENTDEBUG_TURN_GROUPING_THRESHOLD", 15)
SEQUENCE_TOOL_LIMIT = _env_int("AGENTDEBUG_SEQUENCE_TOOL_LIMIT", 15)
TIMELINE_TOOL_LIMIT = _env_int("AGENTDEBUG_TIMELINE_TOOL_LIMIT", 10)

# Overlap detection (ms assumed when an item carries no duration)
DEFAULT_OVERLAP_DURATION_MS = _env_int("AGENTDEBUG_DEFAULT_OVERLAP_DURATION_MS", 1000)

# Normalization
RESULT_PREVIEW_LENGTH = _env_int("AGENTDEBUG_RESULT_PREVIEW_LENGTH", 200)
RESULT_FULL_LENGTH = _env_int("AGENTDEBUG_RESULT_FULL_LENGTH", 500)
FAILURE_MESSAGE_LENGTH = _env_int("AGENTDEBUG_FAILURE_MESSAGE_LENGTH", 500)
FORMAT_ERROR_PREVIEW_LENGTH = _env_int("AGENTDEBUG_FORMAT_ERROR_PREVIEW_LENGTH", 200)
SUBAGENT_NAME_LENGTH = 50

# Self-analysis exclusion
EXCLUDED_AGENT_NAMES = _env_list("AGENTDEBUG_EXCLUDED_AGENT_NAMES", ("debug", "debug-panel"))
EXCLUDED_TOOL_PREFIXES = _env_list("AGENTDEBUG_EXCLUDED_TOOL_PREFIXES", ("debug_",))
EXCLUDED_PROMPT_MARKERS = _env_list("AGENTDEBUG_EXCLUDED_PROMPT_MARKERS", ("debug.prompt.md",))

# Observability
OTEL_ENABLED = _env_bool("AGENTDEBUG_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("AGENTDEBUG_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("AGENTDEBUG_OTEL_SERVICE_NAME", "agentdebug")
PROM_PORT = _env_int("AGENTDEBUG_PROM_PORT", 9464)

# File watching
WATCH_DIR = os.getenv("AGENTDEBUG_WATCH_DIR", "")
WATCH_ENABLED = _env_bool("AGENTDEBUG_WATCH_ENABLED", bool(WATCH_DIR))

# CORS
FRONTEND_ORIGIN = os.getenv("AGENTDEBUG_FRONTEND_ORIGIN", "http://localhost:3000")
