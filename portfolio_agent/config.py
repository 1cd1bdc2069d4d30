import os
from dotenv import load_dotenv

env_path = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(env_path)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


AWS_REGION = os.getenv("AWS_REGION", "us-west-2")
BEDROCK_MODEL_ID = os.getenv("BEDROCK_MODEL_ID", "")

BACKEND_API_BASE = os.getenv("BACKEND_API_BASE", "http://localhost:3333")
USE_LOCAL_MOCKS = _env_bool("USE_LOCAL_MOCKS", False)

# Policy gate limits
TOOL_MAX_CALLS_PER_REQUEST = max(1, _env_int("TOOL_MAX_CALLS_PER_REQUEST", 8))
TOOL_MAX_CALLS_PER_ACTION_TOOL = max(1, _env_int("TOOL_MAX_CALLS_PER_ACTION_TOOL", 1))
POLICY_FALLBACK_SCORE_MIN = _env_float("POLICY_FALLBACK_SCORE_MIN", 0.4)

# Follow-up resolver
FOLLOW_UP_STALENESS_MINUTES = max(1, _env_int("FOLLOW_UP_STALENESS_MINUTES", 30))

# Conversation memory / preferences
MEMORY_MAX_TURNS = max(1, _env_int("MEMORY_MAX_TURNS", 10))
MEMORY_TTL_SECONDS = max(60, _env_int("MEMORY_TTL_SECONDS", 86_400))
PREFERENCES_TTL_SECONDS = max(60, _env_int("PREFERENCES_TTL_SECONDS", 2_592_000))

# Rebalance / verification
REBALANCE_MAX_TOP_ALLOCATION = _env_float("REBALANCE_MAX_TOP_ALLOCATION", 25.0)
VERIFICATION_LATENCY_BUDGET_MS = max(1, _env_int("VERIFICATION_LATENCY_BUDGET_MS", 5000))

RESPONSE_MODE = os.getenv("RESPONSE_MODE", "template").strip().lower()
if RESPONSE_MODE not in {"template", "llm_shadow", "llm_enforce"}:
    RESPONSE_MODE = "template"
RESPONSE_PROMPT_VERSION = os.getenv("RESPONSE_PROMPT_VERSION", "answer_prose_v1")

# ============================================================================
# TIMEOUT CONFIGURATION (Centralized)
# ============================================================================
BACKEND_TIMEOUT_SECONDS = _env_int("BACKEND_TIMEOUT_SECONDS", 20)

# Bedrock client timeouts
BEDROCK_CONNECT_TIMEOUT = _env_int("BEDROCK_CONNECT_TIMEOUT", 10)
BEDROCK_READ_TIMEOUT = _env_int("BEDROCK_READ_TIMEOUT", 60)
