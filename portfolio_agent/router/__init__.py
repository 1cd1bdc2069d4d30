from .arithmetic import evaluate_arithmetic, is_arithmetic_query
from .contracts import (
    ACTION_TOOLS,
    READ_ONLY_TOOLS,
    TOOL_PRIORITY,
    FollowUpSignal,
    PolicyDecision,
    PolicyLimits,
    PreviousTurn,
    ToolName,
    TurnContext,
)
from .follow_up import build_turn_context, compute_follow_up_signal, resolve_follow_up_tools
from .normalize import normalize_query
from .planner import determine_tool_plan
from .policy import apply_tool_execution_policy, create_policy_route_response, format_policy_verification_details
from .symbols import extract_symbols, resolve_symbols, suggest_symbol_corrections

__all__ = [
    "ACTION_TOOLS",
    "FollowUpSignal",
    "PolicyDecision",
    "PolicyLimits",
    "PreviousTurn",
    "READ_ONLY_TOOLS",
    "TOOL_PRIORITY",
    "ToolName",
    "TurnContext",
    "apply_tool_execution_policy",
    "build_turn_context",
    "compute_follow_up_signal",
    "create_policy_route_response",
    "determine_tool_plan",
    "evaluate_arithmetic",
    "extract_symbols",
    "format_policy_verification_details",
    "is_arithmetic_query",
    "normalize_query",
    "resolve_follow_up_tools",
    "resolve_symbols",
    "suggest_symbol_corrections",
]
