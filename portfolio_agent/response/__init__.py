from .confidence import calculate_confidence, confidence_band
from .contracts import (
    AgentResult,
    AgentVerificationCheck,
    Allocation,
    Confidence,
    Escalation,
    FinalResponse,
    RebalancePlan,
    RebalanceTrade,
    ToolCall,
    ToolFacts,
    VerificationCheck,
    VerificationReport,
)
from .facts import aggregate_facts, calculate_concentration_band
from .rebalance import generate_rebalance_plan
from .renderer import render_answer_text, render_final_response
from .schemas import validate_agent_request_payload, validate_answer_prose_payload, validate_tool_result_payload
from .synthesizer_bedrock import synthesize_answer_with_bedrock
from .validator import extract_numeric_tokens_for_grounding, validate_answer_grounding
from .verification import verify_facts_and_plan

__all__ = [
    "AgentResult",
    "AgentVerificationCheck",
    "Allocation",
    "Confidence",
    "Escalation",
    "FinalResponse",
    "RebalancePlan",
    "RebalanceTrade",
    "ToolCall",
    "ToolFacts",
    "VerificationCheck",
    "VerificationReport",
    "aggregate_facts",
    "calculate_concentration_band",
    "calculate_confidence",
    "confidence_band",
    "extract_numeric_tokens_for_grounding",
    "generate_rebalance_plan",
    "render_answer_text",
    "render_final_response",
    "synthesize_answer_with_bedrock",
    "validate_agent_request_payload",
    "validate_answer_grounding",
    "validate_answer_prose_payload",
    "validate_tool_result_payload",
    "verify_facts_and_plan",
]
