from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, TypedDict

from langgraph.graph import END, StateGraph

from .config import (
    MEMORY_MAX_TURNS,
    MEMORY_TTL_SECONDS,
    RESPONSE_MODE,
    TOOL_MAX_CALLS_PER_ACTION_TOOL,
    TOOL_MAX_CALLS_PER_REQUEST,
    VERIFICATION_LATENCY_BUDGET_MS,
)
from .execution import ToolExecutionContext, execute_tools
from .memory import BackendMemoryStore, InMemoryStore, KeyValueStore, append_turn, load_turns, previous_turn_from, session_key
from .response.confidence import (
    ARITHMETIC_CONFIDENCE,
    DIRECT_FLOOR_CONFIDENCE,
    calculate_confidence,
    check,
    numerical_consistency_check,
    output_completeness_check,
    rebalance_verification_check,
    tool_execution_check,
)
from .response.contracts import (
    AgentResult,
    AgentVerificationCheck,
    Confidence,
    Escalation,
    RebalancePlan,
    ToolCall,
    ToolFacts,
    VerificationReport,
)
from .response.facts import aggregate_facts
from .response.rebalance import generate_rebalance_plan
from .response.renderer import DEFAULT_DISCLAIMER, render_answer_text
from .response.synthesizer_bedrock import synthesize_answer_with_bedrock
from .response.validator import validate_answer_grounding
from .response.verification import verify_facts_and_plan
from .router.arithmetic import evaluate_arithmetic
from .router.contracts import ACTION_TOOLS, FollowUpSignal, PolicyDecision, PolicyLimits, PreviousTurn
from .router.follow_up import build_turn_context, compute_follow_up_signal, resolve_follow_up_tools
from .router.planner import determine_tool_plan
from .router.policy import apply_tool_execution_policy, create_policy_route_response, format_policy_verification_details
from .router.symbols import resolve_symbols, suggest_symbol_corrections
from .tools import should_use_local_mocks

logger = logging.getLogger(__name__)

ABSTAIN_RESPONSE = "Insufficient confidence to answer safely with the current evidence."
PLAN_EXPOSING_TOOLS = {"rebalance_plan", "calculate_rebalance_plan"}
_LOCAL_MEMORY = InMemoryStore()


class AgentState(TypedDict):
    query: str
    user_token: str
    user_id: str
    session_id: str
    trace_id: str
    requested_symbols: list[str]
    limits: PolicyLimits
    memory_store: KeyValueStore | None
    session_turns: list[Dict[str, Any]] | None
    memory_read_failed: bool
    previous_turn: PreviousTurn | None
    symbols: list[str]
    symbol_suggestions: list[str]
    planned_tools: list[str]
    follow_up: FollowUpSignal | None
    decision: PolicyDecision | None
    tool_calls: list[ToolCall]
    facts: ToolFacts | None
    plan: RebalancePlan | None
    verification: VerificationReport | None
    checks: list[AgentVerificationCheck]
    confidence: Confidence | None
    escalation: Escalation | None
    response_meta: Dict[str, Any]
    answer: str


def load_memory(state: AgentState) -> AgentState:
    store = state.get("memory_store")
    if store is None or not state.get("session_id"):
        return state
    key = session_key(state["user_id"], state["session_id"])
    try:
        state["session_turns"] = load_turns(store, key)
    except Exception as exc:
        # An unreadable session only costs follow-up context; the request still runs.
        logger.warning("memory_read_failed trace=%s error=%s", state["trace_id"], exc)
        state["memory_read_failed"] = True
        return state
    if state.get("previous_turn") is None:
        state["previous_turn"] = previous_turn_from(state["session_turns"], key)
    return state


def plan_request(state: AgentState) -> AgentState:
    query = state["query"]
    requested = state.get("requested_symbols") or []
    symbols = resolve_symbols(query, requested)
    if not requested:
        state["symbol_suggestions"] = [item.symbol for item in suggest_symbol_corrections(query)]
    state["symbols"] = symbols

    planned = determine_tool_plan(query, symbols)
    signal = compute_follow_up_signal(query, state.get("previous_turn"), symbols)
    state["follow_up"] = signal
    state["planned_tools"] = resolve_follow_up_tools(query, planned, signal, state.get("previous_turn"))
    return state


def policy_gate(state: AgentState) -> AgentState:
    decision = apply_tool_execution_policy(
        state["planned_tools"],
        state["query"],
        state.get("follow_up"),
        state["limits"],
        state["symbols"],
    )
    state["decision"] = decision
    logger.info(
        "policy_route trace=%s route=%s block_reason=%s tools=%s",
        state["trace_id"],
        decision.route,
        decision.blockReason,
        ",".join(decision.toolsToExecute) or "none",
    )
    if decision.route != "tools":
        state["answer"] = create_policy_route_response(decision, state["query"], state.get("follow_up"))
    return state


def run_tools(state: AgentState) -> AgentState:
    decision = state["decision"]
    context = ToolExecutionContext(
        user_token=state["user_token"],
        user_id=state["user_id"],
        query=state["query"],
        symbols=list(state["symbols"]),
        trace_id=state["trace_id"],
    )
    state["tool_calls"] = execute_tools(list(decision.toolsToExecute), context)
    return state


def analyze_results(state: AgentState) -> AgentState:
    tool_calls = state["tool_calls"]
    facts = aggregate_facts(tool_calls)
    state["facts"] = facts

    executed = {call.tool for call in tool_calls if call.status == "success"}
    if facts.allocations and executed & PLAN_EXPOSING_TOOLS:
        plan = generate_rebalance_plan(facts)
        verification = verify_facts_and_plan(facts, plan, VERIFICATION_LATENCY_BUDGET_MS)
        state["plan"] = plan
        state["verification"] = verification
        logger.info(
            "verification_status trace=%s status=%s confidence=%.2f",
            state["trace_id"],
            verification.status,
            verification.confidence_score,
        )
    return state


def _grounding(state: AgentState) -> Dict[str, Any]:
    return {
        "facts": state["facts"].model_dump() if state.get("facts") else {},
        "plan": state["plan"].model_dump() if state.get("plan") else {},
        "verification": state["verification"].model_dump() if state.get("verification") else {},
        "tool_summaries": [call.outputSummary for call in state["tool_calls"]],
    }


def compose_answer(state: AgentState) -> AgentState:
    template_answer = render_answer_text(
        state.get("facts"),
        state.get("plan"),
        state.get("verification"),
        state["tool_calls"],
    )
    response_meta = state["response_meta"]
    state["answer"] = template_answer
    if RESPONSE_MODE == "template":
        return state

    grounding = _grounding(state)
    payload, errors, runtime_meta = synthesize_answer_with_bedrock(user_prompt=state["query"], grounding=grounding)
    response_meta["llm"] = {key: value for key, value in runtime_meta.items() if key != "raw_text"}
    if payload is None:
        response_meta["fallback_used"] = "template"
        response_meta["reason_codes"] = errors
        logger.warning("renderer_fallback trace=%s reasons=%s", state["trace_id"], ",".join(errors))
        return state

    sections = [*payload["summary_lines"], *payload["next_steps"]]
    action_executed = any(
        call.tool in ACTION_TOOLS and call.status == "success" for call in state["tool_calls"]
    )
    grounding_errors = validate_answer_grounding(sections, grounding, action_tools_executed=action_executed)
    response_meta["reason_codes"] = [*errors, *grounding_errors]
    if grounding_errors:
        response_meta["fallback_used"] = "template"
        logger.warning("renderer_fallback trace=%s reasons=%s", state["trace_id"], ",".join(grounding_errors))
        return state

    response_meta["validation_passed"] = True
    if RESPONSE_MODE == "llm_enforce":
        lines = list(payload["summary_lines"])
        if payload["next_steps"]:
            lines.append("Next steps:")
            lines.extend(f"- {item}" for item in payload["next_steps"])
        lines.append(payload["disclaimer"] or DEFAULT_DISCLAIMER)
        state["answer"] = "\n".join(lines)
    else:
        response_meta["shadow_answer"] = "\n".join(sections)
    return state


def _policy_check(decision: PolicyDecision) -> AgentVerificationCheck:
    status = "warning" if decision.blockedByPolicy or decision.route == "clarify" else "passed"
    return check("policy_gating", status, format_policy_verification_details(decision))


def score_response(state: AgentState) -> AgentState:
    decision = state["decision"]
    tool_calls = state["tool_calls"]
    checks = [_policy_check(decision)]
    if decision.route == "tools":
        checks.append(tool_execution_check(tool_calls))
    if state.get("verification") is not None:
        checks.append(rebalance_verification_check(state["verification"]))
    elif state.get("facts") is not None and state["facts"].allocations:
        checks.append(numerical_consistency_check(state["facts"]))
    checks.append(output_completeness_check(state["answer"]))
    state["checks"] = checks

    if decision.route == "direct" and decision.blockReason == "no_tool_query" and evaluate_arithmetic(state["query"]):
        confidence = ARITHMETIC_CONFIDENCE
    else:
        confidence = calculate_confidence(tool_calls, checks)
        if decision.route == "direct" and confidence.band == "low":
            confidence = DIRECT_FLOOR_CONFIDENCE

    successful = [call for call in tool_calls if call.status == "success"]
    if decision.route == "tools" and confidence.band == "low" and not successful:
        logger.warning("guardrail_abstain trace=%s score=%.2f", state["trace_id"], confidence.score)
        state["answer"] = ABSTAIN_RESPONSE
    state["confidence"] = confidence

    failed = [item.check for item in checks if item.status == "failed"]
    if failed:
        state["escalation"] = Escalation(
            reason=f"failed_checks: {', '.join(failed)}",
            suggestedAction="human_in_the_loop: review the failed checks before acting on this answer",
        )
    return state


def memory_update(state: AgentState) -> AgentState:
    store = state.get("memory_store")
    if store is None or not state.get("session_id"):
        return state
    if state.get("memory_read_failed"):
        # Writing now would replace history that could not be read.
        logger.warning("memory_write_skipped trace=%s reason=read_failed", state["trace_id"])
        return state
    turn = {
        "query": state["query"],
        "answer": state["answer"],
        "route": state["decision"].route,
        "successfulTools": [call.tool for call in state["tool_calls"] if call.status == "success"],
        "context": build_turn_context(state["query"], state["symbols"]).model_dump(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    append_turn(
        store,
        session_key(state["user_id"], state["session_id"]),
        turn,
        turns=state.get("session_turns"),
        max_turns=MEMORY_MAX_TURNS,
        ttl_seconds=MEMORY_TTL_SECONDS,
    )
    return state


def build_graph() -> Any:
    graph = StateGraph(AgentState)
    graph.add_node("load_memory", load_memory)
    graph.add_node("plan_request", plan_request)
    graph.add_node("policy_gate", policy_gate)
    graph.add_node("run_tools", run_tools)
    graph.add_node("analyze_results", analyze_results)
    graph.add_node("compose_answer", compose_answer)
    graph.add_node("score_response", score_response)
    graph.add_node("memory_update", memory_update)

    graph.set_entry_point("load_memory")
    graph.add_edge("load_memory", "plan_request")
    graph.add_edge("plan_request", "policy_gate")
    graph.add_conditional_edges(
        "policy_gate",
        lambda state: "run_tools" if state["decision"].route == "tools" else "score_response",
        {
            "run_tools": "run_tools",
            "score_response": "score_response",
        },
    )
    graph.add_edge("run_tools", "analyze_results")
    graph.add_edge("analyze_results", "compose_answer")
    graph.add_edge("compose_answer", "score_response")
    graph.add_edge("score_response", "memory_update")
    graph.add_edge("memory_update", END)

    return graph.compile()


def decide_and_answer(
    query: str,
    prior_turn: PreviousTurn | None = None,
    symbols: list[str] | None = None,
    limits: PolicyLimits | None = None,
    *,
    user_token: str = "",
    user_id: str = "",
    session_id: str = "",
    memory_store: KeyValueStore | None = None,
    trace_id: str | None = None,
) -> AgentResult:
    """Run one request through routing, tools, verification and scoring."""
    trace_id = trace_id or f"trc_{uuid.uuid4().hex[:8]}"
    state = build_graph().invoke(
        {
            "query": query,
            "user_token": user_token,
            "user_id": user_id,
            "session_id": session_id,
            "trace_id": trace_id,
            "requested_symbols": list(symbols or []),
            "limits": limits
            or PolicyLimits(
                maxToolCallsPerRequest=TOOL_MAX_CALLS_PER_REQUEST,
                maxCallsPerActionTool=TOOL_MAX_CALLS_PER_ACTION_TOOL,
            ),
            "memory_store": memory_store,
            "session_turns": None,
            "memory_read_failed": False,
            "previous_turn": prior_turn,
            "symbols": [],
            "symbol_suggestions": [],
            "planned_tools": [],
            "follow_up": None,
            "decision": None,
            "tool_calls": [],
            "facts": None,
            "plan": None,
            "verification": None,
            "checks": [],
            "confidence": None,
            "escalation": None,
            "response_meta": {
                "mode": RESPONSE_MODE,
                "validation_passed": False,
                "fallback_used": None,
                "reason_codes": [],
            },
            "answer": "",
        }
    )
    decision = state["decision"]
    follow_up = state.get("follow_up")
    return AgentResult(
        route=decision.route,
        answer=state["answer"],
        toolCalls=state["tool_calls"],
        facts=state.get("facts"),
        plan=state.get("plan"),
        verification=state.get("verification"),
        checks=state["checks"],
        confidence=state["confidence"],
        policy=decision.model_dump(),
        followUp=follow_up.model_dump() if follow_up else {},
        symbolSuggestions=state.get("symbol_suggestions", []),
        escalation=state.get("escalation"),
    )


def run_agent(
    query: str,
    user_token: str,
    user_id: str,
    session_id: str = "",
    symbols: list[str] | None = None,
    limits: PolicyLimits | None = None,
) -> Dict[str, Any]:
    trace_id = f"trc_{uuid.uuid4().hex[:8]}"
    store: KeyValueStore = _LOCAL_MEMORY if should_use_local_mocks() else BackendMemoryStore(user_token)
    result = decide_and_answer(
        query,
        symbols=symbols,
        limits=limits,
        user_token=user_token,
        user_id=user_id,
        session_id=session_id,
        memory_store=store,
        trace_id=trace_id,
    )
    return {"trace_id": trace_id, **result.model_dump()}
