from .graph import build_graph, decide_and_answer, run_agent

__all__ = [
    "build_graph",
    "decide_and_answer",
    "run_agent",
]
