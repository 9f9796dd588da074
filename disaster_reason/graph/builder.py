"""Graph builder — constructs the LangGraph evaluation topology.

Topology:

    START → assemble_context → request_verdict → parse_verdict
          → check_verdict
               ├── "end"   → END
               └── "retry" → request_verdict

The graph is compiled once per evaluator call and is otherwise stateless.
"""

from __future__ import annotations

from langgraph.graph import END, START, StateGraph

from disaster_reason.graph.nodes import (
    LLMFactory,
    assemble_context,
    check_verdict,
    make_request_verdict,
    parse_verdict,
)
from disaster_reason.graph.state import EvaluationState


def build_evaluation_graph(llm_factory: LLMFactory):
    """Construct and compile the evaluation graph.

    Args:
        llm_factory: Callable returning a langchain BaseChatModel
                     (e.g. ChatGoogleGenerativeAI for Gemini Flash).
    """
    graph = StateGraph(EvaluationState)

    graph.add_node("assemble_context", assemble_context)
    graph.add_node("request_verdict", make_request_verdict(llm_factory))
    graph.add_node("parse_verdict", parse_verdict)

    graph.add_edge(START, "assemble_context")
    graph.add_edge("assemble_context", "request_verdict")
    graph.add_edge("request_verdict", "parse_verdict")

    graph.add_conditional_edges(
        "parse_verdict",
        check_verdict,
        {
            "end": END,
            "retry": "request_verdict",
        },
    )

    return graph.compile()
