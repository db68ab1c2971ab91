import json
import logging

from langgraph.graph import END, START, StateGraph

from .nodes import AgentNodes


def build_response_graph(agent_nodes: AgentNodes | None = None):
    """
    initialize -> route -> specialist -> quality -> finalize.
    Escalation skips the specialist; quality may send the draft back to specialist once.
    """
    agent_nodes = agent_nodes or AgentNodes()
    logging.info(
        json.dumps(
            {"event": "graph_build", "graph": "response_graph"},
            ensure_ascii=False,
        )
    )

    workflow = StateGraph(dict)

    workflow.add_node("initialize", agent_nodes.initialize_node)
    workflow.add_node("route", agent_nodes.route_node)
    workflow.add_node("specialist", agent_nodes.specialist_node)
    workflow.add_node("quality", agent_nodes.quality_node)
    workflow.add_node("finalize", agent_nodes.finalize_node)

    workflow.add_edge(START, "initialize")
    workflow.add_edge("initialize", "route")
    workflow.add_conditional_edges(
        "route",
        agent_nodes.route_condition,
        {"specialist": "specialist", "escalate": "finalize"},
    )
    workflow.add_edge("specialist", "quality")
    workflow.add_conditional_edges(
        "quality",
        agent_nodes.quality_condition,
        {"repair": "specialist", "finalize": "finalize"},
    )
    workflow.add_edge("finalize", END)

    return workflow.compile()
