"""Knowledge graph inspection endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(tags=["graph"])


@router.get("/graph/stats")
def graph_stats(request: Request):
    return request.app.state.engine.graph.stats()


@router.get("/graph/nodes/{node_id}")
def graph_node(request: Request, node_id: str):
    graph = request.app.state.engine.graph
    node = graph.get_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    return {
        "node": node.to_dict(),
        "outgoing": [e.to_dict() for e in graph.get_outgoing_edges(node_id)],
        "incoming": [e.to_dict() for e in graph.get_incoming_edges(node_id)],
    }
