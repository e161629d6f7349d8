"""
Design compiler: editor node/edge lists -> runtime Graph.

The editor stores a graph as nodes plus edges; the runtime wants each node to
carry its own `next` pointer. Branch outputs are told apart by the edge's
sourceHandle ("true" / "false"). Run the validator first: compiling assumes
a graph that already passed it, and for non-branch nodes with several
outgoing edges only the first edge is kept.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from surveyflow.model import BRANCH, Graph
from surveyflow.serialization import graph_from_dict


def compile_design(nodes: Sequence[Mapping[str, Any]], edges: Sequence[Mapping[str, Any]],
                   survey_id: Optional[str] = None, version: Optional[int] = None) -> Graph:
    return graph_from_dict(compile_runtime_json(nodes, edges), survey_id=survey_id, version=version)


def compile_runtime_json(nodes: Sequence[Mapping[str, Any]], edges: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """Build the runtime JSON node map (`next` as {kind, ...})."""
    outgoing: Dict[str, list] = {}
    for edge in edges:
        outgoing.setdefault(edge.get("source"), []).append(edge)

    runtime: Dict[str, Any] = {}
    for node in nodes:
        node_id = node["id"]
        out = outgoing.get(node_id, [])
        if node.get("type") == BRANCH:
            targets = {e.get("sourceHandle"): e.get("target") for e in out}
            nxt = {"kind": "branch", "trueId": targets.get("true"), "falseId": targets.get("false")}
        elif out:
            nxt = {"kind": "linear", "nextId": out[0].get("target")}
        else:
            nxt = None
        runtime[node_id] = {
            "id": node_id,
            "type": node.get("type", ""),
            "data": dict(node.get("data") or {}),
            "next": nxt,
        }
    return runtime
