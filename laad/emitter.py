"""Emitter: serialises a finished graph to LNJ (LogiX node JSON)."""

from __future__ import annotations

import json
from typing import Any

from .ir import Edge, Graph, Port, Vertex

LNJ_FORMAT = "LNJ"
LNJ_VERSION = 1


def to_json(doc: dict[str, Any], indent: int | None = None) -> str:
    """Serialise an LNJ document: compact by default, indented when asked."""
    if indent is None:
        return json.dumps(doc, separators=(",", ":"))
    return json.dumps(doc, indent=indent)


class Emitter:
    """Turns a Graph into an LNJ document.

    Emitting freezes the graph: no pass may touch it afterwards.
    """

    def __init__(self, unit_name: str = "main"):
        self.unit_name = unit_name

    def emit(self, graph: Graph) -> dict[str, Any]:
        graph.freeze()
        return {
            "format": LNJ_FORMAT,
            "version": LNJ_VERSION,
            "unit": self.unit_name,
            "nodes": [self._node(graph.vertices[vid]) for vid in sorted(graph.vertices)],
            "edges": [self._edge(e) for e in graph.edges],
        }

    # --- Nodes ---

    def _node(self, vertex: Vertex) -> dict[str, Any]:
        node: dict[str, Any] = {
            "id": vertex.id,
            "name": vertex.name,
            "class": vertex.node_class,
            "ports": [self._port(p) for p in vertex.ports],
            "attributes": [
                {"key": attr.key, "args": attr.arguments} for attr in vertex.attributes
            ],
        }
        if vertex.has_value:
            node["value"] = vertex.value
        node["location"] = {"line": vertex.line, "column": vertex.column}
        return node

    @staticmethod
    def _port(port: Port) -> dict[str, str]:
        return {
            "name": port.name,
            "direction": port.direction.value,
            "kind": port.kind.value,
            "type": str(port.type),
        }

    @staticmethod
    def _edge(edge: Edge) -> dict[str, Any]:
        return {
            "from": {"node": edge.src, "port": edge.src_port},
            "to": {"node": edge.dst, "port": edge.dst_port},
            "kind": edge.kind.value,
            "type": str(edge.type) if edge.type is not None else "dummy",
        }
