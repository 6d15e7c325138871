"""Graph visualization: compiled graph -> Mermaid flowchart."""

from __future__ import annotations

from .ir import Graph, PortKind, Vertex

# Node class prefix -> Mermaid style
_CLASS_STYLES = {
    "logix.flow.":      "fill:#b45309,stroke:#f59e0b,color:#e2e8f0",
    "logix.events.":    "fill:#1e40af,stroke:#3b82f6,color:#e2e8f0",
    "logix.actions.":   "fill:#065f46,stroke:#10b981,color:#e2e8f0",
    "logix.operators.": "fill:#7c3aed,stroke:#8b5cf6,color:#e2e8f0",
    "logix.variables.": "fill:#64748b,stroke:#94a3b8,color:#e2e8f0",
}

_DEFAULT_STYLE = "fill:#1e293b,stroke:#64748b,color:#e2e8f0"


def generate_mermaid(graph: Graph) -> str:
    """Generate a Mermaid flowchart from a compiled Graph.

    Impulse edges are drawn solid, data edges dotted.
    """
    lines: list[str] = ["graph TD"]
    vertices = [graph.vertices[vid] for vid in sorted(graph.vertices)]

    for vertex in vertices:
        lines.append(f"    n{vertex.id}{_node_shape(vertex)}")

    lines.append("")

    for edge in graph.edges:
        label = edge.src_port if edge.src_port == edge.dst_port else f"{edge.src_port}:{edge.dst_port}"
        arrow = "-->" if edge.kind is PortKind.IMPULSE else "-.->"
        lines.append(f"    n{edge.src} {arrow}|{label}| n{edge.dst}")

    lines.append("")

    for vertex in vertices:
        lines.append(f"    style n{vertex.id} {_style(vertex)}")

    return "\n".join(lines)


def _node_shape(vertex: Vertex) -> str:
    """Return Mermaid node shape based on node class."""
    label = f"{_escape(vertex.name)}\\n{vertex.node_class}"
    if vertex.has_value:
        label += f"\\n= {_escape(repr(vertex.value))}"
    if vertex.node_class == "logix.flow.if" or vertex.node_class == "logix.operators.conditional":
        return "{" + f"\"{label}\"" + "}"  # diamond
    if vertex.node_class == "logix.flow.while":
        return f"((\"{label}\"))"  # circle
    if not vertex.inputs:
        return f"[/\"{label}\"/]"  # parallelogram (source)
    return f"[\"{label}\"]"


def _style(vertex: Vertex) -> str:
    for prefix, style in _CLASS_STYLES.items():
        if vertex.node_class.startswith(prefix):
            return style
    return _DEFAULT_STYLE


def _escape(text: str) -> str:
    return text.replace('"', "#quot;")
