"""Dead-vertex elimination by forward reachability from input-less roots."""

from __future__ import annotations

import logging
from collections import deque

from .ir import Graph, Vertex

logger = logging.getLogger(__name__)


def reachable_vertices(graph: Graph) -> set[int]:
    """Ids reachable from a root (a vertex without input ports) along edges.

    A root only counts when something is connected to it.
    """
    successors: dict[int, list[int]] = {}
    for edge in graph.edges:
        successors.setdefault(edge.src, []).append(edge.dst)

    roots = [
        vid for vid, vertex in sorted(graph.vertices.items())
        if not vertex.inputs and vid in successors
    ]
    seen = set(roots)
    queue = deque(roots)
    while queue:
        for nxt in successors.get(queue.popleft(), ()):
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return seen


def eliminate_unreachable(graph: Graph) -> list[Vertex]:
    """Remove every vertex that is neither reachable nor pinned; returns them."""
    keep = reachable_vertices(graph)
    removed = []
    for vid in sorted(graph.vertices):
        vertex = graph.vertices[vid]
        if vid in keep or vertex.pinned:
            continue
        removed.append(graph.remove_vertex(vid))
        logger.debug("removed unreachable vertex %s (%s)", vertex.name, vertex.node_class)
    return removed
