"""Attribute hooks: compiler behaviour driven by ``#[key(...)]`` annotations.

Each recognised attribute key maps to a hook that runs at one pipeline
stage. Unrecognised keys are kept on the vertex as opaque metadata and
emitted unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .ast_nodes import Attribute
from .ir import Graph, Vertex

logger = logging.getLogger(__name__)

STAGES = ("build", "inference", "desugar", "reachability")

AttributeHook = Callable[[Vertex, Attribute, Graph], None]


@dataclass(frozen=True)
class AttributeSpec:
    """A recognised attribute key and the hook it runs."""
    key: str
    stage: str
    hook: AttributeHook
    description: str = ""


_ATTRIBUTES: dict[str, AttributeSpec] = {}


def register_attribute(spec: AttributeSpec) -> None:
    """Register an attribute hook.

    Raises:
        ValueError: If the key is already registered or the stage is unknown.
    """
    if spec.stage not in STAGES:
        raise ValueError(f"Unknown stage '{spec.stage}' for attribute '{spec.key}'")
    if spec.key in _ATTRIBUTES:
        raise ValueError(f"Attribute '{spec.key}' is already registered")
    _ATTRIBUTES[spec.key] = spec


def unregister_attribute(key: str) -> None:
    _ATTRIBUTES.pop(key, None)


def get_attribute(key: str) -> AttributeSpec | None:
    return _ATTRIBUTES.get(key)


def list_attributes() -> list[AttributeSpec]:
    return sorted(_ATTRIBUTES.values(), key=lambda s: s.key)


def clear_attributes() -> None:
    """Remove all registered hooks, built-ins included (useful for testing)."""
    _ATTRIBUTES.clear()


def apply_attribute_hooks(graph: Graph, stage: str) -> int:
    """Run every hook registered for ``stage``; returns how many ran."""
    ran = 0
    for vertex in sorted(graph.vertices.values(), key=lambda v: v.id):
        for attr in vertex.attributes:
            spec = _ATTRIBUTES.get(attr.key)
            if spec is None or spec.stage != stage:
                continue
            logger.debug("attribute %s on %s (stage %s)", attr.key, vertex.name, stage)
            spec.hook(vertex, attr, graph)
            ran += 1
    return ran


# ---------------------------------------------------------------------------
# Built-in attributes
# ---------------------------------------------------------------------------

def _pin(vertex: Vertex, attr: Attribute, graph: Graph) -> None:
    vertex.pinned = True


def _allow_null(vertex: Vertex, attr: Attribute, graph: Graph) -> None:
    vertex.nullable = True


def register_builtin_attributes() -> None:
    """(Re)install the built-in hooks; existing registrations are kept."""
    for spec in (
        AttributeSpec("no_remove", "reachability", _pin, "Keep the vertex even when unreachable."),
        AttributeSpec("nullable", "inference", _allow_null, "Let null flow into this vertex's inputs."),
    ):
        if spec.key not in _ATTRIBUTES:
            register_attribute(spec)


register_builtin_attributes()
