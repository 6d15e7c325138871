"""Desugaring: replace sugar vertices with primitive LogiX wiring.

Runs after type inference, so every synthetic vertex is created with
concrete port types. Boundary connections of a construct are moved onto
the primitive vertices; nothing outside the construct is rewired.
"""

from __future__ import annotations

import logging

from .errors import PortBindingError
from .ir import Edge, Graph, PortKind, Vertex
from .templates import TemplateLibrary
from .types import Type, is_concrete

logger = logging.getLogger(__name__)

PortRef = tuple[int, str]


class Desugarer:
    """Lowers ``sugar.*`` vertices in ascending id order."""

    def __init__(self, library: TemplateLibrary | None = None):
        self.library = library or TemplateLibrary.default()
        self.lattice = self.library.lattice
        self.graph: Graph | None = None

    def run(self, graph: Graph) -> int:
        """Lower every sugar vertex, then check input binding. Returns the count lowered."""
        self.graph = graph
        sugar = sorted(
            (v for v in graph.vertices.values() if v.node_class.startswith("sugar.")),
            key=lambda v: v.id,
        )
        for vertex in sugar:
            lower = getattr(self, "_lower_" + vertex.node_class.split(".", 1)[1])
            primary = lower(vertex, self._base_name(vertex))
            self._adopt(primary, vertex)
            graph.remove_vertex(vertex.id)
            logger.debug("lowered %s %s into %s", vertex.node_class, vertex.name, primary.name)
        check_bindings(graph)
        return len(sugar)

    # --- Conditionals ---

    def _lower_if(self, sugar: Vertex, base: str) -> Vertex:
        if sugar.payload.mode == "value":
            return self._lower_value_if(sugar, base)
        return self._lower_statement_if(sugar, base)

    def _lower_statement_if(self, sugar: Vertex, base: str) -> Vertex:
        payload = sugar.payload
        arms = payload.arms[:-1] if payload.has_else else payload.arms
        branches = [
            self._new("logix.flow.if", f"{base}.branch{i}", sugar) for i in range(len(arms))
        ]
        self._retarget_in(sugar, "trigger", (branches[0].id, "trigger"))
        for i, branch in enumerate(branches):
            self._retarget_in(sugar, f"cond_{i}", (branch.id, "condition"))
        # A statement discards branch values
        for port, _ in payload.arms:
            for edge in self.graph.incoming(sugar.id, port):
                self.graph.disconnect(edge)

        exits: list[PortRef] = []
        for i, (_, flow) in enumerate(arms):
            exits.append(self._enter(flow, (branches[i].id, "on_true")))
        for current, following in zip(branches, branches[1:]):
            self._wire((current.id, "on_false"), (following.id, "trigger"), sugar)
        last = (branches[-1].id, "on_false")
        if payload.has_else:
            exits.append(self._enter(payload.arms[-1][1], last))
        else:
            exits.append(last)

        self._continue(sugar, [e for e in exits if e is not None])
        return branches[0]

    def _enter(self, flow, source: PortRef) -> PortRef | None:
        """Wire ``source`` into a branch body; returns where the flow leaves it."""
        if flow is None or flow.empty:
            return source
        self._wire(source, flow.entry)
        return flow.exit

    def _lower_value_if(self, sugar: Vertex, base: str) -> Vertex:
        payload = sugar.payload
        value_type = payload.value_type
        branch_ports = [port for port, _ in payload.arms[:-1]]
        selectors = [
            self._new("logix.operators.conditional", f"{base}.select{i}", sugar, {"T": value_type})
            for i in range(len(branch_ports))
        ]
        for i, (port, selector) in enumerate(zip(branch_ports, selectors)):
            self._retarget_in(sugar, f"cond_{i}", (selector.id, "condition"))
            self._route_value(sugar, port, (selector.id, "on_true"), value_type, f"{base}.cast{i}")
        for current, following in zip(selectors, selectors[1:]):
            self._wire((following.id, "value"), (current.id, "on_false"), sugar)
        self._route_value(
            sugar, "branch_else", (selectors[-1].id, "on_false"), value_type, f"{base}.cast_else",
        )
        self._retarget_out(sugar, "value", (selectors[0].id, "value"))
        return selectors[0]

    def _route_value(self, sugar: Vertex, port: str, target: PortRef, value_type: Type, cast_name: str) -> None:
        edge = self.graph.incoming(sugar.id, port)[0]
        if edge.type == value_type:
            self._move_dst(edge, target)
            return
        cast = self._new("logix.cast", cast_name, sugar, {"S": edge.type, "R": value_type})
        self._move_dst(edge, (cast.id, "value"))
        self._wire((cast.id, "result"), target, sugar)

    # --- Loops ---

    def _lower_while(self, sugar: Vertex, base: str) -> Vertex:
        loop = self._new("logix.flow.while", f"{base}.loop", sugar)
        self._retarget_in(sugar, "trigger", (loop.id, "trigger"))
        self._retarget_in(sugar, "condition", (loop.id, "condition"))
        body = sugar.payload.body
        if not body.empty:
            self._wire((loop.id, "loop_body"), body.entry, sugar)
            self._wire(self._require_exit(body.exit, sugar, "loop body"), (loop.id, "trigger"), sugar)
        self._retarget_out(sugar, "next", (loop.id, "after"))
        return loop

    def _lower_for_range(self, sugar: Vertex, base: str) -> Vertex:
        t = sugar.type_params["T"]
        params = {"T": t}
        variable = self.graph.vertices[sugar.payload.variable]
        init = self._new("logix.actions.write", f"{base}.init", sugar, params)
        loop = self._new("logix.flow.while", f"{base}.loop", sugar)
        cond = self._new("logix.operators.lt", f"{base}.cond", sugar, params)
        step = self._new("logix.actions.write", f"{base}.step", sugar, params)
        increment = self._new("logix.operators.add", f"{base}.next", sugar, params)
        one = self._new("logix.input.value", f"{base}.one", sugar, params)
        one.value = 1 if (not is_concrete(t) or self.lattice.is_integral(t)) else 1.0
        one.has_value = True

        # i = start
        self._retarget_in(sugar, "trigger", (init.id, "trigger"))
        self._wire((variable.id, "reference"), (init.id, "target"), sugar)
        self._retarget_in(sugar, "start", (init.id, "value"))
        self._wire((init.id, "next"), (loop.id, "trigger"), sugar)

        # while i < end
        self._wire((variable.id, "value"), (cond.id, "a"), sugar)
        self._retarget_in(sugar, "end", (cond.id, "b"))
        self._wire((cond.id, "value"), (loop.id, "condition"), sugar)

        # body, then i = i + 1 and re-check
        body = sugar.payload.body
        if body.empty:
            self._wire((loop.id, "loop_body"), (step.id, "trigger"), sugar)
        else:
            self._wire((loop.id, "loop_body"), body.entry, sugar)
            self._wire(self._require_exit(body.exit, sugar, "loop body"), (step.id, "trigger"), sugar)
        self._wire((variable.id, "reference"), (step.id, "target"), sugar)
        self._wire((variable.id, "value"), (increment.id, "a"), sugar)
        self._wire((one.id, "value"), (increment.id, "b"), sugar)
        self._wire((increment.id, "value"), (step.id, "value"), sugar)
        self._wire((step.id, "next"), (loop.id, "trigger"), sugar)

        self._retarget_out(sugar, "next", (loop.id, "after"))
        return loop

    def _lower_for(self, sugar: Vertex, base: str) -> Vertex:
        payload = sugar.payload
        loop = self._new("logix.flow.while", f"{base}.loop", sugar)
        if payload.start is not None:
            self._retarget_in(sugar, "trigger", payload.start.entry)
            self._wire(payload.start.exit, (loop.id, "trigger"), sugar)
        else:
            self._retarget_in(sugar, "trigger", (loop.id, "trigger"))
        self._retarget_in(sugar, "condition", (loop.id, "condition"))

        back = payload.step.entry if payload.step is not None else (loop.id, "trigger")
        if not payload.body.empty:
            self._wire((loop.id, "loop_body"), payload.body.entry, sugar)
            self._wire(self._require_exit(payload.body.exit, sugar, "loop body"), back, sugar)
        elif payload.step is not None:
            self._wire((loop.id, "loop_body"), back, sugar)
        if payload.step is not None:
            self._wire(payload.step.exit, (loop.id, "trigger"), sugar)

        self._retarget_out(sugar, "next", (loop.id, "after"))
        return loop

    # --- Wiring helpers ---

    def _base_name(self, sugar: Vertex) -> str:
        if sugar.is_synthetic:
            return sugar.name
        prefix = "for" if sugar.node_class.startswith("sugar.for") else sugar.node_class.split(".", 1)[1]
        return self.graph.synthetic_name(prefix)

    def _new(self, path: str, name: str, sugar: Vertex, params: dict[str, Type] | None = None) -> Vertex:
        return self.graph.instantiate(
            self.library.get(path), name, self.lattice, params, line=sugar.line, column=sugar.column,
        )

    def _wire(self, src: PortRef, dst: PortRef, node: Vertex | None = None) -> Edge:
        line = node.line if node else 0
        column = node.column if node else 0
        edge = self.graph.connect(src[0], src[1], dst[0], dst[1], line, column)
        src_type = self.graph.vertices[src[0]].port(src[1]).type
        edge.type = src_type if is_concrete(src_type) else self.graph.vertices[dst[0]].port(dst[1]).type
        return edge

    @staticmethod
    def _move_dst(edge: Edge, target: PortRef) -> None:
        edge.dst, edge.dst_port = target

    def _retarget_in(self, sugar: Vertex, port: str, target: PortRef) -> None:
        for edge in self.graph.incoming(sugar.id, port):
            self._move_dst(edge, target)

    def _retarget_out(self, sugar: Vertex, port: str, source: PortRef) -> None:
        for edge in self.graph.outgoing(sugar.id, port):
            edge.src, edge.src_port = source

    def _continue(self, sugar: Vertex, exits: list[PortRef]) -> None:
        """Fan every exit of a construct into whatever followed it."""
        for edge in self.graph.outgoing(sugar.id, "next"):
            self.graph.disconnect(edge)
            for exit_ in exits:
                self._wire(exit_, (edge.dst, edge.dst_port), sugar)

    @staticmethod
    def _require_exit(exit_: PortRef | None, sugar: Vertex, what: str) -> PortRef:
        if exit_ is None:
            raise PortBindingError(
                f"{what} of '{sugar.name}' cannot continue the flow", sugar.line or None, sugar.column or None,
            )
        return exit_

    @staticmethod
    def _adopt(primary: Vertex, sugar: Vertex) -> None:
        if not sugar.is_synthetic:
            primary.name = sugar.name
        primary.attributes.extend(sugar.attributes)
        primary.pinned = primary.pinned or sugar.pinned
        primary.nullable = primary.nullable or sugar.nullable


def check_bindings(graph: Graph) -> None:
    """Every required input must be fed by an edge; there are no defaults."""
    for vertex in sorted(graph.vertices.values(), key=lambda v: v.id):
        for port in vertex.inputs:
            if port.required and port.kind is PortKind.DATA and not graph.incoming(vertex.id, port.name):
                raise PortBindingError(
                    f"required input '{vertex.name}.{port.name}' is not bound",
                    vertex.line or None,
                    vertex.column or None,
                )
