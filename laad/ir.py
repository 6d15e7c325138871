"""Graph intermediate representation.

Vertices live in an arena keyed by integer id; edges are flat records that
reference vertices by id. Cyclic loop wiring needs no special handling and
every pass is a plain index traversal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .ast_nodes import Attribute, LiteralValue
from .errors import PortBindingError
from .types import Generic, Type, TypeLattice, is_type_param, parse_type


class PortDirection(Enum):
    IN = "in"
    OUT = "out"


class PortKind(Enum):
    DATA = "data"
    IMPULSE = "impulse"


@dataclass
class Port:
    name: str
    direction: PortDirection
    kind: PortKind
    type: Type
    required: bool = False
    per_edge: bool = False  # `dummy`: every incident edge gets its own type variable


@dataclass(eq=False)
class Vertex:
    """One node instance in the graph."""
    id: int
    name: str
    node_class: str
    ports: list[Port]
    attributes: list[Attribute] = field(default_factory=list)
    line: int = 0
    column: int = 0
    value: LiteralValue = None
    has_value: bool = False
    constraint: str | None = None
    operator: str | None = None
    type_params: dict[str, Type] = field(default_factory=dict)
    payload: Any = None
    nullable: bool = False
    pinned: bool = False

    def port(self, name: str) -> Port | None:
        for p in self.ports:
            if p.name == name:
                return p
        return None

    @property
    def inputs(self) -> list[Port]:
        return [p for p in self.ports if p.direction is PortDirection.IN]

    @property
    def outputs(self) -> list[Port]:
        return [p for p in self.ports if p.direction is PortDirection.OUT]

    @property
    def is_synthetic(self) -> bool:
        return self.name.startswith("$")

    def attribute(self, key: str) -> Attribute | None:
        for attr in self.attributes:
            if attr.key == key:
                return attr
        return None


@dataclass(eq=False)
class Edge:
    """(src, src_port) -> (dst, dst_port). Mutable so passes can rewire it."""
    src: int
    src_port: str
    dst: int
    dst_port: str
    kind: PortKind
    type: Type | None = None
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class TypeConstraint:
    """A written annotation pinning one port to a concrete type."""
    vertex: int
    port: str
    type: Type
    line: int = 0
    column: int = 0


class Graph:
    """Directed property graph built from one compilation unit."""

    def __init__(self) -> None:
        self.vertices: dict[int, Vertex] = {}
        self.edges: list[Edge] = []
        self.links: list[tuple[int, int]] = []
        self.constraints: list[TypeConstraint] = []
        self.frozen = False
        self._next_id = 0
        self._next_var = 0
        self._name_counters: dict[str, int] = {}

    # --- Allocation ---

    def fresh_type(self) -> Generic:
        var = Generic(self._next_var)
        self._next_var += 1
        return var

    def synthetic_name(self, prefix: str) -> str:
        n = self._name_counters.get(prefix, 0)
        self._name_counters[prefix] = n + 1
        return f"${prefix}{n}"

    def _check_mutable(self) -> None:
        if self.frozen:
            raise RuntimeError("graph is frozen and can no longer be modified")

    def freeze(self) -> None:
        self.frozen = True

    # --- Vertices ---

    def add_vertex(self, name: str, node_class: str, ports: list[Port], **kwargs) -> Vertex:
        self._check_mutable()
        vertex = Vertex(id=self._next_id, name=name, node_class=node_class, ports=ports, **kwargs)
        self._next_id += 1
        self.vertices[vertex.id] = vertex
        return vertex

    def instantiate(
        self,
        template,
        name: str,
        lattice: TypeLattice,
        params: dict[str, Type] | None = None,
        line: int = 0,
        column: int = 0,
    ) -> Vertex:
        """Create a vertex from a NodeTemplate.

        Type parameters missing from ``params`` get fresh variables.
        """
        params = dict(params or {})
        ports = []
        for pt in template.ports:
            ports.append(self.make_port(pt.name, pt.direction, pt.kind, pt.type, pt.required, lattice, params))
        return self.add_vertex(
            name,
            template.path,
            ports,
            line=line,
            column=column,
            constraint=template.constraint,
            operator=template.operator,
            type_params=params,
        )

    def make_port(
        self,
        name: str,
        direction: str,
        kind: str,
        type_text: str,
        required: bool,
        lattice: TypeLattice,
        params: dict[str, Type],
    ) -> Port:
        per_edge = type_text == "dummy"
        if per_edge:
            port_type: Type = self.fresh_type()
        else:
            for token in _type_tokens(type_text):
                if is_type_param(token) and token not in params:
                    params[token] = self.fresh_type()
            port_type = parse_type(type_text, lattice, params)
        return Port(
            name=name,
            direction=PortDirection(direction),
            kind=PortKind(kind),
            type=port_type,
            required=required,
            per_edge=per_edge,
        )

    def remove_vertex(self, vertex_id: int) -> Vertex:
        self._check_mutable()
        vertex = self.vertices.pop(vertex_id)
        self.edges = [e for e in self.edges if e.src != vertex_id and e.dst != vertex_id]
        self.links = [lk for lk in self.links if vertex_id not in lk]
        self.constraints = [c for c in self.constraints if c.vertex != vertex_id]
        return vertex

    # --- Edges ---

    def connect(
        self,
        src: int,
        src_port: str,
        dst: int,
        dst_port: str,
        line: int = 0,
        column: int = 0,
    ) -> Edge:
        """Add an edge after checking direction, kind and single binding."""
        self._check_mutable()
        sv, dv = self.vertices[src], self.vertices[dst]
        sp, dp = sv.port(src_port), dv.port(dst_port)
        if sp is None or sp.direction is not PortDirection.OUT:
            raise PortBindingError(f"'{sv.name}' has no output port '{src_port}'", line or None, column or None)
        if dp is None or dp.direction is not PortDirection.IN:
            raise PortBindingError(f"'{dv.name}' has no input port '{dst_port}'", line or None, column or None)
        if sp.kind is not dp.kind:
            raise PortBindingError(
                f"cannot connect {sp.kind.value} port '{sv.name}.{src_port}' "
                f"to {dp.kind.value} port '{dv.name}.{dst_port}'",
                line or None,
                column or None,
            )
        if dp.kind is PortKind.DATA and self.incoming(dst, dst_port):
            raise PortBindingError(
                f"input '{dv.name}.{dst_port}' is already bound", line or None, column or None,
            )
        edge = Edge(src, src_port, dst, dst_port, sp.kind, line=line, column=column)
        self.edges.append(edge)
        return edge

    def disconnect(self, edge: Edge) -> None:
        self._check_mutable()
        self.edges.remove(edge)

    def link(self, a: int, b: int) -> None:
        """Structural link: keeps a and b in the same inference component."""
        self._check_mutable()
        self.links.append((a, b))

    def incoming(self, vertex_id: int, port: str | None = None) -> list[Edge]:
        return [
            e for e in self.edges
            if e.dst == vertex_id and (port is None or e.dst_port == port)
        ]

    def outgoing(self, vertex_id: int, port: str | None = None) -> list[Edge]:
        return [
            e for e in self.edges
            if e.src == vertex_id and (port is None or e.src_port == port)
        ]

    # --- Partitioning ---

    def components(self) -> list[list[int]]:
        """Connected components over edges and links, ordered by smallest id."""
        parent = {vid: vid for vid in self.vertices}

        def find(x: int) -> int:
            while parent[x] != x:
                parent[x] = parent[parent[x]]
                x = parent[x]
            return x

        pairs = [(e.src, e.dst) for e in self.edges] + list(self.links)
        for a, b in pairs:
            ra, rb = find(a), find(b)
            if ra != rb:
                parent[max(ra, rb)] = min(ra, rb)

        groups: dict[int, list[int]] = {}
        for vid in sorted(self.vertices):
            groups.setdefault(find(vid), []).append(vid)
        return [groups[root] for root in sorted(groups)]

    def find(self, name: str) -> list[Vertex]:
        """All vertices carrying ``name`` (names are unique per scope, not per graph)."""
        return [v for v in self.vertices.values() if v.name == name]

    def __len__(self) -> int:
        return len(self.vertices)


def _type_tokens(text: str) -> list[str]:
    return [t for t in text.replace("[", " ").replace("]", " ").split() if t]
