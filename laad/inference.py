"""Type inference: unification over graph edges.

Each connected component of the graph is an independent unification
problem. Types flow in both directions along edges, so a generic sink is
resolved from its concrete source and vice versa. ``dummy`` ports are
instantiated with a fresh variable per incident edge.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .errors import TypeCheckError
from .ir import Edge, Graph, TypeConstraint, Vertex
from .types import (
    BOOL,
    DOCUMENT_INT_RANGE,
    FLOAT,
    INTEGRAL_RANGES,
    INT,
    NULL,
    OBJECT,
    STRING,
    Generic,
    NullType,
    Primitive,
    RefID,
    Type,
    TypeLattice,
    free_vars,
    is_concrete,
)

logger = logging.getLogger(__name__)

INTEGRAL_LITERAL = "integral literal"
FRACTIONAL_LITERAL = "fractional literal"
NULL_LITERAL = "null literal"

CHAR = Primitive("char")


class UnificationError(Exception):
    def __init__(self, left: Type, right: Type, reason: str = ""):
        self.left = left
        self.right = right
        self.reason = reason
        super().__init__(reason or f"cannot unify {left} with {right}")


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------

class Substitution:
    """Union-find over type variables with literal-kind constraints."""

    def __init__(self, lattice: TypeLattice):
        self.lattice = lattice
        self._parent: dict[int, int] = {}
        self._bound: dict[int, Type] = {}
        self._literal: dict[int, str] = {}

    def find(self, var: int) -> int:
        root = var
        while self._parent.get(root, root) != root:
            root = self._parent[root]
        while var != root:
            self._parent[var], var = root, self._parent[var]
        return root

    def walk(self, t: Type) -> Type:
        while isinstance(t, Generic):
            root = self.find(t.id)
            if root not in self._bound:
                return Generic(root)
            t = self._bound[root]
        return t

    def resolve(self, t: Type) -> Type:
        t = self.walk(t)
        if isinstance(t, RefID):
            return RefID(self.resolve(t.target))
        return t

    def literal_kind(self, t: Type) -> str | None:
        t = self.walk(t)
        if isinstance(t, Generic):
            return self._literal.get(t.id)
        return None

    def describe(self, t: Type) -> str:
        t = self.resolve(t)
        kind = self.literal_kind(t)
        return kind if kind else str(t)

    # --- Constraints ---

    def _fits(self, kind: str, t: Type) -> bool:
        if kind == INTEGRAL_LITERAL:
            return self.lattice.is_numeric(t)
        if kind == FRACTIONAL_LITERAL:
            return self.lattice.is_fractional(t)
        return self.lattice.is_nullable(t)

    def constrain(self, t: Type, kind: str) -> None:
        t = self.walk(t)
        if not isinstance(t, Generic):
            if not self._fits(kind, t):
                raise UnificationError(t, t, f"{kind} does not fit {t}")
            return
        current = self._literal.get(t.id)
        self._literal[t.id] = self._merge_kinds(current, kind, t) if current else kind

    @staticmethod
    def _merge_kinds(a: str, b: str, t: Type) -> str:
        if a == b:
            return a
        if {a, b} == {INTEGRAL_LITERAL, FRACTIONAL_LITERAL}:
            return FRACTIONAL_LITERAL
        raise UnificationError(t, t, f"{a} does not fit {b}")

    def unify(self, a: Type, b: Type) -> None:
        a, b = self.walk(a), self.walk(b)
        if a == b:
            return
        if isinstance(a, Generic):
            self._bind(a, b)
        elif isinstance(b, Generic):
            self._bind(b, a)
        elif isinstance(a, RefID) and isinstance(b, RefID):
            self.unify(a.target, b.target)
        else:
            raise UnificationError(a, b)

    def _bind(self, var: Generic, t: Type) -> None:
        kind = self._literal.get(var.id)
        if isinstance(t, Generic):
            other = self._literal.get(t.id)
            self._parent[var.id] = t.id
            if kind:
                self._literal[t.id] = self._merge_kinds(other, kind, t) if other else kind
            return
        if var.id in free_vars(self.resolve(t)):
            raise UnificationError(var, t, f"recursive type: {var} occurs in {t}")
        if kind and not self._fits(kind, t):
            raise UnificationError(var, t, f"{kind} does not fit {t}")
        self._bound[var.id] = t

    def apply_default(self, t: Type) -> None:
        """Bind a still-open literal variable to its default type."""
        t = self.walk(t)
        if isinstance(t, RefID):
            self.apply_default(t.target)
            return
        if not isinstance(t, Generic):
            return
        kind = self._literal.get(t.id)
        if kind == INTEGRAL_LITERAL:
            self._bound[t.id] = INT
        elif kind == FRACTIONAL_LITERAL:
            self._bound[t.id] = FLOAT
        elif kind == NULL_LITERAL:
            self._bound[t.id] = NULL


# ---------------------------------------------------------------------------
# Problems and solutions
# ---------------------------------------------------------------------------

@dataclass
class EdgeSite:
    """One edge with the types of its two ends, dummy ends already instantiated."""
    edge: Edge
    src_type: Type
    dst_type: Type


@dataclass
class ComponentProblem:
    index: int
    vertices: dict[int, Vertex]
    sites: list[EdgeSite]
    constraints: list[TypeConstraint]


@dataclass
class ComponentSolution:
    index: int
    port_types: dict[tuple[int, str], Type] = field(default_factory=dict)
    param_types: dict[tuple[int, str], Type] = field(default_factory=dict)
    edge_types: list[tuple[Edge, Type]] = field(default_factory=list)
    conditionals: dict[int, tuple[str, Type | None]] = field(default_factory=dict)


def edge_label(graph_vertices: dict[int, Vertex], edge: Edge) -> str:
    src, dst = graph_vertices[edge.src], graph_vertices[edge.dst]
    return f"{src.name}.{edge.src_port} -> {dst.name}.{edge.dst_port}"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TypeInferenceEngine:
    """Solves every component of a graph and writes the types back."""

    def __init__(self, lattice: TypeLattice, workers: int = 1):
        self.lattice = lattice
        self.workers = max(1, workers)

    def run(self, graph: Graph) -> list[ComponentSolution]:
        problems = self._partition(graph)
        logger.debug("type inference: %d component(s), %d worker(s)", len(problems), self.workers)
        if self.workers > 1 and len(problems) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = [pool.submit(self.solve, p) for p in problems]
                # result() in submission order: the first failing component wins
                solutions = [f.result() for f in futures]
        else:
            solutions = [self.solve(p) for p in problems]
        for solution in solutions:
            self._apply(graph, solution)
        return solutions

    def _partition(self, graph: Graph) -> list[ComponentProblem]:
        problems = []
        for index, ids in enumerate(graph.components()):
            members = set(ids)
            sites = []
            for edge in graph.edges:
                if edge.src not in members:
                    continue
                src_port = graph.vertices[edge.src].port(edge.src_port)
                dst_port = graph.vertices[edge.dst].port(edge.dst_port)
                sites.append(EdgeSite(
                    edge=edge,
                    src_type=graph.fresh_type() if src_port.per_edge else src_port.type,
                    dst_type=graph.fresh_type() if dst_port.per_edge else dst_port.type,
                ))
            problems.append(ComponentProblem(
                index=index,
                vertices={vid: graph.vertices[vid] for vid in ids},
                sites=sites,
                constraints=[c for c in graph.constraints if c.vertex in members],
            ))
        return problems

    # --- Solving one component ---

    def solve(self, problem: ComponentProblem) -> ComponentSolution:
        subst = Substitution(self.lattice)
        vertices = problem.vertices

        for vertex in vertices.values():
            if vertex.has_value:
                self._seed_literal(subst, vertex)

        for constraint in problem.constraints:
            vertex = vertices[constraint.vertex]
            port = vertex.port(constraint.port)
            try:
                subst.unify(port.type, constraint.type)
            except UnificationError:
                raise TypeCheckError(
                    f"'{vertex.name}' is declared as {constraint.type} "
                    f"but produces {subst.describe(port.type)}",
                    constraint.line,
                    constraint.column,
                    edge=f"{vertex.name}.{port.name}",
                    left=subst.resolve(port.type),
                    right=constraint.type,
                ) from None

        for site in problem.sites:
            edge = site.edge
            if vertices[edge.dst].nullable and self._is_null(subst, site.src_type):
                continue
            try:
                subst.unify(site.src_type, site.dst_type)
            except UnificationError as e:
                label = edge_label(vertices, edge)
                detail = f" ({e.reason})" if e.reason else ""
                raise TypeCheckError(
                    f"type mismatch on {label}: {subst.describe(site.src_type)} "
                    f"vs {subst.describe(site.dst_type)}{detail}",
                    edge.line or None,
                    edge.column or None,
                    edge=label,
                    left=subst.resolve(site.src_type),
                    right=subst.resolve(site.dst_type),
                ) from None

        self._apply_defaults(subst, problem)
        conditionals = self._decide_conditionals(subst, problem)
        self._apply_defaults(subst, problem)

        for vertex in sorted(vertices.values(), key=lambda v: v.id):
            if vertex.constraint:
                self._check_constraint(subst, vertex)
            if vertex.node_class == "logix.cast":
                self._check_cast(subst, vertex)
            if vertex.has_value:
                self._check_literal_range(subst, vertex)

        solution = ComponentSolution(index=problem.index, conditionals=conditionals)
        for vertex in vertices.values():
            for port in vertex.ports:
                if not port.per_edge:
                    solution.port_types[(vertex.id, port.name)] = subst.resolve(port.type)
            for name, param in vertex.type_params.items():
                solution.param_types[(vertex.id, name)] = subst.resolve(param)
        for site in problem.sites:
            src = subst.resolve(site.src_type)
            solution.edge_types.append((site.edge, src if is_concrete(src) else subst.resolve(site.dst_type)))
        return solution

    def _seed_literal(self, subst: Substitution, vertex: Vertex) -> None:
        param = vertex.type_params.get("T")
        if param is None:
            return
        value = vertex.value
        if isinstance(value, bool):
            subst.unify(param, BOOL)
        elif isinstance(value, str):
            subst.unify(param, STRING)
        elif isinstance(value, int):
            subst.constrain(param, INTEGRAL_LITERAL)
        elif isinstance(value, float):
            subst.constrain(param, FRACTIONAL_LITERAL)
        elif value is None:
            subst.constrain(param, NULL_LITERAL)

    @staticmethod
    def _is_null(subst: Substitution, t: Type) -> bool:
        return isinstance(subst.walk(t), NullType) or subst.literal_kind(t) == NULL_LITERAL

    @staticmethod
    def _apply_defaults(subst: Substitution, problem: ComponentProblem) -> None:
        for vertex in problem.vertices.values():
            for port in vertex.ports:
                subst.apply_default(port.type)
            for param in vertex.type_params.values():
                subst.apply_default(param)
        for site in problem.sites:
            subst.apply_default(site.src_type)
            subst.apply_default(site.dst_type)

    # --- Conditionals ---

    def _decide_conditionals(
        self, subst: Substitution, problem: ComponentProblem,
    ) -> dict[int, tuple[str, Type | None]]:
        """Classify every sugar `if` as a value or a statement.

        Nested conditionals feed each other's branches, so undecided ones
        are retried until nothing changes; what is left is a statement.
        """
        pending = sorted(
            (v for v in problem.vertices.values() if v.node_class == "sugar.if"),
            key=lambda v: v.id,
        )
        decisions: dict[int, tuple[str, Type | None]] = {}
        while pending:
            progress = False
            for vertex in list(pending):
                decision = self._classify(subst, problem, vertex, force=False)
                if decision is not None:
                    decisions[vertex.id] = decision
                    pending.remove(vertex)
                    progress = True
            if not progress:
                for vertex in pending:
                    decisions[vertex.id] = self._classify(subst, problem, vertex, force=True)
                break
        return decisions

    def _classify(self, subst, problem, vertex: Vertex, force: bool):
        sites_in = [s for s in problem.sites if s.edge.dst == vertex.id]
        sites_out = [s for s in problem.sites if s.edge.src == vertex.id]
        payload = vertex.payload

        statement = (
            any(s.edge.dst_port == "trigger" for s in sites_in)
            or any(s.edge.src_port == "next" for s in sites_out)
            or not payload.has_else
        )
        branch_types = []
        if not statement:
            for port, _flow in payload.arms:
                site = next((s for s in sites_in if s.edge.dst_port == port), None)
                if site is None:
                    statement = True
                    break
                t = subst.resolve(site.dst_type)
                if not is_concrete(t):
                    if not force:
                        return None
                    statement = True
                    break
                branch_types.append(t)

        value_port = vertex.port("value")
        if not statement:
            lub = self.lattice.lub(branch_types)
            if lub == OBJECT:
                statement = True
            else:
                target = subst.resolve(value_port.type)
                if is_concrete(target):
                    for t in branch_types:
                        if not self.lattice.is_subtype(t, target):
                            raise TypeCheckError(
                                f"conditional branch of type {t} does not fit {target}",
                                vertex.line or None,
                                vertex.column or None,
                                edge=f"{vertex.name}.value",
                                left=t,
                                right=target,
                            )
                    return ("value", target)
                subst.unify(value_port.type, lub)
                return ("value", lub)

        if any(s.edge.src_port == "value" for s in sites_out):
            raise TypeCheckError(
                f"conditional '{vertex.name}' is a statement and produces no value",
                vertex.line or None,
                vertex.column or None,
                edge=f"{vertex.name}.value",
            )
        return ("statement", None)

    # --- Operator and cast checks ---

    def _satisfies(self, constraint: str, t: Type) -> bool:
        lat = self.lattice
        if constraint == "additive":
            return lat.is_numeric(t) or t == STRING
        if constraint == "numeric":
            return lat.is_numeric(t)
        if constraint == "integral":
            return lat.is_integral(t)
        if constraint == "bitwise":
            return lat.is_integral(t) or t == BOOL
        if constraint == "comparable":
            return lat.is_numeric(t) or t == CHAR
        return True

    def _check_constraint(self, subst: Substitution, vertex: Vertex) -> None:
        param = vertex.type_params.get("T")
        if param is None:
            return
        t = subst.resolve(param)
        if not is_concrete(t) or self._satisfies(vertex.constraint, t):
            return
        if vertex.operator:
            message = f"operator '{vertex.operator}' is not defined for {t} operands"
        else:
            message = f"'{vertex.name}' needs {vertex.constraint} values, got {t}"
        raise TypeCheckError(
            message, vertex.line or None, vertex.column or None, edge=vertex.name, left=t,
        )

    def _check_cast(self, subst: Substitution, vertex: Vertex) -> None:
        src = subst.resolve(vertex.port("value").type)
        dst = subst.resolve(vertex.port("result").type)
        if not (is_concrete(src) and is_concrete(dst)):
            return
        if not self.lattice.can_cast(src, dst):
            raise TypeCheckError(
                f"cannot cast {src} to {dst}",
                vertex.line or None,
                vertex.column or None,
                edge=vertex.name,
                left=src,
                right=dst,
            )

    def _check_literal_range(self, subst: Substitution, vertex: Vertex) -> None:
        value = vertex.value
        if isinstance(value, bool) or not isinstance(value, int):
            return
        param = vertex.type_params.get("T")
        t = subst.resolve(param) if param is not None else None
        low, high = DOCUMENT_INT_RANGE
        if not low <= value <= high:
            raise TypeCheckError(
                f"integer literal {value} does not fit in 64 bits",
                vertex.line or None,
                vertex.column or None,
                edge=vertex.name,
                left=t,
            )
        bounds = INTEGRAL_RANGES.get(t.name) if isinstance(t, Primitive) else None
        if bounds is not None and not bounds[0] <= value <= bounds[1]:
            raise TypeCheckError(
                f"integer literal {value} is out of range for {t}",
                vertex.line or None,
                vertex.column or None,
                edge=vertex.name,
                left=t,
            )

    # --- Merge ---

    @staticmethod
    def _apply(graph: Graph, solution: ComponentSolution) -> None:
        for (vid, name), t in solution.port_types.items():
            graph.vertices[vid].port(name).type = t
        for (vid, name), t in solution.param_types.items():
            graph.vertices[vid].type_params[name] = t
        for edge, t in solution.edge_types:
            edge.type = t
        for vid, (mode, t) in solution.conditionals.items():
            payload = graph.vertices[vid].payload
            payload.mode = mode
            payload.value_type = t
