"""Graph builder: lowers the AST into the initial property graph.

One vertex per node definition or sub-expression, one edge per ``->``.
Sugared control flow is kept as temporary ``sugar.*`` vertices whose ports
carry the boundary connections; the desugaring pass replaces them after
type inference has decided what each construct is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .ast_nodes import (
    BinaryOp,
    Block,
    Cast,
    ClassDef,
    Comment,
    Connection,
    GenericFor,
    IfExpr,
    Import,
    Literal,
    NodeDef,
    NodePath,
    NodeRef,
    Program,
    RangeFor,
    UnaryOp,
    WhileLoop,
)
from .errors import PortBindingError, ScopeError, TypeCheckError
from .ir import Edge, Graph, PortDirection, PortKind, TypeConstraint, Vertex
from .templates import NodeTemplate, TemplateLibrary
from .types import Type, parse_type

logger = logging.getLogger(__name__)

Term = tuple[Vertex, Optional[str]]  # a vertex plus an explicit port, None = resolve by position


# ---------------------------------------------------------------------------
# Sugar payloads
# ---------------------------------------------------------------------------

@dataclass
class Fragment:
    """Impulse boundary of a lowered block: where flow enters and leaves."""
    entry: tuple[int, str] | None = None
    exit: tuple[int, str] | None = None

    @property
    def empty(self) -> bool:
        return self.entry is None


@dataclass
class IfPayload:
    # (value port, flow fragment or None) per branch, the else arm last
    arms: list[tuple[str, Fragment | None]]
    has_else: bool
    mode: str | None = None  # "value" or "statement", set by inference
    value_type: Type | None = None


@dataclass
class LoopPayload:
    body: Fragment


@dataclass
class RangeForPayload:
    variable: int
    body: Fragment


@dataclass
class ForPayload:
    start: Fragment | None
    step: Fragment | None
    body: Fragment


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------

@dataclass
class Scope:
    parent: Scope | None = None
    names: dict[str, Term] = field(default_factory=dict)
    pending: dict[str, NodeDef] = field(default_factory=dict)

    def child(self) -> Scope:
        return Scope(parent=self)

    def declare(self, nd: NodeDef) -> None:
        if nd.name in self.pending or nd.name in self.names:
            raise ScopeError(f"'{nd.name}' is already defined in this scope", nd.line, nd.column)
        self.pending[nd.name] = nd


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class GraphBuilder:
    """Builds a Graph from a Program against a template library."""

    def __init__(self, library: TemplateLibrary | None = None):
        self.library = library or TemplateLibrary.default()
        self.lattice = self.library.lattice
        self.graph = Graph()
        self.aliases: dict[str, tuple[str, ...]] = {}
        self._in_progress: dict[tuple[int, str], NodeDef] = {}

    def build(self, program: Program) -> Graph:
        self.graph = Graph()
        self.aliases = {}
        scope = Scope()
        statements = [s for s in program.statements if not isinstance(s, Comment)]
        for stmt in statements:
            if isinstance(stmt, Import):
                self._import(stmt)
        self._run_items([s for s in statements if not isinstance(s, Import)], scope)
        logger.debug(
            "built graph: %d vertices, %d edges", len(self.graph.vertices), len(self.graph.edges),
        )
        return self.graph

    # --- Statements ---

    def _import(self, stmt: Import) -> None:
        if stmt.alias in self.aliases:
            raise ScopeError(f"import alias '{stmt.alias}' is already defined", stmt.line, stmt.column)
        self.aliases[stmt.alias] = stmt.path

    def _run_items(self, items, scope: Scope, on_chain=None) -> None:
        """Declare the definitions of one scope, then lower items in order.

        ``on_chain`` sees the terms of each non-definition item right after
        it is lowered.
        """
        for item in items:
            if isinstance(item, NodeDef):
                scope.declare(item)
        for item in items:
            if isinstance(item, NodeDef):
                if item.name in scope.pending:
                    self._define(scope.pending.pop(item.name), scope)
                continue
            if isinstance(item, Connection):
                terms = self._chain(item.items, scope, item)
            else:
                terms = [self._expr(item, scope)]
            if on_chain is not None:
                on_chain(terms)

    def _define(self, nd: NodeDef, scope: Scope) -> Term:
        key = (id(scope), nd.name)
        self._in_progress[key] = nd
        try:
            term = self._bind(nd, scope)
        finally:
            del self._in_progress[key]
        vertex = term[0]
        if nd.type_name is not None:
            self._annotate(nd, term)
        vertex.attributes.extend(nd.attributes)
        scope.names[nd.name] = term
        return term

    def _bind(self, nd: NodeDef, scope: Scope) -> Term:
        binding = nd.binding
        if isinstance(binding, ClassDef):
            return (self._class_vertex(nd, binding), None)
        if nd.is_var:
            return (self._variable(nd), None)
        if isinstance(binding, NodePath):
            if self._lookup(binding.parts[0], scope) is not None:
                return self._resolve_ref(NodeRef(binding.parts, None, binding.line, binding.column), scope)
            template, rest = self._template_for(binding.parts)
            if template is None or rest:
                what = "undeclared identifier" if len(binding.parts) == 1 else "unknown node template"
                raise ScopeError(f"{what} '{binding}'", binding.line, binding.column)
            return (self._instantiate(template, nd.name, nd), None)
        term = self._expr(binding, scope)
        if term[0].is_synthetic:
            term[0].name = nd.name
        return term

    def _variable(self, nd: NodeDef) -> Vertex:
        if not isinstance(nd.binding, Literal):
            raise PortBindingError(
                f"variable '{nd.name}' must be initialised with a literal", nd.line, nd.column,
            )
        vertex = self._instantiate(self.library.get("logix.variables.local"), nd.name, nd)
        vertex.value = nd.binding.value
        vertex.has_value = True
        return vertex

    def _annotate(self, nd: NodeDef, term: Term) -> None:
        vertex, port_name = term
        port = vertex.port(port_name) if port_name else None
        if port is None or port.direction is not PortDirection.OUT or port.kind is not PortKind.DATA:
            port = next((p for p in vertex.outputs if p.kind is PortKind.DATA), None)
        if port is None:
            raise TypeCheckError(
                f"'{nd.name}' has no data output to annotate with '{nd.type_name}'", nd.line, nd.column,
            )
        self.graph.constraints.append(
            TypeConstraint(vertex.id, port.name, self._type(str(nd.type_name), nd), nd.line, nd.column)
        )

    def _class_vertex(self, nd: NodeDef, cls: ClassDef) -> Vertex:
        params: dict[str, Type] = {}
        ports = []
        for decl in cls.ports:
            type_text = str(decl.type_name)
            kind = "impulse" if type_text == "impulse" else "data"
            try:
                ports.append(self.graph.make_port(
                    decl.name, decl.direction, kind, type_text,
                    decl.direction == "in" and kind == "data", self.lattice, params,
                ))
            except ValueError as e:
                raise TypeCheckError(str(e), cls.line, cls.column) from e
        return self.graph.add_vertex(
            nd.name, f"user.{nd.name}", ports, line=nd.line, column=nd.column, type_params=params,
        )

    # --- Name resolution ---

    def _lookup(self, name: str, scope: Scope) -> Term | None:
        current: Scope | None = scope
        while current is not None:
            if name in current.names:
                return current.names[name]
            nd = self._in_progress.get((id(current), name))
            if nd is not None:
                raise ScopeError(f"'{name}' is defined in terms of itself", nd.line, nd.column)
            if name in current.pending:
                return self._define(current.pending.pop(name), current)
            current = current.parent
        return None

    def _template_for(self, parts: tuple[str, ...]) -> tuple[NodeTemplate | None, tuple[str, ...]]:
        if parts[0] in self.aliases:
            parts = self.aliases[parts[0]] + parts[1:]
        for k in range(len(parts), 0, -1):
            template = self.library.get(".".join(parts[:k]))
            if template is not None:
                return template, parts[k:]
        return None, ()

    def _resolve_ref(self, ref: NodeRef, scope: Scope) -> Term:
        term = self._lookup(ref.parts[0], scope)
        if term is not None:
            vertex, port = term
            rest = ref.parts[1:]
        else:
            template, rest = self._template_for(ref.parts)
            if template is None:
                raise ScopeError(f"undeclared identifier '{ref.parts[0]}'", ref.line, ref.column)
            short = template.path.rsplit(".", 1)[-1]
            vertex = self._instantiate(template, self.graph.synthetic_name(short), ref)
            port = None
        if len(rest) > 1 or (rest and port is not None):
            raise ScopeError(f"'{ref}' does not name a port", ref.line, ref.column)
        if rest:
            if vertex.port(rest[0]) is None:
                raise PortBindingError(f"'{vertex.name}' has no port '{rest[0]}'", ref.line, ref.column)
            port = rest[0]
        if ref.index is not None:
            if port is not None:
                raise ScopeError(f"'{ref}' names a port twice", ref.line, ref.column)
            if not 0 <= ref.index < len(vertex.ports):
                raise PortBindingError(
                    f"'{vertex.name}' has no port at position {ref.index}", ref.line, ref.column,
                )
            port = vertex.ports[ref.index].name
        return (vertex, port)

    # --- Expressions ---

    def _expr(self, expr, scope: Scope) -> Term:
        if isinstance(expr, Literal):
            return (self._literal(expr), None)
        if isinstance(expr, NodeRef):
            return self._resolve_ref(expr, scope)
        if isinstance(expr, BinaryOp):
            return (self._operator(expr.operator, (expr.left, expr.right), expr, scope), None)
        if isinstance(expr, UnaryOp):
            return (self._operator(expr.operator, (expr.operand,), expr, scope), None)
        if isinstance(expr, Cast):
            return (self._cast(expr, scope), None)
        if isinstance(expr, Connection):
            return self._chain(expr.items, scope, expr)[-1]
        if isinstance(expr, IfExpr):
            return (self._if(expr, scope), None)
        if isinstance(expr, WhileLoop):
            return (self._while(expr, scope), None)
        if isinstance(expr, RangeFor):
            return (self._range_for(expr, scope), None)
        if isinstance(expr, GenericFor):
            return (self._generic_for(expr, scope), None)
        line = getattr(expr, "line", None)
        raise ScopeError(f"a {type(expr).__name__.lower()} cannot be used as a value", line)

    def _literal(self, lit: Literal) -> Vertex:
        vertex = self._instantiate(
            self.library.get("logix.input.value"), self.graph.synthetic_name("lit"), lit,
        )
        vertex.value = lit.value
        vertex.has_value = True
        return vertex

    def _operator(self, symbol: str, operands, node, scope: Scope) -> Vertex:
        try:
            template = self.library.operator(symbol, len(operands))
        except KeyError as e:
            raise TypeCheckError(f"operator '{symbol}' is not supported", node.line, node.column) from e
        vertex = self._instantiate(template, self.graph.synthetic_name(template.path.rsplit(".", 1)[-1]), node)
        inputs = [p for p in vertex.inputs if p.kind is PortKind.DATA]
        for port, operand in zip(inputs, operands):
            term = self._expr(operand, scope)
            self.graph.connect(term[0].id, self._data_output(term, node), vertex.id, port.name, node.line, node.column)
        return vertex

    def _cast(self, expr: Cast, scope: Scope) -> Vertex:
        vertex = self._instantiate(self.library.get("logix.cast"), self.graph.synthetic_name("cast"), expr)
        target = self._type(str(expr.target), expr)
        vertex.port("result").type = target
        vertex.type_params["R"] = target
        term = self._expr(expr.operand, scope)
        self.graph.connect(term[0].id, self._data_output(term, expr), vertex.id, "value", expr.line, expr.column)
        return vertex

    # --- Connections ---

    def _chain(self, items, scope: Scope, node) -> list[Term]:
        terms = [self._expr(item, scope) for item in items]
        for left, right in zip(terms, terms[1:]):
            self._connect(left, right, node)
        return terms

    def _connect(self, left: Term, right: Term, node) -> Edge:
        src, src_hint = left
        dst, dst_hint = right
        src_port = src.port(src_hint) if src_hint else None
        if src_port is not None and src_port.direction is not PortDirection.OUT:
            src_port = None
        dst_port = dst.port(dst_hint) if dst_hint else None
        if dst_port is not None and dst_port.direction is not PortDirection.IN:
            dst_port = None

        outputs = [src_port] if src_port else src.outputs
        inputs = [dst_port] if dst_port else self._connectable_inputs(dst)
        for out in outputs:
            for inp in inputs:
                if out.kind is not inp.kind:
                    continue
                if dst_port is None and inp.kind is PortKind.DATA and self.graph.incoming(dst.id, inp.name):
                    continue
                return self.graph.connect(src.id, out.name, dst.id, inp.name, node.line, node.column)
        raise PortBindingError(
            f"cannot connect '{src.name}' to '{dst.name}': no compatible ports", node.line, node.column,
        )

    @staticmethod
    def _connectable_inputs(vertex: Vertex):
        # Sugar vertices only take the flow from outside; their other inputs are internal
        if vertex.node_class.startswith("sugar."):
            return [p for p in vertex.inputs if p.name == "trigger"]
        return vertex.inputs

    def _data_output(self, term: Term, node) -> str:
        vertex, port_name = term
        if port_name is not None:
            port = vertex.port(port_name)
            if port.direction is PortDirection.OUT and port.kind is PortKind.DATA:
                return port_name
        for port in vertex.outputs:
            if port.kind is PortKind.DATA:
                return port.name
        raise PortBindingError(f"'{vertex.name}' has no data output", node.line, node.column)

    # --- Flow fragments ---

    @staticmethod
    def _impulse_input(vertex: Vertex) -> str | None:
        for port in vertex.inputs:
            if port.kind is PortKind.IMPULSE:
                return port.name
        return None

    @staticmethod
    def _impulse_output(vertex: Vertex) -> str | None:
        for port in vertex.outputs:
            if port.kind is PortKind.IMPULSE:
                return port.name
        return None

    def _flow_fragment(self, terms: list[Term]) -> Fragment:
        """Entry is the first vertex with an unfed impulse input, exit the last impulse output."""
        entry = None
        for vertex, _ in terms:
            port = self._impulse_input(vertex)
            if port is not None and not self.graph.incoming(vertex.id, port):
                entry = (vertex.id, port)
                break
        exit_ = None
        for vertex, _ in reversed(terms):
            port = self._impulse_output(vertex)
            if port is not None:
                exit_ = (vertex.id, port)
                break
        return Fragment(entry=entry, exit=exit_ if entry else None)

    def _block(self, block: Block, scope: Scope) -> Fragment:
        fragments: list[Fragment] = []
        self._run_items(block.items, scope, lambda terms: fragments.append(self._flow_fragment(terms)))
        steps = [frag for frag in fragments if not frag.empty]
        for prev, nxt in zip(steps, steps[1:]):
            if prev.exit is None:
                vertex = self.graph.vertices[prev.entry[0]]
                raise PortBindingError(
                    f"flow cannot continue after '{vertex.name}'", vertex.line or None, vertex.column or None,
                )
            self.graph.connect(*prev.exit, *nxt.entry, block.line, block.column)
        if not steps:
            return Fragment()
        return Fragment(entry=steps[0].entry, exit=steps[-1].exit)

    def _link_fragment(self, sugar: Vertex, fragment: Fragment | None) -> None:
        if fragment is None:
            return
        for end in (fragment.entry, fragment.exit):
            if end is not None:
                self.graph.link(sugar.id, end[0])

    # --- Sugared control flow ---

    def _sugar(self, kind: str, node, ports: list[tuple], params: dict[str, Type]) -> Vertex:
        built = [
            self.graph.make_port(name, direction, port_kind, type_text, required, self.lattice, params)
            for name, direction, port_kind, type_text, required in ports
        ]
        prefix = "for" if kind.startswith("for") else kind
        return self.graph.add_vertex(
            self.graph.synthetic_name(prefix), f"sugar.{kind}", built,
            line=node.line, column=node.column, type_params=params,
        )

    def _if(self, expr: IfExpr, scope: Scope) -> Vertex:
        n = len(expr.branches)
        ports = [("trigger", "in", "impulse", "impulse", False)]
        ports += [(f"cond_{i}", "in", "data", "bool", True) for i in range(n)]
        ports += [(f"branch_{i}", "in", "data", "dummy", False) for i in range(n)]
        if expr.else_body is not None:
            ports.append(("branch_else", "in", "data", "dummy", False))
        ports += [("next", "out", "impulse", "impulse", False), ("value", "out", "data", "T", False)]
        vertex = self._sugar("if", expr, ports, {})

        arms = []
        for i, branch in enumerate(expr.branches):
            cond = self._expr(branch.condition, scope)
            self.graph.connect(cond[0].id, self._data_output(cond, expr), vertex.id, f"cond_{i}", expr.line, expr.column)
            arms.append((f"branch_{i}", self._arm(branch.body, scope, vertex, f"branch_{i}", expr)))
        if expr.else_body is not None:
            arms.append(("branch_else", self._arm(expr.else_body, scope, vertex, "branch_else", expr)))
        vertex.payload = IfPayload(arms=arms, has_else=expr.else_body is not None)
        return vertex

    def _arm(self, body, scope: Scope, sugar: Vertex, port: str, node) -> Fragment | None:
        if isinstance(body, Block):
            fragment = self._block(body, scope.child())
            self._link_fragment(sugar, fragment)
            return fragment
        term = self._expr(body, scope)
        vertex = term[0]
        if vertex.node_class != "sugar.if" and self._impulse_input(vertex) is not None:
            fragment = self._flow_fragment([term])
            self._link_fragment(sugar, fragment)
            return fragment
        self.graph.connect(vertex.id, self._data_output(term, node), sugar.id, port, node.line, node.column)
        return None

    def _while(self, expr: WhileLoop, scope: Scope) -> Vertex:
        vertex = self._sugar("while", expr, [
            ("trigger", "in", "impulse", "impulse", False),
            ("condition", "in", "data", "bool", True),
            ("next", "out", "impulse", "impulse", False),
        ], {})
        cond = self._expr(expr.condition, scope)
        self.graph.connect(cond[0].id, self._data_output(cond, expr), vertex.id, "condition", expr.line, expr.column)
        body = self._block(expr.body, scope.child())
        self._link_fragment(vertex, body)
        vertex.payload = LoopPayload(body=body)
        return vertex

    def _range_for(self, expr: RangeFor, scope: Scope) -> Vertex:
        params: dict[str, Type] = {}
        vertex = self._sugar("for_range", expr, [
            ("trigger", "in", "impulse", "impulse", False),
            ("next", "out", "impulse", "impulse", False),
            ("start", "in", "data", "T", True),
            ("end", "in", "data", "T", True),
        ], params)
        vertex.constraint = "numeric"
        variable = self._instantiate(
            self.library.get("logix.variables.local"), expr.variable, expr, params={"T": params["T"]},
        )
        self.graph.link(vertex.id, variable.id)
        for port, bound in (("start", expr.start), ("end", expr.end)):
            term = self._expr(bound, scope)
            self.graph.connect(term[0].id, self._data_output(term, expr), vertex.id, port, expr.line, expr.column)

        body_scope = scope.child()
        body_scope.names[expr.variable] = (variable, None)
        body = self._block(expr.body, body_scope)
        self._link_fragment(vertex, body)
        vertex.payload = RangeForPayload(variable=variable.id, body=body)
        return vertex

    def _generic_for(self, expr: GenericFor, scope: Scope) -> Vertex:
        for_scope = scope.child()
        vertex = self._sugar("for", expr, [
            ("trigger", "in", "impulse", "impulse", False),
            ("condition", "in", "data", "bool", True),
            ("next", "out", "impulse", "impulse", False),
        ], {})
        start = self._flow_part(expr.start, for_scope, vertex, expr, "start")
        cond = self._expr(expr.condition, for_scope)
        self.graph.connect(cond[0].id, self._data_output(cond, expr), vertex.id, "condition", expr.line, expr.column)
        step = self._flow_part(expr.step, for_scope, vertex, expr, "step")
        body = self._block(expr.body, for_scope.child())
        self._link_fragment(vertex, body)
        vertex.payload = ForPayload(start=start, step=step, body=body)
        return vertex

    def _flow_part(self, part, scope: Scope, sugar: Vertex, node, role: str) -> Fragment | None:
        if part is None:
            return None
        items = part.items if isinstance(part, Connection) else (part,)
        fragment = self._flow_fragment(self._chain(items, scope, node))
        if fragment.empty or fragment.exit is None:
            raise PortBindingError(f"for-loop {role} must be a flow that continues", node.line, node.column)
        self._link_fragment(sugar, fragment)
        return fragment

    # --- Helpers ---

    def _instantiate(self, template: NodeTemplate, name: str, node, params=None) -> Vertex:
        try:
            return self.graph.instantiate(
                template, name, self.lattice, params,
                line=getattr(node, "line", 0), column=getattr(node, "column", 0),
            )
        except ValueError as e:
            raise TypeCheckError(str(e), getattr(node, "line", None), getattr(node, "column", None)) from e

    def _type(self, text: str, node) -> Type:
        try:
            return parse_type(text, self.lattice)
        except ValueError as e:
            raise TypeCheckError(str(e), node.line, node.column) from e
