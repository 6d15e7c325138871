"""Tests for laad.builder."""

import pytest

from laad.builder import IfPayload, RangeForPayload
from laad.errors import PortBindingError, ScopeError, TypeCheckError
from laad.ir import PortKind
from laad.types import FLOAT


def _one(graph, name):
    matches = graph.find(name)
    assert len(matches) == 1, f"expected one vertex named {name!r}, got {len(matches)}"
    return matches[0]


# ---------------------------------------------------------------------------
# Vertices and edges
# ---------------------------------------------------------------------------

class TestVertices:

    def test_hello_world(self, build, hello_source):
        graph = build(hello_source)
        assert len(graph) == 2
        display = _one(graph, "display")
        literal = _one(graph, "$lit0")
        assert display.node_class == "logix.display"
        assert literal.node_class == "logix.input.value"
        assert literal.value == "Hello, World!"
        assert len(graph.edges) == 1
        edge = graph.edges[0]
        assert (edge.src, edge.src_port, edge.dst, edge.dst_port) == (literal.id, "value", display.id, "value")
        assert edge.kind is PortKind.DATA

    def test_expression_binding_takes_the_name(self, build):
        graph = build("x = 1 + 2")
        x = _one(graph, "x")
        assert x.node_class == "logix.operators.add"
        assert [e.dst_port for e in graph.incoming(x.id)] == ["a", "b"]

    def test_literal_binding(self, build):
        graph = build('greeting = "hi"')
        v = _one(graph, "greeting")
        assert v.has_value
        assert v.value == "hi"

    def test_inline_template_reference(self, build):
        graph = build("start = logix.events.on_start\nstart -> logix.actions.pulse")
        pulse = _one(graph, "$pulse0")
        assert pulse.node_class == "logix.actions.pulse"

    def test_source_location(self, build):
        graph = build("\n  d = logix.display\n  1 -> d")
        d = _one(graph, "d")
        assert (d.line, d.column) == (2, 3)

    def test_user_class(self, build):
        graph = build("sink = class { in v: int; out done: impulse }")
        sink = _one(graph, "sink")
        assert sink.node_class == "user.sink"
        assert sink.port("v").required
        assert sink.port("done").kind is PortKind.IMPULSE

    def test_variable(self, build):
        graph = build("var count = 3")
        count = _one(graph, "count")
        assert count.node_class == "logix.variables.local"
        assert count.value == 3

    def test_variable_needs_literal(self, build):
        with pytest.raises(PortBindingError, match="initialised with a literal"):
            build("var count = 1 + 2")

    def test_annotation_becomes_constraint(self, build):
        graph = build("x: float = 1")
        assert len(graph.constraints) == 1
        constraint = graph.constraints[0]
        assert constraint.type == FLOAT
        assert constraint.port == "value"

    def test_annotation_with_unknown_type(self, build):
        with pytest.raises(TypeCheckError, match="unknown type"):
            build("x: Widget = 1")

    def test_attributes_attached(self, build, pinned_source):
        graph = build(pinned_source)
        assert _one(graph, "kept").attribute("no_remove") is not None
        assert _one(graph, "dropped").attributes == []


class TestConnections:

    def test_chain_pairs_each_neighbour(self, build):
        graph = build('''
            start = logix.events.on_start
            p1 = logix.actions.pulse
            p2 = logix.actions.pulse
            start -> p1 -> p2
        ''')
        pairs = [(graph.vertices[e.src].name, e.src_port, graph.vertices[e.dst].name, e.dst_port) for e in graph.edges]
        assert pairs == [("start", "fire", "p1", "trigger"), ("p1", "next", "p2", "trigger")]
        assert all(e.kind is PortKind.IMPULSE for e in graph.edges)

    def test_port_by_name_and_index(self, build):
        graph = build('''
            w = logix.actions.write
            var x = 0
            x.reference -> w.target
            5 -> w[2]
        ''')
        w = _one(graph, "w")
        assert sorted(e.dst_port for e in graph.incoming(w.id)) == ["target", "value"]

    def test_auto_pairing_skips_bound_inputs(self, build):
        graph = build("op = logix.operators.add\n1 -> op\n2 -> op")
        op = _one(graph, "op")
        ports = {e.dst_port: graph.vertices[e.src].value for e in graph.incoming(op.id)}
        assert ports == {"a": 1, "b": 2}

    def test_forward_reference(self, build):
        graph = build('"hi" -> d\nd = logix.display')
        assert len(graph.edges) == 1

    def test_import_alias(self, build):
        graph = build("import logix.flow\nw = flow.while")
        assert _one(graph, "w").node_class == "logix.flow.while"

    def test_alias_reuses_vertex(self, build):
        graph = build("d = logix.display\ne = d\n1 -> e")
        assert len(graph.find("e")) == 0
        assert len(graph.incoming(_one(graph, "d").id)) == 1


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------

class TestScopes:

    def test_undeclared(self, build):
        with pytest.raises(ScopeError, match="undeclared identifier 'x'"):
            build("d = logix.display\nx -> d")

    def test_unknown_template(self, build):
        with pytest.raises(ScopeError, match="unknown node template 'logix.nothing'"):
            build("d = logix.nothing")

    def test_duplicate(self, build):
        with pytest.raises(ScopeError, match="'a' is already defined") as exc:
            build("a = 1\na = 2")
        assert exc.value.line == 2

    def test_duplicate_import(self, build):
        with pytest.raises(ScopeError, match="import alias 'flow'"):
            build("import logix.flow\nimport other.flow")

    def test_self_reference(self, build):
        with pytest.raises(ScopeError, match="defined in terms of itself"):
            build("a = b + 1\nb = a + 1")

    def test_block_may_shadow(self, build):
        graph = build('''
            start = logix.events.on_start
            log = logix.actions.log
            "outer" -> log.message
            start -> while (false) {
                log = logix.actions.log
                "inner" -> log.message
            }
        ''')
        assert len(graph.find("log")) == 2

    def test_block_names_do_not_leak(self, build):
        with pytest.raises(ScopeError, match="undeclared identifier 'inner'"):
            build('''
                start = logix.events.on_start
                start -> while (false) {
                    inner = logix.actions.pulse
                }
                d = logix.display
                inner -> d
            ''')


class TestPortBinding:

    def test_unknown_port(self, build):
        with pytest.raises(PortBindingError, match="has no port 'nope'"):
            build("d = logix.display\n1 -> d.nope")

    def test_index_out_of_range(self, build):
        with pytest.raises(PortBindingError, match="position 5"):
            build("d = logix.display\n1 -> d[5]")

    def test_double_bind(self, build):
        with pytest.raises(PortBindingError, match="'d.value' is already bound"):
            build("d = logix.display\n1 -> d.value\n2 -> d.value")

    def test_no_compatible_ports(self, build):
        with pytest.raises(PortBindingError, match="no compatible ports"):
            build("start = logix.events.on_start\nd = logix.display\nstart -> d")

    def test_flow_cannot_continue_after_sink(self, build):
        with pytest.raises(PortBindingError, match="flow cannot continue"):
            build('''
                start = logix.events.on_start
                start -> while (false) {
                    s = class { in go: impulse }
                    p = logix.actions.pulse
                    s
                    p
                }
            ''')


# ---------------------------------------------------------------------------
# Sugar vertices
# ---------------------------------------------------------------------------

class TestSugar:

    def test_conditional(self, build, value_conditional_source):
        graph = build(value_conditional_source)
        x = _one(graph, "x")
        assert x.node_class == "sugar.if"
        assert isinstance(x.payload, IfPayload)
        assert x.payload.has_else
        assert [port for port, _ in x.payload.arms] == ["branch_0", "branch_else"]
        assert x.payload.mode is None

    def test_statement_conditional_arm_is_flow(self, build, statement_conditional_source):
        graph = build(statement_conditional_source)
        sugar = _one(graph, "$if0")
        (port, flow), = sugar.payload.arms
        log = _one(graph, "log")
        assert flow.entry == (log.id, "trigger")
        assert flow.exit == (log.id, "next")
        assert graph.incoming(sugar.id, "trigger")

    def test_range_for(self, build, range_for_source):
        graph = build(range_for_source)
        sugar = _one(graph, "$for0")
        assert sugar.node_class == "sugar.for_range"
        assert isinstance(sugar.payload, RangeForPayload)
        i = _one(graph, "i")
        assert sugar.payload.variable == i.id
        assert i.type_params["T"] == sugar.type_params["T"]
        assert (sugar.id, i.id) in graph.links

    def test_loop_body_sequenced(self, build):
        graph = build('''
            start = logix.events.on_start
            start -> while (true) {
                a = logix.actions.pulse
                b = logix.actions.pulse
                a
                b
            }
        ''')
        a, b = _one(graph, "a"), _one(graph, "b")
        assert [(e.src, e.dst) for e in graph.incoming(b.id, "trigger")] == [(a.id, b.id)]
        body = _one(graph, "$while0").payload.body
        assert body.entry == (a.id, "trigger")
        assert body.exit == (b.id, "next")
