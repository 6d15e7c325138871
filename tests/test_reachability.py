"""Tests for laad.reachability."""

from laad.ir import Graph
from laad.reachability import eliminate_unreachable, reachable_vertices
from laad.templates import TemplateLibrary


def _graph():
    library = TemplateLibrary.default()
    graph = Graph()

    def add(path, name):
        return graph.instantiate(library.get(path), name, library.lattice)

    return graph, add


class TestReachableVertices:

    def test_forward_from_roots(self):
        graph, add = _graph()
        src = add("logix.input.value", "src")
        sink = add("logix.display", "sink")
        graph.connect(src.id, "value", sink.id, "value")
        assert reachable_vertices(graph) == {src.id, sink.id}

    def test_lone_root_is_not_reachable(self):
        graph, add = _graph()
        add("logix.events.on_start", "idle")
        assert reachable_vertices(graph) == set()

    def test_vertex_with_inputs_is_not_a_root(self):
        graph, add = _graph()
        a = add("logix.actions.pulse", "a")
        b = add("logix.actions.pulse", "b")
        graph.connect(a.id, "next", b.id, "trigger")
        assert reachable_vertices(graph) == set()

    def test_cycles_are_followed(self):
        graph, add = _graph()
        start = add("logix.events.on_start", "start")
        a = add("logix.actions.pulse", "a")
        b = add("logix.actions.pulse", "b")
        graph.connect(start.id, "fire", a.id, "trigger")
        graph.connect(a.id, "next", b.id, "trigger")
        graph.connect(b.id, "next", a.id, "trigger")
        assert reachable_vertices(graph) == {start.id, a.id, b.id}


class TestElimination:

    def test_removes_and_reports(self):
        graph, add = _graph()
        start = add("logix.events.on_start", "start")
        used = add("logix.actions.pulse", "used")
        unused = add("logix.actions.pulse", "unused")
        graph.connect(start.id, "fire", used.id, "trigger")
        removed = eliminate_unreachable(graph)
        assert [v.name for v in removed] == ["unused"]
        assert unused.id not in graph.vertices
        assert set(graph.vertices) == {start.id, used.id}

    def test_edges_of_removed_vertices_go_too(self):
        graph, add = _graph()
        a = add("logix.actions.pulse", "a")
        b = add("logix.actions.pulse", "b")
        graph.connect(a.id, "next", b.id, "trigger")
        eliminate_unreachable(graph)
        assert graph.vertices == {}
        assert graph.edges == []

    def test_pinned_vertex_survives(self):
        graph, add = _graph()
        kept = add("logix.objects.slot", "kept")
        kept.pinned = True
        add("logix.objects.slot", "dropped")
        eliminate_unreachable(graph)
        assert [v.name for v in graph.vertices.values()] == ["kept"]


class TestThroughCompiler:

    def test_retention_attribute(self, lnj, pinned_source):
        doc = lnj(pinned_source)
        assert [n["name"] for n in doc.nodes] == ["kept"]
        assert doc.node("kept")["attributes"] == [{"key": "no_remove", "args": {}}]

    def test_unconnected_definition_dropped(self, lnj, hello_source):
        doc = lnj(hello_source + "\nextra = logix.events.on_start\n")
        assert "extra" not in [n["name"] for n in doc.nodes]
        assert len(doc.nodes) == 2
