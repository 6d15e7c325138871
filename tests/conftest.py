"""Shared fixtures for laad tests."""

import pytest

from laad.builder import GraphBuilder
from laad.compiler import Compiler
from laad.inference import TypeInferenceEngine
from laad.parser import parse
from laad.templates import TemplateLibrary


@pytest.fixture
def compiler():
    return Compiler()


@pytest.fixture
def library():
    return TemplateLibrary.default()


@pytest.fixture
def build(library):
    """Parse and build, stopping before inference."""
    def _build(source):
        return GraphBuilder(library).build(parse(source))
    return _build


@pytest.fixture
def infer(build, library):
    """Parse, build and infer types."""
    def _infer(source):
        graph = build(source)
        TypeInferenceEngine(library.lattice).run(graph)
        return graph
    return _infer


# ---------------------------------------------------------------------------
# LNJ document helper
# ---------------------------------------------------------------------------

class Lnj:
    """Lookup helpers over an emitted LNJ document."""

    def __init__(self, doc):
        self.doc = doc
        self.nodes = doc["nodes"]
        self.edges = doc["edges"]

    def node(self, name):
        matches = [n for n in self.nodes if n["name"] == name]
        assert len(matches) == 1, f"expected one node named {name!r}, got {len(matches)}"
        return matches[0]

    def by_id(self, node_id):
        return next(n for n in self.nodes if n["id"] == node_id)

    def classes(self):
        return [n["class"] for n in self.nodes]

    def into(self, node, port=None):
        return [
            e for e in self.edges
            if e["to"]["node"] == node["id"] and (port is None or e["to"]["port"] == port)
        ]

    def out(self, node, port=None):
        return [
            e for e in self.edges
            if e["from"]["node"] == node["id"] and (port is None or e["from"]["port"] == port)
        ]

    def source_of(self, node, port):
        """The node feeding ``node.port`` (exactly one edge expected)."""
        edges = self.into(node, port)
        assert len(edges) == 1, f"expected one edge into {node['name']}.{port}, got {len(edges)}"
        return self.by_id(edges[0]["from"]["node"])


@pytest.fixture
def lnj(compiler):
    """Compile source and wrap the resulting document."""
    def _lnj(source):
        return Lnj(compiler.compile_document(source))
    return _lnj


# ---------------------------------------------------------------------------
# Sample LaaD sources
# ---------------------------------------------------------------------------

HELLO_WORLD = '''
display = logix.display
"Hello, World!" -> display
'''

VALUE_CONDITIONAL = '''
show = logix.display
x = if true then 1 else 2
x -> show
'''

STATEMENT_CONDITIONAL = '''
start = logix.events.on_start
log = logix.actions.log
"hit" -> log.message
start -> if true then log
'''

MULTILINE_CONDITIONAL = '''
show = logix.display
x = if true then 1
else 2
end
x -> show
'''

RANGE_FOR = '''
start = logix.events.on_start
start -> for (i in 0..5) {
    log = logix.actions.log
    i -> log.message
}
'''

PINNED = '''
#[no_remove]
kept = logix.objects.slot
dropped = logix.objects.slot
'''


@pytest.fixture
def hello_source():
    return HELLO_WORLD


@pytest.fixture
def value_conditional_source():
    return VALUE_CONDITIONAL


@pytest.fixture
def statement_conditional_source():
    return STATEMENT_CONDITIONAL


@pytest.fixture
def multiline_conditional_source():
    return MULTILINE_CONDITIONAL


@pytest.fixture
def range_for_source():
    return RANGE_FOR


@pytest.fixture
def pinned_source():
    return PINNED


LITERALS = '''
sink = class { in f: float; in b: bool; in n: Slot; in s: string }
2.5 -> sink.f
true -> sink.b
null -> sink.n
"tab\\tquote\\"" -> sink.s
'''

SAMPLE_SOURCES = {
    "hello": HELLO_WORLD,
    "value_conditional": VALUE_CONDITIONAL,
    "statement_conditional": STATEMENT_CONDITIONAL,
    "multiline_conditional": MULTILINE_CONDITIONAL,
    "range_for": RANGE_FOR,
    "pinned": PINNED,
    "literals": LITERALS,
}


@pytest.fixture(params=sorted(SAMPLE_SOURCES))
def sample_source(request):
    """Each sample program in turn."""
    return SAMPLE_SOURCES[request.param]
