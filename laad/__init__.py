"""laad — compiler from LaaD source to LogiX node graphs."""

from .ast_nodes import (
    Block,
    ClassDef,
    Connection,
    IfExpr,
    Import,
    Literal,
    NodeDef,
    NodeRef,
    Program,
)
from .attributes import (
    AttributeSpec,
    register_attribute,
    unregister_attribute,
    get_attribute,
    list_attributes,
)
from .builder import GraphBuilder
from .compiler import Compiler
from .config import CompilerOptions
from .container import decode_container, encode_container
from .desugar import Desugarer
from .emitter import Emitter, to_json
from .errors import (
    ContainerError,
    LaadError,
    ParseError,
    PortBindingError,
    ScopeError,
    TypeCheckError,
)
from .graph import generate_mermaid
from .inference import TypeInferenceEngine
from .ir import Edge, Graph, Port, PortDirection, PortKind, Vertex
from .logging import CompilationLog, CompilationLogger, PassLog
from .parser import parse
from .reachability import eliminate_unreachable, reachable_vertices
from .templates import NodeTemplate, PortTemplate, TemplateLibrary
from .types import TypeLattice, parse_type

__all__ = [
    "parse",
    "Compiler",
    "CompilerOptions",
    "GraphBuilder",
    "TypeInferenceEngine",
    "Desugarer",
    "Emitter",
    "to_json",
    "eliminate_unreachable",
    "reachable_vertices",
    "encode_container",
    "decode_container",
    "generate_mermaid",
    "TemplateLibrary",
    "NodeTemplate",
    "PortTemplate",
    "TypeLattice",
    "parse_type",
    "Graph",
    "Vertex",
    "Edge",
    "Port",
    "PortDirection",
    "PortKind",
    "AttributeSpec",
    "register_attribute",
    "unregister_attribute",
    "get_attribute",
    "list_attributes",
    "CompilationLog",
    "CompilationLogger",
    "PassLog",
    "Program",
    "NodeDef",
    "ClassDef",
    "Import",
    "Connection",
    "Block",
    "IfExpr",
    "NodeRef",
    "Literal",
    "LaadError",
    "ParseError",
    "ScopeError",
    "TypeCheckError",
    "PortBindingError",
    "ContainerError",
]
