"""Compiler: LaaD source -> LNJ JSON, running every pass in order."""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from .attributes import apply_attribute_hooks
from .builder import GraphBuilder
from .config import CompilerOptions
from .desugar import Desugarer
from .emitter import Emitter, to_json
from .errors import LaadError
from .inference import TypeInferenceEngine
from .ir import Graph
from .logging import CompilationLog, CompilationLogger
from .parser import parse
from .reachability import eliminate_unreachable
from .templates import TemplateLibrary

logger = logging.getLogger(__name__)

R = TypeVar("R")


class Compiler:
    """Runs parse, build, inference, desugaring, reachability and emission.

    The first error aborts the unit; nothing is emitted for a failed unit.
    ``last_log`` holds the pass log of the most recent run.
    """

    def __init__(self, options: CompilerOptions | None = None, library: TemplateLibrary | None = None):
        self.options = options or CompilerOptions()
        self.library = library or TemplateLibrary.default(self.options.template_paths)
        self.last_log: CompilationLog | None = None

    def compile(self, source: str | bytes) -> str:
        """Return compact LNJ JSON."""
        return to_json(self.compile_document(source))

    def compile_pretty(self, source: str | bytes) -> str:
        """Return indented LNJ JSON."""
        indent = self.options.indent if self.options.indent is not None else 2
        return to_json(self.compile_document(source), indent)

    def compile_document(self, source: str | bytes) -> dict[str, Any]:
        """Return the LNJ document as a dict."""
        return self._pipeline(source, emit=True)

    def compile_graph(self, source: str | bytes) -> Graph:
        """Run every pass except emission and return the final graph."""
        return self._pipeline(source, emit=False)

    # --- Pipeline ---

    def _pipeline(self, source, emit: bool):
        log = CompilationLogger(self.options.unit_name)
        self.last_log = log.log
        try:
            program = self._run(log, "parse", lambda: parse(source))
            graph = self._run(log, "build", lambda: self._build(program))
            self._run(log, "inference", lambda: self._infer(graph), graph)
            self._run(log, "desugar", lambda: self._desugar(graph), graph)
            self._run(log, "reachability", lambda: self._sweep(graph), graph)
            result = graph
            if emit:
                result = self._run(log, "emit", lambda: Emitter(self.options.unit_name).emit(graph), graph)
        except LaadError:
            log.finish("failed")
            raise
        log.finish("completed")
        logger.info("compiled unit %s: %d vertices, %d edges", self.options.unit_name, len(graph.vertices), len(graph.edges))
        return result

    def _run(self, log: CompilationLogger, name: str, step: Callable[[], R], graph: Graph | None = None) -> R:
        log.start_pass(name)
        logger.debug("pass %s started", name)
        try:
            result = step()
        except LaadError as e:
            log.fail_pass(name, str(e))
            logger.debug("pass %s failed: %s", name, e)
            raise
        if graph is None and isinstance(result, Graph):
            graph = result
        log.complete_pass(name, graph)
        return result

    def _build(self, program) -> Graph:
        graph = GraphBuilder(self.library).build(program)
        apply_attribute_hooks(graph, "build")
        return graph

    def _infer(self, graph: Graph) -> int:
        apply_attribute_hooks(graph, "inference")
        solutions = TypeInferenceEngine(self.library.lattice, self.options.workers).run(graph)
        return len(solutions)

    def _desugar(self, graph: Graph) -> int:
        apply_attribute_hooks(graph, "desugar")
        return Desugarer(self.library).run(graph)

    @staticmethod
    def _sweep(graph: Graph) -> list:
        apply_attribute_hooks(graph, "reachability")
        return eliminate_unreachable(graph)
