"""Structured compilation log: per-pass status, timing and graph size.

Captures, for one compilation unit:
- pass start/end timestamps and duration
- vertex/edge counts after each pass
- the fatal error, if any, and the pass that raised it
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PassLog:
    """Log entry for one pipeline pass."""
    name: str
    status: str  # "started", "completed", "failed"
    timestamp: float = field(default_factory=time.time)
    duration_ms: float | None = None
    vertices: int | None = None
    edges: int | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to serializable dict."""
        d = {
            "name": self.name,
            "status": self.status,
            "timestamp": self.timestamp,
        }
        if self.duration_ms is not None:
            d["duration_ms"] = round(self.duration_ms, 3)
        if self.vertices is not None:
            d["vertices"] = self.vertices
        if self.edges is not None:
            d["edges"] = self.edges
        if self.error:
            d["error"] = self.error
        if self.metadata:
            d["metadata"] = self.metadata
        return d


@dataclass
class CompilationLog:
    """Aggregated log for one compilation unit."""
    unit: str
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    status: str = "running"
    passes: list[PassLog] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_duration_ms(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) * 1000

    @property
    def failed_pass(self) -> str | None:
        for p in self.passes:
            if p.status == "failed":
                return p.name
        return None

    def get(self, name: str) -> PassLog | None:
        for p in self.passes:
            if p.name == name:
                return p
        return None

    def finish(self, status: str = "completed") -> None:
        self.finished_at = time.time()
        self.status = status

    def to_dict(self) -> dict:
        d = {
            "unit": self.unit,
            "started_at": self.started_at,
            "status": self.status,
            "passes": [p.to_dict() for p in self.passes],
        }
        if self.finished_at:
            d["finished_at"] = self.finished_at
            d["total_duration_ms"] = round(self.total_duration_ms, 3)
        if self.errors:
            d["errors"] = self.errors
        return d

    def to_json(self, pretty: bool = False) -> str:
        indent = 2 if pretty else None
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def summary(self) -> str:
        duration = f"{self.total_duration_ms:.1f}ms" if self.total_duration_ms is not None else "running"
        done = sum(1 for p in self.passes if p.status == "completed")
        lines = [
            f"Unit: {self.unit} [{self.status}]",
            f"Duration: {duration}",
            f"Passes: {done}/{len(self.passes)} completed",
            "-" * 50,
        ]
        for p in self.passes:
            dur = f"{p.duration_ms:.1f}ms" if p.duration_ms is not None else "-"
            size = f" {p.vertices}v/{p.edges}e" if p.vertices is not None else ""
            mark = "ok" if p.status == "completed" else "FAILED" if p.status == "failed" else p.status
            lines.append(f"  {mark:<6} {p.name} [{dur}]{size}")
            if p.error:
                lines.append(f"         {p.error}")
        return "\n".join(lines)


class CompilationLogger:
    """Tracks the passes of one compilation."""

    def __init__(self, unit: str):
        self.log = CompilationLog(unit=unit)
        self._starts: dict[str, float] = {}

    def start_pass(self, name: str, **metadata) -> None:
        self._starts[name] = time.perf_counter()
        self.log.passes.append(PassLog(name=name, status="started", metadata=metadata))

    def complete_pass(self, name: str, graph=None, **metadata) -> None:
        entry = self.log.get(name)
        if entry is None:
            return
        entry.status = "completed"
        entry.duration_ms = self._elapsed(name)
        if graph is not None:
            entry.vertices = len(graph.vertices)
            entry.edges = len(graph.edges)
        entry.metadata.update(metadata)

    def fail_pass(self, name: str, error: str) -> None:
        entry = self.log.get(name)
        if entry is not None:
            entry.status = "failed"
            entry.error = error
            entry.duration_ms = self._elapsed(name)
        self.log.errors.append(f"{name}: {error}")

    def finish(self, status: str | None = None) -> CompilationLog:
        if status is None:
            status = "failed" if self.log.errors else "completed"
        self.log.finish(status)
        return self.log

    def _elapsed(self, name: str) -> float | None:
        start = self._starts.get(name)
        if start is None:
            return None
        return (time.perf_counter() - start) * 1000
