"""Node template library: the LogiX node classes a program can instantiate.

Templates are declared in YAML (``templates.yaml`` ships the built-in set)
and can be extended with user files. Each template has a dotted path and an
ordered port list; port order drives positional references (``name[1]``)
and connection auto-resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from .types import TypeLattice

_BUILTIN_PATH = Path(__file__).parent / "templates.yaml"

VALID_DIRECTIONS = ("in", "out")
VALID_KINDS = ("data", "impulse")
VALID_CONSTRAINTS = frozenset({"additive", "numeric", "integral", "bitwise", "comparable"})


@dataclass(frozen=True)
class PortTemplate:
    name: str
    direction: str
    kind: str = "data"
    type: str = "dummy"
    required: bool = False


@dataclass(frozen=True)
class NodeTemplate:
    """One instantiable node class."""
    path: str
    ports: tuple[PortTemplate, ...]
    operator: str | None = None
    constraint: str | None = None
    description: str = ""

    @property
    def inputs(self) -> tuple[PortTemplate, ...]:
        return tuple(p for p in self.ports if p.direction == "in")

    @property
    def outputs(self) -> tuple[PortTemplate, ...]:
        return tuple(p for p in self.ports if p.direction == "out")

    @property
    def arity(self) -> int:
        return sum(1 for p in self.inputs if p.kind == "data")

    def port(self, name: str) -> PortTemplate | None:
        for p in self.ports:
            if p.name == name:
                return p
        return None


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def _port_from_dict(path: str, raw: Any) -> PortTemplate:
    if not isinstance(raw, dict):
        raise ValueError(f"Template '{path}': port entry must be a mapping, got {raw!r}")
    name = raw.get("name")
    direction = raw.get("direction")
    kind = raw.get("kind", "data")
    if not name or not isinstance(name, str):
        raise ValueError(f"Template '{path}': port is missing a name")
    if direction not in VALID_DIRECTIONS:
        raise ValueError(f"Template '{path}': port '{name}' has invalid direction {direction!r}")
    if kind not in VALID_KINDS:
        raise ValueError(f"Template '{path}': port '{name}' has invalid kind {kind!r}")
    type_text = raw.get("type", "impulse" if kind == "impulse" else None)
    if not type_text:
        raise ValueError(f"Template '{path}': port '{name}' has no type")
    required = raw.get("required", direction == "in" and kind == "data")
    return PortTemplate(
        name=name,
        direction=direction,
        kind=kind,
        type=str(type_text),
        required=bool(required),
    )


def _template_from_dict(path: str, raw: Any) -> NodeTemplate:
    if not isinstance(raw, dict):
        raise ValueError(f"Template '{path}' must be a mapping")
    ports = tuple(_port_from_dict(path, p) for p in raw.get("ports") or ())
    names = [p.name for p in ports]
    if len(set(names)) != len(names):
        raise ValueError(f"Template '{path}' declares a port twice")
    constraint = raw.get("constraint")
    if constraint is not None and constraint not in VALID_CONSTRAINTS:
        raise ValueError(f"Template '{path}' has unknown constraint {constraint!r}")
    return NodeTemplate(
        path=path,
        ports=ports,
        operator=raw.get("operator"),
        constraint=constraint,
        description=raw.get("description", ""),
    )


def load_template_data(text: str) -> tuple[list[NodeTemplate], dict[str, str | None]]:
    """Parse a template YAML document into templates and class declarations."""
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError("Template file must contain a mapping")
    templates = [
        _template_from_dict(str(path), raw)
        for path, raw in (data.get("templates") or {}).items()
    ]
    classes = {str(k): v for k, v in (data.get("classes") or {}).items()}
    return templates, classes


@lru_cache(maxsize=1)
def _builtin_data() -> tuple[tuple[NodeTemplate, ...], tuple[tuple[str, str | None], ...]]:
    templates, classes = load_template_data(_BUILTIN_PATH.read_text(encoding="utf-8"))
    return tuple(templates), tuple(classes.items())


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------

class TemplateLibrary:
    """Registry of node templates plus the object classes they mention."""

    def __init__(self, templates=(), classes: dict[str, str | None] | None = None):
        self._templates: dict[str, NodeTemplate] = {}
        self._classes: dict[str, str | None] = {}
        self._lattice: TypeLattice | None = None
        self.add_classes(classes or {})
        for template in templates:
            self.register(template)

    @classmethod
    def default(cls, extra_paths=()) -> TemplateLibrary:
        """The built-in library, optionally extended by extra YAML files."""
        templates, classes = _builtin_data()
        library = cls(templates, dict(classes))
        for path in extra_paths:
            library.load(path)
        return library

    def load(self, path: str | Path) -> None:
        templates, classes = load_template_data(Path(path).read_text(encoding="utf-8"))
        self.add_classes(classes)
        for template in templates:
            self.register(template)

    def register(self, template: NodeTemplate) -> None:
        """Add a template.

        Raises:
            ValueError: If a template with the same path is already registered.
        """
        if template.path in self._templates:
            raise ValueError(f"Template '{template.path}' is already registered")
        self._templates[template.path] = template

    def add_classes(self, classes: dict[str, str | None]) -> None:
        for name, parent in classes.items():
            if name in self._classes and self._classes[name] != parent:
                raise ValueError(f"Class '{name}' is already declared with parent '{self._classes[name]}'")
            self._classes[name] = parent
        self._lattice = None

    def get(self, path: str) -> NodeTemplate | None:
        return self._templates.get(path)

    def __contains__(self, path: str) -> bool:
        return path in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def paths(self) -> list[str]:
        return sorted(self._templates)

    def operator(self, symbol: str, arity: int) -> NodeTemplate:
        """The template implementing ``symbol`` with ``arity`` data inputs."""
        for template in self._templates.values():
            if template.operator == symbol and template.arity == arity:
                return template
        raise KeyError(f"no template implements operator '{symbol}' with {arity} operand(s)")

    @property
    def classes(self) -> dict[str, str | None]:
        return dict(self._classes)

    @property
    def lattice(self) -> TypeLattice:
        if self._lattice is None:
            self._lattice = TypeLattice(self._classes)
        return self._lattice
