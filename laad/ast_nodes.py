"""AST node definitions for LaaD — all frozen (immutable) dataclasses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


# ---------------------------------------------------------------------------
# Leaf values
# ---------------------------------------------------------------------------

LiteralValue = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class TypeName:
    """A written type: int, Slot, refid[Slot]."""
    parts: tuple[str, ...]
    argument: TypeName | None = None

    def __str__(self) -> str:
        base = ".".join(self.parts)
        if self.argument is not None:
            return f"{base}[{self.argument}]"
        return base


@dataclass(frozen=True)
class Attribute:
    """#[key] or #[key(name = literal, ...)] attached to a node definition."""
    key: str
    args: tuple[tuple[str, LiteralValue], ...] = ()
    line: int = 0
    column: int = 0

    @property
    def arguments(self) -> dict[str, LiteralValue]:
        return dict(self.args)


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    """String, integer, float, boolean or null literal."""
    value: LiteralValue
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class NodeRef:
    """A reference: name, name.port, name[index] or a dotted template path."""
    parts: tuple[str, ...]
    index: int | None = None
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        text = ".".join(self.parts)
        if self.index is not None:
            text += f"[{self.index}]"
        return text


@dataclass(frozen=True)
class Cast:
    """expr as type"""
    operand: Expression
    target: TypeName
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class UnaryOp:
    operator: str  # "!" or "-"
    operand: Expression
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class BinaryOp:
    operator: str
    left: Expression
    right: Expression
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Connection:
    """a -> b -> c; always two or more items."""
    items: tuple[Expression, ...]
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Block:
    """{ item; item ... }: a sequence of items in its own lexical scope."""
    items: tuple[Union[Expression, NodeDef], ...]
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Branch:
    """One `if`/`elseif` level."""
    condition: Expression
    body: Union[Expression, Block]


@dataclass(frozen=True)
class IfExpr:
    """if c then a elseif d then b else e [end]"""
    branches: tuple[Branch, ...]
    else_body: Union[Expression, Block, None] = None
    terminated: bool = False
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class WhileLoop:
    condition: Expression
    body: Block
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class RangeFor:
    """for (i in start..end) { body }"""
    variable: str
    start: Expression
    end: Expression
    body: Block
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class GenericFor:
    """for (start, condition, step) { body }; start/step may be omitted."""
    start: Expression | None
    condition: Expression
    step: Expression | None
    body: Block
    line: int = 0
    column: int = 0


# Expression is the union of everything that can appear on the right of `=`
Expression = Union[
    Literal, NodeRef, Cast, UnaryOp, BinaryOp, Connection,
    IfExpr, WhileLoop, RangeFor, GenericFor,
]


# ---------------------------------------------------------------------------
# Bindings and statements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NodePath:
    """A dotted template path bound by `name = logix.display`."""
    parts: tuple[str, ...]
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return ".".join(self.parts)


@dataclass(frozen=True)
class PortDecl:
    """`in value: int` inside a class definition."""
    direction: str  # "in" or "out"
    name: str
    type_name: TypeName


@dataclass(frozen=True)
class ClassDef:
    """class { in a: int; out b: impulse }"""
    ports: tuple[PortDecl, ...]
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class NodeDef:
    """[var] name [: type] = node_path | expression | class_def"""
    name: str
    binding: Union[NodePath, Expression, ClassDef]
    type_name: TypeName | None = None
    attributes: tuple[Attribute, ...] = ()
    is_var: bool = False
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class Import:
    """import logix.flow"""
    path: tuple[str, ...]
    line: int = 0
    column: int = 0

    @property
    def alias(self) -> str:
        return self.path[-1]


@dataclass(frozen=True)
class Comment:
    text: str
    line: int = 0
    column: int = 0


Statement = Union[Comment, Import, NodeDef, Connection]


@dataclass(frozen=True)
class Program:
    """Root AST node representing one compilation unit."""
    statements: tuple[Statement, ...]

    @property
    def definitions(self) -> tuple[NodeDef, ...]:
        return tuple(s for s in self.statements if isinstance(s, NodeDef))
