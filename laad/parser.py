"""Lark-based parser for LaaD — transforms source text into AST."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path as FilePath

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError

from .ast_nodes import (
    Attribute,
    BinaryOp,
    Block,
    Branch,
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
    PortDecl,
    Program,
    RangeFor,
    TypeName,
    UnaryOp,
    WhileLoop,
)
from .errors import LaadError, ParseError

# ---------------------------------------------------------------------------
# Grammar loading (cached)
# ---------------------------------------------------------------------------

_GRAMMAR_PATH = FilePath(__file__).parent / "grammar.lark"
_lark_parser: Lark | None = None


def _get_parser() -> Lark:
    global _lark_parser
    if _lark_parser is None:
        grammar_text = _GRAMMAR_PATH.read_text(encoding="utf-8")
        _lark_parser = Lark(
            grammar_text,
            parser="earley",
            lexer="basic",
            propagate_positions=True,
            maybe_placeholders=True,
        )
    return _lark_parser


# Markers passed between transformer callbacks, never stored in the AST
@dataclass(frozen=True)
class _ElseClause:
    body: object


@dataclass(frozen=True)
class _IfEnd:
    keyword: str


def _pos(meta) -> dict:
    return {"line": getattr(meta, "line", 0), "column": getattr(meta, "column", 0)}


# ---------------------------------------------------------------------------
# Transformer: Lark parse tree -> AST nodes
# ---------------------------------------------------------------------------

class LaadTransformer(Transformer):
    """Converts the Lark parse tree into the LaaD AST."""

    # --- Top-level ---

    def start(self, items):
        return Program(statements=tuple(items))

    @v_args(meta=True)
    def import_stmt(self, meta, items):
        return Import(path=tuple(str(i) for i in items), **_pos(meta))

    @v_args(meta=True)
    def node_def(self, meta, items):
        attributes = []
        name = None
        type_name = None
        is_var = False
        binding = items[-1]
        for item in items[:-1]:
            if isinstance(item, Attribute):
                attributes.append(item)
            elif isinstance(item, TypeName):
                type_name = item
            elif isinstance(item, Token) and item.type == "VAR":
                is_var = True
            elif isinstance(item, Token) and item.type == "NAME":
                name = str(item)
        # A bare dotted name on the right of `=` names a template
        if isinstance(binding, NodeRef) and binding.index is None:
            binding = NodePath(parts=binding.parts, line=binding.line, column=binding.column)
        return NodeDef(
            name=name,
            binding=binding,
            type_name=type_name,
            attributes=tuple(attributes),
            is_var=is_var,
            **_pos(meta),
        )

    # --- Attributes ---

    @v_args(meta=True)
    def attribute(self, meta, items):
        key = str(items[0])
        args = items[1] if len(items) > 1 else ()
        return Attribute(key=key, args=args, **_pos(meta))

    def attr_args(self, items):
        seen = set()
        for key, _ in items:
            if key in seen:
                raise ParseError(f"duplicate attribute argument '{key}'")
            seen.add(key)
        return tuple(items)

    def attr_arg(self, items):
        return (str(items[0]), items[1].value)

    def negative_literal(self, items):
        lit = items[1]
        if isinstance(lit.value, bool) or not isinstance(lit.value, (int, float)):
            raise ParseError("only numeric literals can be negated", lit.line, lit.column)
        return Literal(value=-lit.value, line=lit.line, column=max(lit.column - 1, 1))

    # --- Inline classes ---

    @v_args(meta=True)
    def class_def(self, meta, items):
        names = [p.name for p in items]
        for name in names:
            if names.count(name) > 1:
                raise ParseError(f"duplicate port '{name}' in class definition", **_pos(meta))
        return ClassDef(ports=tuple(items), **_pos(meta))

    def in_port(self, items):
        return PortDecl(direction="in", name=str(items[0]), type_name=items[1])

    def out_port(self, items):
        return PortDecl(direction="out", name=str(items[0]), type_name=items[1])

    # --- Connections and control flow ---

    @v_args(meta=True)
    def connection(self, meta, items):
        return Connection(items=tuple(items), **_pos(meta))

    @v_args(meta=True)
    def if_expr(self, meta, items):
        branches = [Branch(condition=items[0], body=items[1])]
        else_body = None
        terminated = False
        for item in items[2:]:
            if isinstance(item, Branch):
                branches.append(item)
            elif isinstance(item, _ElseClause):
                else_body = item.body
            elif isinstance(item, _IfEnd):
                terminated = True
        if not terminated and meta.end_line > meta.line:
            raise ParseError(
                "multi-line conditional must be closed with 'end' or 'endif'",
                line=meta.line,
                column=meta.column,
                end_line=meta.end_line,
                end_column=meta.end_column,
            )
        return IfExpr(
            branches=tuple(branches),
            else_body=else_body,
            terminated=terminated,
            **_pos(meta),
        )

    def elseif_clause(self, items):
        return Branch(condition=items[0], body=items[1])

    def else_clause(self, items):
        return _ElseClause(body=items[0])

    def if_end(self, items):
        return _IfEnd(keyword=str(items[0]))

    @v_args(meta=True)
    def while_loop(self, meta, items):
        return WhileLoop(condition=items[0], body=items[1], **_pos(meta))

    @v_args(meta=True)
    def range_for(self, meta, items):
        return RangeFor(
            variable=str(items[0]),
            start=items[1],
            end=items[2],
            body=items[3],
            **_pos(meta),
        )

    @v_args(meta=True)
    def generic_for(self, meta, items):
        start, condition, step, body = items
        return GenericFor(start=start, condition=condition, step=step, body=body, **_pos(meta))

    def flow_part(self, items):
        return items[0]

    @v_args(meta=True)
    def block(self, meta, items):
        return Block(items=tuple(items), **_pos(meta))

    # --- Operators ---

    @v_args(meta=True)
    def binary(self, meta, items):
        left, op, right = items
        return BinaryOp(operator=str(op), left=left, right=right, **_pos(meta))

    @v_args(meta=True)
    def unary(self, meta, items):
        op, operand = items
        if (
            str(op) == "-"
            and isinstance(operand, Literal)
            and isinstance(operand.value, (int, float))
            and not isinstance(operand.value, bool)
        ):
            return Literal(value=-operand.value, **_pos(meta))
        return UnaryOp(operator=str(op), operand=operand, **_pos(meta))

    @v_args(meta=True)
    def cast(self, meta, items):
        return Cast(operand=items[0], target=items[1], **_pos(meta))

    # --- References and names ---

    @v_args(meta=True)
    def ref(self, meta, items):
        parts = []
        index = None
        for item in items:
            if isinstance(item, Token) and item.type == "INT":
                index = int(item)
            else:
                parts.append(str(item))
        return NodeRef(parts=tuple(parts), index=index, **_pos(meta))

    def member(self, items):
        return str(items[0])

    def type_name(self, items):
        parts = []
        argument = None
        for item in items:
            if isinstance(item, TypeName):
                argument = item
            else:
                parts.append(str(item))
        return TypeName(parts=tuple(parts), argument=argument)

    # --- Literals ---

    @v_args(meta=True)
    def string_lit(self, meta, items):
        return Literal(value=_unquote(items[0]), **_pos(meta))

    @v_args(meta=True)
    def int_lit(self, meta, items):
        return Literal(value=int(items[0]), **_pos(meta))

    @v_args(meta=True)
    def float_lit(self, meta, items):
        return Literal(value=float(items[0]), **_pos(meta))

    @v_args(meta=True)
    def true_lit(self, meta, _items):
        return Literal(value=True, **_pos(meta))

    @v_args(meta=True)
    def false_lit(self, meta, _items):
        return Literal(value=False, **_pos(meta))

    @v_args(meta=True)
    def null_lit(self, meta, _items):
        return Literal(value=None, **_pos(meta))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "0": "\0"}
_ESCAPE_RE = re.compile(r"\\(.)")


def _unquote(token: Token) -> str:
    """Remove surrounding quotes from a STRING token and resolve escapes."""
    s = str(token)
    if len(s) >= 2 and s[0] == '"' and s[-1] == '"':
        s = s[1:-1]
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), s)


def _collect_comments(source: str) -> list[Comment]:
    comments = []
    for tok in _get_parser().lex(source, dont_ignore=True):
        if tok.type == "COMMENT":
            text = str(tok)[2:].strip()
            comments.append(Comment(text=text, line=tok.line, column=tok.column))
    return comments


def _with_comments(program: Program, comments: list[Comment]) -> Program:
    if not comments:
        return program
    merged = sorted(
        list(program.statements) + comments,
        key=lambda s: (s.line, s.column),
    )
    return Program(statements=tuple(merged))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse(source: str | bytes) -> Program:
    """Parse LaaD source code and return a Program AST.

    Accepts text or UTF-8 bytes. A byte-order mark is rejected.
    Raises ParseError on syntax errors.
    """
    if isinstance(source, bytes):
        try:
            source = source.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"source is not valid UTF-8: {e.reason}") from e
    if source.startswith("\ufeff"):
        raise ParseError("byte-order mark is not allowed", line=1, column=1)

    try:
        tree = _get_parser().parse(source)
    except UnexpectedInput as e:
        line = getattr(e, "line", None)
        column = getattr(e, "column", None)
        raise ParseError(
            message=str(e).strip().splitlines()[0],
            line=line if line and line > 0 else None,
            column=column if column and column > 0 else None,
        ) from e

    try:
        program = LaadTransformer().transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, LaadError):
            raise e.orig_exc from None
        raise
    return _with_comments(program, _collect_comments(source))
