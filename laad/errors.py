"""Error types for LaaD with source location context."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import Type


class LaadError(Exception):
    """Base error with optional source location."""

    def __init__(self, message: str, line: int | None = None, column: int | None = None):
        self.message = message
        self.line = line
        self.column = column
        loc = ""
        if line is not None:
            loc = f" (line {line}"
            if column is not None:
                loc += f", col {column}"
            loc += ")"
        super().__init__(f"{message}{loc}")


class ParseError(LaadError):
    """Raised when source text is malformed or a conditional branch is ambiguous."""

    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        end_line: int | None = None,
        end_column: int | None = None,
    ):
        super().__init__(message, line, column)
        self.end_line = end_line
        self.end_column = end_column


class ScopeError(LaadError):
    """Raised on an undeclared identifier or a duplicate definition in one scope."""


class TypeCheckError(LaadError):
    """Raised when unification fails, a cast is impossible or an operand type is invalid."""

    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        edge: str | None = None,
        left: Type | None = None,
        right: Type | None = None,
    ):
        super().__init__(message, line, column)
        self.edge = edge
        self.left = left
        self.right = right


class PortBindingError(LaadError):
    """Raised when a port cannot be resolved or a required input is left unbound."""


class ContainerError(LaadError):
    """Raised when an LZBS container cannot be encoded or decoded."""
