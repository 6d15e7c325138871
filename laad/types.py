"""LaaD type model and the fixed subtyping lattice.

Types are immutable values. ``Generic`` is a unification variable; the
inference engine binds it through a substitution, never by mutation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Union


# ---------------------------------------------------------------------------
# Type variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Primitive:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ObjectRef:
    """Reference to an object class (Slot, User, ...). ``object`` is the lattice root."""
    cls: str

    def __str__(self) -> str:
        return self.cls


@dataclass(frozen=True)
class RefID:
    """Opaque handle to a value of ``target``.

    A RefID may dangle: nothing guarantees the referenced element still
    exists. It supports no arithmetic and cannot be dereferenced by a cast.
    """
    target: "Type"

    def __str__(self) -> str:
        return f"refid[{self.target}]"


@dataclass(frozen=True)
class NullType:
    def __str__(self) -> str:
        return "null"


@dataclass(frozen=True)
class Generic:
    """A type variable. Unresolved variables are written as ``dummy``."""
    id: int

    def __str__(self) -> str:
        return "dummy"


Type = Union[Primitive, ObjectRef, RefID, NullType, Generic]

OBJECT = ObjectRef("object")
NULL = NullType()
IMPULSE = Primitive("impulse")
BOOL = Primitive("bool")
STRING = Primitive("string")
INT = Primitive("int")
FLOAT = Primitive("float")

PRIMITIVE_NAMES = (
    "bool", "char", "string", "sbyte", "byte", "short", "ushort", "int", "uint",
    "long", "ulong", "float", "double", "decimal", "color", "datetime", "uri",
    "impulse",
)

INTEGRAL_NAMES = frozenset({"sbyte", "byte", "short", "ushort", "int", "uint", "long", "ulong"})
FRACTIONAL_NAMES = frozenset({"float", "double", "decimal"})
NUMERIC_NAMES = INTEGRAL_NAMES | FRACTIONAL_NAMES

INTEGRAL_RANGES: dict[str, tuple[int, int]] = {
    "sbyte": (-2**7, 2**7 - 1),
    "byte": (0, 2**8 - 1),
    "short": (-2**15, 2**15 - 1),
    "ushort": (0, 2**16 - 1),
    "int": (-2**31, 2**31 - 1),
    "uint": (0, 2**32 - 1),
    "long": (-2**63, 2**63 - 1),
    "ulong": (0, 2**64 - 1),
}

# Widest integer an LNJ document may carry (a signed 64-bit BSON int)
DOCUMENT_INT_RANGE = (-2**63, 2**63 - 1)

# Widening edges; primitives missing here hang directly from `object`
_PRIMITIVE_PARENTS: dict[str, tuple[str, ...]] = {
    "sbyte": ("short",),
    "byte": ("short", "ushort"),
    "short": ("int",),
    "ushort": ("int", "uint"),
    "char": ("ushort",),
    "int": ("long",),
    "uint": ("long", "ulong"),
    "long": ("float",),
    "ulong": ("float",),
    "float": ("double",),
}


def free_vars(t: Type) -> set[int]:
    if isinstance(t, Generic):
        return {t.id}
    if isinstance(t, RefID):
        return free_vars(t.target)
    return set()


def is_concrete(t: Type) -> bool:
    return not free_vars(t)


# ---------------------------------------------------------------------------
# Lattice
# ---------------------------------------------------------------------------

class TypeLattice:
    """Subtyping lattice over primitives, declared object classes and handles."""

    def __init__(self, classes: Mapping[str, str | None] | None = None):
        self.classes: dict[str, str | None] = dict(classes or {})
        for name, parent in self.classes.items():
            if parent is not None and parent not in self.classes and parent != "object":
                raise ValueError(f"class '{name}' extends unknown class '{parent}'")

    # --- Structure ---

    def parents(self, t: Type) -> tuple[Type, ...]:
        if isinstance(t, Primitive):
            if t == IMPULSE:
                return ()
            if t.name in _PRIMITIVE_PARENTS:
                return tuple(Primitive(p) for p in _PRIMITIVE_PARENTS[t.name])
            return (OBJECT,)
        if isinstance(t, ObjectRef):
            if t == OBJECT:
                return ()
            parent = self.classes.get(t.cls)
            return (ObjectRef(parent),) if parent else (OBJECT,)
        if isinstance(t, RefID):
            return (OBJECT,)
        return ()

    def ancestors(self, t: Type) -> set[Type]:
        """All supertypes of ``t``, including ``t`` itself."""
        seen: set[Type] = {t}
        stack = [t]
        while stack:
            for parent in self.parents(stack.pop()):
                if parent not in seen:
                    seen.add(parent)
                    stack.append(parent)
        return seen

    def is_subtype(self, sub: Type, sup: Type) -> bool:
        if sub == sup:
            return True
        if isinstance(sub, NullType):
            return self.is_nullable(sup)
        return sup in self.ancestors(sub)

    def lub(self, types: Iterable[Type]) -> Type:
        """Least upper bound. Returns OBJECT when no unique bound exists."""
        distinct: list[Type] = []
        for t in types:
            if t not in distinct:
                distinct.append(t)
        if not distinct:
            return OBJECT
        non_null = [t for t in distinct if not isinstance(t, NullType)]
        if not non_null:
            return NULL
        if len(non_null) < len(distinct) and not all(self.is_nullable(t) for t in non_null):
            return OBJECT
        if any(isinstance(t, Generic) for t in non_null):
            return OBJECT
        if len(non_null) == 1:
            return non_null[0]

        common = self.ancestors(non_null[0])
        for t in non_null[1:]:
            common &= self.ancestors(t)
        least = [c for c in common if all(self.is_subtype(c, other) for other in common)]
        return least[0] if len(least) == 1 else OBJECT

    # --- Categories ---

    def is_numeric(self, t: Type) -> bool:
        return isinstance(t, Primitive) and t.name in NUMERIC_NAMES

    def is_integral(self, t: Type) -> bool:
        return isinstance(t, Primitive) and t.name in INTEGRAL_NAMES

    def is_fractional(self, t: Type) -> bool:
        return isinstance(t, Primitive) and t.name in FRACTIONAL_NAMES

    def is_nullable(self, t: Type) -> bool:
        return t == STRING or isinstance(t, (ObjectRef, RefID, NullType))

    # --- Casts ---

    def can_cast(self, src: Type, dst: Type) -> bool:
        if src == dst or dst == OBJECT:
            return True
        if self.is_subtype(src, dst):
            return True
        if self.is_numeric(src) and self.is_numeric(dst):
            return True
        char = Primitive("char")
        if (src == char and self.is_integral(dst)) or (dst == char and self.is_integral(src)):
            return True
        if isinstance(src, ObjectRef) and isinstance(dst, ObjectRef):
            return self.is_subtype(dst, src)
        if isinstance(src, ObjectRef) and isinstance(dst, RefID):
            return self.is_subtype(src, dst.target)
        return False


# ---------------------------------------------------------------------------
# Type names
# ---------------------------------------------------------------------------

_TYPE_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_.]*)\s*(?:\[(.*)\])?\s*$")


def parse_type(
    text: str,
    lattice: TypeLattice,
    params: Mapping[str, Type] | None = None,
) -> Type:
    """Turn a written type (``int``, ``Slot``, ``refid[T]``) into a Type.

    ``params`` maps vertex-scoped type parameters to their variables.
    ``dummy`` is not accepted here; the builder gives it per-edge variables.
    Raises ValueError for unknown names.
    """
    m = _TYPE_RE.match(text)
    if not m:
        raise ValueError(f"malformed type '{text}'")
    name, argument = m.group(1), m.group(2)
    if argument is not None:
        if name != "refid":
            raise ValueError(f"type '{name}' takes no argument")
        return RefID(parse_type(argument, lattice, params))
    if params and name in params:
        return params[name]
    if name in PRIMITIVE_NAMES:
        return Primitive(name)
    if name == "object":
        return OBJECT
    if name == "null":
        return NULL
    if name in lattice.classes:
        return ObjectRef(name)
    raise ValueError(f"unknown type '{name}'")


def is_type_param(text: str) -> bool:
    """Single capital letters (T, S, U) are vertex-scoped type parameters."""
    return len(text) == 1 and text.isupper()
