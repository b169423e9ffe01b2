"""Type definitions for protocol parsing and code generation."""

import builtins
import keyword
from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import Union

from dataclasses_json import DataClassJsonMixin


@dataclass(frozen=True)
class SourceLocation(DataClassJsonMixin):
    """Position of a construct in a protocol source file (1-based)."""

    file: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass
class Literal(DataClassJsonMixin):
    """An integer constant."""

    value: int


@dataclass
class NameRef(DataClassJsonMixin):
    """A reference to an enum/flags member.

    ``scope`` is the declaration name for qualified references (``EMsg::Ping``)
    and None for references to a member of the enclosing declaration.
    """

    name: str
    scope: str | None
    location: SourceLocation

    def __str__(self) -> str:
        return f"{self.scope}::{self.name}" if self.scope else self.name


@dataclass
class Negate(DataClassJsonMixin):
    """Unary minus."""

    operand: "Expr"


@dataclass
class BinaryOp(DataClassJsonMixin):
    """A binary operator, either ``|`` or ``<<``."""

    op: str
    left: "Expr"
    right: "Expr"
    location: SourceLocation


Expr = Union[Literal, NameRef, Negate, BinaryOp]


class TypeKind(StrEnum):
    """What a type reference resolved to."""

    PRIMITIVE = auto()
    ENUM = auto()
    FLAGS = auto()
    MESSAGE = auto()


@dataclass
class TypeReference(DataClassJsonMixin):
    """A primitive or named type used by a field.

    ``kind`` is filled in by the resolver.
    """

    name: str
    location: SourceLocation
    kind: TypeKind | None = None


@dataclass
class EnumMember(DataClassJsonMixin):
    """A single enum value. ``value`` is filled in by constant folding."""

    name: str
    location: SourceLocation
    expr: Expr | None = None
    value: int | None = None


@dataclass
class FlagsMember(EnumMember):
    """A single flag bit or mask."""


@dataclass
class EnumDeclaration(DataClassJsonMixin):
    """An enumeration with an integer underlying type."""

    name: str
    location: SourceLocation
    members: list[EnumMember]
    underlying: str = "int32"


@dataclass
class FlagsDeclaration(EnumDeclaration):
    """A set of bit flags combined with bitwise OR."""

    underlying: str = "uint32"


@dataclass
class FieldDeclaration(DataClassJsonMixin):
    """A member of a message, in wire order.

    For arrays:
    - array_length=N: fixed length array of N elements
    - open=True: ``byte name[]``, consumes the rest of the buffer

    ``size`` is the inline byte size, set by the resolver (None if not fixed).
    """

    type: TypeReference
    name: str
    location: SourceLocation
    array_length: int | None = None
    open: bool = False
    boxed: bool = False
    size: int | None = None
    min_size: int = 0


@dataclass
class MessageDeclaration(DataClassJsonMixin):
    """A binary message layout.

    ``opcode`` is the dispatch code expression from ``message Name<code>``.
    ``code``, ``size_kind``, ``fixed_size`` and ``min_size`` are filled in by
    the resolver.
    """

    name: str
    location: SourceLocation
    fields: list[FieldDeclaration]
    opcode: Expr | None = None
    code: int | None = None
    size_kind: str | None = None
    fixed_size: int | None = None
    min_size: int = 0


Declaration = Union[EnumDeclaration, FlagsDeclaration, MessageDeclaration]


@dataclass
class SourceFile(DataClassJsonMixin):
    """The declarations parsed from one file, in source order."""

    path: str
    declarations: list[Declaration] = field(default_factory=list)


@dataclass(frozen=True)
class DispatchEntry(DataClassJsonMixin):
    """Associates a numeric operation code with a message type."""

    code: int
    message: str
    location: SourceLocation


@dataclass(frozen=True)
class Primitive:
    """A fixed-width primitive wire type."""

    name: str
    size: int
    format_char: str
    signed: bool = False

    @property
    def is_integer(self) -> bool:
        return self.name not in ("bool", "byte")

    @property
    def min_value(self) -> int:
        return -(1 << (self.size * 8 - 1)) if self.signed else 0

    @property
    def max_value(self) -> int:
        bits = self.size * 8 - (1 if self.signed else 0)
        return (1 << bits) - 1


PRIMITIVES: dict[str, Primitive] = {
    p.name: p
    for p in [
        Primitive("bool", 1, "?"),
        Primitive("byte", 1, "B"),
        Primitive("int8", 1, "b", signed=True),
        Primitive("uint8", 1, "B"),
        Primitive("int16", 2, "h", signed=True),
        Primitive("uint16", 2, "H"),
        Primitive("int32", 4, "i", signed=True),
        Primitive("uint32", 4, "I"),
        Primitive("int64", 8, "q", signed=True),
        Primitive("uint64", 8, "Q"),
    ]
}

INTEGER_TYPES = frozenset(name for name, p in PRIMITIVES.items() if p.is_integer)

# Out-of-line references occupy a uint32 slot holding the body length.
REFERENCE_SIZE = 4
NULL_REFERENCE = 0xFFFFFFFF


def is_primitive(t: TypeReference) -> bool:
    """Check if a type is a primitive type."""
    return t.name in PRIMITIVES


# Attributes of generated classes that members and fields must not replace
RESERVED_NAMES = frozenset(
    ["encode", "decode", "decode_from", "size_hint", "OPCODE", "FIXED_SIZE", "MIN_SIZE"]
)
ENUM_RESERVED_NAMES = frozenset(["name", "value", "mro"])


def py_name(name: str, reserved: frozenset[str] = RESERVED_NAMES) -> str:
    """Map a protocol name to a safe Python identifier."""
    if keyword.iskeyword(name) or hasattr(builtins, name) or name in reserved:
        return name + "_"
    return name


def member_name(name: str) -> str:
    """Map an enum or flags member name to a safe Python identifier."""
    return py_name(name, RESERVED_NAMES | ENUM_RESERVED_NAMES)
