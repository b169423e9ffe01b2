"""Size calculation for protocol types and messages."""

from dataclasses import dataclass
from enum import StrEnum, auto

from .types import (
    PRIMITIVES,
    REFERENCE_SIZE,
    EnumDeclaration,
    FieldDeclaration,
    MessageDeclaration,
)


class SizeKind(StrEnum):
    """Classification of size characteristics."""

    FIXED = auto()  # Exact size known statically
    VARIABLE = auto()  # Self-delimiting, holds out-of-line (boxed) bodies
    OPEN = auto()  # Ends with a field that consumes the rest of the buffer


@dataclass(frozen=True)
class SizeInfo:
    """Size information for a type, field or message."""

    min_size: int
    kind: SizeKind

    @property
    def is_fixed(self) -> bool:
        return self.kind == SizeKind.FIXED

    @property
    def fixed_size(self) -> int | None:
        return self.min_size if self.is_fixed else None


def combine(sizes: list[SizeInfo]) -> SizeInfo:
    """Size of a sequence of fields laid out back to back."""
    total = sum(s.min_size for s in sizes)
    if sizes and sizes[-1].kind == SizeKind.OPEN:
        return SizeInfo(total, SizeKind.OPEN)
    if any(s.kind != SizeKind.FIXED for s in sizes):
        return SizeInfo(total, SizeKind.VARIABLE)
    return SizeInfo(total, SizeKind.FIXED)


class SizeCalculator:
    """Calculate sizes for resolved declarations.

    Inline message references must be acyclic before sizes are calculated.
    """

    def __init__(self, declarations: dict[str, EnumDeclaration | MessageDeclaration]):
        self.declarations = declarations
        self._cache: dict[str, SizeInfo] = {}

    def calc_type_size(self, name: str) -> SizeInfo:
        """Calculate size for any type (primitive, enum, flags or message)."""
        if name in PRIMITIVES:
            return SizeInfo(PRIMITIVES[name].size, SizeKind.FIXED)

        decl = self.declarations[name]
        if isinstance(decl, EnumDeclaration):
            # Enums use underlying type size
            return SizeInfo(PRIMITIVES[decl.underlying].size, SizeKind.FIXED)

        return self.calc_message_size(decl)

    def calc_field_size(self, member: FieldDeclaration) -> SizeInfo:
        """Calculate size for a message field (handles arrays and references)."""
        if member.boxed:
            return SizeInfo(REFERENCE_SIZE, SizeKind.VARIABLE)

        if member.open:
            return SizeInfo(0, SizeKind.OPEN)

        elem_size = self.calc_type_size(member.type.name)
        if member.array_length is None:
            return elem_size

        return SizeInfo(elem_size.min_size * member.array_length, elem_size.kind)

    def calc_message_size(self, decl: MessageDeclaration) -> SizeInfo:
        """Calculate size for a message (with caching).

        Writes the results back onto the declaration and its fields.
        """
        if decl.name in self._cache:
            return self._cache[decl.name]

        field_sizes = []
        for member in decl.fields:
            size = self.calc_field_size(member)
            member.size = size.fixed_size if not member.boxed else REFERENCE_SIZE
            member.min_size = size.min_size
            field_sizes.append(size)

        message_size = combine(field_sizes)
        decl.size_kind = message_size.kind.value
        decl.fixed_size = message_size.fixed_size
        decl.min_size = message_size.min_size

        self._cache[decl.name] = message_size
        return message_size
