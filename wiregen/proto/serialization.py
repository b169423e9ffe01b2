"""Binary codec contract implemented by every generated type."""

from enum import IntEnum, IntFlag
from typing import Self, TypeVar

# Reference slot value of an absent boxed field
NULL_REFERENCE = 0xFFFFFFFF
REFERENCE_SIZE = 4


class CodecError(RuntimeError):
    """Base exception for encode and decode failures."""


class EncodeError(CodecError):
    """Raised when a value cannot be represented on the wire."""


class DecodeError(CodecError):
    """Raised when bytes cannot be decoded into a value."""


class TruncatedInputError(DecodeError):
    """Raised when fewer bytes remain than a value requires."""

    def __init__(self, what: str, needed: int, available: int) -> None:
        super().__init__(f"{what}: needs {needed} bytes, {available} available")
        self.needed = needed
        self.available = available


class InvalidValueError(DecodeError):
    """Raised when a decoded enum or flags value is not declared."""


def require(data: bytes | bytearray | memoryview, offset: int, size: int, what: str) -> None:
    """Check that ``size`` bytes are available at ``offset``."""
    available = len(data) - offset
    if available < size:
        raise TruncatedInputError(what, size, max(available, 0))


class Codec:
    """Operations shared by generated enums, flags and messages.

    Generated code implements ``encode``, ``decode_from`` and ``size_hint``.
    """

    def encode(self) -> bytes:
        """Encode this value to its wire representation."""
        raise NotImplementedError("encode() must be implemented by generated code")

    @classmethod
    def decode_from(cls, data: bytes | memoryview, offset: int = 0) -> tuple[Self, int]:
        """Decode a value at ``offset``.

        Returns:
            Tuple of (value, bytes_consumed).
        """
        raise NotImplementedError("decode_from() must be implemented by generated code")

    @classmethod
    def decode(cls, data: bytes | bytearray | memoryview) -> Self:
        """Decode a value from the start of ``data``.

        Bytes after a complete value are ignored. Any malformed input raises a
        DecodeError subclass.
        """
        try:
            value, _ = cls.decode_from(memoryview(data), 0)
        except RecursionError:
            raise DecodeError(f"{cls.__name__}: nesting too deep") from None
        return value

    @classmethod
    def size_hint(cls) -> int:
        """Fixed size if known, otherwise the size of the fixed prefix."""
        raise NotImplementedError("size_hint() must be implemented by generated code")


class Message(Codec):
    """Base class for generated message types.

    Subclasses are @dataclass decorated and set ``FIXED_SIZE`` (None unless
    the size is static) and ``MIN_SIZE``. Dispatched messages also set
    ``OPCODE``.

    Example:
        @dataclass
        class Ping(Message):
            client_id: int = 0
            timestamp: int = 0
    """

    OPCODE: int | None = None
    FIXED_SIZE: int | None = None
    MIN_SIZE: int = 0

    @classmethod
    def size_hint(cls) -> int:
        return cls.FIXED_SIZE if cls.FIXED_SIZE is not None else cls.MIN_SIZE


class WireEnum(Codec, IntEnum):
    """Base class for protocol enums."""


class WireFlags(Codec, IntFlag):
    """Base class for protocol flag sets."""


TEnum = TypeVar("TEnum", bound=WireEnum)
TFlags = TypeVar("TFlags", bound=WireFlags)


def decode_enum(enum_type: type[TEnum], raw: int) -> TEnum:
    """Convert a raw integer into a declared enum member."""
    try:
        return enum_type(raw)
    except ValueError:
        raise InvalidValueError(f"{raw} is not a valid {enum_type.__name__}") from None


def decode_flags(flags_type: type[TFlags], raw: int) -> TFlags:
    """Convert a raw integer into a flags value, rejecting undeclared bits."""
    declared = 0
    for member in flags_type.__members__.values():
        declared |= member.value
    if raw & ~declared:
        raise InvalidValueError(
            f"{raw:#x} sets bits {raw & ~declared:#x} not declared by {flags_type.__name__}"
        )
    return flags_type(raw)
