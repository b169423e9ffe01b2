"""Compile-time errors raised while lexing, parsing and resolving protocol files."""

from .types import SourceLocation


class CompileError(RuntimeError):
    """Base class for every error that aborts code generation.

    Carries the location of the offending construct so the CLI can report
    ``file:line:column: Kind: message``.
    """

    def __init__(self, message: str, location: SourceLocation | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        if self.location is None:
            return f"{self.kind}: {self.message}"
        return f"{self.location}: {self.kind}: {self.message}"


class LexError(CompileError):
    """Raised on an unrecognized character or an unterminated comment."""


class ParseError(CompileError):
    """Raised on any grammar violation."""

    def __init__(self, location: SourceLocation, expected: str, found: str) -> None:
        super().__init__(f"expected {expected}, found {found}", location)
        self.expected = expected
        self.found = found


class DuplicateTypeError(CompileError):
    """Raised when two declarations share a name."""

    def __init__(self, name: str, location: SourceLocation, previous: SourceLocation) -> None:
        super().__init__(f"'{name}' is already declared at {previous}", location)
        self.name = name
        self.previous = previous


class UnresolvedTypeError(CompileError):
    """Raised when a type or constant reference names nothing declared."""

    def __init__(self, name: str, location: SourceLocation, what: str = "type") -> None:
        super().__init__(f"unknown {what} '{name}'", location)
        self.name = name


class CyclicTypeError(CompileError):
    """Raised when references form a cycle that cannot be laid out or evaluated."""

    def __init__(self, path: list[str], location: SourceLocation, hint: str = "") -> None:
        message = "cycle " + " -> ".join(path)
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message, location)
        self.path = path


class DuplicateValueError(CompileError):
    """Raised when two members of one enum or flags share a value."""

    def __init__(
        self, declaration: str, member: str, other: str, value: int, location: SourceLocation
    ) -> None:
        super().__init__(
            f"{declaration}.{member} = {value} duplicates {declaration}.{other}", location
        )
        self.declaration = declaration
        self.value = value


class DuplicateCodeError(CompileError):
    """Raised when two messages claim the same dispatch code."""

    def __init__(self, code: int, message: str, other: str, location: SourceLocation) -> None:
        super().__init__(f"{message} claims dispatch code {code} already used by {other}", location)
        self.code = code


class InvalidDeclarationError(CompileError):
    """Raised for values out of range, bad flag masks and unusable names."""


class LayoutError(CompileError):
    """Raised when a message's fields cannot be laid out on the wire."""
