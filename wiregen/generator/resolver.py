"""Two-pass semantic analysis of parsed protocol files.

The collection pass registers every declaration of a compilation unit in a
Namespace. The resolution pass folds constants, resolves field types,
rejects inline reference cycles, calculates sizes and builds the dispatch
entries. Declarations are annotated in place.
"""

import builtins
import keyword
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import MappingProxyType
from typing import cast

from .errors import (
    CyclicTypeError,
    DuplicateCodeError,
    DuplicateTypeError,
    DuplicateValueError,
    InvalidDeclarationError,
    LayoutError,
    UnresolvedTypeError,
)
from .folding import ConstantFolder
from .sizes import SizeCalculator, SizeKind
from .types import (
    INTEGER_TYPES,
    PRIMITIVES,
    Declaration,
    DispatchEntry,
    EnumDeclaration,
    FieldDeclaration,
    FlagsDeclaration,
    MessageDeclaration,
    SourceFile,
    TypeKind,
    is_primitive,
    member_name,
    py_name,
)

logger = logging.getLogger(__name__)

MAX_CODE = 0xFFFFFFFF

# Module-level names of every generated module
RESERVED_NAMES = frozenset(["REGISTRY", "AnyMessage", "decode_dispatch"])


class Namespace:
    """Mapping from declared name to declaration.

    Written only during collection; read-only once frozen.
    """

    def __init__(self) -> None:
        self._declarations: dict[str, Declaration] = {}
        self._frozen = False

    def register(self, decl: Declaration) -> None:
        if self._frozen:
            raise RuntimeError("namespace is frozen")
        previous = self._declarations.get(decl.name)
        if previous is not None:
            raise DuplicateTypeError(decl.name, decl.location, previous.location)
        self._declarations[decl.name] = decl

    def freeze(self) -> None:
        self._frozen = True

    def lookup(self, name: str) -> Declaration | None:
        return self._declarations.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._declarations

    def __iter__(self) -> Iterator[Declaration]:
        return iter(self._declarations.values())

    def __len__(self) -> int:
        return len(self._declarations)


@dataclass(frozen=True)
class ResolvedProtocol:
    """The fully resolved declarations of one compilation unit."""

    files: tuple[SourceFile, ...]
    declarations: tuple[Declaration, ...]
    namespace: MappingProxyType
    dispatch: tuple[DispatchEntry, ...]

    @property
    def enums(self) -> list[EnumDeclaration]:
        return [d for d in self.declarations if isinstance(d, EnumDeclaration)]

    @property
    def messages(self) -> list[MessageDeclaration]:
        return [d for d in self.declarations if isinstance(d, MessageDeclaration)]


def _check_declaration_name(decl: Declaration) -> None:
    name = decl.name
    if (
        name.startswith("_")
        or name in RESERVED_NAMES
        or keyword.iskeyword(name)
        or hasattr(builtins, name)
    ):
        raise InvalidDeclarationError(
            f"'{name}' cannot be used as a declaration name", decl.location
        )


class Resolver:
    """Resolves the declarations of a compilation unit."""

    def __init__(self, files: Iterable[SourceFile]):
        self.files = tuple(files)
        self.namespace = Namespace()
        self.declarations: list[Declaration] = []

    def collect(self) -> Namespace:
        """Register every declaration, in file then source order."""
        for source in self.files:
            for decl in source.declarations:
                _check_declaration_name(decl)
                self.namespace.register(decl)
                self.declarations.append(decl)
        self.namespace.freeze()
        logger.debug("Collected %d declarations from %d files", len(self.namespace), len(self.files))
        return self.namespace

    def resolve(self) -> ResolvedProtocol:
        """Run both passes and return the resolved protocol."""
        self.collect()

        folder = ConstantFolder(self.namespace.lookup)
        for decl in self.declarations:
            if isinstance(decl, EnumDeclaration):
                try:
                    self.resolve_constants(decl, folder)
                except RecursionError:
                    raise InvalidDeclarationError(
                        f"{decl.name}: constant references are nested too deeply", decl.location
                    ) from None

        messages = [d for d in self.declarations if isinstance(d, MessageDeclaration)]
        for message in messages:
            self.resolve_fields(message)

        self.check_cycles(messages)

        sizes = SizeCalculator({d.name: d for d in self.declarations})
        for message in messages:
            try:
                sizes.calc_message_size(message)
            except RecursionError:
                raise LayoutError(
                    f"{message.name}: inline messages are nested too deeply", message.location
                ) from None
        for message in messages:
            self.check_embedding(message)

        dispatch = self.build_dispatch(messages, folder)

        return ResolvedProtocol(
            files=self.files,
            declarations=tuple(self.declarations),
            namespace=MappingProxyType({d.name: d for d in self.declarations}),
            dispatch=tuple(dispatch),
        )

    def resolve_constants(self, decl: EnumDeclaration, folder: ConstantFolder) -> None:
        """Fold member values and check ranges, duplicates and flag masks."""
        if decl.underlying not in INTEGER_TYPES:
            raise InvalidDeclarationError(
                f"{decl.name}: underlying type must be an integer type, not '{decl.underlying}'",
                decl.location,
            )
        is_flags = isinstance(decl, FlagsDeclaration)
        if not decl.members and not is_flags:
            raise InvalidDeclarationError(f"enum {decl.name} declares no members", decl.location)

        folder.fold_declaration(decl)

        prim = PRIMITIVES[decl.underlying]
        seen: dict[int, str] = {}
        declared: set[str] = set()
        names: dict[str, str] = {}
        for member in decl.members:
            value = cast(int, member.value)
            if member.name.startswith("_"):
                raise InvalidDeclarationError(
                    f"{decl.name}.{member.name}: member names cannot start with '_'",
                    member.location,
                )
            if member.name in declared:
                raise InvalidDeclarationError(
                    f"{decl.name} declares member '{member.name}' twice", member.location
                )
            escaped = member_name(member.name)
            if escaped in names:
                raise InvalidDeclarationError(
                    f"{decl.name}.{member.name} and {decl.name}.{names[escaped]} "
                    f"are both generated as '{escaped}'",
                    member.location,
                )
            declared.add(member.name)
            names[escaped] = member.name

            low = 0 if is_flags else prim.min_value
            if not low <= value <= prim.max_value:
                raise InvalidDeclarationError(
                    f"{decl.name}.{member.name} = {value} does not fit "
                    f"{'a non-negative ' if is_flags else ''}{decl.underlying}",
                    member.location,
                )
            if value in seen:
                raise DuplicateValueError(
                    decl.name, member.name, seen[value], value, member.location
                )
            seen[value] = member.name

        if is_flags:
            self._check_masks(decl)

    def _check_masks(self, decl: EnumDeclaration) -> None:
        values = [cast(int, member.value) for member in decl.members]
        single_bits = 0
        for value in values:
            if value.bit_count() == 1:
                single_bits |= value

        for member, value in zip(decl.members, values):
            stray = value & ~single_bits
            if stray:
                raise InvalidDeclarationError(
                    f"{decl.name}.{member.name} sets bits {stray:#x} that no single-bit "
                    "member declares",
                    member.location,
                )

    def resolve_fields(self, message: MessageDeclaration) -> None:
        """Resolve field type references and check layout rules."""
        declared: set[str] = set()
        names: dict[str, str] = {}
        for member in message.fields:
            if member.name.startswith("_"):
                raise LayoutError(
                    f"{message.name}.{member.name}: field names cannot start with '_'",
                    member.location,
                )
            if member.name in declared:
                raise LayoutError(
                    f"{message.name} declares field '{member.name}' twice", member.location
                )
            escaped = py_name(member.name)
            if escaped in names:
                raise LayoutError(
                    f"{message.name}.{member.name} and {message.name}.{names[escaped]} "
                    f"are both generated as '{escaped}'",
                    member.location,
                )
            declared.add(member.name)
            names[escaped] = member.name

            member.type.kind = self._type_kind(member)
            self._check_field_layout(message, member)

        for member in message.fields[:-1]:
            if member.open:
                raise LayoutError(
                    f"{message.name}.{member.name}: open field must be the last field",
                    member.location,
                )

    def _type_kind(self, member: FieldDeclaration) -> TypeKind:
        if is_primitive(member.type):
            return TypeKind.PRIMITIVE
        decl = self.namespace.lookup(member.type.name)
        if decl is None:
            raise UnresolvedTypeError(member.type.name, member.type.location)
        if isinstance(decl, FlagsDeclaration):
            return TypeKind.FLAGS
        if isinstance(decl, EnumDeclaration):
            return TypeKind.ENUM
        return TypeKind.MESSAGE

    def _check_field_layout(self, message: MessageDeclaration, member: FieldDeclaration) -> None:
        where = f"{message.name}.{member.name}"
        if member.open and member.type.name != "byte":
            raise LayoutError(f"{where}: only 'byte' fields may be open ('[]')", member.location)
        if member.array_length is not None and member.array_length <= 0:
            raise LayoutError(f"{where}: array length must be positive", member.location)
        if member.boxed:
            if member.type.kind != TypeKind.MESSAGE:
                raise LayoutError(f"{where}: only message types can be boxed", member.location)
            if member.array_length is not None or member.open:
                raise LayoutError(f"{where}: boxed fields cannot be arrays", member.location)

    def check_cycles(self, messages: list[MessageDeclaration]) -> None:
        """Reject inline reference cycles with a depth-first traversal.

        Boxed fields are out-of-line and are not edges of the graph.
        """
        done: set[str] = set()
        stack: list[str] = []

        def visit(message: MessageDeclaration) -> None:
            stack.append(message.name)
            for member in message.fields:
                if member.boxed or member.type.kind != TypeKind.MESSAGE:
                    continue
                target = member.type.name
                if target in stack:
                    path = stack[stack.index(target) :] + [target]
                    raise CyclicTypeError(
                        path,
                        member.location,
                        hint=f"mark '{message.name}.{member.name}' as boxed",
                    )
                if target not in done:
                    visit(cast(MessageDeclaration, self.namespace.lookup(target)))
            stack.pop()
            done.add(message.name)

        for message in messages:
            if message.name not in done:
                try:
                    visit(message)
                except RecursionError:
                    raise LayoutError(
                        f"{message.name}: inline messages are nested too deeply", message.location
                    ) from None

    def check_embedding(self, message: MessageDeclaration) -> None:
        """Open messages may only be embedded inline as the last, non-array field."""
        for index, member in enumerate(message.fields):
            if member.boxed or member.type.kind != TypeKind.MESSAGE:
                continue
            target = cast(MessageDeclaration, self.namespace.lookup(member.type.name))
            if target.size_kind != SizeKind.OPEN:
                continue
            if member.array_length is not None:
                raise LayoutError(
                    f"{message.name}.{member.name}: cannot make an array of open message "
                    f"{target.name}",
                    member.location,
                )
            if index != len(message.fields) - 1:
                raise LayoutError(
                    f"{message.name}.{member.name}: open message {target.name} must be "
                    "the last field",
                    member.location,
                )

    def build_dispatch(
        self, messages: list[MessageDeclaration], folder: ConstantFolder
    ) -> list[DispatchEntry]:
        """Fold dispatch codes and guarantee they are unique."""
        entries: list[DispatchEntry] = []
        claimed: dict[int, MessageDeclaration] = {}
        for message in messages:
            if message.opcode is None:
                continue
            code = folder.evaluate(message.opcode, None)
            if not 0 <= code <= MAX_CODE:
                raise InvalidDeclarationError(
                    f"{message.name}: dispatch code {code} outside 0..{MAX_CODE}",
                    message.location,
                )
            if code in claimed:
                raise DuplicateCodeError(code, message.name, claimed[code].name, message.location)
            claimed[code] = message
            message.code = code
            entries.append(DispatchEntry(code=code, message=message.name, location=message.location))
            logger.debug("Dispatch code %d -> %s", code, message.name)
        return entries


def resolve(files: Iterable[SourceFile]) -> ResolvedProtocol:
    """Resolve the parsed files of one compilation unit."""
    return Resolver(files).resolve()
