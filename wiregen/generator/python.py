"""Python code generator for wiregen protocols."""

from importlib import resources
from typing import cast

from jinja2 import Environment, PackageLoader

from .resolver import ResolvedProtocol
from .sizes import SizeKind
from .types import (
    PRIMITIVES,
    EnumDeclaration,
    FieldDeclaration,
    FlagsDeclaration,
    MessageDeclaration,
    TypeKind,
    member_name,
    py_name,
)

RUNTIME_FILES = [
    "__init__.py",
    "serialization.py",
    "registry.py",
]

env = Environment(
    loader=PackageLoader("wiregen.generator", "templates"),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    line_comment_prefix="%%",
    line_statement_prefix="%",
)

template = env.get_template("python.py.j2")


def _local(member: FieldDeclaration) -> str:
    return f"f_{py_name(member.name)}"


class MessageWriter:
    """Generates the field definitions and codec bodies of one message."""

    def __init__(self, decl: MessageDeclaration, protocol: ResolvedProtocol):
        self.decl = decl
        self.namespace = protocol.namespace

    def where(self, member: FieldDeclaration) -> str:
        return f"{self.decl.name}.{member.name}"

    def format_char(self, member: FieldDeclaration) -> str:
        """Struct format character of a primitive, enum or flags field."""
        if member.type.kind == TypeKind.PRIMITIVE:
            return PRIMITIVES[member.type.name].format_char
        decl = self.namespace[member.type.name]
        return PRIMITIVES[decl.underlying].format_char

    def element_size(self, member: FieldDeclaration) -> int:
        if member.type.kind == TypeKind.PRIMITIVE:
            return PRIMITIVES[member.type.name].size
        return PRIMITIVES[self.namespace[member.type.name].underlying].size

    def is_scalar(self, member: FieldDeclaration) -> bool:
        """Check if a field can be batched with neighbouring fields."""
        return (
            member.type.kind != TypeKind.MESSAGE
            and member.array_length is None
            and not member.open
        )

    def is_byte_array(self, member: FieldDeclaration) -> bool:
        return member.type.name == "byte" and member.array_length is not None

    def batches(self, members: list[FieldDeclaration]) -> list[tuple[str, list[FieldDeclaration]]]:
        """Group members into batches for encode/decode.

        Returns list of (batch_type, members) where batch_type is "scalar" or "single".
        """
        batches: list[tuple[str, list[FieldDeclaration]]] = []
        current: list[FieldDeclaration] = []

        for member in members:
            if self.is_scalar(member):
                current.append(member)
            else:
                if current:
                    batches.append(("scalar", current))
                    current = []
                batches.append(("single", [member]))

        if current:
            batches.append(("scalar", current))

        return batches

    @property
    def head(self) -> list[FieldDeclaration]:
        return [m for m in self.decl.fields if not self.is_open(m)]

    @property
    def boxed(self) -> list[FieldDeclaration]:
        return [m for m in self.decl.fields if m.boxed]

    @property
    def tail(self) -> FieldDeclaration | None:
        if self.decl.fields and self.is_open(self.decl.fields[-1]):
            return self.decl.fields[-1]
        return None

    def is_open(self, member: FieldDeclaration) -> bool:
        if member.open:
            return True
        if member.type.kind != TypeKind.MESSAGE or member.boxed:
            return False
        return self.namespace[member.type.name].size_kind == SizeKind.OPEN

    # Field definitions

    def field_lines(self) -> list[str]:
        return [self.field_definition(member) for member in self.decl.fields]

    def field_definition(self, member: FieldDeclaration) -> str:
        name = py_name(member.name)
        type_name = member.type.name
        kind = member.type.kind
        count = member.array_length

        if member.boxed:
            return f'{name}: "{type_name} | None" = None'
        if member.open:
            return f'{name}: bytes = b""'
        if self.is_byte_array(member):
            return f'{name}: bytes = b"\\x00" * {count}'

        if kind == TypeKind.PRIMITIVE:
            python_type = "bool" if type_name == "bool" else "int"
            zero = "False" if type_name == "bool" else "0"
            if count is None:
                return f"{name}: {python_type} = {zero}"
            return f"{name}: list[{python_type}] = _field(default_factory=lambda: [{zero}] * {count})"

        if kind == TypeKind.ENUM:
            decl = self.namespace[type_name]
            default = f"{type_name}.{member_name(decl.members[0].name)}"
        elif kind == TypeKind.FLAGS:
            default = f"{type_name}(0)"
        else:
            default = f"{type_name}()"

        if count is None:
            return f'{name}: "{type_name}" = _field(default_factory=lambda: {default})'
        if kind == TypeKind.MESSAGE:
            factory = f"[{default} for _ in range({count})]"
        else:
            factory = f"[{default}] * {count}"
        return f'{name}: "list[{type_name}]" = _field(default_factory=lambda: {factory})'

    # Encoding

    def encode_body(self) -> str:
        lines = ["_buf = bytearray()"]
        if self.boxed:
            lines.append("_out = bytearray()")
        lines.append("try:")

        inner: list[str] = []
        for batch_type, members in self.batches(self.head):
            if batch_type == "scalar":
                inner.append(self.pack_batch(members))
            else:
                inner.extend(self.pack_field(members[0]))
        if self.boxed:
            inner.append("_buf += _out")
        if self.tail is not None:
            inner.extend(self.pack_tail(self.tail))
        if not inner:
            inner.append("pass")

        lines.extend("    " + line for line in inner)
        lines.append("except _struct.error as _e:")
        lines.append(f'    raise _rt.EncodeError(f"{self.decl.name}: {{_e}}") from _e')
        lines.append("return bytes(_buf)")
        return "\n".join(lines)

    def pack_batch(self, members: list[FieldDeclaration]) -> str:
        fmt = "<" + "".join(self.format_char(m) for m in members)
        args = ", ".join(f"self.{py_name(m.name)}" for m in members)
        return f'_buf += _struct.pack("{fmt}", {args})'

    def length_check(self, member: FieldDeclaration, unit: str) -> list[str]:
        attr = f"self.{py_name(member.name)}"
        return [
            f"if len({attr}) != {member.array_length}:",
            f'    raise _rt.EncodeError("{self.where(member)} must have '
            f'{member.array_length} {unit}")',
        ]

    def pack_field(self, member: FieldDeclaration) -> list[str]:
        attr = f"self.{py_name(member.name)}"

        if member.boxed:
            return [
                f"if {attr} is None:",
                '    _buf += _struct.pack("<I", _rt.NULL_REFERENCE)',
                "else:",
                f"    _body = {attr}.encode()",
                "    if len(_body) >= _rt.NULL_REFERENCE:",
                f'        raise _rt.EncodeError("{self.where(member)} is too large to reference")',
                '    _buf += _struct.pack("<I", len(_body))',
                "    _out += _body",
            ]

        if self.is_byte_array(member):
            return self.length_check(member, "bytes") + [f"_buf += {attr}"]

        if member.type.kind != TypeKind.MESSAGE:
            fmt = f"<{member.array_length}{self.format_char(member)}"
            return self.length_check(member, "elements") + [
                f'_buf += _struct.pack("{fmt}", *{attr})'
            ]

        if member.array_length is None:
            return [f"_buf += {attr}.encode()"]

        return self.length_check(member, "elements") + [
            f"for _item in {attr}:",
            "    _buf += _item.encode()",
        ]

    def pack_tail(self, member: FieldDeclaration) -> list[str]:
        attr = f"self.{py_name(member.name)}"
        if member.open:
            return [f"_buf += {attr}"]
        return [f"_buf += {attr}.encode()"]

    # Decoding

    def decode_body(self) -> str:
        lines = ["_data = memoryview(data)", "_o = offset"]
        if self.decl.min_size:
            lines.append(f'_rt.require(_data, _o, {self.decl.min_size}, "{self.decl.name}")')

        for batch_type, members in self.batches(self.head):
            if batch_type == "scalar":
                lines.extend(self.unpack_batch(members))
            else:
                lines.extend(self.unpack_field(members[0]))
        for member in self.boxed:
            lines.extend(self.unpack_boxed(member))
        if self.tail is not None:
            lines.extend(self.unpack_tail(self.tail))

        if not self.decl.fields:
            lines.append("return cls(), 0")
            return "\n".join(lines)

        lines.append("_value = cls(")
        for member in self.decl.fields:
            lines.append(f"    {py_name(member.name)}={_local(member)},")
        lines.append(")")
        lines.append("return _value, _o - offset")
        return "\n".join(lines)

    def convert(self, member: FieldDeclaration, raw: str) -> str:
        """Expression turning a raw integer into the field's enum or flags type."""
        if member.type.kind == TypeKind.ENUM:
            return f"_rt.decode_enum({member.type.name}, {raw})"
        if member.type.kind == TypeKind.FLAGS:
            return f"_rt.decode_flags({member.type.name}, {raw})"
        return raw

    def unpack_batch(self, members: list[FieldDeclaration]) -> list[str]:
        fmt = "<" + "".join(self.format_char(m) for m in members)
        size = sum(self.element_size(m) for m in members)
        names = ", ".join(_local(m) for m in members)
        # Add trailing comma for single values so tuple unpacking works: (val,) = (1,)
        if len(members) == 1:
            names += ","
        lines = [
            f'_rt.require(_data, _o, {size}, "{self.where(members[0])}")',
            f'({names}) = _struct.unpack_from("{fmt}", _data, _o)',
            f"_o += {size}",
        ]
        for member in members:
            if member.type.kind in (TypeKind.ENUM, TypeKind.FLAGS):
                lines.append(f"{_local(member)} = {self.convert(member, _local(member))}")
        return lines

    def unpack_field(self, member: FieldDeclaration) -> list[str]:
        local = _local(member)
        where = self.where(member)

        if member.boxed:
            return [
                f'_rt.require(_data, _o, 4, "{where}")',
                f'(_ref_{local},) = _struct.unpack_from("<I", _data, _o)',
                "_o += 4",
            ]

        if self.is_byte_array(member):
            count = member.array_length
            return [
                f'_rt.require(_data, _o, {count}, "{where}")',
                f"{local} = bytes(_data[_o:_o + {count}])",
                f"_o += {count}",
            ]

        if member.type.kind != TypeKind.MESSAGE:
            count = cast(int, member.array_length)
            fmt = f"<{count}{self.format_char(member)}"
            size = count * self.element_size(member)
            unpack = f'_struct.unpack_from("{fmt}", _data, _o)'
            if member.type.kind == TypeKind.PRIMITIVE:
                value = f"list({unpack})"
            else:
                value = f"[{self.convert(member, '_v')} for _v in {unpack}]"
            return [
                f'_rt.require(_data, _o, {size}, "{where}")',
                f"{local} = {value}",
                f"_o += {size}",
            ]

        if member.array_length is None:
            return [
                f"{local}, _n = {member.type.name}.decode_from(_data, _o)",
                "_o += _n",
            ]

        return [
            f"{local} = []",
            f"for _ in range({member.array_length}):",
            f"    _item, _n = {member.type.name}.decode_from(_data, _o)",
            "    _o += _n",
            f"    {local}.append(_item)",
        ]

    def unpack_boxed(self, member: FieldDeclaration) -> list[str]:
        local = _local(member)
        ref = f"_ref_{local}"
        where = self.where(member)
        return [
            f"if {ref} == _rt.NULL_REFERENCE:",
            f"    {local} = None",
            "else:",
            f'    _rt.require(_data, _o, {ref}, "{where}")',
            f"    {local}, _n = {member.type.name}.decode_from(_data[:_o + {ref}], _o)",
            f"    if _n != {ref}:",
            f'        raise _rt.DecodeError(f"{where}: body is {{_n}} bytes, reference says {{{ref}}}")',
            "    _o += _n",
        ]

    def unpack_tail(self, member: FieldDeclaration) -> list[str]:
        local = _local(member)
        if member.open:
            return [f"{local} = bytes(_data[_o:])", "_o = len(_data)"]
        return [
            f"{local}, _n = {member.type.name}.decode_from(_data, _o)",
            "_o += _n",
        ]


def _enum_format(decl: EnumDeclaration) -> str:
    return PRIMITIVES[decl.underlying].format_char


def _enum_size(decl: EnumDeclaration) -> int:
    return PRIMITIVES[decl.underlying].size


def _exports(protocol: ResolvedProtocol) -> list[str]:
    names = [decl.name for decl in protocol.declarations]
    names += ["REGISTRY", "decode_dispatch"]
    if protocol.dispatch:
        names.append("AnyMessage")
    return names


def render(
    protocol: ResolvedProtocol,
    sources: list[str] | None = None,
    runtime_import: str = "wiregen.proto",
) -> str:
    """Render a resolved protocol to Python source code.

    Output depends only on the declarations and the listed source names, so
    regenerating from unchanged input produces identical text.
    """
    if sources is None:
        sources = [source.path for source in protocol.files]

    return template.render(
        declarations=protocol.declarations,
        dispatch=protocol.dispatch,
        sources=sources,
        exports=_exports(protocol),
        is_enum=lambda d: isinstance(d, EnumDeclaration),
        is_flags=lambda d: isinstance(d, FlagsDeclaration),
        enum_format=_enum_format,
        enum_size=_enum_size,
        member_name=member_name,
        field_lines=lambda d: MessageWriter(d, protocol).field_lines(),
        encode_body=lambda d: MessageWriter(d, protocol).encode_body(),
        decode_body=lambda d: MessageWriter(d, protocol).decode_body(),
        runtime_import=runtime_import,
        BLANK_LINE="",
    )


def runtime() -> dict[str, str]:
    """Return the Python runtime files as a dict of filename -> content."""
    result: dict[str, str] = {}
    for filename in RUNTIME_FILES:
        content = resources.files("wiregen.proto").joinpath(filename).read_text()
        result[filename] = content
    return result
