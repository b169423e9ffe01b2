"""Tests for protocol parser."""

import os

import pytest

from wiregen.generator import parse
from wiregen.generator.errors import ParseError
from wiregen.generator.types import (
    BinaryOp,
    EnumDeclaration,
    FlagsDeclaration,
    Literal,
    MessageDeclaration,
    NameRef,
    Negate,
)

FILE_DIR = os.path.dirname(os.path.realpath(__file__))


def describe_parse_enum():
    def parses_simple_enum(expect):
        source = parse(
            """
            enum Color {
                Red = 0;
                Green = 1;
                Blue = 2;
            }
        """
        )
        expect(len(source.declarations)) == 1
        decl = source.declarations[0]
        expect(type(decl)) == EnumDeclaration
        expect(decl.name) == "Color"
        expect(decl.underlying) == "int32"
        expect([m.name for m in decl.members]) == ["Red", "Green", "Blue"]
        expect(decl.members[1].expr) == Literal(1)

    def parses_underlying_type(expect):
        source = parse(
            """
            enum Small : uint8 { A; }
            enum Large : uint64 { B; }
        """
        )
        expect([d.underlying for d in source.declarations]) == ["uint8", "uint64"]

    def leaves_auto_members_without_expression(expect):
        source = parse("enum E { A; B = 5; C; }")
        members = source.declarations[0].members
        expect(members[0].expr) == None
        expect(members[2].expr) == None

    def accepts_trailing_semicolon(expect):
        source = parse("enum E { A; }; message M { };")
        expect([d.name for d in source.declarations]) == ["E", "M"]

    def parses_flags(expect):
        source = parse(
            """
            flags EPermission : uint8 {
                None = 0;
                Read = 1 << 0;
                Write = 1 << 1;
                ReadWrite = Read | Write;
            }
        """
        )
        decl = source.declarations[0]
        expect(type(decl)) == FlagsDeclaration
        expect(decl.underlying) == "uint8"
        expect(decl.members[1].expr) == Literal(1)
        expect(decl.members[2].expr) == Literal(2)
        expect(type(decl.members[3].expr)) == BinaryOp

    def defaults_flags_to_uint32(expect):
        source = parse("flags F { A; }")
        expect(source.declarations[0].underlying) == "uint32"


def member_expr(text):
    return parse(f"enum E {{ X = {text}; }}").declarations[0].members[0].expr


def describe_parse_expressions():
    def folds_literals(expect):
        expect(member_expr("0x158A")) == Literal(0x158A)
        expect(member_expr("1 << 4 | 1")) == Literal(17)
        expect(member_expr("-5")) == Literal(-5)
        expect(member_expr("--5")) == Literal(5)

    def binds_shift_tighter_than_or(expect):
        expect(member_expr("1 | 1 << 3")) == Literal(9)
        expect(member_expr("(1 | 1) << 3")) == Literal(16)

    def keeps_references(expect):
        expr = member_expr("EMsg::Ping")
        expect(type(expr)) == NameRef
        expect(expr.scope) == "EMsg"
        expect(expr.name) == "Ping"

        expr = member_expr("-Other")
        expect(type(expr)) == Negate
        expect(expr.operand.name) == "Other"
        expect(expr.operand.scope) == None

    def rejects_chained_shift(expect):
        with pytest.raises(ParseError) as exc:
            parse("enum E { X = 1 << 2 << 3; }")
        expect("chained shifts" in exc.value.message) == True

    def accepts_parenthesized_chained_shift(expect):
        expect(member_expr("(1 << 2) << 3")) == Literal(32)


def describe_parse_message():
    def parses_simple_message(expect):
        source = parse(
            """
            message Point {
                int32 x;
                int32 y;
            }
        """
        )
        decl = source.declarations[0]
        expect(type(decl)) == MessageDeclaration
        expect(decl.name) == "Point"
        expect([f.name for f in decl.fields]) == ["x", "y"]
        expect(decl.fields[0].type.name) == "int32"
        expect(decl.opcode) == None

    def parses_all_primitive_types(expect):
        source = parse(
            """
            message AllTypes {
                bool a; byte b;
                int8 c; uint8 d;
                int16 e; uint16 f;
                int32 g; uint32 h;
                int64 i; uint64 j;
            }
        """
        )
        names = [f.type.name for f in source.declarations[0].fields]
        expect(names) == [
            "bool",
            "byte",
            "int8",
            "uint8",
            "int16",
            "uint16",
            "int32",
            "uint32",
            "int64",
            "uint64",
        ]

    def parses_dispatch_code(expect):
        source = parse(
            """
            message Ping<EMsg::Ping> { }
            message Pong<0x10> { }
        """
        )
        ping, pong = source.declarations
        expect(type(ping.opcode)) == NameRef
        expect(str(ping.opcode)) == "EMsg::Ping"
        expect(pong.opcode) == Literal(16)

    def parses_arrays(expect):
        source = parse(
            """
            message Arrays {
                uint16 ids[3];
                byte payload[];
            }
        """
        )
        ids, payload = source.declarations[0].fields
        expect(ids.array_length) == 3
        expect(ids.open) == False
        expect(payload.array_length) == None
        expect(payload.open) == True

    def parses_boxed_fields(expect):
        source = parse("message Node { boxed Node next; Node other; }")
        boxed, inline = source.declarations[0].fields
        expect(boxed.boxed) == True
        expect(boxed.type.name) == "Node"
        expect(inline.boxed) == False

    def parses_empty_message(expect):
        source = parse("message Empty {}")
        expect(source.declarations[0].fields) == []

    def records_locations(expect):
        source = parse("\n\nmessage M {\n    uint8 a;\n}", "m.wire")
        decl = source.declarations[0]
        expect(str(decl.location)) == "m.wire:3:1"
        expect(str(decl.fields[0].location)) == "m.wire:4:5"
        expect(source.path) == "m.wire"

    def parses_protocol_file(expect):
        with open(f"{FILE_DIR}/protocol.wire") as f:
            source = parse(f.read(), "protocol.wire")
        expect([d.name for d in source.declarations]) == [
            "EMsg",
            "EPermission",
            "PingMessage",
            "PongMessage",
        ]


def describe_parse_errors():
    def reports_expected_and_found(expect):
        with pytest.raises(ParseError) as exc:
            parse("message M {\n    uint32 id\n}", "bad.wire")
        error = exc.value
        expect(error.expected) == "';'"
        expect(error.found) == "'}'"
        expect(str(error)) == "bad.wire:3:1: ParseError: expected ';', found '}'"

    def rejects_unknown_declaration(expect):
        with pytest.raises(ParseError) as exc:
            parse("struct S { }")
        expect(exc.value.found) == "identifier 'struct'"

    def rejects_missing_brace(expect):
        with pytest.raises(ParseError) as exc:
            parse("enum E { A;")
        expect(exc.value.found) == "end of file"

    def rejects_bad_array_length(expect):
        with pytest.raises(ParseError):
            parse("message M { uint8 a[x]; }")

    def rejects_unterminated_dispatch_code(expect):
        with pytest.raises(ParseError) as exc:
            parse("message M<1 { }")
        expect(exc.value.expected) == "'>'"

    def rejects_keyword_as_name(expect):
        with pytest.raises(ParseError):
            parse("message message { }")

    def rejects_deeply_nested_expressions(expect):
        depth = 2000
        with pytest.raises(ParseError) as exc:
            parse("enum E { A = " + "(" * depth + "1" + ")" * depth + "; }", "deep.wire")
        expect(exc.value.expected) == "a less deeply nested expression"
