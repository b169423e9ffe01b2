"""Tests for serialization"""

import os
import struct
from concurrent.futures import ThreadPoolExecutor

from pytest import raises

from wiregen.generator import parse, resolve
from wiregen.generator.python import render
from wiregen.proto import (
    NULL_REFERENCE,
    DecodeError,
    EncodeError,
    InvalidValueError,
    TruncatedInputError,
    UnknownOpCodeError,
)

FILE_DIR = os.path.dirname(os.path.realpath(__file__))


def gen_code(file_name):
    gbl = globals().copy()

    with open(file_name) as f:
        text = f.read()

    protocol = resolve([parse(text, file_name)])
    generated_code = render(protocol, runtime_import="wiregen.proto")
    exec(generated_code, gbl)
    return gbl


GEN = gen_code(FILE_DIR + "/messages.wire")


def describe_serialization():
    def test_simple_message(expect):
        Ping = GEN["Ping"]

        ping = Ping(clientId=1, timestamp=100)
        packed = ping.encode()
        expect(packed) == bytes.fromhex("01000000" "6400000000000000")
        expect(len(packed)) == 12

        expect(Ping.decode(packed)) == ping
        recovered, consumed = Ping.decode_from(packed)
        expect(recovered) == ping
        expect(consumed) == 12

    def test_mixed_scalars(expect):
        Mixed = GEN["Mixed"]
        Direction = GEN["Direction"]
        Access = GEN["Access"]

        mixed = Mixed(
            a=-1,
            b=-2,
            flag=True,
            direction=Direction.Left,
            access=Access.Read | Access.Write,
            big=5,
        )
        packed = mixed.encode()
        expect(packed) == bytes.fromhex("ff" "feff" "01" "02" "03" "0500000000000000")

        recovered = Mixed.decode(packed)
        expect(recovered) == mixed
        expect(recovered.direction is Direction.Left) == True
        expect(recovered.access) == Access.Read | Access.Write

    def test_arrays(expect):
        Arrays = GEN["Arrays"]
        Direction = GEN["Direction"]
        Point = GEN["Point"]

        arrays = Arrays(
            ids=[1, 2, 3],
            dirs=[Direction.Up, Direction.Right],
            key=b"abcd",
            points=[Point(x=1, y=2), Point(x=-1, y=0)],
        )
        packed = arrays.encode()
        expect(packed) == bytes.fromhex(
            "010002000300" "0003" "61626364" "0100000002000000" "ffffffff00000000"
        )
        expect(Arrays.decode(packed)) == arrays

    def test_trailing_open_field(expect):
        Envelope = GEN["Envelope"]
        Header = GEN["Header"]

        envelope = Envelope(
            header=Header(msg=5001, targetJobId=1, sourceJobId=2), kind=7, payload=b"xyz"
        )
        packed = envelope.encode()
        expect(packed) == bytes.fromhex(
            "89130000" "0100000000000000" "0200000000000000" "0700" "78797a"
        )

        recovered, consumed = Envelope.decode_from(packed)
        expect(recovered) == envelope
        expect(consumed) == len(packed)

    def test_empty_trailing_field(expect):
        Envelope = GEN["Envelope"]

        packed = Envelope(kind=1).encode()
        expect(len(packed)) == 22
        expect(Envelope.decode(packed).payload) == b""

    def test_open_message_embedded_last(expect):
        Wrapped = GEN["Wrapped"]
        Envelope = GEN["Envelope"]

        wrapped = Wrapped(tag=9, inner=Envelope(kind=1, payload=b"z"))
        packed = wrapped.encode()
        expect(packed) == bytes.fromhex("09" + "00" * 20 + "0100" + "7a")
        expect(Wrapped.decode(packed)) == wrapped

    def test_boxed_references(expect):
        TreeNode = GEN["TreeNode"]

        tree = TreeNode(value=1, left=TreeNode(value=2))
        packed = tree.encode()
        expect(packed) == bytes.fromhex(
            "01000000" "0c000000" "ffffffff" "02000000" "ffffffff" "ffffffff"
        )
        expect(TreeNode.decode(packed)) == tree

    def test_deep_boxed_tree(expect):
        TreeNode = GEN["TreeNode"]

        tree = TreeNode(
            value=1,
            left=TreeNode(value=2, right=TreeNode(value=3)),
            right=TreeNode(value=4, left=TreeNode(value=5)),
        )
        expect(TreeNode.decode(tree.encode())) == tree

    def test_enum_and_flags_fields(expect):
        Status = GEN["Status"]
        Result = GEN["Result"]
        Access = GEN["Access"]

        status = Status(result=Result.Busy, granted=Access.Read | Access.Execute)
        packed = status.encode()
        expect(packed) == bytes.fromhex("03000000" "05")
        expect(Status.decode(packed)) == status

    def test_empty_message(expect):
        Empty = GEN["Empty"]

        expect(Empty().encode()) == b""
        expect(Empty.decode_from(b"abc")) == (Empty(), 0)

    def test_defaults(expect):
        Mixed = GEN["Mixed"]
        Arrays = GEN["Arrays"]
        Direction = GEN["Direction"]
        Access = GEN["Access"]

        mixed = Mixed()
        expect(mixed.direction) == Direction.Up
        expect(mixed.access) == Access(0)
        expect(len(mixed.encode())) == 14

        arrays = Arrays()
        expect(arrays.key) == b"\x00" * 4
        expect(len(arrays.encode())) == 28

    def test_round_trips(expect):
        Ping = GEN["Ping"]
        Mixed = GEN["Mixed"]
        TreeNode = GEN["TreeNode"]
        Envelope = GEN["Envelope"]

        values = [
            Ping(clientId=0xFFFFFFFF, timestamp=0xFFFFFFFFFFFFFFFF),
            Mixed(a=-128, b=32767, big=-(2**63)),
            TreeNode(value=7, right=TreeNode(value=8)),
            Envelope(kind=65535, payload=bytes(range(256))),
        ]
        for value in values:
            packed = value.encode()
            expect(type(value).decode(packed)) == value
            expect(type(value).decode(packed).encode()) == packed


def describe_enums_and_flags():
    def encodes_enum_at_underlying_width(expect):
        Direction = GEN["Direction"]
        Result = GEN["Result"]

        expect(Direction.Left.encode()) == b"\x02"
        expect(Result.Busy.encode()) == b"\x03\x00\x00\x00"
        expect(Result.decode(b"\x02\x00\x00\x00")) == Result.Fail

    def auto_increments_enum_values(expect):
        Direction = GEN["Direction"]
        Result = GEN["Result"]

        expect([d.value for d in Direction]) == [0, 1, 2, 3]
        expect(Result.Busy.value) == 3

    def combines_flags(expect):
        Access = GEN["Access"]

        combined = Access.Read | Access.Write
        expect(combined.encode()) == b"\x03"

        decoded = Access.decode(b"\x03")
        expect(decoded) == combined
        expect(list(decoded)) == [Access.Read, Access.Write]

    def reports_size_hints(expect):
        expect(GEN["Direction"].size_hint()) == 1
        expect(GEN["Result"].size_hint()) == 4
        expect(GEN["Ping"].size_hint()) == 12
        expect(GEN["Envelope"].size_hint()) == 22
        expect(GEN["TreeNode"].size_hint()) == 12
        expect(GEN["Empty"].size_hint()) == 0


def describe_dispatch():
    def decodes_registered_code(expect):
        Ping = GEN["Ping"]
        decode_dispatch = GEN["decode_dispatch"]

        ping = Ping(clientId=1, timestamp=100)
        expect(decode_dispatch(5001, ping.encode())) == ping
        expect(Ping.OPCODE) == 5001

    def rejects_unknown_code(expect):
        decode_dispatch = GEN["decode_dispatch"]

        with raises(UnknownOpCodeError) as exc:
            decode_dispatch(9999, b"\x00" * 12)
        expect(exc.value.code) == 9999

    def registers_every_dispatched_message(expect):
        registry = GEN["REGISTRY"]

        expect(sorted(registry)) == [0x10, 0x11, 0x12, 5001]
        expect(registry[0x10]) == GEN["Envelope"]
        expect(registry.code_for(GEN["Status"])) == 0x12

    def decodes_from_many_threads(expect):
        Ping = GEN["Ping"]
        decode_dispatch = GEN["decode_dispatch"]

        payloads = [Ping(clientId=i, timestamp=i * 10).encode() for i in range(200)]
        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda p: decode_dispatch(5001, p), payloads))
        expect([r.clientId for r in results]) == list(range(200))


def describe_error_handling():
    def rejects_truncated_fixed_message(expect):
        Ping = GEN["Ping"]

        packed = Ping(clientId=1, timestamp=100).encode()
        with raises(TruncatedInputError) as exc:
            Ping.decode(packed[:-1])
        expect(exc.value.needed) == 12
        expect(exc.value.available) == 11

    def rejects_truncated_prefix_of_open_message(expect):
        Envelope = GEN["Envelope"]

        with raises(TruncatedInputError):
            Envelope.decode(b"\x00" * 21)

    def rejects_empty_input(expect):
        with raises(TruncatedInputError):
            GEN["Direction"].decode(b"")
        with raises(TruncatedInputError):
            GEN["Point"].decode(b"")

    def rejects_reference_past_end(expect):
        TreeNode = GEN["TreeNode"]

        data = struct.pack("<III", 1, 100, NULL_REFERENCE)
        with raises(TruncatedInputError):
            TreeNode.decode(data)

    def rejects_reference_length_mismatch(expect):
        TreeNode = GEN["TreeNode"]

        body = TreeNode(value=2).encode()
        data = struct.pack("<III", 1, len(body) + 1, NULL_REFERENCE) + body + b"\x00"
        with raises(DecodeError) as exc:
            TreeNode.decode(data)
        expect("TreeNode.left" in str(exc.value)) == True

    def rejects_excessive_nesting(expect):
        TreeNode = GEN["TreeNode"]

        body = TreeNode(value=0).encode()
        for _ in range(5000):
            body = struct.pack("<III", 0, len(body), NULL_REFERENCE) + body
        with raises(DecodeError) as exc:
            TreeNode.decode(body)
        expect("nesting too deep" in str(exc.value)) == True

    def rejects_undeclared_enum_value(expect):
        Status = GEN["Status"]

        with raises(InvalidValueError):
            Status.decode(bytes.fromhex("07000000" "01"))
        with raises(InvalidValueError):
            GEN["Direction"].decode(b"\x09")

    def rejects_undeclared_flag_bits(expect):
        Status = GEN["Status"]

        with raises(InvalidValueError):
            Status.decode(bytes.fromhex("01000000" "08"))

    def rejects_value_out_of_range(expect):
        Ping = GEN["Ping"]

        with raises(EncodeError):
            Ping(clientId=-1).encode()

    def rejects_wrong_array_length(expect):
        Arrays = GEN["Arrays"]

        with raises(EncodeError):
            Arrays(ids=[1, 2]).encode()
        with raises(EncodeError):
            Arrays(key=b"abc").encode()
