"""Static dispatch from numeric operation code to message decoder."""

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from .serialization import CodecError, DecodeError, Message


class UnknownOpCodeError(DecodeError):
    """Raised when no message type is registered for a dispatch code."""

    def __init__(self, code: int) -> None:
        super().__init__(f"no message registered for dispatch code {code}")
        self.code = code


class RegistryError(CodecError):
    """Raised when a registry is built with conflicting entries."""


class DispatchRegistry(Mapping[int, type[Message]]):
    """Read-only mapping from dispatch code to message type.

    Built once when a generated module is imported. Lookups and decoding
    share no mutable state, so a registry can be used from many threads
    without locking.

    Example:
        registry = DispatchRegistry([(5001, Ping)])
        message = registry.decode_dispatch(5001, payload)
    """

    def __init__(self, entries: Iterable[tuple[int, type[Message]]]) -> None:
        table: dict[int, type[Message]] = {}
        codes: dict[type[Message], int] = {}
        for code, message_type in entries:
            if code in table:
                raise RegistryError(
                    f"dispatch code {code} claimed by both {table[code].__name__} "
                    f"and {message_type.__name__}"
                )
            table[code] = message_type
            codes.setdefault(message_type, code)
        self._table = MappingProxyType(table)
        self._codes = MappingProxyType(codes)

    def __getitem__(self, code: int) -> type[Message]:
        return self._table[code]

    def __iter__(self) -> Iterator[int]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def decode_dispatch(self, code: int, data: bytes | bytearray | memoryview) -> Message:
        """Decode ``data`` as the message type registered for ``code``."""
        message_type = self._table.get(code)
        if message_type is None:
            raise UnknownOpCodeError(code)
        return message_type.decode(data)

    def code_for(self, message: Message | type[Message]) -> int:
        """Return the dispatch code of a message or message type."""
        message_type = message if isinstance(message, type) else type(message)
        try:
            return self._codes[message_type]
        except KeyError:
            raise RegistryError(f"{message_type.__name__} has no dispatch code") from None

    def encode_dispatch(self, message: Message) -> tuple[int, bytes]:
        """Encode a message together with its dispatch code."""
        return self.code_for(message), message.encode()
