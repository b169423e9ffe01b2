"""Runtime support for wiregen generated protocol modules."""

from .registry import DispatchRegistry as DispatchRegistry
from .registry import RegistryError as RegistryError
from .registry import UnknownOpCodeError as UnknownOpCodeError
from .serialization import NULL_REFERENCE as NULL_REFERENCE
from .serialization import REFERENCE_SIZE as REFERENCE_SIZE
from .serialization import Codec as Codec
from .serialization import CodecError as CodecError
from .serialization import DecodeError as DecodeError
from .serialization import EncodeError as EncodeError
from .serialization import InvalidValueError as InvalidValueError
from .serialization import Message as Message
from .serialization import TruncatedInputError as TruncatedInputError
from .serialization import WireEnum as WireEnum
from .serialization import WireFlags as WireFlags
from .serialization import decode_enum as decode_enum
from .serialization import decode_flags as decode_flags
from .serialization import require as require
