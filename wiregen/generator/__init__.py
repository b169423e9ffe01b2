"""wiregen protocol compiler."""

from .compiler import compile_path as compile_path
from .compiler import generate as generate
from .errors import *
from .parser import parse as parse
from .resolver import Namespace as Namespace
from .resolver import ResolvedProtocol as ResolvedProtocol
from .resolver import resolve as resolve
from .sizes import SizeCalculator as SizeCalculator
from .sizes import SizeInfo as SizeInfo
from .sizes import SizeKind as SizeKind
from .types import *
