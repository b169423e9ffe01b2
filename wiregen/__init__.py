"""wiregen - Protocol definition compiler producing binary codecs."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("wiregen")
except PackageNotFoundError:
    __version__ = "(local)"
