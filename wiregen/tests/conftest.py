"""Unit tests configuration file."""

import pytest

from wiregen.generator import parse, resolve
from wiregen.generator.python import render


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


@pytest.fixture
def compile_module():
    """Compile protocol text and exec the generated module.

    Returns the module globals.
    """

    def compile_text(text, runtime_import="wiregen.proto"):
        gbl = globals().copy()
        protocol = resolve([parse(text, "inline.wire")])
        exec(render(protocol, runtime_import=runtime_import), gbl)
        return gbl

    return compile_text
