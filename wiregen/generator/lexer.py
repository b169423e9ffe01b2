"""Tokenizer for protocol definition files, built on a Lark terminal grammar."""

import os
import threading

from lark import Lark, Token
from lark.exceptions import UnexpectedCharacters

from .errors import LexError
from .types import SourceLocation

EOF = "EOF"

_g_lexer: Lark | None = None
_g_lock = threading.Lock()


def _get_lexer() -> Lark:
    global _g_lexer

    with _g_lock:
        if not _g_lexer:
            with open(f"{os.path.dirname(__file__)}/tokens.lark", encoding="utf-8") as f:
                grammar = f.read()
            _g_lexer = Lark(grammar, parser="lalr", lexer="basic")
    return _g_lexer


def _end_token(text: str) -> Token:
    line = text.count("\n") + 1
    column = len(text) - text.rfind("\n")
    return Token(EOF, "", start_pos=len(text), line=line, column=column)


def tokenize(text: str, filename: str = "<input>") -> list[Token]:
    """Split protocol source text into tokens.

    Comments and whitespace are discarded. The returned list always ends with
    an ``EOF`` token.
    """
    try:
        tokens = list(_get_lexer().lex(text))
    except UnexpectedCharacters as e:
        location = SourceLocation(filename, e.line, e.column)
        if text.startswith("/*", e.pos_in_stream):
            raise LexError("unterminated block comment", location) from None
        raise LexError(f"unexpected character {text[e.pos_in_stream]!r}", location) from None

    tokens.append(_end_token(text))
    return tokens


def location_of(token: Token, filename: str) -> SourceLocation:
    """Return the source location of a token."""
    return SourceLocation(filename, token.line or 1, token.column or 1)
