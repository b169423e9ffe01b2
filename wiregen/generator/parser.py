"""Recursive-descent parser for protocol definition files."""

from lark import Token

from .errors import ParseError
from .folding import fold
from .lexer import EOF, location_of, tokenize
from .types import (
    BinaryOp,
    Declaration,
    EnumDeclaration,
    EnumMember,
    Expr,
    FieldDeclaration,
    FlagsDeclaration,
    FlagsMember,
    Literal,
    MessageDeclaration,
    NameRef,
    Negate,
    SourceFile,
    SourceLocation,
    TypeReference,
)

_DESCRIPTIONS = {
    "ENUM": "'enum'",
    "FLAGS": "'flags'",
    "MESSAGE": "'message'",
    "BOXED": "'boxed'",
    "NAME": "identifier",
    "NUMBER": "number",
    "LBRACE": "'{'",
    "RBRACE": "'}'",
    "LPAREN": "'('",
    "RPAREN": "')'",
    "LBRACKET": "'['",
    "RBRACKET": "']'",
    "EQUALS": "'='",
    "SEMICOLON": "';'",
    "SHL": "'<<'",
    "LT": "'<'",
    "GT": "'>'",
    "DCOLON": "'::'",
    "COLON": "':'",
    "PIPE": "'|'",
    "MINUS": "'-'",
    EOF: "end of file",
}


def _describe(token: Token) -> str:
    if token.type in ("NAME", "NUMBER"):
        return f"{_DESCRIPTIONS[token.type]} '{token.value}'"
    return _DESCRIPTIONS.get(token.type, repr(token.value))


def parse_number(text: str) -> int:
    if text[:2] in ("0x", "0X"):
        return int(text[2:], 16)
    return int(text, 10)


class Parser:
    """Builds declarations from a token stream.

    Any grammar violation raises ParseError and aborts the whole file.
    """

    def __init__(self, tokens: list[Token], filename: str):
        self.tokens = tokens
        self.filename = filename
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def location(self, token: Token | None = None) -> SourceLocation:
        return location_of(token if token is not None else self.current, self.filename)

    def error(self, expected: str) -> ParseError:
        return ParseError(self.location(), expected, _describe(self.current))

    def at(self, *types: str) -> bool:
        return self.current.type in types

    def accept(self, type_: str) -> Token | None:
        if self.current.type == type_:
            token = self.current
            self.pos += 1
            return token
        return None

    def expect(self, type_: str) -> Token:
        token = self.accept(type_)
        if token is None:
            raise self.error(_DESCRIPTIONS[type_])
        return token

    def parse_file(self) -> SourceFile:
        declarations: list[Declaration] = []
        while not self.at(EOF):
            declarations.append(self.parse_declaration())
        return SourceFile(path=self.filename, declarations=declarations)

    def parse_declaration(self) -> Declaration:
        if self.at("ENUM", "FLAGS"):
            return self.parse_enum()
        if self.at("MESSAGE"):
            return self.parse_message()
        raise self.error("'enum', 'flags' or 'message'")

    def parse_enum(self) -> EnumDeclaration:
        keyword = self.current
        is_flags = keyword.type == "FLAGS"
        self.pos += 1
        name = self.expect("NAME")

        underlying: str | None = None
        if self.accept("COLON"):
            underlying = str(self.expect("NAME"))

        member_class = FlagsMember if is_flags else EnumMember
        members: list[EnumMember] = []
        self.expect("LBRACE")
        while not self.accept("RBRACE"):
            member_name = self.expect("NAME")
            expr = None
            if self.accept("EQUALS"):
                expr = fold(self.parse_expr())
            self.expect("SEMICOLON")
            members.append(
                member_class(name=str(member_name), location=self.location(member_name), expr=expr)
            )
        self.accept("SEMICOLON")

        decl_class = FlagsDeclaration if is_flags else EnumDeclaration
        decl = decl_class(name=str(name), location=self.location(keyword), members=members)
        if underlying is not None:
            decl.underlying = underlying
        return decl

    def parse_message(self) -> MessageDeclaration:
        keyword = self.expect("MESSAGE")
        name = self.expect("NAME")

        opcode = None
        if self.accept("LT"):
            opcode = fold(self.parse_expr())
            self.expect("GT")

        fields: list[FieldDeclaration] = []
        self.expect("LBRACE")
        while not self.accept("RBRACE"):
            fields.append(self.parse_field())
        self.accept("SEMICOLON")

        return MessageDeclaration(
            name=str(name), location=self.location(keyword), fields=fields, opcode=opcode
        )

    def parse_field(self) -> FieldDeclaration:
        start = self.current
        boxed = self.accept("BOXED") is not None
        type_token = self.expect("NAME")
        name = self.expect("NAME")

        array_length = None
        is_open = False
        if self.accept("LBRACKET"):
            size = self.accept("NUMBER")
            if size is None:
                is_open = True
            else:
                array_length = parse_number(size)
            self.expect("RBRACKET")
        self.expect("SEMICOLON")

        return FieldDeclaration(
            type=TypeReference(name=str(type_token), location=self.location(type_token)),
            name=str(name),
            location=self.location(start),
            array_length=array_length,
            open=is_open,
            boxed=boxed,
        )

    def parse_expr(self) -> Expr:
        expr = self.parse_shift()
        while True:
            op = self.accept("PIPE")
            if op is None:
                return expr
            expr = BinaryOp("|", expr, self.parse_shift(), self.location(op))

    def parse_shift(self) -> Expr:
        left = self.parse_unary()
        op = self.accept("SHL")
        if op is None:
            return left
        right = self.parse_unary()
        if self.at("SHL"):
            raise self.error("'|', ';' or ')' (parenthesize chained shifts)")
        return BinaryOp("<<", left, right, self.location(op))

    def parse_unary(self) -> Expr:
        if self.accept("MINUS"):
            return Negate(self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> Expr:
        number = self.accept("NUMBER")
        if number is not None:
            return Literal(parse_number(number))

        if self.accept("LPAREN"):
            expr = self.parse_expr()
            self.expect("RPAREN")
            return expr

        name = self.accept("NAME")
        if name is None:
            raise self.error("number, identifier or '('")
        if self.accept("DCOLON"):
            member = self.expect("NAME")
            return NameRef(name=str(member), scope=str(name), location=self.location(name))
        return NameRef(name=str(name), scope=None, location=self.location(name))


def parse(text: str, filename: str = "<input>") -> SourceFile:
    """Parse a protocol definition file."""
    parser = Parser(tokenize(text, filename), filename)
    try:
        return parser.parse_file()
    except RecursionError:
        raise parser.error("a less deeply nested expression") from None
