"""Constant folding for enum, flags and dispatch code expressions.

Evaluation order is fixed by the grammar: unary minus binds tightest, then
``<<`` (non-associative), then ``|`` (left-associative).
"""

from collections.abc import Callable

from .errors import CyclicTypeError, InvalidDeclarationError, UnresolvedTypeError
from .types import (
    BinaryOp,
    EnumDeclaration,
    Expr,
    FlagsDeclaration,
    Literal,
    NameRef,
    Negate,
)

MAX_SHIFT = 64


def has_references(expr: Expr) -> bool:
    """Check if an expression refers to any named constant."""
    if isinstance(expr, NameRef):
        return True
    if isinstance(expr, Negate):
        return has_references(expr.operand)
    if isinstance(expr, BinaryOp):
        return has_references(expr.left) or has_references(expr.right)
    return False


def evaluate(expr: Expr, lookup: Callable[[NameRef], int]) -> int:
    """Evaluate an expression, resolving names through ``lookup``."""
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, NameRef):
        return lookup(expr)
    if isinstance(expr, Negate):
        return -evaluate(expr.operand, lookup)

    left = evaluate(expr.left, lookup)
    right = evaluate(expr.right, lookup)
    if expr.op == "|":
        return left | right
    if expr.op == "<<":
        if not 0 <= right <= MAX_SHIFT:
            raise InvalidDeclarationError(
                f"shift amount {right} outside 0..{MAX_SHIFT}", expr.location
            )
        return left << right
    raise ValueError(f"Unknown operator: {expr.op}")


def _no_names(ref: NameRef) -> int:
    raise UnresolvedTypeError(str(ref), ref.location, what="constant")


def fold(expr: Expr) -> Expr:
    """Fold an expression without references into a literal."""
    if has_references(expr):
        return expr
    return Literal(evaluate(expr, _no_names))


def auto_value(decl: EnumDeclaration, previous: int | None) -> int:
    """Value of a member declared without an expression.

    Enums continue from the previous member (first member 0). Flags take the
    next bit above the previous member's highest bit (first member 1).
    """
    if isinstance(decl, FlagsDeclaration):
        return 1 << previous.bit_length() if previous is not None else 1
    return previous + 1 if previous is not None else 0


class ConstantFolder:
    """Evaluates every member value of the enums and flags in a namespace.

    Results are memoized and written back to ``EnumMember.value``. Members
    may refer to each other (``ReadWrite = Read | Write``) and to members of
    other declarations (``EMsg::Ping``) in any order; reference cycles raise
    CyclicTypeError.
    """

    def __init__(self, lookup_declaration: Callable[[str], object]):
        self._lookup_declaration = lookup_declaration
        self._values: dict[tuple[str, int], int] = {}
        self._in_progress: list[tuple[tuple[str, int], str]] = []

    def fold_declaration(self, decl: EnumDeclaration) -> None:
        for index, member in enumerate(decl.members):
            member.value = self.member_value(decl, index)

    def evaluate(self, expr: Expr, scope: EnumDeclaration | None) -> int:
        """Evaluate an expression where bare names refer to members of ``scope``."""
        return evaluate(expr, lambda ref: self._resolve(ref, scope))

    def member_value(self, decl: EnumDeclaration, index: int) -> int:
        """Value of ``decl.members[index]``.

        A run of auto-valued members is filled forward from the closest
        member that is already known or has an explicit value, so long runs
        do not recurse once per member.
        """
        if (decl.name, index) in self._values:
            return self._values[(decl.name, index)]

        start = index
        while (
            start > 0
            and decl.members[start].expr is None
            and (decl.name, start) not in self._values
        ):
            start -= 1

        previous = None
        for position in range(start, index + 1):
            known = self._values.get((decl.name, position))
            previous = known if known is not None else self._compute(decl, position, previous)
        return self._values[(decl.name, index)]

    def _compute(self, decl: EnumDeclaration, index: int, previous: int | None) -> int:
        member = decl.members[index]
        key = (decl.name, index)
        label = f"{decl.name}::{member.name}"

        keys = [k for k, _ in self._in_progress]
        if key in keys:
            path = [name for _, name in self._in_progress[keys.index(key):]] + [label]
            raise CyclicTypeError(path, member.location)

        self._in_progress.append((key, label))
        try:
            if member.expr is not None:
                value = self.evaluate(member.expr, decl)
            else:
                value = auto_value(decl, previous)
        finally:
            self._in_progress.pop()

        self._values[key] = value
        return value

    def _resolve(self, ref: NameRef, scope: EnumDeclaration | None) -> int:
        if ref.scope is not None:
            target = self._lookup_declaration(ref.scope)
            if not isinstance(target, EnumDeclaration):
                raise UnresolvedTypeError(ref.scope, ref.location, what="enum or flags")
        elif scope is not None:
            target = scope
        else:
            raise UnresolvedTypeError(ref.name, ref.location, what="constant")

        for index, member in enumerate(target.members):
            if member.name == ref.name:
                return self.member_value(target, index)
        raise UnresolvedTypeError(str(ref), ref.location, what="constant")

