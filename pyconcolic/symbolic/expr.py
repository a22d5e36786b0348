"""
Symbolic expression model.

Expressions are immutable trees (in practice DAGs: equal sub-expressions are
freely shared between values) built from four node kinds:

    Var(name, type)           a symbolic input
    Const(value)              a concrete constant lifted into an expression
    UnOp(op, operand)         a unary operator application
    BinOp(op, left, right)    a binary operator application

Operator names are the Python operator spellings ("+", "//", "<=", ...) plus
a handful of named unary operators ("neg", "abs", "not", "floor", ...). The
same operator tables drive concrete propagation (``symbolic.tagging``),
re-evaluation during trace verification, and solver translation.

Traversals are iterative: a loop such as ``for _ in range(n): x = x + 1``
produces an expression n levels deep, and recursion would hit the
interpreter's stack limit long before the solver gives up.
"""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Mapping, Union

from ..errors import UnsupportedExpressionError


def _logical_and(a: Any, b: Any) -> bool:
    return bool(a) and bool(b)


def _logical_or(a: Any, b: Any) -> bool:
    return bool(a) or bool(b)


BINARY_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "//": operator.floordiv,
    "%": operator.mod,
    "**": operator.pow,
    "<<": operator.lshift,
    ">>": operator.rshift,
    "&": operator.and_,
    "|": operator.or_,
    "^": operator.xor,
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "and": _logical_and,
    "or": _logical_or,
}

UNARY_OPS: Dict[str, Callable[[Any], Any]] = {
    "neg": operator.neg,
    "pos": operator.pos,
    "abs": abs,
    "invert": operator.invert,
    "not": operator.not_,
    "floor": math.floor,
    "ceil": math.ceil,
    "trunc": math.trunc,
}

COMPARISON_OPS: FrozenSet[str] = frozenset({"==", "!=", "<", "<=", ">", ">="})
LOGICAL_OPS: FrozenSet[str] = frozenset({"and", "or"})

_UNARY_SPELLING = {"neg": "-", "pos": "+", "invert": "~", "not": "not "}


class _Node:
    """Shared behaviour of all expression nodes (hash caching, traversal)."""

    __slots__ = ()

    def _key(self) -> tuple:
        raise NotImplementedError

    def children(self) -> tuple:
        return ()

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if type(self) is not type(other):
            return NotImplemented
        return self._hash == other._hash and self._key() == other._key()

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def variables(self) -> FrozenSet["Var"]:
        """All symbolic inputs this expression depends on."""
        return frozenset(node for node in postorder(self) if isinstance(node, Var))

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        """Evaluate with Python semantics, reading inputs from ``env``."""
        return evaluate(self, env)


@dataclass(frozen=True, eq=False)
class Var(_Node):
    """A symbolic input; ``type`` is the declared Python type of the input."""

    name: str
    type: type = int
    _hash: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_hash", hash(("Var", self.name, self.type)))

    def _key(self) -> tuple:
        return (self.name, self.type)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, eq=False)
class Const(_Node):
    value: Any
    _hash: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # bool and int compare equal in Python but are different constants here.
        object.__setattr__(self, "_hash", hash(("Const", type(self.value), self.value)))

    def _key(self) -> tuple:
        return (type(self.value), self.value)

    def __str__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True, eq=False)
class UnOp(_Node):
    op: str
    operand: "SymExpr"
    _hash: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_hash", hash(("UnOp", self.op, self.operand)))

    def _key(self) -> tuple:
        return (self.op, self.operand)

    def children(self) -> tuple:
        return (self.operand,)

    def __str__(self) -> str:
        spelling = _UNARY_SPELLING.get(self.op)
        if spelling is not None:
            return f"({spelling}{self.operand})"
        return f"{self.op}({self.operand})"


@dataclass(frozen=True, eq=False)
class BinOp(_Node):
    op: str
    left: "SymExpr"
    right: "SymExpr"
    _hash: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_hash", hash(("BinOp", self.op, self.left, self.right)))

    def _key(self) -> tuple:
        return (self.op, self.left, self.right)

    def children(self) -> tuple:
        return (self.left, self.right)

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"


SymExpr = Union[Var, Const, UnOp, BinOp]


def is_expr(obj: Any) -> bool:
    return isinstance(obj, _Node)


def postorder(expr: SymExpr) -> Iterator[SymExpr]:
    """
    Yield every distinct node of ``expr`` with children before parents.

    Shared sub-expressions are visited once (identity-based).
    """
    seen = set()
    stack = [(expr, False)]
    while stack:
        node, expanded = stack.pop()
        if id(node) in seen:
            continue
        if expanded:
            seen.add(id(node))
            yield node
            continue
        stack.append((node, True))
        for child in reversed(node.children()):
            if id(child) not in seen:
                stack.append((child, False))


def evaluate(expr: SymExpr, env: Mapping[str, Any]) -> Any:
    """Concrete value of ``expr`` under the input assignment ``env``."""
    values: Dict[int, Any] = {}
    for node in postorder(expr):
        if isinstance(node, Var):
            try:
                values[id(node)] = env[node.name]
            except KeyError:
                raise KeyError(f"no concrete value for symbolic input {node.name!r}") from None
        elif isinstance(node, Const):
            values[id(node)] = node.value
        elif isinstance(node, UnOp):
            fn = UNARY_OPS.get(node.op)
            if fn is None:
                raise UnsupportedExpressionError(f"unknown unary operator {node.op!r}")
            values[id(node)] = fn(values[id(node.operand)])
        else:
            fn = BINARY_OPS.get(node.op)
            if fn is None:
                raise UnsupportedExpressionError(f"unknown binary operator {node.op!r}")
            values[id(node)] = fn(values[id(node.left)], values[id(node.right)])
    return values[id(expr)]


def negate(expr: SymExpr) -> SymExpr:
    """Logical negation; a double negation is unwrapped."""
    if isinstance(expr, UnOp) and expr.op == "not":
        return expr.operand
    return UnOp("not", expr)


def conjoin(exprs: Iterable[SymExpr]) -> SymExpr:
    """Fold expressions with ``and``; the empty conjunction is ``Const(True)``."""
    result = None
    for expr in exprs:
        result = expr if result is None else BinOp("and", result, expr)
    return Const(True) if result is None else result


def lift(value: Any) -> SymExpr:
    """Return ``value`` if it already is an expression, else wrap it in ``Const``."""
    return value if is_expr(value) else Const(value)
