"""
Tagged values and symbolic propagation.

A TaggedValue pairs a concrete runtime value with an optional symbolic
expression describing how it depends on the run's inputs, plus the run's
Metadata and the frame that produced it. Python's operator protocol is the
interception point: every arithmetic, comparison and truthiness operation on a
tagged operand dispatches through ``propagate`` or records an event.

Propagation rules:
- concrete result = the operation applied to the concrete components
- symbolic result = UnOp/BinOp over the operands' symbols (plain operands are
  lifted to Const), present iff at least one operand is symbolic
- operands must be bool/int/float; anything else raises
  UnsupportedOperationError (``==`` and ``!=`` fall back to a concrete
  comparison and leave a TaintNote)
- ``bool(v)`` records a Branch in the current frame, then hands the concrete
  boolean to the interpreter
- conversions that must produce a real Python object (int(), str(), hash,
  indexing, ...) return the concrete value and leave a TaintNote
"""

from __future__ import annotations

import operator
from typing import Any, Optional

from ..errors import UnsupportedOperationError
from ..trace.model import Branch, Metadata, SiteId, TaintNote, TraceNode
from .expr import BINARY_OPS, UNARY_OPS, BinOp, SymExpr, UnOp, lift

SYMBOLIC_TYPES = (bool, int, float)


class TaggedValue:
    """A concrete value shadowed by an optional symbolic expression."""

    __slots__ = ("value", "sym", "meta", "origin")

    def __init__(self, value: Any, sym: Optional[SymExpr] = None,
                 meta: Optional[Metadata] = None, origin: Optional[TraceNode] = None):
        self.value = value
        self.sym = sym
        self.meta = meta
        self.origin = origin

    def describe(self) -> str:
        return f"TaggedValue({self.value!r}, sym={self.sym})"

    def _note(self, kind: str) -> Any:
        if self.sym is not None and self.meta is not None:
            self.meta.emit(TaintNote(kind, self.sym, self.value, SiteId.from_caller()))
        return self.value

    # -- control flow -------------------------------------------------------

    def __bool__(self) -> bool:
        taken = bool(self.value)
        if self.sym is not None and self.meta is not None:
            self.meta.emit(Branch(self.sym, taken, SiteId.from_caller()))
        return taken

    # -- comparisons ----------------------------------------------------------

    def __eq__(self, other):
        try:
            return propagate("==", self, other)
        except UnsupportedOperationError:
            return self._note("compare") == untag(other)

    def __ne__(self, other):
        try:
            return propagate("!=", self, other)
        except UnsupportedOperationError:
            return self._note("compare") != untag(other)

    def __lt__(self, other):
        return propagate("<", self, other)

    def __le__(self, other):
        return propagate("<=", self, other)

    def __gt__(self, other):
        return propagate(">", self, other)

    def __ge__(self, other):
        return propagate(">=", self, other)

    # -- unary ----------------------------------------------------------------

    def __neg__(self):
        return propagate("neg", self)

    def __pos__(self):
        return propagate("pos", self)

    def __abs__(self):
        return propagate("abs", self)

    def __invert__(self):
        return propagate("invert", self)

    def __floor__(self):
        return propagate("floor", self)

    def __ceil__(self):
        return propagate("ceil", self)

    def __trunc__(self):
        return propagate("trunc", self)

    # -- arithmetic -----------------------------------------------------------

    def __divmod__(self, other):
        return (propagate("//", self, other), propagate("%", self, other))

    def __rdivmod__(self, other):
        return (propagate("//", other, self), propagate("%", other, self))

    def __pow__(self, other, modulo=None):
        if modulo is not None:
            raise UnsupportedOperationError("pow", (self.value, untag(other), untag(modulo)))
        return propagate("**", self, other)

    def __rpow__(self, other):
        return propagate("**", other, self)

    # -- concretizing conversions ------------------------------------------

    def __int__(self) -> int:
        return int(self._note("int"))

    def __float__(self) -> float:
        return float(self._note("float"))

    def __complex__(self) -> complex:
        return complex(self._note("complex"))

    def __index__(self) -> int:
        return operator.index(self._note("index"))

    def __round__(self, ndigits=None):
        value = self._note("round")
        return round(value) if ndigits is None else round(value, ndigits)

    def __hash__(self) -> int:
        return hash(self._note("hash"))

    def __str__(self) -> str:
        return str(self._note("str"))

    def __repr__(self) -> str:
        return repr(self._note("repr"))

    def __format__(self, spec: str) -> str:
        return format(self._note("format"), spec)

    def __getattr__(self, name: str):
        # Only reached for attributes TaggedValue does not define (x.real,
        # x.bit_length, ...); these see the concrete value.
        if name.startswith("__") or name in TaggedValue.__slots__:
            raise AttributeError(name)
        return getattr(self._note(f"attr:{name}"), name)


def _binary(op: str, dunder: str):
    def forward(self, other):
        return propagate(op, self, other)

    def reflected(self, other):
        return propagate(op, other, self)

    forward.__name__ = f"__{dunder}__"
    reflected.__name__ = f"__r{dunder}__"
    return forward, reflected


for _op, _dunder in (
    ("+", "add"), ("-", "sub"), ("*", "mul"), ("/", "truediv"), ("//", "floordiv"),
    ("%", "mod"), ("<<", "lshift"), (">>", "rshift"), ("&", "and"), ("|", "or"), ("^", "xor"),
):
    _forward, _reflected = _binary(_op, _dunder)
    setattr(TaggedValue, f"__{_dunder}__", _forward)
    setattr(TaggedValue, f"__r{_dunder}__", _reflected)
del _op, _dunder, _forward, _reflected


def propagate(op: str, *operands: Any) -> Any:
    """
    Apply primitive ``op`` to ``operands``, tracking symbolic dependence.

    Returns a plain value when no operand is symbolic, else a TaggedValue whose
    symbol is ``UnOp(op, ...)`` / ``BinOp(op, ...)``.
    """
    concrete = []
    symbols = []
    meta: Optional[Metadata] = None
    for operand in operands:
        if isinstance(operand, TaggedValue):
            concrete.append(operand.value)
            symbols.append(operand.sym)
            if meta is None:
                meta = operand.meta
        else:
            concrete.append(operand)
            symbols.append(None)

    if len(operands) == 1:
        fn = UNARY_OPS[op]
    else:
        fn = BINARY_OPS[op]

    if all(sym is None for sym in symbols):
        return fn(*concrete)

    for value in concrete:
        if not isinstance(value, SYMBOLIC_TYPES):
            raise UnsupportedOperationError(op, concrete)

    hooks = meta.instrumentation if meta is not None else None
    if hooks is not None:
        hooks.before(op, operands, meta)

    result = fn(*concrete)
    if not isinstance(result, SYMBOLIC_TYPES):
        # e.g. (-8) ** 0.5 is complex
        raise UnsupportedOperationError(op, concrete)

    args = [sym if sym is not None else lift(value) for sym, value in zip(symbols, concrete)]
    sym = UnOp(op, args[0]) if len(args) == 1 else BinOp(op, args[0], args[1])
    tagged = TaggedValue(result, sym, meta, meta.current if meta is not None else None)

    if hooks is not None:
        hooks.after(op, operands, tagged, meta)
    return tagged


def tag(value: Any, meta: Optional[Metadata], sym: Optional[SymExpr] = None) -> TaggedValue:
    return TaggedValue(value, sym, meta, meta.current if meta is not None else None)


def istagged(value: Any) -> bool:
    return isinstance(value, TaggedValue)


def hasmetadata(value: Any) -> bool:
    """True iff ``value`` carries symbolic dependence attached to a run."""
    return isinstance(value, TaggedValue) and value.sym is not None and value.meta is not None


def symbolic_of(value: Any) -> Optional[SymExpr]:
    return value.sym if isinstance(value, TaggedValue) else None


def untag(value: Any) -> Any:
    """
    Strip tagging for external consumption.

    Containers built from the builtin list/tuple/dict/set/frozenset types
    (and namedtuples) are untagged element-wise.
    """
    if isinstance(value, TaggedValue):
        return value.value
    if isinstance(value, tuple):
        items = [untag(v) for v in value]
        if hasattr(value, "_fields"):
            return type(value)(*items)
        return type(value)(items) if type(value) is not tuple else tuple(items)
    if isinstance(value, list) and type(value) is list:
        return [untag(v) for v in value]
    if isinstance(value, dict) and type(value) is dict:
        return {untag(k): untag(v) for k, v in value.items()}
    if type(value) in (set, frozenset):
        return type(value)(untag(v) for v in value)
    return value


def carries_symbolic(value: Any) -> bool:
    """True iff ``value`` or any element of a builtin container has metadata."""
    if isinstance(value, TaggedValue):
        return hasmetadata(value)
    if isinstance(value, (tuple, list, set, frozenset)):
        return any(carries_symbolic(v) for v in value)
    if isinstance(value, dict):
        return any(carries_symbolic(k) or carries_symbolic(v) for k, v in value.items())
    return False
