"""
Instrumentation passes and user-level assertions.

An instrumentation pass is consulted by the tagging engine around every
propagated operation with at least one symbolic operand. It may add events to
the run (inserted assertions) but never alters the concrete result.

``prove`` and ``explore`` let target code state facts about its own symbolic
values. Neither one branches: the condition is recorded as an Assertion in the
current frame and its concrete truth value is returned, so the path followed by
the target is the same with or without them.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from ..symbolic.expr import BinOp, Const, SymExpr
from ..symbolic.tagging import TaggedValue, untag
from ..trace.model import Assertion, AssertionKind, Metadata, SiteId, current_run

DIVISION_OPS = frozenset({"/", "//", "%"})
ARITHMETIC_OPS = frozenset({"+", "-", "*", "//", "%", "**", "<<", "neg", "abs"})


class InstrumentationPass:
    """No-op pass; subclasses override the hooks they need."""

    def before(self, op: str, operands: Sequence[Any], meta: Metadata) -> None:
        pass

    def after(self, op: str, operands: Sequence[Any], result: TaggedValue, meta: Metadata) -> None:
        pass


class InsertAssertsPass(InstrumentationPass):
    """
    Insert MUST_HOLD assertions for runtime faults the target may hit.

    - ``check_division``: a symbolic divisor of ``/``, ``//`` or ``%`` is
      non-zero (checked before the division runs, so the assertion is recorded
      even when the division raises)
    - ``int_bits``: a symbolic integer result of an arithmetic operation lies
      in the signed range of that many bits
    """

    def __init__(self, check_division: bool = True, int_bits: Optional[int] = None):
        if int_bits is not None and int_bits < 2:
            raise ValueError(f"int_bits must be at least 2, got {int_bits}")
        self.check_division = check_division
        self.int_bits = int_bits

    def before(self, op, operands, meta):
        if not self.check_division or op not in DIVISION_OPS or len(operands) != 2:
            return
        divisor = operands[1]
        if isinstance(divisor, TaggedValue) and divisor.sym is not None:
            insert_assertion(meta, BinOp("!=", divisor.sym, Const(0)), "division by zero")

    def after(self, op, operands, result, meta):
        if self.int_bits is None or op not in ARITHMETIC_OPS:
            return
        if type(result.value) is not int or result.sym is None:
            return
        low = -(1 << (self.int_bits - 1))
        high = (1 << (self.int_bits - 1)) - 1
        in_range = BinOp("and", BinOp(">=", result.sym, Const(low)),
                         BinOp("<=", result.sym, Const(high)))
        insert_assertion(meta, in_range, f"int{self.int_bits} overflow")


def insert_assertion(meta: Metadata, condition: SymExpr, label: str,
                     kind: AssertionKind = AssertionKind.MUST_HOLD) -> Optional[Assertion]:
    """Record an inserted assertion in the current frame and in ``meta.record``."""
    event = meta.emit(Assertion(condition, kind, label, SiteId.from_caller()))
    if event is not None:
        meta.record.append(event)
    return event


def prove(cond: Any, label: str = "") -> bool:
    """Assert that ``cond`` holds on every input that follows the current path."""
    return _user_assertion(cond, AssertionKind.MUST_HOLD, label)


def explore(cond: Any, label: str = "") -> bool:
    """Ask whether ``cond`` can be true on some input that follows the current path."""
    return _user_assertion(cond, AssertionKind.EXPLORE, label)


def _user_assertion(cond: Any, kind: AssertionKind, label: str) -> bool:
    meta = None
    if isinstance(cond, TaggedValue) and cond.meta is not None:
        meta = cond.meta
    if meta is None:
        meta = current_run()

    concrete = bool(untag(cond))
    if meta is not None:
        sym = cond.sym if isinstance(cond, TaggedValue) and cond.sym is not None else Const(concrete)
        meta.emit(Assertion(sym, kind, label, SiteId.from_caller()))
    return concrete
