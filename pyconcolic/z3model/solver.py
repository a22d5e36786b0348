"""
Z3 solver adapter.

Translates symbolic expressions into Z3 terms and answers satisfiability
queries over sequences of constraints. Every query builds its terms in a fresh
``z3.Context`` with a fresh ``z3.Solver``, so nothing accumulates between
unrelated queries and queries issued from different threads share no solver
state.

Sorts:
    bool  -> Bool
    int   -> Int   (unbounded, like Python ints)
    float -> Real  (exact rationals; IEEE rounding is not modelled)

Mixed-sort operands are coerced the way Python coerces them: bool -> int ->
real. A non-boolean term used as a condition means ``term != 0`` (Python
truthiness). Floor division and modulo follow Python's rounding toward
negative infinity, not SMT-LIB's Euclidean division.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, Optional, Sequence

import z3

from ..errors import UnsupportedExpressionError
from ..symbolic.expr import BinOp, Const, SymExpr, UnOp, Var, postorder

logger = logging.getLogger(__name__)

# Largest constant exponent expanded into repeated multiplication.
MAX_POW_EXPONENT = 64


class SolverStatus(Enum):
    SAT = "sat"
    UNSAT = "unsat"
    UNKNOWN = "unknown"


@dataclass
class SolverResult:
    """
    Outcome of one satisfiability query.

    ``model`` maps every variable occurring in the query to a Python value
    (only for SAT). ``reason`` carries Z3's explanation for UNKNOWN.
    """

    status: SolverStatus
    model: Optional[Dict[str, Any]] = None
    reason: str = ""
    solver_time_sec: float = 0.0

    @property
    def is_sat(self) -> bool:
        return self.status is SolverStatus.SAT


class Z3Adapter:
    """Satisfiability queries over symbolic expressions, backed by Z3."""

    def __init__(self, timeout_ms: int = 5000):
        self.timeout_ms = timeout_ms

    def translate(self, expr: SymExpr, ctx: Optional[z3.Context] = None,
                  variables: Optional[Dict[str, z3.ExprRef]] = None) -> z3.ExprRef:
        """
        Translate ``expr`` into a Z3 term in ``ctx``.

        ``variables`` collects the Z3 constant created for each Var name and is
        shared between the constraints of one query.
        """
        ctx = ctx if ctx is not None else z3.main_ctx()
        variables = variables if variables is not None else {}
        return _Translation(ctx, variables).run(expr)

    def check_sat(self, constraints: Sequence[SymExpr]) -> SolverResult:
        """Decide the conjunction of ``constraints``."""
        ctx = z3.Context()
        variables: Dict[str, z3.ExprRef] = {}
        translation = _Translation(ctx, variables)
        terms = [translation.as_bool(translation.run(c)) for c in constraints]

        solver = z3.Solver(ctx=ctx)
        solver.set("timeout", self.timeout_ms)
        if terms:
            solver.add(*terms)

        start = time.time()
        result = solver.check()
        elapsed = time.time() - start

        if result == z3.sat:
            model = solver.model()
            values = {
                name: _z3_to_python(model.eval(var, model_completion=True))
                for name, var in variables.items()
            }
            logger.debug("sat in %.3fs: %s", elapsed, values)
            return SolverResult(SolverStatus.SAT, values, solver_time_sec=elapsed)
        if result == z3.unsat:
            logger.debug("unsat in %.3fs (%d constraints)", elapsed, len(terms))
            return SolverResult(SolverStatus.UNSAT, solver_time_sec=elapsed)

        reason = solver.reason_unknown()
        logger.debug("unknown in %.3fs: %s", elapsed, reason)
        return SolverResult(SolverStatus.UNKNOWN, reason=reason, solver_time_sec=elapsed)


def _z3_to_python(value: z3.ExprRef) -> Any:
    """Convert a Z3 model value to a Python value."""
    if z3.is_true(value):
        return True
    if z3.is_false(value):
        return False
    if z3.is_int_value(value):
        return value.as_long()
    if z3.is_rational_value(value):
        return float(value.as_fraction())
    if z3.is_algebraic_value(value):
        return float(value.approx(20).as_fraction())
    raise UnsupportedExpressionError(f"cannot convert model value {value} to a Python value")


def _low_bit_mask(expr: SymExpr) -> Optional[int]:
    """The value of ``expr`` if it is an int constant of the form ``2**k - 1``."""
    if not (isinstance(expr, Const) and type(expr.value) is int):
        return None
    value = expr.value
    if value < 0 or value & (value + 1):
        return None
    return value


@dataclass
class _Translation:
    """One translation pass: shares a context and the Var -> constant table."""

    ctx: z3.Context
    variables: Dict[str, z3.ExprRef]
    _terms: Dict[int, z3.ExprRef] = field(default_factory=dict)

    def run(self, expr: SymExpr) -> z3.ExprRef:
        for node in postorder(expr):
            if id(node) not in self._terms:
                self._terms[id(node)] = self._node(node)
        return self._terms[id(expr)]

    # -- sort helpers ----------------------------------------------------------

    def as_bool(self, term: z3.ExprRef) -> z3.BoolRef:
        if z3.is_bool(term):
            return term
        return term != self._zero(term)

    def as_arith(self, term: z3.ExprRef) -> z3.ArithRef:
        if z3.is_bool(term):
            return z3.If(term, z3.IntVal(1, self.ctx), z3.IntVal(0, self.ctx))
        return term

    def unify(self, a: z3.ExprRef, b: z3.ExprRef):
        a, b = self.as_arith(a), self.as_arith(b)
        if z3.is_real(a) and z3.is_int(b):
            b = z3.ToReal(b)
        elif z3.is_int(a) and z3.is_real(b):
            a = z3.ToReal(a)
        return a, b

    def _zero(self, term: z3.ExprRef) -> z3.ExprRef:
        return z3.RealVal(0, self.ctx) if z3.is_real(term) else z3.IntVal(0, self.ctx)

    def _int(self, value: int) -> z3.ArithRef:
        return z3.IntVal(value, self.ctx)

    # -- nodes -----------------------------------------------------------------

    def _node(self, node: SymExpr) -> z3.ExprRef:
        if isinstance(node, Var):
            return self._var(node)
        if isinstance(node, Const):
            return self._const(node.value)
        if isinstance(node, UnOp):
            return self._unary(node.op, self._terms[id(node.operand)])
        if isinstance(node, BinOp):
            return self._binary(node, self._terms[id(node.left)], self._terms[id(node.right)])
        raise UnsupportedExpressionError(f"not a symbolic expression: {node!r}")

    def _var(self, var: Var) -> z3.ExprRef:
        existing = self.variables.get(var.name)
        if existing is not None:
            return existing
        if issubclass(var.type, bool):
            term = z3.Bool(var.name, self.ctx)
        elif issubclass(var.type, int):
            term = z3.Int(var.name, self.ctx)
        elif issubclass(var.type, float):
            term = z3.Real(var.name, self.ctx)
        else:
            raise UnsupportedExpressionError(
                f"no solver sort for input {var.name!r} of type {var.type.__name__}"
            )
        self.variables[var.name] = term
        return term

    def _const(self, value: Any) -> z3.ExprRef:
        if isinstance(value, bool):
            return z3.BoolVal(value, self.ctx)
        if isinstance(value, int):
            return self._int(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise UnsupportedExpressionError(f"non-finite constant {value!r}")
            exact = Fraction(value)
            return z3.RatVal(exact.numerator, exact.denominator, self.ctx)
        raise UnsupportedExpressionError(f"no solver sort for constant {value!r}")

    def _unary(self, op: str, a: z3.ExprRef) -> z3.ExprRef:
        if op == "not":
            return z3.Not(self.as_bool(a))
        a = self.as_arith(a)
        if op == "neg":
            return -a
        if op == "pos":
            return a
        if op == "abs":
            return z3.If(a < self._zero(a), -a, a)
        if op == "invert":
            if not z3.is_int(a):
                raise UnsupportedExpressionError("bitwise inversion of a real")
            return -a - 1
        if op in ("floor", "ceil", "trunc"):
            if z3.is_int(a):
                return a
            floor = z3.ToInt(a)
            ceil = -z3.ToInt(-a)
            if op == "floor":
                return floor
            if op == "ceil":
                return ceil
            return z3.If(a >= self._zero(a), floor, ceil)
        raise UnsupportedExpressionError(f"unknown unary operator {op!r}")

    def _binary(self, node: BinOp, a: z3.ExprRef, b: z3.ExprRef) -> z3.ExprRef:
        op = node.op
        if op in ("and", "or"):
            a, b = self.as_bool(a), self.as_bool(b)
            return z3.And(a, b) if op == "and" else z3.Or(a, b)
        if op in ("&", "|", "^"):
            if not (z3.is_bool(a) and z3.is_bool(b)):
                return self._bitwise(node, a, b)
            if op == "&":
                return z3.And(a, b)
            if op == "|":
                return z3.Or(a, b)
            return z3.Xor(a, b)
        if op in ("==", "!="):
            if not (z3.is_bool(a) and z3.is_bool(b)):
                a, b = self.unify(a, b)
            return a == b if op == "==" else a != b

        a, b = self.unify(a, b)
        if op == "<":
            return a < b
        if op == "<=":
            return a <= b
        if op == ">":
            return a > b
        if op == ">=":
            return a >= b
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            if z3.is_int(a):
                a, b = z3.ToReal(a), z3.ToReal(b)
            return a / b
        if op == "//":
            return self._floordiv(a, b)
        if op == "%":
            return a - b * self._floordiv(a, b)
        if op == "**":
            return self._pow(a, node.right)
        if op in ("<<", ">>"):
            return self._shift(op, a, node.right)
        raise UnsupportedExpressionError(f"unknown binary operator {op!r}")

    def _floordiv(self, a: z3.ArithRef, b: z3.ArithRef) -> z3.ArithRef:
        if z3.is_int(a):
            # SMT-LIB div keeps the remainder non-negative; Python floors.
            return z3.If(b > 0, a / b, (-a) / (-b))
        return z3.ToReal(z3.ToInt(a / b))

    def _bitwise(self, node: BinOp, a: z3.ExprRef, b: z3.ExprRef) -> z3.ArithRef:
        """Integer ``&`` with a low-bit mask ``2**k - 1`` is ``% 2**k``; nothing else is modelled."""
        if node.op == "&":
            a, b = self.as_arith(a), self.as_arith(b)
            for term, other in ((a, node.right), (b, node.left)):
                mask = _low_bit_mask(other)
                if mask is not None and z3.is_int(term):
                    if mask == 0:
                        return self._int(0)
                    modulus = self._int(mask + 1)
                    return term - modulus * self._floordiv(term, modulus)
        raise UnsupportedExpressionError(
            f"bitwise {node.op!r} on integers is only modelled for low-bit masks"
        )

    def _pow(self, base: z3.ArithRef, exponent: SymExpr) -> z3.ArithRef:
        if not (isinstance(exponent, Const) and type(exponent.value) is int
                and 0 <= exponent.value <= MAX_POW_EXPONENT):
            raise UnsupportedExpressionError(
                f"exponent {exponent} is not a small non-negative integer constant"
            )
        result = self._int(1) if z3.is_int(base) else z3.RealVal(1, self.ctx)
        for _ in range(exponent.value):
            result = result * base
        return result

    def _shift(self, op: str, a: z3.ArithRef, amount: SymExpr) -> z3.ArithRef:
        if not z3.is_int(a):
            raise UnsupportedExpressionError(f"shift {op!r} of a real")
        if not (isinstance(amount, Const) and type(amount.value) is int and amount.value >= 0):
            raise UnsupportedExpressionError(f"shift amount {amount} is not a non-negative constant")
        factor = self._int(2 ** amount.value)
        if op == "<<":
            return a * factor
        return self._floordiv(a, factor)
