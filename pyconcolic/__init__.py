"""
pyconcolic: concolic execution and path exploration for Python functions.

    >>> from pyconcolic import execute, fuzz
    >>> def sign(x):
    ...     if x > 0:
    ...         return 1
    ...     return -1
    >>> execute(sign, 3).val
    1
    >>> sorted(entry.value for entry in fuzz(sign, int).tested)
    [-1, 1]
"""

from .dse import (
    AssertionCheck,
    CheckResult,
    ExecutionResult,
    Fault,
    FuzzConfig,
    FuzzResult,
    InsertAssertsPass,
    InstrumentationPass,
    Ok,
    anything,
    check,
    check_stream,
    execute,
    explore,
    fuzz,
    fuzz_and_check,
    fuzz_wargs,
    prove,
)
from .errors import (
    ConcolicError,
    InternalInvariantViolation,
    UnsupportedExpressionError,
    UnsupportedOperationError,
)
from .symbolic import BinOp, Const, UnOp, Var, untag
from .trace import filter_trace, format_trace, verify
from .z3model import SolverStatus, Z3Adapter

__version__ = "0.1.0"

__all__ = [
    "AssertionCheck",
    "CheckResult",
    "ExecutionResult",
    "Fault",
    "FuzzConfig",
    "FuzzResult",
    "InsertAssertsPass",
    "InstrumentationPass",
    "Ok",
    "anything",
    "check",
    "check_stream",
    "execute",
    "explore",
    "fuzz",
    "fuzz_and_check",
    "fuzz_wargs",
    "prove",
    "ConcolicError",
    "InternalInvariantViolation",
    "UnsupportedExpressionError",
    "UnsupportedOperationError",
    "BinOp",
    "Const",
    "UnOp",
    "Var",
    "untag",
    "filter_trace",
    "format_trace",
    "verify",
    "SolverStatus",
    "Z3Adapter",
]
