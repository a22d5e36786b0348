"""
Dynamic symbolic execution: running targets under shadow tracking, checking
their assertions, and exploring their paths.
"""

from .asserts import InsertAssertsPass, InstrumentationPass, explore, prove
from .check import AssertionCheck, CheckResult, check, check_stream, fuzz_and_check
from .engine import ExecutionResult, Fault, Ok, anything, execute
from .fuzzer import FuzzConfig, FuzzResult, PathExplorer, fuzz, fuzz_wargs, seed_value

__all__ = [
    "InsertAssertsPass",
    "InstrumentationPass",
    "explore",
    "prove",
    "AssertionCheck",
    "CheckResult",
    "check",
    "check_stream",
    "fuzz_and_check",
    "ExecutionResult",
    "Fault",
    "Ok",
    "anything",
    "execute",
    "FuzzConfig",
    "FuzzResult",
    "PathExplorer",
    "fuzz",
    "fuzz_wargs",
    "seed_value",
]
