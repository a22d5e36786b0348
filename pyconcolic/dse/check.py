"""
Assertion checking along explored paths.

For a constraint stream with path constraint PC:

    MUST_HOLD  c   SAT(PC and not c)  ->  violated, the model is a counterexample
                   UNSAT              ->  holds on every input following the path
    EXPLORE    c   SAT(PC and c)      ->  reachable, the model is a witness
                   UNSAT              ->  unreachable on this path

A CheckResult folds the per-assertion answers: SAT if any query is SAT, else
UNKNOWN if any is UNKNOWN (or the run could not be checked), else UNSAT. A
path without assertions is vacuously UNSAT.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import UnsupportedExpressionError, UnsupportedOperationError
from ..symbolic.expr import SymExpr, negate
from ..trace.model import Assertion, AssertionKind, Event
from ..trace.verify import assertions, filter_trace, path_constraint
from ..z3model.solver import SolverStatus, Z3Adapter
from .asserts import InstrumentationPass
from .engine import execute
from .fuzzer import FuzzConfig, fuzz

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssertionCheck:
    assertion: Assertion
    status: SolverStatus
    model: Optional[Dict[str, Any]] = None
    reason: str = ""

    @property
    def holds(self) -> bool:
        return self.assertion.kind is AssertionKind.MUST_HOLD and self.status is SolverStatus.UNSAT

    @property
    def violated(self) -> bool:
        return self.assertion.kind is AssertionKind.MUST_HOLD and self.status is SolverStatus.SAT

    @property
    def reachable(self) -> bool:
        return self.assertion.kind is AssertionKind.EXPLORE and self.status is SolverStatus.SAT


@dataclass
class CheckResult:
    """Assertion checks for one path, with the inputs that produced it."""

    checks: Tuple[AssertionCheck, ...] = ()
    path: Tuple[SymExpr, ...] = ()
    args: Tuple[Any, ...] = ()
    subs: Dict[str, Any] = field(default_factory=dict)
    value: Any = None
    error: Optional[Exception] = None

    @property
    def status(self) -> SolverStatus:
        statuses = [c.status for c in self.checks]
        if SolverStatus.SAT in statuses:
            return SolverStatus.SAT
        if SolverStatus.UNKNOWN in statuses or self.error is not None:
            return SolverStatus.UNKNOWN
        return SolverStatus.UNSAT

    @property
    def vacuous(self) -> bool:
        return not self.checks and self.error is None

    @property
    def counterexamples(self) -> List[Dict[str, Any]]:
        return [c.model for c in self.checks if c.violated]


def check_stream(stream: Sequence[Event], solver: Optional[Z3Adapter] = None) -> CheckResult:
    """Decide every assertion of ``stream`` against its full path constraint."""
    solver = solver if solver is not None else Z3Adapter()
    path = path_constraint(stream)
    checks = []
    for assertion in assertions(stream):
        if assertion.kind is AssertionKind.MUST_HOLD:
            query = path + (negate(assertion.condition),)
        else:
            query = path + (assertion.condition,)
        answer = solver.check_sat(query)
        logger.debug("%s %s: %s", assertion.kind.name, assertion.condition, answer.status.value)
        checks.append(AssertionCheck(assertion, answer.status, answer.model, answer.reason))
    return CheckResult(checks=tuple(checks), path=path)


def check(f, *args, subs: Optional[Dict[str, Any]] = None, solver: Optional[Z3Adapter] = None,
          instrumentation: Optional[InstrumentationPass] = None) -> CheckResult:
    """Execute ``f(*args)`` with ``subs`` and check the assertions met on its path."""
    result = execute(f, *args, subs=subs, instrumentation=instrumentation)
    checked = check_stream(filter_trace(result.trace), solver)
    checked.args = tuple(args)
    checked.subs = dict(subs or {})
    checked.value = result.val
    return checked


def fuzz_and_check(f, *argtypes, config=None) -> List[CheckResult]:
    """
    Explore the paths of ``f`` and check the assertions met on each one.

    Returns one CheckResult per tested path, in discovery order. A path whose
    re-execution or assertions cannot be handled gets a result carrying the
    error (status UNKNOWN) instead of aborting the whole check.

    Precondition: ``f`` should rely on automatically inserted checks (see
    InsertAssertsPass) rather than manual assertions that branch on symbolic
    values, such as a Python ``assert`` statement. Such branches are part of
    the path the fuzzer explores, so a manual assertion both steers
    exploration and is checked against it.
    """
    config = config if config is not None else FuzzConfig()
    explored = fuzz(f, *argtypes, config=config)
    solver = Z3Adapter(config.solver_timeout_ms)

    results = []
    for entry in explored.tested:
        try:
            results.append(check(f, *entry.args, subs=entry.subs, solver=solver,
                                 instrumentation=config.instrumentation))
        except (UnsupportedOperationError, UnsupportedExpressionError) as err:
            logger.debug("cannot check %s: %s", entry.args, err)
            results.append(CheckResult(args=tuple(entry.args), subs=dict(entry.subs), error=err))
    return results
