"""
Path exploration by branch negation.

Starting from one seed run, every branch decision seen on a path yields a
frontier item: the path constraint up to that branch with the decision
flipped. Items are solved in FIFO order; a satisfying model becomes a new
candidate input, whose run contributes new frontier items in turn.

    seed ──execute──> path b1 b2 b3
                       │
           frontier: [¬b1], [b1 ¬b2], [b1 b2 ¬b3]
                       │ solve (SAT)
                  candidate ──execute──> new path ──> more frontier items

Each flipped prefix is attempted at most once and never when some run already
followed it; UNSAT and UNKNOWN items are dropped. Runs that end in an already
reported path are not reported again. Exploration stops when the frontier is
empty or the iteration or time budget runs out; the results gathered so far
are returned either way.

Runs are independent (each owns its Metadata, each solver query its own Z3
context), so with ``workers > 1`` a batch of frontier items is solved and
executed on a thread pool. Results are folded back in frontier order, so
given enough budget the same paths are found as with a single worker.
"""

from __future__ import annotations

import logging
import random
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, NamedTuple, Optional, Set, Tuple

from ..errors import UnsupportedExpressionError, UnsupportedOperationError
from ..symbolic.expr import SymExpr, negate
from ..trace.verify import branch_constraint, branches, filter_trace
from ..z3model.solver import SolverStatus, Z3Adapter
from .asserts import InstrumentationPass
from .engine import ExecutionResult, execute

logger = logging.getLogger(__name__)

UNSUPPORTED_ERRORS = (UnsupportedOperationError, UnsupportedExpressionError)


@dataclass
class FuzzConfig:
    """Configuration for path exploration."""

    max_iterations: int = 100  # executions, the seed run included
    timeout_sec: Optional[float] = None
    workers: int = 1
    seed: int = 0
    solver_timeout_ms: int = 5000
    instrumentation: Optional[InstrumentationPass] = None


class TestedInput(NamedTuple):
    """An input that ran to a result (a captured fault included)."""

    value: Any
    args: Tuple[Any, ...]
    subs: Dict[str, Any]


class ErroredInput(NamedTuple):
    """An input whose run or path hit an operation without a symbolic model."""

    error: Exception
    args: Tuple[Any, ...]
    subs: Dict[str, Any]


class FuzzResult(NamedTuple):
    tested: List[TestedInput]
    errored: List[ErroredInput]


@dataclass
class Candidate:
    argtypes: Tuple[type, ...]
    args: Tuple[Any, ...]
    subs: Dict[str, Any] = field(default_factory=dict)
    constraints: Tuple[SymExpr, ...] = ()


@dataclass
class FrontierItem:
    """A path prefix whose last decision is flipped, and the run it came from."""

    prefix: Tuple[SymExpr, ...]
    parent: Candidate


SEEDERS: Dict[type, Callable[[random.Random], Any]] = {
    bool: lambda rng: rng.random() < 0.5,
    int: lambda rng: rng.randint(-100, 100),
    float: lambda rng: round(rng.uniform(-100.0, 100.0), 3),
    str: lambda rng: "",
    bytes: lambda rng: b"",
}


def seed_value(tp: type, rng: random.Random) -> Any:
    """One arbitrary value of type ``tp``."""
    for base in getattr(tp, "__mro__", (tp,)):
        seeder = SEEDERS.get(base)
        if seeder is not None:
            value = seeder(rng)
            return value if base is tp else tp(value)
    return tp()


def coerce(value: Any, tp: type) -> Any:
    """Convert a solver model value to the input's declared type."""
    if issubclass(tp, bool):
        return bool(value)
    if issubclass(tp, int):
        return tp(int(value))
    if issubclass(tp, float):
        return tp(float(value))
    return value


class _Attempt(NamedTuple):
    candidate: Optional[Candidate]
    result: Optional[ExecutionResult]
    error: Optional[Exception]
    executed: bool = True


class PathExplorer:
    """Explores the paths of one target over one argument-type signature."""

    def __init__(self, f, argtypes: Tuple[type, ...], config: FuzzConfig):
        self.f = f
        self.argtypes = tuple(argtypes)
        self.config = config
        self.solver = Z3Adapter(config.solver_timeout_ms)
        self.frontier: Deque[FrontierItem] = deque()
        self.attempted: Set[Tuple[SymExpr, ...]] = set()
        self.covered: Set[Tuple[SymExpr, ...]] = set()
        self.reported: Set[Tuple[SymExpr, ...]] = set()
        self.tested: List[TestedInput] = []
        self.errored: List[ErroredInput] = []
        self.unsolvable: Dict[int, Candidate] = {}
        self.iterations = 0

    def run(self, seed: Candidate) -> FuzzResult:
        start = time.monotonic()
        self._fold(self._execute(seed))

        workers = max(1, self.config.workers)
        pool = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        try:
            while self.frontier:
                if self._exhausted(start):
                    break
                size = min(workers, self.config.max_iterations - self.iterations)
                batch = self._take(size)
                if pool is None:
                    attempts = [self._attempt(item) for item in batch]
                else:
                    attempts = list(pool.map(self._attempt, batch))
                for attempt in attempts:
                    self._fold(attempt)
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        logger.info(
            "explored %s: %d tested, %d errored, %d runs, %d frontier items left",
            getattr(self.f, "__qualname__", self.f), len(self.tested), len(self.errored),
            self.iterations, len(self.frontier),
        )
        return FuzzResult(self.tested, self.errored)

    def _take(self, size: int) -> List[FrontierItem]:
        batch: List[FrontierItem] = []
        while self.frontier and len(batch) < size:
            item = self.frontier.popleft()
            if item.prefix not in self.covered:
                batch.append(item)
        return batch

    def _exhausted(self, start: float) -> bool:
        if self.iterations >= self.config.max_iterations:
            logger.info("iteration budget of %d runs exhausted", self.config.max_iterations)
            return True
        timeout = self.config.timeout_sec
        if timeout is not None and time.monotonic() - start >= timeout:
            logger.info("time budget of %.1fs exhausted", timeout)
            return True
        return False

    # -- one frontier item -------------------------------------------------

    def _attempt(self, item: FrontierItem) -> _Attempt:
        try:
            answer = self.solver.check_sat(item.prefix)
        except UnsupportedExpressionError as err:
            return _Attempt(item.parent, None, err, executed=False)
        if answer.status is not SolverStatus.SAT:
            logger.debug("dropping %s: %s", item.prefix[-1], answer.status.value)
            return _Attempt(None, None, None, executed=False)
        return self._execute(self._candidate(item, answer.model))

    def _candidate(self, item: FrontierItem, model: Dict[str, Any]) -> Candidate:
        parent = item.parent
        types = {var.name: var.type for expr in item.prefix for var in expr.variables()}
        args = list(parent.args)
        subs = dict(parent.subs)
        for name, value in model.items():
            value = coerce(value, types.get(name, type(value)))
            index = _arg_index(name, len(args))
            if index is None:
                subs[name] = value
            else:
                args[index] = value
                subs.pop(name, None)
        return Candidate(parent.argtypes, tuple(args), subs, item.prefix)

    def _execute(self, candidate: Candidate) -> _Attempt:
        try:
            result = execute(self.f, *candidate.args, subs=candidate.subs,
                             instrumentation=self.config.instrumentation)
        except UNSUPPORTED_ERRORS as err:
            return _Attempt(candidate, None, err)
        return _Attempt(candidate, result, None)

    # -- bookkeeping (single-threaded) ------------------------------------------

    def _fold(self, attempt: _Attempt) -> None:
        candidate, result, error, executed = attempt
        if executed:
            self.iterations += 1
        if candidate is None:
            return
        if error is not None:
            if not executed:
                # one entry per parent, however many of its prefixes fail to translate
                if id(candidate) in self.unsolvable:
                    return
                self.unsolvable[id(candidate)] = candidate
            logger.debug("errored %s: %s", candidate.args, error)
            self.errored.append(ErroredInput(error, candidate.args, dict(candidate.subs)))
            return

        path = tuple(branch_constraint(b) for b in branches(filter_trace(result.trace)))
        logger.debug("ran %s -> %r along %d branches", candidate.args, result.val, len(path))
        if path in self.reported:
            return
        self.reported.add(path)
        self.tested.append(TestedInput(result.val, candidate.args, dict(candidate.subs)))

        for i in range(len(path)):
            self.covered.add(path[: i + 1])
        for i in range(len(path)):
            flipped = path[:i] + (negate(path[i]),)
            if flipped in self.attempted or flipped in self.covered:
                continue
            self.attempted.add(flipped)
            self.frontier.append(FrontierItem(flipped, candidate))


def _arg_index(name: str, nargs: int) -> Optional[int]:
    if not name.startswith("arg_"):
        return None
    suffix = name[len("arg_"):]
    if not suffix.isdigit():
        return None
    index = int(suffix) - 1
    return index if 0 <= index < nargs else None


def fuzz(f, *argtypes: type, config: Optional[FuzzConfig] = None) -> FuzzResult:
    """
    Explore the paths of ``f`` over inputs of the given types.

    The seed run uses one arbitrary value per type. Returns every input that
    reached a new path (``tested``) and every input whose run hit an operation
    with no symbolic model (``errored``).
    """
    config = config if config is not None else FuzzConfig()
    rng = random.Random(config.seed)
    args = tuple(seed_value(tp, rng) for tp in argtypes)
    return PathExplorer(f, argtypes, config).run(Candidate(tuple(argtypes), args))


def fuzz_wargs(f, *args, config: Optional[FuzzConfig] = None) -> FuzzResult:
    """Like ``fuzz``, seeded with the concrete arguments ``args``."""
    config = config if config is not None else FuzzConfig()
    argtypes = tuple(type(arg) for arg in args)
    return PathExplorer(f, argtypes, config).run(Candidate(argtypes, tuple(args)))
