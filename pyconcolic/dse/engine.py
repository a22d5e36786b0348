"""
Execution engine: one concrete run under shadow tracking.

``execute`` wraps every argument in a TaggedValue carrying a fresh symbolic
input ``arg_i``, installs a frame tracer (``sys.settrace``, as in a plain
concrete executor) that mirrors Python call/return events into the trace tree,
and calls the target. Primitive operations on the tagged arguments record
their branches and assertions through the run's Metadata, which is threaded
through the values themselves; nothing about the run is stored globally except
the context-local handle ``anything`` and ``prove``/``explore`` fall back on.

A raised exception is a result like any other (``Fault``). Errors of the
engine itself (ConcolicError) propagate.
"""

from __future__ import annotations

import inspect
import logging
import sys
import types
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..errors import ConcolicError, InternalInvariantViolation
from ..symbolic.expr import Var
from ..symbolic.tagging import SYMBOLIC_TYPES, TaggedValue, carries_symbolic, untag
from ..trace.model import (
    TOPLEVEL,
    Event,
    Metadata,
    SiteId,
    TaintNote,
    TraceNode,
    activate,
    current_run,
    deactivate,
    is_engine_code,
)
from ..trace.verify import verify
from .asserts import InsertAssertsPass, InstrumentationPass

logger = logging.getLogger(__name__)

_FRAMELESS = (
    types.BuiltinFunctionType,
    types.MethodWrapperType,
    types.MethodDescriptorType,
    types.WrapperDescriptorType,
)


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class Fault:
    """The target raised ``error``."""

    error: BaseException

    @property
    def description(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


Outcome = Union[Ok, Fault]


@dataclass
class ExecutionResult:
    """
    Result of one ``execute`` call.

    - val: concrete result with all tagging stripped (the exception on a fault)
    - symb: True iff the result carries symbolic dependence on the inputs
    - trace: the target's own frame (the single child of ``toplevel``)
    - record: events logged by the instrumentation pass
    - inputs: concrete value of every symbolic input of the run
    """

    val: Any
    symb: bool
    trace: TraceNode
    record: Tuple[Event, ...] = ()
    outcome: Optional[Outcome] = None
    inputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def faulted(self) -> bool:
        return isinstance(self.outcome, Fault)


def symbolic_type(value: Any) -> type:
    """Declared type of the symbolic input created for ``value``."""
    if isinstance(value, bool):
        return bool
    if isinstance(value, int):
        return int
    return float


def make_input(meta: Metadata, name: str, value: Any) -> Any:
    """
    Create the symbolic input ``name``, with its concrete value taken from
    ``meta.subs`` when present.

    Values that are not bool/int/float are passed through untracked; the run's
    record notes the input so callers can see why nothing depends on it.
    """
    if name in meta.subs:
        value = meta.subs[name]
    if isinstance(value, TaggedValue):
        value = value.value
    if not isinstance(value, SYMBOLIC_TYPES):
        meta.record.append(TaintNote("untracked-input", Var(name, type(value)), value))
        return value
    meta.inputs[name] = value
    return TaggedValue(value, Var(name, symbolic_type(value)), meta, meta.current)


class _FrameTracer:
    """
    Global trace function mirroring Python frames into the trace tree.

    Frames of this package, and everything they call, are not recorded: the
    tracer counts how deep it is inside such frames and ignores calls until
    the count drops back to zero.
    """

    def __init__(self, meta: Metadata):
        self.meta = meta
        self.suspended = 0

    def __call__(self, frame: types.FrameType, event: str, arg: Any):
        if event != "call":
            return None
        frame.f_trace_lines = False
        if self.suspended or is_engine_code(frame.f_code):
            self.suspended += 1
            return self._trace_suspended
        code = frame.f_code
        self.meta.push_frame(getattr(code, "co_qualname", code.co_name), SiteId.from_frame(frame))
        return self._trace_recorded

    def _trace_recorded(self, frame, event, arg):
        if event == "return":
            self.meta.pop_frame()
        return self._trace_recorded

    def _trace_suspended(self, frame, event, arg):
        if event == "return":
            self.suspended -= 1
        return self._trace_suspended


def check_target(f) -> None:
    """Reject callables whose call does not run a Python frame of their own."""
    if isinstance(f, _FRAMELESS):
        name = getattr(f, "__qualname__", f)
        raise TypeError(f"cannot trace builtin {name!r}: it runs no Python frame")
    if (inspect.isgeneratorfunction(f) or inspect.iscoroutinefunction(f)
            or inspect.isasyncgenfunction(f)):
        raise TypeError(
            f"cannot trace {f.__qualname__!r}: calling it returns a generator or coroutine"
        )


def extract_trace(meta: Metadata) -> TraceNode:
    """Check the shape of a finished run's trace and unwrap the target's frame."""
    root = meta.trace
    if root.label != TOPLEVEL:
        raise InternalInvariantViolation(f"trace root is {root.label!r}, expected {TOPLEVEL!r}")
    if meta.depth != 0:
        raise InternalInvariantViolation(f"run ended {meta.depth} frame(s) deep")
    children = root.children
    if len(children) != 1:
        raise InternalInvariantViolation(
            f"trace root must have exactly one child frame, found {len(children)}"
        )
    return children[0]


def execute(f, *args, subs: Optional[Mapping[str, Any]] = None,
            instrumentation: Optional[InstrumentationPass] = None) -> ExecutionResult:
    """
    Run ``f(*args)`` once under shadow tracking.

    Argument ``i`` (1-based) becomes the symbolic input ``arg_i``; an entry in
    ``subs`` for that name (or for a name created by ``anything``) replaces the
    concrete value. ``instrumentation`` defaults to ``InsertAssertsPass()``.
    """
    check_target(f)
    if instrumentation is None:
        instrumentation = InsertAssertsPass()
    meta = Metadata(subs=subs, instrumentation=instrumentation)
    tagged = [make_input(meta, f"arg_{i}", arg) for i, arg in enumerate(args, 1)]

    value: Any = None
    error: Optional[BaseException] = None
    tracer = _FrameTracer(meta)
    previous = sys.gettrace()
    token = activate(meta)
    sys.settrace(tracer)
    try:
        value = f(*tagged)
    except Exception as err:
        error = err
    finally:
        sys.settrace(previous)
        deactivate(token)
        meta.close()

    if isinstance(error, ConcolicError):
        raise error

    trace = extract_trace(meta)
    verify(trace, env=meta.inputs)

    if error is not None:
        outcome: Outcome = Fault(error)
        val, symb = error, False
    else:
        outcome = Ok(untag(value))
        val, symb = outcome.value, carries_symbolic(value)
    logger.debug("%s%r -> %r (%d inputs)", trace.label, untag(tuple(tagged)), val, len(meta.inputs))

    return ExecutionResult(
        val=val,
        symb=symb,
        trace=trace,
        record=tuple(meta.record),
        outcome=outcome,
        inputs=dict(meta.inputs),
    )


def anything(default: Any, name: Optional[str] = None) -> Any:
    """
    A fresh symbolic input created inside the target.

    The concrete value is ``subs[name]`` when the run has one, else
    ``default``. Outside a run, ``default`` is returned unchanged. Names are
    generated as ``anything_N`` unless given; a name may be used once per run.
    """
    meta = current_run()
    if meta is None:
        return default
    if name is None:
        name = meta.fresh_name("anything")
        while name in meta.inputs:
            name = meta.fresh_name("anything")
    elif name in meta.inputs:
        raise ValueError(f"symbolic input {name!r} already exists in this run")
    return make_input(meta, name, default)
