"""
Trace data model.

A concolic run produces a tree of call frames. Each frame (TraceNode) holds an
ordered sequence of entries: recorded events and the child frames opened by
calls, interleaved in the order they happened. Every node and event carries a
run-wide sequence number, which the verifier uses to check ordering.

    TraceNode("toplevel")            owned by the run's Metadata
      └── TraceNode("f")             the instrumented function
            ├── Branch(x > 0, True)
            ├── TraceNode("helper")
            │     └── Assertion(y != 0, MUST_HOLD)
            └── TaintNote("int", x * 2, 84)

Metadata is the per-run state threaded through the tagging engine: the trace
root, the cursor to the frame currently executing, the substitution table used
for replay, and the record of facts logged by instrumentation passes. It is
created by one ``execute`` call and frozen when that call finishes; trace trees
are never mutated afterwards.
"""

from __future__ import annotations

import os
import sys
import types
from contextvars import ContextVar
from dataclasses import dataclass, replace
from enum import Enum, auto
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from ..errors import InternalInvariantViolation
from ..symbolic.expr import SymExpr

TOPLEVEL = "toplevel"

_PACKAGE_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@lru_cache(maxsize=None)
def _is_package_file(filename: str) -> bool:
    return os.path.abspath(filename).startswith(_PACKAGE_ROOT + os.sep)


def is_engine_code(code: types.CodeType) -> bool:
    """True for code objects that belong to this package (never traced)."""
    return _is_package_file(code.co_filename)


@dataclass(frozen=True)
class SiteId:
    """Source location of a recorded event or frame."""

    filename: str
    function: str
    lineno: int

    @staticmethod
    def from_frame(frame: types.FrameType) -> "SiteId":
        code = frame.f_code
        return SiteId(
            filename=code.co_filename,
            function=getattr(code, "co_qualname", code.co_name),
            lineno=frame.f_lineno,
        )

    @staticmethod
    def from_caller() -> "SiteId":
        """Location of the nearest frame outside this package."""
        frame = sys._getframe(1)
        while frame is not None and is_engine_code(frame.f_code):
            frame = frame.f_back
        if frame is None:
            return SiteId("<unknown>", "<unknown>", 0)
        return SiteId.from_frame(frame)

    def __str__(self) -> str:
        return f"{self.filename}:{self.lineno} ({self.function})"


class AssertionKind(Enum):
    MUST_HOLD = auto()  # the condition must be true on every input following this path
    EXPLORE = auto()  # ask whether the condition can be true on this path


@dataclass(frozen=True)
class Branch:
    """A control-flow decision on a symbolic condition."""

    condition: SymExpr
    taken: bool
    site: Optional[SiteId] = None
    seq: int = 0


@dataclass(frozen=True)
class Assertion:
    condition: SymExpr
    kind: AssertionKind
    label: str = ""
    site: Optional[SiteId] = None
    seq: int = 0


@dataclass(frozen=True)
class TaintNote:
    """
    Symbolic dependence flowed into an operation that has no propagation rule
    and was concretized (``int(x)``, ``str(x)``, indexing, ...), or an input
    was passed through without tracking.
    """

    kind: str
    expr: SymExpr
    value: Any
    site: Optional[SiteId] = None
    seq: int = 0


Event = Union[Branch, Assertion, TaintNote]
EVENT_TYPES = (Branch, Assertion, TaintNote)


class TraceNode:
    """One call frame of a concolic trace."""

    __slots__ = ("label", "seq", "site", "entries")

    def __init__(self, label: str, seq: int = 0, site: Optional[SiteId] = None,
                 entries: Sequence[Union[Event, "TraceNode"]] = ()):
        self.label = label
        self.seq = seq
        self.site = site
        self.entries: Union[List, tuple] = list(entries)

    @property
    def children(self) -> tuple:
        return tuple(e for e in self.entries if isinstance(e, TraceNode))

    @property
    def events(self) -> tuple:
        return tuple(e for e in self.entries if not isinstance(e, TraceNode))

    def walk(self) -> Iterator["TraceNode"]:
        """Pre-order iteration over this frame and all nested frames."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def _freeze(self) -> None:
        for node in self.walk():
            node.entries = tuple(node.entries)

    def __repr__(self) -> str:
        return (f"TraceNode({self.label!r}, events={len(self.events)}, "
                f"children={len(self.children)})")


def format_trace(node: TraceNode, indent: str = "  ") -> str:
    """Render a trace tree as indented text (one line per frame or event)."""
    lines: List[str] = []

    def emit(entry, depth: int) -> None:
        pad = indent * depth
        if isinstance(entry, TraceNode):
            lines.append(f"{pad}{entry.label}")
            for child in entry.entries:
                emit(child, depth + 1)
        elif isinstance(entry, Branch):
            lines.append(f"{pad}branch {entry.condition} -> {entry.taken}")
        elif isinstance(entry, Assertion):
            kind = "prove" if entry.kind is AssertionKind.MUST_HOLD else "explore"
            suffix = f"  [{entry.label}]" if entry.label else ""
            lines.append(f"{pad}{kind} {entry.condition}{suffix}")
        else:
            lines.append(f"{pad}taint {entry.kind}: {entry.expr} = {entry.value!r}")

    emit(node, 0)
    return "\n".join(lines)


class Metadata:
    """
    Run-scoped state of one concolic execution.

    - trace: the root frame, labelled ``toplevel``
    - current: cursor to the frame currently executing
    - subs: variable name -> concrete value forced during replay
    - record: facts logged by instrumentation passes
    - inputs: variable name -> concrete value of every symbolic input
    """

    def __init__(self, subs: Optional[Mapping[str, Any]] = None, instrumentation=None):
        self.trace = TraceNode(TOPLEVEL)
        self.current = self.trace
        self.subs: Dict[str, Any] = dict(subs or {})
        self.record: List[Event] = []
        self.inputs: Dict[str, Any] = {}
        self.instrumentation = instrumentation
        self.active = True
        self._stack: List[TraceNode] = [self.trace]
        self._seq = 0
        self._names: Dict[str, int] = {}

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    @property
    def depth(self) -> int:
        return len(self._stack) - 1

    def push_frame(self, label: str, site: Optional[SiteId] = None) -> TraceNode:
        node = TraceNode(label, seq=self._next_seq(), site=site)
        self.current.entries.append(node)
        self._stack.append(node)
        self.current = node
        return node

    def pop_frame(self) -> TraceNode:
        if len(self._stack) == 1:
            raise InternalInvariantViolation("frame exit without a matching frame entry")
        node = self._stack.pop()
        self.current = self._stack[-1]
        return node

    def emit(self, event: Event) -> Optional[Event]:
        """Append ``event`` to the current frame; a finished run records nothing."""
        if not self.active:
            return None
        event = replace(event, seq=self._next_seq())
        self.current.entries.append(event)
        return event

    def fresh_name(self, prefix: str) -> str:
        count = self._names.get(prefix, 0) + 1
        self._names[prefix] = count
        return f"{prefix}_{count}"

    def close(self) -> None:
        """End the run: stop recording and freeze the trace tree."""
        self.active = False
        self.trace._freeze()


_ACTIVE_RUN: ContextVar[Optional[Metadata]] = ContextVar("pyconcolic_active_run", default=None)


def current_run() -> Optional[Metadata]:
    """Metadata of the run executing in this thread/context, if any."""
    meta = _ACTIVE_RUN.get()
    if meta is not None and meta.active:
        return meta
    return None


def activate(meta: Metadata):
    return _ACTIVE_RUN.set(meta)


def deactivate(token) -> None:
    _ACTIVE_RUN.reset(token)
