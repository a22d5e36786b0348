"""
Trace verification and constraint-stream extraction.

``verify`` checks the structural invariants of a finished trace and raises
InternalInvariantViolation on the first violation; a malformed trace always
means the instrumentation is broken, so nothing is repaired.

``filter_trace`` flattens a trace into the constraint stream: every event in
execution order, frame boundaries dropped. ``path_constraint`` reduces a
stream to its branch conditions with the observed polarity applied.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Set, Tuple

from ..errors import InternalInvariantViolation, UnsupportedExpressionError
from ..symbolic.expr import SymExpr, evaluate, is_expr, negate
from .model import EVENT_TYPES, Assertion, AssertionKind, Branch, Event, TraceNode


def verify(trace: TraceNode, env: Optional[Mapping[str, Any]] = None) -> None:
    """
    Check that ``trace`` is well formed.

    - sequence numbers increase strictly within each frame, and everything
      recorded inside a child frame lies between the child's entry and the
      next entry of its parent
    - no frame object occurs twice in the tree
    - every entry is a TraceNode or a known event type
    - every Branch has a boolean ``taken``; when ``env`` (input name ->
      concrete value) is given, its condition re-evaluates to ``taken``
    """
    _verify_frame(trace, env, set())


def _verify_frame(node: TraceNode, env, seen: Set[int]) -> int:
    if id(node) in seen:
        raise InternalInvariantViolation(f"trace frame {node.label!r} occurs more than once")
    seen.add(id(node))

    last = node.seq
    for entry in node.entries:
        if not isinstance(entry, (TraceNode,) + EVENT_TYPES):
            raise InternalInvariantViolation(
                f"unknown trace entry {type(entry).__name__} in frame {node.label!r}"
            )
        if entry.seq <= last:
            raise InternalInvariantViolation(
                f"out-of-order entry in frame {node.label!r}: seq {entry.seq} after {last}"
            )
        if isinstance(entry, TraceNode):
            last = _verify_frame(entry, env, seen)
            continue
        _verify_event(entry, env, node)
        last = entry.seq
    return last


def _verify_event(event: Event, env, node: TraceNode) -> None:
    if isinstance(event, Branch):
        if not isinstance(event.taken, bool):
            raise InternalInvariantViolation(f"branch polarity {event.taken!r} is not a bool")
        if not is_expr(event.condition):
            raise InternalInvariantViolation(f"branch condition {event.condition!r} is not symbolic")
        if env is None:
            return
        try:
            value = bool(evaluate(event.condition, env))
        except (KeyError, UnsupportedExpressionError, ArithmeticError, ValueError) as err:
            raise InternalInvariantViolation(
                f"branch condition {event.condition} cannot be re-evaluated: {err}"
            ) from err
        if value != event.taken:
            raise InternalInvariantViolation(
                f"branch {event.condition} recorded as {event.taken} in frame "
                f"{node.label!r} but evaluates to {value}"
            )
    elif isinstance(event, Assertion):
        if not isinstance(event.kind, AssertionKind):
            raise InternalInvariantViolation(f"assertion kind {event.kind!r} is not an AssertionKind")


def filter_trace(trace: TraceNode) -> Tuple[Event, ...]:
    """Flatten ``trace`` into its constraint stream (events in execution order)."""
    stream: List[Event] = []
    stack = [iter(trace.entries)]
    while stack:
        entry = next(stack[-1], None)
        if entry is None:
            stack.pop()
        elif isinstance(entry, TraceNode):
            stack.append(iter(entry.entries))
        else:
            stream.append(entry)
    return tuple(stream)


def branches(stream: Sequence[Event]) -> Tuple[Branch, ...]:
    return tuple(e for e in stream if isinstance(e, Branch))


def assertions(stream: Sequence[Event]) -> Tuple[Assertion, ...]:
    return tuple(e for e in stream if isinstance(e, Assertion))


def branch_constraint(branch: Branch) -> SymExpr:
    """The condition that holds on inputs taking ``branch`` the same way."""
    return branch.condition if branch.taken else negate(branch.condition)


def path_constraint(stream: Sequence[Event]) -> Tuple[SymExpr, ...]:
    """Conjuncts of the path constraint of ``stream``."""
    return tuple(branch_constraint(b) for b in branches(stream))
