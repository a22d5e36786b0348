"""
Tests for the execution engine.

Targets are module-level functions so that their frame labels are their plain
names.
"""

from typing import get_args, get_type_hints

import pytest

from pyconcolic.dse.asserts import InsertAssertsPass, InstrumentationPass, explore, prove
from pyconcolic.dse.engine import ExecutionResult, Fault, Ok, anything, execute
from pyconcolic.errors import UnsupportedOperationError
from pyconcolic.symbolic.expr import BinOp, Const, Var
from pyconcolic.trace.model import Assertion, AssertionKind, Branch, TaintNote, TraceNode, format_trace
from pyconcolic.trace.verify import branches, filter_trace

from concolic_targets import guarded


def increment(x):
    return x + 1


def sign(x):
    if x > 0:
        return 1
    return -1


def double(y):
    return y * 2


def outer(x):
    if double(x) > 4:
        return "big"
    return "small"


def divide(x):
    return 10 // x


def constant(x):
    return 3


def length(s):
    return len(s)


def pick(x):
    y = anything(10, name="y")
    if y > x:
        return "above"
    return "below"


def pick_twice(x):
    anything(1, name="k")
    anything(2, name="k")
    return x


def concat(x):
    return x + "a"


def squares(x):
    prove(x * x >= 0, "square")
    explore(x == 7)
    return x


def loop(n):
    i = 0
    while i < n:
        i += 1
    return i


def countdown(n):
    while n > 0:
        yield n
        n -= 1


def member(x):
    if x in {7, 9}:
        return "hit"
    return "miss"


class TestExecute:
    """Basic runs: value, dependence flag and recorded branches."""

    def test_increment(self):
        """f(x) = x + 1 at 5 gives 6, depends on x, and has no branches."""
        result = execute(increment, 5)
        assert result.val == 6
        assert result.symb is True
        assert isinstance(result.outcome, Ok)
        assert branches(filter_trace(result.trace)) == ()

    def test_sign_records_one_branch(self):
        """The branch condition is arg_1 > 0, taken."""
        result = execute(sign, 3)
        assert result.val == 1
        (branch,) = branches(filter_trace(result.trace))
        assert branch.condition == BinOp(">", Var("arg_1", int), Const(0))
        assert branch.taken is True

    def test_sign_other_branch(self):
        result = execute(sign, -1)
        assert result.val == -1
        (branch,) = branches(filter_trace(result.trace))
        assert branch.taken is False

    def test_constant_result_is_not_symbolic(self):
        result = execute(constant, 5)
        assert result.val == 3
        assert result.symb is False

    def test_inputs_and_trace_label(self):
        result = execute(increment, 5)
        assert result.inputs == {"arg_1": 5}
        assert result.trace.label == "increment"

    def test_outcome_annotation_allows_none(self):
        hints = get_type_hints(ExecutionResult)
        assert type(None) in get_args(hints["outcome"])

    def test_trace_is_frozen(self):
        result = execute(sign, 3)
        assert isinstance(result.trace.entries, tuple)

    def test_float_and_bool_inputs(self):
        result = execute(increment, 1.5)
        assert result.val == 2.5
        assert result.trace is not None
        result = execute(sign, True)
        (branch,) = branches(filter_trace(result.trace))
        assert branch.condition == BinOp(">", Var("arg_1", bool), Const(0))

    def test_loop_records_each_iteration(self):
        result = execute(loop, 3)
        assert result.val == 3
        taken = [b.taken for b in branches(filter_trace(result.trace))]
        assert taken == [True, True, True, False]


class TestFrames:
    """Calls made by the target become child frames."""

    def test_nested_call_is_child_frame(self):
        result = execute(outer, 3)
        assert result.val == "big"
        (child,) = result.trace.children
        assert child.label == "double"
        # the call happens before the branch on its result
        assert isinstance(result.trace.entries[0], TraceNode)
        assert isinstance(result.trace.entries[1], Branch)

    def test_branch_condition_spans_frames(self):
        result = execute(outer, 1)
        (branch,) = branches(filter_trace(result.trace))
        assert branch.condition == BinOp(">", BinOp("*", Var("arg_1"), Const(2)), Const(4))
        assert branch.taken is False

    def test_builtin_target_is_rejected(self):
        """A target that opens no Python frame is a caller error."""
        with pytest.raises(TypeError, match="abs"):
            execute(abs, 3)

    def test_generator_function_is_rejected(self):
        with pytest.raises(TypeError, match="countdown"):
            execute(countdown, 3)

    def test_format_trace(self):
        text = format_trace(execute(sign, 3).trace)
        assert text.splitlines()[0] == "sign"
        assert "branch (arg_1 > 0) -> True" in text


class TestFaults:
    """Exceptions raised by the target are results, not errors."""

    def test_fault_is_captured(self):
        result = execute(divide, 0)
        assert isinstance(result.outcome, Fault)
        assert isinstance(result.val, ZeroDivisionError)
        assert result.symb is False
        assert result.outcome.description.startswith("ZeroDivisionError")

    def test_division_check_is_recorded(self):
        """The divisor assertion lands in the trace and in the record."""
        result = execute(divide, 0)
        (assertion,) = result.record
        assert isinstance(assertion, Assertion)
        assert assertion.kind is AssertionKind.MUST_HOLD
        assert assertion.condition == BinOp("!=", Var("arg_1"), Const(0))
        assert result.trace.events == (assertion,)

    def test_division_checks_can_be_disabled(self):
        result = execute(divide, 2, instrumentation=InsertAssertsPass(check_division=False))
        assert result.val == 5
        assert result.record == ()

    def test_overflow_check(self):
        result = execute(increment, 5, instrumentation=InsertAssertsPass(int_bits=8))
        (assertion,) = result.record
        assert assertion.label == "int8 overflow"
        assert assertion.condition.evaluate({"arg_1": 5}) is True
        assert assertion.condition.evaluate({"arg_1": 127}) is False

    def test_python_assert_is_branch_and_fault(self):
        passing = execute(guarded, 5)
        failing = execute(guarded, 500)
        assert passing.val == 5
        assert isinstance(failing.val, AssertionError)
        assert [b.taken for b in branches(filter_trace(failing.trace))] == [False]

    def test_unsupported_operation_propagates(self):
        with pytest.raises(UnsupportedOperationError):
            execute(concat, 1)


class TestInputs:
    """Substitutions, untracked inputs and inputs created by the target."""

    def test_subs_override_argument(self):
        result = execute(sign, 3, subs={"arg_1": -2})
        assert result.val == -1
        assert result.inputs == {"arg_1": -2}

    def test_untracked_argument(self):
        result = execute(length, "abc")
        assert result.val == 3
        (note,) = result.record
        assert isinstance(note, TaintNote)
        assert note.kind == "untracked-input"
        assert result.inputs == {}

    def test_anything_uses_default(self):
        result = execute(pick, 3)
        assert result.val == "above"
        assert result.inputs == {"arg_1": 3, "y": 10}
        (branch,) = branches(filter_trace(result.trace))
        assert branch.condition == BinOp(">", Var("y"), Var("arg_1"))

    def test_anything_uses_subs(self):
        result = execute(pick, 3, subs={"y": 0})
        assert result.val == "below"

    def test_hashed_lookup_is_noted(self):
        """Set membership concretizes the input and leaves a note."""
        result = execute(member, 0)
        assert result.val == "miss"
        (note,) = result.trace.events
        assert isinstance(note, TaintNote)
        assert note.kind == "hash"
        assert note.expr == Var("arg_1")

    def test_anything_outside_run(self):
        assert anything(42) == 42

    def test_anything_duplicate_name(self):
        result = execute(pick_twice, 1)
        assert isinstance(result.val, ValueError)


class TestUserAssertions:
    def test_prove_and_explore_do_not_branch(self):
        result = execute(squares, 3)
        assert result.val == 3
        assert branches(filter_trace(result.trace)) == ()
        must, maybe = result.trace.events
        assert must.kind is AssertionKind.MUST_HOLD
        assert must.label == "square"
        assert maybe.kind is AssertionKind.EXPLORE
        assert maybe.condition == BinOp("==", Var("arg_1"), Const(7))

    def test_user_assertions_are_not_in_record(self):
        assert execute(squares, 3).record == ()

    def test_outside_run(self):
        assert prove(1 < 2) is True
        assert explore(False) is False

    def test_custom_instrumentation(self):
        seen = []

        class Recorder(InstrumentationPass):
            def after(self, op, operands, result, meta):
                seen.append((op, result.value))

        execute(increment, 5, instrumentation=Recorder())
        assert seen == [("+", 6)]
