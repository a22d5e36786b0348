"""
Tests for branch-negation path exploration.
"""

import random

import pytest

from pyconcolic.dse.engine import anything
from pyconcolic.dse.fuzzer import FuzzConfig, coerce, fuzz, fuzz_wargs, seed_value
from pyconcolic.errors import UnsupportedExpressionError, UnsupportedOperationError

from concolic_targets import guarded


def sign(x):
    if x > 0:
        return 1
    return -1


def classify(x, y):
    if x > y:
        if x > 10:
            return "big"
        return "above"
    if y == 5:
        return "five"
    return "below"


def gate(x):
    key = anything(0, name="key")
    if key == 1234:
        return "open"
    return "closed"


def threshold(x):
    if x > 1.5:
        return "high"
    return "low"


def flag(b):
    if b:
        return "yes"
    return "no"


def mixed(x):
    if x > 0:
        return x + "oops"
    return 0


def low_bit(x):
    if x & 1:
        return "odd"
    return "even"


def middle_bits(x):
    if x & 6:
        return "set"
    return "clear"


def two_masks(x):
    if x & 6:
        return "low"
    if x & 12:
        return "high"
    return "none"


def count_up(n):
    i = 0
    while i < n:
        i += 1
    return i


def with_label(label, x):
    if x < 0:
        return label + "-"
    return label + "+"


class TestFuzz:
    """Exploration finds every feasible path."""

    def test_sign_finds_both_branches(self):
        result = fuzz(sign, int)
        assert sorted(entry.value for entry in result.tested) == [-1, 1]
        assert result.errored == []

    def test_two_iterations_suffice_for_sign(self):
        result = fuzz(sign, int, config=FuzzConfig(max_iterations=2))
        assert len(result.tested) == 2

    def test_nested_branches(self):
        result = fuzz(classify, int, int)
        assert {entry.value for entry in result.tested} == {"big", "above", "five", "below"}
        assert len(result.tested) == 4

    def test_tested_inputs_replay(self):
        """Every reported input reproduces its reported value."""
        for entry in fuzz(classify, int, int).tested:
            assert classify(*entry.args) == entry.value

    def test_float_input(self):
        result = fuzz_wargs(threshold, 0.0)
        assert {entry.value for entry in result.tested} == {"high", "low"}
        assert all(isinstance(entry.args[0], float) for entry in result.tested)

    def test_low_bit_mask_branch(self):
        result = fuzz_wargs(low_bit, 2)
        assert {entry.value for entry in result.tested} == {"odd", "even"}
        assert result.errored == []

    def test_bool_input(self):
        result = fuzz(flag, bool)
        assert {entry.value for entry in result.tested} == {"yes", "no"}
        assert all(type(entry.args[0]) is bool for entry in result.tested)

    def test_input_created_by_target(self):
        """Inputs from ``anything`` are solved for and returned in subs."""
        result = fuzz(gate, int)
        by_value = {entry.value: entry for entry in result.tested}
        assert set(by_value) == {"open", "closed"}
        assert by_value["open"].subs == {"key": 1234}

    def test_untracked_argument_is_kept(self):
        result = fuzz_wargs(with_label, "run", 3)
        assert {entry.value for entry in result.tested} == {"run-", "run+"}
        assert all(entry.args[0] == "run" for entry in result.tested)

    def test_faults_are_tested(self):
        """A path ending in an exception is a tested path."""
        result = fuzz_wargs(guarded, 0)
        values = [entry.value for entry in result.tested]
        assert len(values) == 2
        assert any(isinstance(value, AssertionError) for value in values)
        assert result.errored == []

    def test_parallel_workers_find_same_paths(self):
        single = fuzz(classify, int, int)
        parallel = fuzz(classify, int, int, config=FuzzConfig(workers=2))
        assert {e.value for e in parallel.tested} == {e.value for e in single.tested}


class TestBudgets:
    """Exhausted budgets return partial results."""

    def test_iteration_budget(self):
        result = fuzz(count_up, int, config=FuzzConfig(max_iterations=3))
        assert 1 <= len(result.tested) <= 3

    def test_loop_explores_iteration_counts(self):
        result = fuzz_wargs(count_up, 0, config=FuzzConfig(max_iterations=6))
        values = [entry.value for entry in result.tested]
        assert len(values) == 6
        assert len(set(values)) == 6
        assert values[0] == 0

    def test_time_budget(self):
        result = fuzz(classify, int, int, config=FuzzConfig(timeout_sec=0))
        assert len(result.tested) == 1


class TestErrors:
    """Unsupported operations are per-candidate errors, not loop failures."""

    def test_unsupported_operation_on_one_branch(self):
        result = fuzz_wargs(mixed, -5)
        assert [entry.value for entry in result.tested] == [0]
        (errored,) = result.errored
        assert isinstance(errored.error, UnsupportedOperationError)
        assert errored.args[0] > 0

    def test_untranslatable_branch(self):
        result = fuzz_wargs(middle_bits, 1)
        assert [entry.value for entry in result.tested] == ["clear"]
        (errored,) = result.errored
        assert isinstance(errored.error, UnsupportedExpressionError)
        assert errored.args == (1,)

    def test_untranslatable_input_reported_once(self):
        """Several unsolvable flips of one run yield one errored entry."""
        result = fuzz_wargs(two_masks, 1)
        assert [entry.value for entry in result.tested] == ["none"]
        assert [entry.args for entry in result.errored] == [(1,)]

    def test_frameless_target_is_rejected(self):
        with pytest.raises(TypeError):
            fuzz(abs, int)


class TestSeeding:
    def test_seed_values_have_declared_types(self):
        rng = random.Random(0)
        assert type(seed_value(int, rng)) is int
        assert type(seed_value(bool, rng)) is bool
        assert type(seed_value(float, rng)) is float
        assert seed_value(str, rng) == ""

    def test_subclass_and_fallback(self):
        class Meters(int):
            pass

        class Config:
            pass

        rng = random.Random(0)
        assert type(seed_value(Meters, rng)) is Meters
        assert isinstance(seed_value(Config, rng), Config)

    def test_seed_is_deterministic(self):
        first = fuzz(classify, int, int, config=FuzzConfig(seed=7))
        second = fuzz(classify, int, int, config=FuzzConfig(seed=7))
        assert [e.args for e in first.tested] == [e.args for e in second.tested]

    def test_coerce_model_values(self):
        assert coerce(3, float) == 3.0 and type(coerce(3, float)) is float
        assert coerce(1, bool) is True
        assert coerce(2.0, int) == 2
