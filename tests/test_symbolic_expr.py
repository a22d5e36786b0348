"""
Tests for the symbolic expression model.
"""

import pytest

from pyconcolic.errors import UnsupportedExpressionError
from pyconcolic.symbolic.expr import (
    BinOp,
    Const,
    UnOp,
    Var,
    conjoin,
    evaluate,
    negate,
    postorder,
)


class TestStructure:
    """Expressions are immutable values compared by structure."""

    def test_structural_equality_and_hash(self):
        """Equal trees built separately compare and hash equal."""
        a = BinOp("+", Var("x"), Const(1))
        b = BinOp("+", Var("x"), Const(1))
        assert a is not b
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_bool_and_int_constants_differ(self):
        """Const(True) and Const(1) are different constants."""
        assert Const(True) != Const(1)
        assert Const(1) == Const(1)

    def test_var_type_is_part_of_identity(self):
        assert Var("x", int) != Var("x", float)

    def test_frozen(self):
        """Nodes cannot be mutated after construction."""
        node = Var("x")
        with pytest.raises(AttributeError):
            node.name = "y"

    def test_variables(self):
        expr = BinOp("and", BinOp(">", Var("x"), Const(0)), BinOp("<", Var("y", float), Var("x")))
        assert expr.variables() == frozenset({Var("x"), Var("y", float)})

    def test_str_is_infix(self):
        assert str(BinOp(">", Var("arg_1"), Const(0))) == "(arg_1 > 0)"
        assert str(UnOp("not", Var("b", bool))) == "(not b)"
        assert str(UnOp("abs", Var("x"))) == "abs(x)"


class TestEvaluate:
    """Re-evaluation follows Python semantics."""

    def test_arithmetic(self):
        expr = BinOp("*", BinOp("+", Var("x"), Const(2)), Var("y"))
        assert evaluate(expr, {"x": 1, "y": 4}) == 12

    def test_floor_division_of_negatives(self):
        """Floor division rounds toward negative infinity, like Python."""
        assert BinOp("//", Var("x"), Const(2)).evaluate({"x": -7}) == -4
        assert BinOp("%", Var("x"), Const(2)).evaluate({"x": -7}) == 1

    def test_unary_operators(self):
        assert UnOp("neg", Var("x")).evaluate({"x": 3}) == -3
        assert UnOp("floor", Var("x", float)).evaluate({"x": -2.5}) == -3
        assert UnOp("not", Var("x")).evaluate({"x": 0}) is True

    def test_missing_variable(self):
        with pytest.raises(KeyError):
            evaluate(BinOp("+", Var("x"), Var("y")), {"x": 1})

    def test_unknown_operator(self):
        with pytest.raises(UnsupportedExpressionError):
            evaluate(BinOp("@", Var("x"), Const(1)), {"x": 1})

    def test_deep_expression(self):
        """Long chains from loops do not hit the recursion limit."""
        expr = Var("x")
        for _ in range(20000):
            expr = BinOp("+", expr, Const(1))
        assert evaluate(expr, {"x": 0}) == 20000
        assert expr.variables() == frozenset({Var("x")})


class TestCombinators:
    def test_negate_unwraps_double_negation(self):
        cond = BinOp(">", Var("x"), Const(0))
        assert negate(cond) == UnOp("not", cond)
        assert negate(negate(cond)) is cond

    def test_conjoin(self):
        a = BinOp(">", Var("x"), Const(0))
        b = BinOp("<", Var("x"), Const(9))
        assert conjoin([]) == Const(True)
        assert conjoin([a]) is a
        assert conjoin([a, b]) == BinOp("and", a, b)

    def test_postorder_visits_shared_nodes_once(self):
        shared = BinOp("+", Var("x"), Const(1))
        expr = BinOp("*", shared, shared)
        nodes = list(postorder(expr))
        assert nodes[-1] is expr
        assert sum(1 for n in nodes if n is shared) == 1
        assert nodes.index(shared) < nodes.index(expr)
