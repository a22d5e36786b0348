"""
Symbolic expressions and the tagged values that carry them through a run.
"""

from .expr import BinOp, Const, SymExpr, UnOp, Var, conjoin, evaluate, negate
from .tagging import (
    SYMBOLIC_TYPES,
    TaggedValue,
    hasmetadata,
    istagged,
    propagate,
    symbolic_of,
    tag,
    untag,
)

__all__ = [
    "BinOp",
    "Const",
    "SymExpr",
    "UnOp",
    "Var",
    "conjoin",
    "evaluate",
    "negate",
    "SYMBOLIC_TYPES",
    "TaggedValue",
    "hasmetadata",
    "istagged",
    "propagate",
    "symbolic_of",
    "tag",
    "untag",
]
