"""
Error taxonomy for concolic execution.

Faults raised by the *target* program are never represented here: they are
captured as the run's result (see ``pyconcolic.dse.engine.Fault``). The
classes below describe failures of the engine itself:

- InternalInvariantViolation: the trace is malformed. This always indicates
  an instrumentation defect and is never recovered from.
- UnsupportedOperationError: a primitive operation has no propagation rule
  for its operand types.
- UnsupportedExpressionError: a symbolic expression has no solver
  translation.
"""


class ConcolicError(Exception):
    """Base class for engine-level failures."""


class InternalInvariantViolation(ConcolicError):
    """A trace does not satisfy its structural invariants."""


class UnsupportedOperationError(ConcolicError, TypeError):
    """No propagation rule exists for an operator/operand combination."""

    def __init__(self, op: str, operands=()):
        self.op = op
        self.operand_types = tuple(type(o).__name__ for o in operands)
        super().__init__(
            f"no symbolic propagation rule for {op!r} on ({', '.join(self.operand_types)})"
        )


class UnsupportedExpressionError(ConcolicError):
    """No solver translation exists for an expression shape."""
