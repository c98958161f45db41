"""errors.py
==========
Error types raised while evaluating, differentiating or traversing Real graphs.

Construction mistakes (wrong argument types, empty lookup tables, placeholder
arrays of different lengths) are reported with the built-in ``TypeError`` and
``ValueError``. The classes here cover what can only go wrong once a graph is
consumed.
"""
from __future__ import annotations

from typing import Any

__all__ = [
    "RealGraphError",
    "UnboundVariable",
    "DomainError",
    "MalformedGraph",
    "MissingDerivative",
]


class RealGraphError(Exception):
    """Base class for all realgraph errors."""


class UnboundVariable(RealGraphError, LookupError):
    """A Variable was reached during evaluation without a value for it."""

    def __init__(self, variable: Any):
        self.variable = variable
        super().__init__(
            f"No value provided for {variable!r}.\n"
            f"  Bind it in the evaluator's bindings, or pass placeholder data "
            f"and a row if it is a Column."
        )


class DomainError(RealGraphError, ArithmeticError):
    """A node was evaluated outside the domain where it is real-valued."""

    def __init__(self, message: str, node: Any = None, operands: tuple = ()):
        self.node = node
        self.operands = tuple(operands)
        detail = ""
        if self.operands:
            detail = "\n  Operands: " + ", ".join(str(o) for o in self.operands)
        if node is not None:
            detail += f"\n  In expression: {node}"
        super().__init__(message + detail)


class MalformedGraph(RealGraphError, ValueError):
    """The graph violates acyclicity, e.g. a density that refers to its own parameter."""

    def __init__(self, message: str, node: Any = None):
        self.node = node
        super().__init__(message)


class MissingDerivative(RealGraphError, NotImplementedError):
    """No differentiation rule is registered for an elementary function."""

    def __init__(self, op: Any):
        self.op = op
        super().__init__(
            f"Cannot differentiate elementary function {op!r}.\n"
            f"  Every UnaryOp needs an entry in the derivative table in gradient.py."
        )
