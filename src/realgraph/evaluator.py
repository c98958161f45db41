"""evaluator.py
===============
Reference evaluation of Real graphs with arbitrary-precision decimals.

    x = Variable('x')
    e = Evaluator({x: 3})
    e.evaluate(x * x + 1)      # Decimal('10')

An :class:`Evaluator` memoizes by node identity, so a sub-expression shared by
several parents is computed once per instance. Use one instance per set of
bindings and per thread; the cache is not synchronized.
"""
from __future__ import annotations

from collections.abc import Mapping
from decimal import Context, Decimal, DecimalException, localcontext
from typing import Any

import numpy as np

from .errors import DomainError, MalformedGraph, UnboundVariable
from .ops import DECIMAL_IMPL
from .real import Kind, Real, const, dispatch_table, to_decimal
from .variable import Column, Variable

__all__ = [
    "Evaluator",
    "n_rows",
    "evaluate_rows",
]

_D0 = Decimal(0)
_D1 = Decimal(1)


def _is_integral(d: Decimal) -> bool:
    return d.is_finite() and d == d.to_integral_value()


def _power(node: Real, base: Decimal, e: Decimal) -> Decimal:
    """``base ** e`` with the integral-exponent path valid for negative bases."""
    if base.is_zero() and e < 0:
        raise DomainError("Division by zero: zero raised to a negative power.", node, (base, e))
    if _is_integral(e):
        k = int(e)
        if k >= 0:
            return base ** k
        return _D1 / (base ** -k)
    if base < 0:
        raise DomainError("Non-integer power of a negative number is not real.", node, (base, e))
    return base ** e


class Evaluator:
    """Memoized decimal interpreter for Real graphs.

    Parameters
    ----------
    bindings : Mapping[Variable, number] | None
        Values for free variables.
    placeholders : Mapping[Column, array_like] | None
        Data arrays for columns not in ``bindings``.
    row : int | None
        Which entry of each placeholder array a Column takes.
    precision : int | None
        Significant digits; defaults to ``Evaluator.precision``.

    Attributes
    ----------
    cache : dict[Real, Decimal]
        One entry per distinct node evaluated so far.
    """
    precision = 50

    def __init__(
        self,
        bindings: Mapping[Variable, Any] | None = None,
        placeholders: Mapping[Column, Any] | None = None,
        row: int | None = None,
        precision: int | None = None,
    ):
        self.bindings: dict[Variable, Decimal] = {}
        for v, value in (bindings or {}).items():
            if not isinstance(v, Variable):
                raise TypeError(f"Bindings must be keyed by Variable, got {type(v).__name__}")
            self.bindings[v] = to_decimal(value)
        self.placeholders = dict(placeholders or {})
        self.row = row
        self.context = Context(prec=precision or type(self).precision)
        self.cache: dict[Real, Decimal] = {}

    def evaluate(self, real: Any) -> Decimal:
        """Value of ``real`` under this evaluator's bindings.

        Raises
        ------
        UnboundVariable
            A variable is reached that has no binding and no placeholder data.
        DomainError
            A node is evaluated where it is not real-valued.
        """
        with localcontext(self.context):
            return self._run(const(real))

    def to_float(self, real: Any) -> float:
        return float(self.evaluate(real))

    def _run(self, root: Real) -> Decimal:
        cache = self.cache
        waiting: set[Real] = set()
        stack = [root]
        while stack:
            node = stack[-1]
            if node in cache:
                stack.pop()
                continue
            needed = _needs[node.kind](self, node)
            if needed:
                waiting.add(node)
                for child in needed:
                    if child in waiting:
                        raise MalformedGraph(f"Cycle detected at {child!r}.", child)
                    stack.append(child)
                continue
            cache[node] = self._compute(node)
            waiting.discard(node)
            stack.pop()
        return cache[root]

    def _compute(self, node: Real) -> Decimal:
        try:
            return _rules[node.kind](self, node)
        except DecimalException as e:
            operands = tuple(self.cache[c] for c in node.children if c in self.cache)
            raise DomainError(f"Arithmetic failed ({type(e).__name__}).", node, operands) from e

    # per-kind rules

    def _variable(self, v: Variable) -> Decimal:
        if v in self.bindings:
            return self.bindings[v]
        if isinstance(v, Column) and v in self.placeholders and self.row is not None:
            return to_decimal(self.placeholders[v][self.row])
        raise UnboundVariable(v)

    def _unary(self, node) -> Decimal:
        x = self.cache[node.original]
        value = DECIMAL_IMPL[node.op](x)
        if value.is_nan():
            raise DomainError(f"{node.op.value} is not real-valued here.", node, (x,))
        return value

    def _line(self, node) -> Decimal:
        result = node.bias
        for x, a in node.terms.items():
            result += self.cache[x] * a
        return result

    def _log_line(self, node) -> Decimal:
        result = _D1
        for x, e in node.terms.items():
            result *= _power(node, self.cache[x], e)
        return result

    def _lookup_position(self, node) -> int:
        index = self.cache[node.index]
        if not index.is_finite():
            raise DomainError("Lookup index is not finite.", node, (index,))
        i = int(index.to_integral_value())
        if not 0 <= i < len(node.table):
            raise DomainError(
                f"Lookup index {i} is out of range for a table of {len(node.table)} entries.",
                node, (index,),
            )
        return i

    def _branch(self, node) -> Real:
        return node.when_zero if self.cache[node.test] == _D0 else node.when_non_zero


def _uncached(e: Evaluator, nodes) -> list[Real]:
    return [n for n in nodes if n not in e.cache]


def _needs_lookup(e: Evaluator, node) -> list[Real]:
    if node.index not in e.cache:
        return [node.index]
    return _uncached(e, [node.table[e._lookup_position(node)]])


def _needs_if(e: Evaluator, node) -> list[Real]:
    if node.test not in e.cache:
        return [node.test]
    return _uncached(e, [e._branch(node)])


# Children whose values must be ready before a node can be computed. If and
# Lookup ask for the selected branch only once their test/index is known.
_needs = dispatch_table("Evaluator needs", {
    Kind.CONSTANT: lambda e, n: (),
    Kind.INFINITY: lambda e, n: (),
    Kind.NEG_INFINITY: lambda e, n: (),
    Kind.VARIABLE: lambda e, n: (),
    Kind.UNARY: lambda e, n: _uncached(e, n.children),
    Kind.LINE: lambda e, n: _uncached(e, n.children),
    Kind.LOG_LINE: lambda e, n: _uncached(e, n.children),
    Kind.POW: lambda e, n: _uncached(e, n.children),
    Kind.COMPARE: lambda e, n: _uncached(e, n.children),
    Kind.LOOKUP: _needs_lookup,
    Kind.IF: _needs_if,
})

_rules = dispatch_table("Evaluator", {
    Kind.CONSTANT: lambda e, n: n.value,
    Kind.INFINITY: lambda e, n: Decimal("Infinity"),
    Kind.NEG_INFINITY: lambda e, n: Decimal("-Infinity"),
    Kind.VARIABLE: Evaluator._variable,
    Kind.UNARY: Evaluator._unary,
    Kind.LINE: Evaluator._line,
    Kind.LOG_LINE: Evaluator._log_line,
    Kind.POW: lambda e, n: _power(n, e.cache[n.base], e.cache[n.exponent]),
    Kind.COMPARE: lambda e, n: Decimal(
        (e.cache[n.left] > e.cache[n.right]) - (e.cache[n.left] < e.cache[n.right])
    ),
    Kind.LOOKUP: lambda e, n: e.cache[n.table[e._lookup_position(n)]],
    Kind.IF: lambda e, n: e.cache[e._branch(n)],
})


def n_rows(placeholders: Mapping[Column, Any] | None) -> int:
    """Common length of the placeholder arrays (0 when there are none).

    Raises
    ------
    ValueError
        If the arrays differ in length.
    """
    if not placeholders:
        return 0
    lengths = {c: len(np.asarray(arr)) for c, arr in placeholders.items()}
    distinct = set(lengths.values())
    if len(distinct) > 1:
        detail = ", ".join(f"{c.label}: {n}" for c, n in lengths.items())
        raise ValueError(
            f"Placeholder arrays must all have the same length.\n"
            f"  Got {detail}."
        )
    return distinct.pop()


def evaluate_rows(
    real: Any,
    bindings: Mapping[Variable, Any] | None = None,
    placeholders: Mapping[Column, Any] | None = None,
) -> list[Decimal]:
    """Evaluate ``real`` once per placeholder row, each with its own evaluator."""
    placeholders = {c: np.asarray(arr) for c, arr in (placeholders or {}).items()}
    return [
        Evaluator(bindings, placeholders, row=i).evaluate(real)
        for i in range(n_rows(placeholders))
    ]


def _evaluate(self, bindings=None, placeholders=None, row=None) -> Decimal:
    """Evaluate this expression with a fresh :class:`Evaluator`."""
    return Evaluator(bindings, placeholders, row).evaluate(self)


Real.evaluate = _evaluate
