"""gradient.py
==============
Reverse-mode differentiation producing derivative *graphs*.

    x, y = Variable('x'), Variable('y')
    dx, dy = Gradient.derive([x, y], x * y + x.exp())
    # dx is y + exp(x), dy is x, both ordinary Real graphs

One backward pass serves every requested variable. Each node sums the
adjoints pushed by all of its parents before passing its own on, so a shared
sub-expression is expanded once no matter how many parents it has.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any, Callable

import numpy as np

from .errors import MissingDerivative
from .ops import UnaryOp
from .real import (
    Kind, Real, LogLine, ZERO, _log_line, compare, const, dispatch_table,
    lookup, post_order, total, where,
)
from .variable import Parameter, Variable

__all__ = [
    "Gradient",
]

_HALF = Decimal("0.5")
_TWO_OVER_SQRT_PI = const(2 / np.sqrt(np.pi))


def _is_integral(d: Decimal) -> bool:
    return d.is_finite() and d == d.to_integral_value()


# d op(x) / dx, given x and the node op(x) itself
_derivatives: dict[UnaryOp, Callable[[Real, Real], Real]] = {
    UnaryOp.EXP: lambda x, node: node,
    UnaryOp.LOG: lambda x, node: 1 / x,
    UnaryOp.ABS: lambda x, node: compare(x, 0),
    UnaryOp.RECTIFIER: lambda x, node: x > 0,
    UnaryOp.SIN: lambda x, node: x.cos(),
    UnaryOp.COS: lambda x, node: -x.sin(),
    UnaryOp.TAN: lambda x, node: x.cos() ** -2,
    UnaryOp.ASIN: lambda x, node: (1 - x ** 2) ** -_HALF,
    UnaryOp.ACOS: lambda x, node: -((1 - x ** 2) ** -_HALF),
    UnaryOp.ATAN: lambda x, node: 1 / (1 + x ** 2),
    UnaryOp.SINH: lambda x, node: x.cosh(),
    UnaryOp.COSH: lambda x, node: x.sinh(),
    UnaryOp.TANH: lambda x, node: 1 - node ** 2,
    UnaryOp.ERF: lambda x, node: _TWO_OVER_SQRT_PI * (-(x ** 2)).exp(),
}

for _op in UnaryOp:
    if _op not in _derivatives:
        raise MissingDerivative(_op)


def _unary(node, adj: Real, relevant: set) -> Iterable[tuple[Real, Real]]:
    rule = _derivatives.get(node.op)
    if rule is None:
        raise MissingDerivative(node.op)
    yield node.original, adj * rule(node.original, node)


def _line(node, adj: Real, relevant: set) -> Iterable[tuple[Real, Real]]:
    for x, a in node.terms.items():
        if x in relevant:
            yield x, adj * a


def _log_line_rule(node, adj: Real, relevant: set) -> Iterable[tuple[Real, Real]]:
    for x, e in node.terms.items():
        if x not in relevant:
            continue
        if _is_integral(e):
            # e * x^(e-1) * (other terms), valid for x <= 0
            rest = dict(node.terms)
            rest[x] = e - 1
            yield x, adj * (_log_line(rest) * e)
        else:
            # e * node / x, reusing the node's own value
            yield x, adj * (LogLine({node: 1, x: -1}) * e)


def _pow(node, adj: Real, relevant: set) -> Iterable[tuple[Real, Real]]:
    base, exponent = node.base, node.exponent
    if base in relevant:
        yield base, adj * exponent * base ** (exponent - 1)
    if exponent in relevant:
        yield exponent, adj * node * base.log()


def _if(node, adj: Real, relevant: set) -> Iterable[tuple[Real, Real]]:
    if node.when_non_zero in relevant:
        yield node.when_non_zero, where(node.test, adj, ZERO)
    if node.when_zero in relevant:
        yield node.when_zero, where(node.test, ZERO, adj)


def _lookup(node, adj: Real, relevant: set) -> Iterable[tuple[Real, Real]]:
    for i, entry in enumerate(node.table):
        if entry in relevant:
            routed = [adj if j == i else ZERO for j in range(len(node.table))]
            yield entry, lookup(node.index, routed)


def _nothing(node, adj: Real, relevant: set) -> Iterable[tuple[Real, Real]]:
    return ()


# Adjoint contributions a node pushes to its children. Compare, If tests and
# Lookup indices are piecewise constant and receive nothing.
_rules = dispatch_table("Gradient", {
    Kind.CONSTANT: _nothing,
    Kind.INFINITY: _nothing,
    Kind.NEG_INFINITY: _nothing,
    Kind.VARIABLE: _nothing,
    Kind.UNARY: _unary,
    Kind.LINE: _line,
    Kind.LOG_LINE: _log_line_rule,
    Kind.POW: _pow,
    Kind.COMPARE: _nothing,
    Kind.LOOKUP: _lookup,
    Kind.IF: _if,
})


class Gradient:
    """Backward pass of one output with respect to a set of variables.

    Parameters
    ----------
    output : Real
        The expression to differentiate.
    targets : Sequence[Variable]
        Variables to differentiate with respect to.

    Attributes
    ----------
    expanded : Counter[Real]
        How many times each node pushed adjoints to its children; every
        count is 1 after a pass.
    """

    def __init__(self, output: Any, targets: Sequence[Variable]):
        for v in targets:
            if not isinstance(v, Variable):
                raise TypeError(f"Can only differentiate with respect to a Variable, got {v!r}")
        self.output = const(output)
        self.targets = list(targets)
        self.expanded: Counter[Real] = Counter()
        self._adjoints = self._backpropagate()

    @classmethod
    def derive(cls, targets: Sequence[Variable], output: Any) -> list[Real]:
        """One derivative graph per variable in ``targets``, in order.

        Variables the output does not depend on get ``Constant(0)``.
        """
        gradient = cls(output, targets)
        return [gradient.adjoint(v) for v in targets]

    def adjoint(self, variable: Variable) -> Real:
        return self._adjoints.get(variable, ZERO)

    def _backpropagate(self) -> dict[Variable, Real]:
        order = post_order(self.output)
        wanted = set(self.targets)

        # nodes with a path down to a requested variable
        relevant: set[Real] = set()
        for node in order:
            if node in wanted or any(c in relevant for c in node.children):
                relevant.add(node)

        contributions: defaultdict[Real, list[Real]] = defaultdict(list)
        if self.output in relevant:
            contributions[self.output].append(const(1))

        adjoints: dict[Variable, Real] = {}
        for node in reversed(order):
            if node not in relevant:
                continue
            adj = total(contributions.pop(node, ()))
            if node.kind is Kind.VARIABLE:
                adjoints[node] = adj
                continue
            if adj is ZERO or (adj.kind is Kind.CONSTANT and adj.value == 0):
                continue
            self.expanded[node] += 1
            for child, contribution in _rules[node.kind](node, adj, relevant):
                contributions[child].append(contribution)
        return adjoints


def _grad(self, wrt=None):
    """Derivative of this expression.

    ``wrt`` may be one Variable (returns a Real), a list of them (returns a
    list), or None for every Parameter reachable from the expression, in
    creation order.
    """
    if wrt is None:
        wrt = sorted((n for n in post_order(self) if isinstance(n, Parameter)), key=lambda p: p.id)
    if isinstance(wrt, Variable):
        return Gradient.derive([wrt], self)[0]
    if isinstance(wrt, (list, tuple)):
        return Gradient.derive(list(wrt), self)
    raise TypeError(f"grad expects Variable, list of Variable, or None, got {type(wrt)}")


Real.grad = _grad
