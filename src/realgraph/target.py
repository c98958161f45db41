"""target.py
============
Packaging output expressions into an inference problem.

    mu = Parameter('mu')
    sigma = Parameter('sigma', density=-(mu ** 2))
    obs = Column('obs')
    loglik = -((obs - mu) ** 2) / (2 * sigma ** 2) - sigma.log()

    group = TargetGroup.build([loglik])
    group.parameters        # [mu, sigma], the fixed layout of the parameter vector
    group.targets[0]        # the prior: sum of every parameter's density
    group.targets[1]        # the likelihood, with its gradient and columns
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from .gradient import Gradient
from .real import Real, const, post_order, total
from .variable import Column, Parameter

__all__ = [
    "Target",
    "TargetGroup",
    "build_target_group",
    "find_parameters",
    "find_columns",
]


def _leaves(reals: Iterable[Real]) -> list[Parameter | Column]:
    """Parameters and columns reachable from ``reals``, following densities."""
    return [
        n for n in post_order(reals, follow_density=True)
        if isinstance(n, (Parameter, Column))
    ]


def _by_id(leaves: Iterable) -> list:
    return sorted(leaves, key=lambda v: v.id)


def find_parameters(real: Real | Iterable[Real]) -> list[Parameter]:
    """Every Parameter ``real`` depends on, densities included, ordered by id."""
    return _by_id(v for v in _leaves(_roots(real)) if isinstance(v, Parameter))


def find_columns(real: Real | Iterable[Real]) -> list[Column]:
    """Every Column ``real`` depends on, densities included, ordered by id."""
    return _by_id(v for v in _leaves(_roots(real)) if isinstance(v, Column))


def _roots(real: Real | Iterable[Real]) -> list[Real]:
    if isinstance(real, Real):
        return [real]
    return [const(r) for r in real]


class Target:
    """One expression with its gradient over the group's parameters.

    Attributes
    ----------
    real : Real
        The value graph.
    gradient : list[Real]
        One derivative graph per group parameter, in order.
    columns : list[Column]
        Columns this target reads, from its own graphs only. Densities are
        not followed; the prior target already holds them.
    """

    def __init__(self, real: Real, gradient: Sequence[Real]):
        self.real = real
        self.gradient = list(gradient)
        self.columns = _by_id(
            n for n in post_order([real, *self.gradient]) if isinstance(n, Column)
        )

    def __repr__(self) -> str:
        return f"<Target {self.real} columns={[c.label for c in self.columns]}>"


class TargetGroup:
    """Ordered parameters plus one :class:`Target` per expression.

    The first target is the prior (sum of every parameter's density),
    followed by one per output in the order given.
    """

    def __init__(self, targets: Sequence[Target], parameters: Sequence[Parameter]):
        self.targets = list(targets)
        self.parameters = list(parameters)

    @classmethod
    def build(cls, outputs: Iterable[Any]) -> TargetGroup:
        """Extract parameters, prior and per-output gradients from ``outputs``.

        An empty ``outputs`` gives an empty group.

        Raises
        ------
        MalformedGraph
            If a parameter's density depends on the parameter itself.
        """
        outputs = [const(o) for o in outputs]
        if not outputs:
            return cls([], [])

        parameters = find_parameters(outputs)
        prior = total(p.density for p in parameters)
        targets = [
            Target(r, Gradient.derive(parameters, r))
            for r in [prior, *outputs]
        ]
        return cls(targets, parameters)

    @property
    def prior(self) -> Target | None:
        return self.targets[0] if self.targets else None

    @property
    def columns(self) -> list[Column]:
        """Union of the targets' columns, ordered by id."""
        seen = {c for t in self.targets for c in t.columns}
        return _by_id(seen)

    def __repr__(self) -> str:
        names = ", ".join(p.label for p in self.parameters)
        return f"<TargetGroup parameters=[{names}] targets={len(self.targets)}>"


def build_target_group(outputs: Iterable[Any]) -> TargetGroup:
    """Same as :meth:`TargetGroup.build`."""
    return TargetGroup.build(outputs)
