"""density.py
=============
Numeric view of a :class:`~realgraph.target.TargetGroup`.

A sampler or optimizer only ever sees a flat vector of floats, laid out in the
order of ``group.parameters``:

    df = DensityFunction(group, {obs: data})
    df.update(np.zeros(df.n_vars))
    df.density, df.gradient

The total log-density is the prior target plus every likelihood target,
summed over the rows of the placeholder data for targets that read columns.
"""
from __future__ import annotations

import warnings
from collections.abc import Mapping
from decimal import Context, Decimal, localcontext
from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .evaluator import Evaluator, n_rows
from .target import TargetGroup
from .variable import Column

__all__ = [
    "DensityFunction",
]


class DensityFunction:
    """Log-density and gradient of a target group at a parameter vector.

    Parameters
    ----------
    group : TargetGroup
        The packaged problem.
    placeholders : Mapping[Column, array_like] | None
        Data for every column the group reads. All arrays share one length.

    Attributes
    ----------
    density : float
        Total log-density at the last :meth:`update`.
    gradient : ndarray
        Its gradient, one entry per parameter.
    """

    def __init__(self, group: TargetGroup, placeholders: Mapping[Column, Any] | None = None):
        if not isinstance(group, TargetGroup):
            raise TypeError(f"expected a TargetGroup instance, got {type(group).__name__}")
        self.group = group
        self.placeholders = {c: np.asarray(arr, dtype=float) for c, arr in (placeholders or {}).items()}
        self.n_rows = n_rows(self.placeholders)

        missing = [c.label for c in group.columns if c not in self.placeholders]
        if missing:
            raise ValueError(
                f"No placeholder data for columns: {', '.join(missing)}.\n"
                f"  Pass them as DensityFunction(group, {{column: array, ...}})."
            )

        self.density = float("nan")
        self.gradient = np.full(self.n_vars, np.nan)

    @property
    def n_vars(self) -> int:
        return len(self.group.parameters)

    def update(self, values: ArrayLike) -> float:
        """Bind ``values`` to the parameters by position and recompute.

        Raises
        ------
        ValueError
            If ``values`` does not have one entry per parameter.
        """
        values = np.asarray(values, dtype=float)
        if values.shape != (self.n_vars,):
            raise ValueError(
                f"Expected {self.n_vars} parameter values, got shape {values.shape}.\n"
                f"  Parameters: {[p.label for p in self.group.parameters]}"
            )
        bindings = dict(zip(self.group.parameters, values))

        with localcontext(Context(prec=Evaluator.precision)):
            density = Decimal(0)
            gradient = [Decimal(0)] * self.n_vars
            for target in self.group.targets:
                rows = range(self.n_rows) if target.columns else [None]
                for row in rows:
                    evaluator = Evaluator(bindings, self.placeholders, row)
                    density += evaluator.evaluate(target.real)
                    for i, g in enumerate(target.gradient):
                        gradient[i] += evaluator.evaluate(g)

        self.density = float(density)
        self.gradient = np.array([float(g) for g in gradient])
        if not np.isfinite(self.density):
            warnings.warn(
                f"Log-density is not finite ({self.density}) at {values.tolist()}",
                UserWarning,
                stacklevel=2,
            )
        return self.density

    def __call__(self, values: ArrayLike) -> float:
        return self.update(values)

    def start(self) -> NDArray[np.floating]:
        """Each parameter's ``start`` value, as a vector."""
        return np.array([p.start for p in self.group.parameters], dtype=float)
