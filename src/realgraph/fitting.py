import warnings

import iminuit
import numpy as np

from .density import DensityFunction
from .target import TargetGroup


def _unique_names(params):
    names = []
    seen = {}
    for i, p in enumerate(params):
        base = p.name if p.name else f"x{i}"
        if base in seen:
            seen[base] += 1
            names.append(f"{base}_{seen[base]}")
        else:
            seen[base] = 0
            names.append(base)
    return names


class FitResult:
    def __init__(self, group, m, names):
        self.minimizer = m
        self.group = group
        self.fval = m.fval
        self.success = m.valid
        self.values = {name: float(v) for name, v in zip(names, m.values)}
        self.errors = {name: float(e) for name, e in zip(names, m.errors)}

    def __repr__(self):
        ret = f"<FitResult fval={self.fval:.3f}, success={self.success}>\n"
        for name, value in self.values.items():
            ret += f"{name}: {value:.4g} ± {self.errors[name]:.2g}\n"
        return ret

    def vector(self):
        """Fitted values in the order of ``group.parameters``."""
        return np.array(list(self.values.values()))


def fit(group, placeholders=None, grad=True, ncall=9999999, options={}):
    """Maximum a posteriori estimate of ``group``'s parameters.

    Minimizes the negative total log-density with Minuit, starting from each
    parameter's ``start``, using the symbolic gradient unless ``grad=False``.
    """
    if not isinstance(group, TargetGroup):
        raise TypeError("expected a TargetGroup instance")
    if not group.parameters:
        raise ValueError("TargetGroup has no parameters to fit")

    density = DensityFunction(group, placeholders)
    names = _unique_names(group.parameters)
    last = {}

    def _update(theta):
        key = tuple(theta)
        if last.get("key") != key:
            density.update(np.array(theta))
            last["key"] = key

    def loss_fn(*theta):
        _update(theta)
        return -density.density

    def grad_fn(*theta):
        _update(theta)
        return -density.gradient

    m = iminuit.Minuit(loss_fn, *density.start(), grad=grad_fn if grad else None, name=names, **options)
    m.errordef = iminuit.Minuit.LIKELIHOOD
    m.migrad(ncall)

    if not m.valid:
        warnings.warn(f"[fit] Minimum is not valid (fval={m.fval})", UserWarning, stacklevel=2)

    return FitResult(group, m, names)
