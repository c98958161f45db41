"""ops.py
=======
Elementary functions that a ``Unary`` node can apply.

Each :class:`UnaryOp` has a decimal implementation in :data:`DECIMAL_IMPL`.
Functions that :mod:`decimal` supports natively (exp, log) are computed at the
evaluator's precision; the trigonometric family and ``erf`` go through NumPy
and SciPy in double precision and are converted back to :class:`Decimal`.

An implementation returns ``Decimal('NaN')`` where the function is not
real-valued; the evaluator turns that into a :class:`~realgraph.errors.DomainError`.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Callable

import numpy as np
import scipy.special

__all__ = [
    "UnaryOp",
    "DECIMAL_IMPL",
    "NUMPY_UFUNCS",
    "NAN",
]

NAN = Decimal("NaN")
_ZERO = Decimal(0)


class UnaryOp(Enum):
    """Tags for the elementary functions understood by every consumer."""
    EXP = "exp"
    LOG = "log"
    ABS = "abs"
    RECTIFIER = "rectifier"   #: max(x, 0)
    SIN = "sin"
    COS = "cos"
    TAN = "tan"
    ASIN = "asin"
    ACOS = "acos"
    ATAN = "atan"
    SINH = "sinh"
    COSH = "cosh"
    TANH = "tanh"
    ERF = "erf"

    def __repr__(self) -> str:
        return f"UnaryOp.{self.name}"


def _exp(x: Decimal) -> Decimal:
    return x.exp()


def _log(x: Decimal) -> Decimal:
    if x.is_signed() and not x.is_zero():
        return NAN
    if x.is_zero():
        return Decimal("-Infinity")
    return x.ln()


def _abs(x: Decimal) -> Decimal:
    return x.copy_abs()


def _rectifier(x: Decimal) -> Decimal:
    return x if x > _ZERO else _ZERO


def _via_float(fn: Callable[[float], float]) -> Callable[[Decimal], Decimal]:
    """Lift a double-precision function onto decimals."""
    def impl(x: Decimal) -> Decimal:
        with np.errstate(invalid="ignore", over="ignore", divide="ignore"):
            result = float(fn(float(x)))
        if np.isnan(result):
            return NAN
        return Decimal(repr(result))
    impl.__name__ = getattr(fn, "__name__", "impl")
    return impl


DECIMAL_IMPL: dict[UnaryOp, Callable[[Decimal], Decimal]] = {
    UnaryOp.EXP: _exp,
    UnaryOp.LOG: _log,
    UnaryOp.ABS: _abs,
    UnaryOp.RECTIFIER: _rectifier,
    UnaryOp.SIN: _via_float(np.sin),
    UnaryOp.COS: _via_float(np.cos),
    UnaryOp.TAN: _via_float(np.tan),
    UnaryOp.ASIN: _via_float(np.arcsin),
    UnaryOp.ACOS: _via_float(np.arccos),
    UnaryOp.ATAN: _via_float(np.arctan),
    UnaryOp.SINH: _via_float(np.sinh),
    UnaryOp.COSH: _via_float(np.cosh),
    UnaryOp.TANH: _via_float(np.tanh),
    UnaryOp.ERF: _via_float(scipy.special.erf),
}

# numpy ufunc name -> UnaryOp, used by Real.__array_ufunc__
NUMPY_UFUNCS: dict[str, UnaryOp] = {
    "exp": UnaryOp.EXP,
    "log": UnaryOp.LOG,
    "absolute": UnaryOp.ABS,
    "fabs": UnaryOp.ABS,
    "sin": UnaryOp.SIN,
    "cos": UnaryOp.COS,
    "tan": UnaryOp.TAN,
    "arcsin": UnaryOp.ASIN,
    "arccos": UnaryOp.ACOS,
    "arctan": UnaryOp.ATAN,
    "sinh": UnaryOp.SINH,
    "cosh": UnaryOp.COSH,
    "tanh": UnaryOp.TANH,
    "erf": UnaryOp.ERF,
}
