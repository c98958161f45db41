"""real.py
=======
Representation of scalar expressions, also the main user interface
----------------------------------------------------------

A ``Real`` is a node in an immutable expression DAG. Build graphs with
ordinary arithmetic on variables and constants:

    x, y = Variable(), Variable()
    line = 2 * x + 3 * y + 1          # Line({x: 2, y: 3}, bias=1)
    prod = x * y ** -2                # LogLine({x: 1, y: -2})
    bent = (x + 1) ** y               # Pow(x + 1, y)
    safe = where(x, 1 / x, 0)         # If(x, x^-1, 0)

Sums and scalings merge into a single ``Line`` and products and constant powers
into a single ``LogLine``, so shared sub-expressions stay shared instead of
being buried in nested binary nodes.

Nodes compare and hash by identity. Two nodes that compute the same value are
different nodes unless they are the same object; every cache in the package is
keyed that way.
"""
from __future__ import annotations

import functools
import numbers
from collections.abc import Callable, Iterable, Mapping, Sequence
from decimal import Context, Decimal, DecimalException, localcontext
from enum import Enum, auto
from typing import Any

import numpy as np

from .errors import MalformedGraph
from .ops import DECIMAL_IMPL, NUMPY_UFUNCS, UnaryOp

__all__ = [
    "Kind",
    "Real",
    "Constant",
    "Infinity",
    "NegInfinity",
    "Unary",
    "Line",
    "LogLine",
    "Pow",
    "Compare",
    "Lookup",
    "If",
    "INFINITY",
    "NEG_INFINITY",
    "ZERO",
    "ONE",
    "const",
    "to_decimal",
    "unary",
    "compare",
    "where",
    "lookup",
    "eq",
    "total",
    "logsumexp",
    "post_order",
    "dispatch_table",
]

_D0 = Decimal(0)
_D1 = Decimal(1)


class Kind(Enum):
    """Enumerates the node kinds. Every operation over Real handles all of them."""
    CONSTANT = auto()
    INFINITY = auto()
    NEG_INFINITY = auto()
    VARIABLE = auto()       #: Variable, Parameter and Column
    UNARY = auto()
    LINE = auto()
    LOG_LINE = auto()
    POW = auto()
    COMPARE = auto()
    LOOKUP = auto()
    IF = auto()


def dispatch_table(name: str, table: Mapping[Kind, Callable]) -> dict[Kind, Callable]:
    """Check that ``table`` has a rule for every :class:`Kind` and return it.

    Operations over Real declare their per-kind rules through this at import
    time, so a new node kind cannot be added without updating each of them.

    Raises
    ------
    TypeError
        If any kind is missing.
    """
    missing = [k.name for k in Kind if k not in table]
    if missing:
        raise TypeError(
            f"{name} has no rule for node kinds: {', '.join(missing)}.\n"
            f"  Every operation over Real must handle all {len(Kind)} kinds."
        )
    return dict(table)


def to_decimal(value: Any) -> Decimal:
    """Convert a Python or NumPy number to :class:`Decimal`.

    Floats go through their shortest ``repr`` so ``0.1`` becomes ``Decimal('0.1')``.
    """
    if isinstance(value, Real):
        raise TypeError(
            f"Expected a number, got the expression {value}.\n"
            f"  Line coefficients and LogLine exponents must be constants."
        )
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, np.integer)):
        return Decimal(int(value))
    if isinstance(value, (float, np.floating)):
        return Decimal(repr(float(value)))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except DecimalException:
            raise ValueError(f"Cannot read {value!r} as a decimal number") from None
    if isinstance(value, numbers.Real):
        return Decimal(repr(float(value)))
    raise TypeError(f"Expected a number, got {type(value).__name__}")


def _check_real(x: Any, role: str) -> Real:
    if not isinstance(x, Real):
        raise TypeError(f"{role} must be a Real, got {type(x).__name__}")
    return x


def _is_integral(d: Decimal) -> bool:
    return d.is_finite() and d == d.to_integral_value()


# -----------------------------------------------------------------------------
#   Nodes
# -----------------------------------------------------------------------------

class Real:
    """Base class of every expression node.

    Subclasses set ``kind`` and expose their sub-expressions as ``children``.
    Arithmetic operators are bound onto the class by :func:`bind_ops`.
    """
    kind: Kind

    @property
    def children(self) -> tuple[Real, ...]:
        return ()

    # elementary functions

    def exp(self) -> Real:
        return unary(self, UnaryOp.EXP)

    def log(self) -> Real:
        return unary(self, UnaryOp.LOG)

    def abs(self) -> Real:
        return unary(self, UnaryOp.ABS)

    def __abs__(self) -> Real:
        return unary(self, UnaryOp.ABS)

    def rectifier(self) -> Real:
        return unary(self, UnaryOp.RECTIFIER)

    def sin(self) -> Real:
        return unary(self, UnaryOp.SIN)

    def cos(self) -> Real:
        return unary(self, UnaryOp.COS)

    def tan(self) -> Real:
        return unary(self, UnaryOp.TAN)

    def asin(self) -> Real:
        return unary(self, UnaryOp.ASIN)

    def acos(self) -> Real:
        return unary(self, UnaryOp.ACOS)

    def atan(self) -> Real:
        return unary(self, UnaryOp.ATAN)

    def sinh(self) -> Real:
        return unary(self, UnaryOp.SINH)

    def cosh(self) -> Real:
        return unary(self, UnaryOp.COSH)

    def tanh(self) -> Real:
        return unary(self, UnaryOp.TANH)

    def erf(self) -> Real:
        return unary(self, UnaryOp.ERF)

    def sqrt(self) -> Real:
        return _pow(self, Constant("0.5"))

    def pow(self, exponent: Any) -> Real:
        return _pow(self, exponent)

    # ------------------------------------------------------------------
    #   NumPy dispatch protocol
    # ------------------------------------------------------------------

    def __array_ufunc__(self, ufunc, method, *inputs, **ufunc_kwargs):
        """Handle numpy ufuncs like np.exp, np.sin, np.add by building nodes."""
        if method != '__call__' or ufunc_kwargs:
            return NotImplemented
        try:
            args = [_real(i) for i in inputs]
        except TypeError:
            return NotImplemented

        name = ufunc.__name__
        if name in NUMPY_UFUNCS and len(args) == 1:
            return unary(args[0], NUMPY_UFUNCS[name])
        builder = _ufunc_builders.get(name)
        if builder is None:
            return NotImplemented
        return builder(*args)

    # ------------------------------------------------------------------
    #   String representations
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return _format(self)

    def __repr__(self) -> str:
        return _format(self)


class Constant(Real):
    """A finite decimal literal."""
    kind = Kind.CONSTANT

    def __init__(self, value: Any):
        value = to_decimal(value)
        if not value.is_finite():
            raise ValueError(
                f"Constant must be finite, got {value}.\n"
                f"  Use const(), which maps infinities to INFINITY / NEG_INFINITY."
            )
        self.value = value


class Infinity(Real):
    """Positive infinite bound, e.g. the log-density of an improper prior."""
    kind = Kind.INFINITY


class NegInfinity(Real):
    """Negative infinite bound, e.g. the log-density outside a support."""
    kind = Kind.NEG_INFINITY


class Unary(Real):
    """An elementary function applied to one sub-expression."""
    kind = Kind.UNARY

    def __init__(self, original: Real, op: UnaryOp):
        self.original = _check_real(original, "Unary operand")
        self.op = UnaryOp(op)

    @property
    def children(self) -> tuple[Real, ...]:
        return (self.original,)


class Line(Real):
    """Affine combination ``sum(a * x for x, a in terms) + bias``.

    Parameters
    ----------
    terms : Mapping[Real, number]
        Sub-expressions and their constant coefficients, in order.
    bias : number, default 0
        Constant offset.
    """
    kind = Kind.LINE

    def __init__(self, terms: Mapping[Real, Any], bias: Any = 0):
        self.terms = {_check_real(x, "Line term"): to_decimal(a) for x, a in terms.items()}
        self.bias = to_decimal(bias)

    @property
    def children(self) -> tuple[Real, ...]:
        return tuple(self.terms)


class LogLine(Real):
    """Product of powers ``prod(x ** e for x, e in terms)``.

    Conceptually ``exp(sum(e * log(x)))``; integral exponents are evaluated by
    repeated multiplication so negative bases stay valid.
    """
    kind = Kind.LOG_LINE

    def __init__(self, terms: Mapping[Real, Any]):
        self.terms = {_check_real(x, "LogLine term"): to_decimal(e) for x, e in terms.items()}

    @property
    def children(self) -> tuple[Real, ...]:
        return tuple(self.terms)


class Pow(Real):
    """``base ** exponent`` where the exponent is itself an expression."""
    kind = Kind.POW

    def __init__(self, base: Real, exponent: Real):
        self.base = _check_real(base, "Pow base")
        self.exponent = _check_real(exponent, "Pow exponent")

    @property
    def children(self) -> tuple[Real, ...]:
        return (self.base, self.exponent)


class Compare(Real):
    """Three-way comparison: -1 if left < right, 0 if equal, 1 if greater."""
    kind = Kind.COMPARE

    def __init__(self, left: Real, right: Real):
        self.left = _check_real(left, "Compare left")
        self.right = _check_real(right, "Compare right")

    @property
    def children(self) -> tuple[Real, ...]:
        return (self.left, self.right)


class Lookup(Real):
    """Selects ``table[round(index)]``."""
    kind = Kind.LOOKUP

    def __init__(self, index: Real, table: Sequence[Real]):
        self.index = _check_real(index, "Lookup index")
        self.table = tuple(_check_real(t, "Lookup entry") for t in table)
        if not self.table:
            raise ValueError("Lookup table cannot be empty.")

    @property
    def children(self) -> tuple[Real, ...]:
        return (self.index, *self.table)


class If(Real):
    """``when_non_zero`` if ``test`` is non-zero, else ``when_zero``.

    Only the selected branch is evaluated.
    """
    kind = Kind.IF

    def __init__(self, test: Real, when_non_zero: Real, when_zero: Real):
        self.test = _check_real(test, "If test")
        self.when_non_zero = _check_real(when_non_zero, "If branch")
        self.when_zero = _check_real(when_zero, "If branch")

    @property
    def children(self) -> tuple[Real, ...]:
        return (self.test, self.when_non_zero, self.when_zero)


INFINITY = Infinity()
NEG_INFINITY = NegInfinity()
ZERO = Constant(0)
ONE = Constant(1)


# -----------------------------------------------------------------------------
#   Constructors
# -----------------------------------------------------------------------------

def const(val: Any) -> Real:
    """Wrap a number as a graph leaf.

    Infinite floats and decimals map to the :data:`INFINITY` and
    :data:`NEG_INFINITY` singletons. A Real is returned unchanged.

    Examples
    --------
    >>> const(2.5)
    2.5
    >>> const(float('-inf')) is NEG_INFINITY
    True
    """
    if isinstance(val, Real):
        return val
    d = to_decimal(val)
    if d.is_nan():
        raise ValueError("Cannot make a constant from NaN.")
    if d.is_infinite():
        return NEG_INFINITY if d.is_signed() else INFINITY
    return Constant(d)


def _folded(fn):
    """Run a builder so constant folding uses ``Evaluator.precision`` digits."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        from .evaluator import Evaluator
        with localcontext(Context(prec=Evaluator.precision)):
            return fn(*args, **kwargs)
    return wrapper


def _real(x: Any) -> Real:
    return x if isinstance(x, Real) else const(x)


def _as_line(x: Real) -> tuple[dict[Real, Decimal], Decimal]:
    if isinstance(x, Constant):
        return {}, x.value
    if isinstance(x, Line):
        return dict(x.terms), x.bias
    return {x: _D1}, _D0


def _line(terms: dict[Real, Decimal], bias: Decimal) -> Real:
    terms = {x: a for x, a in terms.items() if a != 0}
    if not terms:
        return Constant(bias)
    if bias == 0 and len(terms) == 1:
        (x, a), = terms.items()
        if a == 1:
            return x
    return Line(terms, bias)


def _as_log_line(x: Real) -> dict[Real, Decimal]:
    if isinstance(x, LogLine):
        return dict(x.terms)
    return {x: _D1}


def _log_line(terms: dict[Real, Decimal]) -> Real:
    terms = {x: e for x, e in terms.items() if e != 0}
    if not terms:
        return Constant(1)
    if len(terms) == 1:
        (x, e), = terms.items()
        if e == 1:
            return x
    return LogLine(terms)


def _split_scale(x: Real) -> tuple[Decimal, Real]:
    """Split ``a * y`` (a one-term Line without bias) into ``(a, y)``."""
    if isinstance(x, Line) and x.bias == 0 and len(x.terms) == 1:
        (y, a), = x.terms.items()
        return a, y
    return _D1, x


@_folded
def _add(a: Any, b: Any) -> Real:
    terms, bias = _as_line(_real(a))
    other, other_bias = _as_line(_real(b))
    for x, c in other.items():
        terms[x] = terms.get(x, _D0) + c
    return _line(terms, bias + other_bias)


@_folded
def _scale(x: Real, c: Decimal) -> Real:
    if c == 1:
        return x
    terms, bias = _as_line(x)
    return _line({t: a * c for t, a in terms.items()}, bias * c)


def _neg(a: Any) -> Real:
    return _scale(_real(a), Decimal(-1))


def _sub(a: Any, b: Any) -> Real:
    return _add(a, _neg(b))


@_folded
def _mul(a: Any, b: Any) -> Real:
    a, b = _real(a), _real(b)
    if isinstance(a, Constant):
        return _scale(b, a.value)
    if isinstance(b, Constant):
        return _scale(a, b.value)

    ca, a = _split_scale(a)
    cb, b = _split_scale(b)
    terms = _as_log_line(a)
    for x, e in _as_log_line(b).items():
        terms[x] = terms.get(x, _D0) + e
    return _scale(_log_line(terms), ca * cb)


def _fold_power(base: Decimal, e: Decimal) -> Decimal | None:
    """Fold ``base ** e`` for constants, or None if it is not real-valued."""
    if base == 0 and e < 0:
        return None
    if not _is_integral(e) and base < 0:
        return None
    try:
        return base ** e
    except DecimalException:
        return None


@_folded
def _pow(base: Any, exponent: Any) -> Real:
    base, exponent = _real(base), _real(exponent)
    if not isinstance(exponent, Constant):
        return Pow(base, exponent)

    e = exponent.value
    if e == 0:
        return Constant(1)
    if e == 1:
        return base
    if isinstance(base, Constant):
        folded = _fold_power(base.value, e)
        if folded is not None:
            return Constant(folded)
    if _is_integral(e):
        c, inner = _split_scale(base)
        if c != 1:
            return _scale(_pow(inner, exponent), c ** e)
        if isinstance(base, LogLine):
            return _log_line({x: k * e for x, k in base.terms.items()})
    return _log_line({base: e})


@_folded
def _div(a: Any, b: Any) -> Real:
    b = _real(b)
    if isinstance(b, Constant) and b.value != 0:
        return _scale(_real(a), _D1 / b.value)
    return _mul(a, _pow(b, Constant(-1)))


@_folded
def unary(x: Any, op: UnaryOp) -> Real:
    """Apply an elementary function, folding it on constants where it is defined."""
    x = _real(x)
    op = UnaryOp(op)
    if isinstance(x, Constant):
        try:
            value = DECIMAL_IMPL[op](x.value)
        except DecimalException:
            value = None
        if value is not None and value.is_finite():
            return Constant(value)
    return Unary(x, op)


def compare(left: Any, right: Any) -> Real:
    """Three-way comparison node (-1, 0 or 1)."""
    left, right = _real(left), _real(right)
    if isinstance(left, Constant) and isinstance(right, Constant):
        return Constant((left.value > right.value) - (left.value < right.value))
    return Compare(left, right)


def where(test: Any, when_non_zero: Any, when_zero: Any) -> Real:
    """Branch on ``test != 0``; a constant test picks its branch immediately."""
    test = _real(test)
    when_non_zero, when_zero = _real(when_non_zero), _real(when_zero)
    if isinstance(test, Constant):
        return when_zero if test.value == 0 else when_non_zero
    return If(test, when_non_zero, when_zero)


def lookup(index: Any, table: Iterable[Any]) -> Real:
    """Select ``table[round(index)]``; a constant in-range index selects immediately."""
    index = _real(index)
    table = [_real(t) for t in table]
    if not table:
        raise ValueError("Lookup table cannot be empty.")
    if isinstance(index, Constant):
        i = int(index.value.to_integral_value())
        if 0 <= i < len(table):
            return table[i]
    return Lookup(index, table)


def eq(left: Any, right: Any, if_true: Any, if_false: Any) -> Real:
    """``if_true`` where ``left == right``, else ``if_false``."""
    return where(compare(left, right), if_false, if_true)


@_folded
def total(reals: Iterable[Any]) -> Real:
    """Sum any number of expressions into a single merged Line."""
    terms: dict[Real, Decimal] = {}
    bias = _D0
    for r in reals:
        t, b = _as_line(_real(r))
        for x, c in t.items():
            terms[x] = terms.get(x, _D0) + c
        bias += b
    return _line(terms, bias)


def logsumexp(reals: Iterable[Any]) -> Real:
    """``log(sum(exp(r)))``; an empty input is ``NEG_INFINITY``."""
    reals = [_real(r) for r in reals]
    if not reals:
        return NEG_INFINITY
    if len(reals) == 1:
        return reals[0]
    return total(r.exp() for r in reals).log()


def _indicator(a: Any, b: Any, table: tuple[int, int, int]) -> Real:
    # compare() + 1 is 0, 1 or 2 for less, equal, greater
    return lookup(_add(compare(a, b), 1), [Constant(v) for v in table])


_ufunc_builders: dict[str, Callable[..., Real]] = {
    'add': _add,
    'subtract': _sub,
    'multiply': _mul,
    'divide': _div,
    'true_divide': _div,
    'power': _pow,
    'negative': _neg,
    'sqrt': lambda a: _pow(a, Constant("0.5")),
    'square': lambda a: _pow(a, Constant(2)),
}


# Operations

def named(fn, name):
    fn.__name__ = name
    return fn

_op_map = {
    '__add__': named(lambda a, b: _add(a, b), 'add'),
    '__radd__': named(lambda a, b: _add(b, a), 'radd'),
    '__sub__': named(lambda a, b: _sub(a, b), 'sub'),
    '__rsub__': named(lambda a, b: _sub(b, a), 'rsub'),
    '__mul__': named(lambda a, b: _mul(a, b), 'mul'),
    '__rmul__': named(lambda a, b: _mul(b, a), 'rmul'),
    '__truediv__': named(lambda a, b: _div(a, b), 'div'),
    '__rtruediv__': named(lambda a, b: _div(b, a), 'rdiv'),
    '__pow__': named(lambda a, b: _pow(a, b), 'pow'),
    '__rpow__': named(lambda a, b: _pow(b, a), 'rpow'),
    '__neg__': named(lambda a: _neg(a), 'neg'),
    # == and != stay identity comparisons, the caches depend on it
    '__lt__': named(lambda a, b: _indicator(a, b, (1, 0, 0)), 'lt'),
    '__le__': named(lambda a, b: _indicator(a, b, (1, 1, 0)), 'le'),
    '__gt__': named(lambda a, b: _indicator(a, b, (0, 0, 1)), 'gt'),
    '__ge__': named(lambda a, b: _indicator(a, b, (0, 1, 1)), 'ge'),
}

_MISSING = object()


def bind_ops(cls):
    for name, fn in _op_map.items():
        def op_method(self, other=_MISSING, fn=fn):
            if other is _MISSING:
                return fn(self)
            if not isinstance(other, Real):
                try:
                    other = const(other)
                except TypeError:
                    return NotImplemented
            return fn(self, other)
        op_method.__name__ = name
        setattr(cls, name, op_method)

bind_ops(Real)


# -----------------------------------------------------------------------------
#   Traversal
# -----------------------------------------------------------------------------

def post_order(roots: Real | Iterable[Real], follow_density: bool = False) -> list[Real]:
    """Every node reachable from ``roots``, children before parents.

    Each shared node appears once. The walk uses an explicit stack, so deep
    graphs do not hit the recursion limit.

    Parameters
    ----------
    roots : Real | Iterable[Real]
        Where to start.
    follow_density : bool, default False
        Also walk into each Parameter's ``density``.

    Raises
    ------
    MalformedGraph
        If a node is reached again while its own sub-graph is still being
        walked, i.e. the graph has a cycle.
    """
    if isinstance(roots, Real):
        roots = [roots]

    order: list[Real] = []
    done: set[Real] = set()
    visiting: set[Real] = set()

    def children_of(node: Real) -> tuple[Real, ...]:
        density = getattr(node, "density", None) if follow_density else None
        if density is not None:
            return (*node.children, density)
        return node.children

    for root in roots:
        stack: list[tuple[Real, bool]] = [(_check_real(root, "Traversal root"), False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                visiting.discard(node)
                done.add(node)
                order.append(node)
                continue
            if node in done:
                continue
            if node in visiting:
                raise MalformedGraph(
                    f"Cycle detected at {node!r}.\n"
                    f"  A Parameter's density must not refer back to the parameter itself.",
                    node,
                )
            visiting.add(node)
            stack.append((node, True))
            for child in reversed(children_of(node)):
                if child not in done:
                    stack.append((child, False))
    return order


# REPRESENTATION

def _fmt_decimal(d: Decimal) -> str:
    n = d.normalize()
    if -6 <= n.adjusted() < 16:
        return format(n, 'f')
    return str(n)


def _wrapped(node: Real, kinds: tuple[Kind, ...], fmt: Callable[[Real], str]) -> str:
    text = fmt(node)
    return f"({text})" if node.kind in kinds else text


def _fmt_line(node: Line, fmt) -> str:
    parts = []
    for x, a in node.terms.items():
        inner = _wrapped(x, (Kind.LINE,), fmt)
        if a == 1:
            parts.append(inner)
        elif a == -1:
            parts.append(f"-{inner}")
        else:
            parts.append(f"{_fmt_decimal(a)}*{_wrapped(x, (Kind.LINE, Kind.LOG_LINE), fmt)}")
    if node.bias != 0:
        parts.append(_fmt_decimal(node.bias))
    return " + ".join(parts).replace("+ -", "- ")


def _fmt_log_line(node: LogLine, fmt) -> str:
    parts = []
    for x, e in node.terms.items():
        inner = _wrapped(x, (Kind.LINE, Kind.LOG_LINE, Kind.POW), fmt)
        parts.append(inner if e == 1 else f"{inner}^{_fmt_decimal(e)}")
    return " * ".join(parts)


_format_rules = dispatch_table("format", {
    Kind.CONSTANT: lambda n, fmt: _fmt_decimal(n.value),
    Kind.INFINITY: lambda n, fmt: "∞",
    Kind.NEG_INFINITY: lambda n, fmt: "-∞",
    Kind.VARIABLE: lambda n, fmt: n.label,
    Kind.UNARY: lambda n, fmt: f"{n.op.value}({fmt(n.original)})",
    Kind.LINE: _fmt_line,
    Kind.LOG_LINE: _fmt_log_line,
    Kind.POW: lambda n, fmt: (
        f"{_wrapped(n.base, (Kind.LINE, Kind.LOG_LINE, Kind.POW), fmt)}"
        f"^{_wrapped(n.exponent, (Kind.LINE, Kind.LOG_LINE, Kind.POW), fmt)}"
    ),
    Kind.COMPARE: lambda n, fmt: f"compare({fmt(n.left)}, {fmt(n.right)})",
    Kind.LOOKUP: lambda n, fmt: (
        f"lookup({fmt(n.index)}, [{', '.join(fmt(t) for t in n.table)}])"
    ),
    Kind.IF: lambda n, fmt: (
        f"if({fmt(n.test)}, {fmt(n.when_non_zero)}, {fmt(n.when_zero)})"
    ),
})


def _format(node: Real) -> str:
    # children first, so no rule ever recurses
    memo: dict[Real, str] = {}
    for n in post_order(node):
        memo[n] = _format_rules[n.kind](n, memo.__getitem__)
    return memo[node]
