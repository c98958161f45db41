"""variable.py
=============
Free leaves of the expression graph.

    x = Variable()                           # auto-named 'x'
    mu = Parameter()                         # flat prior, auto-named 'mu'
    tau = Parameter(density=-(mu ** 2) / 2)  # log-prior in terms of mu
    obs = Column()                           # bound to data at evaluation time

Every variable gets a unique, increasing ``id`` when it is created. Parameters
are ordered by it wherever a deterministic layout is needed, e.g. the
parameter vector of a :class:`~realgraph.target.TargetGroup`.
"""
from __future__ import annotations

import itertools
from typing import Any

from .real import Kind, Real, ZERO, const

__all__ = [
    "Variable",
    "Parameter",
    "Column",
]

_ids = itertools.count()


# -----------------------------------------------------------------------------
#   Variable name detection for auto-naming
# -----------------------------------------------------------------------------

_varname_cache: dict[tuple, int] = {}  # (filename, lineno) -> call index


def _split_top_level_commas(s: str) -> list[str]:
    """Split string by commas, but only at top level (not inside parens/brackets)."""
    parts = []
    current = []
    depth = 0
    for c in s:
        if c in '([':
            depth += 1
            current.append(c)
        elif c in ')]':
            depth -= 1
            current.append(c)
        elif c == ',' and depth == 0:
            parts.append(''.join(current))
            current = []
        else:
            current.append(c)
    if current:
        parts.append(''.join(current))
    return parts


def _is_simple_call(part: str) -> bool:
    """Check that ``part`` is one call like ``Parameter(...)`` and nothing more.

    Matches: Variable(), Parameter('mu'), Parameter(density=x.log())
    Does NOT match: Variable() + Variable(), Variable().exp()
    """
    import re
    match = re.match(r'\s*\w+(\.\w+)?\s*\(', part)
    if not match:
        return False
    rest = part[match.end() - 1:].rstrip()
    depth = 0
    for i, c in enumerate(rest):
        if c in '([':
            depth += 1
        elif c in ')]':
            depth -= 1
            if depth == 0:
                return i == len(rest) - 1
    return False


def _detect_varname(depth: int = 2) -> str | None:
    """Detect variable name from assignment in calling frame.

    Only returns a name for simple direct assignments like:
        x = Variable()
        mu, sigma = Parameter(), Parameter()

    Returns None for expressions like:
        y = Variable() * 2
    """
    import inspect
    import re

    try:
        frame = inspect.currentframe()
        for _ in range(depth):
            if frame is None:
                return None
            frame = frame.f_back
        if frame is None:
            return None

        info = inspect.getframeinfo(frame)
        if not info.code_context:
            return None

        line = info.code_context[0]
        key = (info.filename, info.lineno)

        comment_pos = line.find('#')
        if comment_pos != -1:
            before = line[:comment_pos]
            if before.count("'") % 2 == 0 and before.count('"') % 2 == 0:
                line = before

        match = re.match(r'\s*([\w\s,]+)\s*=\s*(.+)$', line)
        if not match:
            return None

        names = [n.strip() for n in match.group(1).split(',')]
        rhs_parts = _split_top_level_commas(match.group(2))
        if not all(_is_simple_call(part) for part in rhs_parts):
            return None
        if len(names) != len(rhs_parts):
            return None

        if len(names) == 1:
            return names[0]

        # Tuple unpacking: track position
        call_index = _varname_cache.get(key, 0)
        if call_index >= len(names):
            call_index = 0
        _varname_cache[key] = call_index + 1
        return names[call_index]

    except Exception:
        return None


# -----------------------------------------------------------------------------
#   Leaves
# -----------------------------------------------------------------------------

class Variable(Real):
    """A free leaf with no value until it is bound.

    Parameters
    ----------
    name : str | None
        Display name. Detected from a simple assignment when omitted.
    """
    kind = Kind.VARIABLE
    _prefix = "v"

    def __init__(self, name: str | None = None, *, _depth: int = 2):
        self.id = next(_ids)
        self.name = name if name is not None else _detect_varname(depth=_depth)

    @property
    def label(self) -> str:
        return self.name if self.name else f"{self._prefix}{self.id}"


class Parameter(Variable):
    """A latent variable carrying its own log-prior ``density``.

    The density may use other parameters and constants but never the
    parameter itself; extraction raises ``MalformedGraph`` if it does.

    Parameters
    ----------
    name : str | None
        Display name, auto-detected when omitted.
    density : Real | number | None
        Log-prior expression. Defaults to a flat prior (constant 0).
    start : float, default 0.0
        Starting point for optimizers.
    """
    _prefix = "θ"

    def __init__(
        self,
        name: str | None = None,
        density: Any = None,
        start: float = 0.0,
        *,
        _depth: int = 2,
    ):
        super().__init__(name, _depth=_depth + 1)
        self.density = ZERO if density is None else const(density)
        self.start = float(start)


class Column(Variable):
    """A variable bound to one entry of an external data array per row."""
    _prefix = "col"

    def __init__(self, name: str | None = None, *, _depth: int = 2):
        super().__init__(name, _depth=_depth + 1)
