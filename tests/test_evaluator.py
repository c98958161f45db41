# tests/test_evaluator.py
"""Tests for decimal evaluation."""
from collections import Counter
from decimal import Context, Decimal, localcontext

import numpy as np
import pytest

from realgraph import (
    Evaluator, Variable, Column, Constant, Line, LogLine, Lookup, If, INFINITY, NEG_INFINITY,
    compare, const, where, lookup, n_rows, evaluate_rows, UnboundVariable, DomainError,
)


@pytest.fixture
def xy():
    return Variable('x'), Variable('y')


# =============================================================================
# Arithmetic Nodes
# =============================================================================

class TestArithmetic:
    """Values of Line, LogLine, Pow and Unary nodes."""

    def test_line(self, xy):
        x, y = xy
        line = Line({x: 2, y: 3}, bias=1)
        assert Evaluator({x: 5, y: 2}).evaluate(line) == 17

    def test_built_expression(self, xy):
        x, y = xy
        assert Evaluator({x: 3}).evaluate(x * x + 1) == 10
        assert (x * y - 1).evaluate({x: 2, y: 4}) == 7

    def test_decimal_inputs_are_exact(self, xy):
        x, _ = xy
        assert Evaluator({x: 0.1}).evaluate(x * 3) == Decimal("0.3")

    def test_negative_base_integral_exponent(self, xy):
        x, _ = xy
        node = LogLine({x: -2})
        result = Evaluator({x: -3}).evaluate(node)
        with localcontext(Context(prec=Evaluator.precision)):
            expected = Decimal(1) / Decimal(9)
        assert result == expected

    def test_negative_base_fractional_exponent(self, xy):
        x, _ = xy
        node = LogLine({x: 0.5})
        with pytest.raises(DomainError):
            Evaluator({x: -3}).evaluate(node)

    def test_zero_to_negative_power(self, xy):
        x, _ = xy
        with pytest.raises(DomainError):
            Evaluator({x: 0}).evaluate(1 / x)

    def test_mixed_log_line(self, xy):
        x, y = xy
        node = x ** 2 * y ** -1
        assert Evaluator({x: -4, y: 2}).evaluate(node) == 8

    def test_pow(self, xy):
        x, y = xy
        node = x ** y
        assert Evaluator({x: 2, y: 3}).evaluate(node) == 8
        assert Evaluator({x: -2, y: 3}).evaluate(node) == -8
        assert Evaluator({x: 4, y: 0.5}).evaluate(node) == 2
        with pytest.raises(DomainError):
            Evaluator({x: -8, y: 1 / 3}).evaluate(node)

    def test_unary(self, xy):
        x, _ = xy
        np.testing.assert_almost_equal(Evaluator({x: 1}).to_float(x.exp()), np.e)
        np.testing.assert_almost_equal(Evaluator({x: 0.5}).to_float(x.sin()), np.sin(0.5))
        np.testing.assert_almost_equal(Evaluator({x: 0.5}).to_float(x.erf()), 0.5204998778130465)
        assert Evaluator({x: -2}).evaluate(abs(x)) == 2
        assert Evaluator({x: -2}).evaluate(x.rectifier()) == 0
        assert Evaluator({x: 2}).evaluate(x.rectifier()) == 2

    def test_log_domain(self, xy):
        x, _ = xy
        assert Evaluator({x: 0}).evaluate(x.log()) == Decimal("-Infinity")
        with pytest.raises(DomainError):
            Evaluator({x: -1}).evaluate(x.log())

    def test_asin_domain(self, xy):
        x, _ = xy
        with pytest.raises(DomainError):
            Evaluator({x: 2}).evaluate(x.asin())

    def test_domain_error_carries_node(self, xy):
        x, _ = xy
        node = x.log()
        with pytest.raises(DomainError) as excinfo:
            Evaluator({x: -1}).evaluate(node)
        assert excinfo.value.node is node
        assert excinfo.value.operands == (Decimal(-1),)

    def test_folded_constants_use_evaluator_precision(self, xy):
        x, _ = xy
        scaled = Evaluator({x: 1}).evaluate(x / 3)
        inverse = Evaluator({x: 3}).evaluate(1 / x)
        assert scaled == inverse
        assert str(scaled) == "0." + "3" * 50

    def test_folded_unary_uses_evaluator_precision(self):
        assert const(2).log().value == Decimal(2).ln(Context(prec=50))

    def test_domain_error_in_deep_graph(self, xy):
        x, _ = xy
        node = x
        for _ in range(3000):
            node = node.sin()
        with pytest.raises(DomainError, match="out of range"):
            Evaluator({x: 1}).evaluate(lookup(node + 10, [const(1), const(2)]))

    def test_precision(self, xy):
        x, _ = xy
        assert str(Evaluator({x: 3}, precision=10).evaluate(1 / x)) == "0.3333333333"
        assert len(str(Evaluator({x: 3}).evaluate(1 / x))) == 52


class TestInfinities:
    """Infinite leaves evaluate to signed decimal infinities."""

    def test_values(self):
        assert Evaluator().evaluate(INFINITY) == Decimal("Infinity")
        assert Evaluator().evaluate(NEG_INFINITY) == Decimal("-Infinity")

    def test_infinite_arithmetic(self, xy):
        x, _ = xy
        assert Evaluator({x: 1}).evaluate(x + NEG_INFINITY) == Decimal("-Infinity")

    def test_undefined_combination(self):
        with pytest.raises(DomainError):
            Evaluator().evaluate(INFINITY + NEG_INFINITY)


# =============================================================================
# Branching Nodes
# =============================================================================

class TestBranching:
    """Compare, Lookup and If."""

    def test_compare(self, xy):
        x, y = xy
        node = compare(x, y)
        assert Evaluator({x: 1, y: 2}).evaluate(node) == -1
        assert Evaluator({x: 2, y: 2}).evaluate(node) == 0
        assert Evaluator({x: 3, y: 2}).evaluate(node) == 1

    @pytest.mark.parametrize("build, value, expected", [
        (lambda x: x < 0, -1, 1),
        (lambda x: x < 0, 0, 0),
        (lambda x: x <= 0, 0, 1),
        (lambda x: x > 0, 1, 1),
        (lambda x: x > 0, 0, 0),
        (lambda x: x >= 0, 0, 1),
        (lambda x: x >= 0, -1, 0),
    ])
    def test_comparison_operators(self, xy, build, value, expected):
        x, _ = xy
        assert Evaluator({x: value}).evaluate(build(x)) == expected

    def test_lookup(self, xy):
        x, _ = xy
        node = Lookup(x, [const(10), const(20), const(30)])
        assert Evaluator({x: 1}).evaluate(node) == 20
        assert Evaluator({x: 1.4}).evaluate(node) == 20
        assert Evaluator({x: 2}).evaluate(node) == 30

    @pytest.mark.parametrize("index", [3, -1])
    def test_lookup_out_of_range(self, xy, index):
        x, _ = xy
        node = Lookup(x, [const(10), const(20), const(30)])
        with pytest.raises(DomainError):
            Evaluator({x: index}).evaluate(node)

    def test_lookup_only_evaluates_selected_entry(self, xy):
        x, y = xy
        node = lookup(x, [const(1), 1 / y])
        e = Evaluator({x: 0, y: 0})
        assert e.evaluate(node) == 1
        assert node.table[1] not in e.cache

    def test_if_short_circuits(self, xy):
        x, _ = xy
        unsafe = 1 / x
        node = If(Constant(0), unsafe, Constant(5))
        e = Evaluator({x: 0})
        assert e.evaluate(node) == 5
        assert unsafe not in e.cache
        with pytest.raises(DomainError):
            Evaluator({x: 0}).evaluate(unsafe)

    def test_where_guards_division(self, xy):
        x, _ = xy
        safe = where(x, 1 / x, 0)
        assert Evaluator({x: 0}).evaluate(safe) == 0
        assert Evaluator({x: 4}).evaluate(safe) == Decimal("0.25")


# =============================================================================
# Memoization
# =============================================================================

class CountingEvaluator(Evaluator):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = Counter()

    def _compute(self, node):
        self.calls[node] += 1
        return super()._compute(node)


class TestMemoization:
    """Each distinct node is computed once per evaluator."""

    def test_shared_node_computed_once(self, xy):
        x, y = xy
        s = x * y
        out = s + s.exp() + s.sin()
        e = CountingEvaluator({x: 2, y: 3})
        e.evaluate(out)
        assert e.calls[s] == 1
        assert all(n == 1 for n in e.calls.values())
        assert len(e.cache) == 6

    def test_second_evaluation_uses_cache(self, xy):
        x, y = xy
        out = (x * y).exp()
        e = CountingEvaluator({x: 1, y: 1})
        first = e.evaluate(out)
        second = e.evaluate(out)
        assert first == second
        assert e.calls[out] == 1

    def test_deterministic_across_instances(self, xy):
        x, y = xy
        out = (x / y).log() * x + y.atan()
        bindings = {x: 1.7, y: 0.3}
        assert Evaluator(bindings).evaluate(out) == Evaluator(bindings).evaluate(out)

    def test_deep_graph(self, xy):
        x, _ = xy
        node = x
        for _ in range(5000):
            node = abs(node) + 1
        assert Evaluator({x: 0}).evaluate(node) == 5000


# =============================================================================
# Bindings and Placeholders
# =============================================================================

class TestBindings:
    """Variables resolve through bindings, then placeholder rows."""

    def test_unbound_variable(self, xy):
        x, _ = xy
        with pytest.raises(UnboundVariable) as excinfo:
            Evaluator({}).evaluate(x + 1)
        assert excinfo.value.variable is x

    def test_bindings_must_be_variables(self):
        with pytest.raises(TypeError):
            Evaluator({"x": 1})

    def test_column_row(self):
        c = Column('c')
        e = Evaluator(placeholders={c: [1.5, 2.5]}, row=1)
        assert e.evaluate(c * 2) == 5

    def test_column_without_row_is_unbound(self):
        c = Column('c')
        with pytest.raises(UnboundVariable):
            Evaluator(placeholders={c: [1.5, 2.5]}).evaluate(c)

    def test_binding_overrides_placeholder(self):
        c = Column('c')
        e = Evaluator({c: 7}, placeholders={c: [1.0]}, row=0)
        assert e.evaluate(c) == 7

    def test_evaluate_rows(self, xy):
        x, _ = xy
        c = Column('c')
        values = evaluate_rows(c * x + 1, {x: 2}, {c: [1, 2, 3]})
        assert values == [3, 5, 7]

    def test_n_rows(self):
        a, b = Column('a'), Column('b')
        assert n_rows({}) == 0
        assert n_rows({a: [1, 2], b: np.zeros(2)}) == 2
        with pytest.raises(ValueError, match="same length"):
            n_rows({a: [1, 2], b: [1, 2, 3]})
