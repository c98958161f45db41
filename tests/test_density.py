# tests/test_density.py
"""Tests for DensityFunction, the numeric view of a TargetGroup."""
import numpy as np
import pytest

from realgraph import (
    DensityFunction, TargetGroup, Parameter, Column, NEG_INFINITY, where,
)


@pytest.fixture
def normal_mean():
    """Unit-variance normal likelihood for an unknown mean."""
    mu = Parameter('mu', density=-1, start=0.5)
    obs = Column('obs')
    loglik = -((obs - mu) ** 2) / 2
    return mu, obs, TargetGroup.build([loglik])


# =============================================================================
# Values
# =============================================================================

class TestUpdate:
    """update() sums prior and per-row likelihood."""

    def test_density_and_gradient(self, normal_mean):
        mu, obs, group = normal_mean
        df = DensityFunction(group, {obs: [1.0, 2.0, 3.0]})
        df.update([2.0])
        assert df.density == pytest.approx(-2.0)
        np.testing.assert_allclose(df.gradient, [0.0], atol=1e-12)

        df.update(np.array([0.0]))
        assert df.density == pytest.approx(-8.0)
        np.testing.assert_allclose(df.gradient, [6.0])

    def test_call_returns_density(self, normal_mean):
        mu, obs, group = normal_mean
        df = DensityFunction(group, {obs: [1.0, 2.0, 3.0]})
        assert df([2.0]) == pytest.approx(-2.0)

    def test_sizes(self, normal_mean):
        mu, obs, group = normal_mean
        df = DensityFunction(group, {obs: np.arange(5.0)})
        assert df.n_vars == 1
        assert df.n_rows == 5

    def test_start(self, normal_mean):
        mu, obs, group = normal_mean
        df = DensityFunction(group, {obs: [1.0]})
        np.testing.assert_array_equal(df.start(), [0.5])

    def test_not_updated_yet(self, normal_mean):
        mu, obs, group = normal_mean
        df = DensityFunction(group, {obs: [1.0]})
        assert np.isnan(df.density)

    def test_no_columns(self):
        a = Parameter('a')
        b = Parameter('b', density=-(a ** 2))
        df = DensityFunction(TargetGroup.build([a * b]))
        df.update([2.0, 3.0])
        assert df.density == pytest.approx(-4.0 + 6.0)
        np.testing.assert_allclose(df.gradient, [-4.0 + 3.0, 2.0])

    def test_column_free_likelihood_counted_once(self):
        c = Column('c')
        p = Parameter('p', density=-((c - 1) ** 2))
        df = DensityFunction(TargetGroup.build([p * 2]), {c: [1.0, 2.0, 3.0]})
        df.update([1.0])
        assert df.density == pytest.approx(-5.0 + 2.0)
        np.testing.assert_allclose(df.gradient, [2.0])

    def test_gradient_matches_finite_differences(self):
        a = Parameter('a')
        b = Parameter('b', density=-(a ** 2) / 2)
        x, y = Column('x'), Column('y')
        loglik = -((y - a * x.exp() - b.sin()) ** 2) / 2
        df = DensityFunction(TargetGroup.build([loglik]), {x: [0.1, 0.5, 0.9], y: [1.0, 2.0, 2.5]})

        point = np.array([0.8, -0.3])
        df.update(point)
        analytic = df.gradient.copy()

        eps = 1e-6
        numeric = []
        for i in range(2):
            step = np.zeros(2)
            step[i] = eps
            numeric.append((df.update(point + step) - df.update(point - step)) / (2 * eps))
        np.testing.assert_allclose(analytic, numeric, rtol=1e-5)


# =============================================================================
# Errors and Warnings
# =============================================================================

class TestValidation:
    """Bad inputs are rejected with clear messages."""

    def test_requires_target_group(self):
        with pytest.raises(TypeError):
            DensityFunction([])

    def test_missing_column_data(self, normal_mean):
        mu, obs, group = normal_mean
        with pytest.raises(ValueError, match="obs"):
            DensityFunction(group)

    def test_mismatched_columns(self):
        p = Parameter('p')
        a, b = Column('a'), Column('b')
        group = TargetGroup.build([p * a + b])
        with pytest.raises(ValueError):
            DensityFunction(group, {a: [1.0, 2.0], b: [1.0]})

    def test_wrong_number_of_values(self, normal_mean):
        mu, obs, group = normal_mean
        df = DensityFunction(group, {obs: [1.0]})
        with pytest.raises(ValueError, match="Expected 1 parameter values"):
            df.update([1.0, 2.0])

    def test_non_finite_density_warns(self):
        mu = Parameter('mu')
        group = TargetGroup.build([where(mu, NEG_INFINITY, 0)])
        df = DensityFunction(group)
        with pytest.warns(UserWarning, match="not finite"):
            df.update([1.0])
        assert df.density == -np.inf
        np.testing.assert_array_equal(df.gradient, [0.0])
