"""Tests for epinet.likelihood — Poisson observation model."""

import numpy as np
import pytest
from scipy import stats

from epinet.errors import ConfigurationError
from epinet.likelihood import (
    PoissonLikelihood,
    poisson_log_likelihood,
    validate_observed,
)
from epinet.sir import expected_sir_trajectory

OBSERVED = [10] * 30


class TestValidateObserved:
    def test_returns_read_only_ints(self):
        out = validate_observed([1, 2, 3], 3)
        assert out.dtype == np.int64
        with pytest.raises(ValueError):
            out[0] = 5

    def test_whole_floats_accepted(self):
        np.testing.assert_array_equal(validate_observed([1.0, 2.0], 2), [1, 2])

    def test_wrong_length(self):
        with pytest.raises(ConfigurationError, match="30"):
            validate_observed([10] * 29, 30)

    @pytest.mark.parametrize("bad", [
        [1, -1, 2],
        [1.5, 2.0, 3.0],
        [1.0, np.nan, 2.0],
        ["a", "b", "c"],
    ])
    def test_bad_values(self, bad):
        with pytest.raises(ConfigurationError):
            validate_observed(bad, 3)

    def test_not_one_dimensional(self):
        with pytest.raises(ConfigurationError, match="1-D"):
            validate_observed([[1, 2], [3, 4]], 2)


class TestPoissonLogLikelihood:
    def test_matches_scipy(self):
        obs = np.array([3, 5, 0])
        pred = np.array([2.5, 4.0, 1.0])
        expected = stats.poisson.logpmf(obs, pred).sum()
        assert poisson_log_likelihood(obs, pred) == pytest.approx(expected)

    def test_zero_prediction_is_finite(self):
        ll = poisson_log_likelihood(np.array([10, 10]), np.array([0.0, 0.0]))
        assert np.isfinite(ll)
        assert ll < -100

    def test_floor_applied(self):
        obs = np.array([2])
        assert poisson_log_likelihood(obs, np.array([0.0]), rate_floor=0.5) == \
            pytest.approx(stats.poisson.logpmf(2, 0.5))

    def test_zero_observed_zero_predicted_near_zero(self):
        assert poisson_log_likelihood(np.array([0]), np.array([0.0])) == \
            pytest.approx(0.0, abs=1e-9)


class TestPoissonLikelihood:
    def _lik(self, mode, **kwargs):
        return PoissonLikelihood(OBSERVED, population=1000, initial_infected=10,
                                 days=30, mode=mode, **kwargs)

    def test_expected_mode_uses_mean_field(self):
        lik = self._lik("expected")
        pred = expected_sir_trajectory(0.2, 0.15, 1000, 10, 30).I
        assert lik(0.2, 0.15) == pytest.approx(poisson_log_likelihood(lik.observed, pred))

    def test_expected_mode_consumes_no_draws(self):
        lik = self._lik("expected")
        rng = np.random.default_rng(0)
        state = rng.bit_generator.state
        lik(0.2, 0.15, rng)
        assert rng.bit_generator.state == state

    def test_expected_mode_prefers_flat_trajectory(self):
        # Observed is flat at 10: β ≈ γ fits better than explosive growth
        lik = self._lik("expected")
        assert lik(0.15, 0.15) > lik(0.9, 0.05)

    def test_stochastic_mode_needs_rng(self):
        with pytest.raises(ConfigurationError, match="generator"):
            self._lik("stochastic")(0.2, 0.15)

    def test_stochastic_mode_deterministic_given_seed(self):
        lik = self._lik("stochastic")
        a = lik(0.2, 0.15, np.random.default_rng(1))
        b = lik(0.2, 0.15, np.random.default_rng(1))
        assert a == b
        assert not lik.reuses_current

    def test_pseudo_marginal_averages_replicates(self):
        lik = self._lik("pseudo_marginal", n_replicates=5)
        single = PoissonLikelihood(OBSERVED, 1000, 10, 30, mode="stochastic")
        rng = np.random.default_rng(2)
        singles = np.array([single(0.2, 0.15, rng) for _ in range(5)])
        expected = np.log(np.mean(np.exp(singles - singles.max()))) + singles.max()
        assert lik(0.2, 0.15, np.random.default_rng(2)) == pytest.approx(expected)
        assert lik.reuses_current

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError):
            self._lik("exact")

    def test_observed_length_checked(self):
        with pytest.raises(ConfigurationError):
            PoissonLikelihood([10] * 10, 1000, 10, 30)
