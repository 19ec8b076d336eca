"""Poisson observation likelihood for reported daily case counts.

observed_t ~ Poisson(max(I_t, rate_floor)), independent across days,
where I_t is the infected series predicted by the SIR forward model.

Three ways to obtain the prediction (SamplerSection.likelihood_mode):
  - "expected": the deterministic mean-field trajectory. The likelihood is
    an exact function of (β, γ) and consumes no random draws. Default.
  - "pseudo_marginal": the log of the mean likelihood over n_replicates
    stochastic trajectories. An unbiased likelihood estimate; the sampler
    keeps the current state's estimate until a proposal is accepted.
  - "stochastic": one stochastic trajectory per evaluation, and the
    current state is re-simulated every iteration. Simulation noise enters
    every accept/reject decision; kept for behavioural comparison.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from scipy import stats
from scipy.special import logsumexp

from epinet.errors import ConfigurationError
from epinet.sir import expected_sir_trajectory, simulate_sir


def validate_observed(observed: Sequence[int], days: int) -> np.ndarray:
    """Check an ObservedSeries and return it as a read-only int64 array.

    Raises:
        ConfigurationError: If the series is not 1-D, has the wrong length,
            or holds negative / non-integer / non-finite values.
    """
    arr = np.asarray(observed)
    if arr.ndim != 1:
        raise ConfigurationError(f"observed series must be 1-D, got shape {arr.shape}")
    if len(arr) != days:
        raise ConfigurationError(
            f"observed series has {len(arr)} days, simulation horizon is {days}"
        )
    if arr.dtype.kind not in 'iuf':
        raise ConfigurationError(f"observed series must be numeric, got {arr.dtype}")
    if arr.dtype.kind == 'f':
        if not np.all(np.isfinite(arr)) or not np.all(arr == np.round(arr)):
            raise ConfigurationError("observed series must hold whole numbers")
    if np.any(arr < 0):
        raise ConfigurationError("observed series must be non-negative")
    out = arr.astype(np.int64)
    out.setflags(write=False)
    return out


def poisson_log_likelihood(
    observed: np.ndarray,
    predicted: np.ndarray,
    rate_floor: float = 1e-10,
) -> float:
    """Sum of Poisson log-probabilities of observed counts.

    Predicted rates below rate_floor (including zero) are raised to it, so
    an extinct trajectory yields a very low but finite likelihood.
    """
    rates = np.maximum(np.asarray(predicted, dtype=np.float64), rate_floor)
    return float(np.sum(stats.poisson.logpmf(observed, rates)))


class PoissonLikelihood:
    """log p(observed | β, γ) under the chosen prediction mode.

    Args:
        observed: ObservedSeries; its length fixes the horizon.
        population: N.
        initial_infected: I0.
        days: Simulation horizon; must equal len(observed).
        mode: "expected" | "pseudo_marginal" | "stochastic".
        n_replicates: Trajectories averaged in pseudo-marginal mode.
        rate_floor: Minimum Poisson rate.
    """

    def __init__(
        self,
        observed: Sequence[int],
        population: int,
        initial_infected: int,
        days: int,
        mode: str = "expected",
        n_replicates: int = 10,
        rate_floor: float = 1e-10,
    ):
        if mode not in ("expected", "pseudo_marginal", "stochastic"):
            raise ConfigurationError(f"unknown likelihood mode '{mode}'")
        if n_replicates < 1:
            raise ConfigurationError("n_replicates must be >= 1")
        self.observed = validate_observed(observed, days)
        self.population = population
        self.initial_infected = initial_infected
        self.days = days
        self.mode = mode
        self.n_replicates = n_replicates if mode == "pseudo_marginal" else 1
        self.rate_floor = rate_floor

    @property
    def reuses_current(self) -> bool:
        """Whether the current state's value may be cached between iterations."""
        return self.mode != "stochastic"

    def predict(self, beta: float, gamma: float,
                rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """One predicted infected series (mean-field or a single stochastic run)."""
        if self.mode == "expected":
            return expected_sir_trajectory(
                beta, gamma, self.population, self.initial_infected, self.days,
            ).I
        return simulate_sir(
            beta, gamma, self.population, self.initial_infected, self.days, rng,
        ).I

    def __call__(self, beta: float, gamma: float,
                 rng: Optional[np.random.Generator] = None) -> float:
        if self.mode == "expected":
            return poisson_log_likelihood(
                self.observed, self.predict(beta, gamma), self.rate_floor,
            )
        if rng is None:
            raise ConfigurationError(f"likelihood mode '{self.mode}' needs a generator")
        lls = np.array([
            poisson_log_likelihood(
                self.observed, self.predict(beta, gamma, rng), self.rate_floor,
            )
            for _ in range(self.n_replicates)
        ])
        if len(lls) == 1:
            return float(lls[0])
        return float(logsumexp(lls) - np.log(len(lls)))
