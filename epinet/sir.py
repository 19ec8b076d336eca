"""Discrete-time stochastic SIR forward simulator.

Chain-binomial recursion, one step per day:

    new_inf_t ~ Binomial(S_{t-1}, 1 − exp(−β · I_{t-1} / N))
    new_rec_t ~ Binomial(I_{t-1}, 1 − exp(−γ))
    S_t = S_{t-1} − new_inf_t
    I_t = I_{t-1} + new_inf_t − new_rec_t
    R_t = R_{t-1} + new_rec_t

Binomial draws are bounded by their trial counts, so no compartment can
go negative and S + I + R == N every day.

`expected_sir_trajectory` runs the same recursion with each draw replaced
by its mean; the sampler uses it as a deterministic likelihood model.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from epinet.errors import ConfigurationError, ParameterRangeError
from epinet.types import readonly


@dataclass(frozen=True)
class SIRTrajectory:
    """Daily compartment counts; arrays of length `days`, read-only."""
    S: np.ndarray
    I: np.ndarray
    R: np.ndarray
    population: int

    @property
    def days(self) -> int:
        return len(self.I)

    @property
    def new_infections(self) -> np.ndarray:
        """Daily incidence (S decrease); element 0 is 0."""
        return np.concatenate([[0], -np.diff(self.S)])


def check_rates(beta: float, gamma: float) -> None:
    """Raise ParameterRangeError unless both rates lie in (0, 1)."""
    if not (0.0 < beta < 1.0):
        raise ParameterRangeError(f"beta must be in (0, 1), got {beta}")
    if not (0.0 < gamma < 1.0):
        raise ParameterRangeError(f"gamma must be in (0, 1), got {gamma}")


def check_counts(population: int, initial_infected: int, days: int) -> None:
    """Raise ConfigurationError for unusable population / horizon settings."""
    if population < 1:
        raise ConfigurationError(f"population must be >= 1, got {population}")
    if not (0 <= initial_infected <= population):
        raise ConfigurationError(
            f"initial_infected must be in [0, {population}], got {initial_infected}"
        )
    if days < 1:
        raise ConfigurationError(f"days must be >= 1, got {days}")


def infection_probability(beta: float, infected: float, population: int) -> float:
    """Daily per-susceptible infection probability 1 − exp(−β·I/N)."""
    return 1.0 - np.exp(-beta * infected / population)


def recovery_probability(gamma: float) -> float:
    """Daily per-infected recovery probability 1 − exp(−γ)."""
    return 1.0 - np.exp(-gamma)


def simulate_sir(
    beta: float,
    gamma: float,
    population: int,
    initial_infected: int,
    days: int,
    rng: np.random.Generator,
) -> SIRTrajectory:
    """Run one stochastic SIR trajectory.

    Draw order per day (fixed): infections, then recoveries.

    Args:
        beta: Transmission rate β ∈ (0, 1).
        gamma: Recovery rate γ ∈ (0, 1).
        population: Total population N.
        initial_infected: I0.
        days: Length of the returned series (day 0 included).
        rng: Generator supplying the binomial draws.

    Returns:
        SIRTrajectory with S[0]=N−I0, I[0]=I0, R[0]=0.

    Raises:
        ParameterRangeError: If β or γ is outside (0, 1).
        ConfigurationError: If counts are invalid.
    """
    check_rates(beta, gamma)
    check_counts(population, initial_infected, days)

    S = np.zeros(days, dtype=np.int64)
    I = np.zeros(days, dtype=np.int64)
    R = np.zeros(days, dtype=np.int64)
    S[0] = population - initial_infected
    I[0] = initial_infected

    p_rec = recovery_probability(gamma)
    for t in range(1, days):
        p_inf = infection_probability(beta, I[t - 1], population)
        new_inf = rng.binomial(S[t - 1], p_inf)
        new_rec = rng.binomial(I[t - 1], p_rec)
        S[t] = S[t - 1] - new_inf
        I[t] = I[t - 1] + new_inf - new_rec
        R[t] = R[t - 1] + new_rec

    return SIRTrajectory(S=readonly(S), I=readonly(I), R=readonly(R),
                         population=population)


def expected_sir_trajectory(
    beta: float,
    gamma: float,
    population: int,
    initial_infected: int,
    days: int,
) -> SIRTrajectory:
    """Mean-field version of `simulate_sir` (no randomness, float counts).

    Same validation and initial conditions; each binomial draw is replaced
    by trials × probability.
    """
    check_rates(beta, gamma)
    check_counts(population, initial_infected, days)

    S = np.zeros(days, dtype=np.float64)
    I = np.zeros(days, dtype=np.float64)
    R = np.zeros(days, dtype=np.float64)
    S[0] = population - initial_infected
    I[0] = initial_infected

    p_rec = recovery_probability(gamma)
    for t in range(1, days):
        new_inf = S[t - 1] * infection_probability(beta, I[t - 1], population)
        new_rec = I[t - 1] * p_rec
        S[t] = S[t - 1] - new_inf
        I[t] = I[t - 1] + new_inf - new_rec
        R[t] = R[t - 1] + new_rec

    return SIRTrajectory(S=readonly(S), I=readonly(I), R=readonly(R),
                         population=population)
