"""Beta priors for the transmission and recovery rates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np
from scipy import stats

from epinet.config import PriorSection
from epinet.errors import ConfigurationError


@dataclass(frozen=True)
class BetaPrior:
    """Beta(a, b) on (0, 1)."""
    a: float
    b: float

    def __post_init__(self):
        if self.a <= 0 or self.b <= 0:
            raise ConfigurationError(
                f"Beta prior shapes must be positive, got ({self.a}, {self.b})"
            )

    def logpdf(self, x: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        """Log-density; −inf outside the support."""
        return stats.beta.logpdf(x, self.a, self.b)

    def sample(self, rng: np.random.Generator, size=None):
        return rng.beta(self.a, self.b, size=size)

    @property
    def mean(self) -> float:
        return self.a / (self.a + self.b)

    def interval(self, mass: float = 0.95):
        """Equal-tailed prior interval."""
        return stats.beta.interval(mass, self.a, self.b)


class PriorModel:
    """Independent Beta priors for β and γ."""

    def __init__(self, beta_prior: BetaPrior, gamma_prior: BetaPrior):
        self.beta_prior = beta_prior
        self.gamma_prior = gamma_prior

    @classmethod
    def from_config(cls, cfg: PriorSection) -> 'PriorModel':
        return cls(BetaPrior(cfg.beta_a, cfg.beta_b),
                   BetaPrior(cfg.gamma_a, cfg.gamma_b))

    def log_prior(self, beta: float, gamma: float) -> float:
        return float(self.beta_prior.logpdf(beta) + self.gamma_prior.logpdf(gamma))

    def sample(self, rng: np.random.Generator, size=None):
        """Draw (β, γ) from the priors, β first."""
        return self.beta_prior.sample(rng, size), self.gamma_prior.sample(rng, size)
