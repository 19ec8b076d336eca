"""Random-walk Metropolis-Hastings over (β, γ).

Per iteration:
  1. Propose β' ~ N(β, σβ), γ' ~ N(γ, σγ)
  2. Proposal outside (0, 1)² → automatic rejection, no likelihood run
  3. log_ratio = log p(β', γ' | y) − log p(β, γ | y)
       with log p = Poisson log-likelihood + Beta log-priors
  4. Accept iff log(U) < log_ratio, U ~ Uniform(0, 1)
  5. Append the (possibly unchanged) current sample to both chains

Draw order per iteration (fixed): β' normal, γ' normal, likelihood draws
for the proposal (stochastic modes only), likelihood draws for the
current state ("stochastic" mode only), acceptance uniform.

A proposal identical to the current sample (both step sizes 0) counts as
accepted without a likelihood evaluation or a uniform draw, so the
acceptance rate is exactly 1 in that configuration.

Also provides chain diagnostics: credible intervals, summaries,
Gelman-Rubin R-hat and effective sample size.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from epinet.cancel import CancellationToken
from epinet.config import SamplerSection, SimulationConfig
from epinet.errors import ConfigurationError, ValidationError
from epinet.likelihood import PoissonLikelihood
from epinet.perf import PerfMonitor
from epinet.priors import PriorModel
from epinet.rng import get_chain_rng
from epinet.types import ParameterSample, readonly

logger = logging.getLogger(__name__)

# Acceptance rates outside this band usually mean badly tuned step sizes
ACCEPTANCE_BAND = (0.1, 0.6)


# ═══════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class MCMCResult:
    """Output of one chain. Chains are post burn-in and read-only."""
    beta_chain: np.ndarray
    gamma_chain: np.ndarray
    accepted: np.ndarray          # (n_iterations,) bool, burn-in included
    log_posterior: np.ndarray     # (n_iterations,) current-state log posterior
    acceptance_rate: float
    n_iterations: int             # iterations actually completed
    burn_in: int                  # entries dropped (≤ configured burn-in)
    cancelled: bool = False
    chain_id: int = 0

    def __len__(self) -> int:
        return len(self.beta_chain)

    def samples(self) -> List[ParameterSample]:
        return [ParameterSample(float(b), float(g))
                for b, g in zip(self.beta_chain, self.gamma_chain)]

    @property
    def r0_chain(self) -> np.ndarray:
        return self.beta_chain / self.gamma_chain


# ═══════════════════════════════════════════════════════════════════════
# SAMPLER
# ═══════════════════════════════════════════════════════════════════════

class MetropolisHastingsSampler:
    """Metropolis-Hastings sampler for the SIR rate parameters.

    Args:
        likelihood: PoissonLikelihood bound to the observed series.
        prior: PriorModel for β and γ.
        cfg: Sampler configuration.
        rng: Generator owned by this chain.
        token: Optional cancellation token, polled once per iteration.
        perf: Optional PerfMonitor ("likelihood" component).
        chain_id: Label used in logs and results.

    Raises:
        ConfigurationError: For a non-positive iteration budget or
            burn_in ≥ n_iter, before any iteration runs.
    """

    def __init__(
        self,
        likelihood: PoissonLikelihood,
        prior: PriorModel,
        cfg: SamplerSection,
        rng: np.random.Generator,
        token: Optional[CancellationToken] = None,
        perf: Optional[PerfMonitor] = None,
        chain_id: int = 0,
    ):
        if cfg.n_iter < 1:
            raise ConfigurationError(f"n_iter must be >= 1, got {cfg.n_iter}")
        if cfg.burn_in < 0 or cfg.burn_in >= cfg.n_iter:
            raise ConfigurationError(
                f"burn_in must be in [0, n_iter={cfg.n_iter}), got {cfg.burn_in}"
            )
        if cfg.sigma_beta < 0 or cfg.sigma_gamma < 0:
            raise ConfigurationError("step sizes must be non-negative")
        if cfg.log_every < 1:
            raise ConfigurationError(f"log_every must be >= 1, got {cfg.log_every}")
        start = ParameterSample(cfg.beta_init, cfg.gamma_init)
        if not start.in_support():
            raise ConfigurationError(f"start point {start} outside (0, 1)^2")
        if cfg.burn_in > cfg.n_iter // 2:
            warnings.warn(
                f"burn_in ({cfg.burn_in}) discards more than half of "
                f"n_iter ({cfg.n_iter})",
                UserWarning,
                stacklevel=2,
            )

        self.likelihood = likelihood
        self.prior = prior
        self.cfg = cfg
        self.rng = rng
        self.token = token
        self.perf = perf if perf is not None else PerfMonitor(enabled=False)
        self.chain_id = chain_id
        self.start = start

    @classmethod
    def from_config(
        cls,
        observed: Sequence[int],
        config: SimulationConfig,
        rng: np.random.Generator,
        token: Optional[CancellationToken] = None,
        perf: Optional[PerfMonitor] = None,
        chain_id: int = 0,
    ) -> 'MetropolisHastingsSampler':
        """Wire likelihood and priors from a full SimulationConfig."""
        sim = config.simulation
        sm = config.sampler
        likelihood = PoissonLikelihood(
            observed,
            population=sim.population,
            initial_infected=sim.initial_infected,
            days=sim.days,
            mode=sm.likelihood_mode,
            n_replicates=sm.n_replicates,
            rate_floor=sm.rate_floor,
        )
        return cls(likelihood, PriorModel.from_config(config.prior), sm, rng,
                   token=token, perf=perf, chain_id=chain_id)

    def log_posterior(self, sample: ParameterSample) -> float:
        """Unnormalised log posterior (likelihood draws come from self.rng)."""
        with self.perf.track("likelihood"):
            ll = self.likelihood(sample.beta, sample.gamma, self.rng)
        return ll + self.prior.log_prior(sample.beta, sample.gamma)

    def run(self) -> MCMCResult:
        """Run the chain for cfg.n_iter iterations (or until cancelled)."""
        cfg = self.cfg
        rng = self.rng
        n_iter = cfg.n_iter

        betas = np.empty(n_iter, dtype=np.float64)
        gammas = np.empty(n_iter, dtype=np.float64)
        accepted = np.zeros(n_iter, dtype=bool)
        trace = np.full(n_iter, np.nan, dtype=np.float64)

        current = self.start
        current_lp: Optional[float] = None
        if self.likelihood.reuses_current:
            current_lp = self.log_posterior(current)

        logger.info(
            "Chain %d: %d iterations, burn-in %d, start %s, mode '%s'",
            self.chain_id, n_iter, cfg.burn_in, current, self.likelihood.mode,
        )

        n_accepted = 0
        completed = 0
        cancelled = False
        for it in range(n_iter):
            if self.token is not None and self.token.poll():
                cancelled = True
                logger.warning("Chain %d cancelled after %d of %d iterations",
                               self.chain_id, completed, n_iter)
                break

            proposal = ParameterSample(
                float(rng.normal(current.beta, cfg.sigma_beta)),
                float(rng.normal(current.gamma, cfg.sigma_gamma)),
            )

            if not proposal.in_support():
                accept = False
            elif proposal == current:
                accept = True
                proposal_lp = current_lp
            else:
                proposal_lp = self.log_posterior(proposal)
                if not self.likelihood.reuses_current:
                    current_lp = self.log_posterior(current)
                log_ratio = proposal_lp - current_lp
                with np.errstate(divide='ignore'):
                    accept = bool(np.log(rng.random()) < log_ratio)

            if accept:
                current = proposal
                current_lp = proposal_lp
                n_accepted += 1

            betas[it] = current.beta
            gammas[it] = current.gamma
            accepted[it] = accept
            if current_lp is not None:
                trace[it] = current_lp
            completed += 1

            if completed % cfg.log_every == 0:
                logger.info("Chain %d: iteration %d/%d, acceptance %.3f",
                            self.chain_id, completed, n_iter,
                            n_accepted / completed)

        acceptance_rate = n_accepted / completed if completed > 0 else 0.0
        burn = min(cfg.burn_in, completed)

        logger.info("Chain %d finished: %d iterations, acceptance %.3f",
                    self.chain_id, completed, acceptance_rate)
        steps_positive = cfg.sigma_beta > 0 or cfg.sigma_gamma > 0
        lo, hi = ACCEPTANCE_BAND
        if (steps_positive and completed >= 100
                and not (lo <= acceptance_rate <= hi)):
            warnings.warn(
                f"chain {self.chain_id} acceptance rate {acceptance_rate:.3f} "
                f"outside [{lo}, {hi}]; consider retuning step sizes",
                UserWarning,
                stacklevel=2,
            )

        return MCMCResult(
            beta_chain=readonly(betas[burn:completed]),
            gamma_chain=readonly(gammas[burn:completed]),
            accepted=readonly(accepted[:completed]),
            log_posterior=readonly(trace[:completed]),
            acceptance_rate=acceptance_rate,
            n_iterations=completed,
            burn_in=burn,
            cancelled=cancelled,
            chain_id=self.chain_id,
        )


def run_chains(
    observed: Sequence[int],
    config: SimulationConfig,
    rngs: Dict[str, np.random.Generator],
    token: Optional[CancellationToken] = None,
    perf: Optional[PerfMonitor] = None,
) -> List[MCMCResult]:
    """Run config.sampler.n_chains chains, each on its own 'chain_k' stream.

    Chains run one after another; each owns its generator, so results do
    not depend on how many other chains exist. A cancelled token stops the
    current chain and skips the rest.
    """
    results = []
    for k in range(config.sampler.n_chains):
        sampler = MetropolisHastingsSampler.from_config(
            observed, config, get_chain_rng(rngs, k),
            token=token, perf=perf, chain_id=k,
        )
        result = sampler.run()
        results.append(result)
        if result.cancelled:
            break
    return results


def pool_chains(results: Sequence[MCMCResult]) -> Tuple[np.ndarray, np.ndarray]:
    """Concatenate post burn-in samples of several chains (index-aligned)."""
    if not results:
        raise ValidationError("no chains to pool")
    beta = np.concatenate([r.beta_chain for r in results])
    gamma = np.concatenate([r.gamma_chain for r in results])
    return readonly(beta), readonly(gamma)


# ═══════════════════════════════════════════════════════════════════════
# DIAGNOSTICS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ChainSummary:
    mean: float
    median: float
    sd: float
    lower: float
    upper: float
    mass: float


def credible_interval(chain: np.ndarray, mass: float = 0.95) -> Tuple[float, float]:
    """Equal-tailed credible interval holding `mass` of the samples."""
    chain = np.asarray(chain, dtype=np.float64)
    if chain.size == 0:
        raise ValidationError("credible interval of an empty chain")
    if not (0.0 < mass < 1.0):
        raise ValidationError(f"mass must be in (0, 1), got {mass}")
    tail = (1.0 - mass) / 2.0
    lo, hi = np.quantile(chain, [tail, 1.0 - tail])
    return float(lo), float(hi)


def summarize_chain(chain: np.ndarray, mass: float = 0.95) -> ChainSummary:
    chain = np.asarray(chain, dtype=np.float64)
    lo, hi = credible_interval(chain, mass)
    return ChainSummary(
        mean=float(np.mean(chain)),
        median=float(np.median(chain)),
        sd=float(np.std(chain, ddof=1)) if chain.size > 1 else 0.0,
        lower=lo,
        upper=hi,
        mass=mass,
    )


def gelman_rubin(chains: Sequence[np.ndarray]) -> float:
    """Potential scale reduction factor R-hat for equal-length chains.

    Values near 1 indicate the chains sample the same distribution.

    Raises:
        ValidationError: Fewer than 2 chains, unequal lengths, or fewer than
            2 samples per chain.
    """
    if len(chains) < 2:
        raise ValidationError("R-hat needs at least 2 chains")
    lengths = {len(c) for c in chains}
    if len(lengths) != 1:
        raise ValidationError(f"chains have unequal lengths {sorted(lengths)}")
    n = lengths.pop()
    if n < 2:
        raise ValidationError("R-hat needs at least 2 samples per chain")

    x = np.vstack([np.asarray(c, dtype=np.float64) for c in chains])
    W = float(np.mean(np.var(x, axis=1, ddof=1)))
    B = n * float(np.var(np.mean(x, axis=1), ddof=1))
    if W == 0.0:
        return 1.0 if B == 0.0 else float('inf')
    var_hat = (n - 1) / n * W + B / n
    return float(np.sqrt(var_hat / W))


def effective_sample_size(chain: np.ndarray) -> float:
    """Autocorrelation-based ESS with Geyer's initial positive sequence."""
    x = np.asarray(chain, dtype=np.float64)
    n = x.size
    if n < 2:
        return float(n)
    x = x - x.mean()
    if not np.any(x):
        return float(n)

    f = np.fft.rfft(x, 2 * n)
    acf = np.fft.irfft(f * np.conjugate(f))[:n]
    acf = acf / acf[0]

    tau = -1.0
    for k in range(0, n - 1, 2):
        pair = acf[k] + acf[k + 1]
        if pair <= 0:
            break
        tau += 2.0 * pair
    return float(n / max(tau, 1e-12))
