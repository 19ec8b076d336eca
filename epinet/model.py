"""Top-level runs: inference branch and network branch.

Inference:  observed series → run_chains (one stream per chain) →
            pooled posterior → credible intervals, R-hat → PolicyReport
Network:    'network' stream → contact graph → 'agents' stream →
            run_network_epidemic

The two branches share only the seed hierarchy; running one never shifts
the other's random draws.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from epinet.agents import NetworkEpidemicResult, run_network_epidemic
from epinet.cancel import CancellationToken
from epinet.config import SimulationConfig, default_config
from epinet.network import generate_contact_graph
from epinet.perf import PerfMonitor
from epinet.policy import PolicyReport, analyze_policy
from epinet.rng import create_rng_hierarchy
from epinet.sampler import (
    ChainSummary,
    MCMCResult,
    gelman_rubin,
    pool_chains,
    run_chains,
    summarize_chain,
)
from epinet.sir import simulate_sir
from epinet.snapshots import SnapshotRecorder
from epinet.types import readonly

logger = logging.getLogger(__name__)


@dataclass
class InferenceResult:
    """Everything the reporting layer needs from an inference run."""
    chains: List[MCMCResult]
    beta_chain: np.ndarray            # pooled, post burn-in
    gamma_chain: np.ndarray
    acceptance_rate: float            # over all completed iterations
    beta_summary: ChainSummary
    gamma_summary: ChainSummary
    policy: PolicyReport
    r_hat: Dict[str, float] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def credible_intervals(self) -> Dict[str, Tuple[float, float]]:
        return {
            'beta': (self.beta_summary.lower, self.beta_summary.upper),
            'gamma': (self.gamma_summary.lower, self.gamma_summary.upper),
        }


def generate_synthetic_observations(
    beta: float,
    gamma: float,
    config: Optional[SimulationConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Infected series from one stochastic SIR run (a synthetic ObservedSeries).

    Uses the 'synthetic' stream of the config's seed hierarchy unless a
    generator is given.
    """
    if config is None:
        config = default_config()
    if rng is None:
        rng = create_rng_hierarchy(config.simulation.seed)['synthetic']
    sim = config.simulation
    traj = simulate_sir(beta, gamma, sim.population, sim.initial_infected,
                        sim.days, rng)
    return readonly(traj.I)


def run_inference(
    observed: Sequence[int],
    config: Optional[SimulationConfig] = None,
    token: Optional[CancellationToken] = None,
    perf: Optional[PerfMonitor] = None,
) -> InferenceResult:
    """Fit (β, γ) to an observed series and derive policy recommendations.

    Raises:
        ConfigurationError: Bad observed series or sampler budget.
        ValidationError: Cancellation left no post burn-in samples.
    """
    if config is None:
        config = default_config()
    if perf is None:
        perf = PerfMonitor(enabled=False)
    perf.start()

    rngs = create_rng_hierarchy(config.simulation.seed,
                                n_chains=config.sampler.n_chains)
    chains = run_chains(observed, config, rngs, token=token, perf=perf)
    beta, gamma = pool_chains(chains)

    completed = sum(c.n_iterations for c in chains)
    n_accepted = sum(int(c.accepted.sum()) for c in chains)
    acceptance_rate = n_accepted / completed if completed > 0 else 0.0

    mass = config.sampler.credible_mass
    r_hat = {}
    if len(chains) > 1 and len({len(c) for c in chains}) == 1 and len(chains[0]) > 1:
        r_hat = {
            'beta': gelman_rubin([c.beta_chain for c in chains]),
            'gamma': gelman_rubin([c.gamma_chain for c in chains]),
        }

    result = InferenceResult(
        chains=chains,
        beta_chain=beta,
        gamma_chain=gamma,
        acceptance_rate=acceptance_rate,
        beta_summary=summarize_chain(beta, mass),
        gamma_summary=summarize_chain(gamma, mass),
        policy=analyze_policy(beta, gamma, config.policy, mass),
        r_hat=r_hat,
        cancelled=any(c.cancelled for c in chains),
    )
    perf.stop()
    logger.info(
        "Inference: beta %.4f [%.4f, %.4f], gamma %.4f [%.4f, %.4f], "
        "lockdown '%s', vaccination '%s'",
        result.beta_summary.mean, result.beta_summary.lower, result.beta_summary.upper,
        result.gamma_summary.mean, result.gamma_summary.lower, result.gamma_summary.upper,
        result.policy.lockdown, result.policy.vaccination,
    )
    return result


def run_network_simulation(
    config: Optional[SimulationConfig] = None,
    token: Optional[CancellationToken] = None,
    perf: Optional[PerfMonitor] = None,
) -> NetworkEpidemicResult:
    """Build the contact graph and run the agent model on it."""
    if config is None:
        config = default_config()
    if perf is None:
        perf = PerfMonitor(enabled=False)
    perf.start()

    rngs = create_rng_hierarchy(config.simulation.seed,
                                n_chains=config.sampler.n_chains)
    net = config.network
    with perf.track("network"):
        graph = generate_contact_graph(
            net.n_nodes, rngs['network'],
            attachment_edges=net.attachment_edges,
            layout_iterations=net.layout_iterations,
        )

    recorder = SnapshotRecorder(enabled=True,
                                interval_days=config.agents.snapshot_interval)
    with perf.track("agents"):
        result = run_network_epidemic(graph, config.agents, rngs['agents'],
                                      token=token, recorder=recorder)
    perf.stop()

    final = result.daily_counts[-1]
    logger.info(
        "Network run: %d days, final H=%d I=%d S=%d R=%d F=%d",
        result.days_completed, *(int(c) for c in final),
    )
    return result
