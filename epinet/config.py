"""Configuration system for EpiNet.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → dict overrides (sweeps, CLI flags)

Every field carries an explicit default so `default_config()` is a
complete, runnable configuration. Policy thresholds are named fields
rather than inline constants so they can be overridden and tested.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from epinet.errors import ConfigurationError
from epinet.types import MAX_COUNTDOWN_DAYS


VALID_UPDATE_POLICIES = {"probability", "timer"}
VALID_LIKELIHOOD_MODES = {"expected", "pseudo_marginal", "stochastic"}
# Lower-case AgentState names that may carry a dwell-time range
DURATION_STATES = ("shielded", "infiltrated", "spreader", "resistant", "fallen")


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Top-level run control and compartmental model setup."""
    seed: int = 42
    population: int = 1000        # N for the SIR forward simulator
    initial_infected: int = 10    # I0
    days: int = 30                # simulation horizon == ObservedSeries length


@dataclass
class NetworkSection:
    """Preferential-attachment contact graph."""
    n_nodes: int = 100
    attachment_edges: int = 2     # edges added per new node
    layout_iterations: int = 50   # spring layout iterations (positions only)


def _default_durations() -> Dict[str, List[int]]:
    return {
        'infiltrated': [2, 5],
        'spreader': [3, 10],
        'resistant': [20, 60],
    }


@dataclass
class AgentSection:
    """Network agent state machine.

    update_policy:
      "probability" — per-day Bernoulli draws for every timed rule
      "timer"       — transition sampled from the matrix row, fired after a
                      countdown drawn from the state's [min, max] dwell days
    allow_same_day_cascades:
      False — decisions read a day-start snapshot, committed at day end
      True  — in-place sequential mutation (compatibility mode)
    """
    infection_prob: float = 0.3
    progression_prob: float = 0.2
    recovery_prob: float = 0.1
    fatality_prob: float = 0.02
    resistance_loss_prob: float = 0.01
    initial_spreaders: int = 3
    n_days: int = 60
    update_policy: str = "probability"
    allow_same_day_cascades: bool = False
    durations: Dict[str, List[int]] = field(default_factory=_default_durations)
    snapshot_interval: int = 1


@dataclass
class PriorSection:
    """Beta prior shape parameters for β and γ."""
    beta_a: float = 2.0
    beta_b: float = 5.0
    gamma_a: float = 3.0
    gamma_b: float = 7.0


@dataclass
class SamplerSection:
    """Random-walk Metropolis-Hastings settings.

    likelihood_mode:
      "expected"        — deterministic expected-value trajectory (default)
      "pseudo_marginal" — n_replicates stochastic runs, cached current estimate
      "stochastic"      — one stochastic run per evaluation, current state
                          re-simulated every iteration (reference behaviour)
    """
    n_iter: int = 10000
    burn_in: int = 1000
    beta_init: float = 0.2
    gamma_init: float = 0.15
    sigma_beta: float = 0.02
    sigma_gamma: float = 0.02
    likelihood_mode: str = "expected"
    n_replicates: int = 10
    rate_floor: float = 1e-10
    n_chains: int = 1
    credible_mass: float = 0.95
    log_every: int = 1000


@dataclass
class PolicySection:
    """Thresholds mapping posterior probabilities to recommendations."""
    beta_threshold: float = 0.3
    r0_threshold: float = 1.0
    lockdown_strong: float = 0.8
    lockdown_recommended: float = 0.5
    vaccination_urgent: float = 0.7
    vaccination_recommended: float = 0.3


@dataclass
class SimulationConfig:
    """Complete configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    network: NetworkSection = field(default_factory=NetworkSection)
    agents: AgentSection = field(default_factory=AgentSection)
    prior: PriorSection = field(default_factory=PriorSection)
    sampler: SamplerSection = field(default_factory=SamplerSection)
    policy: PolicySection = field(default_factory=PolicySection)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'network': NetworkSection,
    'agents': AgentSection,
    'prior': PriorSection,
    'sampler': SamplerSection,
    'policy': PolicySection,
}


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    # Partial duration tables keep the defaults for unnamed states
    durations = _default_durations()
    durations.update(sections['agents'].durations or {})
    sections['agents'].durations = {k: list(v) for k, v in durations.items()}

    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict[str, Any]:
    """Plain-dict view of a config (YAML-serialisable)."""
    return dataclasses.asdict(config)


def _check_prob(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise ConfigurationError(f"{name} must be in [0, 1], got {value}")


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ConfigurationError on failure.

    Checks:
      - Counts are positive and consistent (I0 ≤ N, spreaders ≤ nodes)
      - Probabilities lie in [0, 1]
      - Policy / mode names are known
      - Iteration budget and burn-in are usable
      - Policy thresholds are ordered
    """
    sim = config.simulation
    if sim.seed < 0:
        raise ConfigurationError("simulation.seed must be non-negative")
    if sim.population < 1:
        raise ConfigurationError(
            f"simulation.population must be >= 1, got {sim.population}"
        )
    if not (0 <= sim.initial_infected <= sim.population):
        raise ConfigurationError(
            f"simulation.initial_infected must be in [0, {sim.population}], "
            f"got {sim.initial_infected}"
        )
    if sim.days < 1:
        raise ConfigurationError(f"simulation.days must be >= 1, got {sim.days}")

    # Network
    net = config.network
    if net.n_nodes < 1:
        raise ConfigurationError(f"network.n_nodes must be >= 1, got {net.n_nodes}")
    if net.attachment_edges < 1:
        raise ConfigurationError(
            f"network.attachment_edges must be >= 1, got {net.attachment_edges}"
        )
    if net.layout_iterations < 0:
        raise ConfigurationError("network.layout_iterations must be non-negative")

    # Agents
    ag = config.agents
    for name in ('infection_prob', 'progression_prob', 'recovery_prob',
                 'fatality_prob', 'resistance_loss_prob'):
        _check_prob(f"agents.{name}", getattr(ag, name))
    if not (0 <= ag.initial_spreaders <= net.n_nodes):
        raise ConfigurationError(
            f"agents.initial_spreaders must be in [0, {net.n_nodes}], "
            f"got {ag.initial_spreaders}"
        )
    if ag.n_days < 1:
        raise ConfigurationError(f"agents.n_days must be >= 1, got {ag.n_days}")
    if ag.update_policy not in VALID_UPDATE_POLICIES:
        raise ConfigurationError(
            f"agents.update_policy must be one of {VALID_UPDATE_POLICIES}, "
            f"got '{ag.update_policy}'"
        )
    if ag.snapshot_interval < 1:
        raise ConfigurationError("agents.snapshot_interval must be >= 1")
    for state_name, bounds in ag.durations.items():
        if state_name not in DURATION_STATES:
            raise ConfigurationError(
                f"agents.durations key must be one of {DURATION_STATES}, "
                f"got '{state_name}'"
            )
        if len(bounds) != 2:
            raise ConfigurationError(
                f"agents.durations.{state_name} must be [min, max], got {bounds}"
            )
        lo, hi = bounds
        if lo < 1 or lo > hi:
            raise ConfigurationError(
                f"agents.durations.{state_name} must satisfy 1 <= min <= max, "
                f"got {bounds}"
            )
        if hi > MAX_COUNTDOWN_DAYS:
            raise ConfigurationError(
                f"agents.durations.{state_name} max must be <= "
                f"{MAX_COUNTDOWN_DAYS} days, got {hi}"
            )

    # Priors
    pr = config.prior
    for name in ('beta_a', 'beta_b', 'gamma_a', 'gamma_b'):
        if getattr(pr, name) <= 0:
            raise ConfigurationError(f"prior.{name} must be positive")

    # Sampler
    sm = config.sampler
    if sm.n_iter < 1:
        raise ConfigurationError(f"sampler.n_iter must be >= 1, got {sm.n_iter}")
    if sm.burn_in < 0 or sm.burn_in >= sm.n_iter:
        raise ConfigurationError(
            f"sampler.burn_in must be in [0, n_iter={sm.n_iter}), got {sm.burn_in}"
        )
    if not (0.0 < sm.beta_init < 1.0 and 0.0 < sm.gamma_init < 1.0):
        raise ConfigurationError(
            f"sampler start point ({sm.beta_init}, {sm.gamma_init}) must lie in (0, 1)"
        )
    if sm.sigma_beta < 0 or sm.sigma_gamma < 0:
        raise ConfigurationError("sampler step sizes must be non-negative")
    if sm.likelihood_mode not in VALID_LIKELIHOOD_MODES:
        raise ConfigurationError(
            f"sampler.likelihood_mode must be one of {VALID_LIKELIHOOD_MODES}, "
            f"got '{sm.likelihood_mode}'"
        )
    if sm.n_replicates < 1:
        raise ConfigurationError("sampler.n_replicates must be >= 1")
    if sm.rate_floor <= 0:
        raise ConfigurationError("sampler.rate_floor must be positive")
    if sm.n_chains < 1:
        raise ConfigurationError("sampler.n_chains must be >= 1")
    if not (0.0 < sm.credible_mass < 1.0):
        raise ConfigurationError("sampler.credible_mass must be in (0, 1)")
    if sm.log_every < 1:
        raise ConfigurationError("sampler.log_every must be >= 1")

    # Policy
    po = config.policy
    for name in ('beta_threshold', 'lockdown_strong', 'lockdown_recommended',
                 'vaccination_urgent', 'vaccination_recommended'):
        _check_prob(f"policy.{name}", getattr(po, name))
    if po.r0_threshold <= 0:
        raise ConfigurationError("policy.r0_threshold must be positive")
    if po.lockdown_strong < po.lockdown_recommended:
        raise ConfigurationError(
            "policy.lockdown_strong must be >= policy.lockdown_recommended"
        )
    if po.vaccination_urgent < po.vaccination_recommended:
        raise ConfigurationError(
            "policy.vaccination_urgent must be >= policy.vaccination_recommended"
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        overrides: Optional dict of overrides (sweeps, command line).

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ConfigurationError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
