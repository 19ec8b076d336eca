"""Network agent dynamics — five-state model on a contact graph.

Implements:
  - States H (Shielded) → I (Infiltrated) → S (Spreader) → R (Resistant)
    or F (Fallen); R → H through waning immunity; F absorbing
  - Exposure-driven H → I: needs ≥1 Spreader neighbour AND a Bernoulli
    draw at infection_prob (never read from the transition matrix)
  - Two timed update policies:
      * "probability": per-day Bernoulli draw for each rule, fixed order
        (progression I→S, recovery S→R, fatality S→F, waning R→H)
      * "timer": next state sampled from the TransitionMatrix row, fired
        after a countdown drawn from the state's StateDuration
  - Two day semantics:
      * snapshot (default): every decision reads the day-start state and
        all changes are committed together — at most one transition per
        agent per day
      * cascading (allow_same_day_cascades=True): agents processed in id
        order, mutating the live table; a change earlier in the pass is
        visible to later checks (same agent or later neighbours)

Agents live in one structured array indexed by id (AGENT_DTYPE) and
neighbours come from the CSR NeighborIndex built once per run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from epinet.cancel import CancellationToken
from epinet.config import AgentSection
from epinet.errors import ConfigurationError, GraphConsistencyError
from epinet.network import NeighborIndex, build_neighbor_index
from epinet.snapshots import SnapshotRecorder
from epinet.types import (
    MAX_COUNTDOWN_DAYS,
    N_STATES,
    UNSET,
    AgentSnapshot,
    AgentState,
    ContactGraph,
    allocate_agents,
    readonly,
)

logger = logging.getLogger(__name__)

H = AgentState.SHIELDED
I = AgentState.INFILTRATED
S = AgentState.SPREADER
R = AgentState.RESISTANT
F = AgentState.FALLEN


# ═══════════════════════════════════════════════════════════════════════
# TRANSITION MATRIX
# ═══════════════════════════════════════════════════════════════════════

class TransitionMatrix:
    """5×5 table of timed transition probabilities.

    Row = current state, column = next state. Each row sums to ≤ 1; the
    remainder is "stay". A zero row means the state has no timed exit
    (Shielded leaves only through exposure, Fallen never leaves).
    """

    def __init__(self, probs: np.ndarray):
        probs = np.asarray(probs, dtype=np.float64)
        if probs.shape != (N_STATES, N_STATES):
            raise ConfigurationError(
                f"transition matrix must be {N_STATES}x{N_STATES}, got {probs.shape}"
            )
        if np.any(probs < 0):
            raise ConfigurationError("transition probabilities must be non-negative")
        row_sums = probs.sum(axis=1)
        if np.any(row_sums > 1.0 + 1e-12):
            bad = int(np.argmax(row_sums))
            raise ConfigurationError(
                f"row {AgentState(bad).name} sums to {row_sums[bad]:.6f} > 1"
            )
        self.probs = readonly(probs)
        self.row_mass = readonly(row_sums)
        self._cum = np.cumsum(probs, axis=1)

    @classmethod
    def from_config(cls, cfg: AgentSection) -> 'TransitionMatrix':
        """Build the matrix from per-day probabilities.

        Recovery is checked before fatality, so the fatality entry is the
        probability of dying given no recovery that day.
        """
        p = np.zeros((N_STATES, N_STATES))
        p[I, S] = cfg.progression_prob
        p[S, R] = cfg.recovery_prob
        p[S, F] = (1.0 - cfg.recovery_prob) * cfg.fatality_prob
        p[R, H] = cfg.resistance_loss_prob
        return cls(p)

    def has_timed_exit(self, state: int) -> bool:
        return bool(self.row_mass[state] > 0.0)

    def sample_next(self, states: np.ndarray, u: np.ndarray) -> np.ndarray:
        """Map uniforms to next states row-wise; UNSET where u lands in "stay".

        Args:
            states: Current states (any shape).
            u: Uniform draws, same shape as states.
        """
        states = np.asarray(states, dtype=np.intp)
        cum = self._cum[states]                         # (..., N_STATES)
        nxt = (u[..., None] >= cum).sum(axis=-1)        # first column with u < cum
        return np.where(nxt < N_STATES, nxt, UNSET).astype(np.int8)


# ═══════════════════════════════════════════════════════════════════════
# STATE DURATIONS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StateDuration:
    """Dwell-time range (days, inclusive) before a timed transition fires."""
    min_days: int
    max_days: int

    def __post_init__(self):
        if self.min_days < 1 or self.min_days > self.max_days:
            raise ConfigurationError(
                f"duration must satisfy 1 <= min <= max, got "
                f"[{self.min_days}, {self.max_days}]"
            )
        if self.max_days > MAX_COUNTDOWN_DAYS:
            raise ConfigurationError(
                f"duration max {self.max_days} exceeds {MAX_COUNTDOWN_DAYS} days"
            )


def durations_from_config(cfg: AgentSection) -> Dict[AgentState, StateDuration]:
    """Map the config's lower-case state names to StateDuration objects."""
    return {
        AgentState[name.upper()]: StateDuration(int(lo), int(hi))
        for name, (lo, hi) in cfg.durations.items()
    }


# ═══════════════════════════════════════════════════════════════════════
# AGENT STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════

class AgentStateMachine:
    """Advances every agent by one day.

    Args:
        agents: AGENT_DTYPE table, one row per graph node (row i == id i).
        neighbors: NeighborIndex for the contact graph.
        cfg: Agent configuration section.
        rng: Generator owned by this component.

    Raises:
        GraphConsistencyError: If the agent table and graph disagree in size
            or ids are not 0..n-1.
    """

    def __init__(
        self,
        agents: np.ndarray,
        neighbors: NeighborIndex,
        cfg: AgentSection,
        rng: np.random.Generator,
    ):
        if len(agents) != neighbors.n_nodes:
            raise GraphConsistencyError(
                f"{len(agents)} agents but graph has {neighbors.n_nodes} nodes"
            )
        if not np.array_equal(agents['id'], np.arange(len(agents))):
            raise GraphConsistencyError("agent ids must equal row indices 0..n-1")

        self.agents = agents
        self.neighbors = neighbors
        self.cfg = cfg
        self.rng = rng
        self.matrix = TransitionMatrix.from_config(cfg)
        self.durations = durations_from_config(cfg)
        self.day = 0

        self._dur_lo = np.ones(N_STATES, dtype=np.int64)
        self._dur_hi = np.ones(N_STATES, dtype=np.int64)
        for state, dur in self.durations.items():
            self._dur_lo[state] = dur.min_days
            self._dur_hi[state] = dur.max_days

    @property
    def n_agents(self) -> int:
        return len(self.agents)

    def seed_spreaders(self, n_spreaders: int) -> np.ndarray:
        """Put n_spreaders distinct random agents into SPREADER.

        Returns:
            The chosen agent ids (sorted).
        """
        if not (0 <= n_spreaders <= self.n_agents):
            raise ConfigurationError(
                f"cannot seed {n_spreaders} spreaders among {self.n_agents} agents"
            )
        chosen = np.sort(self.rng.choice(self.n_agents, size=n_spreaders,
                                         replace=False))
        self.agents['state'][chosen] = S
        self.agents['countdown'][chosen] = UNSET
        self.agents['pending'][chosen] = UNSET
        return chosen

    def counts(self) -> np.ndarray:
        return np.bincount(self.agents['state'], minlength=N_STATES)

    def step(self) -> np.ndarray:
        """Advance one day.

        Returns:
            (n_agents,) int array: number of state changes per agent today.
        """
        cascading = self.cfg.allow_same_day_cascades
        if self.cfg.update_policy == "timer":
            if cascading:
                changes = self._timer_step_cascading()
            else:
                changes = self._timer_step_snapshot()
        else:
            if cascading:
                changes = self._probability_step_cascading()
            else:
                changes = self._probability_step_snapshot()
        self.day += 1
        return changes

    # ── Probability policy ──────────────────────────────────────────

    def _probability_step_snapshot(self) -> np.ndarray:
        cfg = self.cfg
        prev = self.agents['state'].copy()
        nxt = prev.copy()
        exposed = self.neighbors.count_in_state(prev, S) > 0

        # One uniform per rule per agent, drawn whether or not it is used
        u = self.rng.random((5, self.n_agents))

        infect = (prev == H) & exposed & (u[0] < cfg.infection_prob)
        progress = (prev == I) & (u[1] < cfg.progression_prob)
        recover = (prev == S) & (u[2] < cfg.recovery_prob)
        die = (prev == S) & ~recover & (u[3] < cfg.fatality_prob)
        wane = (prev == R) & (u[4] < cfg.resistance_loss_prob)

        nxt[infect] = I
        nxt[progress] = S
        nxt[recover] = R
        nxt[die] = F
        nxt[wane] = H

        self.agents['state'] = nxt
        return (nxt != prev).astype(np.int64)

    def _probability_step_cascading(self) -> np.ndarray:
        cfg = self.cfg
        rng = self.rng
        states = self.agents['state']
        changes = np.zeros(self.n_agents, dtype=np.int64)

        for i in range(self.n_agents):
            if states[i] == H:
                nbrs = self.neighbors.neighbors(i)
                if np.any(states[nbrs] == S) and rng.random() < cfg.infection_prob:
                    states[i] = I
                    changes[i] += 1
            if states[i] == I and rng.random() < cfg.progression_prob:
                states[i] = S
                changes[i] += 1
            if states[i] == S and rng.random() < cfg.recovery_prob:
                states[i] = R
                changes[i] += 1
            if states[i] == S and rng.random() < cfg.fatality_prob:
                states[i] = F
                changes[i] += 1
            if states[i] == R and rng.random() < cfg.resistance_loss_prob:
                states[i] = H
                changes[i] += 1

        return changes

    # ── Timer policy ────────────────────────────────────────────────

    def _draw_countdowns(self, states: np.ndarray) -> np.ndarray:
        return self.rng.integers(self._dur_lo[states], self._dur_hi[states] + 1)

    def _timer_step_snapshot(self) -> np.ndarray:
        cfg = self.cfg
        a = self.agents
        prev = a['state'].copy()
        countdown = a['countdown'].copy()
        pending = a['pending'].copy()
        nxt = prev.copy()

        exposed = self.neighbors.count_in_state(prev, S) > 0
        u_expose = self.rng.random(self.n_agents)
        u_schedule = self.rng.random(self.n_agents)

        # Exposure
        infect = (prev == H) & exposed & (u_expose < cfg.infection_prob)
        nxt[infect] = I

        # Running countdowns
        running = countdown != UNSET
        countdown[running] -= 1
        fire = running & (countdown <= 0)
        nxt[fire] = pending[fire]
        countdown[fire] = UNSET
        pending[fire] = UNSET

        # Schedule agents idle at day start in a state with a timed exit
        idle = ~running & (self.matrix.row_mass[prev] > 0.0)
        idx = np.where(idle)[0]
        if len(idx) > 0:
            sampled = self.matrix.sample_next(prev[idx], u_schedule[idx])
            hit = sampled != UNSET
            sched_idx = idx[hit]
            if len(sched_idx) > 0:
                pending[sched_idx] = sampled[hit]
                countdown[sched_idx] = self._draw_countdowns(prev[sched_idx])

        a['state'] = nxt
        a['countdown'] = countdown
        a['pending'] = pending
        return (nxt != prev).astype(np.int64)

    def _timer_step_cascading(self) -> np.ndarray:
        cfg = self.cfg
        rng = self.rng
        a = self.agents
        states = a['state']
        countdown = a['countdown']
        pending = a['pending']
        changes = np.zeros(self.n_agents, dtype=np.int64)

        for i in range(self.n_agents):
            if states[i] == H:
                nbrs = self.neighbors.neighbors(i)
                if np.any(states[nbrs] == S) and rng.random() < cfg.infection_prob:
                    states[i] = I
                    changes[i] += 1
            if countdown[i] != UNSET:
                countdown[i] -= 1
                if countdown[i] <= 0:
                    states[i] = pending[i]
                    countdown[i] = UNSET
                    pending[i] = UNSET
                    changes[i] += 1
            if countdown[i] == UNSET and self.matrix.has_timed_exit(states[i]):
                st = np.array([states[i]])
                nxt = self.matrix.sample_next(st, np.array([rng.random()]))[0]
                if nxt != UNSET:
                    pending[i] = nxt
                    countdown[i] = self._draw_countdowns(st)[0]

        return changes


# ═══════════════════════════════════════════════════════════════════════
# NETWORK EPIDEMIC RUN
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class NetworkEpidemicResult:
    """Results from a network agent simulation. All arrays are read-only."""
    graph: ContactGraph
    snapshots: List[AgentSnapshot]
    daily_counts: np.ndarray          # (days_completed + 1, N_STATES), row 0 = initial
    transitions: np.ndarray           # (days_completed, n_agents) changes per agent per day
    initial_spreaders: np.ndarray
    days_completed: int = 0
    cancelled: bool = False

    @property
    def final_states(self) -> np.ndarray:
        return self.snapshots[-1].states if self.snapshots else np.empty(0, np.int8)

    def state_series(self, state: AgentState) -> np.ndarray:
        """Daily count of agents in one state."""
        return self.daily_counts[:, int(state)]


def run_network_epidemic(
    graph: ContactGraph,
    cfg: AgentSection,
    rng: np.random.Generator,
    token: Optional[CancellationToken] = None,
    recorder: Optional[SnapshotRecorder] = None,
) -> NetworkEpidemicResult:
    """Seed spreaders on a contact graph and advance the agents cfg.n_days days.

    The token is polled once per day before the day runs; a cancelled run
    returns the days completed so far.

    Args:
        graph: Contact graph (one agent per node).
        cfg: Agent configuration.
        rng: Generator for the agent stream.
        token: Optional cancellation token.
        recorder: Optional SnapshotRecorder; defaults to one capturing
            every cfg.snapshot_interval days.

    Returns:
        NetworkEpidemicResult.
    """
    neighbors = build_neighbor_index(graph)
    agents = allocate_agents(graph.n_nodes)
    agents['x'] = graph.positions[:, 0]
    agents['y'] = graph.positions[:, 1]

    machine = AgentStateMachine(agents, neighbors, cfg, rng)
    seeded = machine.seed_spreaders(cfg.initial_spreaders)

    if recorder is None:
        recorder = SnapshotRecorder(enabled=True, interval_days=cfg.snapshot_interval)
    recorder.capture(0, agents)

    daily_counts = [machine.counts()]
    transitions = []
    cancelled = False

    for day in range(1, cfg.n_days + 1):
        if token is not None and token.poll():
            cancelled = True
            logger.warning("Network run cancelled after %d of %d days",
                           day - 1, cfg.n_days)
            break
        transitions.append(machine.step())
        daily_counts.append(machine.counts())
        recorder.capture(day, agents)

    days_completed = len(transitions)
    # Final day is always available to consumers
    if recorder.get_snapshot(days_completed) is None:
        recorder.capture(days_completed, agents, force=True)

    if transitions:
        trans_arr = np.vstack(transitions)
    else:
        trans_arr = np.zeros((0, graph.n_nodes), dtype=np.int64)

    return NetworkEpidemicResult(
        graph=graph,
        snapshots=recorder.snapshots_in_order(),
        daily_counts=readonly(np.vstack(daily_counts)),
        transitions=readonly(trans_arr),
        initial_spreaders=readonly(seeded),
        days_completed=days_completed,
        cancelled=cancelled,
    )
