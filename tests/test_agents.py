"""Tests for epinet.agents — five-state network agent model.

Acceptance criteria:
  - Transition matrix rows sum to ≤ 1; zero rows never fire timed transitions
  - Shielded agents leave only through a Spreader neighbour
  - Fallen is absorbing
  - Snapshot semantics: at most one transition per agent per day
  - Cascading semantics: same-day chains (H → I → S) are reproduced
  - Identical seeds give bit-identical runs
"""

import numpy as np
import pytest

from epinet.agents import (
    AgentStateMachine,
    StateDuration,
    TransitionMatrix,
    durations_from_config,
    run_network_epidemic,
)
from epinet.cancel import CancellationToken
from epinet.config import AgentSection
from epinet.errors import ConfigurationError, GraphConsistencyError
from epinet.network import build_neighbor_index, generate_contact_graph
from epinet.types import (
    MAX_COUNTDOWN_DAYS,
    UNSET,
    AgentState,
    ContactGraph,
    allocate_agents,
)

H = AgentState.SHIELDED
I = AgentState.INFILTRATED
S = AgentState.SPREADER
R = AgentState.RESISTANT
F = AgentState.FALLEN


# ═══════════════════════════════════════════════════════════════════════
# FIXTURES / HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _path_graph(n: int) -> ContactGraph:
    edges = np.array([[i, i + 1] for i in range(n - 1)], dtype=np.int64).reshape(-1, 2)
    return ContactGraph(n_nodes=n, edges=edges, positions=np.zeros((n, 2)))


def _machine(graph: ContactGraph, cfg: AgentSection, seed: int = 0) -> AgentStateMachine:
    agents = allocate_agents(graph.n_nodes)
    return AgentStateMachine(agents, build_neighbor_index(graph), cfg,
                             np.random.default_rng(seed))


def _deterministic_cfg(**kwargs) -> AgentSection:
    """All probabilities 0 unless overridden."""
    base = dict(infection_prob=0.0, progression_prob=0.0, recovery_prob=0.0,
                fatality_prob=0.0, resistance_loss_prob=0.0, initial_spreaders=0)
    base.update(kwargs)
    return AgentSection(**base)


@pytest.fixture
def ba_graph() -> ContactGraph:
    return generate_contact_graph(80, np.random.default_rng(3), attachment_edges=2)


@pytest.fixture
def busy_cfg() -> AgentSection:
    """High rates so every rule fires often."""
    return AgentSection(infection_prob=0.9, progression_prob=0.9, recovery_prob=0.6,
                        fatality_prob=0.3, resistance_loss_prob=0.9,
                        initial_spreaders=10, n_days=30)


# ═══════════════════════════════════════════════════════════════════════
# TRANSITION MATRIX
# ═══════════════════════════════════════════════════════════════════════

class TestTransitionMatrix:
    def test_rows_sum_at_most_one(self):
        cfg = AgentSection(recovery_prob=0.9, fatality_prob=0.9)
        m = TransitionMatrix.from_config(cfg)
        assert np.all(m.row_mass <= 1.0 + 1e-12)
        assert m.probs[S, F] == pytest.approx(0.1 * 0.9)

    def test_exposure_only_rows_are_zero(self):
        m = TransitionMatrix.from_config(AgentSection())
        assert not m.has_timed_exit(H)
        assert not m.has_timed_exit(F)
        assert m.has_timed_exit(I)
        assert m.has_timed_exit(S)
        assert m.has_timed_exit(R)

    def test_entries(self):
        cfg = AgentSection(progression_prob=0.2, recovery_prob=0.1,
                           fatality_prob=0.05, resistance_loss_prob=0.01)
        m = TransitionMatrix.from_config(cfg)
        assert m.probs[I, S] == 0.2
        assert m.probs[S, R] == 0.1
        assert m.probs[R, H] == 0.01

    def test_row_above_one_rejected(self):
        p = np.zeros((5, 5))
        p[I, S] = 0.7
        p[I, R] = 0.4
        with pytest.raises(ConfigurationError, match="INFILTRATED"):
            TransitionMatrix(p)

    def test_negative_rejected(self):
        p = np.zeros((5, 5))
        p[R, H] = -0.1
        with pytest.raises(ConfigurationError):
            TransitionMatrix(p)

    def test_wrong_shape_rejected(self):
        with pytest.raises(ConfigurationError):
            TransitionMatrix(np.zeros((4, 4)))

    def test_sample_next_mapping(self):
        m = TransitionMatrix.from_config(
            AgentSection(recovery_prob=0.1, fatality_prob=0.02))
        states = np.array([S, S, S], dtype=np.int8)
        u = np.array([0.05, 0.11, 0.5])
        np.testing.assert_array_equal(m.sample_next(states, u), [R, F, UNSET])

    def test_zero_row_never_transitions(self):
        m = TransitionMatrix.from_config(AgentSection())
        u = np.random.default_rng(0).random(10_000)
        for state in (H, F):
            out = m.sample_next(np.full(10_000, state, dtype=np.int8), u)
            assert np.all(out == UNSET)

    def test_sample_frequencies(self):
        m = TransitionMatrix.from_config(AgentSection(progression_prob=0.3))
        u = np.random.default_rng(1).random(100_000)
        out = m.sample_next(np.full(100_000, I, dtype=np.int8), u)
        assert abs(np.mean(out == S) - 0.3) < 0.01
        assert np.all((out == S) | (out == UNSET))


class TestStateDuration:
    def test_valid(self):
        d = StateDuration(2, 5)
        assert (d.min_days, d.max_days) == (2, 5)

    @pytest.mark.parametrize("lo,hi", [(0, 3), (5, 2)])
    def test_invalid(self, lo, hi):
        with pytest.raises(ConfigurationError):
            StateDuration(lo, hi)

    def test_max_beyond_countdown_range(self):
        with pytest.raises(ConfigurationError, match="exceeds"):
            StateDuration(40000, 40000)

    def test_max_at_countdown_range(self):
        d = StateDuration(1, MAX_COUNTDOWN_DAYS)
        assert d.max_days == np.iinfo(np.int16).max

    def test_from_config(self):
        d = durations_from_config(AgentSection())
        assert d[I] == StateDuration(2, 5)
        assert d[S] == StateDuration(3, 10)
        assert d[R] == StateDuration(20, 60)


# ═══════════════════════════════════════════════════════════════════════
# STATE MACHINE CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════

class TestConstruction:
    def test_size_mismatch(self):
        g = _path_graph(4)
        with pytest.raises(GraphConsistencyError, match="agents"):
            AgentStateMachine(allocate_agents(5), build_neighbor_index(g),
                              AgentSection(), np.random.default_rng(0))

    def test_ids_must_match_rows(self):
        g = _path_graph(3)
        agents = allocate_agents(3)
        agents['id'] = [0, 2, 1]
        with pytest.raises(GraphConsistencyError, match="ids"):
            AgentStateMachine(agents, build_neighbor_index(g),
                              AgentSection(), np.random.default_rng(0))

    def test_seed_spreaders(self):
        m = _machine(_path_graph(20), AgentSection())
        chosen = m.seed_spreaders(5)
        assert len(set(chosen.tolist())) == 5
        assert m.counts()[S] == 5

    def test_seed_too_many(self):
        m = _machine(_path_graph(3), AgentSection())
        with pytest.raises(ConfigurationError):
            m.seed_spreaders(4)


# ═══════════════════════════════════════════════════════════════════════
# PROBABILITY POLICY
# ═══════════════════════════════════════════════════════════════════════

class TestProbabilityPolicy:
    def test_no_spreader_no_infection(self):
        cfg = _deterministic_cfg(infection_prob=1.0)
        m = _machine(_path_graph(10), cfg)
        for _ in range(5):
            changes = m.step()
            assert changes.sum() == 0
        assert np.all(m.agents['state'] == H)

    def test_fallen_is_absorbing(self):
        cfg = AgentSection(infection_prob=1.0, progression_prob=1.0,
                           recovery_prob=1.0, resistance_loss_prob=1.0)
        for cascades in (False, True):
            cfg.allow_same_day_cascades = cascades
            m = _machine(_path_graph(6), cfg)
            m.agents['state'] = F
            for _ in range(10):
                assert m.step().sum() == 0
            assert np.all(m.agents['state'] == F)

    def test_snapshot_exposure_reaches_direct_neighbour_only(self):
        cfg = _deterministic_cfg(infection_prob=1.0, progression_prob=1.0)
        m = _machine(_path_graph(3), cfg)
        m.agents['state'][0] = S
        changes = m.step()
        np.testing.assert_array_equal(m.agents['state'], [S, I, H])
        np.testing.assert_array_equal(changes, [0, 1, 0])

    def test_cascading_chain_in_one_day(self):
        cfg = _deterministic_cfg(infection_prob=1.0, progression_prob=1.0,
                                 allow_same_day_cascades=True)
        m = _machine(_path_graph(3), cfg)
        m.agents['state'][0] = S
        changes = m.step()
        # Agent 1: H → I → S, which then exposes agent 2 in the same pass
        np.testing.assert_array_equal(m.agents['state'], [S, S, S])
        np.testing.assert_array_equal(changes, [0, 2, 2])

    def test_recovery_checked_before_fatality(self):
        cfg = _deterministic_cfg(recovery_prob=1.0, fatality_prob=1.0)
        m = _machine(_path_graph(4), cfg)
        m.agents['state'] = S
        m.step()
        assert np.all(m.agents['state'] == R)

    def test_waning_immunity(self):
        cfg = _deterministic_cfg(resistance_loss_prob=1.0)
        m = _machine(_path_graph(4), cfg)
        m.agents['state'] = R
        m.step()
        assert np.all(m.agents['state'] == H)

    def test_snapshot_at_most_one_transition_per_day(self, ba_graph, busy_cfg):
        m = _machine(ba_graph, busy_cfg, seed=11)
        m.seed_spreaders(busy_cfg.initial_spreaders)
        for _ in range(busy_cfg.n_days):
            before = m.agents['state'].copy()
            changes = m.step()
            assert changes.max() <= 1
            np.testing.assert_array_equal(changes, before != m.agents['state'])

    def test_cascading_allows_multiple_transitions(self, ba_graph, busy_cfg):
        busy_cfg.allow_same_day_cascades = True
        m = _machine(ba_graph, busy_cfg, seed=11)
        m.seed_spreaders(busy_cfg.initial_spreaders)
        max_changes = max(m.step().max() for _ in range(busy_cfg.n_days))
        assert max_changes >= 2

    @pytest.mark.parametrize("cascades", [False, True])
    def test_deterministic(self, ba_graph, busy_cfg, cascades):
        busy_cfg.allow_same_day_cascades = cascades
        runs = []
        for _ in range(2):
            m = _machine(ba_graph, busy_cfg, seed=5)
            m.seed_spreaders(busy_cfg.initial_spreaders)
            history = []
            for _ in range(busy_cfg.n_days):
                m.step()
                history.append(m.agents['state'].copy())
            runs.append(np.vstack(history))
        np.testing.assert_array_equal(runs[0], runs[1])


# ═══════════════════════════════════════════════════════════════════════
# TIMER POLICY
# ═══════════════════════════════════════════════════════════════════════

class TestTimerPolicy:
    def test_countdown_fires_after_duration(self):
        cfg = _deterministic_cfg(progression_prob=1.0, update_policy="timer",
                                 durations={'infiltrated': [3, 3],
                                            'spreader': [1, 1],
                                            'resistant': [1, 1]})
        m = _machine(_path_graph(1), cfg)
        m.agents['state'][0] = I

        m.step()  # scheduled: pending S, countdown 3
        assert m.agents['pending'][0] == S
        assert m.agents['countdown'][0] == 3
        states = [m.agents['state'][0]]
        for _ in range(3):
            m.step()
            states.append(m.agents['state'][0])
        assert states == [I, I, I, S]
        assert m.agents['countdown'][0] == UNSET
        assert m.agents['pending'][0] == UNSET

    def test_longest_duration_does_not_wrap(self):
        cfg = _deterministic_cfg(resistance_loss_prob=1.0, update_policy="timer",
                                 durations={'resistant': [MAX_COUNTDOWN_DAYS,
                                                          MAX_COUNTDOWN_DAYS]})
        m = _machine(_path_graph(1), cfg)
        m.agents['state'][0] = R

        m.step()
        assert m.agents['pending'][0] == H
        assert m.agents['countdown'][0] == MAX_COUNTDOWN_DAYS
        m.step()
        assert m.agents['state'][0] == R
        assert m.agents['countdown'][0] == MAX_COUNTDOWN_DAYS - 1

    def test_countdown_within_duration_range(self):
        cfg = _deterministic_cfg(progression_prob=1.0, update_policy="timer",
                                 durations={'infiltrated': [2, 6]})
        m = _machine(_path_graph(500), cfg, seed=2)
        m.agents['state'] = I
        m.step()
        cd = m.agents['countdown']
        assert cd.min() >= 2 and cd.max() <= 6
        assert len(np.unique(cd)) == 5

    def test_zero_rows_never_scheduled(self):
        cfg = _deterministic_cfg(infection_prob=1.0, update_policy="timer")
        m = _machine(_path_graph(10), cfg)
        m.agents['state'][:5] = F
        for _ in range(10):
            assert m.step().sum() == 0
        assert np.all(m.agents['countdown'] == UNSET)
        assert np.all(m.agents['pending'] == UNSET)

    def test_stay_remainder_leaves_agent_idle(self):
        cfg = _deterministic_cfg(update_policy="timer", progression_prob=0.0)
        m = _machine(_path_graph(5), cfg)
        m.agents['state'] = I
        m.step()
        assert np.all(m.agents['countdown'] == UNSET)

    def test_snapshot_at_most_one_transition_per_day(self, ba_graph, busy_cfg):
        busy_cfg.update_policy = "timer"
        busy_cfg.durations = {'infiltrated': [1, 2], 'spreader': [1, 2],
                              'resistant': [1, 2]}
        m = _machine(ba_graph, busy_cfg, seed=4)
        m.seed_spreaders(busy_cfg.initial_spreaders)
        for _ in range(busy_cfg.n_days):
            assert m.step().max() <= 1

    @pytest.mark.parametrize("cascades", [False, True])
    def test_deterministic(self, ba_graph, busy_cfg, cascades):
        busy_cfg.update_policy = "timer"
        busy_cfg.allow_same_day_cascades = cascades
        finals = []
        for _ in range(2):
            m = _machine(ba_graph, busy_cfg, seed=8)
            m.seed_spreaders(busy_cfg.initial_spreaders)
            for _ in range(busy_cfg.n_days):
                m.step()
            finals.append(m.agents.copy())
        np.testing.assert_array_equal(finals[0], finals[1])


# ═══════════════════════════════════════════════════════════════════════
# NETWORK EPIDEMIC RUN
# ═══════════════════════════════════════════════════════════════════════

class TestRunNetworkEpidemic:
    def test_shapes_and_conservation(self, ba_graph, busy_cfg):
        res = run_network_epidemic(ba_graph, busy_cfg, np.random.default_rng(0))
        assert res.days_completed == busy_cfg.n_days
        assert res.daily_counts.shape == (busy_cfg.n_days + 1, 5)
        assert np.all(res.daily_counts.sum(axis=1) == ba_graph.n_nodes)
        assert res.transitions.shape == (busy_cfg.n_days, ba_graph.n_nodes)
        assert not res.cancelled

    def test_initial_conditions(self, ba_graph, busy_cfg):
        res = run_network_epidemic(ba_graph, busy_cfg, np.random.default_rng(0))
        assert res.daily_counts[0, S] == busy_cfg.initial_spreaders
        assert res.daily_counts[0, H] == ba_graph.n_nodes - busy_cfg.initial_spreaders
        assert set(np.where(res.snapshots[0].states == S)[0]) == set(res.initial_spreaders)

    def test_snapshots_daily_and_read_only(self, ba_graph, busy_cfg):
        res = run_network_epidemic(ba_graph, busy_cfg, np.random.default_rng(0))
        assert [s.day for s in res.snapshots] == list(range(busy_cfg.n_days + 1))
        with pytest.raises(ValueError):
            res.snapshots[0].states[0] = F
        np.testing.assert_array_equal(res.snapshots[-1].counts(), res.daily_counts[-1])

    def test_snapshot_interval(self, ba_graph, busy_cfg):
        busy_cfg.snapshot_interval = 7
        res = run_network_epidemic(ba_graph, busy_cfg, np.random.default_rng(0))
        # Every 7th day, plus the final day
        assert [s.day for s in res.snapshots] == [0, 7, 14, 21, 28, 30]

    def test_fallen_never_recover(self, ba_graph, busy_cfg):
        res = run_network_epidemic(ba_graph, busy_cfg, np.random.default_rng(0))
        fallen = np.diff(res.state_series(F))
        assert np.all(fallen >= 0)

    def test_cancellation_returns_partial_run(self, ba_graph, busy_cfg):
        token = CancellationToken(max_polls=5)
        res = run_network_epidemic(ba_graph, busy_cfg, np.random.default_rng(0),
                                   token=token)
        assert res.cancelled
        assert res.days_completed == 5
        assert res.daily_counts.shape == (6, 5)
        assert res.snapshots[-1].day == 5

    def test_no_spreaders_nothing_happens(self, ba_graph):
        cfg = AgentSection(initial_spreaders=0, n_days=10)
        res = run_network_epidemic(ba_graph, cfg, np.random.default_rng(0))
        assert np.all(res.daily_counts[:, H] == ba_graph.n_nodes)
