"""Tests for epinet.types — agent alphabet, agent table and value objects."""

import numpy as np
import pytest

from epinet.types import (
    AGENT_DTYPE,
    N_STATES,
    UNSET,
    AgentSnapshot,
    AgentState,
    ParameterSample,
    allocate_agents,
    readonly,
)


# ── Enum tests ────────────────────────────────────────────────────────

class TestAgentStateEnum:
    def test_values(self):
        assert AgentState.SHIELDED == 0
        assert AgentState.INFILTRATED == 1
        assert AgentState.SPREADER == 2
        assert AgentState.RESISTANT == 3
        assert AgentState.FALLEN == 4

    def test_count(self):
        assert len(AgentState) == N_STATES == 5

    def test_symbols(self):
        assert "".join(s.symbol for s in AgentState) == "HISRF"

    def test_integer_compatible(self):
        arr = np.zeros(N_STATES)
        arr[AgentState.FALLEN] = 1.0
        assert arr[4] == 1.0


# ── Agent table tests ─────────────────────────────────────────────────

class TestAllocateAgents:
    def test_fields(self):
        for name in ('id', 'x', 'y', 'state', 'countdown', 'pending'):
            assert name in AGENT_DTYPE.names

    def test_initial_values(self):
        agents = allocate_agents(10)
        np.testing.assert_array_equal(agents['id'], np.arange(10))
        assert np.all(agents['state'] == AgentState.SHIELDED)
        assert np.all(agents['countdown'] == UNSET)
        assert np.all(agents['pending'] == UNSET)

    def test_empty(self):
        assert len(allocate_agents(0)) == 0


# ── Value object tests ────────────────────────────────────────────────

class TestParameterSample:
    @pytest.mark.parametrize("beta,gamma,ok", [
        (0.2, 0.15, True),
        (0.0, 0.1, False),
        (0.5, 1.0, False),
        (-0.1, 0.5, False),
        (0.999, 0.001, True),
    ])
    def test_in_support(self, beta, gamma, ok):
        assert ParameterSample(beta, gamma).in_support() is ok

    def test_r0(self):
        assert ParameterSample(0.5, 0.1).r0 == pytest.approx(5.0)

    def test_frozen(self):
        s = ParameterSample(0.2, 0.1)
        with pytest.raises(AttributeError):
            s.beta = 0.3


class TestReadOnly:
    def test_copy_is_protected(self):
        src = np.arange(5)
        out = readonly(src)
        src[0] = 99
        assert out[0] == 0
        with pytest.raises(ValueError):
            out[1] = 7

    def test_snapshot_counts(self):
        states = readonly(np.array([0, 2, 2, 4], dtype=np.int8))
        snap = AgentSnapshot(day=3, states=states)
        np.testing.assert_array_equal(snap.counts(), [1, 0, 2, 0, 1])
