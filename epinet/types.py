"""Core data types for EpiNet.

This module is the SINGLE SOURCE OF TRUTH for:
  - AgentState: the five-symbol agent alphabet
  - AGENT_DTYPE: NumPy structured array dtype for network agents
  - UNSET sentinel for countdown / pending-state fields
  - Value objects passed between modules (ParameterSample, ContactGraph,
    AgentSnapshot)

All modules import these types from here. No other module defines agent fields.
"""

from dataclasses import dataclass
from enum import IntEnum

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class AgentState(IntEnum):
    """Network agent states.

    H → I  (exposure: a Spreader neighbour + infection draw)
    I → S  (progression)
    S → R  (recovery) or S → F (fatality)
    R → H  (waning immunity)
    F is absorbing.
    """
    SHIELDED    = 0   # H: susceptible, not yet reached
    INFILTRATED = 1   # I: infected, not yet transmitting
    SPREADER    = 2   # S: infectious
    RESISTANT   = 3   # R: recovered, temporarily immune
    FALLEN      = 4   # F: dead (absorbing)

    @property
    def symbol(self) -> str:
        return STATE_SYMBOLS[self]


N_STATES = len(AgentState)

STATE_SYMBOLS = {
    AgentState.SHIELDED: 'H',
    AgentState.INFILTRATED: 'I',
    AgentState.SPREADER: 'S',
    AgentState.RESISTANT: 'R',
    AgentState.FALLEN: 'F',
}

# Countdown / pending-state value meaning "not scheduled"
UNSET = -1


# ═══════════════════════════════════════════════════════════════════════
# AGENT_DTYPE: contiguous agent table indexed by id
# ═══════════════════════════════════════════════════════════════════════

AGENT_DTYPE = np.dtype([
    ('id',         np.int32),     # agent id == row index == graph node id
    ('x',          np.float32),   # layout position (visualisation only)
    ('y',          np.float32),
    ('state',      np.int8),      # AgentState
    ('countdown',  np.int16),     # days REMAINING before pending fires (UNSET = none)
    ('pending',    np.int8),      # AgentState scheduled by the timer policy (UNSET = none)
])

# Longest dwell time the countdown field can hold
MAX_COUNTDOWN_DAYS = int(np.iinfo(AGENT_DTYPE['countdown']).max)


def allocate_agents(n: int) -> np.ndarray:
    """Allocate an agent table with ids 0..n-1, all SHIELDED and unscheduled.

    Args:
        n: Number of agents.

    Returns:
        Structured array of shape (n,) with AGENT_DTYPE.
    """
    agents = np.zeros(n, dtype=AGENT_DTYPE)
    agents['id'] = np.arange(n, dtype=np.int32)
    agents['state'] = AgentState.SHIELDED
    agents['countdown'] = UNSET
    agents['pending'] = UNSET
    return agents


# ═══════════════════════════════════════════════════════════════════════
# INTER-MODULE VALUE OBJECTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ParameterSample:
    """One (β, γ) point of the inference chain."""
    beta: float
    gamma: float

    def in_support(self) -> bool:
        """True if both rates lie in the open interval (0, 1)."""
        return 0.0 < self.beta < 1.0 and 0.0 < self.gamma < 1.0

    @property
    def r0(self) -> float:
        return self.beta / self.gamma


@dataclass(frozen=True)
class ContactGraph:
    """Immutable contact network produced once per run.

    edges: (n_edges, 2) int array of node-id pairs.
    positions: (n_nodes, 2) float array of layout coordinates.
    """
    n_nodes: int
    edges: np.ndarray
    positions: np.ndarray
    directed: bool = False

    @property
    def n_edges(self) -> int:
        return int(self.edges.shape[0])


@dataclass(frozen=True)
class AgentSnapshot:
    """Read-only state of every agent at the end of one simulated day."""
    day: int
    states: np.ndarray      # (n_agents,) int8, write-protected

    def counts(self) -> np.ndarray:
        """Number of agents in each AgentState."""
        return np.bincount(self.states, minlength=N_STATES)


def readonly(arr: np.ndarray) -> np.ndarray:
    """Return a write-protected copy of arr."""
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out
