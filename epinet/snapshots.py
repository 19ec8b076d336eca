"""Per-day agent state recording.

Records the state of every agent at configurable intervals for the
network animation downstream. Snapshots are write-protected copies, so
consumers cannot alter the run they came from.

Usage:
    recorder = SnapshotRecorder(
        enabled=True,
        interval_days=1,       # every day
        start_day=0,
        end_day=90,
    )

    # In simulation loop:
    recorder.capture(day, agents)

    # After simulation:
    matrix = recorder.state_matrix()   # (n_snapshots, n_agents)
"""

from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np

from epinet.types import AgentSnapshot, readonly


class SnapshotRecorder:
    """Records per-day agent states in memory.

    When enabled=False, all methods are no-ops (zero overhead).
    """

    def __init__(
        self,
        enabled: bool = False,
        interval_days: int = 1,
        start_day: int = 0,
        end_day: int = 999999,
    ):
        """
        Args:
            enabled: Master switch. False = no-ops everywhere.
            interval_days: Capture every N days (1 = daily, 7 = weekly).
            start_day: First simulation day to record.
            end_day: Last simulation day to record.
        """
        self.enabled = enabled
        self.interval_days = interval_days
        self.start_day = start_day
        self.end_day = end_day

        self.snapshots: Dict[int, AgentSnapshot] = {}

    def should_capture(self, day: int) -> bool:
        """Check if we should capture this day."""
        if not self.enabled:
            return False
        if day < self.start_day or day > self.end_day:
            return False
        return (day % self.interval_days) == 0

    def capture(self, day: int, agents: np.ndarray, force: bool = False) -> None:
        """Capture the state column of the agent table.

        Args:
            day: Simulation day (0 = initial conditions).
            agents: AGENT_DTYPE table.
            force: Ignore interval and window (still a no-op when disabled).
        """
        if not self.enabled:
            return
        if not force and not self.should_capture(day):
            return
        self.snapshots[day] = AgentSnapshot(day=day, states=readonly(agents['state']))

    def get_days(self) -> List[int]:
        """Get sorted list of all captured simulation days."""
        return sorted(self.snapshots)

    def get_snapshot(self, day: int) -> Optional[AgentSnapshot]:
        return self.snapshots.get(day)

    def snapshots_in_order(self) -> List[AgentSnapshot]:
        return [self.snapshots[d] for d in self.get_days()]

    def state_matrix(self) -> np.ndarray:
        """Stack captured states into a read-only (n_snapshots, n_agents) array."""
        if not self.snapshots:
            return readonly(np.zeros((0, 0), dtype=np.int8))
        return readonly(np.vstack([s.states for s in self.snapshots_in_order()]))

    def memory_estimate_mb(self) -> float:
        """Estimate memory usage of stored snapshots."""
        total_bytes = sum(s.states.nbytes for s in self.snapshots.values())
        return total_bytes / (1024 * 1024)
