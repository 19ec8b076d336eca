"""Cooperative cancellation for long runs.

The sampler and the agent runner poll a token once per iteration / day.
A cancelled run stops at the next poll and returns what it has so far.
Setting the token from another thread is safe (threading.Event).
"""

from __future__ import annotations

import threading
from typing import Optional

from epinet.errors import SimulationCancelled


class CancellationToken:
    """Flag checked between iterations.

    Args:
        max_polls: Optional budget; the token cancels itself once it has
            been polled this many times. Useful for bounding run length
            and for tests.
    """

    def __init__(self, max_polls: Optional[int] = None):
        self._event = threading.Event()
        self._max_polls = max_polls
        self.polls = 0

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def poll(self) -> bool:
        """Record one check and return True if the run should stop."""
        self.polls += 1
        if self._max_polls is not None and self.polls > self._max_polls:
            self._event.set()
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.poll():
            raise SimulationCancelled(f"cancelled after {self.polls - 1} polls")


def never_cancelled() -> CancellationToken:
    """A token nobody holds a reference to."""
    return CancellationToken()
