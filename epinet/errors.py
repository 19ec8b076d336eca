"""Exception taxonomy for EpiNet.

All validation failures subclass ValueError so callers catching the
built-in keep working. None of these are retried; they signal either bad
input or a construction bug and are raised before any simulation work.
"""


class EpinetError(Exception):
    """Base class for all EpiNet errors."""


class ConfigurationError(EpinetError, ValueError):
    """Invalid counts, mismatched lengths or non-positive iteration budgets."""


class ParameterRangeError(EpinetError, ValueError):
    """A rate parameter outside (0, 1) reached the forward simulator."""


class GraphConsistencyError(EpinetError, ValueError):
    """An edge or neighbour reference points outside the node set."""


class ValidationError(EpinetError, ValueError):
    """Posterior chains that cannot be analysed (length mismatch, empty)."""


class SimulationCancelled(EpinetError):
    """Raised by CancellationToken.raise_if_cancelled()."""
