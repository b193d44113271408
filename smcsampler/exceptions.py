"""
Error kinds raised by the sampler.

- MissingHistoryError: history was requested but never stored
- InvariantViolationError: population size drifted from N
- DegenerateWeightsError: weights cannot be normalised (NaN, +inf, all zero)
- PopulationCapWarning: adaptive growth stopped at the population cap
"""


class SMCError(Exception):
    """Base class for sampler errors."""


class MissingHistoryError(SMCError):
    """The operation needs the stored history of the particle system."""


class InvariantViolationError(SMCError):
    """The particle population no longer has the configured size."""


class DegenerateWeightsError(SMCError, FloatingPointError):
    """The log-weights cannot be normalised into a probability vector."""


class PopulationCapWarning(RuntimeWarning):
    """Adaptive growth reached the population cap below the ESS threshold."""
