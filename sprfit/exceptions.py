"""
Error types raised by sprfit.

Configuration problems are reported before any simulation work starts,
numerical failures abort the run that produced them, and surrogate artifact
problems are split by cause so callers can react to each one separately.
"""


class SPRFitError(Exception):
    """Base class for all sprfit errors."""


class ConfigError(SPRFitError, ValueError):
    """Invalid parameters or run configuration."""


class SimulationError(SPRFitError, FloatingPointError):
    """A non-finite time or position appeared during a run."""


class SimulationCancelled(SPRFitError):
    """The caller asked a run to stop at an event boundary."""


class SurrogateError(SPRFitError):
    """Base class for surrogate artifact and range errors."""


class SurrogateNotFoundError(SurrogateError, FileNotFoundError):
    """The surrogate artifact does not exist."""


class RangeViolationError(SurrogateError, ValueError):
    """A requested range is not contained in the stored surrogate grid."""


class CorruptSurrogateError(SurrogateError):
    """The surrogate artifact is missing fields or has inconsistent shapes."""
