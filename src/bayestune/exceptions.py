"""Error types raised by the optimizer."""


class BayesOptError(Exception):
    """Base class for all optimizer errors."""


class ConfigurationError(BayesOptError, ValueError):
    """Invalid optimizer configuration, detected before any evaluation."""


class UnrecognizedAcquisitionFunction(ConfigurationError):
    """Acquisition function name is not one of ucb, ei, eips or poi."""


class BoundsViolationError(ConfigurationError):
    """A supplied initial grid or resumed table has rows outside the bounds."""


class InsufficientUniqueSamples(BayesOptError, RuntimeError):
    """Latin hypercube sampling could not produce enough distinct rows."""


class EvaluationError(BayesOptError, RuntimeError):
    """The scoring function failed or returned an unusable result."""


class CheckpointWriteError(BayesOptError, OSError):
    """Intermediate results could not be written to disk."""


class FlatAcquisitionWarning(UserWarning):
    """The local optimizer barely moved from its starting points."""
