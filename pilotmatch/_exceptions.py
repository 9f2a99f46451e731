class MatchingError(Exception):
    """
    Base class for failures that are local to one (configuration, method,
    replication) triple.

    The simulation harness catches these, records the replication as failed
    and moves on. Anything else propagates.
    """
    pass


class InfeasibleMatch(MatchingError):
    """Raised when there are too few control units to give every treated unit k controls."""
    pass


class DegenerateSample(MatchingError):
    """
    Raised when a sample cannot support estimation: no treated or no control
    units, fewer than two matched sets, or a sensitivity statistic with no
    null variance.
    """
    pass


class ModelFitFailure(MatchingError):
    """Raised when the propensity or prognostic regression fails to converge or is rank-deficient."""
    pass


class ConfigurationError(ValueError):
    """Raised when a simulation configuration is malformed. Fails before any replication starts."""
    pass
