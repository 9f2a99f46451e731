from ._base import Assumption, MatchingEstimator, MatchingResult, att_estimate, matched_outcomes
from .mahalanobis import MahalanobisMatching
from .oracle import OracleMatching
from .prognostic import PrognosticMatching
from .propensity import PropensityScoreMatching

from .._exceptions import ConfigurationError

METHODS = ("propensity", "mahalanobis", "prognostic")
ORACLE_METHODS = ("oracle_propensity", "oracle_prognostic", "oracle_joint")


def make_estimator(method: str, k: int = 1, **kwargs) -> MatchingEstimator:
    """Build the estimator named by a result-table ``method`` value."""
    if method == "propensity":
        return PropensityScoreMatching(k=k, **kwargs)
    if method == "mahalanobis":
        return MahalanobisMatching(k=k, **kwargs)
    if method == "prognostic":
        return PrognosticMatching(k=k, **kwargs)
    if method in ORACLE_METHODS:
        return OracleMatching(k=k, score=method[len("oracle_"):], **kwargs)
    raise ConfigurationError(
        f"Unknown method '{method}'. Choose from {list(METHODS + ORACLE_METHODS)}."
    )


__all__ = [
    "Assumption", "MatchingEstimator", "MatchingResult",
    "att_estimate", "matched_outcomes",
    "PropensityScoreMatching", "MahalanobisMatching", "PrognosticMatching", "OracleMatching",
    "METHODS", "ORACLE_METHODS", "make_estimator",
]
