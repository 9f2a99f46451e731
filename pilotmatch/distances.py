"""
Distance specifications.

A specification turns the currently available units of a dataset into a
treated-by-control distance matrix. Mahalanobis covariances are always
estimated from the units passed in, so a shrunken sample (after the pilot
units are removed) gets its own covariance rather than a stale one.
"""
from __future__ import annotations

import numpy as np
from scipy.spatial.distance import cdist

from .dgp import Dataset
from .matching import Matching, optimal_match


def mahalanobis_matrix(a: np.ndarray, b: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """
    Pairwise Mahalanobis distances between the rows of ``a`` and ``b``.

    Both sides are whitened with the pseudo-inverse square root of ``cov``
    and compared in Euclidean distance, so a singular covariance (a constant
    or duplicated column, say) still gives a well-defined, non-negative
    metric.
    """
    a = np.atleast_2d(np.asarray(a, dtype=float))
    b = np.atleast_2d(np.asarray(b, dtype=float))
    cov = np.atleast_2d(np.asarray(cov, dtype=float))
    vals, vecs = np.linalg.eigh(cov)
    tol = max(vals.max(initial=0.0), 0.0) * len(vals) * np.finfo(float).eps
    inv_sqrt = np.zeros_like(vals)
    keep = vals > tol
    inv_sqrt[keep] = 1.0 / np.sqrt(vals[keep])
    whiten = vecs * inv_sqrt
    return cdist(a @ whiten, b @ whiten, metric="euclidean")


def _pooled_cov(values: np.ndarray) -> np.ndarray:
    if values.ndim == 1:
        values = values[:, None]
    if len(values) < 2:
        return np.eye(values.shape[1])
    return np.atleast_2d(np.cov(values, rowvar=False))


class DistanceSpec:
    """Base class: subclasses implement ``pairwise()``."""

    name: str = "distance"

    def pairwise(self, dataset: Dataset) -> np.ndarray:
        """Distance matrix of shape (n_treated, n_control) for ``dataset``."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class CovariateMahalanobis(DistanceSpec):
    """Mahalanobis distance on the full covariate vector."""

    name = "mahalanobis"

    def pairwise(self, dataset: Dataset) -> np.ndarray:
        x = dataset.covariates
        t = dataset.treatment
        return mahalanobis_matrix(x[t == 1], x[t == 0], _pooled_cov(x))


class ScoreDistance(DistanceSpec):
    """
    Absolute difference in a scalar score: the fitted logit propensity for
    propensity matching, or a true score for oracle diagnostics. ``scores``
    is aligned with the rows of the dataset it is applied to.
    """

    name = "score"

    def __init__(self, scores: np.ndarray) -> None:
        self._scores = np.asarray(scores, dtype=float)

    def pairwise(self, dataset: Dataset) -> np.ndarray:
        if len(self._scores) != len(dataset):
            raise ValueError(
                f"{len(self._scores)} scores supplied for a dataset of {len(dataset)} units."
            )
        t = dataset.treatment
        return np.abs(self._scores[t == 1][:, None] - self._scores[t == 0][None, :])


class JointDistance(DistanceSpec):
    """
    Mahalanobis distance on the pair (propensity score, prognostic score).

    With ``caliper`` set, pairs whose propensity scores differ by more than
    ``caliper`` standard deviations of the propensity score are forbidden.
    """

    name = "prognostic"

    def __init__(
        self,
        propensity: np.ndarray,
        prognosis: np.ndarray,
        caliper: float | None = None,
    ) -> None:
        if caliper is not None and caliper <= 0:
            raise ValueError(f"Caliper must be positive, got {caliper}.")
        self._scores = np.column_stack([
            np.asarray(propensity, dtype=float),
            np.asarray(prognosis, dtype=float),
        ])
        self._caliper = caliper

    def pairwise(self, dataset: Dataset) -> np.ndarray:
        if len(self._scores) != len(dataset):
            raise ValueError(
                f"{len(self._scores)} scores supplied for a dataset of {len(dataset)} units."
            )
        t = dataset.treatment
        s = self._scores
        dist = mahalanobis_matrix(s[t == 1], s[t == 0], _pooled_cov(s))
        if self._caliper is not None:
            ps = s[:, 0]
            width = self._caliper * np.std(ps, ddof=1)
            gap = np.abs(ps[t == 1][:, None] - ps[t == 0][None, :])
            dist = np.where(gap > width, np.inf, dist)
        return dist

    def __repr__(self) -> str:
        return f"JointDistance(caliper={self._caliper})"


def match_dataset(dataset: Dataset, spec: DistanceSpec, k: int = 1) -> Matching:
    """Optimal 1:k matching of the treated units of ``dataset`` under ``spec``."""
    return optimal_match(
        dataset.treated_ids,
        dataset.control_ids,
        spec.pairwise(dataset),
        k=k,
    )
