"""
Optimal 1:k matching without replacement.

The problem is a minimum-weight bipartite b-matching: each treated unit needs
k controls and each control can be used once. Repeating every treated row k
times turns it into a rectangular assignment problem, solved exactly by
``scipy.optimize.linear_sum_assignment``. The solver is wrapped here so that
nothing else in the package depends on it.
"""
from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy.optimize import linear_sum_assignment

from ._exceptions import DegenerateSample, InfeasibleMatch

logger = logging.getLogger(__name__)


class Matching:
    """
    A 1:k matched sample.

    ``treated_ids[i]`` is matched to the controls in row ``i`` of
    ``control_ids``, ordered from nearest to farthest. No control id appears
    twice.
    """

    def __init__(
        self,
        treated_ids: np.ndarray,
        control_ids: np.ndarray,
        distances: np.ndarray,
    ) -> None:
        self._treated = np.asarray(treated_ids, dtype=np.int64)
        self._controls = np.asarray(control_ids, dtype=np.int64)
        self._distances = np.asarray(distances, dtype=float)

        if self._controls.ndim != 2 or self._controls.shape[0] != len(self._treated):
            raise ValueError("control_ids must have shape (n_treated, k).")
        if self._distances.shape != self._controls.shape:
            raise ValueError("distances must have the same shape as control_ids.")
        flat = self._controls.ravel()
        if len(np.unique(flat)) != len(flat):
            raise ValueError("A control unit is used in more than one matched set.")

    @property
    def treated_ids(self) -> np.ndarray:
        return self._treated.copy()

    @property
    def control_ids(self) -> np.ndarray:
        """Matched control ids, shape (n_sets, k)."""
        return self._controls.copy()

    @property
    def distances(self) -> np.ndarray:
        """Treated-to-control distance of every matched pair, shape (n_sets, k)."""
        return self._distances.copy()

    @property
    def k(self) -> int:
        return self._controls.shape[1]

    @property
    def n_sets(self) -> int:
        return len(self._treated)

    @property
    def total_distance(self) -> float:
        return float(self._distances.sum())

    def as_dict(self) -> dict[int, tuple[int, ...]]:
        """Mapping from treated id to its ordered tuple of control ids."""
        return {
            int(t): tuple(int(c) for c in row)
            for t, row in zip(self._treated, self._controls)
        }

    def to_frame(self) -> pd.DataFrame:
        """Long format: one row per matched pair with columns set, treated, control, rank, distance."""
        n, k = self._controls.shape
        return pd.DataFrame({
            "set":      np.repeat(np.arange(n), k),
            "treated":  np.repeat(self._treated, k),
            "control":  self._controls.ravel(),
            "rank":     np.tile(np.arange(k), n),
            "distance": self._distances.ravel(),
        })

    def __len__(self) -> int:
        return self.n_sets

    def __repr__(self) -> str:
        return f"Matching(n_sets={self.n_sets}, k={self.k}, total_distance={self.total_distance:.4f})"


def optimal_match(
    treated_ids,
    control_ids,
    distances: np.ndarray,
    k: int = 1,
) -> Matching:
    """
    Match every treated unit to k distinct controls, minimising the total
    distance over the whole sample.

    Parameters
    ----------
    treated_ids, control_ids : array-like of int
        Unit ids labelling the rows and columns of ``distances``.
    distances : np.ndarray
        Non-negative distance matrix of shape (n_treated, n_control).
        ``np.inf`` marks a forbidden pair.
    k : int
        Controls per treated unit.

    Raises
    ------
    ``DegenerateSample``
        If there are no treated or no control units.
    ``InfeasibleMatch``
        If fewer than ``k * n_treated`` controls are available, or forbidden
        pairs leave no complete assignment.
    ``ValueError``
        If ``k < 1`` or the inputs have inconsistent shapes.
    """
    if k < 1:
        raise ValueError(f"Match ratio k must be at least 1, got {k}.")

    treated_ids = np.asarray(treated_ids, dtype=np.int64)
    control_ids = np.asarray(control_ids, dtype=np.int64)
    distances = np.asarray(distances, dtype=float)

    n_t, n_c = len(treated_ids), len(control_ids)
    if distances.shape != (n_t, n_c):
        raise ValueError(
            f"Distance matrix has shape {distances.shape}, expected ({n_t}, {n_c})."
        )
    if n_t == 0 or n_c == 0:
        raise DegenerateSample(
            f"Cannot match a sample with {n_t} treated and {n_c} control units."
        )
    if n_c < k * n_t:
        raise InfeasibleMatch(
            f"{n_c} control units cannot supply {k} controls to each of "
            f"{n_t} treated units ({k * n_t} needed)."
        )
    if np.any(np.isnan(distances)) or np.any(distances < 0):
        raise ValueError("Distances must be non-negative and not NaN.")

    # Row r of the expanded problem is slot r % k of treated unit r // k.
    expanded = np.repeat(distances, k, axis=0)
    try:
        rows, cols = linear_sum_assignment(expanded)
    except ValueError as exc:
        # scipy signals an all-forbidden assignment this way.
        raise InfeasibleMatch(f"No complete matching within the allowed pairs: {exc}") from exc

    assigned = np.empty((n_t, k), dtype=np.int64)
    assigned[rows // k, rows % k] = cols
    pair_dist = distances[np.arange(n_t)[:, None], assigned]
    if not np.all(np.isfinite(pair_dist)):
        raise InfeasibleMatch("No complete matching within the allowed pairs.")

    # Order each set nearest first; ties go to the smaller control id.
    order = np.lexsort((control_ids[assigned], pair_dist), axis=1)
    assigned = np.take_along_axis(assigned, order, axis=1)
    pair_dist = np.take_along_axis(pair_dist, order, axis=1)

    matching = Matching(treated_ids, control_ids[assigned], pair_dist)
    logger.debug("Optimal match: %d sets, k=%d, total distance %.4f", n_t, k, matching.total_distance)
    return matching
