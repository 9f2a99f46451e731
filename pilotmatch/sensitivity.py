"""
Sensitivity analysis for matched sets with k controls.

The test statistic is Rosenbaum's (2007) Huber M-statistic. Within matched
set i, each unit a gets the score

    q_ia = 1/(J-1) * sum_{b != a} psi((y_ia - y_ib) / s)

with J = k + 1, psi(x) = clip(x, -trim, trim) and s the ``lam`` quantile of
all treated-minus-control absolute differences. The statistic is the sum of
the treated units' scores.

With a hidden bias of at most Gamma, the treated unit in a set can be any of
its J members with odds up to Gamma. The upper bound on the one-sided p-value
uses the separable approximation: each set contributes the largest null
expectation (largest variance among ties) over the J-1 orderings that give
odds Gamma to its top-a scores. The sensitivity value is the largest Gamma
at which that bound still rejects at level alpha.
"""
from __future__ import annotations

import math

import numpy as np
import pandas as pd
from scipy.optimize import brentq
from scipy.stats import norm

from ._exceptions import DegenerateSample

DEFAULT_ALPHA = 0.05
GAMMA_MAX     = 1e4

_TRIM   = 3.0
_LAMBDA = 0.5
_TOL    = 1e-12


def _as_sets(treated, controls) -> tuple[np.ndarray, np.ndarray]:
    treated = np.asarray(treated, dtype=float).ravel()
    controls = np.asarray(controls, dtype=float)
    if controls.ndim == 1:
        controls = controls[:, None]
    if controls.shape[0] != len(treated):
        raise ValueError(
            f"Got {len(treated)} treated outcomes but {controls.shape[0]} rows of control outcomes."
        )
    if len(treated) < 2:
        raise DegenerateSample(
            f"Sensitivity analysis needs at least 2 matched sets, got {len(treated)}."
        )
    if not (np.all(np.isfinite(treated)) and np.all(np.isfinite(controls))):
        raise ValueError("Matched outcomes must be finite.")
    return treated, controls


def set_scores(treated, controls, trim: float = _TRIM, lam: float = _LAMBDA) -> np.ndarray:
    """
    Score of every unit of every matched set, shape (n_sets, k + 1).
    Column 0 holds the treated units.
    """
    treated, controls = _as_sets(treated, controls)
    scale = float(np.quantile(np.abs(treated[:, None] - controls), lam))
    if scale <= 0:
        raise DegenerateSample("Matched differences have zero scale; the statistic is undefined.")

    y = np.column_stack([treated, controls])
    j = y.shape[1]
    diffs = (y[:, :, None] - y[:, None, :]) / scale
    return np.clip(diffs, -trim, trim).sum(axis=2) / (j - 1)


def _worst_case_moments(scores: np.ndarray, gamma: float) -> tuple[np.ndarray, np.ndarray]:
    """Per-set null mean and variance maximising the expectation at bias ``gamma``."""
    ordered = -np.sort(-scores, axis=1)
    n, j = ordered.shape
    best_mu = np.full(n, -np.inf)
    best_var = np.zeros(n)
    for a in range(1, j):
        w = np.where(np.arange(j) < a, gamma, 1.0) / (a * gamma + j - a)
        mu = ordered @ w
        var = (ordered ** 2) @ w - mu ** 2
        better = (mu > best_mu + _TOL) | ((np.abs(mu - best_mu) <= _TOL) & (var > best_var))
        best_mu = np.where(better, mu, best_mu)
        best_var = np.where(better, var, best_var)
    return best_mu, np.maximum(best_var, 0.0)


def _upper_pvalue(scores: np.ndarray, gamma: float) -> float:
    mu, var = _worst_case_moments(scores, gamma)
    total_var = float(var.sum())
    if total_var <= 0:
        raise DegenerateSample("Sensitivity statistic has zero null variance.")
    z = (float(scores[:, 0].sum()) - float(mu.sum())) / math.sqrt(total_var)
    return float(norm.sf(z))


def sensitivity_bound(
    treated,
    controls,
    gamma: float = 1.0,
    trim: float = _TRIM,
    lam: float = _LAMBDA,
) -> float:
    """
    Upper bound on the one-sided p-value for ``H0: no effect`` against a
    positive effect, when hidden bias is at most ``gamma``.

    Parameters
    ----------
    treated : array-like, shape (n_sets,)
        Treated outcome of each matched set.
    controls : array-like, shape (n_sets, k)
        Control outcomes of each matched set.
    gamma : float
        Sensitivity parameter, at least 1. ``gamma=1`` is the randomization test.
    """
    if gamma < 1:
        raise ValueError(f"Gamma must be at least 1, got {gamma}.")
    return _upper_pvalue(set_scores(treated, controls, trim, lam), gamma)


def sensitivity_value(
    treated,
    controls,
    alpha: float = DEFAULT_ALPHA,
    trim: float = _TRIM,
    lam: float = _LAMBDA,
) -> float:
    """
    The largest Gamma at which the upper-bound p-value is still at most
    ``alpha``.

    Returns 1.0 when the test does not reject even without hidden bias, and
    ``GAMMA_MAX`` when it rejects at every Gamma searched.

    Raises
    ------
    ``DegenerateSample``
        With fewer than 2 matched sets or a statistic with no variance.
    """
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must lie in (0, 1), got {alpha}.")
    scores = set_scores(treated, controls, trim, lam)

    if _upper_pvalue(scores, 1.0) > alpha:
        return 1.0
    if _upper_pvalue(scores, GAMMA_MAX) <= alpha:
        return GAMMA_MAX

    root = brentq(
        lambda log_gamma: _upper_pvalue(scores, math.exp(log_gamma)) - alpha,
        0.0,
        math.log(GAMMA_MAX),
        xtol=1e-10,
    )
    return float(math.exp(root))


def sensitivity_curve(
    treated,
    controls,
    gammas=(1.0, 1.25, 1.5, 2.0, 2.5, 3.0, 4.0, 5.0),
    trim: float = _TRIM,
    lam: float = _LAMBDA,
) -> pd.DataFrame:
    """Upper-bound p-value at each Gamma, as a DataFrame with columns ``gamma`` and ``p_upper``."""
    scores = set_scores(treated, controls, trim, lam)
    rows = []
    for gamma in gammas:
        if gamma < 1:
            raise ValueError(f"Gamma must be at least 1, got {gamma}.")
        rows.append({"gamma": float(gamma), "p_upper": _upper_pvalue(scores, float(gamma))})
    return pd.DataFrame(rows)
