"""
Working models for the propensity and prognostic scores.

Both scores are linear predictors on the covariates: the propensity score is
the logit from a logistic regression of treatment on x1..xp, the prognostic
score is the fitted value from a regression of the outcome on x1..xp among
control units only.

The prognostic model is fitted on a pilot sample: a 1:2 Mahalanobis match of
treated units to controls, from which one control per matched set is drawn.
Pilot units are then removed from the sample that gets matched and analysed,
so no outcome used to fit the model is reused in the analysis.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import ModelWarning, PerfectSeparationError

from ._exceptions import DegenerateSample, ModelFitFailure
from .dgp import Dataset
from .distances import CovariateMahalanobis, match_dataset

logger = logging.getLogger(__name__)


class FittedScore:
    """
    A fitted linear score. ``predict()`` works for any dataset with the same
    covariates, including units that were not used in the fit.
    """

    def __init__(self, result, covariates: list[str], kind: str) -> None:
        self._result = result
        self._covariates = covariates
        self._kind = kind

    @property
    def kind(self) -> str:
        """``"propensity"`` (logit scale) or ``"prognostic"``."""
        return self._kind

    @property
    def params(self) -> pd.Series:
        return self._result.params.copy()

    @property
    def statsmodels_result(self):
        """The underlying statsmodels result, for full diagnostics."""
        return self._result

    def predict(self, dataset: Dataset) -> np.ndarray:
        """Linear predictor for every unit of ``dataset``, in row order."""
        if dataset.p != len(self._covariates):
            raise ValueError(
                f"Score was fitted on {len(self._covariates)} covariates, "
                f"dataset has {dataset.p}."
            )
        params = self._result.params
        beta = params[self._covariates].to_numpy()
        return float(params["Intercept"]) + dataset.covariates @ beta

    def __repr__(self) -> str:
        return f"FittedScore(kind={self._kind!r}, n_obs={int(self._result.nobs)})"


def _formula(response: str, covariates: list[str]) -> str:
    return f"{response} ~ " + " + ".join(covariates)


def _check_rank(dataset: Dataset, what: str) -> None:
    design = np.column_stack([np.ones(len(dataset)), dataset.covariates])
    rank = np.linalg.matrix_rank(design)
    if rank < design.shape[1]:
        raise ModelFitFailure(
            f"{what} design is rank-deficient: rank {rank} for {design.shape[1]} columns."
        )


def _fit(fit_fn, what: str):
    """
    Run a statsmodels fit, turning its failures and model warnings into
    ``ModelFitFailure``. Other warnings raised during the fit are re-issued.
    """
    error = None
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ModelWarning)
        try:
            result = fit_fn()
        except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as exc:
            error = exc

    problems = []
    for w in caught:
        if issubclass(w.category, ModelWarning):
            problems.append(w)
        else:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno, source=w.source)
    if error is not None:
        raise ModelFitFailure(f"{what} fit failed: {error}") from error
    if problems:
        raise ModelFitFailure(f"{what} fit failed: {problems[0].message}")
    if not np.all(np.isfinite(result.params)):
        raise ModelFitFailure(f"{what} fit produced non-finite coefficients.")
    return result


def fit_propensity(dataset: Dataset) -> FittedScore:
    """
    Logistic regression of treatment on all covariates.

    Raises
    ------
    ``DegenerateSample``
        If the dataset has no treated or no control units.
    ``ModelFitFailure``
        On non-convergence, perfect separation or a rank-deficient design.
    """
    if dataset.n_treated == 0 or dataset.n_control == 0:
        raise DegenerateSample(
            f"Propensity model needs both groups: {dataset.n_treated} treated, "
            f"{dataset.n_control} control."
        )
    _check_rank(dataset, "Propensity")

    covariates = dataset.covariate_names()
    frame = dataset.to_frame()
    result = _fit(
        lambda: smf.logit(_formula("t", covariates), data=frame).fit(disp=0),
        "Propensity",
    )
    if not result.mle_retvals.get("converged", True):
        raise ModelFitFailure("Propensity fit did not converge.")
    return FittedScore(result, covariates, kind="propensity")


def fit_prognostic(dataset: Dataset) -> FittedScore:
    """
    Linear regression of outcome on all covariates, fitted on control units.

    ``dataset`` must contain controls only: fitting on treated outcomes would
    leak the treatment effect into the score.

    Raises
    ------
    ``ValueError``
        If the dataset contains treated units.
    ``ModelFitFailure``
        If there are too few controls for the covariate dimension or the
        design is rank-deficient.
    """
    if dataset.n_treated:
        raise ValueError(
            f"Prognostic model must be fitted on control units only; "
            f"got {dataset.n_treated} treated units."
        )
    if len(dataset) < dataset.p + 2:
        raise ModelFitFailure(
            f"Prognostic fit needs at least {dataset.p + 2} controls, got {len(dataset)}."
        )
    _check_rank(dataset, "Prognostic")

    covariates = dataset.covariate_names()
    frame = dataset.to_frame()
    result = _fit(
        lambda: smf.ols(_formula("y", covariates), data=frame).fit(),
        "Prognostic",
    )
    return FittedScore(result, covariates, kind="prognostic")


@dataclass(frozen=True)
class PilotSplit:
    """
    A dataset split into a pilot sample (controls used only to fit the
    prognostic model) and the analysis sample that is matched.
    """

    pilot: Dataset
    analysis: Dataset

    @property
    def pilot_ids(self) -> np.ndarray:
        return self.pilot.ids


def pilot_split(dataset: Dataset, rng: np.random.Generator, ratio: int = 2) -> PilotSplit:
    """
    Select the pilot sample.

    Treated units are matched 1:``ratio`` to controls on covariate
    Mahalanobis distance, and one control from each matched set is drawn at
    random into the pilot. Everything else forms the analysis sample.

    Raises
    ------
    ``DegenerateSample`` / ``InfeasibleMatch``
        If the pilot match itself cannot be formed.
    """
    if ratio < 1:
        raise ValueError(f"Pilot ratio must be at least 1, got {ratio}.")
    pilot_match = match_dataset(dataset, CovariateMahalanobis(), k=ratio)
    pick = rng.integers(0, ratio, size=pilot_match.n_sets)
    pilot_ids = pilot_match.control_ids[np.arange(pilot_match.n_sets), pick]

    logger.debug("Pilot sample: %d controls drawn from %d matched sets", len(pilot_ids), pilot_match.n_sets)
    return PilotSplit(
        pilot=dataset.subset(pilot_ids),
        analysis=dataset.drop(pilot_ids),
    )
