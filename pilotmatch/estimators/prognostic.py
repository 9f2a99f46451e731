from __future__ import annotations

import logging

import numpy as np

from ..dgp import Dataset
from ..distances import JointDistance
from ..scores import fit_prognostic, fit_propensity, pilot_split
from ._base import COMMON_ASSUMPTIONS, Assumption, MatchingEstimator

logger = logging.getLogger(__name__)


class PrognosticMatching(MatchingEstimator):
    """
    Joint propensity and prognostic score matching with a pilot design.

    1. Fits the propensity model (treatment on covariates) on every unit.
    2. Draws a pilot sample of controls: treated units are matched 1:2 on
       covariate Mahalanobis distance and one control per set is kept.
    3. Fits the prognostic model (outcome on covariates) on the pilot
       controls only.
    4. Drops the pilot units and predicts both scores on the remaining
       analysis sample.
    5. Matches treated units to controls on the Mahalanobis distance between
       the (propensity, prognosis) score pairs, optionally within a
       propensity caliper.

    Parameters
    ----------
    k : int
        Controls per treated unit in the final match.
    pilot_ratio : int
        Controls per treated unit in the pilot match.
    caliper : float, optional
        Maximum propensity score gap, in standard deviations of the fitted
        logit propensity.
    """

    method = "prognostic"
    assumptions: list[Assumption] = COMMON_ASSUMPTIONS + [
        Assumption("Prognostic model fitted on pilot controls generalises to the analysis sample", testable=True),
    ]

    def __init__(
        self,
        k: int = 1,
        pilot_ratio: int = 2,
        caliper: float | None = None,
        **kwargs,
    ) -> None:
        super().__init__(k=k, **kwargs)
        if pilot_ratio < 1:
            raise ValueError(f"Pilot ratio must be at least 1, got {pilot_ratio}.")
        self._pilot_ratio = pilot_ratio
        self._caliper = caliper

    def _prepare(self, dataset: Dataset, rng: np.random.Generator):
        propensity = fit_propensity(dataset)
        split = pilot_split(dataset, rng, ratio=self._pilot_ratio)
        prognosis = fit_prognostic(split.pilot)
        logger.debug(
            "Pilot design: %d pilot controls, %d units left for analysis",
            len(split.pilot), len(split.analysis),
        )
        spec = JointDistance(
            propensity.predict(split.analysis),
            prognosis.predict(split.analysis),
            caliper=self._caliper,
        )
        return split.analysis, spec

    def __repr__(self) -> str:
        return f"PrognosticMatching(k={self._k}, pilot_ratio={self._pilot_ratio}, caliper={self._caliper})"
