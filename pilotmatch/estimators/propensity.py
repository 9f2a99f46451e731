from __future__ import annotations

import numpy as np

from ..dgp import Dataset
from ..distances import ScoreDistance
from ..scores import fit_propensity
from ._base import COMMON_ASSUMPTIONS, Assumption, MatchingEstimator


class PropensityScoreMatching(MatchingEstimator):
    """
    Optimal 1:k matching on the estimated propensity score.

    1. Fits a logistic regression of treatment on all covariates, using the
       full sample.
    2. Matches treated units to controls minimising the total absolute
       difference in fitted logit propensity.

    Example::

        result = PropensityScoreMatching(k=2).fit(dataset)
        print(result.summary())
    """

    method = "propensity"
    assumptions: list[Assumption] = COMMON_ASSUMPTIONS + [
        Assumption("Propensity model is correctly specified (logit-linear in covariates)", testable=False),
    ]

    def _prepare(self, dataset: Dataset, rng: np.random.Generator):
        score = fit_propensity(dataset)
        return dataset, ScoreDistance(score.predict(dataset))
