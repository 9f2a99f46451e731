from __future__ import annotations

import numpy as np

from ..dgp import Dataset
from ..distances import CovariateMahalanobis
from ._base import MatchingEstimator


class MahalanobisMatching(MatchingEstimator):
    """
    Optimal 1:k matching on the Mahalanobis distance between covariate
    vectors. No working model is fitted; the covariance is estimated from
    the sample being matched.
    """

    method = "mahalanobis"

    def _prepare(self, dataset: Dataset, rng: np.random.Generator):
        return dataset, CovariateMahalanobis()
