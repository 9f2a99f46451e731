from __future__ import annotations

import numpy as np

from ..dgp import Dataset
from ..distances import JointDistance, ScoreDistance
from ._base import MatchingEstimator

_SCORES = ("propensity", "prognostic", "joint")


class OracleMatching(MatchingEstimator):
    """
    Optimal 1:k matching on the generator's true scores.

    A diagnostic benchmark: it shows what each score could achieve if it were
    known exactly. ``score`` is ``"propensity"`` (true logit phi),
    ``"prognostic"`` (true psi) or ``"joint"`` (Mahalanobis on both).
    """

    def __init__(self, k: int = 1, score: str = "joint", **kwargs) -> None:
        super().__init__(k=k, **kwargs)
        if score not in _SCORES:
            raise ValueError(f"Unknown oracle score '{score}'. Choose from {list(_SCORES)}.")
        self._score = score
        self.method = f"oracle_{score}"

    def _prepare(self, dataset: Dataset, rng: np.random.Generator):
        if self._score == "propensity":
            return dataset, ScoreDistance(dataset.true_propensity)
        if self._score == "prognostic":
            return dataset, ScoreDistance(dataset.true_prognosis)
        return dataset, JointDistance(dataset.true_propensity, dataset.true_prognosis)

    def __repr__(self) -> str:
        return f"OracleMatching(k={self._k}, score={self._score!r})"
